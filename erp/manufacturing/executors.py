"""
Stage executors

A stage executor owns the widgets of one production stage form, validates
what the operator entered, computes yield and cost, and hands a normalised
payload to its `on_submit` callback.

GenericStageExecutor is driven entirely by a StageConfiguration. The legacy
executors (cleaning, cutting, mixing, sublimation, receiving) have a fixed
widget set and stop at the first failing check. StageExecutorRegistry maps a
stage type to whichever of the two applies.
"""
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from decimal import Decimal
from functools import partial
from typing import Any, Callable, Optional

from .display import format_currency, format_duration, round_half_up, yield_status
from .stage_configurations import CostContext
from .widgets import (
    BatchQuality, EquipmentUnitSelector, MaterialsWidget, OperatorSelector,
    Stopwatch, WasteScale,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBMIT_ERROR = 'Failed to submit stage. Please try again.'
SUBMISSION_IN_PROGRESS = 'Submission already in progress'


@dataclass(frozen=True)
class SubmissionResult:
    success: bool
    errors: tuple = ()
    payload: Optional[dict] = None
    # Whatever on_submit returned
    result: Any = None


@dataclass(frozen=True)
class StageContext:
    """Everything a factory needs to build the executor for the current step"""
    input_qty: float = 0
    work_center_cost_per_hour: int = 0
    work_center_id: Optional[int] = None
    expected_yield_percent: Optional[float] = None
    expected_qty: float = 0
    batch_number: str = ''
    on_submit: Optional[Callable] = None
    equipment_loader: Optional[Callable] = None
    clock: Optional[Callable] = None
    ticker: Any = None


def _number(value):
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _timer_fields(stopwatch):
    if stopwatch is None:
        return {'start_time': None, 'end_time': None, 'duration_minutes': 0}
    state = stopwatch.state
    return {
        'start_time': state.start_time,
        'end_time': state.end_time,
        'duration_minutes': state.duration_minutes,
    }


def _replay_timer(form, allow_pause=True):
    """Stopped Stopwatch rebuilt from a posted {'start_time', 'end_time', 'pauses'} dict"""
    pauses = [(p['paused_at'], p['resumed_at']) for p in form.get('pauses') or []]
    if pauses and not allow_pause:
        raise ValueError("Pausing is not allowed for this stage")
    return Stopwatch.replay(form['start_time'], form['end_time'], pauses, allow_pause=allow_pause)


class StageExecutor:
    """Submission flow shared by every executor"""
    stage_type = None
    display_name = ''

    def __init__(self, on_submit=None, clock=None, ticker=None):
        self.on_submit = on_submit
        self.clock = clock
        self.ticker = ticker
        self.is_submitting = False
        self.validation_errors = []
        self.submit_error = None
        self.stopwatch = None

    def validate(self):
        """List of failing messages; empty when the form can be submitted"""
        raise NotImplementedError

    def build_payload(self):
        raise NotImplementedError

    def apply_form(self, data):
        """Load a posted form (already type-checked) into the widgets"""
        raise NotImplementedError

    def preview(self):
        errors = self.validate()
        return {
            'stage_type': self.stage_type,
            'display_name': self.display_name,
            'validation_errors': errors,
            'can_submit': not errors,
        }

    def submit(self):
        """
        Validate, then pass the payload to on_submit.

        The callback is not called when validation fails. A callback that
        raises, or returns an envelope with success=False, gives a failed
        result carrying its message; the form is left as it was so the
        operator can retry.
        """
        if self.is_submitting:
            return SubmissionResult(success=False, errors=(SUBMISSION_IN_PROGRESS,))

        errors = self.validate()
        self.validation_errors = list(errors)
        if errors:
            return SubmissionResult(success=False, errors=tuple(errors))

        payload = self.build_payload()
        if self.on_submit is None:
            return SubmissionResult(success=True, payload=payload)

        self.is_submitting = True
        self.submit_error = None
        try:
            result = self.on_submit(payload)
        except Exception as e:
            logger.error(f"Submission of {self.stage_type} stage failed: {str(e)}", exc_info=True)
            self.submit_error = str(e) or DEFAULT_SUBMIT_ERROR
            return SubmissionResult(success=False, errors=(self.submit_error,), payload=payload)
        finally:
            self.is_submitting = False

        if isinstance(result, Mapping) and result.get('success') is False:
            self.submit_error = result.get('error') or DEFAULT_SUBMIT_ERROR
            return SubmissionResult(success=False, errors=(self.submit_error,), payload=payload, result=result)
        return SubmissionResult(success=True, payload=payload, result=result)

    def close(self):
        if self.stopwatch is not None:
            self.stopwatch.close()


# ---------------------------------------------------------------------------
# Configuration-driven executor
# ---------------------------------------------------------------------------

def rule_passes(rule, value, snapshot):
    """Evaluate one ValidationRule against a form snapshot"""
    if rule.type == 'required':
        return bool(value)

    if rule.type == 'range':
        # Non-numeric values are left to 'required'
        if not _number(value):
            return True
        if rule.min is not None and value < rule.min:
            return False
        if rule.max is not None and value > rule.max:
            return False
        return True

    if rule.type == 'timer_status':
        return value is not None and value.can_submit

    if rule.type == 'yield_range':
        if not snapshot.get('input_qty'):
            return True
        yield_percent = snapshot.get('yield', 0)
        if rule.min is not None and yield_percent < rule.min:
            return False
        if rule.max is not None and yield_percent > rule.max:
            return False
        return True

    if rule.type == 'custom':
        if rule.custom_validator is None:
            return True
        try:
            return bool(rule.custom_validator(value, snapshot))
        except Exception:
            logger.warning(f"Custom validator for '{rule.field}' raised; treating as failed", exc_info=True)
            return False

    return True


class GenericStageExecutor(StageExecutor):
    """
    Executor built from a StageConfiguration.

    Only the widgets the configuration lists are created. validate() checks
    every rule in order and returns all failing messages.
    """

    def __init__(self, config, input_qty=0, work_center_cost_per_hour=0, work_center_id=None,
                 equipment_loader=None, on_submit=None, clock=None, ticker=None):
        super().__init__(on_submit=on_submit, clock=clock, ticker=ticker)
        self.config = config
        self.stage_type = config.stage_type
        self.display_name = config.display_name
        self.input_qty = max(0, input_qty or 0)
        self.work_center_cost_per_hour = work_center_cost_per_hour or 0
        self.work_center_id = work_center_id
        self.output_qty = 0

        self.operator = OperatorSelector() if config.has_widget('operator') else None
        self.equipment = None
        if config.has_widget('equipment_unit'):
            self.equipment = EquipmentUnitSelector(
                work_center_id=work_center_id,
                loader=equipment_loader,
                input_batch_size=self.input_qty,
            )
            self.equipment.load()
        stopwatch_widget = config.widget('stopwatch')
        if stopwatch_widget is not None:
            self.stopwatch = Stopwatch(
                clock=clock,
                ticker=ticker,
                allow_pause=stopwatch_widget.config.get('allow_pause', True),
            )
        self.materials = MaterialsWidget() if config.has_widget('materials') else None
        self.waste = None
        if config.has_widget('waste'):
            self.waste = WasteScale(self.input_qty, expected_waste_percent=config.expected_waste_percent)
        self.batch_quality = BatchQuality() if config.has_widget('batch_quality') else None

    def set_output_qty(self, value):
        self.output_qty = max(0, value or 0)

    @property
    def effective_output_qty(self):
        if self.config.has_widget('output'):
            return self.output_qty
        if self.waste is not None:
            return self.waste.output_qty
        # No quantity widgets: the stage passes its input through
        return self.input_qty

    @property
    def yield_percent(self):
        if self.input_qty <= 0:
            return 0
        return self.effective_output_qty / self.input_qty * 100

    @property
    def yield_status_ok(self):
        band = self.config.yield_band()
        if band is None or self.input_qty <= 0:
            return True
        low, high = band
        return low <= self.yield_percent <= high

    @property
    def show_yield_warning(self):
        return self.config.expected_yield is not None and self.input_qty > 0 and not self.yield_status_ok

    @property
    def duration_minutes(self):
        return self.stopwatch.state.duration_minutes if self.stopwatch else 0

    def snapshot(self):
        """Current value of every form field, keyed the way ValidationRule.field names them"""
        return {
            'operator': self.operator.operator_id if self.operator else None,
            'operator_name': self.operator.operator_name if self.operator else '',
            'equipment': self.equipment.selected_unit_id if self.equipment else None,
            'timer': self.stopwatch.state if self.stopwatch else None,
            'input_qty': self.input_qty,
            'output_qty': self.effective_output_qty,
            'yield': self.yield_percent,
            'duration_minutes': self.duration_minutes,
            'materials': self.materials.lines if self.materials else (),
            'waste_qty': self.waste.waste_qty if self.waste else 0,
            'waste_reasons': self.waste.waste_reasons if self.waste else (),
            'quality_metrics': self.batch_quality.metrics if self.batch_quality else None,
        }

    def validate(self):
        snapshot = self.snapshot()
        return [
            rule.error_message
            for rule in self.config.validations
            if not rule_passes(rule, snapshot.get(rule.field), snapshot)
        ]

    def cost_context(self):
        return CostContext(
            duration_minutes=self.duration_minutes,
            hourly_rate=self.work_center_cost_per_hour,
            output_qty=self.effective_output_qty,
            materials=self.materials.lines if self.materials else (),
        )

    @property
    def cost(self):
        """Stage cost from the configured formula; 0 when there is none or it fails"""
        formula = self.config.cost_calculation.formula
        if formula is None:
            return 0
        try:
            return formula(self.cost_context())
        except Exception:
            logger.warning(f"Cost formula for {self.stage_type} failed; using 0", exc_info=True)
            return 0

    def build_payload(self):
        snapshot = self.snapshot()
        metrics = snapshot['quality_metrics']
        payload = {
            'stage_type': self.stage_type,
            'operator_id': snapshot['operator'],
            'operator_name': snapshot['operator_name'],
            'input_qty': self.input_qty,
            'output_qty': snapshot['output_qty'],
            'yield_percent': snapshot['yield'],
            'waste_qty': snapshot['waste_qty'],
            'waste_reasons': list(snapshot['waste_reasons']),
            'cost': self.cost,
            'materials': [line.to_dict() for line in snapshot['materials']],
            'quality_metrics': metrics.to_dict() if metrics is not None and metrics.has_data else None,
            'equipment_unit_id': snapshot['equipment'],
        }
        payload.update(_timer_fields(self.stopwatch))
        return payload

    def apply_form(self, data):
        if self.operator is not None and data.get('operator_id') is not None:
            self.operator.select(data['operator_id'], data.get('operator_name', ''))
        if self.equipment is not None and data.get('equipment_unit_id') is not None:
            self.equipment.select(data['equipment_unit_id'])
        if self.stopwatch is not None and data.get('timer'):
            self.stopwatch = _replay_timer(data['timer'], allow_pause=self.stopwatch.allow_pause)
        if data.get('output_qty') is not None:
            self.set_output_qty(data['output_qty'])
        if self.materials is not None:
            for line in data.get('materials') or []:
                self.materials.add_material(line['id'], line.get('name', ''), line['qty'], line.get('unit_cost', 0))
        if self.waste is not None:
            if data.get('waste_qty') is not None:
                self.waste.set_waste_qty(data['waste_qty'])
            if data.get('waste_reasons'):
                self.waste.set_reasons(data['waste_reasons'])
        if self.batch_quality is not None and data.get('quality_metrics'):
            self.batch_quality.update(**data['quality_metrics'])

    def preview(self):
        data = super().preview()
        expected = self.config.expected_yield
        data.update(
            input_qty=self.input_qty,
            output_qty=self.effective_output_qty,
            yield_percent=self.yield_percent,
            yield_status=asdict(yield_status(self.yield_percent, expected)) if expected is not None else None,
            show_yield_warning=self.show_yield_warning,
            duration_minutes=self.duration_minutes,
            duration_display=format_duration(self.duration_minutes),
            cost=self.cost,
            cost_display=format_currency(self.cost),
        )
        if self.waste is not None:
            status = self.waste.status
            data['waste'] = {
                'waste_qty': self.waste.waste_qty,
                'waste_percent': self.waste.waste_percent,
                'status': status.status,
                'message': status.message,
            }
        if self.equipment is not None:
            data['capacity_utilization'] = self.equipment.capacity_utilization()
        if self.batch_quality is not None:
            data['quality_rating'] = self.batch_quality.overall_rating()
        return data


# ---------------------------------------------------------------------------
# Legacy executors
# ---------------------------------------------------------------------------

class LegacyStageExecutor(StageExecutor):
    """Fixed-form executor; validation stops at the first failing check"""

    def __init__(self, on_submit=None, clock=None, ticker=None):
        super().__init__(on_submit=on_submit, clock=clock, ticker=ticker)
        self.operator = OperatorSelector()

    def first_error(self):
        raise NotImplementedError

    def validate(self):
        message = self.first_error()
        return [message] if message else []

    def _apply_operator(self, data):
        if data.get('operator_id') is not None:
            self.operator.select(data['operator_id'], data.get('operator_name', ''))

    def _operator_fields(self):
        return {
            'operator_id': self.operator.operator_id,
            'operator_name': self.operator.operator_name,
        }


class WasteTrackingMixin:
    """Shared by the legacy stages that weigh waste against their input"""
    max_waste_percent = None
    waste_limit_message = ''

    def waste_error(self):
        if self.waste.waste_percent > self.max_waste_percent:
            return self.waste_limit_message
        if self.waste.waste_qty > 0 and not self.waste.waste_reasons:
            return 'Please specify waste reasons when waste is recorded'
        return None

    def _apply_waste(self, data):
        if data.get('waste_qty') is not None:
            self.waste.set_waste_qty(data['waste_qty'])
        if data.get('waste_reasons'):
            self.waste.set_reasons(data['waste_reasons'])

    def _waste_fields(self):
        return {
            'input_qty': self.waste.input_qty,
            'output_qty': self.waste.output_qty,
            'waste_qty': self.waste.waste_qty,
            'waste_percent': self.waste.waste_percent,
            'waste_reasons': list(self.waste.waste_reasons),
            'yield_percent': 100 - self.waste.waste_percent if self.waste.input_qty > 0 else 0,
        }


class CleaningStageExecutor(WasteTrackingMixin, LegacyStageExecutor):
    stage_type = 'cleaning'
    display_name = 'Cleaning & Washing'
    max_waste_percent = 20
    waste_limit_message = 'Waste percentage exceeds 20% - review production quality'

    def __init__(self, input_qty=0, expected_yield_percent=95, **kwargs):
        super().__init__(**kwargs)
        self.expected_yield_percent = expected_yield_percent
        self.waste = WasteScale(input_qty, expected_waste_percent=100 - expected_yield_percent)

    @property
    def input_qty(self):
        return self.waste.input_qty

    def set_input_qty(self, value):
        self.waste.set_input_qty(value)

    def first_error(self):
        if not self.operator.operator_id:
            return 'Please select an operator'
        if self.waste.input_qty <= 0 or self.waste.output_qty <= 0:
            return 'Please enter input quantity and waste information'
        return self.waste_error()

    def build_payload(self):
        return {'stage_type': self.stage_type, **self._operator_fields(), **self._waste_fields()}

    def apply_form(self, data):
        self._apply_operator(data)
        if data.get('input_qty') is not None:
            self.set_input_qty(data['input_qty'])
        self._apply_waste(data)


CUTTING_METHODS = [
    ('slice', 'Thin slices (e.g., 5mm)'),
    ('dice', 'Cubic pieces (e.g., 10x10mm)'),
    ('halves', 'Cut fruit in half'),
    ('quarters', 'Cut into quarters'),
    ('custom', 'Other cutting method'),
]


class CuttingPreparationStageExecutor(WasteTrackingMixin, LegacyStageExecutor):
    stage_type = 'cutting'
    display_name = 'Cutting & Preparation'
    max_waste_percent = 25
    waste_limit_message = 'Waste percentage exceeds 25% - review cutting quality'
    # Yield may fall to this share of the expected yield
    min_yield_ratio = 0.95

    def __init__(self, input_qty=0, expected_yield_percent=85, **kwargs):
        super().__init__(**kwargs)
        self.expected_yield_percent = expected_yield_percent
        self.waste = WasteScale(input_qty, expected_waste_percent=100 - expected_yield_percent)
        self.cutting_method = 'slice'
        self.target_size = ''

    def set_cutting_method(self, method):
        if method not in dict(CUTTING_METHODS):
            raise ValueError(f"Unknown cutting method: {method}")
        self.cutting_method = method

    @property
    def yield_percent(self):
        if self.waste.input_qty <= 0:
            return 0
        return self.waste.output_qty / self.waste.input_qty * 100

    def first_error(self):
        if not self.operator.operator_id:
            return 'Please select an operator'
        if self.waste.input_qty <= 0:
            return 'Input quantity is invalid'
        if self.waste.output_qty <= 0:
            return 'Please enter output/waste information'
        waste_message = self.waste_error()
        if waste_message:
            return waste_message
        if self.yield_percent < self.expected_yield_percent * self.min_yield_ratio:
            return (
                f"Yield {self.yield_percent:.1f}% is below expected "
                f"{self.expected_yield_percent}% - check equipment settings"
            )
        if self.cutting_method != 'custom' and not self.target_size.strip():
            return 'Please specify target size for cutting'
        return None

    def build_payload(self):
        return {
            'stage_type': self.stage_type,
            **self._operator_fields(),
            **self._waste_fields(),
            'cutting_method': self.cutting_method,
            'target_size': self.target_size,
        }

    def apply_form(self, data):
        self._apply_operator(data)
        self._apply_waste(data)
        if data.get('cutting_method'):
            self.set_cutting_method(data['cutting_method'])
        if data.get('target_size') is not None:
            self.target_size = data['target_size']


DEFAULT_MIXING_BOM = (
    {'id': 1, 'name': 'Cinnamon Powder', 'standard_qty_per_unit': 0.005},
    {'id': 2, 'name': 'Sugar', 'standard_qty_per_unit': 0.01},
    {'id': 3, 'name': 'Citric Acid', 'standard_qty_per_unit': 0.002},
)


class MixingStageExecutor(LegacyStageExecutor):
    stage_type = 'mixing'
    display_name = 'Mixing & Blending'

    def __init__(self, input_qty=0, bom_items=DEFAULT_MIXING_BOM, **kwargs):
        super().__init__(**kwargs)
        self.input_qty = max(0, input_qty or 0)
        self.bom_items = {item['id']: item for item in bom_items}
        self.materials = MaterialsWidget()
        self.output_qty = 0

    def add_material(self, bom_item_id):
        return self.materials.add_bom_item(self.bom_items[bom_item_id], self.input_qty)

    def set_output_qty(self, value):
        self.output_qty = max(0, value or 0)

    @property
    def suggested_output_qty(self):
        """Input plus whatever was added to it"""
        return self.input_qty + sum(line.qty for line in self.materials.lines)

    def first_error(self):
        if not self.operator.operator_id:
            return 'Please select an operator'
        if self.input_qty <= 0 or self.output_qty <= 0:
            return 'Please enter input and output quantities'
        return None

    def build_payload(self):
        return {
            'stage_type': self.stage_type,
            **self._operator_fields(),
            'input_qty': self.input_qty,
            'output_qty': self.output_qty,
            'yield_percent': self.output_qty / self.input_qty * 100 if self.input_qty > 0 else 0,
            'additional_materials': [
                {'bom_item_id': line.id, 'actual_qty': line.qty} for line in self.materials.lines
            ],
            'materials_variances': [
                {**line.to_dict(), 'variance_band': line.variance_band} for line in self.materials.lines
            ],
        }

    def apply_form(self, data):
        self._apply_operator(data)
        for entry in data.get('additional_materials') or []:
            bom_item_id = entry['bom_item_id']
            if bom_item_id not in self.bom_items:
                raise ValueError(f"Unknown BOM item: {bom_item_id}")
            self.add_material(bom_item_id)
            self.materials.update_qty(bom_item_id, entry['actual_qty'])
        if data.get('output_qty') is not None:
            self.set_output_qty(data['output_qty'])


class SublimationStageExecutor(LegacyStageExecutor):
    stage_type = 'sublimation'
    display_name = 'Sublimation (Freeze-Drying)'
    # Accepted yield as a share of the expected yield
    yield_band = (0.7, 1.5)

    def __init__(self, input_qty=0, work_center_cost_per_hour=0, expected_yield_percent=10, **kwargs):
        super().__init__(**kwargs)
        self.input_qty = max(0, input_qty or 0)
        self.work_center_cost_per_hour = work_center_cost_per_hour or 0
        self.expected_yield_percent = expected_yield_percent
        self.stopwatch = Stopwatch(clock=self.clock, ticker=self.ticker)
        self.output_qty = 0

    def set_output_qty(self, value):
        self.output_qty = max(0, value or 0)

    @property
    def yield_percent(self):
        if self.input_qty <= 0:
            return 0
        return self.output_qty / self.input_qty * 100

    @property
    def electricity_cost(self):
        minutes = self.stopwatch.state.duration_minutes
        if not minutes or not self.work_center_cost_per_hour:
            return 0
        return round_half_up((self.work_center_cost_per_hour / 60) * minutes)

    def first_error(self):
        state = self.stopwatch.state
        if not self.operator.operator_id:
            return 'Please select an operator'
        if self.output_qty <= 0 or not state.can_submit:
            return 'Please enter output quantity and stop the timer'
        if state.start_time is None or state.end_time is None:
            return 'Timer must be started and stopped'
        low, high = self.yield_band
        if self.yield_percent < self.expected_yield_percent * low:
            return (
                f"Yield too low ({self.yield_percent:.1f}% vs expected "
                f"~{self.expected_yield_percent}%) - check freeze-dryer settings"
            )
        if self.yield_percent > self.expected_yield_percent * high:
            return (
                f"Yield too high ({self.yield_percent:.1f}% vs expected "
                f"~{self.expected_yield_percent}%) - verify output weight"
            )
        return None

    def build_payload(self):
        return {
            'stage_type': self.stage_type,
            **self._operator_fields(),
            'input_qty': self.input_qty,
            'output_qty': self.output_qty,
            'yield_percent': self.yield_percent,
            'waste_qty': max(0, self.input_qty - self.output_qty),
            'waste_reasons': [],
            'electricity_cost': self.electricity_cost,
            'cost': self.electricity_cost,
            **_timer_fields(self.stopwatch),
        }

    def apply_form(self, data):
        self._apply_operator(data)
        if data.get('timer'):
            self.stopwatch = _replay_timer(data['timer'])
        if data.get('output_qty') is not None:
            self.set_output_qty(data['output_qty'])


INSPECTION_CHECKS = [
    ('visual_quality', 'Visual quality acceptable'),
    ('temperature_ok', 'Temperature within range'),
    ('contamination_free', 'No contamination'),
    ('packaging_intact', 'Packaging intact'),
]


class ReceivingInspectionStageExecutor(LegacyStageExecutor):
    stage_type = 'receiving'
    display_name = 'Receiving & Inspection'

    def __init__(self, expected_qty=0, batch_number='', supplier_name='', **kwargs):
        super().__init__(**kwargs)
        self.batch_number = batch_number
        self.supplier_name = supplier_name
        self.input_qty = max(0, expected_qty or 0)
        self.rejected_qty = 0
        self.checks = {code: False for code, _ in INSPECTION_CHECKS}
        self.quality_notes = ''

    def set_input_qty(self, value):
        self.input_qty = max(0, value or 0)
        self.rejected_qty = min(self.rejected_qty, self.input_qty)

    def set_rejected_qty(self, value):
        self.rejected_qty = min(max(0, value or 0), self.input_qty)

    def set_check(self, code, passed):
        if code not in self.checks:
            raise ValueError(f"Unknown inspection check: {code}")
        self.checks[code] = bool(passed)

    @property
    def accepted_qty(self):
        return max(0, self.input_qty - self.rejected_qty)

    @property
    def all_checks_passed(self):
        return all(self.checks.values())

    def first_error(self):
        if not self.operator.operator_id:
            return 'Please select an operator'
        if self.input_qty <= 0:
            return 'Please enter input quantity'
        if not self.all_checks_passed:
            return 'All quality checks must pass to accept the batch'
        if not self.quality_notes.strip():
            return 'Please add quality inspection notes'
        return None

    def build_payload(self):
        return {
            'stage_type': self.stage_type,
            **self._operator_fields(),
            'input_qty': self.input_qty,
            'accepted_qty': self.accepted_qty,
            'rejected_qty': self.rejected_qty,
            'output_qty': self.accepted_qty,
            'waste_qty': self.rejected_qty,
            'yield_percent': self.accepted_qty / self.input_qty * 100 if self.input_qty > 0 else 0,
            'quality_check_passed': self.all_checks_passed,
            'quality_notes': self.quality_notes,
            'inspection_checks': dict(self.checks),
            'batch_number': self.batch_number,
        }

    def apply_form(self, data):
        self._apply_operator(data)
        if data.get('input_qty') is not None:
            self.set_input_qty(data['input_qty'])
        if data.get('rejected_qty') is not None:
            self.set_rejected_qty(data['rejected_qty'])
        for code, passed in (data.get('inspection_checks') or {}).items():
            self.set_check(code, passed)
        if data.get('quality_notes') is not None:
            self.quality_notes = data['quality_notes']


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def _generic_factory(config, ctx):
    return GenericStageExecutor(
        config,
        input_qty=ctx.input_qty,
        work_center_cost_per_hour=ctx.work_center_cost_per_hour,
        work_center_id=ctx.work_center_id,
        equipment_loader=ctx.equipment_loader,
        on_submit=ctx.on_submit,
        clock=ctx.clock,
        ticker=ctx.ticker,
    )


def _callbacks(ctx):
    return {'on_submit': ctx.on_submit, 'clock': ctx.clock, 'ticker': ctx.ticker}


def _expected_yield(ctx, default):
    return ctx.expected_yield_percent if ctx.expected_yield_percent is not None else default


LEGACY_FACTORIES = {
    'receiving': lambda ctx: ReceivingInspectionStageExecutor(
        expected_qty=ctx.expected_qty, batch_number=ctx.batch_number, **_callbacks(ctx),
    ),
    'cleaning': lambda ctx: CleaningStageExecutor(
        input_qty=ctx.input_qty, expected_yield_percent=_expected_yield(ctx, 95), **_callbacks(ctx),
    ),
    'cutting': lambda ctx: CuttingPreparationStageExecutor(
        input_qty=ctx.input_qty, expected_yield_percent=_expected_yield(ctx, 85), **_callbacks(ctx),
    ),
    'mixing': lambda ctx: MixingStageExecutor(input_qty=ctx.input_qty, **_callbacks(ctx)),
    'sublimation': lambda ctx: SublimationStageExecutor(
        input_qty=ctx.input_qty,
        work_center_cost_per_hour=ctx.work_center_cost_per_hour,
        expected_yield_percent=_expected_yield(ctx, 10),
        **_callbacks(ctx),
    ),
}


class StageExecutorRegistry:
    """
    stage type -> executor factory.

    Types with a stage configuration get a GenericStageExecutor; the others
    fall back to their legacy executor. Built once; lookups never raise.
    """

    def __init__(self, stage_configs, config_types, legacy_factories=None):
        table = dict(legacy_factories if legacy_factories is not None else LEGACY_FACTORIES)
        for stage_type, config_type in config_types.items():
            config = stage_configs.get(config_type)
            if config is not None:
                table[stage_type] = partial(_generic_factory, config)
        self._factories = table

    def stage_types(self):
        return sorted(self._factories)

    def __contains__(self, stage_type):
        return stage_type in self._factories

    def is_config_driven(self, stage_type):
        factory = self._factories.get(stage_type)
        return isinstance(factory, partial) and factory.func is _generic_factory

    def create(self, stage_type, ctx):
        """New executor for stage_type, or None when nothing handles it"""
        factory = self._factories.get(stage_type)
        if factory is None:
            return None
        return factory(ctx)
