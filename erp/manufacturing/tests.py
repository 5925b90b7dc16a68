"""
Test suite for the manufacturing module
Tests: stage widgets, configuration-driven and legacy executors, the production
orchestrator, stage submission costing and the manufacturing API
"""
import threading
import time
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO

from django.apps import apps
from django.core.cache import cache
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status

from erp.core.models import AuditLog
from erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from erp.manufacturing.display import (
    format_currency, format_duration, round_half_up, traveler_progress, traveler_steps,
    yield_status,
)
from erp.manufacturing.executors import (
    DEFAULT_SUBMIT_ERROR, SUBMISSION_IN_PROGRESS, CleaningStageExecutor,
    CuttingPreparationStageExecutor, GenericStageExecutor, MixingStageExecutor,
    ReceivingInspectionStageExecutor, StageContext, StageExecutorRegistry,
    SublimationStageExecutor,
)
from erp.manufacturing.models import EquipmentUnit, WorkOrder, WorkOrderStep, WorkOrderStepCost
from erp.manufacturing.orchestrator import (
    CONFIG_TYPES, ProductionGateway, ProductionStageExecution, config_type_for, resolve_stage_type,
)
from erp.manufacturing.serializers import StagePreviewSerializer
from erp.manufacturing.services import (
    ProductionStageError, get_active_operators, get_equipment_units, get_step_input_qty,
    get_work_order_steps, submit_production_stage, update_equipment_operating_hours,
)
from erp.manufacturing.stage_configurations import (
    CLEANING_CONFIG, MIXING_CONFIG, OPERATOR_REQUIRED, OUTPUT_POSITIVE, SUBLIMATION_CONFIG,
    CostCalculation, CostContext, StageConfigRegistry, StageConfiguration, StageWidget,
    ValidationRule, duration_cost, get_available_stage_types, get_stage_config,
    materials_cost,
)
from erp.manufacturing.widgets import (
    BatchQuality, EquipmentUnitSelector, IntervalTicker, MaterialsWidget, Stopwatch,
    TimerStateError, WasteScale, waste_status,
)

T0 = datetime(2026, 1, 10, 8, 0, tzinfo=dt_timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand"""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingTicker:
    """Ticker stand-in that only records whether it is running"""

    def __init__(self):
        self.active = False
        self.starts = 0
        self.callback = None

    def start(self, callback):
        self.active = True
        self.starts += 1
        self.callback = callback

    def cancel(self):
        self.active = False


def unit_loader(*units):
    """Equipment loader returning the given units for any work center"""
    def load(work_center_id):
        return {'success': True, 'units': list(units)}
    return load


FREEZE_DRYER = {'id': 7, 'unit_code': 'FD-01', 'chamber_capacity': 50.0}


# ---------------------------------------------------------------------------
# Widgets
# ---------------------------------------------------------------------------

class StopwatchTests(SimpleTestCase):
    """Test stopwatch transitions, elapsed time and pause accounting"""

    def setUp(self):
        self.clock = FakeClock()
        self.ticker = RecordingTicker()
        self.stopwatch = Stopwatch(clock=self.clock, ticker=self.ticker)

    def test_elapsed_excludes_paused_time(self):
        """Test elapsed time leaves out the paused interval"""
        self.stopwatch.start()
        self.clock.advance(minutes=10)
        self.stopwatch.pause()
        self.clock.advance(minutes=5)
        self.stopwatch.resume()
        self.clock.advance(minutes=20)
        state = self.stopwatch.stop()

        self.assertEqual(state.elapsed_ms, 30 * 60000)
        self.assertEqual(state.paused_duration, 5 * 60000)
        self.assertEqual(state.duration_minutes, 30)
        self.assertEqual(len(state.pause_history), 1)
        self.assertEqual(state.pause_history[0].resumed_at, T0 + timedelta(minutes=15))

    def test_stop_while_paused_closes_open_pause(self):
        """Test stopping a paused timer closes the pause at the stop time"""
        self.stopwatch.start()
        self.clock.advance(minutes=1)
        self.stopwatch.pause()
        self.clock.advance(minutes=2)
        state = self.stopwatch.stop()

        self.assertEqual(state.elapsed_ms, 60000)
        self.assertEqual(state.paused_duration, 120000)
        self.assertEqual(state.pause_history[-1].resumed_at, state.end_time)

    def test_can_submit_requires_stopped_with_elapsed_time(self):
        """Test can_submit is only true for a stopped timer that ran"""
        self.assertFalse(self.stopwatch.can_submit)
        self.stopwatch.start()
        self.clock.advance(seconds=5)
        self.stopwatch.tick()
        self.assertFalse(self.stopwatch.can_submit)
        self.stopwatch.stop()
        self.assertTrue(self.stopwatch.can_submit)

    def test_zero_elapsed_cannot_submit(self):
        """Test a timer stopped without any elapsed time cannot be submitted"""
        self.stopwatch.start()
        self.stopwatch.stop()
        self.assertFalse(self.stopwatch.can_submit)

    def test_invalid_transitions_raise(self):
        """Test transitions not allowed from the current status"""
        with self.assertRaises(TimerStateError):
            self.stopwatch.pause()
        with self.assertRaises(TimerStateError):
            self.stopwatch.stop()
        with self.assertRaises(TimerStateError):
            self.stopwatch.reset()
        self.stopwatch.start()
        with self.assertRaises(TimerStateError):
            self.stopwatch.start()
        with self.assertRaises(TimerStateError):
            self.stopwatch.resume()

    def test_end_time_set_once(self):
        """Test a stopped timer cannot be stopped again"""
        self.stopwatch.start()
        self.clock.advance(minutes=3)
        end_time = self.stopwatch.stop().end_time
        self.clock.advance(minutes=3)
        with self.assertRaises(TimerStateError):
            self.stopwatch.stop()
        self.assertEqual(self.stopwatch.state.end_time, end_time)

    def test_start_from_paused_resumes(self):
        """Test start() on a paused timer behaves as resume"""
        self.stopwatch.start()
        self.clock.advance(minutes=1)
        self.stopwatch.pause()
        self.clock.advance(minutes=1)
        state = self.stopwatch.start()
        self.assertEqual(state.status, 'running')
        self.assertEqual(state.paused_duration, 60000)

    def test_toggle_pause(self):
        """Test toggle_pause alternates between running and paused"""
        self.stopwatch.start()
        self.assertEqual(self.stopwatch.toggle_pause().status, 'paused')
        self.assertEqual(self.stopwatch.toggle_pause().status, 'running')

    def test_pause_disabled(self):
        """Test pausing a timer that does not allow it"""
        stopwatch = Stopwatch(clock=self.clock, allow_pause=False)
        stopwatch.start()
        with self.assertRaises(TimerStateError):
            stopwatch.pause()

    def test_tick_only_updates_while_running(self):
        """Test tick refreshes elapsed time only in the running state"""
        self.stopwatch.start()
        self.clock.advance(seconds=90)
        state = self.stopwatch.tick()
        self.assertEqual(state.elapsed_ms, 90000)
        self.assertEqual(state.display_time, '00:01:30')

        self.stopwatch.pause()
        self.clock.advance(minutes=10)
        self.assertEqual(self.stopwatch.tick().elapsed_ms, 90000)

    def test_ticker_follows_running_state(self):
        """Test the ticker runs only while the timer is running"""
        self.stopwatch.start()
        self.assertTrue(self.ticker.active)
        self.stopwatch.pause()
        self.assertFalse(self.ticker.active)
        self.stopwatch.resume()
        self.assertTrue(self.ticker.active)
        self.assertEqual(self.ticker.callback, self.stopwatch.tick)
        self.stopwatch.stop()
        self.assertFalse(self.ticker.active)

    def test_close_releases_ticker(self):
        """Test leaving the context manager cancels the ticker"""
        with Stopwatch(clock=self.clock, ticker=self.ticker) as stopwatch:
            stopwatch.start()
            self.assertTrue(self.ticker.active)
        self.assertFalse(self.ticker.active)

    def test_reset_returns_to_idle(self):
        """Test reset clears every field"""
        self.stopwatch.start()
        self.clock.advance(minutes=2)
        self.stopwatch.stop()
        state = self.stopwatch.reset()
        self.assertEqual(state.status, 'idle')
        self.assertEqual(state.elapsed_ms, 0)
        self.assertIsNone(state.start_time)
        self.assertEqual(state.pause_history, ())

    def test_on_change_receives_snapshots(self):
        """Test every transition pushes a snapshot"""
        snapshots = []
        stopwatch = Stopwatch(clock=self.clock, on_change=snapshots.append)
        stopwatch.start()
        self.clock.advance(minutes=1)
        stopwatch.stop()
        self.assertEqual([s.status for s in snapshots], ['running', 'stopped'])

    def test_electricity_cost(self):
        """Test electricity cost over the elapsed time"""
        self.stopwatch.start()
        self.clock.advance(hours=2)
        self.stopwatch.stop()
        self.assertEqual(self.stopwatch.electricity_cost(120000), 240000)

    def test_electricity_cost_rounds_half_up(self):
        """Test half a minor unit rounds up"""
        stopwatch = Stopwatch.replay(T0, T0 + timedelta(minutes=30))
        self.assertEqual(stopwatch.electricity_cost(1), 1)
        self.assertEqual(stopwatch.electricity_cost(5), 3)

    def test_replay_rebuilds_stopped_timer(self):
        """Test replaying recorded timestamps"""
        stopwatch = Stopwatch.replay(
            T0, T0 + timedelta(hours=2),
            [(T0 + timedelta(minutes=30), T0 + timedelta(minutes=45))],
        )
        self.assertEqual(stopwatch.status, 'stopped')
        self.assertEqual(stopwatch.state.duration_minutes, 105)
        self.assertTrue(stopwatch.can_submit)

    def test_replay_rejects_inverted_period(self):
        """Test replay with an end before the start"""
        with self.assertRaises(ValueError):
            Stopwatch.replay(T0, T0 - timedelta(minutes=1))


class IntervalTickerTests(SimpleTestCase):
    """Test the thread-backed ticker driving a running stopwatch"""

    def wait_for(self, condition, timeout=2.0):
        deadline = time.monotonic() + timeout
        while not condition():
            if time.monotonic() > deadline:
                self.fail('Ticker did not tick in time')
            time.sleep(0.005)

    def assert_released(self, action, ticker, ticks):
        """Run action and check the ticker thread ends and ticks stop"""
        thread = ticker.thread
        action()
        thread.join(1)
        self.assertFalse(thread.is_alive())
        self.assertFalse(ticker.active)
        count = len(ticks)
        time.sleep(0.05)
        self.assertEqual(len(ticks), count)

    def test_ticks_until_cancelled(self):
        """Test the callback runs repeatedly and the thread ends on cancel"""
        baseline = threading.active_count()
        ticks = []
        ticker = IntervalTicker(0.01)
        ticker.start(lambda: ticks.append(1))
        self.assertTrue(ticker.active)
        self.wait_for(lambda: len(ticks) >= 3)
        self.assert_released(ticker.cancel, ticker, ticks)
        self.assertEqual(threading.active_count(), baseline)

    def test_restart_replaces_thread(self):
        """Test starting again stops the previous thread"""
        ticker = IntervalTicker(0.01)
        ticker.start(lambda: None)
        first = ticker.thread
        ticker.start(lambda: None)
        first.join(1)
        self.assertFalse(first.is_alive())
        self.assertTrue(ticker.thread.is_alive())
        ticker.cancel()
        ticker.thread.join(1)

    def test_stopwatch_pause_and_stop_release_ticker(self):
        """Test the stopwatch holds a live ticker only while running"""
        ticks = []
        ticker = IntervalTicker(0.01)
        stopwatch = Stopwatch(ticker=ticker, on_change=ticks.append)
        stopwatch.start()
        self.wait_for(lambda: len(ticks) >= 3)
        self.assert_released(stopwatch.pause, ticker, ticks)

        stopwatch.resume()
        resumed = len(ticks)
        self.wait_for(lambda: len(ticks) >= resumed + 2)
        self.assert_released(stopwatch.stop, ticker, ticks)
        self.assertEqual(stopwatch.status, 'stopped')

    def test_close_releases_running_ticker(self):
        """Test leaving the context manager ends a running ticker"""
        ticks = []
        ticker = IntervalTicker(0.01)
        with Stopwatch(ticker=ticker, on_change=ticks.append) as stopwatch:
            stopwatch.start()
            self.wait_for(lambda: len(ticks) >= 3)
            thread = ticker.thread
        thread.join(1)
        self.assertFalse(thread.is_alive())
        self.assertFalse(ticker.active)
        self.assertEqual(stopwatch.status, 'running')


class WasteScaleTests(SimpleTestCase):
    """Test waste clamping, derived output and status banding"""

    def test_waste_clamped_to_input(self):
        """Test waste never exceeds the input or drops below zero"""
        scale = WasteScale(100)
        scale.set_waste_qty(150)
        self.assertEqual(scale.waste_qty, 100)
        self.assertEqual(scale.output_qty, 0)
        scale.set_waste_qty(-5)
        self.assertEqual(scale.waste_qty, 0)
        self.assertEqual(scale.output_qty, 100)

    def test_output_and_percent_derived(self):
        """Test output and waste percent follow the waste quantity"""
        scale = WasteScale(80)
        scale.set_waste_qty(20)
        self.assertEqual(scale.output_qty, 60)
        self.assertEqual(scale.waste_percent, 25)

    def test_zero_input_has_zero_percent(self):
        """Test waste percent without input"""
        scale = WasteScale(0)
        scale.set_waste_qty(5)
        self.assertEqual(scale.waste_percent, 0)
        self.assertEqual(scale.output_qty, 0)

    def test_lower_input_reclamps_waste(self):
        """Test lowering the input clamps recorded waste"""
        scale = WasteScale(100)
        scale.set_waste_qty(40)
        scale.set_input_qty(30)
        self.assertEqual(scale.waste_qty, 30)

    def test_status_against_expected_waste(self):
        """Test banding relative to the expected waste"""
        self.assertEqual(waste_status(0, 5).message, 'No waste recorded')
        self.assertEqual(waste_status(4, 5).status, 'excellent')
        self.assertEqual(waste_status(8, 5).status, 'normal')
        self.assertEqual(waste_status(14, 5).status, 'acceptable')
        self.assertEqual(waste_status(20, 5).status, 'high')

    def test_status_without_expected_waste(self):
        """Test fallback thresholds"""
        self.assertEqual(waste_status(9).status, 'excellent')
        self.assertEqual(waste_status(12).status, 'acceptable')
        self.assertEqual(waste_status(15).status, 'high')

    def test_reasons(self):
        """Test toggling and setting waste reasons"""
        scale = WasteScale(10)
        scale.toggle_reason('spoilage')
        scale.toggle_reason('trimming')
        scale.toggle_reason('spoilage')
        self.assertEqual(scale.waste_reasons, ('trimming',))
        with self.assertRaises(ValueError):
            scale.toggle_reason('stolen')
        with self.assertRaises(ValueError):
            scale.set_reasons(['damage', 'lost'])


class BatchQualityTests(SimpleTestCase):
    """Test batch quality metrics"""

    def test_out_of_range_values_rejected(self):
        """Test validation on entry"""
        quality = BatchQuality()
        with self.assertRaises(ValueError):
            quality.update(moisture_content=120)
        with self.assertRaises(ValueError):
            quality.update(texture_score=6)
        with self.assertRaises(ValueError):
            quality.update(visual_quality='shiny')

    def test_rating(self):
        """Test overall rating from the entered metrics"""
        quality = BatchQuality()
        self.assertIsNone(quality.overall_rating())
        quality.update(moisture_content=3.5, visual_quality='excellent')
        self.assertEqual(quality.moisture_status(), 'within_target')
        self.assertEqual(quality.overall_rating(), 'good')
        quality.update(color_consistency=5)
        self.assertEqual(quality.overall_rating(), 'excellent')

    def test_to_dict_drops_missing_values(self):
        """Test only entered metrics are serialized"""
        quality = BatchQuality({'moisture_content': 6.0})
        self.assertEqual(quality.metrics.to_dict(), {'moisture_content': 6.0})
        self.assertEqual(quality.moisture_status(), 'slightly_high')


class MaterialsWidgetTests(SimpleTestCase):
    """Test material lines and BOM variance"""

    def test_bom_variance(self):
        """Test variance against the standard quantity"""
        widget = MaterialsWidget()
        line = widget.add_bom_item({'id': 2, 'name': 'Sugar', 'standard_qty_per_unit': 0.01}, 100)
        self.assertAlmostEqual(line.standard_qty, 1.0)
        self.assertEqual(line.variance_band, 'ok')

        widget.update_qty(2, 1.08)
        line = widget.lines[0]
        self.assertAlmostEqual(line.variance_percent, 8.0)
        self.assertEqual(line.variance_band, 'warning')

        widget.update_qty(2, 1.5)
        self.assertEqual(widget.lines[0].variance_band, 'high')

    def test_add_replaces_same_id_and_totals(self):
        """Test adding a material twice keeps one line"""
        widget = MaterialsWidget()
        widget.add_material(1, 'Apples', 10, unit_cost=500)
        widget.add_material(1, 'Apples', 12, unit_cost=500)
        widget.add_material(2, 'Sugar', 2, unit_cost=1000)
        self.assertEqual(len(widget.lines), 2)
        self.assertEqual(widget.total_cost, 8000)
        widget.remove(1)
        self.assertEqual([line.id for line in widget.lines], [2])

    def test_invalid_updates(self):
        """Test negative quantities and unknown lines"""
        widget = MaterialsWidget()
        with self.assertRaises(ValueError):
            widget.add_material(1, 'Apples', -1)
        with self.assertRaises(KeyError):
            widget.update_qty(99, 1)


class EquipmentUnitSelectorTests(SimpleTestCase):
    """Test equipment unit loading and selection"""

    def test_select_loaded_unit(self):
        """Test selecting a listed unit and its capacity utilization"""
        selector = EquipmentUnitSelector(work_center_id=1, loader=unit_loader(FREEZE_DRYER), input_batch_size=40)
        selector.load()
        selector.select(7)
        self.assertEqual(selector.selected_unit['unit_code'], 'FD-01')
        self.assertAlmostEqual(selector.capacity_utilization(), 80.0)

    def test_unknown_unit_rejected(self):
        """Test selecting a unit that was not listed"""
        selector = EquipmentUnitSelector(work_center_id=1, loader=unit_loader(FREEZE_DRYER))
        selector.load()
        with self.assertRaises(ValueError):
            selector.select(8)

    def test_load_failure_recorded(self):
        """Test a failed load keeps the error"""
        selector = EquipmentUnitSelector(
            work_center_id=1,
            loader=lambda work_center_id: {'success': False, 'error': 'Database unavailable'},
        )
        self.assertEqual(selector.load(), [])
        self.assertEqual(selector.error, 'Database unavailable')


# ---------------------------------------------------------------------------
# Stage configurations
# ---------------------------------------------------------------------------

class StageConfigurationTests(SimpleTestCase):
    """Test stage configuration descriptors and the registry"""

    def test_default_registry(self):
        """Test the built-in stage types"""
        self.assertEqual(
            sorted(StageConfigRegistry.default().stage_types()),
            ['CLEANING', 'MIXING', 'PACKING', 'SUBLIMATION'],
        )
        self.assertIsNone(get_stage_config('ROASTING'))
        self.assertIs(get_stage_config('MIXING'), MIXING_CONFIG)

    def test_lookups_read_app_registry(self):
        """Test module lookups answer from the registry built at startup"""
        registry = apps.get_app_config('manufacturing').stage_configs
        self.assertIs(get_stage_config('SUBLIMATION'), registry['SUBLIMATION'])
        self.assertEqual(get_available_stage_types(), registry.stage_types())

    def test_preview_choices_follow_app_registry(self):
        """Test the preview form offers exactly the registered stage types"""
        registry = apps.get_app_config('manufacturing').stage_configs
        field = StagePreviewSerializer().fields['stage_type']
        self.assertEqual(sorted(field.choices), sorted(registry.stage_types()))

    def test_duplicate_stage_type_rejected(self):
        """Test the registry refuses two configurations for one type"""
        with self.assertRaises(ValueError):
            StageConfigRegistry([MIXING_CONFIG, MIXING_CONFIG])

    def test_yield_band(self):
        """Test expected yield and tolerance give the accepted band"""
        low, high = SUBLIMATION_CONFIG.yield_band()
        self.assertAlmostEqual(low, 7)
        self.assertAlmostEqual(high, 13)

    def test_unknown_types_rejected(self):
        """Test widget and rule types are checked"""
        with self.assertRaises(ValueError):
            StageWidget('slider')
        with self.assertRaises(ValueError):
            ValidationRule(field='output_qty', type='regex', error_message='x')

    def test_to_dict_hides_formula(self):
        """Test the presentation form has no callables"""
        data = SUBLIMATION_CONFIG.to_dict()
        self.assertEqual(data['cost_calculation'], 'electricity')
        self.assertEqual(data['widgets'][2], {
            'type': 'stopwatch',
            'required': True,
            'config': {'allow_pause': True, 'track_pause_history': True, 'display_unit': 'hours'},
        })
        self.assertNotIn('custom_validator', data['validations'][0])

    def test_cost_formulas(self):
        """Test the built-in cost formulas"""
        self.assertEqual(duration_cost(CostContext(duration_minutes=90, hourly_rate=60000)), 90000)
        self.assertEqual(duration_cost(CostContext(duration_minutes=0, hourly_rate=60000)), 0)
        widget = MaterialsWidget()
        widget.add_material(1, 'Sugar', 2.5, unit_cost=1000)
        self.assertEqual(materials_cost(CostContext(materials=widget.lines)), 2500)

    def test_cost_formulas_round_half_up(self):
        """Test half a minor unit rounds up in both formulas"""
        self.assertEqual(duration_cost(CostContext(duration_minutes=1, hourly_rate=150)), 3)
        self.assertEqual(duration_cost(CostContext(duration_minutes=1, hourly_rate=30)), 1)
        widget = MaterialsWidget()
        widget.add_material(1, 'Citric acid', 0.5, unit_cost=5)
        self.assertEqual(materials_cost(CostContext(materials=widget.lines)), 3)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------

def mixing_without_materials():
    """MIXING with only operator and output widgets"""
    return StageConfiguration(
        stage_type='MIXING',
        display_name='Mixing',
        icon='blender',
        description='Operator and output only',
        widgets=(StageWidget('operator', required=True), StageWidget('output', required=True)),
        validations=(OPERATOR_REQUIRED, OUTPUT_POSITIVE),
        cost_calculation=CostCalculation(type='materials', formula=materials_cost),
    )


class GenericStageExecutorTests(SimpleTestCase):
    """Test the configuration-driven executor"""

    def setUp(self):
        self.clock = FakeClock()

    def sublimation(self, output_qty=9, on_submit=None):
        executor = GenericStageExecutor(
            SUBLIMATION_CONFIG,
            input_qty=100,
            work_center_cost_per_hour=120000,
            work_center_id=3,
            equipment_loader=unit_loader(FREEZE_DRYER),
            on_submit=on_submit,
            clock=self.clock,
        )
        executor.operator.select(5, 'Aziz Karimov')
        executor.equipment.select(7)
        executor.stopwatch.start()
        self.clock.advance(hours=24)
        executor.stopwatch.stop()
        executor.set_output_qty(output_qty)
        return executor

    def test_only_configured_widgets_created(self):
        """Test widgets missing from the configuration are absent"""
        executor = GenericStageExecutor(MIXING_CONFIG, input_qty=10)
        self.assertIsNotNone(executor.materials)
        self.assertIsNotNone(executor.waste)
        self.assertIsNone(executor.stopwatch)
        self.assertIsNone(executor.equipment)
        self.assertIsNone(executor.batch_quality)

    def test_validate_reports_every_failure(self):
        """Test all failing rules are returned in order"""
        executor = GenericStageExecutor(SUBLIMATION_CONFIG, input_qty=100, clock=self.clock)
        self.assertEqual(executor.validate(), [
            'Please assign an operator',
            'Please select a freeze-dryer unit',
            'Output quantity must be positive',
            'Timer must be stopped before submitting',
            'Yield outside expected range (7-13%). This may indicate equipment issues or measurement errors.',
        ])

    def test_yield_range_boundary(self):
        """Test 9% yield passes and 95% fails the 7-13% rule"""
        self.assertEqual(self.sublimation(output_qty=9).validate(), [])
        errors = self.sublimation(output_qty=95).validate()
        self.assertEqual(len(errors), 1)
        self.assertTrue(errors[0].startswith('Yield outside expected range (7-13%)'))

    def test_running_timer_blocks_submit(self):
        """Test a timer that was not stopped fails the timer rule"""
        executor = GenericStageExecutor(
            SUBLIMATION_CONFIG, input_qty=100, work_center_id=3,
            equipment_loader=unit_loader(FREEZE_DRYER), clock=self.clock,
        )
        executor.operator.select(5, 'Aziz')
        executor.equipment.select(7)
        executor.set_output_qty(10)
        executor.stopwatch.start()
        self.clock.advance(hours=1)
        self.assertEqual(executor.validate(), ['Timer must be stopped before submitting'])

    def test_sublimation_cost_and_payload(self):
        """Test electricity cost and the submitted payload"""
        submitted = []
        executor = self.sublimation(output_qty=10, on_submit=lambda payload: submitted.append(payload) or {'success': True})
        self.assertEqual(executor.cost, 2880000)

        result = executor.submit()
        self.assertTrue(result.success)
        payload = submitted[0]
        self.assertEqual(payload['stage_type'], 'SUBLIMATION')
        self.assertEqual(payload['operator_id'], 5)
        self.assertEqual(payload['equipment_unit_id'], 7)
        self.assertEqual(payload['duration_minutes'], 1440)
        self.assertEqual(payload['start_time'], T0)
        self.assertEqual(payload['end_time'], T0 + timedelta(hours=24))
        self.assertEqual(payload['yield_percent'], 10)
        self.assertEqual(payload['cost'], 2880000)
        self.assertIsNone(payload['quality_metrics'])

    def test_end_to_end_mixing_scenario(self):
        """Test a MIXING stage with operator and output widgets only"""
        submitted = []
        executor = GenericStageExecutor(
            mixing_without_materials(), input_qty=50,
            on_submit=lambda payload: submitted.append(payload),
        )
        executor.operator.select(5, 'Aziz Karimov')
        executor.set_output_qty(55)

        result = executor.submit()
        self.assertTrue(result.success)
        self.assertEqual(submitted[0]['output_qty'], 55)
        self.assertEqual(submitted[0]['input_qty'], 50)
        self.assertEqual(submitted[0]['stage_type'], 'MIXING')
        self.assertEqual(submitted[0]['operator_name'], 'Aziz Karimov')

    def test_mixing_output_without_operator(self):
        """Test output entered but no operator reports only the operator message"""
        calls = []
        executor = GenericStageExecutor(mixing_without_materials(), input_qty=50, on_submit=calls.append)
        executor.set_output_qty(55)
        result = executor.submit()
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ('Please assign an operator',))
        self.assertEqual(calls, [])

    def test_failed_validation_skips_callback(self):
        """Test the callback is not called when validation fails"""
        calls = []
        executor = GenericStageExecutor(mixing_without_materials(), input_qty=50, on_submit=calls.append)
        result = executor.submit()
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ('Please assign an operator', 'Output quantity must be positive'))
        self.assertEqual(executor.validation_errors, list(result.errors))
        self.assertEqual(calls, [])

    def test_formula_error_costs_zero(self):
        """Test a failing cost formula gives 0 and does not block submission"""
        config = StageConfiguration(
            stage_type='PACKING',
            display_name='Packing',
            icon='package',
            description='Broken formula',
            widgets=(StageWidget('operator'), StageWidget('output')),
            validations=(OPERATOR_REQUIRED,),
            cost_calculation=CostCalculation(type='custom', formula=lambda ctx: ctx.output_qty / 0),
        )
        executor = GenericStageExecutor(config, input_qty=10)
        executor.operator.select(1, 'Op')
        executor.set_output_qty(10)
        self.assertEqual(executor.cost, 0)
        result = executor.submit()
        self.assertTrue(result.success)
        self.assertEqual(result.payload['cost'], 0)

    def test_custom_validator(self):
        """Test custom rules, including one that raises"""
        def must_be_even(value, snapshot):
            return value % 2 == 0

        def broken(value, snapshot):
            raise RuntimeError('boom')

        config = StageConfiguration(
            stage_type='PACKING',
            display_name='Packing',
            icon='package',
            description='Custom rules',
            widgets=(StageWidget('output'),),
            validations=(
                ValidationRule(field='output_qty', type='custom', error_message='Output must be even',
                               custom_validator=must_be_even),
                ValidationRule(field='output_qty', type='custom', error_message='Broken check',
                               custom_validator=broken),
            ),
            cost_calculation=CostCalculation(type='labor', formula=duration_cost),
        )
        executor = GenericStageExecutor(config, input_qty=10)
        executor.set_output_qty(3)
        self.assertEqual(executor.validate(), ['Output must be even', 'Broken check'])
        executor.set_output_qty(4)
        self.assertEqual(executor.validate(), ['Broken check'])

    def test_range_rule_ignores_non_numeric(self):
        """Test range rules only apply to numbers"""
        config = StageConfiguration(
            stage_type='PACKING',
            display_name='Packing',
            icon='package',
            description='Range on operator name',
            widgets=(StageWidget('operator'),),
            validations=(ValidationRule(field='operator_name', type='range', min=1, error_message='x'),),
            cost_calculation=CostCalculation(type='labor', formula=duration_cost),
        )
        executor = GenericStageExecutor(config, input_qty=10)
        executor.operator.select(1, 'Aziz')
        self.assertEqual(executor.validate(), [])

    def test_reentrant_submit_refused(self):
        """Test a submit issued while one is pending is refused"""
        inner = []

        def on_submit(payload):
            inner.append(executor.submit())
            return {'success': True}

        executor = GenericStageExecutor(mixing_without_materials(), input_qty=50, on_submit=on_submit)
        executor.operator.select(5, 'Aziz')
        executor.set_output_qty(45)

        outer = executor.submit()
        self.assertTrue(outer.success)
        self.assertFalse(inner[0].success)
        self.assertEqual(inner[0].errors, (SUBMISSION_IN_PROGRESS,))
        self.assertFalse(executor.is_submitting)

    def test_raising_callback_surfaces_message(self):
        """Test a callback exception becomes a failed result and the form can retry"""
        def failing(payload):
            raise RuntimeError('Database unavailable')

        executor = GenericStageExecutor(mixing_without_materials(), input_qty=50, on_submit=failing)
        executor.operator.select(5, 'Aziz')
        executor.set_output_qty(45)

        result = executor.submit()
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ('Database unavailable',))
        self.assertFalse(executor.is_submitting)
        self.assertEqual(executor.output_qty, 45)

        executor.on_submit = lambda payload: {'success': True}
        self.assertTrue(executor.submit().success)

    def test_failed_envelope_uses_default_message(self):
        """Test a {success: False} result without a message"""
        executor = GenericStageExecutor(
            mixing_without_materials(), input_qty=50,
            on_submit=lambda payload: {'success': False, 'error': ''},
        )
        executor.operator.select(5, 'Aziz')
        executor.set_output_qty(45)
        result = executor.submit()
        self.assertFalse(result.success)
        self.assertEqual(result.errors, (DEFAULT_SUBMIT_ERROR,))

    def test_mixing_materials_cost_and_yield_warning(self):
        """Test materials cost and the live yield warning"""
        executor = GenericStageExecutor(MIXING_CONFIG, input_qty=100)
        executor.operator.select(5, 'Aziz')
        executor.materials.add_material(1, 'Sugar', 2, unit_cost=5000)
        executor.set_output_qty(80)
        self.assertEqual(executor.cost, 10000)
        self.assertTrue(executor.show_yield_warning)
        self.assertEqual(executor.validate(), [
            'Yield outside expected range (90-100%). Check for material loss or excessive waste.',
        ])
        executor.set_output_qty(96)
        self.assertFalse(executor.show_yield_warning)
        self.assertEqual(executor.validate(), [])

    def test_cleaning_passes_input_through(self):
        """Test a stage without quantity widgets outputs its input"""
        executor = GenericStageExecutor(CLEANING_CONFIG, input_qty=40)
        executor.operator.select(5, 'Aziz')
        result = executor.submit()
        self.assertTrue(result.success)
        self.assertEqual(result.payload['output_qty'], 40)
        self.assertEqual(result.payload['yield_percent'], 100)
        self.assertFalse(executor.show_yield_warning)

    def test_apply_form_timer_without_pause(self):
        """Test posted pauses are refused for a stage that disallows pausing"""
        executor = GenericStageExecutor(CLEANING_CONFIG, input_qty=40)
        with self.assertRaises(ValueError):
            executor.apply_form({'timer': {
                'start_time': T0,
                'end_time': T0 + timedelta(hours=1),
                'pauses': [{'paused_at': T0 + timedelta(minutes=5), 'resumed_at': T0 + timedelta(minutes=10)}],
            }})

    def test_apply_form_and_preview(self):
        """Test loading a posted form and the preview it produces"""
        executor = GenericStageExecutor(
            SUBLIMATION_CONFIG, input_qty=40, work_center_cost_per_hour=60000, work_center_id=3,
            equipment_loader=unit_loader(FREEZE_DRYER),
        )
        executor.apply_form({
            'operator_id': 5,
            'operator_name': 'Aziz',
            'equipment_unit_id': 7,
            'timer': {'start_time': T0, 'end_time': T0 + timedelta(hours=2, minutes=5)},
            'output_qty': 4,
            'quality_metrics': {'moisture_content': 3.0, 'visual_quality': 'good'},
        })
        preview = executor.preview()
        self.assertTrue(preview['can_submit'])
        self.assertEqual(preview['yield_status']['status'], 'excellent')
        self.assertEqual(preview['duration_display'], '2h 05m')
        self.assertEqual(preview['cost'], 125000)
        self.assertAlmostEqual(preview['capacity_utilization'], 80.0)
        self.assertEqual(preview['quality_rating'], 'good')
        self.assertEqual(executor.build_payload()['quality_metrics'], {'moisture_content': 3.0, 'visual_quality': 'good'})


class LegacyExecutorTests(SimpleTestCase):
    """Test the fixed-form stage executors"""

    def test_cleaning_checks_in_order(self):
        """Test cleaning validation stops at the first failure"""
        executor = CleaningStageExecutor(input_qty=100)
        self.assertEqual(executor.validate(), ['Please select an operator'])
        executor.operator.select(1, 'Op')
        executor.waste.set_waste_qty(25)
        self.assertEqual(executor.validate(), ['Waste percentage exceeds 20% - review production quality'])
        executor.waste.set_waste_qty(10)
        self.assertEqual(executor.validate(), ['Please specify waste reasons when waste is recorded'])
        executor.waste.toggle_reason('spoilage')
        self.assertEqual(executor.validate(), [])
        payload = executor.build_payload()
        self.assertEqual(payload['output_qty'], 90)
        self.assertEqual(payload['yield_percent'], 90)

    def test_cutting_yield_and_target_size(self):
        """Test cutting yield floor and target size requirement"""
        executor = CuttingPreparationStageExecutor(input_qty=100, expected_yield_percent=85)
        executor.apply_form({'operator_id': 1, 'waste_qty': 20, 'waste_reasons': ['trimming']})
        self.assertEqual(executor.validate(), ['Yield 80.0% is below expected 85% - check equipment settings'])

        executor.apply_form({'waste_qty': 15})
        self.assertEqual(executor.validate(), ['Please specify target size for cutting'])
        executor.apply_form({'target_size': '5mm'})
        self.assertEqual(executor.validate(), [])

        executor.target_size = ''
        executor.set_cutting_method('custom')
        self.assertEqual(executor.validate(), [])
        with self.assertRaises(ValueError):
            executor.set_cutting_method('shred')

    def test_cutting_waste_limit(self):
        """Test the 25% waste ceiling"""
        executor = CuttingPreparationStageExecutor(input_qty=100)
        executor.apply_form({'operator_id': 1, 'waste_qty': 30, 'waste_reasons': ['trimming']})
        self.assertEqual(executor.validate(), ['Waste percentage exceeds 25% - review cutting quality'])

    def test_mixing_materials(self):
        """Test mixing additions and their variance"""
        executor = MixingStageExecutor(input_qty=100)
        executor.set_output_qty(101)
        self.assertEqual(executor.validate(), ['Please select an operator'])
        executor.apply_form({
            'operator_id': 1,
            'additional_materials': [{'bom_item_id': 2, 'actual_qty': 1.08}],
        })
        self.assertEqual(executor.validate(), [])
        payload = executor.build_payload()
        self.assertEqual(payload['additional_materials'], [{'bom_item_id': 2, 'actual_qty': 1.08}])
        self.assertEqual(payload['materials_variances'][0]['variance_band'], 'warning')
        self.assertAlmostEqual(executor.suggested_output_qty, 101.08)
        with self.assertRaises(ValueError):
            executor.apply_form({'additional_materials': [{'bom_item_id': 99, 'actual_qty': 1}]})

    def sublimation(self, output_qty):
        executor = SublimationStageExecutor(input_qty=100, work_center_cost_per_hour=120000, expected_yield_percent=10)
        executor.apply_form({
            'operator_id': 1,
            'timer': {'start_time': T0, 'end_time': T0 + timedelta(hours=24)},
            'output_qty': output_qty,
        })
        return executor

    def test_sublimation_yield_band(self):
        """Test the 0.7x-1.5x yield band messages"""
        self.assertEqual(
            self.sublimation(6).validate(),
            ['Yield too low (6.0% vs expected ~10%) - check freeze-dryer settings'],
        )
        self.assertEqual(
            self.sublimation(16).validate(),
            ['Yield too high (16.0% vs expected ~10%) - verify output weight'],
        )
        executor = self.sublimation(10)
        self.assertEqual(executor.validate(), [])
        self.assertEqual(executor.electricity_cost, 2880000)
        self.assertEqual(executor.build_payload()['waste_qty'], 90)

    def test_sublimation_requires_stopped_timer(self):
        """Test output without a stopped timer"""
        executor = SublimationStageExecutor(input_qty=100)
        executor.apply_form({'operator_id': 1, 'output_qty': 10})
        self.assertEqual(executor.validate(), ['Please enter output quantity and stop the timer'])

    def test_receiving_inspection(self):
        """Test inspection checks, notes and rejected clamping"""
        executor = ReceivingInspectionStageExecutor(expected_qty=100, batch_number='WO-1')
        executor.apply_form({'operator_id': 1, 'rejected_qty': 150})
        self.assertEqual(executor.rejected_qty, 100)
        self.assertEqual(executor.validate(), ['All quality checks must pass to accept the batch'])

        executor.apply_form({
            'rejected_qty': 5,
            'inspection_checks': {
                'visual_quality': True, 'temperature_ok': True,
                'contamination_free': True, 'packaging_intact': True,
            },
        })
        self.assertEqual(executor.validate(), ['Please add quality inspection notes'])
        executor.apply_form({'quality_notes': 'Firm, no bruising'})
        self.assertEqual(executor.validate(), [])

        payload = executor.build_payload()
        self.assertEqual(payload['accepted_qty'], 95)
        self.assertEqual(payload['output_qty'], 95)
        self.assertTrue(payload['quality_check_passed'])
        with self.assertRaises(ValueError):
            executor.set_check('smell_ok', True)


class StageExecutorRegistryTests(SimpleTestCase):
    """Test stage type to executor dispatch"""

    def setUp(self):
        self.registry = StageExecutorRegistry(StageConfigRegistry.default(), CONFIG_TYPES)

    def test_configured_types_use_generic_executor(self):
        """Test configuration wins over the legacy executor"""
        for stage_type in ('sublimation', 'mixing', 'cleaning', 'packaging'):
            self.assertTrue(self.registry.is_config_driven(stage_type), stage_type)
            self.assertIsInstance(self.registry.create(stage_type, StageContext(input_qty=10)), GenericStageExecutor)

    def test_other_types_use_legacy_executor(self):
        """Test receiving and cutting fall back to their own executors"""
        self.assertIsInstance(
            self.registry.create('receiving', StageContext(expected_qty=10)), ReceivingInspectionStageExecutor,
        )
        cutting = self.registry.create('cutting', StageContext(input_qty=10, expected_yield_percent=90))
        self.assertIsInstance(cutting, CuttingPreparationStageExecutor)
        self.assertEqual(cutting.expected_yield_percent, 90)

    def test_unknown_type(self):
        """Test unknown types give no executor"""
        self.assertIsNone(self.registry.create('unknown', StageContext()))
        self.assertNotIn('unknown', self.registry)

    def test_legacy_only_registry(self):
        """Test an empty configuration set routes everything to legacy executors"""
        registry = StageExecutorRegistry(StageConfigRegistry(), CONFIG_TYPES)
        self.assertIsInstance(registry.create('sublimation', StageContext(input_qty=10)), SublimationStageExecutor)
        self.assertIsInstance(registry.create('mixing', StageContext(input_qty=10)), MixingStageExecutor)
        self.assertIsNone(registry.create('packaging', StageContext()))


class DisplayTests(SimpleTestCase):
    """Test display helpers"""

    def test_yield_status_bands(self):
        """Test absolute and expected-relative yield bands"""
        self.assertEqual(yield_status(99).status, 'excellent')
        self.assertEqual(yield_status(96).status, 'good')
        self.assertEqual(yield_status(90).status, 'acceptable')
        self.assertEqual(yield_status(75).status, 'low')
        self.assertEqual(yield_status(50).status, 'critical')
        self.assertEqual(yield_status(10, expected_yield=10).status, 'excellent')
        self.assertEqual(yield_status(8, expected_yield=10).status, 'low')

    def test_round_half_up(self):
        """Test halves round up rather than to even"""
        self.assertEqual(round_half_up(0.5), 1)
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(3.5), 4)
        self.assertEqual(round_half_up(2.49), 2)
        self.assertEqual(round_half_up(Decimal('7.5')), 8)
        self.assertEqual(round_half_up(None), 0)

    def test_format_duration(self):
        """Test duration formatting"""
        self.assertEqual(format_duration(125), '2h 05m')
        self.assertEqual(format_duration(45), '45m')
        self.assertEqual(format_duration(None), '0m')

    @override_settings(MANUFACTURING={'CURRENCY_MINOR_UNITS': 100, 'CURRENCY_CODE': 'UZS'})
    def test_format_currency(self):
        """Test minor units formatted as major units"""
        self.assertEqual(format_currency(123450), '1,234.50 UZS')
        self.assertEqual(format_currency(0), '0.00 UZS')

    def test_traveler(self):
        """Test route card rows and progress"""
        steps = [{'id': 1, 'name': 'Washing'}, {'id': 2, 'name': 'Mixing'}, {'id': 3, 'name': 'Packing'}]
        rows = traveler_steps(steps, 1, {3: 'completed'})
        self.assertEqual([row['status'] for row in rows], ['completed', 'in_progress', 'completed'])
        self.assertTrue(rows[1]['is_current'])
        self.assertEqual(traveler_progress(rows)['completed'], 2)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

def work_order_data(step_names, order_id=1, qty_planned=100.0):
    return {
        'id': order_id,
        'order_number': f'WO-{order_id}',
        'qty_planned': qty_planned,
        'routing': {
            'steps': [
                {
                    'id': order_id * 10 + index,
                    'step_order': index,
                    'name': name,
                    'qty_out': None,
                    'work_center': {'id': index, 'name': f'{name} Center', 'cost_per_hour': 60000},
                    'expected_yield_percent': 95.0,
                }
                for index, name in enumerate(step_names, start=1)
            ],
        },
    }


class StubGateway(ProductionGateway):
    """In-memory gateway recording submissions"""

    def __init__(self, work_orders, statuses=None, fail_steps=False, submit_result=None, submit_error=None):
        self.work_orders = work_orders
        self.statuses = statuses or {}
        self.fail_steps = fail_steps
        self.submit_result = submit_result or {'success': True}
        self.submit_error = submit_error
        self.submitted = []

    def get_active_work_orders(self):
        return self.work_orders

    def get_work_order_steps(self, work_order_id):
        if self.fail_steps:
            raise ConnectionError('steps service down')
        order = next(wo for wo in self.work_orders if wo['id'] == work_order_id)
        return [
            {'id': step['id'], 'status': self.statuses.get(step['id'], 'pending'), 'qty_out': None}
            for step in order['routing']['steps']
        ]

    def submit_production_stage(self, work_order_id, step_id, payload):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append((work_order_id, step_id, payload))
        return self.submit_result

    def get_equipment_units(self, work_center_id):
        return {'success': True, 'units': [FREEZE_DRYER]}


class StageKeywordTests(SimpleTestCase):
    """Test stage type resolution from step names"""

    def test_keywords(self):
        """Test each keyword group"""
        cases = {
            'Receiving & Inspection': 'receiving',
            'Incoming goods': 'receiving',
            'Washing': 'cleaning',
            'Slice apples': 'cutting',
            'Cutting & Slicing': 'cutting',
            'Dice apples': 'cutting',
            'Blend fruit': 'mixing',
            'Freeze-Drying': 'sublimation',
            'Sublimation': 'sublimation',
            'Freeze-Drying Cycle': 'sublimation',
            'QC Inspection': 'receiving',
            'Packing': 'packaging',
            'Bagging': 'packaging',
            'Quality Audit': 'unknown',
            '': 'unknown',
        }
        for name, expected in cases.items():
            self.assertEqual(resolve_stage_type(name), expected, name)

    def test_first_matching_group_wins(self):
        """Test a name matching two groups takes the earlier one"""
        self.assertEqual(resolve_stage_type('Wash and cut'), 'cleaning')

    def test_config_types(self):
        """Test stage types backed by a configuration"""
        self.assertEqual(config_type_for('packaging'), 'PACKING')
        self.assertIsNone(config_type_for('cutting'))


class ProductionStageExecutionTests(SimpleTestCase):
    """Test the production stage orchestrator"""

    def setUp(self):
        self.registry = StageExecutorRegistry(StageConfigRegistry.default(), CONFIG_TYPES)
        self.order = work_order_data(['Washing', 'Mixing', 'Packing'])

    def execution(self, gateway):
        execution = ProductionStageExecution(gateway, self.registry, clock=FakeClock())
        execution.load_work_orders()
        return execution

    def test_resumes_at_first_pending_step(self):
        """Test selection lands on the first pending step"""
        execution = self.execution(StubGateway([self.order], statuses={11: 'completed'}))
        execution.select_work_order(1)
        self.assertEqual(execution.current_step_index, 1)
        self.assertEqual(execution.stage_type, 'mixing')
        self.assertEqual([row['status'] for row in execution.traveler_steps()], ['completed', 'in_progress', 'pending'])

    def test_all_completed_lands_on_last_step(self):
        """Test a finished order shows its last step"""
        statuses = {11: 'completed', 12: 'completed', 13: 'completed'}
        execution = self.execution(StubGateway([self.order], statuses=statuses))
        execution.select_work_order(1)
        self.assertEqual(execution.current_step_index, 2)
        self.assertTrue(execution.is_complete)

    def test_step_fetch_failure_falls_back(self):
        """Test failing progress lookup starts at the first step with an error"""
        execution = self.execution(StubGateway([self.order], fail_steps=True))
        execution.select_work_order(1)
        self.assertEqual(execution.current_step_index, 0)
        self.assertEqual(execution.step_statuses, {})
        self.assertEqual(execution.message.type, 'error')

    def test_unknown_order(self):
        """Test selecting an order that is not active"""
        execution = self.execution(StubGateway([self.order]))
        self.assertIsNone(execution.select_work_order(99))
        self.assertEqual(execution.message.type, 'error')

    def test_unconfigured_stage_notice(self):
        """Test a step no executor handles"""
        execution = self.execution(StubGateway([work_order_data(['Quality Audit'])]))
        execution.select_work_order(1)
        self.assertIsNone(execution.build_executor())
        self.assertEqual(execution.notice, 'Stage type "Quality Audit" not yet configured')

    def test_submit_advances_and_feeds_next_input(self):
        """Test a successful submit moves on and chains quantities"""
        gateway = StubGateway([self.order])
        execution = self.execution(gateway)
        execution.select_work_order(1)

        executor = execution.build_executor()
        self.assertIsInstance(executor, GenericStageExecutor)
        self.assertEqual(executor.input_qty, 100)
        executor.operator.select(5, 'Aziz')
        self.assertTrue(executor.submit().success)

        self.assertEqual(gateway.submitted[0][:2], (1, 11))
        self.assertEqual(execution.current_step_index, 1)
        self.assertEqual(execution.message.text, 'Washing completed! Moving to next step...')

        mixing = execution.build_executor()
        self.assertEqual(mixing.input_qty, 100)
        mixing.operator.select(5, 'Aziz')
        mixing.materials.add_material(1, 'Apples', 100, unit_cost=100)
        mixing.set_output_qty(95)
        self.assertTrue(mixing.submit().success)
        self.assertEqual(execution.current_input_qty(), 95)

    def test_last_step_completes_production(self):
        """Test the final submit message"""
        statuses = {11: 'completed', 12: 'completed'}
        execution = self.execution(StubGateway([self.order], statuses=statuses))
        execution.select_work_order(1)
        executor = execution.build_executor()
        executor.operator.select(5, 'Aziz')
        executor.set_output_qty(90)
        self.assertTrue(executor.submit().success)
        self.assertEqual(execution.current_step_index, 2)
        self.assertEqual(execution.message.text, 'Production complete! All steps finished.')
        self.assertTrue(execution.is_complete)

    def test_gateway_failure_keeps_position(self):
        """Test a failing gateway leaves the cursor and surfaces the message"""
        gateway = StubGateway([self.order], submit_error=ProductionStageError('Step already completed'))
        execution = self.execution(gateway)
        execution.select_work_order(1)
        executor = execution.build_executor()
        executor.operator.select(5, 'Aziz')

        result = executor.submit()
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ('Step already completed',))
        self.assertEqual(execution.current_step_index, 0)
        self.assertFalse(execution.is_pending)

    def test_gateway_refusal_keeps_position(self):
        """Test a {success: False} envelope from the gateway"""
        gateway = StubGateway([self.order], submit_result={'success': False, 'error': 'Step locked'})
        execution = self.execution(gateway)
        execution.select_work_order(1)
        executor = execution.build_executor()
        executor.operator.select(5, 'Aziz')
        self.assertEqual(executor.submit().errors, ('Step locked',))
        self.assertEqual(execution.current_step_index, 0)

    def test_back_to_list(self):
        """Test leaving the selected order"""
        execution = self.execution(StubGateway([self.order]))
        execution.select_work_order(1)
        execution.back_to_list()
        self.assertIsNone(execution.selected_work_order)
        self.assertIsNone(execution.current_step)
        self.assertEqual(execution.steps, [])


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

class SubmitProductionStageTests(TestCase):
    """Test recording stages and their cost roll-up"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.routing = TestDataFactory.create_routing_with_steps([
            ('Washing', 9500, 60000),
            ('Mixing', 9500, 120000),
        ])
        self.work_order = TestDataFactory.create_work_order(routing=self.routing, qty_planned=Decimal('100'))
        self.steps = list(
            WorkOrderStep.objects.filter(work_order=self.work_order).order_by('routing_step__step_order')
        )

    def payload(self, **overrides):
        start = T0
        data = {
            'input_qty': 100,
            'output_qty': 95,
            'start_time': start,
            'end_time': start + timedelta(minutes=30),
            'materials': [],
        }
        data.update(overrides)
        return data

    def test_costs_roll_up_across_steps(self):
        """Test overhead, materials, carried cost and completion"""
        first = submit_production_stage(self.work_order.id, self.steps[0].id, self.payload(), user=self.user)
        self.assertEqual(first['overhead_cost'], 30000)
        self.assertEqual(first['cost'], 30000)
        self.assertEqual(first['unit_cost_after_yield'], 316)
        self.assertEqual(first['yield_percent'], 95)
        self.assertEqual(first['wip_batch_number'], f'WO-{self.work_order.id}-STEP-1')
        self.assertFalse(first['work_order_completed'])

        second = submit_production_stage(self.work_order.id, self.steps[1].id, self.payload(
            input_qty=95,
            output_qty=90,
            end_time=T0 + timedelta(minutes=60),
            materials=[{'id': 1, 'name': 'Sugar', 'qty': 2, 'unit_cost': 5000}],
        ), user=self.user)
        self.assertEqual(second['overhead_cost'], 120000)
        self.assertEqual(second['material_cost'], 10000)
        self.assertEqual(second['previous_step_cost'], 30000)
        self.assertEqual(second['cost'], 160000)
        self.assertEqual(second['unit_cost_after_yield'], 1778)
        self.assertTrue(second['work_order_completed'])

        self.work_order.refresh_from_db()
        self.assertEqual(self.work_order.status, 'completed')
        self.assertEqual(self.work_order.qty_produced, Decimal('90.000'))
        step = WorkOrderStep.objects.get(pk=self.steps[1].id)
        self.assertEqual(step.status, 'completed')
        self.assertEqual(step.actual_yield_percent, 9474)
        self.assertEqual(step.cost.total_cost, 160000)
        self.assertEqual(AuditLog.objects.filter(action='stage_submit').count(), 2)
        self.assertEqual(AuditLog.objects.filter(action='work_order_complete').count(), 1)

    def test_half_minutes_and_costs_round_up(self):
        """Test 2.5 minutes bills 3 and a half minor unit of unit cost rounds up"""
        result = submit_production_stage(self.work_order.id, self.steps[0].id, self.payload(
            input_qty=1200,
            output_qty=1200,
            end_time=T0 + timedelta(seconds=150),
        ))
        self.assertEqual(result['duration_minutes'], 3)
        self.assertEqual(result['overhead_cost'], 3000)
        self.assertEqual(result['unit_cost_after_yield'], 3)
        step = WorkOrderStep.objects.get(pk=self.steps[0].id)
        self.assertEqual(step.actual_yield_percent, 10000)

    def test_completed_step_rejected(self):
        """Test a step cannot be recorded twice"""
        submit_production_stage(self.work_order.id, self.steps[0].id, self.payload())
        with self.assertRaisesMessage(ProductionStageError, 'Step already completed'):
            submit_production_stage(self.work_order.id, self.steps[0].id, self.payload())
        self.assertEqual(WorkOrderStepCost.objects.count(), 1)

    def test_invalid_payloads(self):
        """Test input, step and reference checks"""
        with self.assertRaisesMessage(ProductionStageError, 'Input quantity must be positive'):
            submit_production_stage(self.work_order.id, self.steps[0].id, self.payload(input_qty=0))
        with self.assertRaisesMessage(ProductionStageError, 'Work Order Step not found'):
            submit_production_stage(self.work_order.id, 999999, self.payload())
        with self.assertRaisesMessage(ProductionStageError, 'Operator not found'):
            submit_production_stage(self.work_order.id, self.steps[0].id, self.payload(operator_id=999999))
        self.assertEqual(WorkOrderStep.objects.get(pk=self.steps[0].id).status, 'pending')

    def test_equipment_hours_accrue(self):
        """Test the equipment unit used accrues the stage duration"""
        unit = TestDataFactory.create_equipment_unit(self.routing.steps.first().work_center)
        submit_production_stage(self.work_order.id, self.steps[0].id, self.payload(
            equipment_unit_id=unit.id,
            end_time=T0 + timedelta(minutes=90),
        ))
        unit.refresh_from_db()
        self.assertEqual(unit.total_operating_hours, Decimal('1.50'))

    def test_step_input_qty(self):
        """Test input comes from the previous completed step"""
        self.assertEqual(get_step_input_qty(self.steps[1]), 100)
        submit_production_stage(self.work_order.id, self.steps[0].id, self.payload(output_qty=93))
        self.assertEqual(get_step_input_qty(WorkOrderStep.objects.get(pk=self.steps[1].id)), 93)

    def test_work_order_steps(self):
        """Test step progress listing"""
        steps = get_work_order_steps(self.work_order.id)
        self.assertEqual([s['name'] for s in steps], ['Washing', 'Mixing'])
        self.assertEqual({s['status'] for s in steps}, {'pending'})
        with self.assertRaises(ProductionStageError):
            get_work_order_steps(999999)


class EquipmentServiceTests(TestCase):
    """Test equipment listings, maintenance status and operating hours"""

    def setUp(self):
        cache.clear()
        self.work_center = TestDataFactory.create_work_center(name='Freeze-Dryer Bay')

    def test_maintenance_status(self):
        """Test ok, warning and due bands"""
        unit = TestDataFactory.create_equipment_unit(self.work_center, maintenance_interval_hours=100,
                                                     total_operating_hours=Decimal('50'))
        self.assertEqual(unit.maintenance_status, 'ok')
        unit.total_operating_hours = Decimal('95')
        self.assertEqual(unit.maintenance_status, 'warning')
        unit.total_operating_hours = Decimal('100')
        self.assertEqual(unit.maintenance_status, 'due')
        unit.maintenance_interval_hours = None
        self.assertEqual(unit.maintenance_status, 'ok')

    def test_listing_cached_and_invalidated_on_save(self):
        """Test cached listings refresh when a unit is saved"""
        unit = TestDataFactory.create_equipment_unit(self.work_center, unit_code='FD-01')
        TestDataFactory.create_equipment_unit(self.work_center, unit_code='FD-02', is_active=False)
        result = get_equipment_units(self.work_center.id)
        self.assertTrue(result['success'])
        self.assertEqual([u['unit_code'] for u in result['units']], ['FD-01'])

        EquipmentUnit.objects.filter(pk=unit.pk).update(manufacturer='Cuddon')
        self.assertEqual(get_equipment_units(self.work_center.id)['units'][0]['manufacturer'], 'Harvest Right')

        unit.refresh_from_db()
        unit.save()
        self.assertEqual(get_equipment_units(self.work_center.id)['units'][0]['manufacturer'], 'Cuddon')

    def test_update_operating_hours(self):
        """Test adding run time and the audit entry"""
        unit = TestDataFactory.create_equipment_unit(self.work_center, total_operating_hours=Decimal('10.00'))
        result = update_equipment_operating_hours(unit.id, 45)
        self.assertTrue(result['success'])
        self.assertEqual(result['total_operating_hours'], 10.75)
        self.assertTrue(AuditLog.objects.filter(action='equipment_hours', object_id=str(unit.id)).exists())

        self.assertFalse(update_equipment_operating_hours(unit.id, -1)['success'])
        self.assertEqual(update_equipment_operating_hours(999999, 10)['error'], 'Equipment unit not found')

    def test_active_operators(self):
        """Test only active factory workers are listed"""
        operator = TestDataFactory.create_operator()
        TestDataFactory.create_operator(first_name='Former', is_active=False)
        TestDataFactory.create_user(role='MANAGER')
        result = get_active_operators()
        self.assertTrue(result['success'])
        self.assertEqual([o['id'] for o in result['operators']], [operator.id])
        self.assertEqual(result['operators'][0]['name'], 'Aziz Karimov')


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

class ManufacturingAPITestBase(TestCase):

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.operator = TestDataFactory.create_operator()
        self.routing = TestDataFactory.create_routing_with_steps([
            ('Washing', 9500, 60000),
            ('Mixing', 9500, 60000),
            ('Freeze-Drying', 1000, 120000),
        ])
        self.work_order = TestDataFactory.create_work_order(routing=self.routing, qty_planned=Decimal('100'))
        self.steps = list(
            WorkOrderStep.objects.filter(work_order=self.work_order).order_by('routing_step__step_order')
        )

    def url(self, suffix):
        return f'/api/v1/manufacturing/{suffix}'


class StageConfigAPITests(ManufacturingAPITestBase):
    """Test stage configuration endpoints"""

    def test_requires_authentication(self):
        """Test unauthenticated access is refused"""
        self.client.logout()
        response = self.client.get(self.url('stage-configs/'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_list_and_detail(self):
        """Test listing configurations and case-insensitive lookup"""
        response = self.client.get(self.url('stage-configs/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 4)

        response = self.client.get(self.url('stage-configs/sublimation/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['expected_yield'], 10)

        response = self.client.get(self.url('stage-configs/roasting/'))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_stage_preview(self):
        """Test live preview for a configured stage"""
        response = self.client.post(self.url('stage-preview/'), {
            'stage_type': 'SUBLIMATION',
            'input_qty': 100,
            'output_qty': 9,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['yield_percent'], 9)
        self.assertFalse(response.data['can_submit'])
        self.assertIn('Please assign an operator', response.data['validation_errors'])

        response = self.client.post(self.url('stage-preview/'), {'stage_type': 'ROASTING', 'input_qty': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_operator_list(self):
        """Test active operators endpoint"""
        response = self.client.get(self.url('operators/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([o['id'] for o in response.data['operators']], [self.operator.id])


class WorkCenterAPITests(ManufacturingAPITestBase):
    """Test work center and equipment endpoints"""

    def test_work_center_list(self):
        """Test work centers with active unit counts"""
        work_center = self.routing.steps.get(step_order=3).work_center
        TestDataFactory.create_equipment_unit(work_center)
        response = self.client.get(self.url('work-centers/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        counts = {row['id']: row['equipment_unit_count'] for row in response.data}
        self.assertEqual(counts[work_center.id], 1)

    def test_equipment_units_and_hours(self):
        """Test listing units and recording operating hours"""
        work_center = self.routing.steps.get(step_order=3).work_center
        unit = TestDataFactory.create_equipment_unit(work_center, unit_code='FD-09')

        response = self.client.get(self.url(f'work-centers/{work_center.id}/equipment-units/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['units'][0]['unit_code'], 'FD-09')

        response = self.client.post(self.url(f'equipment-units/{unit.id}/operating-hours/'),
                                    {'duration_minutes': 120}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_operating_hours'], 2.0)

        response = self.client.post(self.url(f'equipment-units/{unit.id}/operating-hours/'),
                                    {'duration_minutes': 'soon'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class WorkOrderAPITests(ManufacturingAPITestBase):
    """Test work order endpoints"""

    def test_list_filters_and_paginates(self):
        """Test status filter, search and pagination"""
        TestDataFactory.create_work_order(routing=self.routing, status='draft', order_number='WO-DRAFT-1')
        response = self.client.get(self.url('work-orders/'), {'status': 'in_progress'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['order_number'], self.work_order.order_number)

        response = self.client.get(self.url('work-orders/'), {'search': 'DRAFT'})
        self.assertEqual([r['order_number'] for r in response.data['results']], ['WO-DRAFT-1'])

        response = self.client.get(self.url('work-orders/'), {'limit': 1})
        self.assertEqual(response.data['total_pages'], 2)
        self.assertEqual(response.data['next'], 2)

    def test_list_rejects_bad_pagination(self):
        """Test non-numeric page or limit and a zero limit return 400"""
        for params in ({'page': 'two'}, {'limit': 'all'}, {'limit': 0}):
            response = self.client.get(self.url('work-orders/'), params)
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, params)
            self.assertIn('error', response.data)

    def test_active_and_detail(self):
        """Test active orders and order detail with steps"""
        response = self.client.get(self.url('work-orders/active/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        steps = response.data[0]['routing']['steps']
        self.assertEqual([s['name'] for s in steps], ['Washing', 'Mixing', 'Freeze-Drying'])
        self.assertEqual(steps[2]['expected_yield_percent'], 10)

        response = self.client.get(self.url(f'work-orders/{self.work_order.id}/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['steps']), 3)
        self.assertEqual(response.data['steps'][0]['stage_type'], 'cleaning')

        response = self.client.get(self.url(f'work-orders/{self.work_order.id}/steps/'))
        self.assertEqual(len(response.data), 3)

    def test_current_stage(self):
        """Test the current stage description"""
        response = self.client.get(self.url(f'work-orders/{self.work_order.id}/current-stage/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stage_type'], 'cleaning')
        self.assertEqual(response.data['config']['stage_type'], 'CLEANING')
        self.assertEqual(response.data['input_qty'], 100)
        self.assertEqual(response.data['current_step']['id'], self.steps[0].id)
        self.assertEqual(response.data['progress'], {'completed': 0, 'total': 3, 'percent': 0})

    def test_current_stage_of_inactive_order(self):
        """Test orders that are not in progress"""
        draft = TestDataFactory.create_work_order(routing=self.routing, status='draft')
        response = self.client.get(self.url(f'work-orders/{draft.id}/current-stage/'))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class StageExecutionAPITests(ManufacturingAPITestBase):
    """Test executing stages through the API"""

    def execute(self, step, data):
        return self.client.post(
            self.url(f'work-orders/{self.work_order.id}/steps/{step.id}/execute/'), data, format='json',
        )

    def test_execute_advances_through_routing(self):
        """Test cleaning then mixing, each feeding the next step"""
        response = self.execute(self.steps[0], {'operator_id': self.operator.id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message']['text'], 'Washing completed! Moving to next step...')
        self.assertEqual(response.data['next_step']['name'], 'Mixing')
        self.assertEqual(response.data['payload']['operator_name'], 'Aziz Karimov')

        response = self.execute(self.steps[1], {
            'operator_id': self.operator.id,
            'materials': [{'id': 1, 'name': 'Sugar', 'qty': 2, 'unit_cost': 5000}],
            'output_qty': 96,
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['payload']['input_qty'], 100)
        self.assertEqual(response.data['result']['material_cost'], 10000)

        step = WorkOrderStep.objects.get(pk=self.steps[1].id)
        self.assertEqual(step.status, 'completed')
        self.assertEqual(step.stage_type, 'MIXING')
        self.assertEqual(step.operator, self.operator)
        self.assertEqual(step.qty_out, Decimal('96.000'))

    def test_validation_failure_returns_all_messages(self):
        """Test a failing form reports every message and records nothing"""
        response = self.execute(self.steps[1], {'output_qty': 50})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['errors'], [
            'Please assign an operator',
            'Must specify input materials and quantities',
            'Yield outside expected range (90-100%). Check for material loss or excessive waste.',
        ])
        self.assertEqual(WorkOrderStep.objects.get(pk=self.steps[1].id).status, 'pending')

    def test_inactive_operator_rejected(self):
        """Test operators must be active"""
        former = TestDataFactory.create_operator(first_name='Former', is_active=False)
        response = self.execute(self.steps[0], {'operator_id': former.id})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('operator_id', response.data)

    def test_sublimation_completes_work_order(self):
        """Test the final freeze-drying step with equipment and timer"""
        work_center = self.routing.steps.get(step_order=3).work_center
        unit = TestDataFactory.create_equipment_unit(work_center)
        response = self.execute(self.steps[2], {
            'operator_id': self.operator.id,
            'equipment_unit_id': unit.id,
            'timer': {
                'start_time': '2026-01-10T08:00:00Z',
                'end_time': '2026-01-11T08:00:00Z',
                'pauses': [{'paused_at': '2026-01-10T12:00:00Z', 'resumed_at': '2026-01-10T12:30:00Z'}],
            },
            'output_qty': 10,
            'quality_metrics': {'moisture_content': 3.2, 'visual_quality': 'excellent'},
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['result']['work_order_completed'])
        self.assertEqual(response.data['message']['text'], 'Production complete! All steps finished.')
        self.assertIsNone(response.data['next_step'])
        self.assertEqual(response.data['payload']['duration_minutes'], 1410)
        self.assertEqual(response.data['payload']['cost'], 2820000)

        self.work_order.refresh_from_db()
        self.assertEqual(self.work_order.status, 'completed')
        unit.refresh_from_db()
        self.assertEqual(unit.total_operating_hours, Decimal('24.00'))
        step = WorkOrderStep.objects.get(pk=self.steps[2].id)
        self.assertEqual(step.quality_metrics, {'moisture_content': 3.2, 'visual_quality': 'excellent'})

    def test_equipment_from_other_work_center_rejected(self):
        """Test equipment must belong to the step's work center"""
        other_unit = TestDataFactory.create_equipment_unit(TestDataFactory.create_work_center())
        response = self.execute(self.steps[2], {
            'operator_id': self.operator.id,
            'equipment_unit_id': other_unit.id,
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unconfigured_stage(self):
        """Test a step no executor handles"""
        routing = TestDataFactory.create_routing_with_steps(['Quality Audit'])
        work_order = TestDataFactory.create_work_order(routing=routing)
        step = WorkOrderStep.objects.get(work_order=work_order)
        response = self.client.post(
            self.url(f'work-orders/{work_order.id}/steps/{step.id}/execute/'),
            {'operator_id': self.operator.id}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['errors'], ['Stage type "Quality Audit" not yet configured'])

    def test_order_not_in_progress(self):
        """Test executing a step of a completed order"""
        self.work_order.status = 'completed'
        self.work_order.save()
        response = self.execute(self.steps[0], {'operator_id': self.operator.id})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_raw_submit(self):
        """Test the direct submission endpoint"""
        url = self.url(f'work-orders/{self.work_order.id}/steps/{self.steps[0].id}/submit/')
        data = {
            'input_qty': 100,
            'output_qty': 95,
            'start_time': '2026-01-10T08:00:00Z',
            'end_time': '2026-01-10T09:00:00Z',
        }
        response = self.client.post(url, data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['overhead_cost'], 60000)

        response = self.client.post(url, data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Step already completed')

        response = self.client.post(self.url(f'work-orders/{self.work_order.id}/steps/999999/submit/'), data, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class ManagementCommandTests(TestCase):
    """Test manufacturing management commands"""

    def test_seed_production_is_idempotent(self):
        """Test seeding twice creates the floor once"""
        call_command('seed_production', stdout=StringIO())
        call_command('seed_production', stdout=StringIO())
        self.assertEqual(WorkOrder.objects.filter(status='in_progress').count(), 2)
        work_order = WorkOrder.objects.get(order_number='WO-0001')
        self.assertEqual(work_order.steps.count(), 6)
        self.assertEqual(EquipmentUnit.objects.count(), 3)

    def test_check_equipment_maintenance(self):
        """Test units needing maintenance are reported"""
        work_center = TestDataFactory.create_work_center()
        TestDataFactory.create_equipment_unit(work_center, unit_code='FD-DUE', maintenance_interval_hours=100,
                                              total_operating_hours=Decimal('120'))
        TestDataFactory.create_equipment_unit(work_center, unit_code='FD-OK', maintenance_interval_hours=100)
        out = StringIO()
        call_command('check_equipment_maintenance', stdout=out)
        self.assertIn('FD-DUE', out.getvalue())
        self.assertNotIn('FD-OK', out.getvalue())
