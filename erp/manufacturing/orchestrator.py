"""
Production stage execution

ProductionStageExecution walks an operator through the routing of an
in-progress work order: pick the order, land on the first unfinished step,
build that step's executor and advance once the step is submitted.

Data access goes through a ProductionGateway so the flow can run against the
ORM (services.OrmProductionGateway) or a stub in tests.
"""
import logging
from dataclasses import dataclass

from .display import traveler_progress, traveler_steps
from .executors import StageContext

logger = logging.getLogger(__name__)

# Checked in order; the first keyword found in the lower-cased step name wins
STAGE_KEYWORDS = (
    ('receiving', ('receiv', 'inspect', 'incoming')),
    ('cleaning', ('clean', 'wash')),
    ('cutting', ('cut', 'slice', 'dice', 'prep')),
    ('mixing', ('mix', 'blend')),
    ('sublimation', ('sublim', 'freeze')),
    ('packaging', ('pack', 'bag')),
)

UNKNOWN_STAGE = 'unknown'

# Stage types handled by a StageConfiguration
CONFIG_TYPES = {
    'sublimation': 'SUBLIMATION',
    'mixing': 'MIXING',
    'cleaning': 'CLEANING',
    'packaging': 'PACKING',
}


def resolve_stage_type(step_name):
    name = (step_name or '').lower()
    for stage_type, keywords in STAGE_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return stage_type
    return UNKNOWN_STAGE


def config_type_for(stage_type):
    return CONFIG_TYPES.get(stage_type)


@dataclass(frozen=True)
class Message:
    type: str
    text: str


class ProductionGateway:
    """Data access used by ProductionStageExecution"""

    def get_active_work_orders(self):
        raise NotImplementedError

    def get_work_order_steps(self, work_order_id):
        raise NotImplementedError

    def submit_production_stage(self, work_order_id, step_id, payload):
        raise NotImplementedError

    def get_equipment_units(self, work_center_id):
        raise NotImplementedError


class ProductionStageExecution:

    def __init__(self, gateway, executor_registry, clock=None, ticker=None):
        self.gateway = gateway
        self.executor_registry = executor_registry
        self.clock = clock
        self.ticker = ticker

        self.work_orders = []
        self.loading_orders = False
        self.selected_work_order = None
        self.current_step_index = 0
        self.step_statuses = {}
        self.step_outputs = {}
        self.message = None
        self.notice = None
        self.is_pending = False

    def load_work_orders(self):
        self.loading_orders = True
        try:
            self.work_orders = list(self.gateway.get_active_work_orders())
        except Exception as e:
            logger.error(f"Failed to load active work orders: {str(e)}", exc_info=True)
            self.work_orders = []
            self.message = Message('error', 'Failed to load work orders')
        finally:
            self.loading_orders = False
        return self.work_orders

    @property
    def steps(self):
        if self.selected_work_order is None:
            return []
        return self.selected_work_order.get('routing', {}).get('steps') or []

    def select_work_order(self, work_order_id):
        """
        Select an active work order and move to its first pending step.

        If step progress cannot be fetched the cursor starts at the first step
        with no known statuses and an error message is set.
        """
        order = next((wo for wo in self.work_orders if wo['id'] == work_order_id), None)
        if order is None:
            self.message = Message('error', f'Work order {work_order_id} is not in progress')
            return None

        self.selected_work_order = order
        self.message = None
        self.notice = None
        self.step_outputs = {
            step['id']: step['qty_out'] for step in self.steps if step.get('qty_out') is not None
        }

        try:
            progress = self.gateway.get_work_order_steps(order['id'])
        except Exception as e:
            logger.warning(f"Could not load step progress for work order {order['id']}: {str(e)}", exc_info=True)
            self.current_step_index = 0
            self.step_statuses = {}
            self.message = Message('error', 'Could not load step progress; starting from the first step')
            return order

        self.step_statuses = {step['id']: step['status'] for step in progress}
        for step in progress:
            if step.get('qty_out') is not None:
                self.step_outputs[step['id']] = step['qty_out']
        self.current_step_index = self._resume_index()
        return order

    def _resume_index(self):
        for index, step in enumerate(self.steps):
            if self.step_statuses.get(step['id']) == 'pending':
                return index
        return max(0, len(self.steps) - 1)

    def focus_step(self, step_id):
        """Move the cursor to a given step of the selected order"""
        for index, step in enumerate(self.steps):
            if step['id'] == step_id:
                self.current_step_index = index
                return step
        return None

    @property
    def current_step(self):
        steps = self.steps
        if 0 <= self.current_step_index < len(steps):
            return steps[self.current_step_index]
        return None

    @property
    def stage_type(self):
        step = self.current_step
        return resolve_stage_type(step['name']) if step else None

    @property
    def is_complete(self):
        steps = self.steps
        return bool(steps) and all(self.step_statuses.get(s['id']) == 'completed' for s in steps)

    def traveler_steps(self):
        return traveler_steps(self.steps, self.current_step_index, self.step_statuses)

    def traveler_progress(self):
        return traveler_progress(self.traveler_steps())

    def current_input_qty(self):
        """Output of the previous step when recorded, else the planned quantity"""
        if self.current_step_index > 0:
            previous = self.steps[self.current_step_index - 1]
            output = self.step_outputs.get(previous['id'])
            if output is not None:
                return float(output)
        return float(self.selected_work_order.get('qty_planned') or 0)

    def stage_context(self):
        step = self.current_step
        work_center = step.get('work_center') or {}
        return StageContext(
            input_qty=self.current_input_qty(),
            work_center_cost_per_hour=work_center.get('cost_per_hour') or 0,
            work_center_id=work_center.get('id'),
            expected_yield_percent=step.get('expected_yield_percent'),
            expected_qty=float(self.selected_work_order.get('qty_planned') or 0),
            batch_number=self.selected_work_order.get('order_number', ''),
            on_submit=self.handle_stage_submit,
            equipment_loader=self.gateway.get_equipment_units,
            clock=self.clock,
            ticker=self.ticker,
        )

    def build_executor(self):
        """Executor for the current step, or None with a notice when the stage is not handled"""
        self.notice = None
        step = self.current_step
        if step is None:
            self.notice = 'No production step selected'
            return None
        executor = self.executor_registry.create(self.stage_type, self.stage_context())
        if executor is None:
            self.notice = f'Stage type "{step["name"]}" not yet configured'
            logger.info(f"No executor for step '{step['name']}' (resolved as {self.stage_type})")
        return executor

    def handle_stage_submit(self, payload):
        """
        Persist the current step through the gateway and advance.

        Returns the gateway result, or {'success': False, 'error': ...} when
        the gateway refused or failed; the cursor only moves on success.
        """
        order = self.selected_work_order
        step = self.current_step
        if order is None or step is None:
            return {'success': False, 'error': 'No production step selected'}

        self.message = None
        self.is_pending = True
        try:
            result = self.gateway.submit_production_stage(order['id'], step['id'], payload)
        except Exception as e:
            logger.error(f"Stage submit failed for work order {order['id']} step {step['id']}: {str(e)}", exc_info=True)
            self.message = Message('error', str(e) or 'Failed to submit stage')
            return {'success': False, 'error': self.message.text}
        finally:
            self.is_pending = False

        if not result.get('success'):
            self.message = Message('error', result.get('error') or 'Failed to submit stage')
            return result

        self.step_statuses[step['id']] = 'completed'
        self.step_outputs[step['id']] = payload.get('output_qty')
        if self.current_step_index < len(self.steps) - 1:
            self.current_step_index += 1
            self.message = Message('success', f"{step['name']} completed! Moving to next step...")
        else:
            self.message = Message('success', 'Production complete! All steps finished.')
        return result

    def back_to_list(self):
        self.selected_work_order = None
        self.current_step_index = 0
        self.step_statuses = {}
        self.step_outputs = {}
        self.message = None
        self.notice = None
