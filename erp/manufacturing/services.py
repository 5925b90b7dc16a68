"""
Production floor data access

Read helpers return plain dicts for the stage executors and the API.
submit_production_stage records a finished step with its cost roll-up in a
single transaction and raises ProductionStageError when the step cannot be
recorded. The equipment and operator lookups return a
{'success': bool, ...} envelope instead of raising.
"""
import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from erp.core.cache_utils import get_or_compute, make_cache_key
from erp.core.utils import create_audit_log

from .display import round_half_up
from .models import EquipmentUnit, RoutingStep, WorkOrder, WorkOrderStep, WorkOrderStepCost
from .orchestrator import ProductionGateway, resolve_stage_type

logger = logging.getLogger(__name__)

User = get_user_model()

QTY_PLACES = Decimal('0.001')
HOURS_PLACES = Decimal('0.01')


class ProductionStageError(ValueError):
    """A stage submission that cannot be recorded"""


def _float(value):
    return float(value) if value is not None else None


def _qty(value):
    return Decimal(str(value)).quantize(QTY_PLACES, rounding=ROUND_HALF_UP)


def _parse_time(value):
    if value is None or isinstance(value, datetime):
        return value
    parsed = parse_datetime(str(value))
    if parsed is None:
        raise ProductionStageError(f"Invalid timestamp: {value}")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

def get_active_operators():
    try:
        operators = [
            {'id': user.id, 'name': user.display_name, 'username': user.username}
            for user in User.objects.filter(is_active=True, role='FACTORY_WORKER').order_by('first_name', 'username')
        ]
    except DatabaseError as e:
        logger.error(f"Failed to load operators: {str(e)}")
        return {'success': False, 'operators': [], 'error': 'Failed to load operators'}
    return {'success': True, 'operators': operators}


# ---------------------------------------------------------------------------
# Work orders and steps
# ---------------------------------------------------------------------------

def ensure_work_order_steps(work_order):
    """
    (routing_step, work_order_step) pairs in routing order, creating the
    missing WorkOrderStep rows as pending.
    """
    routing_steps = list(
        RoutingStep.objects.filter(routing_id=work_order.routing_id)
        .select_related('work_center')
        .order_by('step_order')
    )
    existing = {s.routing_step_id: s for s in WorkOrderStep.objects.filter(work_order=work_order)}
    missing = [
        WorkOrderStep(
            work_order=work_order,
            routing_step=rs,
            stage_type=resolve_stage_type(rs.description),
        )
        for rs in routing_steps if rs.id not in existing
    ]
    if missing:
        WorkOrderStep.objects.bulk_create(missing, ignore_conflicts=True)
        existing = {s.routing_step_id: s for s in WorkOrderStep.objects.filter(work_order=work_order)}
    return [(rs, existing[rs.id]) for rs in routing_steps]


def serialize_step(routing_step, step):
    work_center = routing_step.work_center
    return {
        'id': step.id,
        'routing_step_id': routing_step.id,
        'step_order': routing_step.step_order,
        'name': routing_step.description,
        'status': step.status,
        'qty_out': _float(step.qty_out),
        'work_center': {
            'id': work_center.id,
            'name': work_center.name,
            'cost_per_hour': work_center.cost_per_hour,
        },
        # Stored as basis points
        'expected_yield_percent': routing_step.expected_yield_percent / 100,
    }


def serialize_work_order(work_order):
    return {
        'id': work_order.id,
        'order_number': work_order.order_number,
        'item_name': work_order.item_name,
        'status': work_order.status,
        'qty_planned': _float(work_order.qty_planned),
        'qty_produced': _float(work_order.qty_produced),
        'routing': {
            'id': work_order.routing_id,
            'name': work_order.routing.name,
            'steps': [serialize_step(rs, step) for rs, step in ensure_work_order_steps(work_order)],
        },
    }


def get_active_work_orders():
    """In-progress work orders with their routing steps, newest first"""
    orders = WorkOrder.objects.filter(status='in_progress').select_related('routing').order_by('-created_at')
    return [serialize_work_order(wo) for wo in orders]


def get_work_order_steps(work_order_id):
    try:
        work_order = WorkOrder.objects.get(pk=work_order_id)
    except WorkOrder.DoesNotExist:
        raise ProductionStageError('Work order not found')
    return [
        {
            'id': step.id,
            'step_order': rs.step_order,
            'name': rs.description,
            'status': step.status,
            'qty_out': _float(step.qty_out),
        }
        for rs, step in ensure_work_order_steps(work_order)
    ]


def get_step_input_qty(step):
    """qty_out of the previous completed step, else the work order's planned quantity"""
    previous = (
        WorkOrderStep.objects.filter(
            work_order_id=step.work_order_id,
            routing_step__step_order__lt=step.routing_step.step_order,
            status='completed',
        )
        .order_by('-routing_step__step_order')
        .first()
    )
    if previous is not None and previous.qty_out is not None:
        return float(previous.qty_out)
    return float(step.work_order.qty_planned)


# ---------------------------------------------------------------------------
# Equipment
# ---------------------------------------------------------------------------

def equipment_units_cache_key(work_center_id):
    return make_cache_key('equipment_units', work_center_id)


def serialize_equipment_unit(unit):
    return {
        'id': unit.id,
        'unit_code': unit.unit_code,
        'manufacturer': unit.manufacturer,
        'model': unit.model,
        'serial_number': unit.serial_number,
        'chamber_capacity': _float(unit.chamber_capacity),
        'shelve_count': unit.shelve_count,
        'total_operating_hours': _float(unit.total_operating_hours),
        'maintenance_interval_hours': unit.maintenance_interval_hours,
        'hours_until_maintenance': _float(unit.hours_until_maintenance),
        'maintenance_status': unit.maintenance_status,
        'last_maintenance_date': unit.last_maintenance_date,
        'next_maintenance_due': unit.next_maintenance_due,
    }


def get_equipment_units(work_center_id):
    """Active units of a work center with maintenance status (cached)"""
    def compute():
        units = EquipmentUnit.objects.filter(work_center_id=work_center_id, is_active=True).order_by('unit_code')
        return [serialize_equipment_unit(unit) for unit in units]

    try:
        units = get_or_compute(
            equipment_units_cache_key(work_center_id),
            compute,
            settings.MANUFACTURING.get('EQUIPMENT_CACHE_TTL', 120),
        )
    except DatabaseError as e:
        logger.error(f"Failed to load equipment units for work center {work_center_id}: {str(e)}")
        return {'success': False, 'units': [], 'error': 'Failed to load equipment units'}
    return {'success': True, 'units': units}


def _add_operating_hours(unit, duration_minutes):
    added = Decimal(duration_minutes) / Decimal(60)
    unit.total_operating_hours = ((unit.total_operating_hours or Decimal('0')) + added).quantize(
        HOURS_PLACES, rounding=ROUND_HALF_UP
    )
    unit.save(update_fields=['total_operating_hours', 'updated_at'])
    return unit.total_operating_hours


def update_equipment_operating_hours(unit_id, duration_minutes, user=None):
    if duration_minutes is None or duration_minutes < 0:
        return {'success': False, 'error': 'Duration must be zero or positive'}
    try:
        with transaction.atomic():
            unit = EquipmentUnit.objects.select_for_update().get(pk=unit_id)
            previous_hours = unit.total_operating_hours
            total = _add_operating_hours(unit, duration_minutes)
    except EquipmentUnit.DoesNotExist:
        return {'success': False, 'error': 'Equipment unit not found'}

    create_audit_log(
        action='equipment_hours',
        model_name='EquipmentUnit',
        object_id=unit.id,
        object_name=unit.unit_code,
        user=user,
        changes={'total_operating_hours': [str(previous_hours), str(total)], 'duration_minutes': duration_minutes},
    )
    return {
        'success': True,
        'total_operating_hours': float(total),
        'maintenance_status': unit.maintenance_status,
    }


# ---------------------------------------------------------------------------
# Stage submission
# ---------------------------------------------------------------------------

def submit_production_stage(work_order_id, step_id, payload, user=None):
    """
    Record a finished production step.

    Costs (integer minor units, halves rounded up):
        overhead   = round(cost_per_hour / 60 * duration_minutes)
        material   = round(sum(qty * unit_cost)) over payload['materials']
        total      = previous step total + material + overhead
        unit cost  = round(total / output_qty)

    The step is marked completed, the work order is completed when this was
    its last step, and the equipment unit used (if any) accrues the duration
    as operating hours.
    """
    input_qty = float(payload.get('input_qty') or 0)
    output_qty = float(payload.get('output_qty') or 0)
    if input_qty <= 0:
        raise ProductionStageError('Input quantity must be positive')
    if output_qty < 0:
        raise ProductionStageError('Output quantity cannot be negative')

    start_time = _parse_time(payload.get('start_time'))
    end_time = _parse_time(payload.get('end_time'))
    if start_time and end_time and end_time < start_time:
        raise ProductionStageError('End time is before start time')

    with transaction.atomic():
        try:
            step = (
                WorkOrderStep.objects.select_for_update()
                .select_related('work_order', 'routing_step__work_center', 'routing_step__routing')
                .get(pk=step_id, work_order_id=work_order_id)
            )
        except WorkOrderStep.DoesNotExist:
            raise ProductionStageError('Work Order Step not found')
        if step.status == 'completed':
            raise ProductionStageError('Step already completed')

        work_order = step.work_order
        routing_step = step.routing_step
        work_center = routing_step.work_center

        duration_minutes = 0
        if start_time and end_time:
            duration_minutes = round_half_up((end_time - start_time).total_seconds() / 60)

        overhead_cost = round_half_up(work_center.cost_per_hour / 60 * duration_minutes)
        material_cost = round_half_up(sum(
            float(m.get('qty') or 0) * float(m.get('unit_cost') or 0)
            for m in payload.get('materials') or []
        ))

        previous_step = (
            WorkOrderStep.objects.filter(
                work_order=work_order,
                routing_step__step_order__lt=routing_step.step_order,
                status='completed',
            )
            .order_by('-routing_step__step_order')
            .first()
        )
        previous_step_cost = 0
        if previous_step is not None:
            previous_step_cost = (
                WorkOrderStepCost.objects.filter(step=previous_step)
                .values_list('total_cost', flat=True)
                .first()
            ) or 0

        total_cost = previous_step_cost + material_cost + overhead_cost
        yield_basis_points = round_half_up(output_qty / input_qty * 10000)
        unit_cost_after_yield = round_half_up(total_cost / output_qty) if output_qty > 0 else 0
        wip_batch_number = f"WO-{work_order.id}-STEP-{routing_step.step_order}"

        operator = None
        operator_id = payload.get('operator_id')
        if operator_id:
            operator = User.objects.filter(pk=operator_id).first()
            if operator is None:
                raise ProductionStageError('Operator not found')

        equipment_unit = None
        equipment_unit_id = payload.get('equipment_unit_id')
        if equipment_unit_id:
            equipment_unit = EquipmentUnit.objects.select_for_update().filter(pk=equipment_unit_id).first()
            if equipment_unit is None:
                raise ProductionStageError('Equipment unit not found')

        step.status = 'completed'
        step.stage_type = payload.get('stage_type') or step.stage_type or resolve_stage_type(routing_step.description)
        step.qty_in = _qty(input_qty)
        step.qty_out = _qty(output_qty)
        step.waste_qty = _qty(payload.get('waste_qty') or 0)
        step.qty_scrap = _qty(payload.get('rejected_qty') or payload.get('waste_qty') or 0)
        step.waste_reasons = list(payload.get('waste_reasons') or [])
        step.actual_yield_percent = yield_basis_points
        step.start_time = start_time
        step.end_time = end_time
        step.actual_duration_minutes = duration_minutes
        step.overhead_applied = overhead_cost
        step.stage_cost = int(payload.get('cost') or 0)
        step.wip_batch_number = wip_batch_number
        step.additional_materials = list(payload.get('additional_materials') or payload.get('materials') or [])
        step.operator = operator
        step.operator_name = payload.get('operator_name') or (operator.display_name if operator else '')
        step.equipment_unit = equipment_unit
        step.quality_check_passed = payload.get('quality_check_passed')
        step.quality_notes = payload.get('quality_notes') or ''
        step.quality_metrics = payload.get('quality_metrics') or {}
        step.save()

        WorkOrderStepCost.objects.create(
            step=step,
            material_cost=material_cost,
            overhead_cost=overhead_cost,
            previous_step_cost=previous_step_cost,
            total_cost=total_cost,
            unit_cost_after_yield=unit_cost_after_yield,
        )

        is_final_step = not RoutingStep.objects.filter(
            routing_id=routing_step.routing_id,
            step_order__gt=routing_step.step_order,
        ).exists()

        update_fields = ['updated_at']
        if work_order.start_date is None:
            work_order.start_date = start_time or timezone.now()
            update_fields.append('start_date')
        if is_final_step:
            work_order.status = 'completed'
            work_order.qty_produced = _qty(output_qty)
            work_order.end_date = end_time or timezone.now()
            update_fields += ['status', 'qty_produced', 'end_date']
        work_order.save(update_fields=update_fields)

        if equipment_unit is not None and duration_minutes > 0:
            _add_operating_hours(equipment_unit, duration_minutes)

        create_audit_log(
            action='stage_submit',
            model_name='WorkOrderStep',
            object_id=step.id,
            object_name=work_order.order_number,
            object_reference=wip_batch_number,
            user=user,
            changes={
                'step': routing_step.description,
                'stage_type': step.stage_type,
                'qty_in': str(step.qty_in),
                'qty_out': str(step.qty_out),
                'yield_basis_points': yield_basis_points,
                'total_cost': total_cost,
            },
        )
        if is_final_step:
            create_audit_log(
                action='work_order_complete',
                model_name='WorkOrder',
                object_id=work_order.id,
                object_name=work_order.order_number,
                user=user,
                changes={'qty_produced': str(work_order.qty_produced)},
            )

    logger.info(
        f"Work order {work_order.order_number} step {routing_step.step_order} completed: "
        f"yield {yield_basis_points / 100:.2f}%, cost {total_cost}"
    )
    return {
        'success': True,
        'step_id': step.id,
        'wip_batch_number': wip_batch_number,
        'duration_minutes': duration_minutes,
        'material_cost': material_cost,
        'overhead_cost': overhead_cost,
        'previous_step_cost': previous_step_cost,
        'cost': total_cost,
        'unit_cost_after_yield': unit_cost_after_yield,
        'yield_percent': yield_basis_points / 100,
        'work_order_completed': is_final_step,
    }


class OrmProductionGateway(ProductionGateway):
    """ProductionGateway backed by the database; submissions are attributed to `user`"""

    def __init__(self, user=None):
        self.user = user

    def get_active_work_orders(self):
        return get_active_work_orders()

    def get_work_order_steps(self, work_order_id):
        return get_work_order_steps(work_order_id)

    def submit_production_stage(self, work_order_id, step_id, payload):
        return submit_production_stage(work_order_id, step_id, payload, user=self.user)

    def get_equipment_units(self, work_center_id):
        return get_equipment_units(work_center_id)
