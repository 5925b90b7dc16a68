import logging
from dataclasses import asdict

from django.apps import apps
from django.core.paginator import Paginator
from django.db.models import Count, Q
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .executors import GenericStageExecutor
from .filters import WorkOrderFilter
from .models import EquipmentUnit, WorkCenter, WorkOrder, WorkOrderStep
from .orchestrator import ProductionStageExecution, config_type_for
from .serializers import (
    StageFormSerializer, StagePreviewSerializer, SubmitStageSerializer,
    WorkCenterSerializer, WorkOrderListSerializer, WorkOrderSerializer,
)
from .services import (
    OrmProductionGateway, ProductionStageError, ensure_work_order_steps,
    get_active_operators, get_active_work_orders, get_equipment_units,
    get_work_order_steps, submit_production_stage, update_equipment_operating_hours,
)
from .stage_configurations import get_stage_config
from .widgets import TimerStateError

logger = logging.getLogger(__name__)


def _manufacturing_app():
    return apps.get_app_config('manufacturing')


def _start_execution(request, work_order_id):
    """Orchestrator for one request, positioned on the work order's current step"""
    execution = ProductionStageExecution(
        gateway=OrmProductionGateway(user=request.user),
        executor_registry=_manufacturing_app().executor_registry,
    )
    execution.load_work_orders()
    execution.select_work_order(work_order_id)
    return execution


def _message_data(message):
    return asdict(message) if message else None


# Stage configuration views
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def stage_config_list(request):
    """All configured stage types"""
    configs = _manufacturing_app().stage_configs
    return Response([config.to_dict() for config in configs.values()])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def stage_config_detail(request, stage_type):
    config = get_stage_config(stage_type.upper())
    if config is None:
        return Response({'error': f'Stage type "{stage_type}" not configured'}, status=status.HTTP_404_NOT_FOUND)
    return Response(config.to_dict())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def operator_list(request):
    """Active factory workers that can be assigned to a stage"""
    result = get_active_operators()
    if not result['success']:
        return Response(result, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(result)


# Work center views
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def work_center_list(request):
    queryset = WorkCenter.objects.annotate(
        active_unit_count=Count('equipment_units', filter=Q(equipment_units__is_active=True))
    )
    if request.query_params.get('active', 'true').lower() == 'true':
        queryset = queryset.filter(is_active=True)
    serializer = WorkCenterSerializer(queryset.order_by('name'), many=True)
    return Response(serializer.data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def work_center_equipment_units(request, pk):
    """Active equipment units of a work center with maintenance status"""
    work_center = get_object_or_404(WorkCenter, pk=pk)
    result = get_equipment_units(work_center.id)
    if not result['success']:
        return Response(result, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def equipment_unit_operating_hours(request, pk):
    """Add run time (minutes) to an equipment unit's operating hours"""
    unit = get_object_or_404(EquipmentUnit, pk=pk)
    try:
        duration_minutes = int(request.data.get('duration_minutes'))
    except (TypeError, ValueError):
        return Response({'success': False, 'error': 'duration_minutes must be an integer'}, status=status.HTTP_400_BAD_REQUEST)

    result = update_equipment_operating_hours(unit.id, duration_minutes, user=request.user)
    if not result['success']:
        return Response(result, status=status.HTTP_400_BAD_REQUEST)
    return Response(result)


# Work order views
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def work_order_list(request):
    """List work orders with filtering and pagination"""
    queryset = WorkOrder.objects.select_related('routing').all()
    filterset = WorkOrderFilter(request.query_params, queryset=queryset)
    if not filterset.is_valid():
        return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)
    queryset = filterset.qs.order_by('-created_at')

    try:
        page = int(request.query_params.get('page', 1))
        limit = int(request.query_params.get('limit', 50))
    except (ValueError, TypeError):
        return Response({'error': 'page and limit must be integers'}, status=status.HTTP_400_BAD_REQUEST)
    if limit < 1:
        return Response({'error': 'limit must be at least 1'}, status=status.HTTP_400_BAD_REQUEST)
    paginator = Paginator(queryset, limit)
    page_obj = paginator.get_page(page)

    serializer = WorkOrderListSerializer(page_obj, many=True)
    return Response({
        'results': serializer.data,
        'count': paginator.count,
        'next': page_obj.next_page_number() if page_obj.has_next() else None,
        'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
        'page': page_obj.number,
        'page_size': limit,
        'total_pages': paginator.num_pages,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def work_order_active(request):
    """In-progress work orders with routing steps, as the stage execution screen needs them"""
    return Response(get_active_work_orders())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def work_order_detail(request, pk):
    work_order = get_object_or_404(WorkOrder.objects.select_related('routing'), pk=pk)
    ensure_work_order_steps(work_order)
    work_order = WorkOrder.objects.select_related('routing').prefetch_related(
        'steps__routing_step', 'steps__cost'
    ).get(pk=work_order.pk)
    return Response(WorkOrderSerializer(work_order).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def work_order_steps(request, pk):
    work_order = get_object_or_404(WorkOrder, pk=pk)
    return Response(get_work_order_steps(work_order.id))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def work_order_current_stage(request, pk):
    """Current step of an in-progress work order with its stage form description"""
    work_order = get_object_or_404(WorkOrder, pk=pk)
    execution = _start_execution(request, work_order.id)
    if execution.selected_work_order is None:
        return Response({'error': execution.message.text}, status=status.HTTP_400_BAD_REQUEST)

    step = execution.current_step
    config_type = config_type_for(execution.stage_type)
    config = get_stage_config(config_type) if config_type else None
    executor = execution.build_executor()
    try:
        return Response({
            'work_order': {
                'id': work_order.id,
                'order_number': work_order.order_number,
                'item_name': work_order.item_name,
                'qty_planned': float(work_order.qty_planned),
            },
            'current_step': step,
            'stage_type': execution.stage_type,
            'config': config.to_dict() if config else None,
            'input_qty': execution.current_input_qty() if step else None,
            'form': executor.preview() if executor else None,
            'notice': execution.notice,
            'message': _message_data(execution.message),
            'traveler': execution.traveler_steps(),
            'progress': execution.traveler_progress(),
            'is_complete': execution.is_complete,
        })
    finally:
        if executor is not None:
            executor.close()


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def work_order_step_submit(request, pk, step_id):
    """Record a step directly from a prepared payload"""
    get_object_or_404(WorkOrderStep, pk=step_id, work_order_id=pk)
    serializer = SubmitStageSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = submit_production_stage(pk, step_id, serializer.validated_data, user=request.user)
    except ProductionStageError as e:
        return Response({'success': False, 'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
    return Response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def work_order_step_execute(request, pk, step_id):
    """
    Fill the step's stage form from the request, validate it, cost it and
    record the step. Validation failures return every message with 400.
    """
    work_order = get_object_or_404(WorkOrder, pk=pk)
    get_object_or_404(WorkOrderStep, pk=step_id, work_order_id=pk)
    if work_order.status != 'in_progress':
        return Response({'success': False, 'errors': ['Work order is not in progress']}, status=status.HTTP_400_BAD_REQUEST)

    form = StageFormSerializer(data=request.data)
    if not form.is_valid():
        return Response(form.errors, status=status.HTTP_400_BAD_REQUEST)

    execution = _start_execution(request, work_order.id)
    if execution.selected_work_order is None or execution.focus_step(step_id) is None:
        return Response({'success': False, 'errors': ['Work Order Step not found']}, status=status.HTTP_404_NOT_FOUND)

    executor = execution.build_executor()
    if executor is None:
        return Response({'success': False, 'errors': [execution.notice]}, status=status.HTTP_400_BAD_REQUEST)

    try:
        try:
            executor.apply_form(form.validated_data)
        except (ValueError, KeyError, TimerStateError) as e:
            return Response({'success': False, 'errors': [str(e)]}, status=status.HTTP_400_BAD_REQUEST)

        result = executor.submit()
        if not result.success:
            return Response({
                'success': False,
                'errors': list(result.errors),
                'form': executor.preview(),
            }, status=status.HTTP_400_BAD_REQUEST)
    finally:
        executor.close()

    logger.info(f"Stage {executor.stage_type} executed for work order {work_order.order_number} by {request.user.username}")
    return Response({
        'success': True,
        'message': _message_data(execution.message),
        'result': result.result,
        'payload': result.payload,
        'next_step': execution.current_step if not result.result.get('work_order_completed') else None,
        'traveler': execution.traveler_steps(),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def stage_preview(request):
    """Live yield, cost and validation for a configured stage without recording anything"""
    serializer = StagePreviewSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    executor = GenericStageExecutor(
        _manufacturing_app().stage_configs[data['stage_type']],
        input_qty=data['input_qty'],
        work_center_cost_per_hour=data.get('work_center_cost_per_hour', 0),
        work_center_id=data.get('work_center_id'),
        equipment_loader=get_equipment_units,
    )
    try:
        executor.apply_form(data)
    except (ValueError, KeyError, TimerStateError) as e:
        return Response({'success': False, 'errors': [str(e)]}, status=status.HTTP_400_BAD_REQUEST)
    finally:
        executor.close()
    return Response(executor.preview())
