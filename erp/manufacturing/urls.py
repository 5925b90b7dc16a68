from django.urls import path
from .views import (
    stage_config_list, stage_config_detail, stage_preview,
    operator_list,
    work_center_list, work_center_equipment_units, equipment_unit_operating_hours,
    work_order_list, work_order_active, work_order_detail, work_order_steps,
    work_order_current_stage, work_order_step_submit, work_order_step_execute,
)

urlpatterns = [
    # Stage configuration endpoints
    path('manufacturing/stage-configs/', stage_config_list, name='stage-config-list'),
    path('manufacturing/stage-configs/<str:stage_type>/', stage_config_detail, name='stage-config-detail'),
    path('manufacturing/stage-preview/', stage_preview, name='stage-preview'),

    # Operator endpoints
    path('manufacturing/operators/', operator_list, name='operator-list'),

    # Work center and equipment endpoints
    path('manufacturing/work-centers/', work_center_list, name='work-center-list'),
    path('manufacturing/work-centers/<int:pk>/equipment-units/', work_center_equipment_units, name='work-center-equipment-units'),
    path('manufacturing/equipment-units/<int:pk>/operating-hours/', equipment_unit_operating_hours, name='equipment-unit-operating-hours'),

    # Work order endpoints
    path('manufacturing/work-orders/', work_order_list, name='work-order-list'),
    path('manufacturing/work-orders/active/', work_order_active, name='work-order-active'),
    path('manufacturing/work-orders/<int:pk>/', work_order_detail, name='work-order-detail'),
    path('manufacturing/work-orders/<int:pk>/steps/', work_order_steps, name='work-order-steps'),
    path('manufacturing/work-orders/<int:pk>/current-stage/', work_order_current_stage, name='work-order-current-stage'),
    path('manufacturing/work-orders/<int:pk>/steps/<int:step_id>/submit/', work_order_step_submit, name='work-order-step-submit'),
    path('manufacturing/work-orders/<int:pk>/steps/<int:step_id>/execute/', work_order_step_execute, name='work-order-step-execute'),
]
