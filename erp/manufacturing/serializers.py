from django.contrib.auth import get_user_model
from rest_framework import serializers

from .executors import CUTTING_METHODS
from .models import (
    EquipmentUnit, Routing, RoutingStep, WorkCenter, WorkOrder, WorkOrderStep, WorkOrderStepCost,
)
from .stage_configurations import get_available_stage_types
from .widgets import VISUAL_QUALITY_CHOICES, WASTE_REASONS

User = get_user_model()


class WorkCenterSerializer(serializers.ModelSerializer):
    equipment_unit_count = serializers.SerializerMethodField()

    class Meta:
        model = WorkCenter
        fields = ['id', 'name', 'code', 'description', 'location', 'cost_per_hour', 'is_active',
                  'equipment_unit_count', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def get_equipment_unit_count(self, obj):
        # Use annotated value when the view provides it
        if hasattr(obj, 'active_unit_count'):
            return obj.active_unit_count
        return obj.equipment_units.filter(is_active=True).count()


class EquipmentUnitSerializer(serializers.ModelSerializer):
    work_center_name = serializers.CharField(source='work_center.name', read_only=True)
    hours_until_maintenance = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    maintenance_status = serializers.CharField(read_only=True)

    class Meta:
        model = EquipmentUnit
        fields = ['id', 'work_center', 'work_center_name', 'unit_code', 'manufacturer', 'model',
                  'serial_number', 'chamber_capacity', 'shelve_count', 'last_maintenance_date',
                  'next_maintenance_due', 'maintenance_interval_hours', 'total_operating_hours',
                  'hours_until_maintenance', 'maintenance_status', 'is_active']


class RoutingStepSerializer(serializers.ModelSerializer):
    work_center_name = serializers.CharField(source='work_center.name', read_only=True)

    class Meta:
        model = RoutingStep
        fields = ['id', 'step_order', 'description', 'work_center', 'work_center_name',
                  'expected_yield_percent', 'setup_time_minutes', 'run_time_minutes']


class RoutingSerializer(serializers.ModelSerializer):
    steps = RoutingStepSerializer(many=True, read_only=True)

    class Meta:
        model = Routing
        fields = ['id', 'name', 'item_name', 'description', 'version', 'is_active', 'steps']


class WorkOrderStepCostSerializer(serializers.ModelSerializer):
    class Meta:
        model = WorkOrderStepCost
        fields = ['material_cost', 'overhead_cost', 'previous_step_cost', 'total_cost', 'unit_cost_after_yield']


class WorkOrderStepSerializer(serializers.ModelSerializer):
    step_order = serializers.IntegerField(source='routing_step.step_order', read_only=True)
    name = serializers.CharField(source='routing_step.description', read_only=True)
    cost = serializers.SerializerMethodField()

    class Meta:
        model = WorkOrderStep
        fields = ['id', 'step_order', 'name', 'status', 'stage_type', 'qty_in', 'qty_out', 'qty_scrap',
                  'waste_qty', 'waste_reasons', 'actual_yield_percent', 'start_time', 'end_time',
                  'actual_duration_minutes', 'overhead_applied', 'stage_cost', 'wip_batch_number',
                  'additional_materials', 'operator', 'operator_name', 'equipment_unit',
                  'quality_check_passed', 'quality_notes', 'quality_metrics', 'cost']

    def get_cost(self, obj):
        try:
            return WorkOrderStepCostSerializer(obj.cost).data
        except WorkOrderStepCost.DoesNotExist:
            return None


class WorkOrderListSerializer(serializers.ModelSerializer):
    routing_name = serializers.CharField(source='routing.name', read_only=True)

    class Meta:
        model = WorkOrder
        fields = ['id', 'order_number', 'item_name', 'routing', 'routing_name', 'qty_planned',
                  'qty_produced', 'qty_rejected', 'status', 'start_date', 'end_date', 'created_at']


class WorkOrderSerializer(WorkOrderListSerializer):
    steps = WorkOrderStepSerializer(many=True, read_only=True)

    class Meta(WorkOrderListSerializer.Meta):
        fields = WorkOrderListSerializer.Meta.fields + ['steps', 'updated_at']


# ---------------------------------------------------------------------------
# Stage form input
# ---------------------------------------------------------------------------

class PauseSerializer(serializers.Serializer):
    paused_at = serializers.DateTimeField()
    resumed_at = serializers.DateTimeField()

    def validate(self, attrs):
        if attrs['resumed_at'] < attrs['paused_at']:
            raise serializers.ValidationError("Pause cannot end before it starts")
        return attrs


class TimerFormSerializer(serializers.Serializer):
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField()
    pauses = PauseSerializer(many=True, required=False)

    def validate(self, attrs):
        if attrs['end_time'] < attrs['start_time']:
            raise serializers.ValidationError("Timer end time is before its start time")
        return attrs


class MaterialLineSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField(required=False, allow_blank=True, default='')
    qty = serializers.FloatField(min_value=0)
    unit_cost = serializers.FloatField(min_value=0, required=False, default=0)


class AdditionalMaterialSerializer(serializers.Serializer):
    bom_item_id = serializers.IntegerField()
    actual_qty = serializers.FloatField(min_value=0)


class QualityMetricsSerializer(serializers.Serializer):
    moisture_content = serializers.FloatField(min_value=0, max_value=100, required=False, allow_null=True)
    visual_quality = serializers.ChoiceField(choices=VISUAL_QUALITY_CHOICES, required=False, allow_null=True)
    color_consistency = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)
    texture_score = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class StageFormSerializer(serializers.Serializer):
    """
    What an operator entered on a stage form. Each executor reads only the
    fields its widgets use; quantities are clamped by the widgets themselves.
    """
    operator_id = serializers.IntegerField(required=False, allow_null=True)
    equipment_unit_id = serializers.IntegerField(required=False, allow_null=True)
    timer = TimerFormSerializer(required=False, allow_null=True)
    input_qty = serializers.FloatField(required=False, allow_null=True)
    output_qty = serializers.FloatField(required=False, allow_null=True)
    waste_qty = serializers.FloatField(required=False, allow_null=True)
    waste_reasons = serializers.ListField(child=serializers.ChoiceField(choices=WASTE_REASONS), required=False)
    materials = MaterialLineSerializer(many=True, required=False)
    additional_materials = AdditionalMaterialSerializer(many=True, required=False)
    quality_metrics = QualityMetricsSerializer(required=False, allow_null=True)
    rejected_qty = serializers.FloatField(required=False, allow_null=True)
    inspection_checks = serializers.DictField(child=serializers.BooleanField(), required=False)
    quality_notes = serializers.CharField(required=False, allow_blank=True)
    cutting_method = serializers.ChoiceField(choices=CUTTING_METHODS, required=False)
    target_size = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        operator_id = attrs.get('operator_id')
        if operator_id is not None:
            operator = User.objects.filter(pk=operator_id, is_active=True).first()
            if operator is None:
                raise serializers.ValidationError({'operator_id': 'Operator not found or inactive'})
            attrs['operator_name'] = operator.display_name
        return attrs


class StagePreviewSerializer(StageFormSerializer):
    stage_type = serializers.ChoiceField(choices=[])
    input_qty = serializers.FloatField(min_value=0)
    work_center_cost_per_hour = serializers.IntegerField(min_value=0, required=False, default=0)
    work_center_id = serializers.IntegerField(required=False, allow_null=True)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['stage_type'].choices = get_available_stage_types()


class SubmitStageSerializer(serializers.Serializer):
    """Raw step submission, bypassing the stage form"""
    stage_type = serializers.CharField(required=False, allow_blank=True)
    input_qty = serializers.FloatField(min_value=0)
    output_qty = serializers.FloatField(min_value=0)
    waste_qty = serializers.FloatField(min_value=0, required=False, default=0)
    waste_reasons = serializers.ListField(child=serializers.ChoiceField(choices=WASTE_REASONS), required=False)
    start_time = serializers.DateTimeField(required=False, allow_null=True)
    end_time = serializers.DateTimeField(required=False, allow_null=True)
    operator_id = serializers.IntegerField(required=False, allow_null=True)
    operator_name = serializers.CharField(required=False, allow_blank=True)
    equipment_unit_id = serializers.IntegerField(required=False, allow_null=True)
    materials = MaterialLineSerializer(many=True, required=False)
    additional_materials = serializers.ListField(child=serializers.DictField(), required=False)
    quality_check_passed = serializers.BooleanField(required=False, allow_null=True)
    quality_notes = serializers.CharField(required=False, allow_blank=True)
    quality_metrics = serializers.DictField(required=False)
    cost = serializers.IntegerField(min_value=0, required=False, default=0)
