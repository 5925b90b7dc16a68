from django.contrib import admin
from .models import WorkCenter, EquipmentUnit, Routing, RoutingStep, WorkOrder, WorkOrderStep, WorkOrderStepCost


@admin.register(WorkCenter)
class WorkCenterAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'location', 'cost_per_hour', 'is_active']
    list_filter = ['is_active']
    search_fields = ['code', 'name']
    ordering = ['name']


@admin.register(EquipmentUnit)
class EquipmentUnitAdmin(admin.ModelAdmin):
    list_display = ['unit_code', 'work_center', 'manufacturer', 'model', 'total_operating_hours', 'maintenance_status', 'is_active']
    list_filter = ['work_center', 'is_active']
    search_fields = ['unit_code', 'serial_number', 'manufacturer']
    ordering = ['unit_code']
    readonly_fields = ['maintenance_status', 'hours_until_maintenance']


class RoutingStepInline(admin.TabularInline):
    model = RoutingStep
    extra = 0
    ordering = ['step_order']


@admin.register(Routing)
class RoutingAdmin(admin.ModelAdmin):
    list_display = ['name', 'item_name', 'version', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'item_name']
    inlines = [RoutingStepInline]


class WorkOrderStepInline(admin.TabularInline):
    model = WorkOrderStep
    extra = 0
    fields = ['routing_step', 'status', 'qty_in', 'qty_out', 'actual_yield_percent', 'operator_name', 'wip_batch_number']
    readonly_fields = fields
    can_delete = False


@admin.register(WorkOrder)
class WorkOrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'item_name', 'routing', 'qty_planned', 'qty_produced', 'status', 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['order_number', 'item_name']
    ordering = ['-created_at']
    inlines = [WorkOrderStepInline]


@admin.register(WorkOrderStepCost)
class WorkOrderStepCostAdmin(admin.ModelAdmin):
    list_display = ['step', 'material_cost', 'overhead_cost', 'previous_step_cost', 'total_cost', 'unit_cost_after_yield']
    readonly_fields = ['step', 'material_cost', 'overhead_cost', 'previous_step_cost', 'total_cost', 'unit_cost_after_yield', 'created_at']
