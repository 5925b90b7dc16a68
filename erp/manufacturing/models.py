from decimal import Decimal

from django.conf import settings
from django.db import models


class WorkCenter(models.Model):
    """A production area (washing line, freeze-dryer bay, ...) with an hourly rate"""
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=50, unique=True)
    description = models.TextField(blank=True)
    location = models.CharField(max_length=255, blank=True)
    # Integer minor currency units per hour
    cost_per_hour = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.code} - {self.name}"

    class Meta:
        db_table = 'work_centers'
        ordering = ['name']


class EquipmentUnit(models.Model):
    """A physical machine inside a work center, e.g. one freeze-dryer"""
    MAINTENANCE_OK = 'ok'
    MAINTENANCE_WARNING = 'warning'
    MAINTENANCE_DUE = 'due'

    work_center = models.ForeignKey(WorkCenter, on_delete=models.CASCADE, related_name='equipment_units')
    unit_code = models.CharField(max_length=50, unique=True)
    manufacturer = models.CharField(max_length=255, blank=True)
    model = models.CharField(max_length=255, blank=True)
    serial_number = models.CharField(max_length=100, blank=True)
    chamber_capacity = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True, help_text="Maximum batch weight in kg")
    shelve_count = models.IntegerField(null=True, blank=True)
    last_maintenance_date = models.DateTimeField(null=True, blank=True)
    next_maintenance_due = models.DateTimeField(null=True, blank=True)
    maintenance_interval_hours = models.IntegerField(null=True, blank=True)
    total_operating_hours = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.unit_code

    @property
    def hours_until_maintenance(self):
        if not self.maintenance_interval_hours:
            return None
        return Decimal(self.maintenance_interval_hours) - (self.total_operating_hours or Decimal('0'))

    @property
    def maintenance_status(self):
        """ok / warning / due; warning starts in the last 10% of the interval"""
        remaining = self.hours_until_maintenance
        if remaining is None:
            return self.MAINTENANCE_OK
        if remaining <= 0:
            return self.MAINTENANCE_DUE
        if remaining <= Decimal(self.maintenance_interval_hours) * Decimal('0.1'):
            return self.MAINTENANCE_WARNING
        return self.MAINTENANCE_OK

    class Meta:
        db_table = 'equipment_units'
        ordering = ['unit_code']
        indexes = [
            models.Index(fields=['work_center', 'is_active'], name='idx_equipment_center_active'),
        ]


class Routing(models.Model):
    """Ordered list of production steps for an item"""
    name = models.CharField(max_length=255)
    item_name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    version = models.IntegerField(default=1)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} v{self.version}"

    class Meta:
        db_table = 'routings'
        ordering = ['name']


class RoutingStep(models.Model):
    routing = models.ForeignKey(Routing, on_delete=models.CASCADE, related_name='steps')
    step_order = models.IntegerField()
    work_center = models.ForeignKey(WorkCenter, on_delete=models.PROTECT, related_name='routing_steps')
    # Step name; the stage type is resolved from it by keyword
    description = models.CharField(max_length=255)
    # Basis points, 10000 = 100%
    expected_yield_percent = models.IntegerField(default=10000)
    setup_time_minutes = models.IntegerField(default=0)
    run_time_minutes = models.IntegerField(default=0)

    def __str__(self):
        return f"{self.routing.name} #{self.step_order} {self.description}"

    class Meta:
        db_table = 'routing_steps'
        ordering = ['routing', 'step_order']
        unique_together = [['routing', 'step_order']]


class WorkOrder(models.Model):
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('released', 'Released'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
        ('closed', 'Closed'),
        ('cancelled', 'Cancelled'),
    ]

    order_number = models.CharField(max_length=50, unique=True)
    item_name = models.CharField(max_length=255)
    routing = models.ForeignKey(Routing, on_delete=models.PROTECT, related_name='work_orders')
    qty_planned = models.DecimalField(max_digits=12, decimal_places=3)
    qty_produced = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal('0'))
    qty_rejected = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal('0'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='work_orders')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.order_number

    class Meta:
        db_table = 'work_orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='idx_work_order_status'),
        ]


class WorkOrderStep(models.Model):
    """Execution record of one routing step for one work order"""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
    ]

    work_order = models.ForeignKey(WorkOrder, on_delete=models.CASCADE, related_name='steps')
    routing_step = models.ForeignKey(RoutingStep, on_delete=models.PROTECT, related_name='work_order_steps')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    stage_type = models.CharField(max_length=50, blank=True)

    qty_in = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    qty_out = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    qty_scrap = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    waste_qty = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    waste_reasons = models.JSONField(default=list, blank=True)
    # Basis points
    actual_yield_percent = models.IntegerField(null=True, blank=True)

    start_time = models.DateTimeField(null=True, blank=True)
    end_time = models.DateTimeField(null=True, blank=True)
    actual_duration_minutes = models.IntegerField(null=True, blank=True)
    overhead_applied = models.IntegerField(default=0)
    stage_cost = models.IntegerField(default=0)
    wip_batch_number = models.CharField(max_length=100, blank=True)
    additional_materials = models.JSONField(default=list, blank=True)

    operator = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='executed_steps')
    operator_name = models.CharField(max_length=255, blank=True)
    equipment_unit = models.ForeignKey(EquipmentUnit, on_delete=models.SET_NULL, null=True, blank=True, related_name='work_order_steps')
    quality_check_passed = models.BooleanField(null=True, blank=True)
    quality_notes = models.TextField(blank=True)
    quality_metrics = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.work_order.order_number} step {self.routing_step.step_order}"

    class Meta:
        db_table = 'work_order_steps'
        ordering = ['work_order', 'routing_step__step_order']
        constraints = [
            models.UniqueConstraint(fields=['work_order', 'routing_step'], name='uniq_work_order_routing_step'),
        ]
        indexes = [
            models.Index(fields=['work_order', 'status'], name='idx_wo_step_status'),
        ]


class WorkOrderStepCost(models.Model):
    """Cost roll-up of a completed step, all amounts in minor currency units"""
    step = models.OneToOneField(WorkOrderStep, on_delete=models.CASCADE, related_name='cost')
    material_cost = models.IntegerField(default=0)
    overhead_cost = models.IntegerField(default=0)
    previous_step_cost = models.IntegerField(default=0)
    total_cost = models.IntegerField(default=0)
    unit_cost_after_yield = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Cost for {self.step}"

    class Meta:
        db_table = 'work_order_step_costs'
