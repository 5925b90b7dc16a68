import django.db.models.deletion
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('core', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='WorkCenter',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('code', models.CharField(max_length=50, unique=True)),
                ('description', models.TextField(blank=True)),
                ('location', models.CharField(blank=True, max_length=255)),
                ('cost_per_hour', models.IntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'work_centers',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Routing',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('item_name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True)),
                ('version', models.IntegerField(default=1)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'routings',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='EquipmentUnit',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('unit_code', models.CharField(max_length=50, unique=True)),
                ('manufacturer', models.CharField(blank=True, max_length=255)),
                ('model', models.CharField(blank=True, max_length=255)),
                ('serial_number', models.CharField(blank=True, max_length=100)),
                ('chamber_capacity', models.DecimalField(blank=True, decimal_places=2, help_text='Maximum batch weight in kg', max_digits=10, null=True)),
                ('shelve_count', models.IntegerField(blank=True, null=True)),
                ('last_maintenance_date', models.DateTimeField(blank=True, null=True)),
                ('next_maintenance_due', models.DateTimeField(blank=True, null=True)),
                ('maintenance_interval_hours', models.IntegerField(blank=True, null=True)),
                ('total_operating_hours', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('work_center', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='equipment_units', to='manufacturing.workcenter')),
            ],
            options={
                'db_table': 'equipment_units',
                'ordering': ['unit_code'],
                'indexes': [
                    models.Index(fields=['work_center', 'is_active'], name='idx_equipment_center_active'),
                ],
            },
        ),
        migrations.CreateModel(
            name='RoutingStep',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('step_order', models.IntegerField()),
                ('description', models.CharField(max_length=255)),
                ('expected_yield_percent', models.IntegerField(default=10000)),
                ('setup_time_minutes', models.IntegerField(default=0)),
                ('run_time_minutes', models.IntegerField(default=0)),
                ('routing', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='steps', to='manufacturing.routing')),
                ('work_center', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='routing_steps', to='manufacturing.workcenter')),
            ],
            options={
                'db_table': 'routing_steps',
                'ordering': ['routing', 'step_order'],
                'unique_together': {('routing', 'step_order')},
            },
        ),
        migrations.CreateModel(
            name='WorkOrder',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_number', models.CharField(max_length=50, unique=True)),
                ('item_name', models.CharField(max_length=255)),
                ('qty_planned', models.DecimalField(decimal_places=3, max_digits=12)),
                ('qty_produced', models.DecimalField(decimal_places=3, default=Decimal('0'), max_digits=12)),
                ('qty_rejected', models.DecimalField(decimal_places=3, default=Decimal('0'), max_digits=12)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('released', 'Released'), ('in_progress', 'In Progress'), ('completed', 'Completed'), ('closed', 'Closed'), ('cancelled', 'Cancelled')], default='draft', max_length=20)),
                ('start_date', models.DateTimeField(blank=True, null=True)),
                ('end_date', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='work_orders', to=settings.AUTH_USER_MODEL)),
                ('routing', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='work_orders', to='manufacturing.routing')),
            ],
            options={
                'db_table': 'work_orders',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='idx_work_order_status'),
                ],
            },
        ),
        migrations.CreateModel(
            name='WorkOrderStep',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('in_progress', 'In Progress'), ('completed', 'Completed')], default='pending', max_length=20)),
                ('stage_type', models.CharField(blank=True, max_length=50)),
                ('qty_in', models.DecimalField(blank=True, decimal_places=3, max_digits=12, null=True)),
                ('qty_out', models.DecimalField(blank=True, decimal_places=3, max_digits=12, null=True)),
                ('qty_scrap', models.DecimalField(blank=True, decimal_places=3, max_digits=12, null=True)),
                ('waste_qty', models.DecimalField(blank=True, decimal_places=3, max_digits=12, null=True)),
                ('waste_reasons', models.JSONField(blank=True, default=list)),
                ('actual_yield_percent', models.IntegerField(blank=True, null=True)),
                ('start_time', models.DateTimeField(blank=True, null=True)),
                ('end_time', models.DateTimeField(blank=True, null=True)),
                ('actual_duration_minutes', models.IntegerField(blank=True, null=True)),
                ('overhead_applied', models.IntegerField(default=0)),
                ('stage_cost', models.IntegerField(default=0)),
                ('wip_batch_number', models.CharField(blank=True, max_length=100)),
                ('additional_materials', models.JSONField(blank=True, default=list)),
                ('operator_name', models.CharField(blank=True, max_length=255)),
                ('quality_check_passed', models.BooleanField(blank=True, null=True)),
                ('quality_notes', models.TextField(blank=True)),
                ('quality_metrics', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('equipment_unit', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='work_order_steps', to='manufacturing.equipmentunit')),
                ('operator', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='executed_steps', to=settings.AUTH_USER_MODEL)),
                ('routing_step', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='work_order_steps', to='manufacturing.routingstep')),
                ('work_order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='steps', to='manufacturing.workorder')),
            ],
            options={
                'db_table': 'work_order_steps',
                'ordering': ['work_order', 'routing_step__step_order'],
                'indexes': [
                    models.Index(fields=['work_order', 'status'], name='idx_wo_step_status'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('work_order', 'routing_step'), name='uniq_work_order_routing_step'),
                ],
            },
        ),
        migrations.CreateModel(
            name='WorkOrderStepCost',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('material_cost', models.IntegerField(default=0)),
                ('overhead_cost', models.IntegerField(default=0)),
                ('previous_step_cost', models.IntegerField(default=0)),
                ('total_cost', models.IntegerField(default=0)),
                ('unit_cost_after_yield', models.IntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('step', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='cost', to='manufacturing.workorderstep')),
            ],
            options={
                'db_table': 'work_order_step_costs',
            },
        ),
    ]
