"""
Management command to seed a demo production floor: work centers, freeze-dryers,
a freeze-dried fruit routing, operators and in-progress work orders
"""
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from erp.manufacturing.models import (
    EquipmentUnit, Routing, RoutingStep, WorkCenter, WorkOrder, WorkOrderStep,
)
from erp.manufacturing.services import ensure_work_order_steps

User = get_user_model()

# code, name, cost per hour (minor units)
WORK_CENTERS = [
    ('RCV', 'Receiving Dock', 2_500_000),
    ('WASH', 'Washing Line', 3_000_000),
    ('CUT', 'Cutting Station', 3_500_000),
    ('MIX', 'Mixing Station', 4_000_000),
    ('FD', 'Freeze-Dryer Bay', 12_000_000),
    ('PACK', 'Packing Line', 2_800_000),
]

# step name, work center code, expected yield (basis points)
ROUTING_STEPS = [
    ('Receiving & Inspection', 'RCV', 10000),
    ('Washing', 'WASH', 9500),
    ('Cutting & Slicing', 'CUT', 8500),
    ('Mixing', 'MIX', 9500),
    ('Freeze-Drying', 'FD', 1000),
    ('Packing', 'PACK', 9800),
]

FREEZE_DRYERS = [
    ('FD-01', 'Harvest Right', 'HR-Pro-XL', Decimal('45.00'), 6, 2000, Decimal('120.50')),
    ('FD-02', 'Harvest Right', 'HR-Pro-XL', Decimal('45.00'), 6, 2000, Decimal('1850.00')),
    ('FD-03', 'Cuddon', 'FD-200', Decimal('200.00'), 10, 4000, Decimal('4100.00')),
]

OPERATORS = [
    ('operator1', 'Aziz', 'Karimov'),
    ('operator2', 'Dilnoza', 'Rashidova'),
]


class Command(BaseCommand):
    help = "Seeds work centers, equipment, a freeze-dried fruit routing and in-progress work orders"

    def add_arguments(self, parser):
        parser.add_argument(
            '--reset',
            action='store_true',
            help='Delete existing manufacturing data before seeding',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write(self.style.SUCCESS("=" * 80))
        self.stdout.write(self.style.SUCCESS("SEEDING PRODUCTION FLOOR"))
        self.stdout.write(self.style.SUCCESS("=" * 80))

        if options['reset']:
            self.stdout.write(self.style.WARNING("Clearing manufacturing data..."))
            WorkOrderStep.objects.all().delete()
            WorkOrder.objects.all().delete()
            RoutingStep.objects.all().delete()
            Routing.objects.all().delete()
            EquipmentUnit.objects.all().delete()
            WorkCenter.objects.all().delete()

        centers = {}
        for code, name, cost_per_hour in WORK_CENTERS:
            centers[code], created = WorkCenter.objects.get_or_create(
                code=code,
                defaults={'name': name, 'cost_per_hour': cost_per_hour},
            )
            self._report('Work center', f"{code} - {name}", created)

        for unit_code, manufacturer, model, capacity, shelves, interval, hours in FREEZE_DRYERS:
            _, created = EquipmentUnit.objects.get_or_create(
                unit_code=unit_code,
                defaults={
                    'work_center': centers['FD'],
                    'manufacturer': manufacturer,
                    'model': model,
                    'chamber_capacity': capacity,
                    'shelve_count': shelves,
                    'maintenance_interval_hours': interval,
                    'total_operating_hours': hours,
                },
            )
            self._report('Equipment unit', unit_code, created)

        routing, created = Routing.objects.get_or_create(
            name='Freeze-Dried Apple Slices',
            defaults={'item_name': 'Freeze-Dried Apple Slices 50g'},
        )
        self._report('Routing', routing.name, created)
        for order, (description, center_code, expected_yield) in enumerate(ROUTING_STEPS, start=1):
            RoutingStep.objects.get_or_create(
                routing=routing,
                step_order=order,
                defaults={
                    'description': description,
                    'work_center': centers[center_code],
                    'expected_yield_percent': expected_yield,
                },
            )

        for username, first_name, last_name in OPERATORS:
            user, created = User.objects.get_or_create(
                username=username,
                defaults={'first_name': first_name, 'last_name': last_name, 'role': 'FACTORY_WORKER'},
            )
            if created:
                user.set_password('operator123')
                user.save()
            self._report('Operator', user.display_name, created)

        for number, qty in (('WO-0001', Decimal('500')), ('WO-0002', Decimal('250'))):
            work_order, created = WorkOrder.objects.get_or_create(
                order_number=number,
                defaults={
                    'item_name': routing.item_name,
                    'routing': routing,
                    'qty_planned': qty,
                    'status': 'in_progress',
                },
            )
            ensure_work_order_steps(work_order)
            self._report('Work order', number, created)

        self.stdout.write(self.style.SUCCESS("Production floor ready."))

    def _report(self, kind, label, created):
        if created:
            self.stdout.write(self.style.SUCCESS(f"  + {kind}: {label}"))
        else:
            self.stdout.write(f"  = {kind} exists: {label}")
