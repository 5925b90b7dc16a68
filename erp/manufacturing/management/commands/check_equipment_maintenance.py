"""
Management command listing equipment units that are close to or past their
maintenance interval
"""
from django.core.management.base import BaseCommand

from erp.manufacturing.models import EquipmentUnit


class Command(BaseCommand):
    help = "Lists equipment units whose maintenance is due or within the warning window"

    def add_arguments(self, parser):
        parser.add_argument(
            '--work-center',
            help='Only check units of this work center code',
        )
        parser.add_argument(
            '--show-all',
            action='store_true',
            help='Show every active unit, not just the ones needing attention',
        )

    def handle(self, *args, **options):
        units = EquipmentUnit.objects.filter(is_active=True).select_related('work_center').order_by('unit_code')
        if options.get('work_center'):
            units = units.filter(work_center__code=options['work_center'])

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS("EQUIPMENT MAINTENANCE CHECK"))
        self.stdout.write("=" * 80)

        flagged = 0
        for unit in units:
            maintenance_status = unit.maintenance_status
            if maintenance_status == EquipmentUnit.MAINTENANCE_OK and not options.get('show_all'):
                continue
            remaining = unit.hours_until_maintenance
            remaining_text = f"{remaining:.2f}h remaining" if remaining is not None else "no interval set"
            line = f"{unit.unit_code:<12} {unit.work_center.name:<24} {maintenance_status.upper():<8} {remaining_text}"
            if maintenance_status == EquipmentUnit.MAINTENANCE_DUE:
                self.stdout.write(self.style.ERROR(line))
                flagged += 1
            elif maintenance_status == EquipmentUnit.MAINTENANCE_WARNING:
                self.stdout.write(self.style.WARNING(line))
                flagged += 1
            else:
                self.stdout.write(line)

        if flagged:
            self.stdout.write(self.style.WARNING(f"{flagged} unit(s) need maintenance attention"))
        else:
            self.stdout.write(self.style.SUCCESS("All equipment within maintenance intervals"))
