"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from erp.manufacturing.models import (
    EquipmentUnit, Routing, RoutingStep, WorkCenter, WorkOrder,
)
from erp.manufacturing.services import ensure_work_order_steps
from decimal import Decimal
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', is_staff=False,
                    is_superuser=False, role='MANAGER', **extra):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser,
            role=role,
            **extra
        )

    @staticmethod
    def create_operator(first_name='Aziz', last_name='Karimov', is_active=True):
        """Create an active factory worker"""
        return TestDataFactory.create_user(
            role='FACTORY_WORKER',
            first_name=first_name,
            last_name=last_name,
            is_active=is_active,
        )

    @staticmethod
    def create_work_center(name=None, code=None, cost_per_hour=60000):
        """Create a test work center"""
        if not name:
            name = f'Center_{TestDataFactory.random_string(6)}'
        if not code:
            code = f'WC_{TestDataFactory.random_string(6).upper()}'
        return WorkCenter.objects.create(name=name, code=code, cost_per_hour=cost_per_hour)

    @staticmethod
    def create_equipment_unit(work_center, unit_code=None, chamber_capacity=Decimal('45.00'),
                              maintenance_interval_hours=2000, total_operating_hours=Decimal('0.00'),
                              is_active=True):
        """Create a test equipment unit"""
        if not unit_code:
            unit_code = f'FD-{TestDataFactory.random_string(5).upper()}'
        return EquipmentUnit.objects.create(
            work_center=work_center,
            unit_code=unit_code,
            manufacturer='Harvest Right',
            model='HR-Pro-XL',
            chamber_capacity=chamber_capacity,
            shelve_count=6,
            maintenance_interval_hours=maintenance_interval_hours,
            total_operating_hours=total_operating_hours,
            is_active=is_active,
        )

    @staticmethod
    def create_routing_with_steps(step_names=None, name=None, item_name='Freeze-Dried Apple Slices'):
        """
        Create a routing whose steps each get their own work center.

        step_names is a list of names or (name, expected_yield_bp, cost_per_hour) tuples.
        """
        if step_names is None:
            step_names = ['Washing', 'Mixing', 'Freeze-Drying']
        routing = Routing.objects.create(
            name=name or f'Routing_{TestDataFactory.random_string(6)}',
            item_name=item_name,
        )
        for order, entry in enumerate(step_names, start=1):
            if isinstance(entry, str):
                entry = (entry, 10000, 60000)
            description, expected_yield, cost_per_hour = entry
            RoutingStep.objects.create(
                routing=routing,
                step_order=order,
                description=description,
                work_center=TestDataFactory.create_work_center(cost_per_hour=cost_per_hour),
                expected_yield_percent=expected_yield,
            )
        return routing

    @staticmethod
    def create_work_order(routing=None, qty_planned=Decimal('100'), status='in_progress', user=None,
                          order_number=None):
        """Create a test work order with its pending steps"""
        if routing is None:
            routing = TestDataFactory.create_routing_with_steps()
        if not order_number:
            order_number = f'WO-{TestDataFactory.random_string(8).upper()}'
        work_order = WorkOrder.objects.create(
            order_number=order_number,
            item_name=routing.item_name,
            routing=routing,
            qty_planned=qty_planned,
            status=status,
            created_by=user,
        )
        ensure_work_order_steps(work_order)
        return work_order


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
