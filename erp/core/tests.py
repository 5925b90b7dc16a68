"""
Test suite for the core module
Tests: authentication, current user permissions, operator accounts and audit logging
"""
from django.test import TestCase
from rest_framework import status
from erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from erp.core.models import AuditLog, User
from erp.core.utils import create_audit_log


class AuthenticationTests(TestCase):
    """Test JWT login and the current user endpoint"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.user = TestDataFactory.create_user(username='manager1', password='testpass123')

    def test_login_returns_tokens(self):
        """Test login with valid credentials"""
        response = self.client.post('/api/v1/auth/login/', {
            'username': 'manager1',
            'password': 'testpass123',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

    def test_login_wrong_password(self):
        """Test login with a wrong password"""
        response = self.client.post('/api/v1/auth/login/', {
            'username': 'manager1',
            'password': 'wrong',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_requires_authentication(self):
        """Test the current user endpoint without a token"""
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_manager_flags(self):
        """Test permission flags for a production manager"""
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], 'manager1')
        self.assertFalse(response.data['is_admin'])
        self.assertTrue(response.data['can_execute_stages'])
        self.assertTrue(response.data['can_access_costs'])

    def test_me_operator_flags(self):
        """Test operators execute stages but do not see costs"""
        operator = TestDataFactory.create_operator()
        self.client.authenticate_user(operator)
        response = self.client.get('/api/v1/auth/me/')
        self.assertTrue(response.data['can_execute_stages'])
        self.assertFalse(response.data['can_access_costs'])

    def test_me_viewer_flags(self):
        """Test viewers cannot execute stages"""
        viewer = TestDataFactory.create_user(role='VIEWER')
        self.client.authenticate_user(viewer)
        response = self.client.get('/api/v1/auth/me/')
        self.assertFalse(response.data['can_execute_stages'])
        self.assertFalse(response.data['can_access_costs'])


class UserAPITests(TestCase):
    """Test admin-only user endpoints"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.admin = TestDataFactory.create_user(is_staff=True, role='ADMIN')

    def test_non_admin_forbidden(self):
        """Test regular users cannot list users"""
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_user_list_role_filter(self):
        """Test filtering users by role"""
        operator = TestDataFactory.create_operator()
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/users/', {'role': 'FACTORY_WORKER'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([u['id'] for u in response.data], [operator.id])

    def test_create_operator(self):
        """Test creating an operator account and deactivating it"""
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/v1/users/', {
            'username': 'aziz',
            'first_name': 'Aziz',
            'last_name': 'Karimov',
            'password': 'Fr33zeDry!ng',
            'password_confirm': 'Fr33zeDry!ng',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['role'], 'FACTORY_WORKER')
        self.assertEqual(response.data['display_name'], 'Aziz Karimov')

        operator = User.objects.get(username='aziz')
        self.assertTrue(operator.check_password('Fr33zeDry!ng'))
        response = self.client.patch(f'/api/v1/users/{operator.id}/', {'is_active': False}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        operator.refresh_from_db()
        self.assertFalse(operator.is_active)

    def test_password_mismatch(self):
        """Test creating a user with mismatched passwords"""
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/v1/users/', {
            'username': 'aziz',
            'password': 'Fr33zeDry!ng',
            'password_confirm': 'other',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data)


class AuditLogTests(TestCase):
    """Test audit log creation and listing"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_audit_log(self):
        """Test an entry is stored with its user and reference"""
        log = create_audit_log(
            action='stage_submit',
            model_name='WorkOrderStep',
            object_id=12,
            object_name='WO-0001',
            object_reference='WO-1-STEP-2',
            user=self.user,
            changes={'qty_out': '95.000'},
        )
        self.assertIsNotNone(log)
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.object_id, '12')

    def test_missing_fields_skipped(self):
        """Test entries without an action or object id are not stored"""
        self.assertIsNone(create_audit_log(action='stage_submit', model_name='WorkOrderStep'))
        self.assertIsNone(create_audit_log(model_name='WorkOrderStep', object_id=1))
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_list_filters(self):
        """Test filtering by action and object reference"""
        create_audit_log(action='stage_submit', model_name='WorkOrderStep', object_id=1,
                         object_reference='WO-1-STEP-1', user=self.user)
        create_audit_log(action='stage_submit', model_name='WorkOrderStep', object_id=2,
                         object_reference='WO-1-STEP-2', user=self.user)
        create_audit_log(action='equipment_hours', model_name='EquipmentUnit', object_id=3, user=self.user)

        response = self.client.get('/api/v1/audit-logs/', {'action': 'stage_submit'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

        response = self.client.get('/api/v1/audit-logs/', {'object_reference': 'STEP-2'})
        self.assertEqual([log['object_id'] for log in response.data], ['2'])

        response = self.client.get('/api/v1/audit-logs/', {'model_name': 'EquipmentUnit'})
        self.assertEqual(response.data[0]['action'], 'equipment_hours')
