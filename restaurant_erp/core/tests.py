"""
Test suite for the core app
Tests: registration, JWT login, current user, users, settings, audit logs,
global search, error envelope and management commands
"""
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from restaurant_erp.core.models import AuditLog, Setting, User
from restaurant_erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient, TEST_PASSWORD
from restaurant_erp.core.utils import create_audit_log, get_client_ip
from restaurant_erp.organizations.models import UserOrganization
from restaurant_erp.universal.models import Relationship


class AuthAPITests(TestCase):
    """Test registration, login and token refresh"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_register_returns_tokens(self):
        """Test registering a user returns the user and a token pair"""
        data = {
            'username': 'chef_anna',
            'email': 'anna@bistro.test',
            'password': TEST_PASSWORD,
            'password_confirm': TEST_PASSWORD,
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['user']['username'], 'chef_anna')
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertTrue(User.objects.get(username='chef_anna').check_password(TEST_PASSWORD))

    def test_register_password_mismatch(self):
        """Test registration with mismatched passwords fails"""
        data = {
            'username': 'chef_bob',
            'password': TEST_PASSWORD,
            'password_confirm': 'Different!2026',
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data['details'])

    def test_register_duplicate_email(self):
        """Test emails are unique regardless of case"""
        TestDataFactory.create_user(username='chef_eve', email='eve@bistro.test')
        data = {
            'username': 'chef_eve2',
            'email': 'EVE@bistro.test',
            'password': TEST_PASSWORD,
            'password_confirm': TEST_PASSWORD,
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('email', response.data['details'])

    def test_register_weak_password(self):
        """Test registration rejects passwords failing the validators"""
        data = {'username': 'chef_carl', 'password': '123', 'password_confirm': '123'}
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('error', response.data)

    def test_login_and_refresh(self):
        """Test obtaining and refreshing a token pair"""
        user = TestDataFactory.create_user(username='waiter_dan')
        response = self.client.post(
            '/api/v1/auth/login/',
            {'username': user.username, 'password': TEST_PASSWORD},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        refresh = response.data['refresh']

        response = self.client.post('/api/v1/auth/refresh/', {'refresh': refresh}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)

    def test_login_wrong_password(self):
        """Test login with a wrong password is rejected"""
        user = TestDataFactory.create_user()
        response = self.client.post(
            '/api/v1/auth/login/',
            {'username': user.username, 'password': 'wrong-password'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertIn('error', response.data)

    def test_refresh_with_garbage_token(self):
        """Test refreshing with an invalid token is rejected"""
        response = self.client.post('/api/v1/auth/refresh/', {'refresh': 'not-a-token'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_unauthenticated_request_rejected(self):
        """Test protected endpoints require a token"""
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertIn('error', response.data)


class UserAPITests(TestCase):
    """Test current user and user administration endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.admin = TestDataFactory.create_user(is_staff=True)
        self.client = AuthenticatedAPIClient()

    def test_me_lists_active_memberships(self):
        """Test the current user endpoint lists active organization memberships"""
        org = TestDataFactory.create_organization(name='Alpha Diner')
        inactive_org = TestDataFactory.create_organization(name='Closed Diner', is_active=False)
        TestDataFactory.add_member(self.user, org, role=UserOrganization.ROLE_MANAGER)
        TestDataFactory.add_member(self.user, inactive_org)

        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['is_admin'])
        self.assertEqual(len(response.data['organizations']), 1)
        self.assertEqual(response.data['organizations'][0]['id'], str(org.id))
        self.assertEqual(response.data['organizations'][0]['role'], 'manager')

    def test_user_list_requires_admin(self):
        """Test non-staff users cannot list users"""
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_lists_and_deactivates_users(self):
        """Test admins can list users and deleting deactivates"""
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

        response = self.client.delete(f'/api/v1/users/{self.user.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.user.refresh_from_db()
        self.assertFalse(self.user.is_active)

    def test_missing_user_returns_404(self):
        """Test retrieving an unknown user"""
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/users/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertIn('error', response.data)


class SettingAPITests(TestCase):
    """Test system settings endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_user(is_staff=True)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_setting_crud(self):
        """Test create, update and delete of a setting"""
        response = self.client.post(
            '/api/v1/settings/',
            {'key': 'default_currency', 'value': 'USD'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        setting_id = response.data['id']

        response = self.client.patch(f'/api/v1/settings/{setting_id}/', {'value': 'EUR'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Setting.objects.get(pk=setting_id).value, 'EUR')

        response = self.client.delete(f'/api/v1/settings/{setting_id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Setting.objects.filter(pk=setting_id).exists())

    def test_duplicate_setting_key(self):
        """Test setting keys are unique"""
        Setting.objects.create(key='tax_rate', value='8.5')
        response = self.client.post('/api/v1/settings/', {'key': 'tax_rate', 'value': '9'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('key', response.data['details'])


class AuditLogTests(TestCase):
    """Test audit log helpers and endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.other = TestDataFactory.create_user()
        self.admin = TestDataFactory.create_user(is_staff=True)
        self.client = AuthenticatedAPIClient()

    def test_create_audit_log_skips_missing_fields(self):
        """Test audit logs are not written without action, model and object id"""
        self.assertIsNone(create_audit_log(user=self.user, action='create', model_name='Entity'))
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_create_audit_log_with_organization(self):
        """Test audit logs accept an organization instance"""
        org = TestDataFactory.create_organization()
        log = create_audit_log(
            user=self.user, action='create', model_name='Entity',
            object_id='abc', object_name='Tomatoes', organization=org
        )
        self.assertEqual(log.organization_id, org.id)
        self.assertEqual(log.user, self.user)

    def test_create_audit_log_stores_decimal_changes(self):
        """Test decimal values in changes are stored as JSON strings"""
        log = create_audit_log(
            user=self.user, action='update', model_name='MenuItem',
            object_id='abc', changes={'base_price': Decimal('12.50')}
        )
        log.refresh_from_db()
        self.assertEqual(log.changes, {'base_price': '12.50'})

    def test_get_client_ip_prefers_forwarded_header(self):
        """Test client IP extraction from X-Forwarded-For"""
        class FakeRequest:
            META = {'HTTP_X_FORWARDED_FOR': '10.0.0.1, 10.0.0.2', 'REMOTE_ADDR': '127.0.0.1'}
        self.assertEqual(get_client_ip(FakeRequest()), '10.0.0.1')
        self.assertIsNone(get_client_ip(None))

    def test_non_staff_sees_only_own_logs(self):
        """Test audit log list is restricted to the user's own entries"""
        create_audit_log(user=self.user, action='create', model_name='Entity', object_id='1')
        create_audit_log(user=self.other, action='create', model_name='Entity', object_id='2')

        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['object_id'], '1')

    def test_audit_log_filters(self):
        """Test filtering audit logs by action and model"""
        create_audit_log(user=self.user, action='create', model_name='Entity', object_id='1')
        create_audit_log(user=self.user, action='update', model_name='Entity', object_id='1')
        create_audit_log(user=self.user, action='create', model_name='Organization', object_id='2')

        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/audit-logs/', {'action': 'create', 'model': 'Entity'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

    def test_audit_log_filters_reject_malformed_values(self):
        """Test malformed dates and organization ids return 400"""
        self.client.authenticate_user(self.admin)
        for params in ({'date_from': 'yesterday'}, {'organization': 'not-a-uuid'}):
            response = self.client.get('/api/v1/audit-logs/', params)
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertIn(list(params)[0], response.data['details'])

    def test_audit_log_filter_by_organization_and_date(self):
        """Test filtering audit logs by organization and date range"""
        org = TestDataFactory.create_organization()
        create_audit_log(user=self.user, action='create', model_name='Entity', object_id='1', organization=org)
        create_audit_log(user=self.user, action='create', model_name='Entity', object_id='2')

        self.client.authenticate_user(self.admin)
        today = timezone.localdate().isoformat()
        response = self.client.get(
            '/api/v1/audit-logs/', {'organization': str(org.id), 'date_from': today, 'date_to': today}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([log['object_id'] for log in response.data], ['1'])

    def test_audit_log_detail_forbidden_for_other_user(self):
        """Test users cannot read other users' audit entries"""
        log = create_audit_log(user=self.other, action='create', model_name='Entity', object_id='9')
        self.client.authenticate_user(self.user)
        response = self.client.get(f'/api/v1/audit-logs/{log.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class GlobalSearchTests(TestCase):
    """Test global search across organizations, entities and transactions"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.org = TestDataFactory.create_organization(name='Harbor Grill')
        self.other_org = TestDataFactory.create_organization(name='Harbor Cafe')
        TestDataFactory.add_member(self.user, self.org)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_empty_query(self):
        """Test an empty query returns empty groups"""
        response = self.client.get('/api/v1/search/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['organizations'], [])

    def test_search_is_scoped_to_memberships(self):
        """Test search only returns rows from the user's organizations"""
        TestDataFactory.create_inventory_item(self.org, name='Harbor Salt')
        TestDataFactory.create_inventory_item(self.other_org, name='Harbor Pepper')

        response = self.client.get('/api/v1/search/', {'q': 'harbor'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([o['org_name'] for o in response.data['organizations']], ['Harbor Grill'])
        self.assertEqual([e['entity_name'] for e in response.data['entities']], ['Harbor Salt'])


class ManagementCommandTests(TestCase):
    """Test the schema inspection command"""

    def test_inspect_schema_clean(self):
        """Test inspection of a consistent database"""
        org = TestDataFactory.create_organization()
        TestDataFactory.create_inventory_item(org)
        out = StringIO()
        call_command('inspect_schema', stdout=out)
        output = out.getvalue()
        self.assertIn('UNIVERSAL SCHEMA INSPECTION', output)
        self.assertIn('inventory_item', output)
        self.assertIn('No inconsistencies found', output)

    def test_inspect_schema_reports_cross_organization_links(self):
        """Test relationships spanning organizations are reported"""
        org = TestDataFactory.create_organization()
        other = TestDataFactory.create_organization()
        parent = TestDataFactory.create_menu_category(org)
        child = TestDataFactory.create_menu_item(other)
        Relationship.objects.create(
            organization=org, parent_entity=parent, child_entity=child,
            relationship_type='menu_item_category'
        )
        out = StringIO()
        call_command('inspect_schema', stdout=out)
        self.assertIn('inconsistent rows found', out.getvalue())

    def test_inspect_schema_unknown_organization(self):
        """Test an unknown organization code is reported"""
        out = StringIO()
        call_command('inspect_schema', organization='NOPE', stdout=out)
        self.assertIn('Organization NOPE not found', out.getvalue())
