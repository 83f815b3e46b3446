"""
Test suite for organizations
Tests: organization CRUD, code generation, memberships, owner protection,
tenant dashboard and isolation checks
"""
from unittest import mock

from django.core.cache import cache
from django.test import TestCase
from rest_framework import status

from restaurant_erp.core.models import AuditLog
from restaurant_erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from restaurant_erp.organizations.models import Organization, UserOrganization
from restaurant_erp.organizations.serializers import OrganizationSerializer
from restaurant_erp.organizations.services import (
    calculate_health_score, check_tenant_isolation, compliance_status, determine_features,
)
from restaurant_erp.organizations.utils import generate_org_code
from restaurant_erp.universal.models import Relationship


class OrganizationCodeTests(TestCase):
    """Test organization code generation"""

    def test_generate_org_code(self):
        """Test codes are uppercase, dashed and timestamped"""
        code = generate_org_code("Mario's Pizza Place")
        self.assertTrue(code.startswith('MARIOS-PIZZA-PLACE-'))
        self.assertRegex(code, r'-\d{14}$')

    def test_generate_org_code_avoids_collisions(self):
        """Test a numeric suffix is added when the code is taken"""
        first = generate_org_code('Taco Stand')
        TestDataFactory.create_organization(code=first)
        second = generate_org_code('Taco Stand')
        self.assertNotEqual(first, second)

    def test_generate_org_code_symbols_only(self):
        """Test names without usable characters fall back to ORG"""
        self.assertTrue(generate_org_code('!!!').startswith('ORG-'))


class OrganizationAPITests(TestCase):
    """Test organization endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_organization_makes_owner(self):
        """Test the creator becomes the owner"""
        data = {'org_name': 'Blue Door Bistro', 'currency': 'usd', 'country': 'us'}
        response = self.client.post('/api/v1/organizations/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['org_code'].startswith('BLUE-DOOR-BISTRO-'))
        self.assertEqual(response.data['currency'], 'USD')
        self.assertEqual(response.data['member_role'], 'owner')

        org = Organization.objects.get(pk=response.data['id'])
        self.assertEqual(org.created_by, self.user)
        self.assertEqual(org.get_owner_count(), 1)
        self.assertTrue(AuditLog.objects.filter(model_name='Organization', action='create').exists())

    def test_create_organization_duplicate_code(self):
        """Test a taken organization code returns 409"""
        TestDataFactory.create_organization(code='TAKEN')
        response = self.client.post(
            '/api/v1/organizations/', {'org_name': 'Another', 'org_code': 'taken'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertIn('error', response.data)

    def test_create_organization_short_name(self):
        """Test names need at least two characters"""
        response = self.client.post('/api/v1/organizations/', {'org_name': 'A'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('org_name', response.data['details'])

    def test_create_organization_bad_currency(self):
        """Test currency must be a 3-letter code"""
        response = self.client.post(
            '/api/v1/organizations/', {'org_name': 'Cafe', 'currency': 'DOLLARS'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_only_member_organizations(self):
        """Test the list contains only active memberships"""
        mine = TestDataFactory.create_organization(name='Mine')
        TestDataFactory.create_organization(name='Theirs')
        TestDataFactory.add_member(self.user, mine)

        response = self.client.get('/api/v1/organizations/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([o['org_name'] for o in response.data], ['Mine'])

    def test_admin_lists_all_organizations(self):
        """Test platform administrators see every organization"""
        TestDataFactory.create_organization()
        TestDataFactory.create_organization()
        admin = TestDataFactory.create_user(is_staff=True)
        self.client.authenticate_user(admin)
        response = self.client.get('/api/v1/organizations/')
        self.assertEqual(len(response.data), 2)

    def test_non_member_detail_forbidden(self):
        """Test non-members cannot read an organization"""
        org = TestDataFactory.create_organization()
        response = self.client.get(f'/api/v1/organizations/{org.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_staff_cannot_update(self):
        """Test only owners and managers update an organization"""
        org = TestDataFactory.create_organization()
        TestDataFactory.add_member(self.user, org, role=UserOrganization.ROLE_STAFF)
        response = self.client.patch(f'/api/v1/organizations/{org.id}/', {'org_name': 'Renamed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_manager_updates(self):
        """Test managers can rename the organization"""
        org = TestDataFactory.create_organization()
        TestDataFactory.add_member(self.user, org, role=UserOrganization.ROLE_MANAGER)
        response = self.client.patch(f'/api/v1/organizations/{org.id}/', {'org_name': 'Renamed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['org_name'], 'Renamed')

    def test_delete_is_soft_and_owner_only(self):
        """Test only owners deactivate and the organization then 404s for writes"""
        org = TestDataFactory.create_organization()
        manager = TestDataFactory.create_member(org, role=UserOrganization.ROLE_MANAGER)
        TestDataFactory.add_member(self.user, org, role=UserOrganization.ROLE_OWNER)

        self.client.authenticate_user(manager)
        response = self.client.delete(f'/api/v1/organizations/{org.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(self.user)
        response = self.client.delete(f'/api/v1/organizations/{org.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        org.refresh_from_db()
        self.assertFalse(org.is_active)

        response = self.client.get(f'/api/v1/organizations/{org.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['is_active'])

        response = self.client.patch(f'/api/v1/organizations/{org.id}/', {'org_name': 'Back'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_inactive_organization_blocks_entity_writes(self):
        """Test writes into a deactivated organization return 404"""
        org = TestDataFactory.create_organization(is_active=False)
        TestDataFactory.add_member(self.user, org)
        data = {'organization': str(org.id), 'entity_type': 'supplier', 'entity_name': 'Late Supplies'}
        response = self.client.post('/api/v1/entities/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_create_organization_code_race_returns_conflict(self):
        """Test a code taken between validation and insert returns 409"""
        TestDataFactory.create_organization(code='RACE')
        with mock.patch.object(OrganizationSerializer, 'validate_org_code', lambda self, value: value.strip().upper()):
            response = self.client.post(
                '/api/v1/organizations/', {'org_name': 'Late Arrival', 'org_code': 'race'}, format='json'
            )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Organization.objects.filter(org_code='RACE').count(), 1)
        self.assertFalse(UserOrganization.objects.filter(user=self.user).exists())


class MembershipAPITests(TestCase):
    """Test membership endpoints"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.owner = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_OWNER)
        self.newcomer = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.owner)

    def _add(self, user, role='staff'):
        return self.client.post(
            '/api/v1/user-organizations/',
            {'user': user.id, 'organization': str(self.org.id), 'role': role},
            format='json'
        )

    def test_add_member(self):
        """Test adding a member returns details"""
        response = self._add(self.newcomer)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['role'], 'staff')
        self.assertEqual(response.data['user_details']['username'], self.newcomer.username)
        self.assertEqual(response.data['organization_details']['code'], self.org.org_code)
        self.assertTrue(AuditLog.objects.filter(action='member_add').exists())

    def test_add_existing_member_conflict(self):
        """Test adding an active member twice returns 409"""
        self._add(self.newcomer)
        response = self._add(self.newcomer)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_readd_inactive_member_reactivates(self):
        """Test re-adding a removed member reactivates the membership"""
        membership = TestDataFactory.add_member(self.newcomer, self.org, role='viewer', is_active=False)
        response = self._add(self.newcomer, role='manager')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['id'], membership.id)
        membership.refresh_from_db()
        self.assertTrue(membership.is_active)
        self.assertEqual(membership.role, 'manager')

    def test_staff_cannot_add_members(self):
        """Test staff cannot manage memberships"""
        staff = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.client.authenticate_user(staff)
        response = self._add(self.newcomer)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_memberships_with_details(self):
        """Test listing memberships of an organization"""
        self._add(self.newcomer)
        response = self.client.get(
            '/api/v1/user-organizations/', {'organization': str(self.org.id), 'include_details': 'true'}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)
        self.assertIn('user_details', response.data[0])

    def test_change_role(self):
        """Test patching a member's role"""
        membership = TestDataFactory.add_member(self.newcomer, self.org, role='staff')
        response = self.client.patch(
            f'/api/v1/user-organizations/{membership.id}/', {'role': 'accountant'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['role'], 'accountant')

    def test_last_owner_cannot_be_removed(self):
        """Test the last active owner is protected"""
        membership = UserOrganization.objects.get(user=self.owner, organization=self.org)
        response = self.client.delete(f'/api/v1/user-organizations/{membership.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.patch(
            f'/api/v1/user-organizations/{membership.id}/', {'role': 'manager'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('role', response.data['details'])

    def test_owner_removed_when_another_owner_exists(self):
        """Test an owner can leave when a second owner remains"""
        TestDataFactory.add_member(self.newcomer, self.org, role=UserOrganization.ROLE_OWNER)
        membership = UserOrganization.objects.get(user=self.owner, organization=self.org)
        response = self.client.delete(f'/api/v1/user-organizations/{membership.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        membership.refresh_from_db()
        self.assertFalse(membership.is_active)

    def test_list_memberships_rejects_malformed_filters(self):
        """Test malformed organization and user filters return 400"""
        for params in ({'organization': 'not-a-uuid'}, {'user': 'abc'}, {'role': 'chef'}):
            response = self.client.get('/api/v1/user-organizations/', params)
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertIn(list(params)[0], response.data['details'])

    def test_list_memberships_filtered_by_user(self):
        """Test filtering memberships by user id"""
        self._add(self.newcomer)
        response = self.client.get('/api/v1/user-organizations/', {'user': self.newcomer.id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([m['user'] for m in response.data], [self.newcomer.id])

    def test_manager_cannot_grant_owner_role(self):
        """Test only owners can promote members to owner"""
        manager = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_MANAGER)
        own_membership = UserOrganization.objects.get(user=manager, organization=self.org)
        self.client.authenticate_user(manager)

        response = self.client.patch(
            f'/api/v1/user-organizations/{own_membership.id}/', {'role': 'owner'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        own_membership.refresh_from_db()
        self.assertEqual(own_membership.role, UserOrganization.ROLE_MANAGER)

        response = self._add(self.newcomer, role='owner')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self._add(self.newcomer, role='staff')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_owner_can_grant_owner_role(self):
        """Test an owner can promote a member to owner"""
        membership = TestDataFactory.add_member(self.newcomer, self.org, role='manager')
        response = self.client.patch(
            f'/api/v1/user-organizations/{membership.id}/', {'role': 'owner'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.org.get_owner_count(), 2)

    def test_member_reads_own_membership(self):
        """Test users can read their own membership"""
        membership = TestDataFactory.add_member(self.newcomer, self.org, role='viewer')
        self.client.authenticate_user(self.newcomer)
        response = self.client.get(f'/api/v1/user-organizations/{membership.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class DashboardTests(TestCase):
    """Test the tenant monitoring dashboard"""

    def setUp(self):
        cache.clear()
        self.admin = TestDataFactory.create_user(is_staff=True)
        self.client = AuthenticatedAPIClient()

    def tearDown(self):
        cache.clear()

    def test_health_score_rules(self):
        """Test health score deductions and compliance thresholds"""
        self.assertEqual(calculate_health_score(5, 5, 2), 100)
        self.assertEqual(calculate_health_score(0, 5, 2), 70)
        self.assertEqual(calculate_health_score(0, 0, 0), 30)
        self.assertEqual(compliance_status(100), 'compliant')
        self.assertEqual(compliance_status(70), 'warning')
        self.assertEqual(compliance_status(30), 'violation')

    def test_determine_features(self):
        """Test feature flags derived from activity"""
        self.assertEqual(determine_features(0, 0, 1), [])
        self.assertEqual(
            determine_features(3, 150, 2),
            ['universal_entities', 'transactions', 'multi_user', 'high_volume']
        )

    def test_dashboard_requires_admin(self):
        """Test non-staff users are rejected"""
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/v1/dashboard/organizations/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_dashboard_summaries(self):
        """Test dashboard counts per organization"""
        org = TestDataFactory.create_organization(name='Busy Kitchen')
        TestDataFactory.create_member(org)
        TestDataFactory.create_inventory_item(org)
        TestDataFactory.create_transaction(org)

        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/dashboard/organizations/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        summary = response.data['organizations'][0]
        self.assertEqual(summary['name'], 'Busy Kitchen')
        self.assertEqual(summary['entity_count'], 1)
        self.assertEqual(summary['transaction_count'], 1)
        self.assertEqual(summary['health_score'], 100)
        self.assertTrue(response.data['isolation_status']['isolated'])
        self.assertEqual(response.data['totals']['active_organizations'], 1)

    def test_dashboard_cache_invalidated_on_change(self):
        """Test new organizations appear after the cache is invalidated by signals"""
        TestDataFactory.create_organization()
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/dashboard/organizations/')
        self.assertEqual(len(response.data['organizations']), 1)

        TestDataFactory.create_organization()
        response = self.client.get('/api/v1/dashboard/organizations/')
        self.assertEqual(len(response.data['organizations']), 2)

    def test_isolation_check_detects_cross_links(self):
        """Test relationships spanning organizations are counted"""
        org = TestDataFactory.create_organization()
        other = TestDataFactory.create_organization()
        Relationship.objects.create(
            organization=org,
            parent_entity=TestDataFactory.create_menu_category(org),
            child_entity=TestDataFactory.create_menu_item(other),
            relationship_type='menu_item_category',
        )
        result = check_tenant_isolation()
        self.assertFalse(result['isolated'])
        self.assertEqual(result['relationship_violations'], 1)
