"""
Test suite for ERP module and package templates
Tests: template seeding, template management, module and package deployment,
deployment analytics
"""
from io import StringIO
from unittest import mock

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase
from rest_framework import status

from restaurant_erp.core.models import AuditLog
from restaurant_erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from restaurant_erp.organizations.models import Organization, UserOrganization
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.universal.models import Entity
from restaurant_erp.deployment import services


def seed_templates():
    out = StringIO()
    call_command('seed_module_templates', stdout=out)
    return out.getvalue()


def system_template(code):
    return Entity.objects.get(entity_code=code, entity_type__in=services.MODULE_TEMPLATE_TYPES + services.PACKAGE_TEMPLATE_TYPES)


class SeedModuleTemplatesTests(TestCase):
    """Test the seed_module_templates management command"""

    def test_seed_creates_system_templates(self):
        """Test seeding creates the system organization, modules and package"""
        output = seed_templates()
        self.assertIn('Templates created: 6', output)

        system = services.get_system_organization()
        self.assertIsNotNone(system)
        self.assertEqual(
            Entity.objects.filter(organization=system, entity_type=services.ERP_MODULE_TEMPLATE).count(), 5
        )
        package = system_template('SYS-PKG-RESTAURANT')
        self.assertEqual(
            [m.entity_code for m in services.package_modules(package)],
            ['SYS-GL-CORE', 'SYS-INVENTORY', 'SYS-PROCURE', 'SYS-REST-POS']
        )
        self.assertTrue(system_template('SYS-GL-CORE').get_field('is_core'))

    def test_seed_is_idempotent(self):
        """Test running the command twice creates nothing new"""
        seed_templates()
        output = seed_templates()
        self.assertIn('Templates created: 0', output)
        self.assertEqual(Entity.objects.filter(entity_type=services.ERP_MODULE_TEMPLATE).count(), 5)
        self.assertEqual(Organization.objects.filter(org_code='SYSTEM').count(), 1)


class DeploymentAPITestCase(TestCase):
    """Shared setup: seeded system templates and a tenant owner"""

    def setUp(self):
        cache.clear()
        seed_templates()
        self.org = TestDataFactory.create_organization()
        self.owner = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_OWNER)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.owner)
        self.org_id = str(self.org.id)

    def tearDown(self):
        cache.clear()

    def _deploy_module(self, code, **extra):
        data = {'organization': self.org_id, 'module': str(system_template(code).id)}
        data.update(extra)
        return self.client.post('/api/v1/templates/modules/deploy/', data, format='json')


class ModuleTemplateAPITests(DeploymentAPITestCase):
    """Test module template endpoints"""

    def test_list_system_modules(self):
        """Test tenants see the system modules with a summary"""
        response = self.client.get('/api/v1/templates/modules/', {'organization': self.org_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 5)
        self.assertEqual(response.data['summary']['core_modules'], 5)
        self.assertEqual(response.data['summary']['deployed_modules'], 0)
        self.assertEqual(response.data['available_filters']['categories'], ['finance', 'industry', 'operations'])
        self.assertTrue(all(m['is_system'] for m in response.data['results']))

    def test_list_filters(self):
        """Test filtering by category and excluding system modules"""
        response = self.client.get(
            '/api/v1/templates/modules/', {'organization': self.org_id, 'category': 'finance'}
        )
        self.assertEqual(
            sorted(m['entity_code'] for m in response.data['results']), ['SYS-AR-MGMT', 'SYS-GL-CORE']
        )
        response = self.client.get(
            '/api/v1/templates/modules/', {'organization': self.org_id, 'include_system': 'false'}
        )
        self.assertEqual(response.data['count'], 0)

    def test_create_custom_module(self):
        """Test a manager creates a custom module in their organization"""
        data = {
            'organization': self.org_id,
            'entity_name': 'Catering Orders',
            'entity_code': 'cus-cater',
            'module_category': 'industry',
            'configuration': {'max_guests': 200},
        }
        response = self.client.post('/api/v1/templates/modules/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['entity_code'], 'CUS-CATER')
        self.assertEqual(response.data['entity_type'], services.CUSTOM_MODULE_TEMPLATE)
        self.assertFalse(response.data['is_core'])
        self.assertEqual(response.data['configuration']['max_guests'], 200)
        self.assertTrue(AuditLog.objects.filter(model_name='ModuleTemplate', action='create').exists())

        response = self.client.get('/api/v1/templates/modules/', {'organization': self.org_id})
        self.assertEqual(response.data['summary']['custom_modules'], 1)

    def test_create_requires_organization(self):
        """Test organization is required when creating"""
        response = self.client.post('/api/v1/templates/modules/', {'entity_name': 'Loose'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('organization', response.data['details'])

    def test_create_duplicate_code(self):
        """Test template codes cannot clash with visible templates"""
        data = {'organization': self.org_id, 'entity_name': 'My Ledger', 'entity_code': 'SYS-GL-CORE'}
        response = self.client.post('/api/v1/templates/modules/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_staff_cannot_create_module(self):
        """Test only managers and owners manage templates"""
        staff = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.client.authenticate_user(staff)
        response = self.client.post(
            '/api/v1/templates/modules/', {'organization': self.org_id, 'entity_name': 'Nope'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_system_module_read_only_for_tenants(self):
        """Test tenants can read but not change system modules"""
        module = system_template('SYS-GL-CORE')
        response = self.client.get(f'/api/v1/templates/modules/{module.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_system'])

        response = self.client.patch(
            f'/api/v1/templates/modules/{module.id}/', {'description': 'Hacked'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.delete(f'/api/v1/templates/modules/{module.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_platform_admin_updates_system_module(self):
        """Test platform administrators can edit system modules"""
        admin = TestDataFactory.create_user(is_staff=True)
        self.client.authenticate_user(admin)
        module = system_template('SYS-GL-CORE')
        response = self.client.patch(
            f'/api/v1/templates/modules/{module.id}/', {'description': 'Ledger and statements'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['description'], 'Ledger and statements')

    def test_custom_module_hidden_from_other_organizations(self):
        """Test custom modules are private to their organization"""
        custom = TestDataFactory.create_module_template(self.org, entity_type=services.CUSTOM_MODULE_TEMPLATE)
        outsider = TestDataFactory.create_member(TestDataFactory.create_organization())
        self.client.authenticate_user(outsider)
        response = self.client.get(f'/api/v1/templates/modules/{custom.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_delete_custom_module(self):
        """Test deleting a custom module deactivates it"""
        custom = TestDataFactory.create_module_template(self.org, entity_type=services.CUSTOM_MODULE_TEMPLATE)
        response = self.client.delete(f'/api/v1/templates/modules/{custom.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Entity.objects.get(pk=custom.id).is_active)


class ModuleDeployAPITests(DeploymentAPITestCase):
    """Test deploying single modules"""

    def test_deploy_module(self):
        """Test deploying creates the module copy, accounts and a completed transaction"""
        response = self._deploy_module('SYS-GL-CORE')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['success'])
        result = response.data['data']
        self.assertEqual(result['status'], 'success')
        self.assertEqual(len(result['created_accounts']), 4)
        self.assertEqual(result['deployed_entities'][0]['entity_code'], 'SYS-GL-CORE-DEPLOYED')

        deployed = Entity.objects.get(organization=self.org, entity_type=services.DEPLOYED_MODULE)
        self.assertEqual(deployed.get_field('source_template_id'), str(system_template('SYS-GL-CORE').id))
        self.assertEqual(
            Entity.objects.filter(organization=self.org, entity_type=services.CHART_OF_ACCOUNT).count(), 4
        )
        txn = UniversalTransaction.objects.get(pk=result['transaction_id'])
        self.assertEqual(txn.transaction_type, 'module_deployment')
        self.assertEqual(txn.transaction_status, 'completed')
        self.assertEqual(txn.lines.count(), 1)
        self.assertTrue(AuditLog.objects.filter(action='module_deploy').exists())

        response = self.client.get(
            '/api/v1/templates/modules/', {'organization': self.org_id, 'is_deployed': 'true'}
        )
        self.assertEqual([m['entity_code'] for m in response.data['results']], ['SYS-GL-CORE'])

    def test_deploy_creates_workflows(self):
        """Test modules with workflows create them"""
        response = self._deploy_module('SYS-PROCURE')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['created_workflows'][0]['workflow_code'], 'PROC-APPROVAL')
        workflow = Entity.objects.get(organization=self.org, entity_type=services.BUSINESS_WORKFLOW)
        self.assertEqual(workflow.get_field('workflow_steps'), ['request', 'review', 'approve', 'purchase'])

    def test_deploy_without_accounts(self):
        """Test chart of accounts setup can be skipped"""
        response = self._deploy_module('SYS-GL-CORE', options={'setup_chart_of_accounts': False})
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['created_accounts'], [])
        self.assertFalse(Entity.objects.filter(organization=self.org, entity_type=services.CHART_OF_ACCOUNT).exists())

    def test_deploy_twice(self):
        """Test a module cannot be deployed twice"""
        self._deploy_module('SYS-GL-CORE')
        response = self._deploy_module('SYS-GL-CORE')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_failed_deployment_rolls_back(self):
        """Test a failing step records a failed transaction and creates nothing else"""
        with mock.patch(
            'restaurant_erp.deployment.services._setup_chart_of_accounts',
            side_effect=RuntimeError('ledger offline'),
        ):
            response = self._deploy_module('SYS-GL-CORE')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['data']['status'], 'failed')
        self.assertEqual(response.data['data']['errors'], ['ledger offline'])
        self.assertFalse(Entity.objects.filter(organization=self.org, entity_type=services.DEPLOYED_MODULE).exists())
        txn = UniversalTransaction.objects.get(organization=self.org, transaction_type='module_deployment')
        self.assertEqual(txn.transaction_status, 'failed')
        self.assertEqual(txn.transaction_data['error'], 'ledger offline')

        response = self._deploy_module('SYS-GL-CORE')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_deploy_other_organizations_custom_module(self):
        """Test custom modules of other organizations cannot be deployed"""
        other = TestDataFactory.create_organization()
        custom = TestDataFactory.create_module_template(other, entity_type=services.CUSTOM_MODULE_TEMPLATE)
        response = self.client.post(
            '/api/v1/templates/modules/deploy/',
            {'organization': self.org_id, 'module': str(custom.id)},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_viewer_cannot_deploy(self):
        """Test deploying needs a manager or owner"""
        viewer = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_VIEWER)
        self.client.authenticate_user(viewer)
        response = self._deploy_module('SYS-GL-CORE')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class PackageTemplateAPITests(DeploymentAPITestCase):
    """Test package template endpoints"""

    def test_list_packages(self):
        """Test the system package is visible with its modules"""
        response = self.client.get('/api/v1/templates/packages/', {'organization': self.org_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        package = response.data['results'][0]
        self.assertEqual(package['entity_code'], 'SYS-PKG-RESTAURANT')
        self.assertEqual(package['module_count'], 4)
        self.assertFalse(package['modules'][0]['is_deployed'])

        response = self.client.get(
            '/api/v1/templates/packages/', {'organization': self.org_id, 'industry': 'retail'}
        )
        self.assertEqual(response.data['count'], 0)

    def test_create_custom_package(self):
        """Test bundling the organization's own modules"""
        first = TestDataFactory.create_module_template(self.org, entity_type=services.CUSTOM_MODULE_TEMPLATE)
        second = TestDataFactory.create_module_template(self.org, entity_type=services.CUSTOM_MODULE_TEMPLATE)
        data = {
            'organization': self.org_id,
            'entity_name': 'Catering Bundle',
            'entity_code': 'pkg-cater',
            'industry': 'restaurant',
            'modules': [str(second.id), str(first.id)],
        }
        response = self.client.post('/api/v1/templates/packages/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['entity_type'], services.CUSTOM_PACKAGE_TEMPLATE)
        self.assertEqual(response.data['entity_code'], 'PKG-CATER')
        self.assertEqual([m['id'] for m in response.data['modules']], [str(second.id), str(first.id)])

    def test_custom_package_with_system_module(self):
        """Test tenant packages cannot include system modules"""
        data = {
            'organization': self.org_id,
            'entity_name': 'Borrowed Bundle',
            'modules': [str(system_template('SYS-GL-CORE').id)],
        }
        response = self.client.post('/api/v1/templates/packages/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('modules', response.data['details'])
        self.assertFalse(Entity.objects.filter(entity_name='Borrowed Bundle').exists())

    def test_package_modules_must_not_repeat(self):
        """Test a module appears once per package"""
        module = TestDataFactory.create_module_template(self.org, entity_type=services.CUSTOM_MODULE_TEMPLATE)
        data = {'organization': self.org_id, 'entity_name': 'Twice', 'modules': [str(module.id)] * 2}
        response = self.client.post('/api/v1/templates/packages/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class PackageDeployAPITests(DeploymentAPITestCase):
    """Test deploying packages"""

    def setUp(self):
        super().setUp()
        self.package = system_template('SYS-PKG-RESTAURANT')

    def _deploy_package(self, **data):
        payload = {'package': str(self.package.id)}
        payload.update(data)
        return self.client.post('/api/v1/templates/packages/deploy/', payload, format='json')

    def test_deploy_package(self):
        """Test every module of the package is deployed"""
        response = self._deploy_package(organization=self.org_id)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        result = response.data['data']
        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['deployment_summary']['modules_deployed'], 4)
        self.assertEqual(result['deployment_summary']['accounts_created'], 8)
        self.assertEqual(result['deployment_summary']['workflows_created'], 2)

        txn = UniversalTransaction.objects.get(pk=result['transaction_id'])
        self.assertEqual(txn.transaction_type, 'package_deployment')
        self.assertEqual(txn.lines.count(), 4)
        self.assertEqual(
            UniversalTransaction.objects.filter(organization=self.org, transaction_type='module_deployment').count(),
            4
        )

    def test_deploy_package_skips_deployed_modules(self):
        """Test modules already deployed are skipped"""
        self._deploy_module('SYS-GL-CORE')
        response = self._deploy_package(organization=self.org_id)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        summary = response.data['data']['deployment_summary']
        self.assertEqual(summary['modules_deployed'], 3)
        self.assertEqual(summary['modules_skipped'], 1)

    def test_deploy_package_twice(self):
        """Test a fully deployed package conflicts"""
        self._deploy_package(organization=self.org_id)
        response = self._deploy_package(organization=self.org_id)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_partial_package_deployment(self):
        """Test one failing module gives a multi-status response"""
        def fail_inventory(organization, module, user):
            if module.entity_code == 'SYS-INVENTORY':
                raise RuntimeError('inventory ledger locked')
            return []

        with mock.patch('restaurant_erp.deployment.services._setup_chart_of_accounts', side_effect=fail_inventory):
            response = self._deploy_package(organization=self.org_id)
        self.assertEqual(response.status_code, status.HTTP_207_MULTI_STATUS)
        result = response.data['data']
        self.assertEqual(result['status'], 'partial')
        self.assertEqual(result['deployment_summary']['modules_failed'], 1)
        self.assertEqual(result['errors'], ['SYS-INVENTORY: inventory ledger locked'])
        self.assertEqual(UniversalTransaction.objects.get(pk=result['transaction_id']).transaction_status, 'partial')

    def test_deploy_into_new_organization(self):
        """Test a system package can create the organization it deploys into"""
        response = self._deploy_package(new_organization={'org_name': 'Harbor Bistro', 'currency': 'EUR'})
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        organization = Organization.objects.get(org_name='Harbor Bistro')
        self.assertEqual(response.data['data']['organization'], str(organization.id))
        self.assertTrue(
            UserOrganization.objects.filter(
                user=self.owner, organization=organization, role=UserOrganization.ROLE_OWNER
            ).exists()
        )
        self.assertEqual(
            Entity.objects.filter(organization=organization, entity_type=services.DEPLOYED_MODULE).count(), 4
        )

    def test_new_organization_needs_system_package(self):
        """Test custom packages cannot be deployed into a new organization"""
        module = TestDataFactory.create_module_template(self.org, entity_type=services.CUSTOM_MODULE_TEMPLATE)
        custom = services.create_package(self.org, 'Private Bundle', [module])
        response = self.client.post(
            '/api/v1/templates/packages/deploy/',
            {'package': str(custom.id), 'new_organization': {'org_name': 'Ghost Kitchen'}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertFalse(Organization.objects.filter(org_name='Ghost Kitchen').exists())

    def test_organization_and_new_organization_exclusive(self):
        """Test exactly one deployment target is given"""
        response = self._deploy_package(organization=self.org_id, new_organization={'org_name': 'Both'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self._deploy_package()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class TemplateAnalyticsTests(DeploymentAPITestCase):
    """Test deployment analytics"""

    def test_organization_analytics(self):
        """Test counts of successful and failed deployments"""
        self._deploy_module('SYS-GL-CORE')
        with mock.patch(
            'restaurant_erp.deployment.services._setup_chart_of_accounts', side_effect=RuntimeError('boom')
        ):
            self._deploy_module('SYS-INVENTORY')
        cache.clear()

        response = self.client.get('/api/v1/templates/analytics/', {'organization': self.org_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        overview = response.data['overview']
        self.assertEqual(overview['total_deployments'], 2)
        self.assertEqual(overview['successful_deployments'], 1)
        self.assertEqual(overview['failed_deployments'], 1)
        self.assertEqual(overview['success_rate'], 50.0)
        self.assertEqual(overview['system_templates'], 6)
        self.assertEqual(
            [row['module_code'] for row in response.data['deployments_by_module']],
            ['SYS-GL-CORE', 'SYS-INVENTORY']
        )

    def test_organization_required_for_tenants(self):
        """Test non-admin users must name an organization"""
        response = self.client.get('/api/v1/templates/analytics/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_platform_admin_sees_all_organizations(self):
        """Test platform administrators get platform-wide analytics"""
        self._deploy_module('SYS-GL-CORE')
        other = TestDataFactory.create_organization()
        services.deploy_module(other, system_template('SYS-GL-CORE'))
        cache.clear()

        admin = TestDataFactory.create_user(is_staff=True)
        self.client.authenticate_user(admin)
        response = self.client.get('/api/v1/templates/analytics/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['overview']['organizations_deployed'], 2)
        self.assertEqual(response.data['deployments_by_module'][0]['deployments'], 2)

    def test_new_template_refreshes_analytics(self):
        """Test creating a template is reflected in cached analytics"""
        response = self.client.get('/api/v1/templates/analytics/', {'organization': self.org_id})
        before = response.data['overview']['total_templates']

        TestDataFactory.create_module_template(self.org, entity_type=services.CUSTOM_MODULE_TEMPLATE)
        response = self.client.get('/api/v1/templates/analytics/', {'organization': self.org_id})
        self.assertEqual(response.data['overview']['total_templates'], before + 1)
        self.assertEqual(response.data['overview']['custom_templates'], 1)

    def test_only_template_changes_clear_analytics_cache(self):
        """Test analytics keys are dropped for template entities only"""
        with mock.patch('restaurant_erp.core.cache_signals.invalidate_analytics_cache') as invalidate:
            TestDataFactory.create_inventory_item(self.org)
            invalidate.assert_not_called()
            template = TestDataFactory.create_module_template(self.org, entity_type=services.CUSTOM_MODULE_TEMPLATE)
            self.assertTrue(invalidate.called)
            invalidate.reset_mock()
            template.delete()
            self.assertTrue(invalidate.called)

    def test_outsider_analytics_forbidden(self):
        """Test analytics of another organization are forbidden"""
        outsider = TestDataFactory.create_member(TestDataFactory.create_organization())
        self.client.authenticate_user(outsider)
        response = self.client.get('/api/v1/templates/analytics/', {'organization': self.org_id})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
