"""
ERP module and package templates

Templates live in the system organization (settings.SYSTEM_ORGANIZATION_CODE)
or, for custom templates, in the tenant that created them. Deploying a module
copies its configuration into a `deployed_erp_module` entity of the target
organization and records a `module_deployment` transaction. A package is a
template entity linked to module templates by `template_includes_module`
relationships; deploying it deploys each module in turn.
"""
import logging
import time
from collections import defaultdict

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction as db_transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from restaurant_erp.core.cache_utils import cached_query, ANALYTICS_CACHE_TTL
from restaurant_erp.core.exceptions import Conflict
from restaurant_erp.organizations.models import Organization
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.transactions.services import create_transaction, add_line
from restaurant_erp.universal.models import Entity
from restaurant_erp.universal.services import create_entity, create_relationship, active_children

logger = logging.getLogger(__name__)

ERP_MODULE_TEMPLATE = 'erp_module_template'
CUSTOM_MODULE_TEMPLATE = 'custom_module_template'
MODULE_TEMPLATE_TYPES = (ERP_MODULE_TEMPLATE, CUSTOM_MODULE_TEMPLATE)
ERP_PACKAGE_TEMPLATE = 'erp_package_template'
CUSTOM_PACKAGE_TEMPLATE = 'custom_package_template'
PACKAGE_TEMPLATE_TYPES = (ERP_PACKAGE_TEMPLATE, CUSTOM_PACKAGE_TEMPLATE)
DEPLOYED_MODULE = 'deployed_erp_module'
CHART_OF_ACCOUNT = 'chart_of_account'
BUSINESS_WORKFLOW = 'business_workflow'
TEMPLATE_INCLUDES_MODULE = 'template_includes_module'

MODULE_DEPLOYMENT = 'module_deployment'
PACKAGE_DEPLOYMENT = 'package_deployment'

STATUS_PROCESSING = 'processing'
STATUS_COMPLETED = 'completed'
STATUS_PARTIAL = 'partial'
STATUS_FAILED = 'failed'

DEPLOYED_SUFFIX = '-DEPLOYED'

MODULE_ACCOUNTS = {
    'SYS-GL-CORE': [
        ('1001000', 'Cash - Operating Account', 'ASSET'),
        ('2001000', 'Accounts Payable', 'LIABILITY'),
        ('3001000', "Owner's Equity", 'EQUITY'),
        ('4001000', 'Revenue - General', 'REVENUE'),
    ],
    'SYS-AR-MGMT': [
        ('1002000', 'Accounts Receivable', 'ASSET'),
        ('1002100', 'Allowance for Doubtful Accounts', 'ASSET'),
    ],
    'SYS-INVENTORY': [
        ('1003000', 'Inventory - Raw Materials', 'ASSET'),
        ('1003100', 'Inventory - Work in Process', 'ASSET'),
        ('1003200', 'Inventory - Finished Goods', 'ASSET'),
        ('5001000', 'Cost of Goods Sold', 'COST_OF_SALES'),
    ],
}

MODULE_WORKFLOWS = {
    'SYS-PROCURE': [
        ('PROC-APPROVAL', 'Purchase Order Approval Workflow', ['request', 'review', 'approve', 'purchase']),
    ],
    'SYS-AR-MGMT': [
        ('AR-COLLECTION', 'Accounts Receivable Collection Workflow',
         ['invoice', 'follow_up', 'collection', 'write_off']),
    ],
    'SYS-REST-POS': [
        ('POS-ORDER-FLOW', 'Restaurant Order Workflow',
         ['pending', 'preparing', 'ready', 'served', 'completed']),
    ],
}


def get_system_organization():
    return Organization.objects.filter(org_code=settings.SYSTEM_ORGANIZATION_CODE).first()


def ensure_system_organization():
    organization, created = Organization.objects.get_or_create(
        org_code=settings.SYSTEM_ORGANIZATION_CODE,
        defaults={'org_name': 'System Templates', 'industry': 'platform'},
    )
    if created:
        logger.info(f"System organization {organization.org_code} created")
    return organization


def template_organization_ids(organization, include_system=True):
    ids = [organization.pk]
    system = get_system_organization()
    if include_system and system is not None and system.pk != organization.pk:
        ids.append(system.pk)
    return ids


def is_system_org(organization):
    return organization.org_code == settings.SYSTEM_ORGANIZATION_CODE


def is_system_template(entity):
    system = get_system_organization()
    return system is not None and entity.organization_id == system.pk


def deployed_code(module):
    return f"{module.entity_code}{DEPLOYED_SUFFIX}"


def deployed_module_codes(organization):
    """Codes of the templates currently deployed to organization"""
    codes = Entity.objects.filter(
        organization=organization, entity_type=DEPLOYED_MODULE, is_active=True
    ).values_list('entity_code', flat=True)
    return {code[:-len(DEPLOYED_SUFFIX)] for code in codes if code.endswith(DEPLOYED_SUFFIX)}


def get_accessible_template(organization, template_id, entity_types, label='Module template'):
    """Template owned by the system organization or by organization; 404 otherwise"""
    try:
        return Entity.objects.prefetch_related('dynamic_data').get(
            pk=template_id,
            organization_id__in=template_organization_ids(organization),
            entity_type__in=entity_types,
            is_active=True,
        )
    except (Entity.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(f'{label} not found or access denied')


def module_payload(module, deployed_codes=None):
    configuration = module.get_dynamic_data()
    system = is_system_template(module)
    payload = {
        'id': str(module.id),
        'entity_code': module.entity_code,
        'entity_name': module.entity_name,
        'entity_type': module.entity_type,
        'organization': str(module.organization_id),
        'description': configuration.get('description', ''),
        'module_category': configuration.get('module_category') or 'general',
        'functional_area': configuration.get('functional_area') or 'operations',
        'is_core': bool(configuration.get('is_core')) or system,
        'is_system': system,
        'configuration': configuration,
        'created_at': module.created_at,
        'updated_at': module.updated_at,
    }
    if deployed_codes is not None:
        payload['is_deployed'] = module.entity_code in deployed_codes
    return payload


def package_modules(package):
    """Active module templates of a package, in package order"""
    links = [
        link for link in active_children(package, TEMPLATE_INCLUDES_MODULE)
        if link.child_entity.entity_type in MODULE_TEMPLATE_TYPES
    ]
    return [link.child_entity for link in sorted(links, key=lambda l: l.relationship_data.get('order', 0))]


def package_payload(package, deployed_codes=None):
    configuration = package.get_dynamic_data()
    modules = package_modules(package)
    return {
        'id': str(package.id),
        'entity_code': package.entity_code,
        'entity_name': package.entity_name,
        'entity_type': package.entity_type,
        'organization': str(package.organization_id),
        'is_system': is_system_template(package),
        'industry': configuration.get('industry', ''),
        'description': configuration.get('description', ''),
        'configuration': configuration,
        'modules': [
            {
                'id': str(m.id),
                'entity_code': m.entity_code,
                'entity_name': m.entity_name,
                'is_deployed': m.entity_code in deployed_codes if deployed_codes is not None else None,
            }
            for m in modules
        ],
        'module_count': len(modules),
        'created_at': package.created_at,
    }


def create_package(organization, name, modules, user=None, entity_code=None, configuration=None):
    """Package template in organization; modules must belong to the same organization"""
    entity_type = ERP_PACKAGE_TEMPLATE if is_system_org(organization) else CUSTOM_PACKAGE_TEMPLATE
    with db_transaction.atomic():
        package = create_entity(
            organization, entity_type, name,
            entity_code=entity_code,
            dynamic_data=configuration,
            user=user,
        )
        for order, module in enumerate(modules, start=1):
            if module.organization_id != organization.pk:
                raise ValidationError({
                    'modules': f"Module {module.entity_code} belongs to another organization"
                })
            create_relationship(organization, package, module, TEMPLATE_INCLUDES_MODULE, {'order': order})
    logger.info(f"Package template {package.entity_code} created with {len(modules)} modules")
    return package


# Deployment

def _setup_chart_of_accounts(organization, module, user):
    created = []
    existing = set(Entity.objects.filter(
        organization=organization, entity_type=CHART_OF_ACCOUNT
    ).values_list('entity_code', flat=True))
    for code, name, account_type in MODULE_ACCOUNTS.get(module.entity_code, []):
        if code in existing:
            continue
        create_entity(
            organization, CHART_OF_ACCOUNT, name,
            entity_code=code,
            dynamic_data={'account_type': account_type, 'created_by_module': module.entity_code, 'current_balance': 0},
            field_types={'current_balance': 'number'},
            user=user,
        )
        created.append({'account_code': code, 'account_name': name, 'account_type': account_type})
    return created


def _create_workflows(organization, module, user):
    created = []
    existing = set(Entity.objects.filter(
        organization=organization, entity_type=BUSINESS_WORKFLOW, is_active=True
    ).values_list('entity_code', flat=True))
    for code, name, steps in MODULE_WORKFLOWS.get(module.entity_code, []):
        if code in existing:
            continue
        create_entity(
            organization, BUSINESS_WORKFLOW, name,
            entity_code=code,
            dynamic_data={'workflow_steps': steps, 'created_by_module': module.entity_code, 'enabled': True},
            user=user,
        )
        created.append({'workflow_code': code, 'workflow_name': name, 'steps': steps})
    return created


def _install_module(organization, module, txn, user, options):
    """Create the deployed module and its accounts and workflows; raises on failure"""
    source = {row.field_name: row for row in module.dynamic_data.all()}
    configuration = {name: row.typed_value for name, row in source.items()}
    field_types = {name: row.field_type for name, row in source.items()}
    configuration.update(options.get('configuration') or {})
    configuration.update({
        'deployed_at': timezone.now().isoformat(),
        'deployed_by': user.username if user and user.is_authenticated else 'system',
        'deployment_transaction_id': str(txn.id),
        'source_template_id': str(module.id),
    })

    deployed = create_entity(
        organization, DEPLOYED_MODULE, f"{module.entity_name} - Deployed",
        entity_code=deployed_code(module),
        dynamic_data=configuration,
        field_types=field_types,
        user=user,
    )
    add_line(
        txn, entity=deployed, quantity=1, unit_price=0,
        line_description=f"Deploy {module.entity_name}",
        line_data={'module_code': module.entity_code, 'deployment_status': STATUS_COMPLETED},
    )

    accounts = []
    if options.get('setup_chart_of_accounts', True):
        accounts = _setup_chart_of_accounts(organization, module, user)
    workflows = []
    if options.get('create_workflows', True):
        workflows = _create_workflows(organization, module, user)
    return deployed, accounts, workflows


def deploy_module(organization, module, user=None, options=None):
    """
    Deploy a module template into organization.

    Returns the deployment result dict; result['status'] is 'success' or
    'failed'. A failed deployment leaves the transaction in 'failed' state and
    rolls back everything else it created.
    """
    options = options or {}
    if module.entity_code in deployed_module_codes(organization):
        raise Conflict(f"Module '{module.entity_name}' is already deployed to this organization")

    started = time.monotonic()
    txn = create_transaction(
        organization, MODULE_DEPLOYMENT,
        user=user,
        transaction_status=STATUS_PROCESSING,
        transaction_data={
            'module_id': str(module.id),
            'module_name': module.entity_name,
            'module_code': module.entity_code,
            'deployment_options': options,
            'start_time': timezone.now().isoformat(),
        },
    )
    result = {
        'transaction_id': str(txn.id),
        'transaction_number': txn.transaction_number,
        'organization': str(organization.id),
        'module': str(module.id),
        'module_code': module.entity_code,
        'module_name': module.entity_name,
        'status': 'success',
        'deployed_entities': [],
        'created_accounts': [],
        'created_workflows': [],
        'errors': [],
    }

    try:
        with db_transaction.atomic():
            deployed, accounts, workflows = _install_module(organization, module, txn, user, options)
    except Exception as e:
        logger.exception(f"Deployment of {module.entity_code} to {organization.org_code} failed: {e}")
        result['status'] = 'failed'
        result['errors'].append(str(e))
        txn.transaction_status = STATUS_FAILED
        txn.transaction_data = {
            **txn.transaction_data,
            'end_time': timezone.now().isoformat(),
            'error': str(e),
        }
        txn.save(update_fields=['transaction_status', 'transaction_data', 'updated_at'])
    else:
        result['deployed_entities'].append({
            'id': str(deployed.id),
            'entity_type': DEPLOYED_MODULE,
            'entity_code': deployed.entity_code,
            'entity_name': deployed.entity_name,
        })
        result['created_accounts'] = accounts
        result['created_workflows'] = workflows
        txn.transaction_status = STATUS_COMPLETED
        txn.posted_at = timezone.now()
        txn.transaction_data = {
            **txn.transaction_data,
            'end_time': timezone.now().isoformat(),
            'deployment_result': {
                'status': 'success',
                'entities_created': 1,
                'accounts_created': len(accounts),
                'workflows_created': len(workflows),
            },
        }
        txn.save(update_fields=['transaction_status', 'posted_at', 'transaction_data', 'updated_at'])
        logger.info(f"Module {module.entity_code} deployed to {organization.org_code}")

    result['deployment_time_seconds'] = round(time.monotonic() - started, 3)
    return result


def deploy_package(organization, package, user=None, options=None):
    """
    Deploy every module of package not yet deployed to organization.

    Returns the package result dict with status 'success', 'partial' or
    'failed'.
    """
    options = options or {}
    modules = package_modules(package)
    if not modules:
        raise ValidationError({'package': 'Package contains no modules'})

    already = deployed_module_codes(organization)
    to_deploy = []
    seen = set()
    for module in modules:
        if module.entity_code in already or module.entity_code in seen:
            continue
        seen.add(module.entity_code)
        to_deploy.append(module)
    if not to_deploy:
        raise Conflict('All package modules are already deployed to this organization')

    started = time.monotonic()
    txn = create_transaction(
        organization, PACKAGE_DEPLOYMENT,
        user=user,
        transaction_status=STATUS_PROCESSING,
        transaction_data={
            'package_id': str(package.id),
            'package_name': package.entity_name,
            'package_code': package.entity_code,
            'total_modules': len(modules),
            'modules_to_deploy': len(to_deploy),
            'deployment_options': options,
            'start_time': timezone.now().isoformat(),
        },
    )

    deployed_modules = []
    created_accounts = []
    created_workflows = []
    errors = []
    for module in to_deploy:
        module_result = deploy_module(organization, module, user=user, options=options)
        succeeded = module_result['status'] == 'success'
        deployed_modules.append({
            'module': module_result['module'],
            'module_code': module.entity_code,
            'module_name': module.entity_name,
            'status': 'success' if succeeded else 'failed',
            'transaction_id': module_result['transaction_id'],
            'accounts_created': len(module_result['created_accounts']),
            'workflows_created': len(module_result['created_workflows']),
            'deployment_time_seconds': module_result['deployment_time_seconds'],
            'error': module_result['errors'][0] if module_result['errors'] else None,
        })
        if succeeded:
            created_accounts.extend({**a, 'created_by_module': module.entity_code} for a in module_result['created_accounts'])
            created_workflows.extend({**w, 'created_by_module': module.entity_code} for w in module_result['created_workflows'])
            add_line(
                txn,
                entity=Entity.objects.get(
                    organization=organization, entity_type=DEPLOYED_MODULE,
                    entity_code=deployed_code(module), is_active=True,
                ),
                quantity=1, unit_price=0,
                line_description=f"Deploy {module.entity_name}",
                line_data={'module_code': module.entity_code, 'module_transaction_id': module_result['transaction_id']},
            )
        else:
            errors.append(f"{module.entity_code}: {module_result['errors'][0]}")

    succeeded_count = sum(1 for m in deployed_modules if m['status'] == 'success')
    failed_count = len(deployed_modules) - succeeded_count
    if failed_count == 0:
        status_value = 'success'
    elif succeeded_count:
        status_value = 'partial'
    else:
        status_value = 'failed'

    summary = {
        'modules_deployed': succeeded_count,
        'modules_failed': failed_count,
        'modules_skipped': len(modules) - len(to_deploy),
        'accounts_created': len(created_accounts),
        'workflows_created': len(created_workflows),
    }
    txn.transaction_status = {
        'success': STATUS_COMPLETED, 'partial': STATUS_PARTIAL, 'failed': STATUS_FAILED,
    }[status_value]
    if status_value != 'failed':
        txn.posted_at = timezone.now()
    txn.transaction_data = {
        **txn.transaction_data,
        'end_time': timezone.now().isoformat(),
        'deployment_summary': summary,
        'errors': errors,
    }
    txn.save(update_fields=['transaction_status', 'posted_at', 'transaction_data', 'updated_at'])
    logger.info(
        f"Package {package.entity_code} deployed to {organization.org_code}: "
        f"{succeeded_count} succeeded, {failed_count} failed"
    )

    return {
        'transaction_id': str(txn.id),
        'transaction_number': txn.transaction_number,
        'organization': str(organization.id),
        'package': str(package.id),
        'package_name': package.entity_name,
        'status': status_value,
        'deployment_summary': summary,
        'deployed_modules': deployed_modules,
        'created_accounts': created_accounts,
        'created_workflows': created_workflows,
        'errors': errors,
        'total_deployment_time_seconds': round(time.monotonic() - started, 3),
    }


# Analytics

@cached_query(cache_ttl=ANALYTICS_CACHE_TTL, key_prefix="template_analytics")
def build_template_analytics(organization_id=None):
    """Template counts and deployments per module code and status"""
    templates = Entity.objects.filter(
        entity_type__in=MODULE_TEMPLATE_TYPES + PACKAGE_TEMPLATE_TYPES, is_active=True
    )
    deployments = UniversalTransaction.objects.filter(transaction_type=MODULE_DEPLOYMENT)
    if organization_id:
        system = get_system_organization()
        visible = Q(organization_id=organization_id)
        if system is not None:
            visible |= Q(organization_id=system.pk)
        templates = templates.filter(visible)
        deployments = deployments.filter(organization_id=organization_id)

    by_module = defaultdict(lambda: {'module_name': None, 'total': 0, 'by_status': defaultdict(int)})
    by_status = defaultdict(int)
    organizations = set()
    for txn in deployments.only('transaction_status', 'transaction_data', 'organization_id'):
        code = txn.transaction_data.get('module_code', 'UNKNOWN')
        row = by_module[code]
        row['module_name'] = row['module_name'] or txn.transaction_data.get('module_name')
        row['total'] += 1
        row['by_status'][txn.transaction_status] += 1
        by_status[txn.transaction_status] += 1
        organizations.add(txn.organization_id)

    total = sum(by_status.values())
    completed = by_status.get(STATUS_COMPLETED, 0)
    system = get_system_organization()
    system_templates = templates.filter(organization=system).count() if system else 0
    return {
        'overview': {
            'total_templates': templates.count(),
            'system_templates': system_templates,
            'custom_templates': templates.count() - system_templates,
            'total_deployments': total,
            'successful_deployments': completed,
            'failed_deployments': by_status.get(STATUS_FAILED, 0),
            'success_rate': round(completed / total * 100, 2) if total else 0,
            'organizations_deployed': len(organizations),
        },
        'deployments_by_status': dict(by_status),
        'deployments_by_module': sorted(
            (
                {
                    'module_code': code,
                    'module_name': row['module_name'],
                    'deployments': row['total'],
                    'by_status': dict(row['by_status']),
                }
                for code, row in by_module.items()
            ),
            key=lambda r: (-r['deployments'], r['module_code']),
        ),
        'timestamp': timezone.now().isoformat(),
    }
