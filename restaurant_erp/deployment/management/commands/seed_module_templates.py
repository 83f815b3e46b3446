"""
Management command to seed the system organization with the standard ERP
module templates and the Restaurant Starter package
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from restaurant_erp.core.cache_signals import suspend_cache_signals
from restaurant_erp.universal.models import Entity
from restaurant_erp.universal.services import create_entity, create_relationship, update_entity
from restaurant_erp.deployment import services

MODULE_TEMPLATES = [
    {
        'code': 'SYS-GL-CORE',
        'name': 'General Ledger Core',
        'description': 'Chart of accounts, journal entries and financial statements',
        'module_category': 'finance',
        'functional_area': 'accounting',
        'deployment_time_minutes': 15,
    },
    {
        'code': 'SYS-AR-MGMT',
        'name': 'Accounts Receivable Management',
        'description': 'Customer invoices, collections and aging',
        'module_category': 'finance',
        'functional_area': 'accounting',
        'deployment_time_minutes': 10,
    },
    {
        'code': 'SYS-INVENTORY',
        'name': 'Inventory Management',
        'description': 'Stock levels, reorder points and valuation',
        'module_category': 'operations',
        'functional_area': 'supply_chain',
        'deployment_time_minutes': 20,
    },
    {
        'code': 'SYS-PROCURE',
        'name': 'Purchasing',
        'description': 'Purchase orders, approvals and goods receiving',
        'module_category': 'operations',
        'functional_area': 'supply_chain',
        'deployment_time_minutes': 15,
    },
    {
        'code': 'SYS-REST-POS',
        'name': 'Restaurant POS',
        'description': 'Menu, recipes and kitchen order workflow',
        'module_category': 'industry',
        'functional_area': 'restaurant',
        'deployment_time_minutes': 25,
    },
]

PACKAGES = [
    {
        'code': 'SYS-PKG-RESTAURANT',
        'name': 'Restaurant Starter',
        'description': 'Everything a single-site restaurant needs on day one',
        'industry': 'restaurant',
        'modules': ['SYS-GL-CORE', 'SYS-INVENTORY', 'SYS-PROCURE', 'SYS-REST-POS'],
    },
]


class Command(BaseCommand):
    help = "Creates the system organization, standard module templates and the Restaurant Starter package"

    def add_arguments(self, parser):
        parser.add_argument(
            '--update',
            action='store_true',
            help='Refresh the configuration of templates that already exist',
        )

    def handle(self, *args, **options):
        update = options['update']

        self.stdout.write(self.style.SUCCESS("=" * 80))
        self.stdout.write(self.style.SUCCESS("SEEDING MODULE TEMPLATES"))
        self.stdout.write(self.style.SUCCESS("=" * 80))

        with transaction.atomic(), suspend_cache_signals():
            system = services.ensure_system_organization()
            self.stdout.write(f"System organization: {system.org_name} ({system.org_code})")

            modules = {}
            created_count = 0
            for template in MODULE_TEMPLATES:
                configuration = {k: v for k, v in template.items() if k not in ('code', 'name')}
                configuration['is_core'] = True
                module = Entity.objects.filter(
                    organization=system, entity_type=services.ERP_MODULE_TEMPLATE,
                    entity_code=template['code'], is_active=True,
                ).first()
                if module is None:
                    module = create_entity(
                        system, services.ERP_MODULE_TEMPLATE, template['name'],
                        entity_code=template['code'],
                        dynamic_data=configuration,
                    )
                    created_count += 1
                    self.stdout.write(self.style.SUCCESS(f"  + {template['code']}: {template['name']}"))
                elif update:
                    update_entity(module, entity_name=template['name'], dynamic_data=configuration)
                    self.stdout.write(f"  ~ {template['code']}: updated")
                else:
                    self.stdout.write(f"  = {template['code']}: already exists")
                modules[template['code']] = module

            for template in PACKAGES:
                package = Entity.objects.filter(
                    organization=system, entity_type=services.ERP_PACKAGE_TEMPLATE,
                    entity_code=template['code'], is_active=True,
                ).first()
                if package is not None:
                    self.stdout.write(f"  = {template['code']}: already exists")
                    continue
                package = create_entity(
                    system, services.ERP_PACKAGE_TEMPLATE, template['name'],
                    entity_code=template['code'],
                    dynamic_data={'description': template['description'], 'industry': template['industry']},
                )
                for order, code in enumerate(template['modules'], start=1):
                    create_relationship(
                        system, package, modules[code], services.TEMPLATE_INCLUDES_MODULE, {'order': order}
                    )
                created_count += 1
                self.stdout.write(self.style.SUCCESS(
                    f"  + {template['code']}: {template['name']} ({len(template['modules'])} modules)"
                ))

        self.stdout.write(self.style.SUCCESS("=" * 80))
        self.stdout.write(self.style.SUCCESS(f"Templates created: {created_count}"))
