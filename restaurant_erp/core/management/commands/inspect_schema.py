"""
Django management command to inspect the universal schema: row counts,
entity type distribution and rows that break tenant or total consistency
"""
from django.core.management.base import BaseCommand
from django.db.models import Count, F, Sum

from restaurant_erp.organizations.models import Organization, UserOrganization
from restaurant_erp.organizations.services import check_tenant_isolation
from restaurant_erp.universal.models import Entity, DynamicData, Relationship, Metadata
from restaurant_erp.transactions.models import UniversalTransaction, TransactionLine


class Command(BaseCommand):
    help = 'Print table counts, entity types per organization and inconsistent rows'

    def add_arguments(self, parser):
        parser.add_argument(
            '--organization',
            help='Limit entity and transaction checks to one organization code',
        )
        parser.add_argument(
            '--limit',
            type=int,
            default=20,
            help='Number of inconsistent rows to list per check (default: 20)',
        )

    def handle(self, *args, **options):
        org_code = options.get('organization')
        limit = options.get('limit', 20)

        organization = None
        if org_code:
            organization = Organization.objects.filter(org_code=org_code).first()
            if organization is None:
                self.stdout.write(self.style.ERROR(f"Organization {org_code} not found"))
                return

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS("UNIVERSAL SCHEMA INSPECTION"))
        self.stdout.write("=" * 80)

        self._table_counts()
        self._entity_types(organization)
        problems = self._consistency(organization, limit)

        self.stdout.write("=" * 80)
        if problems:
            self.stdout.write(self.style.WARNING(f"{problems} inconsistent rows found"))
        else:
            self.stdout.write(self.style.SUCCESS("No inconsistencies found"))

    def _table_counts(self):
        self.stdout.write("")
        self.stdout.write(self.style.SUCCESS("Row counts"))
        for model in (Organization, UserOrganization, Entity, DynamicData, Relationship,
                      Metadata, UniversalTransaction, TransactionLine):
            self.stdout.write(f"  {model._meta.db_table:<32} {model.objects.count()}")

    def _entity_types(self, organization):
        self.stdout.write("")
        self.stdout.write(self.style.SUCCESS("Entities per organization and type"))
        rows = Entity.objects.filter(is_active=True)
        if organization:
            rows = rows.filter(organization=organization)
        rows = (
            rows.values('organization__org_code', 'entity_type')
            .annotate(total=Count('id'))
            .order_by('organization__org_code', 'entity_type')
        )
        current = None
        for row in rows:
            if row['organization__org_code'] != current:
                current = row['organization__org_code']
                self.stdout.write(f"  {current}")
            self.stdout.write(f"    {row['entity_type']:<30} {row['total']}")
        if current is None:
            self.stdout.write("  (no active entities)")

    def _consistency(self, organization, limit):
        self.stdout.write("")
        self.stdout.write(self.style.SUCCESS("Consistency checks"))
        problems = 0

        isolation = check_tenant_isolation()
        for key in ('relationship_violations', 'metadata_violations', 'transaction_line_violations'):
            count = isolation[key]
            problems += count
            style = self.style.WARNING if count else self.style.SUCCESS
            self.stdout.write(style(f"  Cross-organization {key.replace('_', ' ')}: {count}"))

        orphaned = DynamicData.objects.filter(entity__is_active=False)
        if organization:
            orphaned = orphaned.filter(entity__organization=organization)
        orphaned_count = orphaned.count()
        problems += orphaned_count
        style = self.style.WARNING if orphaned_count else self.style.SUCCESS
        self.stdout.write(style(f"  Dynamic data on inactive entities: {orphaned_count}"))

        self_links = Relationship.objects.filter(parent_entity=F('child_entity')).count()
        problems += self_links
        style = self.style.WARNING if self_links else self.style.SUCCESS
        self.stdout.write(style(f"  Self-referencing relationships: {self_links}"))

        transactions = UniversalTransaction.objects.all()
        if organization:
            transactions = transactions.filter(organization=organization)
        transactions = transactions.annotate(line_total=Sum('lines__line_amount')).filter(line_total__isnull=False)
        mismatched = [txn for txn in transactions if txn.line_total != txn.total_amount]
        problems += len(mismatched)
        style = self.style.WARNING if mismatched else self.style.SUCCESS
        self.stdout.write(style(f"  Transactions whose total differs from their lines: {len(mismatched)}"))
        for txn in mismatched[:limit]:
            self.stdout.write(
                f"    {txn.transaction_number}: total {txn.total_amount}, lines {txn.line_total}"
            )

        return problems
