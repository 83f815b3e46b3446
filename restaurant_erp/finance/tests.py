"""
Test suite for the finance module
Tests: double-entry validation, posting queue, batch posting,
chart-of-accounts CSV parsing, import and templates
"""
import base64
import uuid
from decimal import Decimal

from django.test import TestCase
from rest_framework import status
from rest_framework.exceptions import ValidationError

from restaurant_erp.core.models import AuditLog
from restaurant_erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from restaurant_erp.deployment.services import CHART_OF_ACCOUNT
from restaurant_erp.finance import coa_import, services
from restaurant_erp.organizations.models import UserOrganization
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.universal.models import Entity
from restaurant_erp.universal.services import create_entity

GENERIC_CSV = (
    'code,name,type,description,balance,active\n'
    '1001,Cash Account,Asset,Primary cash account,5000.00,true\n'
    '2001,Supplier Payables,Liability,,-750.00,true\n'
    '4001,Food Sales,Revenue,Restaurant food sales,0,false\n'
)


def create_account(organization, code, name, account_type='ASSET', is_active=True):
    account = create_entity(
        organization, CHART_OF_ACCOUNT, name, entity_code=code,
        dynamic_data={'account_type': account_type, 'current_balance': 0},
        field_types={'current_balance': 'number'},
    )
    if not is_active:
        account.is_active = False
        account.save(update_fields=['is_active'])
    return account


def journal(organization, entries, transaction_type='journal_entry'):
    return TestDataFactory.create_transaction(
        organization, transaction_type, transaction_data={'entries': entries}
    )


BALANCED = [
    {'account_code': '1001000', 'debit': 100, 'credit': 0, 'description': 'Cash sale'},
    {'account_code': '4001000', 'debit': 0, 'credit': 100, 'description': 'Cash sale'},
]
UNBALANCED = [
    {'account_code': '1001000', 'debit': 100, 'credit': 0},
    {'account_code': '4001000', 'debit': 0, 'credit': 90},
]


class EntryValidationTests(TestCase):
    """Test double-entry validation of journal lines"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        create_account(self.org, '1001000', 'Cash - Operating Account')
        create_account(self.org, '4001000', 'Revenue - General', 'REVENUE')
        self.accounts = services.chart_of_accounts(self.org)

    def _validate(self, entries):
        return services.validate_entries(journal(self.org, entries), self.accounts)

    def _error_types(self, result):
        return [e['error_type'] for e in result['errors']]

    def test_balanced_entry_is_ready(self):
        """Test a balanced entry on known accounts is ready for posting"""
        result = self._validate(BALANCED)
        self.assertTrue(result['ready_for_posting'])
        self.assertEqual(result['validation_status'], 'validated')
        self.assertEqual(result['total_debit'], '100.00')
        self.assertEqual(result['total_credit'], '100.00')
        self.assertEqual(result['accounts_used'], 2)
        self.assertEqual(result['gl_account_mappings'][0]['account_name'], 'Cash - Operating Account')

    def test_unbalanced_entry(self):
        """Test debits that differ from credits fail validation"""
        result = self._validate(UNBALANCED)
        self.assertFalse(result['ready_for_posting'])
        self.assertFalse(result['is_balanced'])
        self.assertEqual(self._error_types(result), ['balance_mismatch'])
        self.assertEqual(result['balance_difference'], '10.00')
        self.assertEqual(result['errors'][0]['severity'], 'critical')

    def test_difference_within_tolerance(self):
        """Test rounding differences up to one cent are accepted"""
        result = self._validate([
            {'account_code': '1001000', 'debit': '100.005'},
            {'account_code': '4001000', 'credit': '100'},
        ])
        self.assertTrue(result['is_balanced'])
        self.assertTrue(result['ready_for_posting'])

    def test_unknown_and_missing_accounts(self):
        """Test entries must name an active account of the organization"""
        create_account(self.org, '1009000', 'Closed Account', is_active=False)
        result = self._validate([
            {'account_code': '9999999', 'debit': 10},
            {'debit': 10},
            {'account_code': '1009000', 'credit': 20},
        ])
        self.assertEqual(
            self._error_types(result), ['invalid_gl_account', 'missing_gl_account', 'invalid_gl_account']
        )
        self.assertFalse(result['has_valid_accounts'])
        self.assertEqual(result['accounts_used'], 0)

    def test_invalid_amounts(self):
        """Test entries need a non-negative debit or credit"""
        result = self._validate([
            {'account_code': '1001000', 'debit': 0, 'credit': 0},
            {'account_code': '4001000', 'credit': '-5'},
            {'account_code': '4001000', 'credit': 'ten'},
        ])
        self.assertEqual(self._error_types(result), ['invalid_amount'] * 3)
        self.assertEqual(result['errors'][0]['description'], 'Entry has no debit or credit amount')

    def test_transaction_without_entries(self):
        """Test a transaction with no journal lines is not ready"""
        result = self._validate([])
        self.assertEqual(self._error_types(result), ['no_entries'])
        self.assertFalse(result['ready_for_posting'])

    def test_non_ledger_transaction_type(self):
        """Test deployment transactions are not validated against the ledger"""
        txn = journal(self.org, BALANCED, transaction_type='module_deployment')
        with self.assertRaises(ValidationError):
            services.validate_transaction(txn)

    def test_period_bounds(self):
        """Test accounting period boundaries"""
        start, end = services.period_bounds('2024-02')
        self.assertEqual((start.isoformat(), end.isoformat()), ('2024-02-01', '2024-02-29'))


class GLPostingAPITests(TestCase):
    """Test the posting queue and batch posting endpoints"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.org = TestDataFactory.create_organization()
        self.accountant = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_ACCOUNTANT)
        self.client.authenticate_user(self.accountant)
        create_account(self.org, '1001000', 'Cash - Operating Account')
        create_account(self.org, '4001000', 'Revenue - General', 'REVENUE')
        self.good = journal(self.org, BALANCED)
        self.bad = journal(self.org, UNBALANCED)
        self.url = '/api/v1/finance/gl-accounts/posting/'

    def _post(self, **payload):
        return self.client.post(self.url, {'organization': str(self.org.id), **payload}, format='json')

    def test_posting_queue(self):
        """Test the queue reports readiness per transaction"""
        response = self.client.get(self.url, {'organization': str(self.org.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        summary = response.data['summary']
        self.assertEqual(summary['total_transactions'], 2)
        self.assertEqual(summary['ready_for_posting'], 1)
        self.assertEqual(summary['pending_validation'], 1)
        self.assertEqual(summary['unique_accounts'], 2)

        response = self.client.get(self.url, {'organization': str(self.org.id), 'status': 'ready', 'include_details': 'true'})
        queue = response.data['posting_queue']
        self.assertEqual([row['transaction_id'] for row in queue], [str(self.good.id)])
        self.assertEqual(len(queue[0]['gl_account_mappings']), 2)

    def test_queue_rejects_malformed_filters(self):
        """Test unknown statuses and periods return 400"""
        for params in ({'status': 'bogus'}, {'period': '2024-13'}, {'period': 'March'}):
            response = self.client.get(self.url, {'organization': str(self.org.id), **params})
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, params)

    def test_queue_period_filter(self):
        """Test the period filter uses the transaction date"""
        UniversalTransaction.objects.filter(pk=self.bad.pk).update(transaction_date='2023-01-15')
        response = self.client.get(self.url, {'organization': str(self.org.id), 'period': '2023-01'})
        self.assertEqual([row['transaction_id'] for row in response.data['posting_queue']], [str(self.bad.id)])

    def test_batch_post_with_partial_posting(self):
        """Test valid transactions post and invalid ones are skipped"""
        response = self._post(posting_date='2024-03-15')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        summary = response.data['summary']
        self.assertEqual(summary['successful_posts'], 1)
        self.assertEqual(summary['skipped_posts'], 1)
        self.assertEqual(summary['posting_period'], '2024-03')
        self.assertEqual(summary['total_debit_amount'], '100.00')
        self.assertEqual(summary['accounts_affected'], ['1001000', '4001000'])

        self.good.refresh_from_db()
        self.assertEqual(self.good.transaction_status, UniversalTransaction.STATUS_POSTED)
        self.assertIsNotNone(self.good.posted_at)
        state = self.good.transaction_data['gl_posting']
        self.assertEqual(state['status'], 'posted')
        self.assertEqual(state['batch_id'], summary['batch_id'])
        self.assertTrue(state['journal_entry_id'])

        self.bad.refresh_from_db()
        self.assertEqual(self.bad.transaction_data['gl_posting']['status'], 'error')
        self.assertEqual(self.bad.transaction_status, UniversalTransaction.STATUS_DRAFT)
        self.assertTrue(AuditLog.objects.filter(action='transaction_post', object_id=summary['batch_id']).exists())

    def test_posted_transactions_leave_the_queue(self):
        """Test a second batch does not repost"""
        self._post()
        response = self.client.get(self.url, {'organization': str(self.org.id), 'status': 'posted'})
        self.assertEqual(len(response.data['posting_queue']), 1)
        response = self.client.get(self.url, {'organization': str(self.org.id), 'status': 'failed'})
        self.assertEqual(len(response.data['posting_queue']), 1)

        response = self._post()
        self.assertEqual(response.data['summary']['total_transactions'], 1)
        self.assertEqual(response.data['summary']['successful_posts'], 0)

    def test_all_or_nothing_batch(self):
        """Test nothing posts when partial posting is off and a transaction fails"""
        response = self._post(allow_partial_posting=False)
        summary = response.data['summary']
        self.assertEqual(summary['successful_posts'], 0)
        self.assertEqual(summary['failed_posts'], 1)
        self.assertEqual(summary['skipped_posts'], 1)
        self.good.refresh_from_db()
        self.assertNotIn('gl_posting', self.good.transaction_data)
        self.assertEqual(self.good.transaction_status, UniversalTransaction.STATUS_DRAFT)

    def test_dry_run(self):
        """Test a dry run reports the outcome without writing"""
        response = self._post(dry_run=True)
        self.assertEqual(response.data['summary']['successful_posts'], 1)
        posted = [r for r in response.data['results'] if r['posting_status'] == 'posted']
        self.assertIsNone(posted[0]['journal_entry_id'])
        self.good.refresh_from_db()
        self.bad.refresh_from_db()
        self.assertNotIn('gl_posting', self.good.transaction_data)
        self.assertNotIn('gl_posting', self.bad.transaction_data)
        self.assertFalse(AuditLog.objects.filter(action='transaction_post').exists())

    def test_explicit_ids_and_already_posted(self):
        """Test posting selected transactions and reposting attempts"""
        response = self._post(transaction_ids=[str(self.good.id)])
        self.assertEqual(response.data['summary']['total_transactions'], 1)
        self.assertEqual(response.data['summary']['successful_posts'], 1)

        response = self._post(transaction_ids=[str(self.good.id)])
        result = response.data['results'][0]
        self.assertEqual(result['posting_status'], 'skipped')
        self.assertEqual(result['messages'], ['Transaction is already posted to the general ledger'])

    def test_unknown_transaction_ids(self):
        """Test ids outside the organization's ledger return 400"""
        other = TestDataFactory.create_organization()
        foreign = journal(other, BALANCED)
        for pk in (uuid.uuid4(), foreign.id):
            response = self._post(transaction_ids=[str(pk)])
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertIn('transaction_ids', response.data['details'])

    def test_module_transaction_keeps_its_status(self):
        """Test posting a purchase order records GL state only"""
        po = journal(self.org, BALANCED, transaction_type='purchase_order')
        UniversalTransaction.objects.filter(pk=po.pk).update(workflow_status='approved')
        self._post(transaction_ids=[str(po.id)])
        po.refresh_from_db()
        self.assertEqual(po.transaction_status, UniversalTransaction.STATUS_DRAFT)
        self.assertEqual(po.workflow_status, 'approved')
        self.assertIsNone(po.posted_at)
        self.assertEqual(po.transaction_data['gl_posting']['status'], 'posted')

    def test_staff_cannot_post(self):
        """Test posting needs an owner, manager or accountant"""
        staff = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.client.authenticate_user(staff)
        response = self._post()
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.get(self.url, {'organization': str(self.org.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class GLValidationAPITests(TestCase):
    """Test the validation queue and single transaction validation"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.org = TestDataFactory.create_organization()
        self.user = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_ACCOUNTANT)
        self.client.authenticate_user(self.user)
        create_account(self.org, '1001000', 'Cash - Operating Account')
        create_account(self.org, '4001000', 'Revenue - General', 'REVENUE')
        self.good = journal(self.org, BALANCED)
        self.bad = journal(self.org, UNBALANCED)
        self.url = '/api/v1/finance/gl-accounts/validate/'

    def _report(self, scope=None):
        params = {'organization': str(self.org.id)}
        if scope:
            params['scope'] = scope
        response = self.client.get(self.url, params)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        return response.data

    def test_validation_scopes(self):
        """Test pending, errors_only and all scopes"""
        report = self._report()
        self.assertEqual(report['scope'], 'pending')
        self.assertEqual(report['validation_summary']['total_transactions'], 2)
        self.assertEqual(report['validation_summary']['validated'], 1)
        self.assertEqual(report['validation_summary']['critical_issues'], 1)

        report = self._report('errors_only')
        self.assertEqual([t['transaction_id'] for t in report['transactions']], [str(self.bad.id)])
        self.assertEqual(report['validation_summary']['error_types'], {'balance_mismatch': 1})

        services.post_to_ledger(self.org, self.user, transaction_ids=[self.good.id])
        self.assertEqual(self._report('pending')['validation_summary']['total_transactions'], 1)
        self.assertEqual(self._report('all')['validation_summary']['total_transactions'], 2)
        self.assertEqual(self._report('recent')['validation_summary']['total_transactions'], 2)

    def test_invalid_scope(self):
        """Test unknown scopes return 400"""
        response = self.client.get(self.url, {'organization': str(self.org.id), 'scope': 'everything'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_single_transaction(self):
        """Test validating one transaction by id"""
        response = self.client.get(f'{self.url}{self.bad.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['validation_status'], 'error')
        self.assertEqual(response.data['transaction_number'], self.bad.transaction_number)

        response = self.client.get(f'{self.url}{uuid.uuid4()}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        deployment = journal(self.org, BALANCED, transaction_type='module_deployment')
        response = self.client.get(f'{self.url}{deployment.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_single_transaction_requires_membership(self):
        """Test users outside the organization are refused"""
        outsider = TestDataFactory.create_member(TestDataFactory.create_organization())
        self.client.authenticate_user(outsider)
        response = self.client.get(f'{self.url}{self.good.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class AccountCSVParsingTests(TestCase):
    """Test CSV parsing, format detection and value cleaning"""

    def test_detect_format(self):
        """Test accounting software is recognised from headers"""
        self.assertEqual(coa_import.detect_format(['Account Code', 'Account', 'Detail Type']), 'quickbooks')
        self.assertEqual(coa_import.detect_format(['Code', 'Name', 'Tax Type']), 'xero')
        self.assertEqual(coa_import.detect_format(['A/C', 'Name', 'Department']), 'sage')
        self.assertEqual(coa_import.detect_format(['guid', 'name', 'primarygroup', 'closing_balance']), 'tally')
        self.assertEqual(coa_import.detect_format(['code', 'name']), 'generic')

    def test_clean_values(self):
        """Test balances and flags in their exported forms"""
        self.assertEqual(coa_import.clean_balance('$5,000.00'), Decimal('5000.00'))
        self.assertEqual(coa_import.clean_balance('(1,200.50)'), Decimal('-1200.50'))
        self.assertFalse(coa_import.clean_is_active('ARCHIVED'))
        self.assertTrue(coa_import.clean_is_active('whatever'))

    def test_normalize_account_type(self):
        """Test source account types map onto ledger types"""
        cases = [
            ('Other Current Liabilities', '2100', 'LIABILITY'),
            ('Cost of Goods Sold', '5000', 'COST_OF_SALES'),
            ('Income', '', 'REVENUE'),
            ('CURRENT', '', 'ASSET'),
            ('Sundry Creditors', '', 'LIABILITY'),
            ('', '1500', 'ASSET'),
            ('', '8100', 'EXPENSE'),
            ('', 'CASH', 'UNCLASSIFIED'),
        ]
        for raw_type, code, expected in cases:
            self.assertEqual(coa_import.normalize_account_type(raw_type, code), expected, raw_type or code)

    def test_parse_quickbooks_export(self):
        """Test quoted fields, bad rows and duplicate codes"""
        content = (
            'Account Code,Account,Type,Detail Type,Description,Balance,Active\n'
            '1000,"Cash, Checking",Bank,Checking,Primary account,"$5,000.00",true\n'
            '2000,Accounts Payable,Accounts Payable,Accounts Payable,,(250.00),false\n'
            ',,Bank,,,10,\n'
            '1000,Duplicate,Bank,,,0,true\n'
        )
        result = coa_import.parse_import(content)
        self.assertEqual(result['detected_format'], 'quickbooks')
        self.assertEqual(result['total_rows'], 4)
        self.assertEqual(result['parsed_accounts'], 2)

        cash, payable = result['accounts']
        self.assertEqual(cash['account_name'], 'Cash, Checking')
        self.assertEqual(cash['balance'], '5000.00')
        self.assertEqual(cash['account_type'], 'ASSET')
        self.assertEqual(cash['account_category'], 'Checking')
        self.assertEqual(payable['balance'], '-250.00')
        self.assertFalse(payable['is_active'])

        self.assertEqual([e['row'] for e in result['errors']], [4])
        self.assertEqual(len(result['warnings']), 1)
        self.assertIn('Duplicate account code 1000', result['warnings'][0]['warning'])

    def test_name_only_rows_and_header_guessing(self):
        """Test unknown headers are guessed and names stand in for codes"""
        content = 'Ledger Number,Ledger Title,Balance\n,Petty Cash,12\n'
        result = coa_import.parse_import(content)
        self.assertEqual(result['field_mapping'], {
            'Ledger Number': 'account_code', 'Ledger Title': 'account_name', 'Balance': 'balance',
        })
        self.assertEqual(result['accounts'][0]['account_code'], 'PettyCash')

    def test_headerless_file_needs_mapping(self):
        """Test files without headers use column_N mappings"""
        with self.assertRaises(ValidationError):
            coa_import.parse_import('1001,Cash\n', has_headers=False)
        result = coa_import.parse_import(
            '1001,Cash\n', has_headers=False,
            field_mapping={'column_0': 'account_code', 'column_1': 'account_name'},
        )
        self.assertEqual(result['accounts'][0]['account_name'], 'Cash')
        self.assertEqual(result['total_rows'], 1)

    def test_skip_rows_and_base64(self):
        """Test leading rows are skipped and data URIs decoded"""
        content = 'Exported from POS\n' + GENERIC_CSV
        encoded = 'data:text/csv;base64,' + base64.b64encode(content.encode()).decode()
        result = coa_import.parse_import(encoded, skip_rows=1)
        self.assertEqual(result['parsed_accounts'], 3)
        self.assertEqual(result['accounts'][0]['row_number'], 3)

        with self.assertRaises(ValidationError):
            coa_import.parse_import('data:text/csv;base64,@@@')
        with self.assertRaises(ValidationError):
            coa_import.parse_import('only,headers\n', skip_rows=5)


class ChartOfAccountsAPITests(TestCase):
    """Test chart-of-accounts import, templates and listing"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.org = TestDataFactory.create_organization()
        self.owner = TestDataFactory.create_member(self.org)
        self.client.authenticate_user(self.owner)
        self.url = '/api/v1/finance/chart-of-accounts/import-csv/'

    def _import(self, content=GENERIC_CSV, **options):
        return self.client.post(
            self.url, {'organization': str(self.org.id), 'file_content': content, **options}, format='json'
        )

    def _accounts(self):
        return Entity.objects.filter(organization=self.org, entity_type=CHART_OF_ACCOUNT)

    def test_template(self):
        """Test per-format CSV templates"""
        response = self.client.get(self.url, {'file_format': 'xero'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['headers'][:3], ['Code', 'Name', 'Type'])
        self.assertTrue(response.data['csv_template'].startswith('Code,Name,Type,Tax Type'))
        self.assertEqual(len(response.data['example_rows']), 3)

        response = self.client.get(self.url)
        self.assertEqual(response.data['format'], 'generic')
        parsed = coa_import.parse_import(response.data['csv_template'])
        self.assertEqual(parsed['parsed_accounts'], 3)

        response = self.client.get(self.url, {'file_format': 'lotus'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_preview_does_not_create(self):
        """Test preview mode only parses"""
        response = self._import(preview_mode=True)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['parsed_accounts'], 3)
        self.assertEqual(response.data['message'], 'Parsed 3 accounts from 3 rows')
        self.assertFalse(self._accounts().exists())

    def test_import_creates_accounts(self):
        """Test accounts are stored as chart_of_account entities"""
        response = self._import()
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['migration_result']['created'], 3)

        cash = self._accounts().get(entity_code='1001')
        self.assertEqual(cash.entity_name, 'Cash Account')
        self.assertEqual(cash.get_field('account_type'), 'ASSET')
        self.assertEqual(cash.get_field('current_balance'), Decimal('5000.00'))
        self.assertEqual(cash.get_field('imported_from'), 'generic')
        self.assertFalse(self._accounts().get(entity_code='4001').is_active)
        self.assertTrue(AuditLog.objects.filter(action='bulk_upload', model_name='ChartOfAccount').exists())

        response = self.client.get('/api/v1/finance/chart-of-accounts/', {'organization': str(self.org.id)})
        self.assertEqual([a['account_code'] for a in response.data['accounts']], ['1001', '2001'])
        self.assertEqual(response.data['accounts'][1]['current_balance'], '-750.00')

        response = self.client.get(
            '/api/v1/finance/chart-of-accounts/', {'organization': str(self.org.id), 'account_type': 'liability'}
        )
        self.assertEqual(response.data['count'], 1)

    def test_conflict_resolution(self):
        """Test existing codes are skipped by default and updated on request"""
        create_account(self.org, '1001', 'Old Cash')
        response = self._import()
        self.assertEqual(response.data['data']['migration_result']['skipped_codes'], ['1001'])
        self.assertEqual(self._accounts().get(entity_code='1001').entity_name, 'Old Cash')

        response = self._import(conflict_resolution='update')
        migration = response.data['data']['migration_result']
        self.assertEqual(migration['updated'], 3)
        cash = self._accounts().get(entity_code='1001')
        self.assertEqual(cash.entity_name, 'Cash Account')
        self.assertEqual(cash.get_field('current_balance'), Decimal('5000.00'))
        self.assertEqual(self._accounts().count(), 3)

    def test_imported_accounts_back_ledger_postings(self):
        """Test imported codes validate journal entries"""
        self._import()
        txn = journal(self.org, [
            {'account_code': '1001', 'debit': '75.50'},
            {'account_code': '2001', 'credit': '75.50'},
        ])
        self.assertTrue(services.validate_transaction(txn)['ready_for_posting'])

    def test_invalid_requests(self):
        """Test bad content and options return 400"""
        response = self._import('data:text/csv;base64,@@@')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self._import(conflict_resolution='merge')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self._import(field_mapping={'code': 'gl_code'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_staff_cannot_import(self):
        """Test importing needs an owner, manager or accountant"""
        staff = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.client.authenticate_user(staff)
        response = self._import()
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(self._accounts().exists())
