"""
Test suite for universal transactions
Tests: numbering, line totals, header updates, posting and deletion rules
"""
import re
from decimal import Decimal

from django.test import TestCase
from rest_framework import status
from rest_framework.exceptions import ValidationError

from restaurant_erp.core.models import AuditLog
from restaurant_erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from restaurant_erp.organizations.models import UserOrganization
from restaurant_erp.purchasing.services import create_purchase_order
from restaurant_erp.restaurant.services import create_order
from restaurant_erp.transactions.models import UniversalTransaction, TransactionLine
from restaurant_erp.transactions.services import (
    add_line, create_transaction, generate_transaction_number, post_transaction, transaction_prefix,
)


class TransactionServiceTests(TestCase):
    """Test transaction service functions"""

    def setUp(self):
        self.org = TestDataFactory.create_organization(currency='EUR')
        self.item = TestDataFactory.create_inventory_item(self.org)

    def test_transaction_prefix(self):
        """Test known and derived number prefixes"""
        self.assertEqual(transaction_prefix('purchase_order'), 'PO')
        self.assertEqual(transaction_prefix('module_deployment'), 'DEPLOY')
        self.assertEqual(transaction_prefix('stock_count_adjustment'), 'SCA')

    def test_generate_transaction_number_format(self):
        """Test numbers follow PREFIX-YYYYMMDD-HEX8"""
        number = generate_transaction_number(self.org, 'sales_order')
        self.assertRegex(number, r'^SO-\d{8}-[0-9A-F]{8}$')

    def test_create_transaction_sums_lines(self):
        """Test the header total is the sum of its lines"""
        txn = create_transaction(
            self.org, 'purchase_order',
            lines=[
                {'entity': self.item, 'quantity': Decimal('3'), 'unit_price': Decimal('2.50')},
                {'line_description': 'Delivery fee', 'line_amount': Decimal('5.00')},
            ]
        )
        self.assertEqual(txn.total_amount, Decimal('12.50'))
        self.assertEqual(txn.currency, 'EUR')
        self.assertEqual([line.line_order for line in txn.lines.all()], [1, 2])
        self.assertEqual(txn.lines.first().line_description, self.item.entity_name)

    def test_create_transaction_without_lines_keeps_total(self):
        """Test an explicit total is kept when there are no lines"""
        txn = create_transaction(self.org, 'journal_entry', total_amount=Decimal('99.99'))
        self.assertEqual(txn.total_amount, Decimal('99.99'))
        self.assertEqual(txn.transaction_status, 'draft')

    def test_duplicate_transaction_number(self):
        """Test transaction numbers are unique per organization"""
        create_transaction(self.org, 'journal_entry', transaction_number='JE-1')
        with self.assertRaises(ValidationError):
            create_transaction(self.org, 'journal_entry', transaction_number='JE-1')
        other = TestDataFactory.create_organization()
        create_transaction(other, 'journal_entry', transaction_number='JE-1')

    def test_line_entity_must_share_organization(self):
        """Test lines cannot reference another organization's entity"""
        txn = create_transaction(self.org, 'journal_entry')
        foreign = TestDataFactory.create_inventory_item(TestDataFactory.create_organization())
        with self.assertRaises(ValidationError):
            add_line(txn, entity=foreign, quantity=1, unit_price=1)

    def test_line_amount_rounds_to_cents(self):
        """Test computed line amounts are quantized"""
        txn = create_transaction(self.org, 'journal_entry')
        line = add_line(txn, quantity=Decimal('0.333'), unit_price=Decimal('3.00'))
        self.assertEqual(line.line_amount, Decimal('1.00'))

    def test_post_transaction_twice(self):
        """Test a posted transaction cannot be posted again"""
        txn = create_transaction(self.org, 'journal_entry')
        post_transaction(txn)
        self.assertIsNotNone(txn.posted_at)
        with self.assertRaises(ValidationError):
            post_transaction(txn)


class TransactionAPITests(TestCase):
    """Test transaction endpoints"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.user = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_MANAGER)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.item = TestDataFactory.create_inventory_item(self.org, name='Olive Oil')

    def test_create_transaction(self):
        """Test creating a transaction with lines"""
        data = {
            'organization': str(self.org.id),
            'transaction_type': 'journal_entry',
            'reference_number': 'REF-42',
            'lines': [
                {'entity': str(self.item.id), 'quantity': '2', 'unit_price': '8.00'},
                {'line_description': 'Adjustment', 'line_amount': '1.50'},
            ],
        }
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['total_amount'], '17.50')
        self.assertEqual(len(response.data['lines']), 2)
        self.assertEqual(response.data['lines'][0]['entity_name'], 'Olive Oil')
        self.assertTrue(re.match(r'^JE-\d{8}-', response.data['transaction_number']))

    def test_create_with_posted_status_rejected(self):
        """Test transactions cannot be created as posted"""
        data = {
            'organization': str(self.org.id),
            'transaction_type': 'journal_entry',
            'transaction_status': 'posted',
        }
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('transaction_status', response.data['details'])

    def test_create_with_unknown_entity(self):
        """Test a line referencing an unknown entity fails"""
        data = {
            'organization': str(self.org.id),
            'transaction_type': 'journal_entry',
            'lines': [{'entity': '00000000-0000-0000-0000-000000000000', 'quantity': '1'}],
        }
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(UniversalTransaction.objects.exists())

    def test_list_filters_by_type(self):
        """Test listing transactions filtered by type"""
        TestDataFactory.create_transaction(self.org, 'journal_entry')
        TestDataFactory.create_transaction(self.org, 'sales_order')
        response = self.client.get(
            '/api/v1/transactions/', {'organization': str(self.org.id), 'transaction_type': 'sales_order'}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['transaction_type'], 'sales_order')

    def test_add_line_recalculates_total(self):
        """Test adding a line updates the header total"""
        txn = TestDataFactory.create_transaction(
            self.org, lines=[{'quantity': Decimal('1'), 'unit_price': Decimal('10.00')}]
        )
        response = self.client.post(
            f'/api/v1/transactions/{txn.id}/lines/',
            {'quantity': '2', 'unit_price': '2.25'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['total_amount'], '14.50')

    def test_post_then_modify_rejected(self):
        """Test posted transactions are frozen"""
        txn = TestDataFactory.create_transaction(self.org)
        response = self.client.post(f'/api/v1/transactions/{txn.id}/post/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['transaction_status'], 'posted')
        self.assertTrue(AuditLog.objects.filter(action='transaction_post').exists())

        response = self.client.patch(f'/api/v1/transactions/{txn.id}/', {'reference_number': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(f'/api/v1/transactions/{txn.id}/lines/', {'quantity': '1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.delete(f'/api/v1/transactions/{txn.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_staff_role_cannot_post(self):
        """Test posting needs a manager, owner or accountant"""
        staff = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        txn = TestDataFactory.create_transaction(self.org)
        self.client.authenticate_user(staff)
        response = self.client.post(f'/api/v1/transactions/{txn.id}/post/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_delete_draft(self):
        """Test draft transactions can be deleted with their lines"""
        txn = TestDataFactory.create_transaction(
            self.org, lines=[{'quantity': Decimal('1'), 'unit_price': Decimal('1.00')}]
        )
        response = self.client.delete(f'/api/v1/transactions/{txn.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(UniversalTransaction.objects.filter(pk=txn.id).exists())
        self.assertFalse(TransactionLine.objects.exists())

    def test_unknown_transaction(self):
        """Test unknown transactions return 404"""
        response = self.client.get('/api/v1/transactions/00000000-0000-0000-0000-000000000000/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Transaction not found')


class ModuleTransactionGuardTests(TestCase):
    """Test module-owned transactions cannot be driven through the generic endpoints"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.owner = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_OWNER)
        self.staff = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.staff)
        self.supplier = TestDataFactory.create_supplier(self.org)
        self.item = TestDataFactory.create_inventory_item(self.org)

    def _purchase_order(self, quantity, unit_price):
        return create_purchase_order(
            self.org, self.supplier,
            [{'item': self.item, 'quantity': Decimal(quantity), 'unit_price': Decimal(unit_price)}],
            self.owner,
        )

    def test_patch_cannot_approve_purchase_order(self):
        """Test a pending PO cannot be approved by editing its header"""
        po = self._purchase_order('50', '100.00')
        response = self.client.post(
            '/api/v1/purchasing/purchase-orders/approve/',
            {'purchase_order': str(po.id), 'organization': str(self.org.id), 'action': 'approve'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.patch(
            f'/api/v1/transactions/{po.id}/', {'workflow_status': 'approved'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('workflow_status', response.data['details'])
        po.refresh_from_db()
        self.assertEqual(po.workflow_status, 'pending_approval')

    def test_patch_reference_number_allowed(self):
        """Test the reference number of a module transaction stays editable"""
        po = self._purchase_order('1', '50.00')
        response = self.client.patch(
            f'/api/v1/transactions/{po.id}/', {'reference_number': 'INV-77'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reference_number'], 'INV-77')

    def test_cannot_add_lines_to_approved_purchase_order(self):
        """Test an approved PO total cannot be inflated with new lines"""
        po = self._purchase_order('1', '50.00')
        self.assertEqual(po.workflow_status, 'approved')
        response = self.client.post(
            f'/api/v1/transactions/{po.id}/lines/',
            {'quantity': '100', 'unit_price': '100.00'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        po.refresh_from_db()
        self.assertEqual(po.total_amount, Decimal('50.00'))
        self.assertEqual(po.lines.count(), 1)

    def test_cannot_add_lines_to_submitted_transaction(self):
        """Test lines can only be added while a transaction is a draft"""
        txn = TestDataFactory.create_transaction(self.org, transaction_status='submitted')
        response = self.client.post(f'/api/v1/transactions/{txn.id}/lines/', {'quantity': '1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Lines can only be added to draft transactions')

    def test_sales_order_status_not_editable(self):
        """Test an order cannot skip the kitchen flow through the generic endpoint"""
        menu_item = TestDataFactory.create_menu_item(self.org)
        order = create_order(self.org, [{'menu_item': menu_item, 'quantity': Decimal('1')}])
        self.client.authenticate_user(self.owner)
        response = self.client.patch(
            f'/api/v1/transactions/{order.id}/', {'workflow_status': 'completed'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.delete(f'/api/v1/transactions/{order.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        order.refresh_from_db()
        self.assertEqual(order.workflow_status, 'pending')

    def test_cannot_create_module_transaction(self):
        """Test module transaction types cannot be created generically"""
        data = {
            'organization': str(self.org.id),
            'transaction_type': 'purchase_order',
            'workflow_status': 'approved',
        }
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(UniversalTransaction.objects.filter(transaction_type='purchase_order').exists())
