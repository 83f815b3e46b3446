"""
Comprehensive test suite for Purchasing module
Tests: approval matrix, purchase order lifecycle, approvals, goods receiving,
stock updates and supplier performance
"""
from decimal import Decimal

from django.test import TestCase
from rest_framework import status

from restaurant_erp.core.models import AuditLog
from restaurant_erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from restaurant_erp.organizations.models import UserOrganization
from restaurant_erp.purchasing import services
from restaurant_erp.transactions.models import UniversalTransaction


class ApprovalMatrixTests(TestCase):
    """Test approval thresholds and authority"""

    def test_required_level_by_amount(self):
        """Test amounts map to approval tiers"""
        self.assertEqual(services.get_required_approval_level(Decimal('100')), 'auto_approved')
        self.assertEqual(services.get_required_approval_level(Decimal('100.01')), 'tier_1')
        self.assertEqual(services.get_required_approval_level(Decimal('500')), 'tier_1')
        self.assertEqual(services.get_required_approval_level(Decimal('1999.99')), 'tier_2')
        self.assertEqual(services.get_required_approval_level(Decimal('25000')), 'tier_3')

    def test_next_approver(self):
        """Test approver titles per tier"""
        self.assertIsNone(services.get_next_approver(Decimal('50')))
        self.assertEqual(services.get_next_approver(Decimal('300')), 'Kitchen Manager')
        self.assertEqual(services.get_next_approver(Decimal('5000')), 'Owner')

    def test_role_can_approve(self):
        """Test role authority per tier"""
        self.assertTrue(services.role_can_approve('staff', Decimal('80')))
        self.assertTrue(services.role_can_approve('accountant', Decimal('300')))
        self.assertFalse(services.role_can_approve('accountant', Decimal('1500')))
        self.assertTrue(services.role_can_approve('manager', Decimal('1500')))
        self.assertFalse(services.role_can_approve('manager', Decimal('3000')))
        self.assertTrue(services.role_can_approve('owner', Decimal('3000')))

    def test_variance_and_quality_score(self):
        """Test receiving metrics"""
        items = [
            {'expected_quantity': Decimal('10'), 'received_quantity': Decimal('8')},
            {'expected_quantity': Decimal('0'), 'received_quantity': Decimal('0')},
        ]
        self.assertEqual(services.calculate_variance_rate(items), Decimal('0.2000'))
        self.assertEqual(services.calculate_variance_rate([]), Decimal('0'))
        self.assertEqual(
            services.calculate_quality_score(Decimal('4'), Decimal('5'), Decimal('3')), Decimal('4.00')
        )


class PurchaseOrderAPITests(TestCase):
    """Test purchase order endpoints"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.owner = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_OWNER)
        self.staff = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.manager = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_MANAGER)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.staff)
        self.supplier = TestDataFactory.create_supplier(self.org, name='Green Valley Produce')
        self.tomatoes = TestDataFactory.create_inventory_item(self.org, name='Tomatoes', current_stock='10')
        self.onions = TestDataFactory.create_inventory_item(self.org, name='Onions', current_stock='0')

    def _create_po(self, quantity='10', unit_price='5.00', **extra):
        data = {
            'organization': str(self.org.id),
            'supplier': str(self.supplier.id),
            'items': [{'item': str(self.tomatoes.id), 'quantity': quantity, 'unit_price': unit_price}],
        }
        data.update(extra)
        return self.client.post('/api/v1/purchasing/purchase-orders/', data, format='json')

    def test_small_order_auto_approved(self):
        """Test orders at or below the threshold are approved immediately"""
        response = self._create_po(quantity='10', unit_price='5.00')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['total_amount'], '50.00')
        self.assertEqual(response.data['workflow_status'], 'approved')
        self.assertEqual(response.data['approval_level'], 'auto_approved')
        self.assertIsNone(response.data['current_approver'])
        self.assertEqual(response.data['transaction_data']['approved_by'], self.staff.username)
        self.assertTrue(response.data['transaction_number'].startswith('PO-'))
        self.assertEqual(response.data['supplier']['name'], 'Green Valley Produce')
        self.assertTrue(AuditLog.objects.filter(action='po_submit').exists())

    def test_large_order_pending(self):
        """Test orders above the threshold wait for approval"""
        response = self._create_po(quantity='100', unit_price='12.00')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['workflow_status'], 'pending_approval')
        self.assertEqual(response.data['approval_level'], 'tier_2')
        self.assertEqual(response.data['current_approver'], 'Restaurant Manager')

    def test_order_requires_items(self):
        """Test creating an order without items fails"""
        data = {'organization': str(self.org.id), 'supplier': str(self.supplier.id), 'items': []}
        response = self.client.post('/api/v1/purchasing/purchase-orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('items', response.data['details'])

    def test_order_with_non_inventory_item(self):
        """Test items must be inventory items of the organization"""
        dish = TestDataFactory.create_menu_item(self.org)
        data = {
            'organization': str(self.org.id),
            'supplier': str(self.supplier.id),
            'items': [{'item': str(dish.id), 'quantity': '1', 'unit_price': '1.00'}],
        }
        response = self.client.post('/api/v1/purchasing/purchase-orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('items[1].item', response.data['details'])

    def test_order_with_unknown_supplier(self):
        """Test the supplier must exist in the organization"""
        other_supplier = TestDataFactory.create_supplier(TestDataFactory.create_organization())
        data = {
            'organization': str(self.org.id),
            'supplier': str(other_supplier.id),
            'items': [{'item': str(self.tomatoes.id), 'quantity': '1', 'unit_price': '1.00'}],
        }
        response = self.client.post('/api/v1/purchasing/purchase-orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('supplier', response.data['details'])

    def test_list_filters_by_status(self):
        """Test listing orders by workflow status"""
        self._create_po(quantity='1', unit_price='5.00')
        self._create_po(quantity='100', unit_price='5.00')
        response = self.client.get(
            '/api/v1/purchasing/purchase-orders/',
            {'organization': str(self.org.id), 'workflow_status': 'pending_approval'}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_update_pending_order_reruns_matrix(self):
        """Test editing a pending order recalculates total and approval"""
        po_id = self._create_po(quantity='100', unit_price='5.00').data['id']
        response = self.client.patch(
            f'/api/v1/purchasing/purchase-orders/{po_id}/',
            {'items': [{'item': str(self.onions.id), 'quantity': '4', 'unit_price': '5.00'}]},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_amount'], '20.00')
        self.assertEqual(response.data['workflow_status'], 'approved')
        self.assertEqual(len(response.data['lines']), 1)
        self.assertEqual(response.data['lines'][0]['entity_name'], 'Onions')

    def test_update_approved_order_rejected(self):
        """Test approved orders cannot be edited"""
        po_id = self._create_po().data['id']
        response = self.client.patch(
            f'/api/v1/purchasing/purchase-orders/{po_id}/', {'notes': 'late change'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cancel_requires_manager(self):
        """Test cancelling needs a manager and keeps the order"""
        po_id = self._create_po().data['id']
        response = self.client.delete(f'/api/v1/purchasing/purchase-orders/{po_id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(self.manager)
        response = self.client.delete(f'/api/v1/purchasing/purchase-orders/{po_id}/?reason=duplicate')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['workflow_status'], 'cancelled')
        self.assertEqual(response.data['transaction_data']['cancellation_reason'], 'duplicate')
        self.assertTrue(UniversalTransaction.objects.filter(pk=po_id).exists())

        response = self.client.delete(f'/api/v1/purchasing/purchase-orders/{po_id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class PurchaseOrderApprovalTests(TestCase):
    """Test the approval queue and decisions"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.owner = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_OWNER)
        self.manager = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_MANAGER)
        self.accountant = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_ACCOUNTANT)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.manager)
        self.supplier = TestDataFactory.create_supplier(self.org)
        self.item = TestDataFactory.create_inventory_item(self.org)

    def _po(self, amount):
        return services.create_purchase_order(
            self.org, self.supplier,
            [{'item': self.item, 'quantity': Decimal('1'), 'unit_price': Decimal(amount)}],
            self.manager,
        )

    def _act(self, po, action, **extra):
        data = {'purchase_order': str(po.id), 'organization': str(self.org.id), 'action': action}
        data.update(extra)
        return self.client.post('/api/v1/purchasing/purchase-orders/approve/', data, format='json')

    def test_queue_lists_pending_orders(self):
        """Test the approval queue defaults to pending orders"""
        self._po('50')
        self._po('300')
        self._po('1500')
        response = self.client.get('/api/v1/purchasing/purchase-orders/approve/', {'organization': str(self.org.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['summary']['total'], 2)
        self.assertEqual(response.data['summary']['pending_approval'], 2)
        self.assertEqual(response.data['summary']['total_value'], '1800.00')

        response = self.client.get(
            '/api/v1/purchasing/purchase-orders/approve/', {'organization': str(self.org.id), 'status': 'all'}
        )
        self.assertEqual(response.data['summary']['approved'], 1)

    def test_manager_approves_tier_two(self):
        """Test a manager approves a tier 2 order"""
        po = self._po('1500')
        response = self._act(po, 'approve', notes='ok for weekend')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'approved')
        self.assertEqual(response.data['approval_level'], 'tier_2')
        po.refresh_from_db()
        self.assertEqual(po.transaction_data['approved_by'], self.manager.username)
        self.assertTrue(po.transaction_data['final_approval'])
        self.assertTrue(AuditLog.objects.filter(action='po_approve').exists())

    def test_manager_cannot_approve_tier_three(self):
        """Test approval authority is enforced"""
        po = self._po('5000')
        response = self._act(po, 'approve')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        po.refresh_from_db()
        self.assertEqual(po.workflow_status, 'pending_approval')

        self.client.authenticate_user(self.owner)
        response = self._act(po, 'approve')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_accountant_approves_tier_one(self):
        """Test accountants may approve the first tier"""
        po = self._po('300')
        self.client.authenticate_user(self.accountant)
        response = self._act(po, 'approve')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_reject(self):
        """Test rejecting an order records the reason"""
        po = self._po('300')
        response = self._act(po, 'reject', notes='too expensive')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        po.refresh_from_db()
        self.assertEqual(po.workflow_status, 'rejected')
        self.assertEqual(po.transaction_data['rejection_reason'], 'too expensive')

    def test_request_modification_then_edit(self):
        """Test a sent-back order can be edited and resubmitted"""
        po = self._po('300')
        response = self._act(po, 'request_modification')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self._act(po, 'request_modification', modification_requests='split into two deliveries')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'modification_requested')

        response = self.client.patch(
            f'/api/v1/purchasing/purchase-orders/{po.id}/', {'notes': 'split'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['workflow_status'], 'pending_approval')

    def test_act_on_non_pending_order(self):
        """Test decisions need a pending order"""
        po = self._po('50')
        response = self._act(po, 'approve')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_act_on_foreign_order(self):
        """Test orders of another organization are not found"""
        other = TestDataFactory.create_organization()
        foreign_po = services.create_purchase_order(
            other, TestDataFactory.create_supplier(other),
            [{'item': TestDataFactory.create_inventory_item(other), 'quantity': Decimal('1'), 'unit_price': Decimal('300')}],
            self.manager,
        )
        response = self._act(foreign_po, 'approve')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class GoodsReceiptAPITests(TestCase):
    """Test receiving deliveries"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.user = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.supplier = TestDataFactory.create_supplier(self.org)
        self.flour = TestDataFactory.create_inventory_item(self.org, name='Flour', current_stock='5')
        self.eggs = TestDataFactory.create_inventory_item(self.org, name='Eggs', current_stock='12')
        self.po = services.create_purchase_order(
            self.org, self.supplier,
            [
                {'item': self.flour, 'quantity': Decimal('10'), 'unit_price': Decimal('2.00')},
                {'item': self.eggs, 'quantity': Decimal('30'), 'unit_price': Decimal('0.50')},
            ],
            self.user,
        )

    def _receive(self, items, **extra):
        data = {
            'organization': str(self.org.id),
            'supplier': str(self.supplier.id),
            'purchase_order': str(self.po.id),
            'items': items,
        }
        data.update(extra)
        return self.client.post('/api/v1/purchasing/goods-receipts/', data, format='json')

    def _line(self, item, expected, received, quality='accepted', unit_price='1.00'):
        return {
            'item': str(item.id),
            'expected_quantity': expected,
            'received_quantity': received,
            'unit_price': unit_price,
            'quality_status': quality,
        }

    def test_full_receipt_updates_stock_and_order(self):
        """Test receiving everything marks the order received"""
        response = self._receive(
            [self._line(self.flour, '10', '10', unit_price='2.00'), self._line(self.eggs, '30', '30', unit_price='0.50')],
            overall_quality_rating=4, delivery_rating=5, packaging_rating=3,
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['purchase_order_status'], 'received')
        self.assertEqual(response.data['quality_score'], '4.00')
        self.assertEqual(response.data['variance_rate'], '0.0000')
        self.assertEqual(response.data['purchase_order']['number'], self.po.transaction_number)
        self.assertEqual(self.flour.get_field('current_stock'), Decimal('15'))
        self.assertEqual(self.eggs.get_field('current_stock'), Decimal('42'))
        self.po.refresh_from_db()
        self.assertEqual(self.po.workflow_status, 'received')
        self.assertTrue(AuditLog.objects.filter(action='goods_receipt').exists())

    def test_partial_then_complete(self):
        """Test partial deliveries accumulate across receipts"""
        response = self._receive([self._line(self.flour, '10', '6'), self._line(self.eggs, '30', '30')])
        self.assertEqual(response.data['purchase_order_status'], 'partially_received')
        self.assertEqual(response.data['variance_rate'], '0.1000')

        response = self._receive([self._line(self.flour, '4', '4')])
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['purchase_order_status'], 'received')

    def test_rejected_lines_do_not_stock(self):
        """Test rejected goods neither raise stock nor count as received"""
        response = self._receive([
            self._line(self.flour, '10', '10', quality='rejected'),
            self._line(self.eggs, '30', '30'),
        ])
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['purchase_order_status'], 'partially_received')
        self.assertEqual(self.flour.get_field('current_stock'), Decimal('5'))
        self.assertEqual(response.data['quality_metrics']['quality_score'], '5.00')

    def test_receive_pending_order_rejected(self):
        """Test orders awaiting approval cannot be received"""
        self.po = services.create_purchase_order(
            self.org, self.supplier,
            [{'item': self.flour, 'quantity': Decimal('100'), 'unit_price': Decimal('2.00')}],
            self.user,
        )
        response = self._receive([self._line(self.flour, '100', '100')])
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('purchase_order', response.data['details'])
        self.assertEqual(self.flour.get_field('current_stock'), Decimal('5'))

    def test_supplier_mismatch(self):
        """Test the receipt supplier must match the order"""
        other_supplier = TestDataFactory.create_supplier(self.org)
        response = self._receive([self._line(self.flour, '10', '10')], supplier=str(other_supplier.id))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('supplier', response.data['details'])

    def test_receipt_without_order(self):
        """Test receiving a delivery without a purchase order"""
        response = self._receive([self._line(self.eggs, '12', '12')], purchase_order=None)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(response.data['purchase_order'])
        self.assertIsNone(response.data['purchase_order_status'])

    def test_invalid_rating(self):
        """Test ratings are limited to 1-5"""
        response = self._receive([self._line(self.flour, '10', '10')], overall_quality_rating=7)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('overall_quality_rating', response.data['details'])

    def test_supplier_performance(self):
        """Test supplier metrics aggregate receipts"""
        self._receive([self._line(self.flour, '10', '10')], delivery_rating=5, overall_quality_rating=5)
        self._receive([self._line(self.eggs, '30', '30')], delivery_rating=3, overall_quality_rating=3)

        response = self.client.get(f'/api/v1/purchasing/suppliers/{self.supplier.id}/performance/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_deliveries'], 2)
        self.assertEqual(response.data['on_time_deliveries'], 1)
        self.assertEqual(response.data['average_quality_rating'], Decimal('4.00'))

    def test_list_receipts_by_order(self):
        """Test listing receipts of one purchase order"""
        self._receive([self._line(self.flour, '10', '4')])
        self._receive([self._line(self.eggs, '12', '12')], purchase_order=None)
        response = self.client.get(
            '/api/v1/purchasing/goods-receipts/',
            {'organization': str(self.org.id), 'purchase_order': str(self.po.id)}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
