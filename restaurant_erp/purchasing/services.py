"""
Purchase order approval matrix, goods receiving and supplier metrics

Purchase orders and goods receipts are universal transactions of type
`purchase_order` and `goods_receipt`. Approval thresholds and the roles that
may approve each tier come from settings.PURCHASE_APPROVAL_MATRIX.
"""
import logging
from collections import defaultdict
from decimal import Decimal

from django.conf import settings
from django.db import transaction as db_transaction
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError

from restaurant_erp.organizations.permissions import get_membership, is_platform_admin
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.transactions.services import create_transaction, add_line
from restaurant_erp.universal.services import set_dynamic_fields

logger = logging.getLogger(__name__)

PURCHASE_ORDER = 'purchase_order'
GOODS_RECEIPT = 'goods_receipt'
SUPPLIER = 'supplier'
INVENTORY_ITEM = 'inventory_item'

AUTO_APPROVED = 'auto_approved'
STATUS_PENDING = 'pending_approval'
STATUS_APPROVED = 'approved'
STATUS_REJECTED = 'rejected'
STATUS_MODIFICATION = 'modification_requested'
STATUS_PARTIAL = 'partially_received'
STATUS_RECEIVED = 'received'
STATUS_CANCELLED = 'cancelled'

EDITABLE_STATUSES = (STATUS_PENDING, STATUS_MODIFICATION)
RECEIVABLE_STATUSES = (STATUS_APPROVED, STATUS_PARTIAL)
STOCKED_QUALITY_STATUSES = ('accepted', 'partial')

ACTION_STATUS = {
    'approve': STATUS_APPROVED,
    'reject': STATUS_REJECTED,
    'request_modification': STATUS_MODIFICATION,
}

QUALITY_WEIGHTS = {'overall': Decimal('0.4'), 'delivery': Decimal('0.3'), 'packaging': Decimal('0.3')}


def _matrix():
    return settings.PURCHASE_APPROVAL_MATRIX


def get_required_approval_level(amount):
    amount = Decimal(str(amount))
    if amount <= _matrix()['auto_approval_threshold']:
        return AUTO_APPROVED
    for tier in _matrix()['tiers']:
        if tier['max_amount'] is None or amount <= tier['max_amount']:
            return tier['level']
    return _matrix()['tiers'][-1]['level']


def get_tier(level):
    for tier in _matrix()['tiers']:
        if tier['level'] == level:
            return tier
    return None


def get_next_approver(amount):
    """Title of the approver responsible for amount, None when auto-approved"""
    tier = get_tier(get_required_approval_level(amount))
    return tier['title'] if tier else None


def role_can_approve(role, amount):
    level = get_required_approval_level(amount)
    if level == AUTO_APPROVED:
        return True
    tier = get_tier(level)
    return bool(tier and role in tier['roles'])


def check_approval_authority(user, organization, amount):
    if is_platform_admin(user):
        return
    membership = get_membership(user, organization)
    role = membership.role if membership else None
    if not role_can_approve(role, amount):
        tier = get_tier(get_required_approval_level(amount))
        raise PermissionDenied(
            f"Role '{role}' cannot act on purchase orders of {amount}; "
            f"{tier['title'] if tier else 'an approver'} approval is required"
        )


def initial_status(amount):
    return STATUS_APPROVED if get_required_approval_level(amount) == AUTO_APPROVED else STATUS_PENDING


def _items_payload(items):
    return [
        {
            'item_id': str(item['item'].id),
            'item_name': item['item'].entity_name,
            'quantity': str(item['quantity']),
            'unit_price': str(item['unit_price']),
            'notes': item.get('notes', ''),
        }
        for item in items
    ]


def _order_lines(items):
    return [
        {
            'entity': item['item'],
            'quantity': item['quantity'],
            'unit_price': item['unit_price'],
            'line_data': {'notes': item.get('notes', '')} if item.get('notes') else {},
        }
        for item in items
    ]


def _approval_fields(amount, user):
    """transaction_data keys derived from the order total"""
    level = get_required_approval_level(amount)
    data = {
        'approval_level': level,
        'current_approver_name': get_next_approver(amount),
        'approval_status': initial_status(amount),
    }
    if level == AUTO_APPROVED:
        data.update({
            'approved_by': user.username if user else None,
            'approval_date': timezone.now().isoformat(),
            'approval_notes': 'Auto-approved below threshold',
        })
    return data


def create_purchase_order(organization, supplier, items, user, notes='', expected_delivery_date=None,
                          reference_number='', transaction_date=None):
    """
    Create a purchase order from validated items.

    items is a list of dicts with `item` (inventory entity), `quantity`,
    `unit_price` and optional `notes`.
    """
    total = sum((item['quantity'] * item['unit_price'] for item in items), Decimal('0'))
    status = initial_status(total)
    transaction_data = {
        'supplier_id': str(supplier.id),
        'supplier_name': supplier.entity_name,
        'items': _items_payload(items),
        'notes': notes,
        'expected_delivery_date': expected_delivery_date.isoformat() if expected_delivery_date else None,
        'created_by_name': user.username,
    }
    transaction_data.update(_approval_fields(total, user))

    extra = {}
    if transaction_date:
        extra['transaction_date'] = transaction_date
    po = create_transaction(
        organization, PURCHASE_ORDER,
        lines=_order_lines(items),
        user=user,
        reference_number=reference_number,
        transaction_status=status,
        workflow_status=status,
        transaction_data=transaction_data,
        **extra,
    )
    logger.info(f"Purchase order {po.transaction_number} for {total} created with status {status}")
    return po


def update_purchase_order(po, user, supplier=None, items=None, notes=None, expected_delivery_date=None):
    """Replace the order contents and re-run the approval matrix"""
    if po.workflow_status not in EDITABLE_STATUSES:
        raise ValidationError({'workflow_status': f"Purchase orders in status '{po.workflow_status}' cannot be modified"})

    data = dict(po.transaction_data)
    with db_transaction.atomic():
        if supplier is not None:
            data['supplier_id'] = str(supplier.id)
            data['supplier_name'] = supplier.entity_name
        if notes is not None:
            data['notes'] = notes
        if expected_delivery_date is not None:
            data['expected_delivery_date'] = expected_delivery_date.isoformat()
        if items is not None:
            po.lines.all().delete()
            for order, line in enumerate(_order_lines(items), start=1):
                add_line(po, line_order=order, **line)
            data['items'] = _items_payload(items)
            po.recalculate_total(save=False)

        for key in ('approved_by', 'approval_date', 'approval_notes'):
            data.pop(key, None)
        data.update(_approval_fields(po.total_amount, user))
        status = initial_status(po.total_amount)
        po.transaction_status = status
        po.workflow_status = status
        po.transaction_data = data
        po.save()
    return po


def apply_approval_action(po, action, user, notes='', modification_requests=None):
    """Approve, reject or send back a pending purchase order"""
    if po.workflow_status != STATUS_PENDING:
        raise ValidationError({'purchase_order': f"Purchase order is not pending approval (status '{po.workflow_status}')"})
    check_approval_authority(user, po.organization, po.total_amount)

    now = timezone.now().isoformat()
    new_status = ACTION_STATUS[action]
    data = dict(po.transaction_data)
    data['approval_status'] = new_status
    level = get_required_approval_level(po.total_amount)

    if action == 'approve':
        data.update({
            'approval_level': level,
            'approved_by': user.username,
            'approval_date': now,
            'approval_notes': notes,
            'final_approval': True,
        })
    elif action == 'reject':
        data.update({
            'rejected_by': user.username,
            'rejection_date': now,
            'rejection_reason': notes,
            'final_approval': True,
        })
    else:
        data.update({
            'modification_requested_by': user.username,
            'modification_request_date': now,
            'modification_requests': modification_requests or '',
            'modification_notes': notes,
        })

    po.workflow_status = new_status
    po.transaction_status = new_status
    po.transaction_data = data
    po.save(update_fields=['workflow_status', 'transaction_status', 'transaction_data', 'updated_at'])
    return po


def cancel_purchase_order(po, user, reason=''):
    if po.workflow_status in (STATUS_RECEIVED, STATUS_PARTIAL):
        raise ValidationError({'workflow_status': 'Received purchase orders cannot be cancelled'})
    if po.workflow_status == STATUS_CANCELLED:
        raise ValidationError({'workflow_status': 'Purchase order is already cancelled'})
    data = dict(po.transaction_data)
    data.update({
        'cancelled_by': user.username,
        'cancellation_date': timezone.now().isoformat(),
        'cancellation_reason': reason,
    })
    po.workflow_status = STATUS_CANCELLED
    po.transaction_status = STATUS_CANCELLED
    po.transaction_data = data
    po.save(update_fields=['workflow_status', 'transaction_status', 'transaction_data', 'updated_at'])
    return po


def calculate_variance_rate(items):
    expected = sum((item['expected_quantity'] for item in items), Decimal('0'))
    received = sum((item['received_quantity'] for item in items), Decimal('0'))
    if expected == 0:
        return Decimal('0')
    return (abs(expected - received) / expected).quantize(Decimal('0.0001'))


def calculate_quality_score(overall_rating, delivery_rating, packaging_rating):
    score = (
        overall_rating * QUALITY_WEIGHTS['overall']
        + delivery_rating * QUALITY_WEIGHTS['delivery']
        + packaging_rating * QUALITY_WEIGHTS['packaging']
    ) / sum(QUALITY_WEIGHTS.values())
    return score.quantize(Decimal('0.01'))


def _increase_stock(item, quantity):
    current = item.get_field('current_stock') or Decimal('0')
    set_dynamic_fields(item, {'current_stock': Decimal(str(current)) + quantity}, {'current_stock': 'number'})


def received_quantities(po):
    """Quantity received per item id across every receipt linked to the order"""
    totals = defaultdict(Decimal)
    receipts = UniversalTransaction.objects.filter(
        organization_id=po.organization_id,
        transaction_type=GOODS_RECEIPT,
        transaction_data__purchase_order_id=str(po.id),
    ).prefetch_related('lines')
    for receipt in receipts:
        for line in receipt.lines.all():
            if line.entity_id and line.line_data.get('quality_status') != 'rejected':
                totals[str(line.entity_id)] += line.quantity
    return totals


def refresh_receiving_status(po):
    """Mark the order received when every ordered quantity has arrived"""
    received = received_quantities(po)
    ordered = defaultdict(Decimal)
    for line in po.lines.all():
        if line.entity_id:
            ordered[str(line.entity_id)] += line.quantity

    complete = all(received.get(item_id, Decimal('0')) >= quantity for item_id, quantity in ordered.items())
    status = STATUS_RECEIVED if complete else STATUS_PARTIAL

    data = dict(po.transaction_data)
    data['received_quantities'] = {item_id: str(quantity) for item_id, quantity in received.items()}
    po.workflow_status = status
    po.transaction_status = status
    po.transaction_data = data
    po.save(update_fields=['workflow_status', 'transaction_status', 'transaction_data', 'updated_at'])
    return status


def record_goods_receipt(organization, supplier, items, user, purchase_order=None, delivery_date=None,
                        overall_quality_rating=5, delivery_rating=5, packaging_rating=5, **details):
    """
    Create a goods receipt, raise stock of accepted items and advance the linked order.

    items is a list of dicts with `item` (inventory entity), `expected_quantity`,
    `received_quantity`, `unit_price`, `quality_status` and optional batch,
    expiry and notes.
    """
    if purchase_order is not None:
        if purchase_order.workflow_status not in RECEIVABLE_STATUSES:
            raise ValidationError({
                'purchase_order': f"Purchase order must be approved before receiving (status '{purchase_order.workflow_status}')"
            })
        if purchase_order.transaction_data.get('supplier_id') not in (None, str(supplier.id)):
            raise ValidationError({'supplier': 'Supplier does not match the purchase order'})

    variance_rate = calculate_variance_rate(items)
    quality_score = calculate_quality_score(
        Decimal(overall_quality_rating), Decimal(delivery_rating), Decimal(packaging_rating)
    )
    delivery_date = delivery_date or timezone.localdate()

    transaction_data = {
        'supplier_id': str(supplier.id),
        'supplier_name': supplier.entity_name,
        'purchase_order_id': str(purchase_order.id) if purchase_order else None,
        'purchase_order_number': purchase_order.transaction_number if purchase_order else None,
        'delivery_date': delivery_date.isoformat(),
        'received_by': user.username,
        'overall_quality_rating': overall_quality_rating,
        'delivery_rating': delivery_rating,
        'packaging_rating': packaging_rating,
        'temperature_compliant': details.get('temperature_compliant'),
        'delivery_notes': details.get('delivery_notes', ''),
        'quality_inspection_notes': details.get('quality_inspection_notes', ''),
        'receiving_location': details.get('receiving_location', ''),
        'variance_rate': str(variance_rate),
        'quality_score': str(quality_score),
        'performance_metrics': {
            'total_items': len(items),
            **{
                f'{status}_items': sum(1 for item in items if item['quality_status'] == status)
                for status in ('accepted', 'rejected', 'partial', 'damaged')
            },
        },
    }
    lines = [
        {
            'entity': item['item'],
            'quantity': item['received_quantity'],
            'unit_price': item['unit_price'],
            'line_data': {
                'expected_quantity': str(item['expected_quantity']),
                'quality_status': item['quality_status'],
                'batch_number': item.get('batch_number', ''),
                'expiry_date': item['expiry_date'].isoformat() if item.get('expiry_date') else None,
                'quality_notes': item.get('quality_notes', ''),
            },
        }
        for item in items
    ]

    with db_transaction.atomic():
        receipt = create_transaction(
            organization, GOODS_RECEIPT,
            lines=lines,
            user=user,
            transaction_date=delivery_date,
            reference_number=purchase_order.transaction_number if purchase_order else '',
            transaction_status='completed',
            workflow_status=STATUS_RECEIVED,
            transaction_data=transaction_data,
        )
        for item in items:
            if item['quality_status'] in STOCKED_QUALITY_STATUSES and item['received_quantity'] > 0:
                _increase_stock(item['item'], item['received_quantity'])
        po_status = refresh_receiving_status(purchase_order) if purchase_order else None

    logger.info(f"Goods receipt {receipt.transaction_number} recorded ({len(items)} items, {receipt.total_amount})")
    return receipt, quality_score, variance_rate, po_status


def _average(values):
    values = [Decimal(str(v)) for v in values if v is not None]
    if not values:
        return Decimal('0')
    return (sum(values) / len(values)).quantize(Decimal('0.01'))


def supplier_performance(organization, supplier):
    receipts = list(
        UniversalTransaction.objects.filter(
            organization=organization,
            transaction_type=GOODS_RECEIPT,
            transaction_data__supplier_id=str(supplier.id),
        ).order_by('-transaction_date', '-created_at')
    )
    data = [receipt.transaction_data for receipt in receipts]
    return {
        'supplier_id': str(supplier.id),
        'supplier_name': supplier.entity_name,
        'total_deliveries': len(receipts),
        'on_time_deliveries': sum(1 for d in data if (d.get('delivery_rating') or 0) >= 4),
        'average_quality_rating': _average(d.get('overall_quality_rating') for d in data),
        'average_delivery_rating': _average(d.get('delivery_rating') for d in data),
        'average_packaging_rating': _average(d.get('packaging_rating') for d in data),
        'average_quality_score': _average(d.get('quality_score') for d in data),
        'variance_rate': _average(d.get('variance_rate') for d in data),
        'total_value': sum((receipt.total_amount for receipt in receipts), Decimal('0')),
        'last_delivery_date': receipts[0].transaction_date if receipts else None,
    }
