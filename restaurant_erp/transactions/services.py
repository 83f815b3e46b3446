"""
Transaction creation and lifecycle helpers shared by the business modules
"""
import logging
import re
import secrets
from decimal import Decimal

from django.db import transaction as db_transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from .models import UniversalTransaction, TransactionLine

logger = logging.getLogger(__name__)

TRANSACTION_PREFIXES = {
    'purchase_order': 'PO',
    'goods_receipt': 'GR',
    'sales_order': 'SO',
    'module_deployment': 'DEPLOY',
    'package_deployment': 'PKG',
    'journal_entry': 'JE',
}

# Types whose status, data and lines are driven by their own module endpoints
MODULE_TRANSACTION_TYPES = (
    'purchase_order',
    'goods_receipt',
    'sales_order',
    'module_deployment',
    'package_deployment',
)


def transaction_prefix(transaction_type):
    if transaction_type in TRANSACTION_PREFIXES:
        return TRANSACTION_PREFIXES[transaction_type]
    words = [w for w in re.split(r'[^A-Za-z0-9]+', transaction_type) if w]
    return ''.join(w[0] for w in words).upper()[:4] or 'TXN'


def generate_transaction_number(organization, transaction_type):
    """<PREFIX>-<YYYYMMDD>-<HEX8>, unique within the organization"""
    prefix = transaction_prefix(transaction_type)
    date_part = timezone.localdate().strftime('%Y%m%d')
    while True:
        number = f"{prefix}-{date_part}-{secrets.token_hex(4).upper()}"
        if not UniversalTransaction.objects.filter(organization=organization, transaction_number=number).exists():
            return number


def is_module_transaction(transaction_type):
    return transaction_type in MODULE_TRANSACTION_TYPES


def ensure_generic_writable(transaction_type):
    """Reject writes through the generic endpoints on module-owned types"""
    if is_module_transaction(transaction_type):
        raise ValidationError({
            'transaction_type': f"{transaction_type} transactions are managed through their own endpoints"
        })


def add_line(txn, entity=None, quantity=1, unit_price=0, line_amount=None,
             line_description='', line_data=None, line_order=None):
    """Append a line to txn; the caller recalculates the header total"""
    if entity is not None and entity.organization_id != txn.organization_id:
        raise ValidationError({'entity': 'Line entity must belong to the transaction organization'})
    if line_order is None:
        line_order = txn.lines.count() + 1
    return TransactionLine.objects.create(
        transaction=txn,
        organization_id=txn.organization_id,
        entity=entity,
        line_description=line_description or (entity.entity_name if entity else ''),
        quantity=Decimal(str(quantity)),
        unit_price=Decimal(str(unit_price)),
        line_amount=Decimal(str(line_amount)) if line_amount is not None else None,
        line_order=line_order,
        line_data=line_data or {},
    )


def create_transaction(organization, transaction_type, lines=None, user=None,
                       transaction_number=None, **fields):
    """
    Create a transaction header with optional lines.

    lines is a list of dicts accepted by add_line. When lines are given the
    header total is their sum, otherwise total_amount from fields is kept.
    """
    if transaction_number and UniversalTransaction.objects.filter(
            organization=organization, transaction_number=transaction_number).exists():
        raise ValidationError({'transaction_number': f"Transaction number '{transaction_number}' already exists"})

    fields.setdefault('currency', organization.currency)
    with db_transaction.atomic():
        txn = UniversalTransaction.objects.create(
            organization=organization,
            transaction_type=transaction_type,
            transaction_number=transaction_number or generate_transaction_number(organization, transaction_type),
            created_by=user if user and user.is_authenticated else None,
            **fields,
        )
        for order, line in enumerate(lines or [], start=1):
            line = dict(line)
            add_line(txn, line_order=line.pop('line_order', order), **line)
        if lines:
            txn.recalculate_total()
    logger.info(f"Transaction {txn.transaction_number} ({transaction_type}) created in {organization.org_code}")
    return txn


def post_transaction(txn):
    if txn.transaction_status == UniversalTransaction.STATUS_POSTED:
        raise ValidationError({'transaction_status': 'Transaction is already posted'})
    txn.transaction_status = UniversalTransaction.STATUS_POSTED
    txn.posted_at = timezone.now()
    txn.save(update_fields=['transaction_status', 'posted_at', 'updated_at'])
    return txn
