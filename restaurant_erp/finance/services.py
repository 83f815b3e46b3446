"""
General ledger validation and posting

GL-relevant transactions carry their journal lines in
transaction_data['entries'] as {account_code, debit, credit, description}.
Account codes resolve against the organization's active chart_of_account
entities. Posting state lives in transaction_data['gl_posting'] so module
transactions keep their own transaction_status.
"""
import calendar
import datetime
import logging
import uuid
from collections import Counter
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from itertools import islice

from django.db import transaction as db_transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from restaurant_erp.deployment.services import CHART_OF_ACCOUNT
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.universal.models import Entity

logger = logging.getLogger(__name__)

JOURNAL_ENTRY = 'journal_entry'
GL_TRANSACTION_TYPES = (JOURNAL_ENTRY, 'purchase_order', 'goods_receipt', 'sales_order')

POSTING_PENDING = 'pending'
POSTING_POSTED = 'posted'
POSTING_ERROR = 'error'

RESULT_POSTED = 'posted'
RESULT_FAILED = 'failed'
RESULT_SKIPPED = 'skipped'

QUEUE_STATUSES = ('ready', 'posted', 'pending', 'failed')
VALIDATION_SCOPES = ('pending', 'all', 'recent', 'errors_only')

BALANCE_TOLERANCE = Decimal('0.01')
TWO_PLACES = Decimal('0.01')
QUEUE_LIMIT = 200
BATCH_LIMIT = 100
VALIDATION_LIMIT = 100
RECENT_DAYS = 7

ERROR_SEVERITY = {
    'no_entries': 'medium',
    'missing_gl_account': 'critical',
    'invalid_gl_account': 'high',
    'invalid_amount': 'high',
    'balance_mismatch': 'critical',
}
ACCOUNT_ERRORS = ('missing_gl_account', 'invalid_gl_account')


def _money(value):
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _amount(value):
    """Entry amount as a Decimal, or None when it is not a non-negative number"""
    if value is None or value == '':
        return Decimal('0')
    if isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount


def period_bounds(period):
    """First and last day of a YYYY-MM accounting period"""
    year, month = (int(part) for part in period.split('-'))
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, 1), datetime.date(year, month, last_day)


def chart_of_accounts(organization):
    """Active GL accounts of the organization keyed by account code"""
    return {
        account.entity_code: account
        for account in Entity.objects.filter(
            organization=organization, entity_type=CHART_OF_ACCOUNT, is_active=True
        )
    }


def account_payload(account):
    data = account.get_dynamic_data()
    balance = data.get('current_balance')
    return {
        'id': str(account.id),
        'account_code': account.entity_code,
        'account_name': account.entity_name,
        'account_type': data.get('account_type', ''),
        'account_category': data.get('account_category', ''),
        'description': data.get('description', ''),
        'current_balance': str(_money(balance)) if balance is not None else '0.00',
        'parent_code': data.get('parent_code'),
        'is_active': account.is_active,
    }


def gl_transactions(organization):
    return UniversalTransaction.objects.filter(
        organization=organization, transaction_type__in=GL_TRANSACTION_TYPES
    )


def posting_state(txn):
    return txn.transaction_data.get('gl_posting') or {}


def posting_status(txn):
    return posting_state(txn).get('status', POSTING_PENDING)


def _error(error_type, field, description, current_value=None):
    return {
        'error_type': error_type,
        'severity': ERROR_SEVERITY[error_type],
        'field': field,
        'current_value': current_value,
        'description': description,
    }


def validate_entries(txn, accounts):
    """
    Double-entry check of a transaction's journal lines.

    Every entry needs a known account code and a debit or credit amount,
    and total debits must match total credits within BALANCE_TOLERANCE.
    A transaction is ready for posting when no check fails and it has not
    been posted yet.
    """
    entries = txn.transaction_data.get('entries') or []
    errors = []
    mappings = []
    total_debit = total_credit = Decimal('0')

    if not isinstance(entries, list) or not entries:
        errors.append(_error('no_entries', 'entries', 'Transaction has no journal entries'))
        entries = []

    for index, entry in enumerate(entries, start=1):
        field = f'entries[{index}]'
        if not isinstance(entry, dict):
            entry = {}
        code = str(entry.get('account_code') or '').strip()
        if not code:
            errors.append(_error('missing_gl_account', f'{field}.account_code', 'Missing GL account code'))
            continue
        account = accounts.get(code)
        if account is None:
            errors.append(_error('invalid_gl_account', f'{field}.account_code', f'Invalid GL account: {code}', code))
            continue

        debit = _amount(entry.get('debit'))
        credit = _amount(entry.get('credit'))
        if debit is None or credit is None:
            errors.append(_error(
                'invalid_amount', field, 'Debit and credit must be non-negative numbers',
                {'debit': entry.get('debit'), 'credit': entry.get('credit')},
            ))
            continue
        if not debit and not credit:
            errors.append(_error('invalid_amount', field, 'Entry has no debit or credit amount'))
            continue

        total_debit += debit
        total_credit += credit
        mappings.append({
            'account_code': code,
            'account_name': account.entity_name,
            'debit': str(_money(debit)),
            'credit': str(_money(credit)),
            'description': entry.get('description', ''),
        })

    difference = abs(total_debit - total_credit)
    is_balanced = difference <= BALANCE_TOLERANCE
    if not is_balanced:
        errors.append(_error(
            'balance_mismatch', 'entries',
            f'Transaction is out of balance by {_money(difference)}', str(_money(difference)),
        ))

    status = posting_status(txn)
    return {
        'transaction_id': str(txn.id),
        'transaction_number': txn.transaction_number,
        'transaction_type': txn.transaction_type,
        'posting_status': status,
        'validation_status': 'error' if errors else 'validated',
        'is_balanced': is_balanced,
        'has_valid_accounts': not any(e['error_type'] in ACCOUNT_ERRORS for e in errors),
        'accounts_used': len(mappings),
        'total_debit': str(_money(total_debit)),
        'total_credit': str(_money(total_credit)),
        'balance_difference': str(_money(difference)),
        'ready_for_posting': not errors and status != POSTING_POSTED,
        'errors': errors,
        'gl_account_mappings': mappings,
    }


def validate_transaction(txn):
    if txn.transaction_type not in GL_TRANSACTION_TYPES:
        raise ValidationError({
            'transaction_type': f"{txn.transaction_type} transactions are not posted to the general ledger"
        })
    return validate_entries(txn, chart_of_accounts(txn.organization))


def _matches_queue_status(status, validation):
    if status == 'ready':
        return validation['ready_for_posting']
    if status == 'posted':
        return validation['posting_status'] == POSTING_POSTED
    if status == 'pending':
        return validation['posting_status'] == POSTING_PENDING
    if status == 'failed':
        return validation['posting_status'] == POSTING_ERROR
    return True


def build_posting_queue(organization, status=None, period=None, include_details=False):
    """GL transactions with their posting readiness, newest first"""
    queryset = gl_transactions(organization)
    if period:
        queryset = queryset.filter(transaction_date__range=period_bounds(period))

    accounts = chart_of_accounts(organization)
    queue = []
    used_accounts = set()
    total_amount = Decimal('0')
    for txn in queryset.order_by('-created_at'):
        validation = validate_entries(txn, accounts)
        if not _matches_queue_status(status, validation):
            continue
        state = posting_state(txn)
        row = {
            'transaction_id': str(txn.id),
            'transaction_number': txn.transaction_number,
            'transaction_type': txn.transaction_type,
            'amount': str(txn.total_amount),
            'date': txn.transaction_date.isoformat(),
            'posting_status': validation['posting_status'],
            'posting_date': state.get('posting_date'),
            'posting_period': state.get('posting_period'),
            'journal_entry_id': state.get('journal_entry_id'),
            'ready_for_posting': validation['ready_for_posting'],
            'validation_summary': {
                'is_balanced': validation['is_balanced'],
                'has_valid_accounts': validation['has_valid_accounts'],
                'accounts_used': validation['accounts_used'],
                'error_count': len(validation['errors']),
            },
            'total_debit': validation['total_debit'],
            'total_credit': validation['total_credit'],
            'balance_difference': validation['balance_difference'],
        }
        if include_details:
            row['gl_account_mappings'] = validation['gl_account_mappings']
        queue.append(row)
        used_accounts.update(m['account_code'] for m in validation['gl_account_mappings'])
        total_amount += txn.total_amount
        if len(queue) >= QUEUE_LIMIT:
            break

    summary = {
        'total_transactions': len(queue),
        'ready_for_posting': sum(1 for row in queue if row['ready_for_posting']),
        'already_posted': sum(1 for row in queue if row['posting_status'] == POSTING_POSTED),
        'pending_validation': sum(
            1 for row in queue
            if not row['ready_for_posting'] and row['posting_status'] != POSTING_POSTED
        ),
        'failed_posting': sum(1 for row in queue if row['posting_status'] == POSTING_ERROR),
        'total_amount': str(_money(total_amount)),
        'unique_accounts': len(used_accounts),
    }
    return {
        'posting_queue': queue,
        'summary': summary,
        'current_period': timezone.localdate().strftime('%Y-%m'),
    }


def build_validation_report(organization, scope='pending'):
    """Validation results for the transactions selected by scope"""
    queryset = gl_transactions(organization)
    if scope == 'recent':
        queryset = queryset.filter(created_at__gte=timezone.now() - datetime.timedelta(days=RECENT_DAYS))

    accounts = chart_of_accounts(organization)
    results = []
    for txn in queryset.order_by('-created_at'):
        if scope == 'pending' and posting_status(txn) == POSTING_POSTED:
            continue
        validation = validate_entries(txn, accounts)
        if scope == 'errors_only' and not validation['errors']:
            continue
        results.append(validation)
        if len(results) >= VALIDATION_LIMIT:
            break

    error_types = Counter(e['error_type'] for r in results for e in r['errors'])
    return {
        'validation_summary': {
            'total_transactions': len(results),
            'validated': sum(1 for r in results if r['validation_status'] == 'validated'),
            'errors': sum(1 for r in results if r['validation_status'] == 'error'),
            'ready_for_posting': sum(1 for r in results if r['ready_for_posting']),
            'critical_issues': sum(
                1 for r in results for e in r['errors'] if e['severity'] == 'critical'
            ),
            'error_types': dict(error_types),
        },
        'transactions': results,
    }


def _save_posting_state(txn, state, posted_at=None):
    txn.transaction_data = {**txn.transaction_data, 'gl_posting': state}
    update_fields = ['transaction_data', 'updated_at']
    if posted_at is not None and txn.transaction_type == JOURNAL_ENTRY:
        txn.transaction_status = UniversalTransaction.STATUS_POSTED
        txn.posted_at = posted_at
        update_fields += ['transaction_status', 'posted_at']
    txn.save(update_fields=update_fields)


def _select_for_posting(organization, transaction_ids):
    queryset = gl_transactions(organization).order_by('created_at')
    if not transaction_ids:
        pending = (txn for txn in queryset if posting_status(txn) != POSTING_POSTED)
        return list(islice(pending, BATCH_LIMIT))

    wanted = {str(pk) for pk in transaction_ids}
    transactions = list(queryset.filter(pk__in=wanted))
    missing = wanted - {str(txn.id) for txn in transactions}
    if missing:
        raise ValidationError({
            'transaction_ids': f"Not GL transactions of this organization: {', '.join(sorted(missing))}"
        })
    if len(transactions) > BATCH_LIMIT:
        raise ValidationError({'transaction_ids': f'At most {BATCH_LIMIT} transactions can be posted at once'})
    return transactions


def post_to_ledger(organization, user, transaction_ids=None, posting_date=None, posting_period=None,
                   allow_partial_posting=True, dry_run=False, posting_description=''):
    """
    Post a batch of transactions to the general ledger.

    Transactions that fail validation never post. With allow_partial_posting
    the valid ones still post and the invalid ones are skipped; without it
    the invalid ones are marked failed and nothing in the batch posts.
    dry_run reports the outcome without writing anything.
    """
    posting_date = posting_date or timezone.localdate()
    posting_period = posting_period or posting_date.strftime('%Y-%m')
    batch_id = str(uuid.uuid4())

    transactions = _select_for_posting(organization, transaction_ids)
    accounts = chart_of_accounts(organization)
    validations = [(txn, validate_entries(txn, accounts)) for txn in transactions]
    has_invalid = any(
        v['errors'] and v['posting_status'] != POSTING_POSTED for _, v in validations
    )
    reject_batch = has_invalid and not allow_partial_posting

    results = []
    total_debit = total_credit = Decimal('0')
    affected_accounts = set()
    now = timezone.now()
    username = user.username if user and user.is_authenticated else 'system'

    with db_transaction.atomic():
        for txn, validation in validations:
            journal_entry_id = None
            messages = [e['description'] for e in validation['errors']]

            if validation['posting_status'] == POSTING_POSTED:
                outcome = RESULT_SKIPPED
                messages = ['Transaction is already posted to the general ledger']
            elif messages:
                outcome = RESULT_SKIPPED if allow_partial_posting else RESULT_FAILED
                if not dry_run:
                    _save_posting_state(txn, {
                        'status': POSTING_ERROR,
                        'batch_id': batch_id,
                        'errors': messages,
                        'checked_at': now.isoformat(),
                    })
            elif reject_batch:
                outcome = RESULT_SKIPPED
                messages = ['Batch rejected because other transactions failed validation']
            else:
                outcome = RESULT_POSTED
                total_debit += Decimal(validation['total_debit'])
                total_credit += Decimal(validation['total_credit'])
                affected_accounts.update(m['account_code'] for m in validation['gl_account_mappings'])
                if not dry_run:
                    journal_entry_id = str(uuid.uuid4())
                    _save_posting_state(txn, {
                        'status': POSTING_POSTED,
                        'batch_id': batch_id,
                        'journal_entry_id': journal_entry_id,
                        'posting_date': posting_date.isoformat(),
                        'posting_period': posting_period,
                        'posted_at': now.isoformat(),
                        'posted_by': username,
                        'description': posting_description,
                    }, posted_at=now)

            results.append({
                'transaction_id': str(txn.id),
                'transaction_number': txn.transaction_number,
                'transaction_type': txn.transaction_type,
                'posting_status': outcome,
                'journal_entry_id': journal_entry_id,
                'gl_account_mappings': validation['gl_account_mappings'],
                'validation_passed': not validation['errors'],
                'messages': messages,
            })

    counts = Counter(r['posting_status'] for r in results)
    summary = {
        'batch_id': batch_id,
        'organization': str(organization.id),
        'total_transactions': len(results),
        'successful_posts': counts[RESULT_POSTED],
        'failed_posts': counts[RESULT_FAILED],
        'skipped_posts': counts[RESULT_SKIPPED],
        'total_debit_amount': str(_money(total_debit)),
        'total_credit_amount': str(_money(total_credit)),
        'posting_date': posting_date.isoformat(),
        'posting_period': posting_period,
        'accounts_affected': sorted(affected_accounts),
        'dry_run': dry_run,
    }
    logger.info(
        f"GL batch {batch_id} for {organization.org_code}: {counts[RESULT_POSTED]} posted, "
        f"{counts[RESULT_FAILED]} failed, {counts[RESULT_SKIPPED]} skipped"
        f"{' (dry run)' if dry_run else ''}"
    )
    return {'summary': summary, 'results': results}
