"""
Chart-of-accounts import from accounting software CSV exports

Parses QuickBooks, Xero, Sage, Tally and generic CSV layouts into account
rows, then creates (or updates) chart_of_account entities.
"""
import base64
import binascii
import csv
import io
import logging
import re
from decimal import Decimal, InvalidOperation

from django.db import transaction
from rest_framework.exceptions import ValidationError

from restaurant_erp.deployment.services import CHART_OF_ACCOUNT
from restaurant_erp.universal.models import Entity
from restaurant_erp.universal.services import create_entity, update_entity

logger = logging.getLogger(__name__)

AUTO_DETECT = 'auto_detect'
GENERIC = 'generic'
FILE_FORMATS = (AUTO_DETECT, 'quickbooks', 'xero', 'sage', 'tally', GENERIC)
CONFLICT_SKIP = 'skip'
CONFLICT_UPDATE = 'update'

ACCOUNT_FIELDS = (
    'account_code', 'account_name', 'account_type', 'account_category',
    'description', 'balance', 'is_active', 'parent_code', 'level',
)
MAX_CODE_FROM_NAME = 20

FIELD_MAPPINGS = {
    'quickbooks': {
        'Account Code': 'account_code',
        'Account': 'account_name',
        'Type': 'account_type',
        'Detail Type': 'account_category',
        'Description': 'description',
        'Balance': 'balance',
        'Active': 'is_active',
    },
    'xero': {
        'Code': 'account_code',
        'Name': 'account_name',
        'Type': 'account_type',
        'Tax Type': 'account_category',
        'Description': 'description',
        'Balance': 'balance',
        'Status': 'is_active',
    },
    'sage': {
        'A/C': 'account_code',
        'Name': 'account_name',
        'Type': 'account_type',
        'Department': 'account_category',
        'Balance': 'balance',
    },
    'tally': {
        'guid': 'account_code',
        'name': 'account_name',
        'parent': 'account_type',
        'primarygroup': 'account_category',
        'closing_balance': 'balance',
        'description': 'description',
    },
    GENERIC: {
        'code': 'account_code',
        'account_code': 'account_code',
        'account_number': 'account_code',
        'name': 'account_name',
        'account_name': 'account_name',
        'title': 'account_name',
        'type': 'account_type',
        'account_type': 'account_type',
        'category': 'account_category',
        'description': 'description',
        'notes': 'description',
        'balance': 'balance',
        'current_balance': 'balance',
        'opening_balance': 'balance',
        'closing_balance': 'balance',
        'active': 'is_active',
        'is_active': 'is_active',
        'status': 'is_active',
        'parent_code': 'parent_code',
        'level': 'level',
    },
}

TEMPLATES = {
    'quickbooks': [
        ['1000', 'Cash - Checking', 'Bank', 'Checking', 'Primary business checking account', '5000.00', 'true'],
        ['1200', 'Accounts Receivable', 'Accounts Receivable', 'Accounts Receivable', 'Customer invoices outstanding', '2500.00', 'true'],
        ['4000', 'Sales Revenue', 'Income', 'Sales of Product Income', 'Revenue from food sales', '-15000.00', 'true'],
    ],
    'xero': [
        ['1000', 'Business Bank Account', 'BANK', 'GST on Income', 'Main business account', '5000.00', 'ACTIVE'],
        ['1200', 'Accounts Receivable', 'CURRENT', 'GST on Income', 'Customer receivables', '2500.00', 'ACTIVE'],
        ['4000', 'Sales', 'REVENUE', 'GST on Income', 'Sales revenue', '15000.00', 'ACTIVE'],
    ],
    'sage': [
        ['1200', 'Bank Current Account', 'Bank', 'Head Office', '5000.00'],
        ['2100', 'Creditors Control Account', 'Liability', 'Head Office', '-1200.00'],
        ['4000', 'Food Sales', 'Sales', 'Restaurant', '-15000.00'],
    ],
    'tally': [
        ['L-0001', 'Cash', 'Cash-in-Hand', 'Current Assets', '5000.00', 'Till and petty cash'],
        ['L-0002', 'Vegetable Suppliers', 'Sundry Creditors', 'Current Liabilities', '-800.00', 'Produce vendors'],
        ['L-0003', 'Food Sales', 'Sales Accounts', 'Sales Accounts', '-15000.00', 'Dine-in and takeaway sales'],
    ],
    GENERIC: [
        ['1001', 'Cash Account', 'Asset', 'Primary cash account', '5000.00', 'true'],
        ['1200', 'Accounts Receivable', 'Asset', 'Customer receivables', '2500.00', 'true'],
        ['4001', 'Food Sales', 'Revenue', 'Restaurant food sales', '15000.00', 'true'],
    ],
}
TEMPLATE_HEADERS = {
    'sage': ['A/C', 'Name', 'Type', 'Department', 'Balance'],
    'tally': ['guid', 'name', 'parent', 'primarygroup', 'closing_balance', 'description'],
    GENERIC: ['code', 'name', 'type', 'description', 'balance', 'active'],
}

# Checked in order; liability and cost words win over the asset and revenue ones
ACCOUNT_TYPE_KEYWORDS = [
    ('COST_OF_SALES', ('cost of', 'cogs', 'direct cost', 'directcost', 'purchase')),
    ('LIABILITY', ('liab', 'payable', 'creditor', 'loan', 'credit card', 'duties')),
    ('EQUITY', ('equity', 'capital', 'retained', 'reserve')),
    ('REVENUE', ('revenue', 'income', 'sales')),
    ('EXPENSE', ('expense', 'overhead')),
    ('ASSET', ('asset', 'bank', 'cash', 'receivable', 'debtor', 'inventory', 'stock', 'current', 'fixed')),
]
ACCOUNT_TYPE_BY_LEADING_DIGIT = {
    '1': 'ASSET',
    '2': 'LIABILITY',
    '3': 'EQUITY',
    '4': 'REVENUE',
    '5': 'COST_OF_SALES',
}
UNCLASSIFIED = 'UNCLASSIFIED'

FALSE_VALUES = ('false', 'inactive', 'no', '0', 'archived')


def csv_template(file_format):
    """Headers, example rows and mapping for a downloadable template"""
    headers = TEMPLATE_HEADERS.get(file_format) or list(FIELD_MAPPINGS[file_format])
    rows = TEMPLATES[file_format]
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(headers)
    writer.writerows(rows)
    return {
        'format': file_format,
        'headers': headers,
        'example_rows': rows,
        'csv_template': buffer.getvalue(),
        'field_mapping': FIELD_MAPPINGS[file_format],
    }


def decode_file_content(content):
    """Plain CSV text, or a base64 data URI as produced by browser file readers"""
    if 'base64,' in content:
        try:
            raw = base64.b64decode(content.split('base64,', 1)[1], validate=True)
            return raw.decode('utf-8-sig')
        except (binascii.Error, UnicodeDecodeError):
            raise ValidationError({'file_content': 'Invalid base64 file content'})
    return content.lstrip('\ufeff')


def read_rows(content):
    return [row for row in csv.reader(io.StringIO(content)) if any(cell.strip() for cell in row)]


def detect_format(headers):
    joined = '|'.join(headers).lower()
    if 'account code' in joined and 'detail type' in joined:
        return 'quickbooks'
    if 'code' in joined and 'tax type' in joined:
        return 'xero'
    if 'a/c' in joined and 'department' in joined:
        return 'sage'
    if 'guid' in joined and 'primarygroup' in joined and 'closing_balance' in joined:
        return 'tally'
    return GENERIC


def _guess_field(normalized):
    if 'code' in normalized or 'number' in normalized:
        return 'account_code'
    if 'name' in normalized or 'title' in normalized:
        return 'account_name'
    if 'type' in normalized or 'category' in normalized:
        return 'account_type'
    if 'description' in normalized:
        return 'description'
    if 'balance' in normalized:
        return 'balance'
    return None


def build_field_mapping(headers, file_format):
    """Map each CSV header to an account field, matching case-insensitively"""
    base = FIELD_MAPPINGS.get(file_format, FIELD_MAPPINGS[GENERIC])
    lowered = {key.lower().replace(' ', '_'): value for key, value in base.items()}
    mapping = {}
    used = set()
    for header in headers:
        normalized = re.sub(r'\s+', '_', header.strip().lower())
        field = base.get(header) or lowered.get(normalized) or _guess_field(normalized)
        # The first column wins when several map to the same field
        if field and field not in used:
            mapping[header] = field
            used.add(field)
    return mapping


def clean_balance(value):
    text = re.sub(r'[$,\s£€¥₹]', '', value)
    if text.startswith('(') and text.endswith(')'):
        text = f'-{text[1:-1]}'
    amount = Decimal(text)
    if not amount.is_finite():
        raise InvalidOperation(text)
    return amount


def clean_is_active(value):
    return value.strip().lower() not in FALSE_VALUES


def normalize_account_type(raw_type, account_code):
    """Map a source system's account type onto ASSET/LIABILITY/EQUITY/REVENUE/COST_OF_SALES/EXPENSE"""
    lowered = (raw_type or '').strip().lower()
    if lowered:
        for account_type, keywords in ACCOUNT_TYPE_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return account_type
    leading = (account_code or '')[:1]
    if leading.isdigit():
        return ACCOUNT_TYPE_BY_LEADING_DIGIT.get(leading, 'EXPENSE')
    return UNCLASSIFIED


def parse_accounts(rows, field_mapping, has_headers=True, skip_rows=0):
    """
    Turn CSV rows into account dicts.

    Returns (accounts, errors, warnings); errors and warnings carry the
    1-based row number and the raw row.
    """
    accounts, errors, warnings = [], [], []
    rows = rows[skip_rows:]
    headers = []
    first_row = skip_rows + 1
    if has_headers and rows:
        headers = rows[0]
        rows = rows[1:]
        first_row += 1

    seen_codes = set()
    for row_number, row in enumerate(rows, start=first_row):
        if headers:
            raw = {header: row[index].strip() for index, header in enumerate(headers) if index < len(row)}
        else:
            raw = {f'column_{index}': value.strip() for index, value in enumerate(row)}

        account = {}
        for column, field in field_mapping.items():
            value = raw.get(column, '')
            if value == '':
                continue
            if field == 'balance':
                try:
                    account[field] = str(clean_balance(value))
                except InvalidOperation:
                    warnings.append({'row': row_number, 'warning': f"Balance '{value}' is not a number, using 0", 'data': raw})
                    account[field] = '0'
            elif field == 'is_active':
                account[field] = clean_is_active(value)
            elif field == 'level':
                account[field] = int(value) if value.isdigit() else 0
            else:
                account[field] = value

        if not account.get('account_code') and not account.get('account_name'):
            errors.append({'row': row_number, 'error': 'Missing both account code and name', 'data': raw})
            continue
        account.setdefault('account_code', account.get('account_name', '')[:MAX_CODE_FROM_NAME])
        account.setdefault('account_name', account['account_code'])
        account['account_code'] = re.sub(r'[^A-Za-z0-9_-]', '', account['account_code'])
        if not account['account_code']:
            errors.append({'row': row_number, 'error': 'Account code has no usable characters', 'data': raw})
            continue
        if account['account_code'] in seen_codes:
            warnings.append({
                'row': row_number,
                'warning': f"Duplicate account code {account['account_code']}, row ignored",
                'data': raw,
            })
            continue
        seen_codes.add(account['account_code'])

        source_type = account.get('account_type', '')
        account['source_type'] = source_type
        account['account_type'] = normalize_account_type(source_type, account['account_code'])
        if account['account_type'] == UNCLASSIFIED:
            warnings.append({'row': row_number, 'warning': f"Could not classify account {account['account_code']}", 'data': raw})
        account.setdefault('balance', '0')
        account.setdefault('is_active', True)
        account['row_number'] = row_number
        accounts.append(account)
    return accounts, errors, warnings


def parse_import(file_content, file_format=AUTO_DETECT, field_mapping=None, has_headers=True, skip_rows=0):
    content = decode_file_content(file_content)
    rows = read_rows(content)
    if len(rows) <= skip_rows:
        raise ValidationError({'file_content': 'No data found in file'})

    header_row = rows[skip_rows] if has_headers else []
    if file_format == AUTO_DETECT:
        detected = detect_format(header_row)
    else:
        detected = file_format
    if not field_mapping:
        if not has_headers:
            raise ValidationError({'field_mapping': 'field_mapping is required for files without headers'})
        field_mapping = build_field_mapping(header_row, detected)
    unknown = sorted(set(field_mapping.values()) - set(ACCOUNT_FIELDS))
    if unknown:
        raise ValidationError({'field_mapping': f"Unknown account fields: {', '.join(unknown)}"})

    accounts, errors, warnings = parse_accounts(rows, field_mapping, has_headers, skip_rows)
    return {
        'total_rows': len(rows) - skip_rows - (1 if has_headers else 0),
        'parsed_accounts': len(accounts),
        'errors': errors,
        'warnings': warnings,
        'accounts': accounts,
        'detected_format': detected,
        'field_mapping': field_mapping,
    }


def _account_data(account, file_format):
    data = {
        'account_type': account['account_type'],
        'current_balance': account['balance'],
        'imported_from': file_format,
    }
    for field in ('description', 'account_category', 'parent_code', 'source_type', 'level'):
        if account.get(field) not in (None, ''):
            data[field] = account[field]
    return data


def import_accounts(organization, accounts, file_format, conflict_resolution=CONFLICT_SKIP, user=None):
    """Create chart_of_account entities; existing codes are skipped or updated"""
    existing = {
        entity.entity_code: entity
        for entity in Entity.objects.filter(
            organization=organization, entity_type=CHART_OF_ACCOUNT,
            entity_code__in=[a['account_code'] for a in accounts],
        )
    }
    created, updated, skipped = [], [], []
    with transaction.atomic():
        for account in accounts:
            code = account['account_code']
            data = _account_data(account, file_format)
            entity = existing.get(code)
            if entity is not None and conflict_resolution == CONFLICT_SKIP:
                skipped.append(code)
                continue
            if entity is not None:
                update_entity(
                    entity, entity_name=account['account_name'], is_active=account['is_active'],
                    dynamic_data=data, field_types={'current_balance': 'number'},
                )
                updated.append(code)
                continue
            entity = create_entity(
                organization, CHART_OF_ACCOUNT, account['account_name'],
                entity_code=code, dynamic_data=data,
                field_types={'current_balance': 'number'}, user=user,
            )
            if not account['is_active']:
                update_entity(entity, is_active=False)
            created.append(code)

    logger.info(
        f"Chart of accounts import for {organization.org_code}: "
        f"{len(created)} created, {len(updated)} updated, {len(skipped)} skipped"
    )
    return {
        'created': len(created),
        'updated': len(updated),
        'skipped': len(skipped),
        'created_codes': created,
        'updated_codes': updated,
        'skipped_codes': skipped,
    }
