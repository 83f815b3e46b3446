"""
Typed values for dynamic-data rows

Attributes are persisted as text next to a field_type tag. These helpers pick
the tag for a Python value, render the value to text, and parse it back.
"""
import datetime
import json
from decimal import Decimal, InvalidOperation

FIELD_TYPES = ('text', 'number', 'boolean', 'date', 'json')


def infer_field_type(value):
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, (int, float, Decimal)):
        return 'number'
    if isinstance(value, (datetime.date, datetime.datetime)):
        return 'date'
    if isinstance(value, (list, dict)):
        return 'json'
    return 'text'


def serialize_field_value(value, field_type):
    """Render a Python value as the stored text for field_type"""
    if value is None:
        return ''
    if field_type == 'boolean':
        if isinstance(value, str):
            return 'true' if value.strip().lower() in ('true', '1', 'yes') else 'false'
        return 'true' if value else 'false'
    if field_type == 'number':
        try:
            return str(Decimal(str(value)))
        except InvalidOperation:
            raise ValueError(f"'{value}' is not a number")
    if field_type == 'date':
        if isinstance(value, (datetime.date, datetime.datetime)):
            return value.isoformat()
        try:
            return datetime.date.fromisoformat(str(value)).isoformat()
        except ValueError:
            raise ValueError(f"'{value}' is not an ISO date")
    if field_type == 'json':
        return json.dumps(value, default=str)
    return str(value)


def parse_field_value(raw, field_type):
    """Parse stored text back into a typed value; unparseable text is returned as-is"""
    if raw is None or raw == '':
        return None
    try:
        if field_type == 'number':
            return Decimal(raw)
        if field_type == 'boolean':
            return raw.strip().lower() in ('true', '1', 'yes')
        if field_type == 'date':
            return datetime.date.fromisoformat(raw[:10])
        if field_type == 'json':
            return json.loads(raw)
    except (InvalidOperation, ValueError):
        return raw
    return raw
