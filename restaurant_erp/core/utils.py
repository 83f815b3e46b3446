"""Audit trail helpers shared by every app"""
import json
import logging

from django.core.serializers.json import DjangoJSONEncoder

from .models import AuditLog

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """First address of X-Forwarded-For, else REMOTE_ADDR"""
    meta = getattr(request, 'META', None)
    if not meta:
        return None
    forwarded = meta.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip() or None
    return meta.get('REMOTE_ADDR') or None


def _json_safe(changes):
    # Decimals, UUIDs and datetimes come straight from validated_data
    return json.loads(json.dumps(changes or {}, cls=DjangoJSONEncoder))


def _acting_user(request, user):
    actor = user or getattr(request, 'user', None)
    if actor is None or not actor.is_authenticated:
        return None
    return actor


def create_audit_log(request=None, action=None, model_name=None, object_id=None,
                     changes=None, user=None, object_name=None, object_reference=None,
                     organization=None):
    """
    Record a business-critical write.

    Args:
        request: DRF request; supplies the user and client IP
        action: one of AuditLog.ACTION_CHOICES (create, po_approve, module_deploy, ...)
        model_name: logical record type, e.g. 'MenuItem' or 'PurchaseOrder'
        object_id: primary key of the record
        changes: JSON-serializable summary of what changed
        user: acting user when there is no request (management commands, services)
        object_name: human-readable name, e.g. entity name
        object_reference: business reference, e.g. transaction number or entity code
        organization: Organization instance or id the write belongs to

    Returns the AuditLog, or None when required fields are missing or the write
    failed. Audit problems are logged and never reach the caller.
    """
    if not action or not model_name or not object_id:
        logger.warning(
            f"Audit log skipped: missing required fields "
            f"(action={action}, model_name={model_name}, object_id={object_id})"
        )
        return None

    try:
        return AuditLog.objects.create(
            user=_acting_user(request, user),
            action=action,
            model_name=model_name,
            object_id=str(object_id),
            object_name=object_name,
            object_reference=object_reference,
            organization_id=getattr(organization, 'pk', organization),
            changes=_json_safe(changes),
            ip_address=get_client_ip(request),
        )
    except Exception as e:
        logger.error(f"Failed to create audit log for {model_name} {object_id} ({action}): {e}")
        return None
