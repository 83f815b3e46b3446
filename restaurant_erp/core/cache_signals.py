"""
Cache invalidation signals
Automatically invalidate cache when data changes
"""
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging
import threading
from contextlib import contextmanager

from restaurant_erp.core.cache_utils import invalidate_dashboard_cache, invalidate_analytics_cache
from restaurant_erp.deployment.services import MODULE_TEMPLATE_TYPES, PACKAGE_TEMPLATE_TYPES
from restaurant_erp.organizations.models import Organization, UserOrganization
from restaurant_erp.universal.models import Entity
from restaurant_erp.transactions.models import UniversalTransaction

logger = logging.getLogger(__name__)

# Thread-local storage to track signal suspension
_thread_locals = threading.local()


@contextmanager
def suspend_cache_signals():
    """
    Context manager to temporarily suspend cache invalidation signals.
    Useful for bulk operations to prevent excessive cache clearing.
    Dashboard and analytics caches are invalidated once when the block exits.
    """
    previous = is_suspended()
    try:
        _thread_locals.suspended = True
        yield
    finally:
        _thread_locals.suspended = previous
        if not previous:
            invalidate_dashboard_cache()
            invalidate_analytics_cache()


def is_suspended():
    return getattr(_thread_locals, 'suspended', False)


@receiver([post_save, post_delete], sender=Organization)
@receiver([post_save, post_delete], sender=UserOrganization)
@receiver([post_save, post_delete], sender=Entity)
def invalidate_on_tenant_change(sender, instance, **kwargs):
    if is_suspended():
        return
    invalidate_dashboard_cache()
    if sender is Entity and instance.entity_type in MODULE_TEMPLATE_TYPES + PACKAGE_TEMPLATE_TYPES:
        invalidate_analytics_cache()


@receiver([post_save, post_delete], sender=UniversalTransaction)
def invalidate_on_transaction_change(sender, instance, **kwargs):
    if is_suspended():
        return
    invalidate_dashboard_cache()
    if instance.transaction_type in ('module_deployment', 'package_deployment'):
        invalidate_analytics_cache()
