"""
Caching for dashboard and analytics aggregates

Redis (django-redis) when REDIS_URL is set, the local-memory cache otherwise.
"""
import hashlib
import logging
from functools import wraps

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

_CACHE_TTLS = getattr(settings, 'CACHE_TTLS', {})
DASHBOARD_CACHE_TTL = _CACHE_TTLS.get('dashboard', 300)
ANALYTICS_CACHE_TTL = _CACHE_TTLS.get('analytics', 600)


def make_cache_key(prefix, *args, **kwargs):
    """
    `<prefix>:<md5>` over the call arguments.

    Arguments are rendered with str() so a UUID and its string form share a key.
    """
    parts = [str(a) for a in args] + [f"{k}={v}" for k, v in sorted(kwargs.items())]
    digest = hashlib.md5('|'.join(parts).encode()).hexdigest()
    return f"{prefix}:{digest}"


def cached_query(cache_ttl=60, key_prefix="query"):
    """
    Cache the return value of an aggregate query function.

        @cached_query(cache_ttl=DASHBOARD_CACHE_TTL, key_prefix="dashboard_organizations")
        def build_organizations_dashboard(limit=20):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            key = make_cache_key(key_prefix, *args, **kwargs)
            data = cache.get(key)
            if data is not None:
                logger.debug(f"Cache hit {key}")
                return data
            logger.debug(f"Cache miss {key}")
            data = func(*args, **kwargs)
            cache.set(key, data, cache_ttl)
            return data
        return wrapper
    return decorator


def invalidate_cache_pattern(pattern):
    """
    Drop every key containing pattern.

    Only django-redis can match keys; other backends are cleared entirely.
    """
    try:
        if hasattr(cache, 'delete_pattern'):
            deleted = cache.delete_pattern(f"*{pattern}*")
            logger.info(f"Invalidated {deleted} cache keys matching {pattern}")
        else:
            cache.clear()
            logger.debug(f"Cleared cache for {pattern}")
    except Exception as e:
        logger.warning(f"Could not invalidate cache keys matching {pattern}: {e}")


def invalidate_dashboard_cache():
    invalidate_cache_pattern("dashboard_organizations")


def invalidate_analytics_cache():
    invalidate_cache_pattern("template_analytics")
