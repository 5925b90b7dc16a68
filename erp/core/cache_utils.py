"""
Caching helpers for lookups that are read far more often than they change.
Backed by Redis when REDIS_URL is configured, local memory otherwise.
"""
from django.core.cache import cache
import hashlib
import logging

logger = logging.getLogger(__name__)


def make_cache_key(prefix, *args, **kwargs):
    """Generate a unique cache key from arguments"""
    key_data = f"{prefix}:{args}:{sorted(kwargs.items())}"
    # Hash it to keep key length reasonable
    key_hash = hashlib.md5(key_data.encode()).hexdigest()
    return f"{prefix}:{key_hash}"


def get_or_compute(cache_key, compute, ttl):
    """Return the cached value for cache_key, computing and storing it on a miss"""
    cached_data = cache.get(cache_key)
    if cached_data is not None:
        logger.debug(f"Cache HIT: {cache_key}")
        return cached_data

    logger.debug(f"Cache MISS: {cache_key}")
    result = compute()
    cache.set(cache_key, result, ttl)
    return result


def invalidate_cache_keys(*cache_keys):
    """Drop the given keys; cache failures are logged, never raised"""
    try:
        cache.delete_many(list(cache_keys))
    except Exception as e:
        logger.warning(f"Could not invalidate cache keys {cache_keys}: {str(e)}")
