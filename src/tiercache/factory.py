"""Build a tier chain from settings.

The chain is always memory first, then Redis when ``redis_url`` is set,
then S3 when ``s3_bucket`` is set:

    memory -> redis -> s3
"""

from __future__ import annotations

import logging

from tiercache.adapter import CacheAdapter
from tiercache.backends.bucket import new_bucket_cache
from tiercache.backends.memory import new_memory_cache
from tiercache.backends.redis import new_redis_cache
from tiercache.config.logging import configure_logging
from tiercache.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def build_cache(settings: Settings) -> CacheAdapter:
    """Create the tier chain described by settings.

    Tiers below memory are opened; a tier that cannot be reached fails the
    build with BackendError.
    """
    head = new_memory_cache(
        namespace=settings.namespace,
        ttl=settings.ttl,
        purge_interval=settings.memory_purge_seconds,
        max_size=settings.memory_max_size,
    )
    tier = head

    if settings.redis_url:
        logger.info(f"Using Redis tier at {settings.redis_url}")
        redis_tier = new_redis_cache(
            namespace=settings.namespace,
            ttl=settings.ttl,
            client_caching=settings.redis_client_caching,
            client_caching_ttl=settings.redis_client_caching_ttl_seconds,
            manage_types=settings.redis_manage_types,
            url=settings.redis_url,
        ).open()
        tier.chain(redis_tier)
        tier = redis_tier

    if settings.s3_bucket:
        logger.info(f"Using S3 tier in bucket {settings.s3_bucket}")
        bucket_tier = new_bucket_cache(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix if settings.s3_prefix is not None else settings.namespace,
            suffix=settings.s3_suffix,
            content_type=settings.s3_content_type,
            region=settings.s3_region,
            ttl=settings.ttl,
            endpoint_url=settings.s3_endpoint_url,
        ).open()
        tier.chain(bucket_tier)

    if head.chained is None:
        logger.debug("Using in-memory cache only")
    return head


# Global cache instance
_cache: CacheAdapter | None = None


def get_cache() -> CacheAdapter:
    """Get or create the global cache chain from application settings.

    The first call also configures process logging from the same settings.
    """
    global _cache

    if _cache is None:
        settings = get_settings()
        configure_logging(settings.log_level, settings.log_format, settings.sanitize_logs)
        _cache = build_cache(settings)

    return _cache


def reset_cache() -> None:
    """Reset the global cache instance. Useful for testing."""
    global _cache
    if _cache is not None:
        tier = _cache
        while tier is not None:
            tier.close()
            tier = tier.chained
    _cache = None
