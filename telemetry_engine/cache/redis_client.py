"""
Redis client construction.

Builds the redis.asyncio client used by the latest-value cache. Responses
are decoded to ``str`` so hash fields and values can be handled as text
without per-call decoding.

CHANGELOG:
- 2026-02-27: Build from settings; failures propagate to the caller
- 2026-02-21: Initial creation
"""

import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)


def create_redis(url: str) -> redis.Redis:
    """Create an async Redis client.

    Args:
        url: Redis connection URL, e.g. ``redis://localhost:6379/0``.

    Returns:
        redis.Redis: Async Redis client with decoded responses.
    """
    if not url:
        raise RuntimeError("REDIS_URL is required")
    logger.debug("Creating Redis client for %s", url.split("@")[-1])
    return redis.from_url(url, decode_responses=True)
