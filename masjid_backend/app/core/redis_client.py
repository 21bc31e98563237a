"""
Redis client initialization and connection management.

Redis holds short-lived claim keys for offline sync replay.
"""

import logging
import redis.asyncio as redis
from masjid_backend.app.core.config import settings

logger = logging.getLogger(__name__)


def create_redis_client():
    """Create an async Redis client from settings."""
    return redis.from_url(
        settings.redis_url,
        decode_responses=settings.redis_decode_responses,
    )


async def ping_redis(client) -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await client.ping()
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False
