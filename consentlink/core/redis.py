# consentlink/core/redis.py
"""
Redis connection utilities.
Redis is used for:
- Publishing sharing lifecycle events for the notification dispatcher

The app should boot even if Redis is unavailable (degraded mode).
"""

import logging
from functools import lru_cache
from typing import Optional

import redis

from consentlink.core.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client instance.
    Returns None if Redis is not configured or unavailable.
    """
    settings = get_settings()

    if not settings.redis_url:
        logger.warning("REDIS_URL not set. Sharing events will not be published.")
        return None

    try:
        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        # Test connection
        client.ping()
        logger.info("Redis connection established successfully.")
        return client
    except redis.RedisError as e:
        logger.warning(
            f"Failed to connect to Redis: {e}. Running in degraded mode (no event publishing)."
        )
        return None


def publish(channel: str, message: str) -> bool:
    """Publish a message to a channel. Returns False if Redis unavailable."""
    client = get_redis_client()
    if not client:
        return False
    try:
        client.publish(channel, message)
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis PUBLISH error for channel '{channel}': {e}")
        return False
