"""
Redis connection for admission-control counters.

Returns None when Redis is not configured or unreachable so callers can
degrade to in-process state.
"""
import logging
import time
from typing import Optional, Tuple

import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from core.config import settings

logger = logging.getLogger(__name__)

# Redis connection pool (singleton)
_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    if not settings.REDIS_URL:
        return None

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        client.ping()
        logger.info("Redis connection established")
        _redis_client = client
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Rate limiting falls back to in-process counters.")
        _redis_client = None
        return None


def ping_redis() -> Tuple[str, Optional[float]]:
    """Return (status, latency_ms) for the health endpoint."""
    if not settings.REDIS_URL:
        return "not_configured", None
    start = time.time()
    client = get_redis_client()
    if client is None:
        return "unavailable", None
    try:
        client.ping()
        return "healthy", round((time.time() - start) * 1000, 2)
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis ping failed: {e}")
        return "error", None
