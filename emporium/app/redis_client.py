"""Shared Redis connection with graceful in-memory fallback."""
import redis
from typing import Optional

from .config import Config
from ..utils.logger import get_logger

logger = get_logger()

_client: Optional[redis.Redis] = None
_checked = False


def get_redis() -> Optional[redis.Redis]:
    """Return a live Redis client, or None when Redis is disabled or unreachable.

    The connection is probed once per process; callers keep their own
    in-memory fallback for the None case.
    """
    global _client, _checked
    if _checked:
        return _client
    _checked = True
    if not Config.USE_REDIS:
        logger.info("Redis disabled by configuration, using in-memory storage")
        return None
    try:
        client = redis.Redis(
            host=Config.REDIS_HOST,
            port=Config.REDIS_PORT,
            db=Config.REDIS_DB,
            decode_responses=True,
            socket_connect_timeout=2,
        )
        client.ping()
        logger.info("Using Redis at %s:%s", Config.REDIS_HOST, Config.REDIS_PORT)
        _client = client
    except redis.RedisError as e:
        logger.warning("Redis not available (%s), using in-memory storage", e)
        _client = None
    return _client


def reset_redis():
    """Forget the cached connection (used by tests)."""
    global _client, _checked
    _client = None
    _checked = False
