"""
Redis configuration for the fee settlement engine.
Provides the connection pool backing the shared gateway token cache.
"""

from typing import Any, Optional
import json
import redis
from redis import Redis
from redis.connection import ConnectionPool

from fee_settlement.config.settings import settings
import logging

logger = logging.getLogger(__name__)

_redis_pool: Optional[ConnectionPool] = None


def get_redis_pool() -> ConnectionPool:
    """Create the shared connection pool on first use"""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = ConnectionPool.from_url(
            settings.get_redis_url(),
            max_connections=settings.REDIS_POOL_SIZE,
            decode_responses=True,
        )
    return _redis_pool


def get_redis_client() -> Redis:
    """Get Redis client with connection pooling"""
    return Redis(connection_pool=get_redis_pool())


class RedisManager:
    """Thin JSON-aware wrapper used by the token cache"""

    def __init__(self, client: Optional[Redis] = None, prefix: str = "fee_settlement"):
        self.client = client or get_redis_client()
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value with optional expiration"""
        try:
            if not isinstance(value, (str, int, float)):
                value = json.dumps(value)
            return bool(self.client.set(self._key(key), value, ex=ttl))
        except redis.RedisError as e:
            logger.error(f"Redis set error: {str(e)}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Get value with deserialization support"""
        try:
            value = self.client.get(self._key(key))
        except redis.RedisError as e:
            logger.error(f"Redis get error: {str(e)}")
            return default

        if value is None:
            return default
        try:
            return json.loads(value)
        except (TypeError, json.JSONDecodeError):
            return value

    def delete(self, key: str) -> bool:
        """Delete key"""
        try:
            return bool(self.client.delete(self._key(key)))
        except redis.RedisError as e:
            logger.error(f"Redis delete error: {str(e)}")
            return False
