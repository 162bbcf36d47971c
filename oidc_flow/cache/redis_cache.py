"""
Redis caching layer for key sets shared between application processes.
"""

import json
from typing import Any, Dict, Optional

import redis

from shared.logging import get_logger


class RedisCache:
    """Redis-backed key-set cache.

    Read failures are treated as a miss so verification falls through to a
    fresh fetch; write failures are logged and dropped.
    """

    KEYSET_PREFIX = "oidc:jwks:"

    def __init__(self, client: redis.Redis, prefix: Optional[str] = None):
        self.redis = client
        self.prefix = prefix or self.KEYSET_PREFIX
        self.logger = get_logger("oidc.cache.redis")

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisCache":
        client = redis.Redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            cached_data = self.redis.get(self._key(key))
        except redis.RedisError as e:
            self.logger.error("Error reading cached key set", error=str(e))
            return None

        if not cached_data:
            return None

        try:
            value = json.loads(cached_data)
        except ValueError:
            self.logger.warning("Discarding undecodable cached key set", cache_key=self._key(key))
            self.delete(key)
            return None

        return value if isinstance(value, dict) else None

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        try:
            # SETEX rejects a zero TTL
            self.redis.setex(self._key(key), max(1, int(ttl)), json.dumps(value))
        except redis.RedisError as e:
            self.logger.error("Error caching key set", error=str(e))

    def delete(self, key: str) -> None:
        try:
            self.redis.delete(self._key(key))
        except redis.RedisError as e:
            self.logger.error("Error deleting cached key set", error=str(e))
