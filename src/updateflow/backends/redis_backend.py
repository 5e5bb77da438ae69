# backends/redis_backend.py
from __future__ import annotations

import json
from typing import Any, Optional, Tuple

import redis

from ..errors import CacheBackingError

DEFAULT_PREFIX = "updateflow:cache"


class RedisCacheBacking:
    """
    Cache backing on Redis: one hash per key
      <prefix>:<key> -> {value: <json>, created_at: <float>}

    Expiry stays with the cache layer (lazy), so no Redis TTL is set.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        prefix: str = DEFAULT_PREFIX,
        client: Optional[redis.Redis] = None,
    ):
        self.prefix = prefix
        self._client = client if client is not None else redis.from_url(url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def load(self, key: str) -> Optional[Tuple[Any, float]]:
        try:
            doc = self._client.hgetall(self._key(key))
        except redis.RedisError as e:
            raise CacheBackingError(f"Redis HGETALL failed for key={key!r}: {e}") from e
        if not doc:
            return None
        try:
            return json.loads(doc["value"]), float(doc["created_at"])
        except (KeyError, ValueError) as e:
            raise CacheBackingError(f"corrupt cache entry for key={key!r}: {e}") from e

    def store(self, key: str, value: Any, timestamp: float) -> None:
        try:
            payload = json.dumps(value, sort_keys=True)
            self._client.hset(self._key(key), mapping={"value": payload, "created_at": repr(timestamp)})
        except (redis.RedisError, TypeError, ValueError) as e:
            raise CacheBackingError(f"Redis HSET failed for key={key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as e:
            raise CacheBackingError(f"Redis DELETE failed for key={key!r}: {e}") from e

    def clear(self) -> None:
        try:
            keys = list(self._client.scan_iter(match=f"{self.prefix}:*"))
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as e:
            raise CacheBackingError(f"Redis clear failed: {e}") from e
