"""
Key-value cache with per-entry TTL.

Two backends share one small interface (get / put / remove):
- MemoryCache: in-process dict, good for a single worker and for tests
- RedisCache: shared across workers, values stored as JSON
"""
import json
import threading
import time
from typing import Any, Dict, Optional, Tuple

import redis
from redis.exceptions import RedisError

from intake.core.config import settings
from intake.core.logger import get_logger

logger = get_logger(__name__)


class KeyValueCache:
    """Interface consumed by the services."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryCache(KeyValueCache):
    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._mutex = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._mutex:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def remove(self, key: str) -> None:
        with self._mutex:
            self._entries.pop(key, None)


class RedisCache(KeyValueCache):
    """
    Redis-backed cache.

    Read failures degrade to a cache miss so a Redis outage only costs a
    re-read of the header row; write and remove failures are raised because
    a missed invalidation would leave stale metadata behind.
    """

    def __init__(self, client: redis.Redis, namespace: str = "intake"):
        self.client = client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.client.set(self._key(key), json.dumps(value), ex=max(1, int(ttl_seconds)))

    def remove(self, key: str) -> None:
        self.client.delete(self._key(key))


_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=5)
    return _redis_client


def build_cache() -> KeyValueCache:
    if settings.CACHE_BACKEND == "redis":
        logger.info("Using Redis cache backend")
        return RedisCache(get_redis_client())
    return MemoryCache()
