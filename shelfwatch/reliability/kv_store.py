"""Key-value stores with per-key TTL used by the reliability reactors."""

import asyncio
import json
import logging
import math
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from shelfwatch.config import settings

logger = logging.getLogger(__name__)

UPDATE_MAX_RETRIES = 10


class StoreUnavailableError(RuntimeError):
    """The backing store could not be reached or refused the operation."""


class KeyValueStore(Protocol):
    """
    Shared store for cross-crawl state.

    Values are JSON-serializable. ``ttl`` is in seconds; ``None`` keeps the
    key until it is forgotten.
    """

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    async def forget(self, key: str) -> None: ...

    async def add(self, key: str, value: Any, ttl: Optional[float] = None) -> bool: ...

    async def update(
        self,
        key: str,
        fn: Callable[[Any], Any],
        ttl: Optional[float] = None,
        default: Any = None,
    ) -> Any: ...


def _ttl_seconds(ttl: Optional[float]) -> Optional[int]:
    if ttl is None:
        return None
    return max(1, int(math.ceil(ttl)))


class InMemoryKeyValueStore:
    """Process-local store with expiry checked against an injectable clock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _read(self, key: str, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self._data[key]
            return default
        return value

    def _write(self, key: str, value: Any, ttl: Optional[float]) -> None:
        # Round-trip through JSON so stored values behave like the Redis store's
        encoded = json.loads(json.dumps(value))
        expires_at = self.clock() + ttl if ttl is not None else None
        self._data[key] = (encoded, expires_at)

    async def get(self, key: str, default: Any = None) -> Any:
        return self._read(key, default)

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._write(key, value, ttl)

    async def forget(self, key: str) -> None:
        self._data.pop(key, None)

    async def add(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        async with self._lock:
            if self._read(key) is not None:
                return False
            self._write(key, value, ttl)
            return True

    async def update(
        self,
        key: str,
        fn: Callable[[Any], Any],
        ttl: Optional[float] = None,
        default: Any = None,
    ) -> Any:
        async with self._lock:
            value = fn(self._read(key, default))
            self._write(key, value, ttl)
            return value

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None when missing or persistent."""
        if self._read(key) is None:
            return None
        expires_at = self._data[key][1]
        return None if expires_at is None else expires_at - self.clock()


class RedisKeyValueStore:
    """Redis-backed store; values are stored as JSON strings."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    @staticmethod
    def _decode(raw: Optional[str], default: Any) -> Any:
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding non-JSON value in key-value store: {raw[:80]}")
            return default

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            client = await self._get_redis()
            return self._decode(await client.get(key), default)
        except RedisError as e:
            raise StoreUnavailableError(f"get {key}: {e}") from e

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        try:
            client = await self._get_redis()
            await client.set(key, json.dumps(value), ex=_ttl_seconds(ttl))
        except RedisError as e:
            raise StoreUnavailableError(f"put {key}: {e}") from e

    async def forget(self, key: str) -> None:
        try:
            client = await self._get_redis()
            await client.delete(key)
        except RedisError as e:
            raise StoreUnavailableError(f"forget {key}: {e}") from e

    async def add(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.set(key, json.dumps(value), ex=_ttl_seconds(ttl), nx=True))
        except RedisError as e:
            raise StoreUnavailableError(f"add {key}: {e}") from e

    async def update(
        self,
        key: str,
        fn: Callable[[Any], Any],
        ttl: Optional[float] = None,
        default: Any = None,
    ) -> Any:
        """
        Atomically replace ``key`` with ``fn(current)``.

        Uses WATCH/MULTI and retries when another writer changes the key
        between the read and the write.
        """
        try:
            client = await self._get_redis()
            async with client.pipeline(transaction=True) as pipe:
                for _ in range(UPDATE_MAX_RETRIES):
                    try:
                        await pipe.watch(key)
                        value = fn(self._decode(await pipe.get(key), default))
                        pipe.multi()
                        pipe.set(key, json.dumps(value), ex=_ttl_seconds(ttl))
                        await pipe.execute()
                        return value
                    except WatchError:
                        logger.debug(f"Concurrent write to {key}, retrying update")
                        continue
        except RedisError as e:
            raise StoreUnavailableError(f"update {key}: {e}") from e
        raise StoreUnavailableError(f"update {key}: gave up after {UPDATE_MAX_RETRIES} conflicts")

    async def ttl(self, key: str) -> Optional[float]:
        try:
            client = await self._get_redis()
            remaining = await client.ttl(key)
        except RedisError as e:
            raise StoreUnavailableError(f"ttl {key}: {e}") from e
        return float(remaining) if remaining and remaining > 0 else None
