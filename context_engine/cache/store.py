"""Key-value cache stores with TTL: in-process (tests, single worker) and Redis."""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone

import redis.asyncio as redis
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    key: str
    value: str
    token_count: int = Field(ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ttl: int = Field(gt=0)


class CacheStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        return None


class InMemoryCacheStore(CacheStore):
    """Dict-backed store. ``clock`` is injectable so tests control expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        # key -> (value, expires_at)
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        item = self._entries.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() > expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)
        self._purge_expired()

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (_, expires_at) in self._entries.items() if now > expires_at]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore(CacheStore):
    """Redis-backed store; TTL enforced by the server via SETEX."""

    def __init__(self, redis_url: str, key_prefix: str = "conv:"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._make_key(key))

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._redis.setex(self._make_key(key), ttl, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._make_key(key))

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Closed Redis connection")


def create_cache_store(redis_url: str = "") -> CacheStore:
    if redis_url:
        logger.info("Analysis context cache backed by Redis at %s", redis_url)
        return RedisCacheStore(redis_url)
    return InMemoryCacheStore()
