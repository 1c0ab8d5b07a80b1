"""Analysis-context cache over a CacheStore.

Store failures and timeouts degrade to cache misses. Concurrent misses on the
same analysis share one recomputation (single-flight).
"""

import asyncio
import logging
from collections.abc import Callable

from pydantic import ValidationError

from context_engine.cache.store import CacheEntry, CacheStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "analysis:"


class AnalysisContextCache:
    def __init__(self, store: CacheStore, ttl: int = 3600, timeout: float = 0.05):
        self.store = store
        self.ttl = ttl
        self.timeout = timeout
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.coalesced = 0
        self._in_flight: dict[str, asyncio.Future] = {}
        self._logged_failures: set[str] = set()

    @staticmethod
    def _key(analysis_id: str) -> str:
        return f"{KEY_PREFIX}{analysis_id}"

    def _record_failure(self, operation: str, exc: Exception) -> None:
        self.errors += 1
        failure_class = f"{operation}:{type(exc).__name__}"
        if failure_class not in self._logged_failures:
            self._logged_failures.add(failure_class)
            logger.warning("Cache %s failed, treating as miss: %r", operation, exc)

    async def get(self, analysis_id: str) -> CacheEntry | None:
        try:
            raw = await asyncio.wait_for(self.store.get(self._key(analysis_id)), self.timeout)
            entry = CacheEntry.model_validate_json(raw) if raw is not None else None
        except Exception as exc:
            self._record_failure("get", exc)
            entry = None

        if entry is None:
            self.misses += 1
        else:
            self.hits += 1
        return entry

    async def set(self, analysis_id: str, value: str, token_count: int) -> CacheEntry:
        key = self._key(analysis_id)
        entry = CacheEntry(key=key, value=value, token_count=token_count, ttl=self.ttl)
        try:
            await asyncio.wait_for(self.store.set(key, entry.model_dump_json(), self.ttl), self.timeout)
        except Exception as exc:
            self._record_failure("set", exc)
        return entry

    async def invalidate(self, analysis_id: str) -> None:
        try:
            await asyncio.wait_for(self.store.delete(self._key(analysis_id)), self.timeout)
        except Exception as exc:
            self._record_failure("delete", exc)

    async def get_or_compute(
        self,
        analysis_id: str,
        compute: Callable[[], tuple[str, int]],
    ) -> tuple[CacheEntry, bool]:
        """Return ``(entry, cache_hit)``, computing and storing on a miss."""
        entry = await self.get(analysis_id)
        if entry is not None:
            return entry, True

        key = self._key(analysis_id)
        pending = self._in_flight.get(key)
        if pending is not None:
            self.coalesced += 1
            return await asyncio.shield(pending), False

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            value, token_count = compute()
            entry = await self.set(analysis_id, value, token_count)
            future.set_result(entry)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # mark retrieved; coalesced waiters still receive it
            future.exception()
            raise
        finally:
            self._in_flight.pop(key, None)
        return entry, False

    def get_stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "coalesced": self.coalesced,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            "ttl_seconds": self.ttl,
            "in_flight": len(self._in_flight),
        }

    def reset_stats(self) -> None:
        self.hits = self.misses = self.errors = self.coalesced = 0
