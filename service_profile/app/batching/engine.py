"""
Cached, coalescing batch aggregation engine.

The engine wraps a ``generate(request, resources)`` coroutine that fans out
to the identity services and merges their answers. Results are cached per
key; concurrent calls for a key share one in-flight computation; a fresh
computation is bounded by ``generate_timeout``; an expired entry kept in
the stale window is served, with a report, when regeneration fails.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TYPE_CHECKING

from shared.errors import GenerationTimeoutError, ProfileServiceError
from shared.logging import get_logger

from .store import CacheEntry, CacheStore, MemoryCacheStore, utcnow

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


GenerateFunc = Callable[[Any, Mapping[str, str]], Awaitable[Dict[str, Any]]]
KeyFunc = Callable[[Any], str]


@dataclass(frozen=True)
class BatchReport:
    """Non-fatal problem attached to a usable (stale) result."""

    error: Dict[str, Any]

    @classmethod
    def from_exception(cls, exc: BaseException) -> "BatchReport":
        if isinstance(exc, ProfileServiceError):
            return cls(error={"code": exc.code, "message": exc.message})
        return cls(error={"code": type(exc).__name__, "message": str(exc)})


@dataclass(frozen=True)
class BatchOutcome:
    """Merged batch value plus its cache provenance."""

    value: Dict[str, Any]
    from_cache: bool = False
    stored_at: Optional[datetime] = None
    ttl: Optional[float] = None
    report: Optional[BatchReport] = None


class AggregationEngine:
    """Per-key cached and deduplicated execution of a batch generator."""

    def __init__(
        self,
        generate: GenerateFunc,
        *,
        generate_key: KeyFunc,
        expires_in: float,
        generate_timeout: float,
        store: Optional[CacheStore] = None,
        stale_ttl: float = 0,
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.generate = generate
        self.generate_key = generate_key
        self.expires_in = expires_in
        self.generate_timeout = generate_timeout
        self.stale_ttl = stale_ttl
        self.store = store if store is not None else MemoryCacheStore(clock)
        self.metrics = metrics
        self.logger = get_logger("profile.batch.engine")

        self._clock = clock
        self._pending: Dict[str, asyncio.Task] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "coalesced": 0,
            "stale": 0,
            "generations": 0,
            "failures": 0,
        }

    async def get(self, request: Any, resources: Mapping[str, str]) -> BatchOutcome:
        """Return the batch for ``request``, from cache when still fresh.

        The store lookup and any regeneration run inside one task per key,
        so callers arriving while a lookup is in flight join it rather than
        reading the store themselves.
        """
        key = self.generate_key(request)
        task = self._pending.get(key)
        if task is None:
            task = self._start_resolution(key, request, resources)
        else:
            self._stats["coalesced"] += 1

        # Shielded so one caller going away does not cancel the shared work.
        return await asyncio.shield(task)

    def _start_resolution(self, key: str, request: Any, resources: Mapping[str, str]) -> asyncio.Task:
        task = asyncio.ensure_future(self._resolve(key, request, resources))
        self._pending[key] = task

        def _release(done: asyncio.Task) -> None:
            if self._pending.get(key) is done:
                del self._pending[key]
            if not done.cancelled():
                # Mark the exception retrieved; every waiter re-raises it.
                done.exception()

        task.add_done_callback(_release)
        return task

    async def _resolve(self, key: str, request: Any, resources: Mapping[str, str]) -> BatchOutcome:
        entry = await self.store.get(key)
        now = self._clock()

        if entry is not None and entry.is_fresh(now):
            self._stats["hits"] += 1
            return self._cached_outcome(entry, now)

        self._stats["misses"] += 1
        try:
            value = await self._generate_and_store(key, request, resources)
        except Exception as exc:
            if entry is not None and self._is_within_stale_window(entry, now):
                self._stats["stale"] += 1
                self.logger.warning(
                    "Serving stale batch after generation failure",
                    key=key,
                    error=str(exc),
                )
                return self._cached_outcome(entry, now, report=BatchReport.from_exception(exc))
            raise

        return BatchOutcome(value=dict(value))

    async def _generate_and_store(self, key: str, request: Any, resources: Mapping[str, str]) -> Dict[str, Any]:
        self._stats["generations"] += 1
        start = time.perf_counter()
        try:
            value = await asyncio.wait_for(self.generate(request, resources), timeout=self.generate_timeout)
        except asyncio.TimeoutError:
            self._stats["failures"] += 1
            self._record_generation("timeout", time.perf_counter() - start)
            raise GenerationTimeoutError(self.generate_timeout, details={"key": key}) from None
        except Exception:
            self._stats["failures"] += 1
            self._record_generation("error", time.perf_counter() - start)
            raise

        self._record_generation("ok", time.perf_counter() - start)
        entry = CacheEntry(value=dict(value), stored_at=self._clock(), ttl=self.expires_in)
        await self.store.set(key, entry, retention=self.expires_in + self.stale_ttl)
        return value

    def _is_within_stale_window(self, entry: CacheEntry, now: datetime) -> bool:
        return self.stale_ttl > 0 and entry.age(now) < entry.ttl + self.stale_ttl

    @staticmethod
    def _cached_outcome(entry: CacheEntry, now: datetime, report: Optional[BatchReport] = None) -> BatchOutcome:
        return BatchOutcome(
            value=dict(entry.value),
            from_cache=True,
            stored_at=entry.stored_at,
            ttl=entry.remaining(now),
            report=report,
        )

    def _record_generation(self, result: str, duration: float) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter("profile_batch_generations_total", result=result)
            self.metrics.observe_histogram("profile_batch_generation_seconds", duration)
        except Exception as exc:  # pragma: no cover - metrics failures never fail a batch
            self.logger.debug("Failed to record generation metrics", error=str(exc))

    def in_flight(self) -> int:
        return len(self._pending)

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "in_flight": self.in_flight(),
            "expires_in": self.expires_in,
            "generate_timeout": self.generate_timeout,
            "stale_ttl": self.stale_ttl,
        }
