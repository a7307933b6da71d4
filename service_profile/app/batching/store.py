"""
Cache stores backing the batch aggregation engine.
"""

from __future__ import annotations

import json
import math
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from shared.logging import get_logger


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """A stored batch result and its freshness window."""

    value: Dict[str, Any]
    stored_at: datetime
    ttl: float

    def age(self, now: datetime) -> float:
        return (now - self.stored_at).total_seconds()

    def remaining(self, now: datetime) -> float:
        return max(0.0, self.ttl - self.age(now))

    def is_fresh(self, now: datetime) -> bool:
        return self.age(now) < self.ttl

    def to_json(self) -> str:
        return json.dumps({
            "value": self.value,
            "stored": self.stored_at.isoformat(),
            "ttl": self.ttl,
        })

    @classmethod
    def from_json(cls, raw: Any) -> "CacheEntry":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        stored_at = datetime.fromisoformat(data["stored"])
        if stored_at.tzinfo is None:
            stored_at = stored_at.replace(tzinfo=timezone.utc)
        return cls(value=data["value"], stored_at=stored_at, ttl=float(data["ttl"]))


class CacheStore:
    """Interface the aggregation engine expects from a store.

    ``retention`` is how long an entry must remain readable, which may be
    longer than its freshness ``ttl`` so it can serve as a stale fallback.
    """

    async def get(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    async def set(self, key: str, entry: CacheEntry, retention: float) -> bool:
        raise NotImplementedError

    async def check_health(self) -> str:
        return "ok"

    async def close(self) -> None:
        return None


class MemoryCacheStore(CacheStore):
    """Process-local store.

    Entries are kept in eviction order, and every read or write first
    sweeps the expired entries off the front, so users who never return
    do not accumulate.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[CacheEntry, datetime]]" = OrderedDict()

    def _sweep(self, now: datetime) -> None:
        while self._entries:
            key, (_, evict_at) = next(iter(self._entries.items()))
            if now < evict_at:
                break
            del self._entries[key]

    async def get(self, key: str) -> Optional[CacheEntry]:
        now = self._clock()
        self._sweep(now)
        item = self._entries.get(key)
        if item is None:
            return None
        entry, evict_at = item
        # Retention can differ per entry, so the sweep may stop early.
        if now >= evict_at:
            del self._entries[key]
            return None
        return entry

    async def set(self, key: str, entry: CacheEntry, retention: float) -> bool:
        self._sweep(self._clock())
        evict_at = entry.stored_at + timedelta(seconds=retention)
        self._entries.pop(key, None)
        self._entries[key] = (entry, evict_at)
        return True

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore(CacheStore):
    """Redis-backed store shared by every service instance.

    Store failures degrade to cache misses; they never fail a request.
    """

    KEY_PREFIX = "profile:batch:"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.logger = get_logger("profile.batch.redis_store")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            client = await self._get_redis()
            raw = await client.get(self._make_key(key))
            if raw is None:
                return None
            return CacheEntry.from_json(raw)
        except Exception as exc:
            self.logger.error("Batch cache get error", error=str(exc))
            return None

    async def set(self, key: str, entry: CacheEntry, retention: float) -> bool:
        try:
            client = await self._get_redis()
            await client.setex(self._make_key(key), max(1, math.ceil(retention)), entry.to_json())
            return True
        except Exception as exc:
            self.logger.error("Batch cache set error", error=str(exc))
            return False

    async def check_health(self) -> str:
        try:
            client = await self._get_redis()
            await client.ping()
            return "ok"
        except Exception as exc:
            self.logger.error("Batch cache health check failed", error=str(exc))
            return "error"

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_cache_store(backend: str, redis_url: str) -> CacheStore:
    """Build the configured cache store (``memory`` or ``redis``)."""
    if backend == "memory":
        return MemoryCacheStore()
    if backend == "redis":
        return RedisCacheStore(redis_url)
    raise ValueError(f"Unknown cache backend: {backend!r}")
