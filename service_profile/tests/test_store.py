"""
Unit tests for batch cache stores.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_profile.app.batching.store import (
    CacheEntry,
    MemoryCacheStore,
    RedisCacheStore,
    create_cache_store,
)


STORED_AT = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:

    def __init__(self):
        self.now = STORED_AT

    def __call__(self):
        return self.now


@pytest.fixture
def entry():
    return CacheEntry(value={"email": "a@b.com", "uid": None}, stored_at=STORED_AT, ttl=60)


class TestCacheEntry:
    """Test cases for CacheEntry."""

    def test_freshness(self, entry):
        assert entry.is_fresh(STORED_AT + timedelta(seconds=59)) is True
        assert entry.is_fresh(STORED_AT + timedelta(seconds=60)) is False

    def test_remaining_never_negative(self, entry):
        assert entry.remaining(STORED_AT + timedelta(seconds=15)) == 45
        assert entry.remaining(STORED_AT + timedelta(seconds=600)) == 0

    def test_json_round_trip(self, entry):
        restored = CacheEntry.from_json(entry.to_json().encode("utf-8"))
        assert restored == entry


class TestMemoryCacheStore:
    """Test cases for MemoryCacheStore."""

    @pytest.mark.asyncio
    async def test_get_missing(self):
        store = MemoryCacheStore(FakeClock())
        assert await store.get("nobody") is None

    @pytest.mark.asyncio
    async def test_entry_kept_for_retention(self, entry):
        """Entries outlive their ttl until retention lapses, then are evicted."""
        clock = FakeClock()
        store = MemoryCacheStore(clock)
        await store.set("user-1", entry, retention=120)

        clock.now = STORED_AT + timedelta(seconds=90)
        assert await store.get("user-1") == entry

        clock.now = STORED_AT + timedelta(seconds=120)
        assert await store.get("user-1") is None
        assert len(store) == 0


class TestRedisCacheStore:
    """Test cases for RedisCacheStore."""

    @pytest.fixture
    def mock_redis(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, mock_redis):
        return RedisCacheStore("redis://localhost:6379/0", client=mock_redis)

    @pytest.mark.asyncio
    async def test_set_uses_prefixed_key_and_retention(self, store, mock_redis, entry):
        assert await store.set("user-1", entry, retention=90.5) is True

        key, expiry, payload = mock_redis.setex.call_args.args
        assert key == "profile:batch:user-1"
        assert expiry == 91
        assert json.loads(payload)["value"] == entry.value

    @pytest.mark.asyncio
    async def test_get_decodes_entry(self, store, mock_redis, entry):
        mock_redis.get.return_value = entry.to_json().encode("utf-8")

        assert await store.get("user-1") == entry
        mock_redis.get.assert_called_once_with("profile:batch:user-1")

    @pytest.mark.asyncio
    async def test_get_miss(self, store, mock_redis):
        mock_redis.get.return_value = None
        assert await store.get("user-1") is None

    @pytest.mark.asyncio
    async def test_errors_degrade_to_miss(self, store, mock_redis, entry):
        """Redis failures never propagate to the caller."""
        mock_redis.get.side_effect = ConnectionError("down")
        mock_redis.setex.side_effect = ConnectionError("down")

        assert await store.get("user-1") is None
        assert await store.set("user-1", entry, retention=60) is False

    @pytest.mark.asyncio
    async def test_check_health(self, store, mock_redis):
        assert await store.check_health() == "ok"

        mock_redis.ping.side_effect = ConnectionError("down")
        assert await store.check_health() == "error"

    @pytest.mark.asyncio
    async def test_close(self, store, mock_redis):
        await store.close()
        mock_redis.aclose.assert_called_once()


class TestCreateCacheStore:
    """Test cases for create_cache_store."""

    def test_memory(self):
        assert isinstance(create_cache_store("memory", "redis://localhost"), MemoryCacheStore)

    def test_redis(self):
        store = create_cache_store("redis", "redis://cache:6379/1")
        assert isinstance(store, RedisCacheStore)
        assert store.redis_url == "redis://cache:6379/1"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_cache_store("memcached", "")


class TestMemoryCacheStoreEviction:
    """Expired entries are dropped even when their key is never read again."""

    @pytest.mark.asyncio
    async def test_expired_users_are_swept_on_read(self):
        clock = FakeClock()
        store = MemoryCacheStore(clock)
        for i in range(1000):
            await store.set(f"user-{i}", CacheEntry(value={}, stored_at=clock(), ttl=60), retention=120)
        assert len(store) == 1000

        clock.now = STORED_AT + timedelta(days=10)
        assert await store.get("someone-else") is None

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_expired_users_are_swept_on_write(self):
        clock = FakeClock()
        store = MemoryCacheStore(clock)
        await store.set("user-1", CacheEntry(value={}, stored_at=clock(), ttl=60), retention=60)
        await store.set("user-2", CacheEntry(value={}, stored_at=clock(), ttl=60), retention=60)

        clock.now = STORED_AT + timedelta(seconds=61)
        await store.set("user-3", CacheEntry(value={}, stored_at=clock(), ttl=60), retention=60)

        assert len(store) == 1
        assert await store.get("user-3") is not None

    @pytest.mark.asyncio
    async def test_rewritten_key_keeps_latest_retention(self):
        clock = FakeClock()
        store = MemoryCacheStore(clock)
        await store.set("user-1", CacheEntry(value={"v": 1}, stored_at=clock(), ttl=60), retention=60)
        await store.set("user-2", CacheEntry(value={}, stored_at=clock(), ttl=60), retention=60)

        clock.now = STORED_AT + timedelta(seconds=30)
        await store.set("user-1", CacheEntry(value={"v": 2}, stored_at=clock(), ttl=60), retention=60)

        clock.now = STORED_AT + timedelta(seconds=70)
        entry = await store.get("user-1")

        assert entry.value == {"v": 2}
        assert len(store) == 1
