"""
Unit tests for the tag-aware cache.
"""

import math
import pytest
from unittest.mock import AsyncMock, MagicMock

import redis.asyncio as redis

from shared.errors import CacheBackendError, CacheInvalidArgumentError
from service_marketplace.app.cache.keys import (
    affected_list_types, entity_key, entity_tag, list_key, list_tag, list_tags,
)
from service_marketplace.app.cache.tagged_cache import (
    CacheItem, InMemoryTagAwareCache, RedisTagAwareCache, should_recompute_early, validate_key,
)


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingCompute:
    """Compute callback recording its calls."""

    def __init__(self, value, lifetime=None, tags=()):
        self.value = value
        self.lifetime = lifetime
        self.tags = tags
        self.calls = 0

    async def __call__(self, item: CacheItem):
        self.calls += 1
        if self.lifetime is not None:
            item.expires_after(self.lifetime)
        item.tag(*self.tags)
        return self.value


class TestCacheKeys:
    """Test cases for key and tag naming."""

    def test_entity_key_and_tag(self):
        assert entity_key("Phone", "abc") == "Phone_abc"
        assert entity_tag("Phone") == "phone_tag"

    def test_list_keys(self):
        assert list_key("Client", "partner_abc", 2, 10) == "Client_list_partner_abc_2_10"
        assert list_key("Client", "all") == "Client_list_all_full"

    def test_list_tags_include_dependencies(self):
        assert list_tag("Offer") == "offer_list_tag"
        assert list_tags("Offer") == ["offer_list_tag", "partner_list_tag", "phone_list_tag"]
        assert list_tags("Client") == ["client_list_tag"]

    def test_affected_list_types(self):
        assert affected_list_types("Partner") == {"Partner", "Offer"}
        assert affected_list_types("Offer") == {"Offer", "Phone"}
        assert affected_list_types("Client") == {"Client"}


class TestShouldRecomputeEarly:
    """Test cases for the early expiration decision."""

    def test_infinite_beta_always_recomputes(self):
        assert should_recompute_early(expiry=2000, delta=1, beta=math.inf, now=0, rand=lambda: 0.5)

    def test_zero_beta_only_at_expiry(self):
        assert not should_recompute_early(expiry=2000, delta=10, beta=0, now=1999, rand=lambda: 0.0001)
        assert should_recompute_early(expiry=2000, delta=10, beta=0, now=2000, rand=lambda: 0.5)

    def test_probability_grows_near_expiry(self):
        # -ln(0.5) * 10 ~= 6.93 seconds of anticipation
        assert not should_recompute_early(expiry=2000, delta=10, beta=1.0, now=1990, rand=lambda: 0.5)
        assert should_recompute_early(expiry=2000, delta=10, beta=1.0, now=1995, rand=lambda: 0.5)


class TestInMemoryTagAwareCache:
    """Test cases for InMemoryTagAwareCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        """Create cache with no early recomputation."""
        return InMemoryTagAwareCache(default_lifetime=60, beta=0, clock=clock)

    @pytest.mark.asyncio
    async def test_get_computes_once(self, cache):
        """Test value is computed on miss and served on hit."""
        compute = CountingCompute({"answer": 42})

        assert await cache.get("key", compute) == {"answer": 42}
        assert await cache.get("key", compute) == {"answer": 42}
        assert compute.calls == 1
        assert await cache.has_item("key")

    @pytest.mark.asyncio
    async def test_item_expires(self, cache, clock):
        """Test expired items are recomputed."""
        compute = CountingCompute("value", lifetime=10)
        await cache.get("key", compute)

        clock.now += 11
        assert not await cache.has_item("key")
        await cache.get("key", compute)
        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_zero_lifetime_is_not_stored(self, cache):
        compute = CountingCompute("value", lifetime=0)
        await cache.get("key", compute)
        assert not await cache.has_item("key")

    @pytest.mark.asyncio
    async def test_infinite_beta_forces_recompute(self, cache):
        """Test beta=inf recomputes even a fresh item."""
        compute = CountingCompute("value")
        await cache.get("key", compute)
        await cache.get("key", compute, beta=math.inf)
        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_negative_beta_rejected(self, cache):
        with pytest.raises(CacheInvalidArgumentError):
            await cache.get("key", CountingCompute("value"), beta=-1)

    @pytest.mark.asyncio
    async def test_reserved_characters_rejected(self, cache):
        with pytest.raises(CacheInvalidArgumentError):
            await cache.get("Phone:abc", CountingCompute("value"))
        with pytest.raises(CacheInvalidArgumentError):
            await cache.get("key", CountingCompute("value", tags=("bad/tag",)))

    @pytest.mark.asyncio
    async def test_unserializable_value_rejected(self, cache):
        with pytest.raises(CacheInvalidArgumentError):
            await cache.get("key", CountingCompute(object()))

    @pytest.mark.asyncio
    async def test_invalidate_tags(self, cache):
        """Test tag invalidation only drops tagged items."""
        await cache.get("tagged", CountingCompute(1, tags=("phone_list_tag",)))
        await cache.get("other", CountingCompute(2, tags=("client_list_tag",)))

        assert await cache.invalidate_tags(["phone_list_tag"])

        assert not await cache.has_item("tagged")
        assert await cache.has_item("other")

    @pytest.mark.asyncio
    async def test_delete(self, cache):
        await cache.get("key", CountingCompute(1))
        assert await cache.delete("key")
        assert not await cache.delete("key")

    @pytest.mark.asyncio
    async def test_tag_memberships_pruned(self, cache, clock):
        """Test tags forget keys that were deleted, invalidated or expired."""
        await cache.get("deleted", CountingCompute(1, tags=("phone_list_tag",)))
        await cache.get("invalidated", CountingCompute(2, tags=("phone_list_tag", "client_list_tag")))
        await cache.get("expiring", CountingCompute(3, lifetime=10, tags=("partner_list_tag",)))

        await cache.delete("deleted")
        assert cache._tag_keys["phone_list_tag"] == {"invalidated"}

        await cache.invalidate_tags(["phone_list_tag"])
        assert cache._tag_keys == {"partner_list_tag": {"expiring"}}

        clock.now += 11
        await cache.get("other", CountingCompute(4))
        assert cache._tag_keys == {}
        assert set(cache._items) == {"other"}

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, clock):
        """Test lookups are counted by result."""
        metrics = MagicMock()
        cache = InMemoryTagAwareCache(default_lifetime=60, beta=0, clock=clock, metrics=metrics)
        compute = CountingCompute(1)

        await cache.get("key", compute)
        await cache.get("key", compute)

        results = [call.args[0] for call in metrics.record_tagged_cache_request.call_args_list]
        assert results == ["miss", "hit"]


class TestRedisTagAwareCache:
    """Test cases for RedisTagAwareCache error mapping."""

    @pytest.fixture
    def cache(self):
        cache = RedisTagAwareCache("redis://localhost:6379/0", default_lifetime=60)
        cache.redis = MagicMock()
        return cache

    @pytest.mark.asyncio
    async def test_read_error_wrapped(self, cache):
        cache.redis.get = AsyncMock(side_effect=redis.ConnectionError("down"))

        with pytest.raises(CacheBackendError):
            await cache.get("key", CountingCompute(1))

    @pytest.mark.asyncio
    async def test_hit_served_from_redis(self, cache):
        cache.redis.get = AsyncMock(
            return_value='{"value": "[1, 2]", "expiry": 9999999999, "delta": 0.01, "tags": []}'
        )
        compute = CountingCompute("unused")

        assert await cache.get("key", compute, beta=0) == [1, 2]
        assert compute.calls == 0
        cache.redis.get.assert_called_once_with("marketplace:item:key")

    @pytest.mark.asyncio
    async def test_delete_leaves_its_tags(self, cache):
        """Test deleting an item removes it from its tag sets."""
        cache.redis.get = AsyncMock(
            return_value='{"value": "1", "expiry": 9999999999, "delta": 0.01, "tags": ["phone_list_tag"]}'
        )
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[1, 1])
        transaction = MagicMock()
        transaction.__aenter__ = AsyncMock(return_value=pipe)
        transaction.__aexit__ = AsyncMock(return_value=False)
        cache.redis.pipeline = MagicMock(return_value=transaction)

        assert await cache.delete("key")

        pipe.delete.assert_called_once_with("marketplace:item:key")
        pipe.zrem.assert_called_once_with("marketplace:tag:phone_list_tag", "key")


def test_validate_key_returns_key():
    assert validate_key("Phone_list_catalog_1_10") == "Phone_list_catalog_1_10"
    with pytest.raises(CacheInvalidArgumentError):
        validate_key("")
