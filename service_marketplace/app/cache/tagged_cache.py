"""
Tag-aware key/value cache with stampede prevention.

Values are computed on a miss by a callback which may set the item lifetime
and attach invalidation tags. Hits can be recomputed early with a probability
rising as the item nears expiry (probabilistic early expiration, "XFetch"),
so concurrent readers rarely all miss at the same time.
"""

import json
import math
import random
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Set

import redis.asyncio as redis
from shared.errors import CacheBackendError, CacheInvalidArgumentError, MarketplaceException
from shared.logging import get_logger
from shared.metrics import MetricsCollector


RESERVED_CHARACTERS = "{}()/\\@:"


def validate_key(key: str) -> str:
    """Reject keys (and tags) the backends cannot store safely."""
    if not isinstance(key, str) or not key:
        raise CacheInvalidArgumentError("Cache key must be a non-empty string", key=str(key))
    if any(character in RESERVED_CHARACTERS for character in key):
        raise CacheInvalidArgumentError(
            f'Cache key "{key}" contains reserved characters "{RESERVED_CHARACTERS}"', key=key
        )
    return key


class CacheItem:
    """Item handed to compute callbacks to configure what gets stored."""

    def __init__(self, key: str, default_lifetime: int):
        self.key = key
        self.lifetime = default_lifetime
        self.tags: Set[str] = set()

    def expires_after(self, seconds: int) -> "CacheItem":
        self.lifetime = int(seconds)
        return self

    def tag(self, *tags: str) -> "CacheItem":
        for tag in tags:
            self.tags.add(validate_key(tag))
        return self


Compute = Callable[[CacheItem], Awaitable[Any]]


def should_recompute_early(
    expiry: float,
    delta: float,
    beta: float,
    now: float,
    rand: Callable[[], float] = random.random
) -> bool:
    """XFetch decision: recompute when ``now - delta * beta * ln(rand) >= expiry``."""
    if beta == math.inf:
        return True
    if beta <= 0 or delta <= 0:
        return now >= expiry
    sample = max(rand(), 1e-12)
    return now - delta * beta * math.log(sample) >= expiry


class TagAwareCache(Protocol):
    """Contract of the tagged cache backends."""

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...

    async def get(self, key: str, compute: Compute, beta: Optional[float] = None) -> Any:
        ...

    async def has_item(self, key: str) -> bool:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def invalidate_tags(self, tags: Iterable[str]) -> bool:
        ...


class _BaseTagAwareCache:
    """Shared get-or-compute logic; subclasses provide the storage."""

    def __init__(
        self,
        default_lifetime: int = 3600,
        beta: float = 1.0,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
        rand: Callable[[], float] = random.random
    ):
        self.default_lifetime = default_lifetime
        self.beta = beta
        self.metrics = metrics
        self.clock = clock
        self.rand = rand

    async def get(self, key: str, compute: Compute, beta: Optional[float] = None) -> Any:
        """Return the cached value of ``key``, computing and storing it when needed."""
        validate_key(key)
        beta = self.beta if beta is None else beta
        if beta < 0:
            raise CacheInvalidArgumentError(f"Argument beta must be >= 0, {beta} given", key=key)

        record = await self._load(key)
        if record is not None:
            if not should_recompute_early(record["expiry"], record["delta"], beta, self.clock(), self.rand):
                self._record("hit")
                return json.loads(record["value"])
            self._record("early")
        else:
            self._record("miss")

        item = CacheItem(key, self.default_lifetime)
        started = self.clock()
        value = await compute(item)
        delta = self.clock() - started

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheInvalidArgumentError(f"Value of {key} is not serializable: {e}", key=key)

        if item.lifetime > 0:
            record = {
                "value": payload,
                "expiry": self.clock() + item.lifetime,
                "delta": delta,
                "tags": sorted(item.tags),
            }
            await self._save(key, record, item.lifetime)
        return value

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_tagged_cache_request(result)

    async def _load(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def _save(self, key: str, record: Dict[str, Any], lifetime: int) -> None:
        raise NotImplementedError


class InMemoryTagAwareCache(_BaseTagAwareCache):
    """Process-local tagged cache suitable for development and tests."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.logger = get_logger("marketplace.cache.memory")
        self._items: Dict[str, Dict[str, Any]] = {}
        self._tag_keys: Dict[str, Set[str]] = {}

    async def start(self):
        self.logger.info("In-memory tagged cache started")

    async def stop(self):
        self._items.clear()
        self._tag_keys.clear()

    async def _load(self, key: str) -> Optional[Dict[str, Any]]:
        record = self._items.get(key)
        if record is None:
            return None
        if record["expiry"] <= self.clock():
            self._forget(key)
            return None
        return record

    async def _save(self, key: str, record: Dict[str, Any], lifetime: int) -> None:
        now = self.clock()
        for expired in [name for name, stored in self._items.items() if stored["expiry"] <= now]:
            self._forget(expired)
        self._forget(key)
        self._items[key] = record
        for tag in record["tags"]:
            self._tag_keys.setdefault(tag, set()).add(key)

    def _forget(self, key: str) -> bool:
        """Drop an item and its tag memberships; empty tags disappear."""
        record = self._items.pop(key, None)
        if record is None:
            return False
        for tag in record["tags"]:
            keys = self._tag_keys.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_keys[tag]
        return True

    async def has_item(self, key: str) -> bool:
        validate_key(key)
        return await self._load(key) is not None

    async def delete(self, key: str) -> bool:
        validate_key(key)
        return self._forget(key)

    async def invalidate_tags(self, tags: Iterable[str]) -> bool:
        for tag in tags:
            validate_key(tag)
            for key in list(self._tag_keys.get(tag, ())):
                self._forget(key)
        return True

    async def health_check(self) -> bool:
        return True


class RedisTagAwareCache(_BaseTagAwareCache):
    """Redis backed tagged cache: one string per item, one sorted set per tag."""

    ITEM_PREFIX = "marketplace:item:"
    TAG_PREFIX = "marketplace:tag:"

    def __init__(self, redis_url: str, **kwargs):
        super().__init__(**kwargs)
        self.redis_url = redis_url
        self.logger = get_logger("marketplace.cache.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis tagged cache started")

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise MarketplaceException("REDIS_START_FAILED", str(e), status_code=500)

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis tagged cache stopped")

    async def _load(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            payload = await self.redis.get(self.ITEM_PREFIX + key)
        except redis.RedisError as e:
            raise CacheBackendError(f"Unable to read cache item {key}: {e}", key=key)
        return json.loads(payload) if payload else None

    async def _save(self, key: str, record: Dict[str, Any], lifetime: int) -> None:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self.ITEM_PREFIX + key, json.dumps(record), ex=lifetime)
                for tag in record["tags"]:
                    # Members are scored by expiry so lapsed items can be pruned
                    pipe.zadd(self.TAG_PREFIX + tag, {key: record["expiry"]})
                    pipe.zremrangebyscore(self.TAG_PREFIX + tag, "-inf", self.clock())
                await pipe.execute()
        except redis.RedisError as e:
            raise CacheBackendError(f"Unable to save cache item {key}: {e}", key=key)

    async def has_item(self, key: str) -> bool:
        validate_key(key)
        try:
            return bool(await self.redis.exists(self.ITEM_PREFIX + key))
        except redis.RedisError as e:
            raise CacheBackendError(f"Unable to check cache item {key}: {e}", key=key)

    async def delete(self, key: str) -> bool:
        validate_key(key)
        record = await self._load(key)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self.ITEM_PREFIX + key)
                for tag in (record or {}).get("tags", ()):
                    pipe.zrem(self.TAG_PREFIX + tag, key)
                deleted, *_ = await pipe.execute()
        except redis.RedisError as e:
            raise CacheBackendError(f"Unable to delete cache item {key}: {e}", key=key)
        return bool(deleted)

    async def invalidate_tags(self, tags: Iterable[str]) -> bool:
        tags = [validate_key(tag) for tag in tags]
        try:
            for tag in tags:
                keys: List[str] = list(await self.redis.zrange(self.TAG_PREFIX + tag, 0, -1))
                async with self.redis.pipeline(transaction=True) as pipe:
                    if keys:
                        pipe.delete(*[self.ITEM_PREFIX + key for key in keys])
                    pipe.delete(self.TAG_PREFIX + tag)
                    await pipe.execute()
        except redis.RedisError as e:
            raise CacheBackendError(f"Unable to invalidate tags {', '.join(tags)}: {e}")
        return True

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False
