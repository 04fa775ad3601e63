"""
Cache invalidation driven by entity lifecycle events.
"""

from typing import Dict, Optional, Set

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..domain.events import EntityAction, EntityEvent
from ..domain.models import HTTPCacheEntry
from .keys import TRACKED_ENTITY_TYPES, affected_list_types, embedding_relations, entity_key, list_tag
from .tagged_cache import TagAwareCache


class CacheInvalidationSubscriber:
    """Keep the tagged cache, cache metadata and proxy store in line with writes.

    For a tracked entity type:

    - update/remove delete the ``{Type}_{uuid}`` item;
    - entity cache entries of the changed entity are touched, or deleted on
      removal;
    - collection cache entries whose content depends on the type are touched;
    - entity cache entries of resources embedding the changed entity (the
      partner and phone of an offer) are touched;
    - the ``{type}_list_tag`` tag is invalidated.

    Errors of the cache backend are not caught: they abort the write that
    dispatched the event.
    """

    def __init__(
        self,
        cache: TagAwareCache,
        http_cache_repository,
        response_store=None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.cache = cache
        self.http_cache_repository = http_cache_repository
        self.response_store = response_store
        self.metrics = metrics
        self.logger = get_logger("marketplace.cache.invalidation")

    async def __call__(self, event: EntityEvent) -> None:
        if event.entity_type not in TRACKED_ENTITY_TYPES:
            return

        if event.action in (EntityAction.UPDATE, EntityAction.REMOVE):
            await self.invalidate_unique_result(event.entity_type, event.entity_uuid)
        await self.invalidate_http_cache(event)
        await self.invalidate_list_results(event.entity_type)

    async def invalidate_unique_result(self, entity_type: str, entity_uuid: str) -> None:
        key = entity_key(entity_type, entity_uuid)
        if await self.cache.has_item(key):
            await self.cache.delete(key)
            self._record("entity")
            self.logger.debug("Entity cache item deleted", key=key)

    async def invalidate_list_results(self, entity_type: str) -> None:
        tag = list_tag(entity_type)
        await self.cache.invalidate_tags([tag])
        self._record("list")
        self.logger.debug("List cache tag invalidated", tag=tag)

    async def invalidate_http_cache(self, event: EntityEvent) -> None:
        """Rotate validators of the cached URIs the event makes outdated."""
        list_types = affected_list_types(event.entity_type)
        embedding = await self._embedding_resources(event)
        candidates = await self.http_cache_repository.find_by_class_short_names(
            sorted(list_types | set(embedding) | {event.entity_type})
        )

        for entry in candidates:
            if entry.is_collection:
                if entry.class_short_name in list_types:
                    await self._touch(entry)
            elif entry.class_short_name == event.entity_type and entry.resource_uuid == event.entity_uuid:
                if event.action is EntityAction.REMOVE:
                    await self.http_cache_repository.remove(entry)
                    await self._purge(entry)
                    self._record("http_cache_removed")
                else:
                    await self._touch(entry)
            elif entry.resource_uuid in embedding.get(entry.class_short_name, ()):
                await self._touch(entry)

    async def _embedding_resources(self, event: EntityEvent) -> Dict[str, Set[str]]:
        """Uuids of the single resources whose representation embeds the changed entity."""
        persistence = self.http_cache_repository.persistence
        resources: Dict[str, Set[str]] = {}
        for resource_type, column in embedding_relations(event.entity_type):
            rows = await persistence.find(resource_type.lower(), {column: event.entity_uuid})
            resources[resource_type] = {row["uuid"] for row in rows}
        return resources

    async def _touch(self, entry: HTTPCacheEntry) -> None:
        entry.touch()
        await self.http_cache_repository.save(entry)
        await self._purge(entry)
        self._record("http_cache_touched")

    async def _purge(self, entry: HTTPCacheEntry) -> None:
        if self.response_store is not None:
            await self.response_store.purge(entry.request_uri)

    def _record(self, kind: str) -> None:
        if self.metrics:
            self.metrics.record_invalidation(kind)
