"""
Per-request HTTP cache metadata resolution.
"""

from dataclasses import dataclass
from typing import Optional

from shared.logging import get_logger
from ..domain.models import DEFAULT_CACHE_TTL, HTTPCacheEntry, Partner, ResourceType
from ..persistence.base import DuplicateEntryError
from ..repositories import HTTPCacheRepository


@dataclass(frozen=True)
class CachedRoute:
    """Routing metadata of a cacheable route."""
    name: str
    resource_type: ResourceType
    class_short_name: str


class HTTPCacheResolver:
    """Find or create the cache entry of a (partner, request URI) pair."""

    def __init__(self, repository: HTTPCacheRepository, default_ttl: int = DEFAULT_CACHE_TTL):
        self.repository = repository
        self.default_ttl = default_ttl
        self.logger = get_logger("marketplace.cache.http_cache")

    async def resolve(
        self,
        partner: Partner,
        request_uri: str,
        route: CachedRoute,
        resource_uuid: Optional[str] = None
    ) -> HTTPCacheEntry:
        """Return the entry for this URI as seen by ``partner``, persisting a new one if needed."""
        entry = await self.repository.find_one_by_partner_and_request_uri(partner.uuid, request_uri)
        if entry is not None:
            return entry

        entry = HTTPCacheEntry(
            partner_uuid=partner.uuid,
            route_name=route.name,
            request_uri=request_uri,
            type=route.resource_type,
            class_short_name=route.class_short_name,
            resource_uuid=resource_uuid if route.resource_type is ResourceType.ENTITY else None,
            ttl_expiration=self.default_ttl
        )
        try:
            await self.repository.add(entry)
        except DuplicateEntryError:
            # A concurrent first request stored the entry meanwhile
            existing = await self.repository.find_one_by_partner_and_request_uri(partner.uuid, request_uri)
            if existing is None:
                raise
            return existing

        self.logger.debug(
            "HTTP cache entry created",
            route=route.name,
            request_uri=request_uri,
            entry_uuid=entry.uuid
        )
        return entry
