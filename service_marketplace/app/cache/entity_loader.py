"""
Resolution of route identifiers into entities through the tagged cache.
"""

from typing import Any, Dict, Optional

from shared.errors import BadRequestError
from shared.logging import get_logger
from ..domain.models import DEFAULT_CACHE_TTL, Entity, Partner
from ..repositories import EntityRepository, PartnerRepository
from .keys import entity_key, entity_tag
from .tagged_cache import CacheItem, TagAwareCache


class EntityCacheLoader:
    """Load single entities by uuid, cached under ``{Type}_{uuid}``."""

    def __init__(self, cache: TagAwareCache, ttl: int = DEFAULT_CACHE_TTL, beta: Optional[float] = None):
        self.cache = cache
        self.ttl = ttl
        self.beta = beta
        self.logger = get_logger("marketplace.cache.entity_loader")

    async def load(self, repository: EntityRepository, uuid: str) -> Entity:
        """Return the entity identified by ``uuid`` or fail with a client error."""
        entity_name = repository.entity_name
        key = entity_key(entity_name, uuid)

        async def compute(item: CacheItem) -> Optional[Dict[str, Any]]:
            item.expires_after(self.ttl)
            item.tag(entity_tag(entity_name))
            entity = await repository.find_one_by_uuid(uuid)
            return entity.to_cache() if entity is not None else None

        data = await self.cache.get(key, compute, beta=self.beta)
        if data is None:
            # Misses are not kept
            await self.cache.delete(key)
            self.logger.info("Entity not found", entity_type=entity_name, uuid=uuid)
            raise BadRequestError(f"No {entity_name.lower()} result found for uuid {uuid}")
        return repository.entity_class.from_cache(data)

    async def load_partner_by_email(self, repository: PartnerRepository, email: str) -> Partner:
        """Resolve an e-mail to its partner, then load it like any uuid."""
        partner = await repository.find_one_by_email(email)
        if partner is None:
            raise BadRequestError(f"No partner result found for email {email}")
        return await self.load(repository, partner.uuid)
