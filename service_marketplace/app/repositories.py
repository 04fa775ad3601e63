"""
Entity repositories.

Repositories are the only writers of entities: every write runs in a storage
transaction and dispatches a lifecycle event before the transaction ends, so
a failing subscriber aborts the write. Collection windows are read through
the tagged cache.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, Iterator, List, Optional, Type, TypeVar

from shared.logging import get_logger
from .cache.keys import list_key, list_tags
from .cache.tagged_cache import CacheItem, TagAwareCache
from .domain.events import EntityAction, EntityEvent, EventDispatcher
from .domain.models import (
    DEFAULT_CACHE_TTL, Client, Entity, HTTPCacheEntry, Offer, Partner, Phone, RefreshToken, utcnow
)
from .persistence.base import Persistence


E = TypeVar("E", bound=Entity)


@dataclass(frozen=True)
class Pagination:
    """Requested collection window."""
    page: int
    per_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


@dataclass
class ResultWindow(Generic[E]):
    """One window of an ordered collection and the size of the whole collection."""
    items: List[E] = field(default_factory=list)
    total: int = 0
    pagination: Optional[Pagination] = None

    def __iter__(self) -> Iterator[E]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


class EntityRepository(Generic[E]):
    """Storage access for one entity type."""

    entity_class: Type[E]
    kind: str
    dispatch_events = True

    def __init__(
        self,
        persistence: Persistence,
        dispatcher: EventDispatcher,
        cache: TagAwareCache,
        cache_ttl: int = DEFAULT_CACHE_TTL
    ):
        self.persistence = persistence
        self.dispatcher = dispatcher
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.logger = get_logger(f"marketplace.repository.{self.kind}")

    @property
    def entity_name(self) -> str:
        return self.entity_class.ENTITY_NAME

    async def find_one_by_uuid(self, uuid: str) -> Optional[E]:
        row = await self.persistence.get(self.kind, uuid)
        return self.entity_class.from_row(row) if row else None

    async def find_one_by(self, criteria: Dict[str, Any]) -> Optional[E]:
        row = await self.persistence.find_one(self.kind, criteria)
        return self.entity_class.from_row(row) if row else None

    async def find_by(
        self,
        criteria: Optional[Dict[str, Any]] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[E]:
        rows = await self.persistence.find(self.kind, criteria, offset=offset, limit=limit)
        return [self.entity_class.from_row(row) for row in rows]

    async def count_by(self, criteria: Optional[Dict[str, Any]] = None) -> int:
        return await self.persistence.count(self.kind, criteria)

    async def add(self, entity: E) -> E:
        async with self.persistence.transaction():
            await self.persistence.insert(self.kind, entity.to_row())
            await self._dispatch(EntityAction.PERSIST, entity)
        return entity

    async def save(self, entity: E) -> E:
        async with self.persistence.transaction():
            await self.persistence.update(self.kind, entity.to_row())
            await self._dispatch(EntityAction.UPDATE, entity)
        return entity

    async def remove(self, entity: E) -> bool:
        async with self.persistence.transaction():
            removed = await self.persistence.delete(self.kind, entity.uuid)
            if removed:
                await self._dispatch(EntityAction.REMOVE, entity)
        return removed

    async def _dispatch(self, action: EntityAction, entity: E) -> None:
        if self.dispatch_events:
            await self.dispatcher.dispatch(EntityEvent(action, self.entity_name, entity.uuid))

    async def _find_window(
        self,
        scope: str,
        criteria: Any,
        pagination: Optional[Pagination]
    ) -> ResultWindow[E]:
        """Read one collection window through the tagged cache.

        ``criteria`` may be a coroutine function, only awaited on a cache miss.
        """
        if pagination:
            key = list_key(self.entity_name, scope, pagination.page, pagination.per_page)
        else:
            key = list_key(self.entity_name, scope)

        async def compute(item: CacheItem) -> Dict[str, Any]:
            item.expires_after(self.cache_ttl)
            item.tag(*list_tags(self.entity_name))
            resolved = await criteria() if callable(criteria) else criteria
            total = await self.count_by(resolved)
            entities = await self.find_by(
                resolved,
                offset=pagination.offset if pagination else 0,
                limit=pagination.per_page if pagination else None
            )
            return {"total": total, "items": [entity.to_cache() for entity in entities]}

        data = await self.cache.get(key, compute)
        return ResultWindow(
            items=[self.entity_class.from_cache(item) for item in data["items"]],
            total=data["total"],
            pagination=pagination
        )


class PartnerRepository(EntityRepository[Partner]):
    entity_class = Partner
    kind = "partner"

    async def find_one_by_email(self, email: str) -> Optional[Partner]:
        return await self.find_one_by({"email": email.lower()})

    async def find_list(self, pagination: Optional[Pagination] = None) -> ResultWindow[Partner]:
        return await self._find_window("all", None, pagination)


class PhoneRepository(EntityRepository[Phone]):
    entity_class = Phone
    kind = "phone"

    async def find_list(self, pagination: Optional[Pagination] = None) -> ResultWindow[Phone]:
        return await self._find_window("catalog", None, pagination)

    async def find_list_by_partner(
        self,
        partner_uuid: str,
        pagination: Optional[Pagination] = None
    ) -> ResultWindow[Phone]:
        """Phones offered by a partner."""
        async def offered_phones() -> Dict[str, Any]:
            offers = await self.persistence.find("offer", {"partner_uuid": partner_uuid})
            return {"uuid": sorted({offer["phone_uuid"] for offer in offers})}

        return await self._find_window(f"partner_{partner_uuid}", offered_phones, pagination)


class ClientRepository(EntityRepository[Client]):
    entity_class = Client
    kind = "client"

    async def find_one_by_email(self, email: str) -> Optional[Client]:
        return await self.find_one_by({"email": email.lower()})

    async def find_list(self, pagination: Optional[Pagination] = None) -> ResultWindow[Client]:
        return await self._find_window("all", None, pagination)

    async def find_list_by_partner(
        self,
        partner_uuid: str,
        pagination: Optional[Pagination] = None
    ) -> ResultWindow[Client]:
        return await self._find_window(f"partner_{partner_uuid}", {"partner_uuid": partner_uuid}, pagination)


class OfferRepository(EntityRepository[Offer]):
    entity_class = Offer
    kind = "offer"

    async def find_list(self, pagination: Optional[Pagination] = None) -> ResultWindow[Offer]:
        return await self._find_window("all", None, pagination)

    async def find_list_by_partner(
        self,
        partner_uuid: str,
        pagination: Optional[Pagination] = None
    ) -> ResultWindow[Offer]:
        return await self._find_window(f"partner_{partner_uuid}", {"partner_uuid": partner_uuid}, pagination)

    async def find_list_by_phone(
        self,
        phone_uuid: str,
        pagination: Optional[Pagination] = None
    ) -> ResultWindow[Offer]:
        return await self._find_window(f"phone_{phone_uuid}", {"phone_uuid": phone_uuid}, pagination)


class HTTPCacheRepository(EntityRepository[HTTPCacheEntry]):
    """Cache metadata rows; their writes are not lifecycle tracked."""

    entity_class = HTTPCacheEntry
    kind = "http_cache"
    dispatch_events = False

    async def find_one_by_partner_and_request_uri(
        self,
        partner_uuid: str,
        request_uri: str
    ) -> Optional[HTTPCacheEntry]:
        return await self.find_one_by({"partner_uuid": partner_uuid, "request_uri": request_uri})

    async def find_by_class_short_names(self, class_short_names: List[str]) -> List[HTTPCacheEntry]:
        return await self.find_by({"class_short_name": list(class_short_names)})


class RefreshTokenRepository(EntityRepository[RefreshToken]):
    entity_class = RefreshToken
    kind = "refresh_token"
    dispatch_events = False

    async def find_one_by_token(self, refresh_token: str) -> Optional[RefreshToken]:
        return await self.find_one_by({"refresh_token": refresh_token})

    async def revoke_invalid(self, username: str, now: Optional[datetime] = None) -> int:
        """Delete the expired refresh tokens of a user; returns how many were removed."""
        now = now or utcnow()
        revoked = 0
        async with self.persistence.transaction():
            for token in await self.find_by({"username": username}):
                if not token.is_valid(now):
                    revoked += int(await self.persistence.delete(self.kind, token.uuid))
        return revoked
