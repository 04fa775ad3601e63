"""
Storage contract shared by the persistence backends.
"""

from dataclasses import dataclass
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol, Sequence, Tuple


Row = Dict[str, Any]
Criteria = Dict[str, Any]


class DuplicateEntryError(Exception):
    """A write violated a unique constraint."""

    def __init__(self, kind: str, columns: Sequence[str]):
        self.kind = kind
        self.columns = tuple(columns)
        super().__init__(f"Duplicate {kind} entry for ({', '.join(columns)})")


@dataclass(frozen=True)
class TableSchema:
    """Name, columns and unique constraints of one stored entity kind."""
    table: str
    columns: Tuple[str, ...]
    unique: Tuple[Tuple[str, ...], ...] = ()
    order_by: Tuple[Tuple[str, bool], ...] = (("creation_date", True), ("uuid", False))


SCHEMA: Dict[str, TableSchema] = {
    "partner": TableSchema(
        table="partners",
        columns=("uuid", "type", "username", "email", "password", "roles", "creation_date", "update_date"),
        unique=(("email",),),
    ),
    "phone": TableSchema(
        table="phones",
        columns=(
            "uuid", "type", "brand", "model", "color", "description", "price",
            "creation_date", "update_date",
        ),
        unique=(("brand", "model"),),
    ),
    "client": TableSchema(
        table="clients",
        columns=("uuid", "type", "name", "email", "partner_uuid", "creation_date", "update_date"),
        unique=(("email",),),
    ),
    "offer": TableSchema(
        table="offers",
        columns=("uuid", "partner_uuid", "phone_uuid", "creation_date"),
    ),
    "http_cache": TableSchema(
        table="http_caches",
        columns=(
            "uuid", "partner_uuid", "route_name", "request_uri", "type", "class_short_name",
            "resource_uuid", "ttl_expiration", "etag_token", "creation_date", "update_date",
        ),
        unique=(("partner_uuid", "request_uri"),),
    ),
    "refresh_token": TableSchema(
        table="refresh_tokens",
        columns=("uuid", "refresh_token", "username", "valid_until", "creation_date"),
        unique=(("refresh_token",),),
    ),
}


class Persistence(Protocol):
    """Row storage used by the repositories.

    Criteria map column names to a value (equality) or a list of values
    (membership). Results are ordered by creation date, newest first.
    """

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...

    def transaction(self) -> AsyncContextManager[None]:
        ...

    async def get(self, kind: str, uuid: str) -> Optional[Row]:
        ...

    async def find_one(self, kind: str, criteria: Criteria) -> Optional[Row]:
        ...

    async def find(
        self,
        kind: str,
        criteria: Optional[Criteria] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[Row]:
        ...

    async def count(self, kind: str, criteria: Optional[Criteria] = None) -> int:
        ...

    async def insert(self, kind: str, row: Row) -> None:
        ...

    async def update(self, kind: str, row: Row) -> None:
        ...

    async def delete(self, kind: str, uuid: str) -> bool:
        ...

    async def health_check(self) -> bool:
        ...
