"""
In-memory persistence backend for local development and tests.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Dict, List, Optional

from shared.logging import get_logger
from .base import SCHEMA, Criteria, DuplicateEntryError, Row, TableSchema


_transaction_depth: ContextVar[int] = ContextVar("memory_transaction_depth", default=0)


def _matches(row: Row, criteria: Criteria) -> bool:
    for column, expected in criteria.items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _sort_key(schema: TableSchema):
    def key(row: Row):
        parts = []
        for column, descending in schema.order_by:
            value = row.get(column)
            if descending and hasattr(value, "timestamp"):
                value = -value.timestamp()
            parts.append(value)
        return tuple(parts)
    return key


class InMemoryPersistence:
    """Dictionary backed storage honouring unique constraints and rollbacks."""

    def __init__(self):
        self.logger = get_logger("marketplace.persistence.memory")
        self._tables: Dict[str, Dict[str, Row]] = {kind: {} for kind in SCHEMA}
        self._lock = asyncio.Lock()

    async def start(self):
        self.logger.info("In-memory persistence started")

    async def stop(self):
        self.logger.info("In-memory persistence stopped")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run writes atomically: any exception restores the previous state."""
        depth = _transaction_depth.get()
        if depth:
            token = _transaction_depth.set(depth + 1)
            try:
                yield
            finally:
                _transaction_depth.reset(token)
            return

        async with self._lock:
            snapshot = copy.deepcopy(self._tables)
            token = _transaction_depth.set(1)
            try:
                yield
            except BaseException:
                self._tables = snapshot
                self.logger.debug("In-memory transaction rolled back")
                raise
            finally:
                _transaction_depth.reset(token)

    async def get(self, kind: str, uuid: str) -> Optional[Row]:
        row = self._tables[kind].get(uuid)
        return copy.deepcopy(row) if row is not None else None

    async def find_one(self, kind: str, criteria: Criteria) -> Optional[Row]:
        rows = await self.find(kind, criteria, limit=1)
        return rows[0] if rows else None

    async def find(
        self,
        kind: str,
        criteria: Optional[Criteria] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[Row]:
        rows = [row for row in self._tables[kind].values() if _matches(row, criteria or {})]
        rows.sort(key=_sort_key(SCHEMA[kind]))
        end = None if limit is None else offset + limit
        return copy.deepcopy(rows[offset:end])

    async def count(self, kind: str, criteria: Optional[Criteria] = None) -> int:
        return sum(1 for row in self._tables[kind].values() if _matches(row, criteria or {}))

    async def insert(self, kind: str, row: Row) -> None:
        table = self._tables[kind]
        if row["uuid"] in table:
            raise DuplicateEntryError(kind, ("uuid",))
        self._check_unique(kind, row)
        table[row["uuid"]] = copy.deepcopy(row)

    async def update(self, kind: str, row: Row) -> None:
        table = self._tables[kind]
        if row["uuid"] not in table:
            raise KeyError(f"Unknown {kind} {row['uuid']}")
        self._check_unique(kind, row)
        table[row["uuid"]] = copy.deepcopy(row)

    async def delete(self, kind: str, uuid: str) -> bool:
        return self._tables[kind].pop(uuid, None) is not None

    async def health_check(self) -> bool:
        return True

    def _check_unique(self, kind: str, row: Row) -> None:
        for columns in SCHEMA[kind].unique:
            values = tuple(row.get(column) for column in columns)
            for existing in self._tables[kind].values():
                if existing["uuid"] == row["uuid"]:
                    continue
                if tuple(existing.get(column) for column in columns) == values:
                    raise DuplicateEntryError(kind, columns)
