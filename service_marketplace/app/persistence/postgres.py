"""
PostgreSQL persistence layer for the marketplace.
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, List, Optional, Tuple

import asyncpg
from shared.logging import get_logger
from shared.errors import MarketplaceException
from .base import SCHEMA, Criteria, DuplicateEntryError, Row


# Connection bound to the transaction running in the current task
_connection: ContextVar[Optional[asyncpg.Connection]] = ContextVar("postgres_connection", default=None)


class PostgreSQLPersistence:
    """PostgreSQL persistence layer for marketplace entities."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("marketplace.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            # Create tables if they don't exist
            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise MarketplaceException("POSTGRES_START_FAILED", str(e), status_code=500)

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS partners (
                    uuid VARCHAR(36) PRIMARY KEY,
                    type VARCHAR(45) NOT NULL,
                    username VARCHAR(45) NOT NULL,
                    email VARCHAR(320) NOT NULL UNIQUE,
                    password VARCHAR(255) NOT NULL,
                    roles TEXT[] NOT NULL,
                    creation_date TIMESTAMP WITH TIME ZONE NOT NULL,
                    update_date TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS phones (
                    uuid VARCHAR(36) PRIMARY KEY,
                    type VARCHAR(45) NOT NULL,
                    brand VARCHAR(45) NOT NULL,
                    model VARCHAR(45) NOT NULL,
                    color VARCHAR(45) NOT NULL,
                    description TEXT NOT NULL,
                    price NUMERIC(6, 2) NOT NULL,
                    creation_date TIMESTAMP WITH TIME ZONE NOT NULL,
                    update_date TIMESTAMP WITH TIME ZONE NOT NULL,
                    UNIQUE (brand, model)
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS clients (
                    uuid VARCHAR(36) PRIMARY KEY,
                    type VARCHAR(45) NOT NULL,
                    name VARCHAR(45) NOT NULL,
                    email VARCHAR(320) NOT NULL UNIQUE,
                    partner_uuid VARCHAR(36) NOT NULL REFERENCES partners(uuid) ON DELETE CASCADE,
                    creation_date TIMESTAMP WITH TIME ZONE NOT NULL,
                    update_date TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS offers (
                    uuid VARCHAR(36) PRIMARY KEY,
                    partner_uuid VARCHAR(36) NOT NULL REFERENCES partners(uuid) ON DELETE CASCADE,
                    phone_uuid VARCHAR(36) NOT NULL REFERENCES phones(uuid) ON DELETE CASCADE,
                    creation_date TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS http_caches (
                    uuid VARCHAR(36) PRIMARY KEY,
                    partner_uuid VARCHAR(36) NOT NULL REFERENCES partners(uuid) ON DELETE CASCADE,
                    route_name VARCHAR(255) NOT NULL,
                    request_uri TEXT NOT NULL,
                    type VARCHAR(20) NOT NULL,
                    class_short_name VARCHAR(45) NOT NULL,
                    resource_uuid VARCHAR(36),
                    ttl_expiration INTEGER NOT NULL,
                    etag_token VARCHAR(32) NOT NULL,
                    creation_date TIMESTAMP WITH TIME ZONE NOT NULL,
                    update_date TIMESTAMP WITH TIME ZONE NOT NULL,
                    UNIQUE (partner_uuid, request_uri)
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS refresh_tokens (
                    uuid VARCHAR(36) PRIMARY KEY,
                    refresh_token VARCHAR(128) NOT NULL UNIQUE,
                    username VARCHAR(320) NOT NULL,
                    valid_until TIMESTAMP WITH TIME ZONE NOT NULL,
                    creation_date TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)

            # Create indexes
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_clients_partner ON clients(partner_uuid);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_offers_partner ON offers(partner_uuid);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_offers_phone ON offers(phone_uuid);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_http_caches_class ON http_caches(class_short_name);
            """)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed statements in one transaction (savepoint when nested)."""
        conn = _connection.get()
        if conn is not None:
            async with conn.transaction():
                yield
            return

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                token = _connection.set(conn)
                try:
                    yield
                finally:
                    _connection.reset(token)

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[asyncpg.Connection]:
        conn = _connection.get()
        if conn is not None:
            yield conn
            return
        async with self.pool.acquire() as conn:
            yield conn

    def _where(self, kind: str, criteria: Optional[Criteria], start: int = 1) -> Tuple[str, List[Any]]:
        columns = SCHEMA[kind].columns
        clauses = []
        args: List[Any] = []
        for column, value in (criteria or {}).items():
            if column not in columns:
                raise ValueError(f"Unknown {kind} column {column}")
            args.append(list(value) if isinstance(value, (list, tuple, set)) else value)
            operator = "= ANY(${})" if isinstance(value, (list, tuple, set)) else "= ${}"
            clauses.append(f"{column} {operator.format(start + len(args) - 1)}")
        return (" WHERE " + " AND ".join(clauses)) if clauses else "", args

    def _order_by(self, kind: str) -> str:
        return ", ".join(
            f"{column} {'DESC' if descending else 'ASC'}" for column, descending in SCHEMA[kind].order_by
        )

    async def get(self, kind: str, uuid: str) -> Optional[Row]:
        return await self.find_one(kind, {"uuid": uuid})

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
        schema = SCHEMA[kind]
        where, args = self._where(kind, criteria)
        query = f"SELECT {', '.join(schema.columns)} FROM {schema.table}{where} ORDER BY {self._order_by(kind)}"
        if limit is not None:
            args.append(limit)
            query += f" LIMIT ${len(args)}"
        if offset:
            args.append(offset)
            query += f" OFFSET ${len(args)}"

        async with self._acquire() as conn:
            records = await conn.fetch(query, *args)
        return [dict(record) for record in records]

    async def count(self, kind: str, criteria: Optional[Criteria] = None) -> int:
        where, args = self._where(kind, criteria)
        async with self._acquire() as conn:
            return await conn.fetchval(f"SELECT COUNT(*) FROM {SCHEMA[kind].table}{where}", *args)

    async def insert(self, kind: str, row: Row) -> None:
        schema = SCHEMA[kind]
        placeholders = ", ".join(f"${index}" for index in range(1, len(schema.columns) + 1))
        query = f"INSERT INTO {schema.table} ({', '.join(schema.columns)}) VALUES ({placeholders})"
        try:
            async with self._acquire() as conn:
                await conn.execute(query, *[row.get(column) for column in schema.columns])
        except asyncpg.UniqueViolationError as e:
            raise DuplicateEntryError(kind, (e.constraint_name or "unique",))

    async def update(self, kind: str, row: Row) -> None:
        schema = SCHEMA[kind]
        columns = [column for column in schema.columns if column != "uuid"]
        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=2))
        query = f"UPDATE {schema.table} SET {assignments} WHERE uuid = $1"
        try:
            async with self._acquire() as conn:
                await conn.execute(query, row["uuid"], *[row.get(column) for column in columns])
        except asyncpg.UniqueViolationError as e:
            raise DuplicateEntryError(kind, (e.constraint_name or "unique",))

    async def delete(self, kind: str, uuid: str) -> bool:
        async with self._acquire() as conn:
            result = await conn.execute(f"DELETE FROM {SCHEMA[kind].table} WHERE uuid = $1", uuid)
        return result.endswith(" 1")

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            self.logger.error("Database health check failed", error=str(e))
            return False
