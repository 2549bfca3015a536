"""
entities/store.py -- Async SQLAlchemy Core persistence layer for metaverse entities.

Pattern: Repository + Data Mapper. MetaverseStore is a small document-store
adapter: every entity type lives in a named collection (a table), callers
address records with criteria dicts, and _row_to_entity maps rows back onto
the dataclasses in entities/models.py. Entity modules (accounts.py,
domains.py, auth/tokens.py) never touch SQL directly.

Criteria:
  {"username": "alice"}                    -- equality
  {"username": "alice"}, nocase=True       -- case-insensitive string equality
  {"expiration_time": Before(now)}         -- strictly earlier than
  {"time_of_last_heartbeat": After(t)}     -- strictly later than

Column names in criteria and updates are checked against the table before any
SQL is built; unknown names raise ValueError rather than being ignored.

Engine: async SQLAlchemy over aiosqlite. SQLite gets NullPool (a fresh
connection per operation), so the store is safe to use from whichever event
loop happens to be running.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Integer, MetaData, String, Table, Text, event, func, select, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from core.config import get_settings
from entities.models import Account, AuthToken, Domain

logger = logging.getLogger("metaverse.entities")

ACCOUNTS = "accounts"
DOMAINS = "domains"
TOKENS = "tokens"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    ACCOUNTS,
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False),
    Column("password_hash", Text),
    Column("password_salt", Text),
    Column("session_public_key", Text),
    Column("account_settings", Text),
    Column("images_hero", Text),
    Column("images_thumbnail", Text),
    Column("images_tiny", Text),
    Column("locker", Text),
    Column("availability", String(20), nullable=False, server_default="all"),
    Column("location_path", Text),
    Column("friends", JSON, nullable=False),
    Column("connections", JSON, nullable=False),
    Column("roles", JSON, nullable=False),
    Column("ip_addr_of_creator", String(45)),
    Column("when_created", DateTime),
    Column("time_of_last_heartbeat", DateTime),
)

_domains = Table(
    DOMAINS,
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("api_key", String(64), nullable=False, unique=True),
    Column("name", String(255)),
    Column("sponsor_account_id", String(36)),
    Column("last_sender_key", String(64)),
    Column("version", String(50)),
    Column("protocol", String(100)),
    Column("network_addr", String(255)),
    Column("networking_mode", String(20)),
    Column("description", Text),
    Column("maturity", String(20), nullable=False, server_default="unrated"),
    Column("restriction", String(20), nullable=False, server_default="open"),
    Column("capacity", Integer, nullable=False, server_default="0"),
    Column("tags", JSON, nullable=False),
    Column("hosts", JSON, nullable=False),
    Column("num_users", Integer, nullable=False, server_default="0"),
    Column("anon_users", Integer, nullable=False, server_default="0"),
    Column("total_users", Integer, nullable=False, server_default="0"),
    Column("when_created", DateTime),
    Column("time_of_last_heartbeat", DateTime),
)

_tokens = Table(
    TOKENS,
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("refresh_token", String(64), nullable=False, unique=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("scope", JSON, nullable=False),
    Column("when_created", DateTime),
    Column("expiration_time", DateTime, nullable=False, index=True),
)

_COLLECTIONS: dict[str, tuple[Table, type]] = {
    ACCOUNTS: (_accounts, Account),
    DOMAINS: (_domains, Domain),
    TOKENS: (_tokens, AuthToken),
}


# ---------------------------------------------------------------------------
# Criteria helpers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Before:
    """Criteria value matching column values strictly earlier than ``when``."""

    when: datetime


@dataclass(frozen=True)
class After:
    """Criteria value matching column values strictly later than ``when``."""

    when: datetime


@dataclass(frozen=True)
class Pager:
    """1-based page window for get_objects()."""

    page: int = 1
    per_page: int = 20

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.per_page


def _collection(name: str) -> tuple[Table, type]:
    try:
        return _COLLECTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown collection: {name!r}") from None


def _check_columns(table: Table, names) -> None:
    unknown = set(names) - set(table.c.keys())
    if unknown:
        raise ValueError(f"Unknown fields for {table.name}: {sorted(unknown)!r}")


def _where(table: Table, criteria: dict[str, Any], nocase: bool) -> list:
    _check_columns(table, criteria)
    clauses = []
    for name, value in criteria.items():
        col = table.c[name]
        if isinstance(value, Before):
            clauses.append(col < value.when)
        elif isinstance(value, After):
            clauses.append(col > value.when)
        elif nocase and isinstance(value, str):
            clauses.append(func.lower(col) == value.lower())
        else:
            clauses.append(col == value)
    return clauses


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections. The cursor form works for the aiosqlite adapter connection.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MetaverseStore:
    """Async document-store adapter for accounts, domains and tokens.

    Usage:
        store = MetaverseStore("sqlite+aiosqlite:///metaverse.db")
        await store.init()
        await store.create_object(ACCOUNTS, account)
        acct = await store.get_object(ACCOUNTS, {"username": "Alice"}, nocase=True)
        await store.close()

    There is no in-process locking. Two concurrent updates to the same record
    resolve as last-write-wins.
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: AsyncEngine = create_async_engine(db_url, connect_args=connect_args, poolclass=NullPool)
        if db_url.startswith("sqlite") and ":memory:" not in db_url:
            event.listen(self.engine.sync_engine, "connect", _set_wal_mode)

    async def init(self) -> None:
        """Create tables if they do not exist. Idempotent."""
        async with self.engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("Database ping failed")
            return False

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    async def create_object(self, collection: str, entity) -> Any:
        """Insert an entity dataclass into its collection and return it.

        Raises sqlalchemy.exc.IntegrityError on a unique-key collision
        (duplicate username, API key or token string).
        """
        table, _ = _collection(collection)
        values = dataclasses.asdict(entity)
        _check_columns(table, values)
        async with self.engine.begin() as conn:
            await conn.execute(table.insert().values(**values))
        return entity

    async def get_object(self, collection: str, criteria: dict[str, Any], nocase: bool = False) -> Any | None:
        """Return the first entity matching criteria, or None."""
        table, _ = _collection(collection)
        stmt = select(table).where(*_where(table, criteria, nocase)).limit(1)
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).fetchone()
        return _row_to_entity(collection, row) if row is not None else None

    async def get_objects(
        self,
        collection: str,
        criteria: dict[str, Any] | None = None,
        pager: Pager | None = None,
        nocase: bool = False,
    ) -> AsyncIterator[Any]:
        """Yield every entity matching criteria, optionally one page at a time.

        Rows are fetched before the first yield so the connection is returned
        even if the caller stops iterating early.
        """
        table, _ = _collection(collection)
        stmt = select(table).where(*_where(table, criteria or {}, nocase))
        if "when_created" in table.c:
            stmt = stmt.order_by(table.c.when_created, table.c.id)
        if pager is not None:
            stmt = stmt.offset(pager.offset).limit(pager.per_page)
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).fetchall()
        for row in rows:
            yield _row_to_entity(collection, row)

    async def update_object_fields(self, collection: str, criteria: dict[str, Any], fields: dict[str, Any]) -> int:
        """Write the given physical fields on matching records. Returns rows updated."""
        if not fields:
            return 0
        table, _ = _collection(collection)
        _check_columns(table, fields)
        stmt = table.update().where(*_where(table, criteria, False)).values(**fields)
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount

    async def delete_one(self, collection: str, criteria: dict[str, Any]) -> bool:
        """Delete the first record matching criteria. Returns True if one was deleted."""
        table, _ = _collection(collection)
        async with self.engine.begin() as conn:
            row = (await conn.execute(select(table.c.id).where(*_where(table, criteria, False)).limit(1))).fetchone()
            if row is None:
                return False
            result = await conn.execute(table.delete().where(table.c.id == row.id))
        return result.rowcount > 0

    async def delete_many(self, collection: str, criteria: dict[str, Any]) -> int:
        """Delete every record matching criteria. Returns the number deleted."""
        table, _ = _collection(collection)
        async with self.engine.begin() as conn:
            result = await conn.execute(table.delete().where(*_where(table, criteria, False)))
        return result.rowcount

    async def close(self) -> None:
        await self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_entity(collection: str, row):
    # SQLite hands DateTime columns back naive. Everything is written as UTC,
    # so re-attach the zone here and callers can compare against aware values.
    _, entity_type = _COLLECTIONS[collection]
    values = dict(row._mapping)
    for name, value in values.items():
        if isinstance(value, datetime) and value.tzinfo is None:
            values[name] = value.replace(tzinfo=timezone.utc)
        elif value is None and name in ("friends", "connections", "roles", "scope", "tags", "hosts"):
            values[name] = []
    return entity_type(**values)
