"""SQLite-backed knowledge repository for sources and fragments.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Providers (concrete adapter implementing IKnowledgeRepository).
# Pattern: Adapter -- wraps SQLite behind the repository ABC so the
#          relational backend can be swapped without touching the services.
#
# Database: ``data/knowledge.db`` -- two tables, ``sources`` and
# ``fragments``.  ``fragments.source_id`` references ``sources.id`` and
# ``(source_id, position)`` is unique, so a source can never hold two
# fragments at the same position.
#
# Transactions: :meth:`transaction` opens one connection and binds it to the
# running task through a ``ContextVar``.  Every repository call made while
# the unit of work runs picks that connection up instead of opening its own
# and leaves committing to :meth:`transaction`.  Concurrent tasks each see
# their own binding, so unrelated pipelines never share a transaction.
#
# Uses ``aiosqlite`` for async I/O and ``PRAGMA journal_mode=WAL`` for
# concurrent read safety.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite
import structlog

from lorekeeper.interfaces.knowledge_repository import IKnowledgeRepository
from lorekeeper.models.knowledge import Fragment, Source, SourceKind, SourceStatus
from lorekeeper.utils.errors import RepositoryError

logger = structlog.get_logger(logger_name=__name__)

T = TypeVar("T")

_DEFAULT_DB_PATH = Path("data/knowledge.db")

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_SOURCES_TABLE = """\
CREATE TABLE IF NOT EXISTS sources (
    id            TEXT PRIMARY KEY,
    title         TEXT NOT NULL,
    tenant_id     TEXT NOT NULL,
    source_kind   TEXT NOT NULL,
    content       TEXT NOT NULL,
    metadata      TEXT NOT NULL DEFAULT '{}',
    status        TEXT NOT NULL DEFAULT 'PENDING',
    error_message TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    deleted_at    TEXT
);
"""

_CREATE_FRAGMENTS_TABLE = """\
CREATE TABLE IF NOT EXISTS fragments (
    id          TEXT PRIMARY KEY,
    source_id   TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    content     TEXT NOT NULL,
    position    INTEGER NOT NULL,
    token_count INTEGER NOT NULL,
    metadata    TEXT NOT NULL DEFAULT '{}',
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    UNIQUE(source_id, position)
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_sources_tenant ON sources(tenant_id);",
    "CREATE INDEX IF NOT EXISTS idx_sources_status ON sources(status);",
    "CREATE INDEX IF NOT EXISTS idx_fragments_source ON fragments(source_id, position);",
]

# ── DML ───────────────────────────────────────────────────────────────

_SOURCE_COLUMNS = (
    "id, title, tenant_id, source_kind, content, metadata, status, "
    "error_message, created_at, updated_at, deleted_at"
)

_UPSERT_SOURCE = f"""\
INSERT INTO sources ({_SOURCE_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    title = excluded.title,
    tenant_id = excluded.tenant_id,
    source_kind = excluded.source_kind,
    content = excluded.content,
    metadata = excluded.metadata,
    status = excluded.status,
    error_message = excluded.error_message,
    updated_at = excluded.updated_at,
    deleted_at = excluded.deleted_at;
"""

_SELECT_SOURCE = f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?;"

_SELECT_SOURCES_BY_TENANT = f"""\
SELECT {_SOURCE_COLUMNS} FROM sources
WHERE tenant_id = ? AND (? OR deleted_at IS NULL)
ORDER BY created_at DESC, id;
"""

_SELECT_SOURCES_BY_STATUS = f"""\
SELECT {_SOURCE_COLUMNS} FROM sources WHERE status = ? ORDER BY created_at DESC, id;
"""

_SELECT_ALL_SOURCES = f"""\
SELECT {_SOURCE_COLUMNS} FROM sources WHERE deleted_at IS NULL ORDER BY created_at DESC, id;
"""

_COUNT_SOURCES_BY_TENANT = """\
SELECT COUNT(*) FROM sources WHERE tenant_id = ? AND deleted_at IS NULL;
"""

_SOFT_DELETE_SOURCE = """\
UPDATE sources SET status = ?, deleted_at = ?, updated_at = ?
WHERE id = ? AND deleted_at IS NULL;
"""

_DELETE_SOURCE = "DELETE FROM sources WHERE id = ?;"

_FRAGMENT_COLUMNS = (
    "id, source_id, content, position, token_count, metadata, created_at, updated_at"
)

_UPSERT_FRAGMENT = f"""\
INSERT INTO fragments ({_FRAGMENT_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    content = excluded.content,
    position = excluded.position,
    token_count = excluded.token_count,
    metadata = excluded.metadata,
    updated_at = excluded.updated_at;
"""

_SELECT_FRAGMENT = f"SELECT {_FRAGMENT_COLUMNS} FROM fragments WHERE id = ?;"

_SELECT_FRAGMENTS_BY_SOURCE = f"""\
SELECT {_FRAGMENT_COLUMNS} FROM fragments WHERE source_id = ? ORDER BY position;
"""

_DELETE_FRAGMENTS_BY_SOURCE = "DELETE FROM fragments WHERE source_id = ?;"

_COUNT_FRAGMENTS_BY_SOURCE = "SELECT COUNT(*) FROM fragments WHERE source_id = ?;"


class SQLiteKnowledgeRepository(IKnowledgeRepository):
    """SQLite persistence for sources and fragments.

    Call :meth:`initialize` once before use to create the schema.
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)
        self._active: ContextVar[aiosqlite.Connection | None] = ContextVar(
            f"knowledge_tx_{id(self)}", default=None
        )

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_SOURCES_TABLE)
            await db.execute(_CREATE_FRAGMENTS_TABLE)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("knowledge_db_initialized", path=str(self._db_path))

    def get_provider_name(self) -> str:
        return "sqlite_knowledge"

    # ── Sources ───────────────────────────────────────────────────────

    async def save_source(self, source: Source) -> Source:
        if source.id is None:
            source = source.model_copy(update={"id": str(uuid.uuid4())})
        async with self._connection() as db:
            await db.execute(_UPSERT_SOURCE, self._source_params(source))
        return source

    async def find_source_by_id(self, source_id: str) -> Source | None:
        async with self._connection() as db:
            async with db.execute(_SELECT_SOURCE, (source_id,)) as cursor:
                row = await cursor.fetchone()
        return self._row_to_source(row) if row else None

    async def find_sources_by_tenant(
        self, tenant_id: str, include_deleted: bool = False
    ) -> list[Source]:
        async with self._connection() as db:
            async with db.execute(
                _SELECT_SOURCES_BY_TENANT, (tenant_id, int(include_deleted))
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_source(r) for r in rows]

    async def find_sources_by_status(self, status: SourceStatus) -> list[Source]:
        async with self._connection() as db:
            async with db.execute(_SELECT_SOURCES_BY_STATUS, (status.value,)) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_source(r) for r in rows]

    async def find_all_sources(self) -> list[Source]:
        async with self._connection() as db:
            async with db.execute(_SELECT_ALL_SOURCES) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_source(r) for r in rows]

    async def count_sources_by_tenant(self, tenant_id: str) -> int:
        async with self._connection() as db:
            async with db.execute(_COUNT_SOURCES_BY_TENANT, (tenant_id,)) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def soft_delete_source(self, source_id: str) -> bool:
        now = _to_iso(datetime.now(timezone.utc))
        async with self._connection() as db:
            cursor = await db.execute(
                _SOFT_DELETE_SOURCE, (SourceStatus.DELETED.value, now, now, source_id)
            )
            updated = cursor.rowcount
            await cursor.close()
        return updated > 0

    async def delete_source(self, source_id: str) -> bool:
        async with self._connection() as db:
            await db.execute(_DELETE_FRAGMENTS_BY_SOURCE, (source_id,))
            cursor = await db.execute(_DELETE_SOURCE, (source_id,))
            deleted = cursor.rowcount
            await cursor.close()
        return deleted > 0

    # ── Fragments ─────────────────────────────────────────────────────

    async def save_fragments(self, fragments: list[Fragment]) -> list[Fragment]:
        if not fragments:
            return []
        saved = [
            f if f.id is not None else f.model_copy(update={"id": str(uuid.uuid4())})
            for f in fragments
        ]
        async with self._connection() as db:
            await db.executemany(_UPSERT_FRAGMENT, [self._fragment_params(f) for f in saved])
        logger.debug("fragments_saved", source_id=saved[0].source_id, count=len(saved))
        return saved

    async def find_fragment_by_id(self, fragment_id: str) -> Fragment | None:
        async with self._connection() as db:
            async with db.execute(_SELECT_FRAGMENT, (fragment_id,)) as cursor:
                row = await cursor.fetchone()
        return self._row_to_fragment(row) if row else None

    async def find_fragments_by_source(self, source_id: str) -> list[Fragment]:
        async with self._connection() as db:
            async with db.execute(_SELECT_FRAGMENTS_BY_SOURCE, (source_id,)) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_fragment(r) for r in rows]

    async def delete_fragments_by_source(self, source_id: str) -> int:
        async with self._connection() as db:
            cursor = await db.execute(_DELETE_FRAGMENTS_BY_SOURCE, (source_id,))
            deleted = cursor.rowcount
            await cursor.close()
        return max(deleted, 0)

    async def count_fragments_by_source(self, source_id: str) -> int:
        async with self._connection() as db:
            async with db.execute(_COUNT_FRAGMENTS_BY_SOURCE, (source_id,)) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ── Transactions ──────────────────────────────────────────────────

    async def transaction(self, work: Callable[[], Awaitable[T]]) -> T:
        if self._active.get() is not None:
            # Already inside a unit of work: join it.
            return await work()

        try:
            db = await aiosqlite.connect(str(self._db_path))
        except sqlite3.Error as exc:
            raise RepositoryError(
                message=f"Could not open {self._db_path}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        token = self._active.set(db)
        try:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON;")
            await db.execute("BEGIN;")
            try:
                result = await work()
            except BaseException:
                await db.rollback()
                logger.warning("transaction_rolled_back", path=str(self._db_path))
                raise
            try:
                await db.commit()
            except sqlite3.Error as exc:
                await db.rollback()
                raise RepositoryError(
                    message=f"Commit failed: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            return result
        finally:
            self._active.reset(token)
            await db.close()

    # ── Internals ─────────────────────────────────────────────────────

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the task's transaction connection, or a short-lived one.

        A short-lived connection commits when the block exits cleanly.
        SQLite errors surface as :class:`RepositoryError`.
        """
        active = self._active.get()
        if active is not None:
            try:
                yield active
            except sqlite3.Error as exc:
                raise self._wrap(exc) from exc
            return

        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA foreign_keys=ON;")
                yield db
                await db.commit()
        except sqlite3.Error as exc:
            raise self._wrap(exc) from exc

    def _wrap(self, exc: sqlite3.Error) -> RepositoryError:
        return RepositoryError(
            message=f"SQLite error: {exc}",
            provider_name=self.get_provider_name(),
        )

    @staticmethod
    def _source_params(source: Source) -> tuple[Any, ...]:
        return (
            source.id,
            source.title,
            source.tenant_id,
            source.source_kind.value,
            source.content,
            json.dumps(source.metadata, default=str),
            source.status.value,
            source.error_message,
            _to_iso(source.created_at),
            _to_iso(source.updated_at),
            _to_iso(source.deleted_at) if source.deleted_at else None,
        )

    @staticmethod
    def _fragment_params(fragment: Fragment) -> tuple[Any, ...]:
        return (
            fragment.id,
            fragment.source_id,
            fragment.content,
            fragment.position,
            fragment.token_count,
            json.dumps(fragment.metadata, default=str),
            _to_iso(fragment.created_at),
            _to_iso(fragment.updated_at),
        )

    @staticmethod
    def _row_to_source(row: aiosqlite.Row) -> Source:
        return Source(
            id=row["id"],
            title=row["title"],
            tenant_id=row["tenant_id"],
            source_kind=SourceKind(row["source_kind"]),
            content=row["content"],
            metadata=json.loads(row["metadata"] or "{}"),
            status=SourceStatus(row["status"]),
            error_message=row["error_message"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            deleted_at=datetime.fromisoformat(row["deleted_at"]) if row["deleted_at"] else None,
        )

    @staticmethod
    def _row_to_fragment(row: aiosqlite.Row) -> Fragment:
        return Fragment(
            id=row["id"],
            source_id=row["source_id"],
            content=row["content"],
            position=row["position"],
            token_count=row["token_count"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


def _to_iso(value: datetime) -> str:
    return value.isoformat()
