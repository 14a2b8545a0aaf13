"""PostgreSQL conversation store (asyncpg + pgvector).

Reads the tables written by the conversation-capture side:

- conversation_sessions (id, title, type, trigger_reason, created_at)
- session_context (session_id, context_type, embedding), summaries have
  context_type = 'session_summary'
- conversation_messages (id, session_id, sender, text, created_at, embedding)
- memory (id, source_text, created_at, embedding)

This store never writes.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import asyncpg
from pgvector.asyncpg import register_vector

from convmem.errors import StorageError
from convmem.models import CorpusRow, CrossSession, CurrentSession, MessageRow, Ordering, SessionRow
from convmem.storage.where import WhereBuilder

logger = logging.getLogger(__name__)

MESSAGE_COLUMNS = "id, session_id, sender, text, created_at, embedding"

STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _vector(value: Any) -> list[float] | None:
    """Convert a pgvector value (numpy array or list) to a list of floats."""
    if value is None:
        return None
    return [float(x) for x in value]


def _direction(ordering: Ordering) -> str:
    return "DESC" if ordering == Ordering.DESC else "ASC"


def session_row_from_record(row: asyncpg.Record) -> SessionRow:
    return SessionRow(
        id=str(row["id"]),
        title=row["title"],
        type=row["type"],
        trigger_reason=row["trigger_reason"],
        created_at=row["created_at"],
        summary_embedding=_vector(row["summary_embedding"]),
    )


def message_row_from_record(row: asyncpg.Record) -> MessageRow:
    return MessageRow(
        id=str(row["id"]),
        session_id=str(row["session_id"]),
        sender=row["sender"],
        text=row["text"] or "",
        created_at=row["created_at"],
        embedding=_vector(row["embedding"]),
    )


def corpus_row_from_record(row: asyncpg.Record) -> CorpusRow:
    return CorpusRow(
        id=str(row["id"]),
        source=row["source"],
        text=row["text"] or "",
        created_at=row["created_at"],
        embedding=_vector(row["embedding"]) or [],
        session_id=str(row["session_id"]) if row["session_id"] else None,
        sender=row["sender"],
    )


class PgConversationStore:
    """ConversationStore over a PostgreSQL connection pool."""

    def __init__(self, database_url: str, pool_size: int = 10):
        """Initialize the store.

        Args:
            database_url: PostgreSQL connection URL
            pool_size: Connection pool size
        """
        self.database_url = database_url
        self.pool_size = pool_size
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        if self._pool is not None:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=1,
                max_size=self.pool_size,
                setup=self._setup_connection,
            )
        except STORAGE_ERRORS as e:
            raise StorageError(f"Could not connect to conversation database: {e}") from e
        logger.info("PgConversationStore connected to database")

    async def _setup_connection(self, conn: asyncpg.Connection) -> None:
        """Setup each connection with pgvector extension."""
        await register_vector(conn)

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("PgConversationStore disconnected")

    async def _get_pool(self) -> asyncpg.Pool:
        """Get the connection pool, connecting if needed."""
        if self._pool is None:
            await self.connect()
        return self._pool  # type: ignore

    async def _fetch(self, sql: str, *args: Any) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetch(sql, *args)
        except STORAGE_ERRORS as e:
            logger.error(f"Conversation store query failed: {e}")
            raise StorageError(f"Conversation store query failed: {e}") from e

    # =========================================================================
    # Reads
    # =========================================================================

    async def query_sessions(self, scope: CurrentSession | CrossSession) -> list[SessionRow]:
        w = WhereBuilder()
        if isinstance(scope, CurrentSession):
            w.where("cs.id = {}", scope.session_id)

        sql = f"""
            SELECT cs.id, cs.title, cs.type, cs.trigger_reason, cs.created_at,
                   summary.embedding AS summary_embedding
            FROM conversation_sessions cs
            LEFT JOIN LATERAL (
                SELECT sc.embedding
                FROM session_context sc
                WHERE sc.session_id = cs.id
                  AND sc.context_type = 'session_summary'
                  AND sc.embedding IS NOT NULL
                ORDER BY sc.created_at DESC
                LIMIT 1
            ) summary ON TRUE
            WHERE {w.sql()}
            ORDER BY cs.created_at DESC
        """
        rows = await self._fetch(sql, *w.args)
        return [session_row_from_record(row) for row in rows]

    async def query_messages(
        self,
        session_ids: Sequence[str],
        ordering: Ordering,
        limit_per_session: int | None = None,
    ) -> list[MessageRow]:
        if not session_ids:
            return []

        w = WhereBuilder(first_index=2)
        w.where_if(limit_per_session is not None, "rn <= {}", limit_per_session)

        sql = f"""
            WITH ranked AS (
                SELECT {MESSAGE_COLUMNS},
                       ROW_NUMBER() OVER (
                           PARTITION BY session_id ORDER BY created_at {_direction(ordering)}
                       ) AS rn
                FROM conversation_messages
                WHERE session_id::text = ANY($1::text[])
            )
            SELECT {MESSAGE_COLUMNS}
            FROM ranked
            WHERE {w.sql()}
            ORDER BY array_position($1::text[], session_id::text), rn
        """
        rows = await self._fetch(sql, list(session_ids), *w.args)
        return [message_row_from_record(row) for row in rows]

    async def query_offset(
        self,
        session_id: str,
        offset: int,
        ordering: Ordering,
        sender: str | None = None,
    ) -> MessageRow | None:
        w = WhereBuilder()
        w.where("session_id = {}", session_id)
        w.where_if(sender, "sender = {}", sender)
        offset_param = w.bind(offset)

        sql = f"""
            SELECT {MESSAGE_COLUMNS}
            FROM conversation_messages
            WHERE {w.sql()}
            ORDER BY created_at {_direction(ordering)}
            LIMIT 1 OFFSET {offset_param}
        """
        rows = await self._fetch(sql, *w.args)
        return message_row_from_record(rows[0]) if rows else None

    async def query_corpus_union(self, time_window: timedelta | None = None) -> list[CorpusRow]:
        window = ""
        args: list[Any] = []
        if time_window is not None:
            window = "AND created_at > $1"
            args.append(datetime.now(UTC) - time_window)

        sql = f"""
            SELECT 'memory' AS source, id, source_text AS text, created_at, embedding,
                   NULL::text AS session_id, NULL::text AS sender
            FROM memory
            WHERE embedding IS NOT NULL {window}
            UNION ALL
            SELECT 'conversation' AS source, id, text, created_at, embedding,
                   session_id::text, sender
            FROM conversation_messages
            WHERE embedding IS NOT NULL {window}
            ORDER BY created_at DESC
        """
        rows = await self._fetch(sql, *args)
        return [corpus_row_from_record(row) for row in rows]
