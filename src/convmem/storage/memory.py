"""In-process conversation store.

Useful for tests and for applications that already hold their history in
memory. Ordering, offset and sender semantics match PgConversationStore.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta

from convmem.models import CorpusRow, CrossSession, CurrentSession, MessageRow, Ordering, SessionRow


class InMemoryConversationStore:
    """ConversationStore backed by plain lists."""

    def __init__(
        self,
        sessions: Iterable[SessionRow] = (),
        messages: Iterable[MessageRow] = (),
        memories: Iterable[CorpusRow] = (),
    ):
        self.sessions: list[SessionRow] = list(sessions)
        self.messages: list[MessageRow] = list(messages)
        self.memories: list[CorpusRow] = list(memories)

    def add_session(self, session: SessionRow) -> None:
        self.sessions.append(session)

    def add_message(self, message: MessageRow) -> None:
        self.messages.append(message)

    def add_memory(self, memory: CorpusRow) -> None:
        self.memories.append(memory)

    def _ordered(self, session_id: str, ordering: Ordering) -> list[MessageRow]:
        rows = [m for m in self.messages if m.session_id == session_id]
        return sorted(rows, key=lambda m: m.created_at, reverse=ordering == Ordering.DESC)

    async def query_sessions(self, scope: CurrentSession | CrossSession) -> list[SessionRow]:
        if isinstance(scope, CurrentSession):
            rows = [s for s in self.sessions if s.id == scope.session_id]
        else:
            rows = list(self.sessions)
        return sorted(rows, key=lambda s: s.created_at, reverse=True)

    async def query_messages(
        self,
        session_ids: Sequence[str],
        ordering: Ordering,
        limit_per_session: int | None = None,
    ) -> list[MessageRow]:
        results: list[MessageRow] = []
        for session_id in dict.fromkeys(session_ids):
            rows = self._ordered(session_id, ordering)
            if limit_per_session is not None:
                rows = rows[:limit_per_session]
            results.extend(rows)
        return results

    async def query_offset(
        self,
        session_id: str,
        offset: int,
        ordering: Ordering,
        sender: str | None = None,
    ) -> MessageRow | None:
        rows = self._ordered(session_id, ordering)
        if sender is not None:
            rows = [m for m in rows if m.sender == sender]
        if 0 <= offset < len(rows):
            return rows[offset]
        return None

    async def query_corpus_union(self, time_window: timedelta | None = None) -> list[CorpusRow]:
        rows = [m for m in self.memories if m.embedding]
        rows.extend(
            CorpusRow(
                id=m.id,
                source="conversation",
                text=m.text,
                created_at=m.created_at,
                embedding=m.embedding,
                session_id=m.session_id,
                sender=m.sender,
            )
            for m in self.messages
            if m.embedding
        )
        if time_window is not None:
            cutoff = datetime.now(UTC) - time_window
            rows = [r for r in rows if r.created_at > cutoff]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)
