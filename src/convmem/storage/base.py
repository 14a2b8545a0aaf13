"""Read-only storage contract for the retrieval engine."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from typing import Protocol

from convmem.models import CorpusRow, CrossSession, CurrentSession, MessageRow, Ordering, SessionRow


class ConversationStore(Protocol):
    """Uniform read interface over sessions, messages and the flat corpus.

    Implementations raise StorageError on read failures. All timestamps
    compare chronologically; ties keep storage order.
    """

    async def query_sessions(self, scope: CurrentSession | CrossSession) -> list[SessionRow]:
        """Sessions in scope, newest first.

        CurrentSession(id) yields at most that one session. Sessions without a
        summary embedding are included with ``summary_embedding=None``.
        """
        ...

    async def query_messages(
        self,
        session_ids: Sequence[str],
        ordering: Ordering,
        limit_per_session: int | None = None,
    ) -> list[MessageRow]:
        """Messages of the given sessions, grouped in ``session_ids`` order.

        Within each session messages are ordered by ``created_at`` in
        ``ordering`` and truncated to ``limit_per_session`` when set.
        """
        ...

    async def query_offset(
        self,
        session_id: str,
        offset: int,
        ordering: Ordering,
        sender: str | None = None,
    ) -> MessageRow | None:
        """The single message at ``offset`` in the ordered session, or None."""
        ...

    async def query_corpus_union(self, time_window: timedelta | None = None) -> list[CorpusRow]:
        """Memory records and messages that carry an embedding, newest first.

        With ``time_window`` only rows created within that window are returned.
        """
        ...
