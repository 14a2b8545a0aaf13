"""Normalize every retrieval path into one SearchResult shape."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from convmem.models import (
    Classification,
    CorpusRow,
    MessageRow,
    RankedCandidate,
    RankedSession,
    SearchPath,
    SearchResult,
    SessionContext,
    SessionRow,
)
from convmem.retrieval.context import RequestContext


@dataclass
class Retrieval:
    """What a strategy found, before it is shaped into a SearchResult."""

    candidates: list[RankedCandidate]
    search_path: SearchPath
    sessions: list[SessionContext] = field(default_factory=list)
    message: str | None = None


def sort_and_truncate(candidates: Iterable[RankedCandidate], limit: int) -> list[RankedCandidate]:
    """Sort descending by similarity (stable) and keep the first ``limit``."""
    return sorted(candidates, key=lambda c: c.similarity, reverse=True)[:limit]


def session_contexts(ranked: Sequence[RankedSession]) -> list[SessionContext]:
    return [
        SessionContext(session_id=r.session.id, title=r.session.title, similarity=r.similarity)
        for r in ranked
    ]


def message_candidate(
    message: MessageRow,
    similarity: float,
    search_path: SearchPath,
    session: SessionRow | None = None,
    session_similarity: float | None = None,
    rank: int | None = None,
) -> RankedCandidate:
    return RankedCandidate(
        id=message.id,
        source="conversation",
        text=message.text,
        sender=message.sender,
        session_id=message.session_id,
        created_at=message.created_at,
        similarity=similarity,
        search_path=search_path,
        session_title=session.title if session else None,
        session_similarity=session_similarity,
        rank=rank,
    )


def corpus_candidate(row: CorpusRow, similarity: float) -> RankedCandidate:
    return RankedCandidate(
        id=row.id,
        source=row.source,
        text=row.text,
        sender=row.sender,
        session_id=row.session_id,
        created_at=row.created_at,
        similarity=similarity,
        search_path=SearchPath.LEGACY,
    )


def assemble(ctx: RequestContext, retrieval: Retrieval) -> SearchResult:
    """Build the successful result for a finished strategy."""
    return SearchResult(
        success=True,
        query=ctx.query,
        results=retrieval.candidates,
        count=len(retrieval.candidates),
        search_path=retrieval.search_path,
        session_context=retrieval.sessions,
        message=retrieval.message,
        classification=ctx.classification,
        total_sessions=len(ctx.sessions),
        relevant_sessions=len(retrieval.sessions),
        partial=ctx.partial,
    )


def failure_result(
    query: str,
    error: str,
    classification: Classification | None = None,
) -> SearchResult:
    """Structured failure for errors that make ranking impossible."""
    return SearchResult(
        success=False,
        query=query,
        error=error,
        message=error,
        classification=classification,
    )
