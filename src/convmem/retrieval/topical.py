"""Similarity-ranked message retrieval inside ranked sessions.

Three variants share the same shape:

- retrieve_topical: balanced per-session window for topical, overview and
  general conversational queries, scored by session prior and message similarity.
- retrieve_semantic: plain message similarity with a threshold, for
  non-conversational queries that still matched sessions.
- retrieve_recent_fallback: best-effort answer from the most recent sessions
  when no session cleared even the relaxed threshold.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from convmem.models import (
    Ordering,
    QueryType,
    RankedCandidate,
    RankedSession,
    SearchPath,
    SessionContext,
    SessionRow,
    as_utc,
)
from convmem.retrieval.assembler import Retrieval, message_candidate, session_contexts, sort_and_truncate
from convmem.retrieval.context import RequestContext

logger = logging.getLogger(__name__)

TOPICAL_PATHS = {
    QueryType.OVERVIEW: SearchPath.OVERVIEW,
    QueryType.TOPICAL: SearchPath.TOPICAL,
}


def messages_per_session(limit: int, session_count: int) -> int:
    """Balanced per-session window so no single session starves the budget."""
    return math.ceil(limit / max(1, session_count))


async def retrieve_topical(ctx: RequestContext, ranked: Sequence[RankedSession]) -> Retrieval | None:
    config = ctx.config
    search_path = TOPICAL_PATHS.get(ctx.classification.type, SearchPath.GENERAL)
    window = messages_per_session(ctx.limit, len(ranked))

    ctx.check_deadline("topical fetch")
    rows = await ctx.store.query_messages(
        [r.session.id for r in ranked], Ordering.DESC, limit_per_session=window
    )

    sessions = {r.session.id: r for r in ranked}
    candidates: list[RankedCandidate] = []
    for message in rows:
        prior = ctx.session_score(message.session_id)
        score = prior
        if message.embedding:
            similarity = ctx.similarity_to(message.embedding, message.id)
            if similarity is None:
                continue
            score = prior * config.session_prior_weight + similarity * config.message_similarity_weight

        session = sessions.get(message.session_id)
        candidates.append(
            message_candidate(
                message,
                score,
                search_path,
                session=session.session if session else None,
                session_similarity=session.similarity if session else None,
            )
        )

    candidates = sort_and_truncate(candidates, ctx.limit)
    logger.info(
        f"[TOPICAL] {ctx.classification.type.value}: {len(candidates)} of {len(rows)} messages "
        f"({window} per session across {len(ranked)} sessions)"
    )
    if not candidates:
        return None

    return Retrieval(
        candidates=candidates,
        search_path=search_path,
        sessions=session_contexts(ranked),
        message=f"{ctx.classification.type.value} query resolved with conversation messages",
    )


async def retrieve_semantic(ctx: RequestContext, ranked: Sequence[RankedSession]) -> Retrieval | None:
    ctx.check_deadline("semantic fetch")
    rows = await ctx.store.query_messages([r.session.id for r in ranked], Ordering.DESC)

    sessions = {r.session.id: r for r in ranked}
    candidates: list[RankedCandidate] = []
    for message in rows:
        if not message.embedding:
            continue
        similarity = ctx.similarity_to(message.embedding, message.id)
        if similarity is None or similarity < ctx.min_similarity:
            continue

        session = sessions.get(message.session_id)
        candidates.append(
            message_candidate(
                message,
                similarity,
                SearchPath.SEMANTIC,
                session=session.session if session else None,
                session_similarity=session.similarity if session else None,
            )
        )

    candidates = sort_and_truncate(candidates, ctx.limit)
    logger.info(f"[TOPICAL] Semantic: {len(candidates)} of {len(rows)} messages above {ctx.min_similarity}")
    if not candidates:
        return None

    return Retrieval(
        candidates=candidates,
        search_path=SearchPath.SEMANTIC,
        sessions=session_contexts(ranked),
    )


def recent_sessions(sessions: Sequence[SessionRow], count: int) -> list[SessionRow]:
    """The ``count`` most recently created sessions, newest first."""
    return sorted(sessions, key=lambda s: as_utc(s.created_at), reverse=True)[:count]


async def retrieve_recent_fallback(ctx: RequestContext, recent: Sequence[SessionRow]) -> Retrieval | None:
    config = ctx.config
    window = ctx.limit * 2

    ctx.check_deadline("fallback fetch")
    rows = await ctx.store.query_messages(
        [s.id for s in recent], Ordering.DESC, limit_per_session=window
    )
    rows = sorted(rows, key=lambda m: as_utc(m.created_at), reverse=True)[:window]

    sessions = {s.id: s for s in recent}
    candidates: list[RankedCandidate] = []
    for message in rows:
        score = config.fallback_base_similarity
        if message.embedding:
            similarity = ctx.similarity_to(message.embedding, message.id)
            if similarity is None:
                continue
            score = config.fallback_order_weight + similarity * config.fallback_semantic_weight

        candidates.append(
            message_candidate(
                message,
                score,
                SearchPath.FALLBACK,
                session=sessions.get(message.session_id),
                session_similarity=config.fallback_base_similarity,
            )
        )

    candidates = sort_and_truncate(candidates, ctx.limit)
    logger.info(f"[TOPICAL] Fallback: {len(candidates)} messages from {len(recent)} recent sessions")
    if not candidates:
        return None

    return Retrieval(
        candidates=candidates,
        search_path=SearchPath.FALLBACK,
        sessions=[
            SessionContext(session_id=s.id, title=s.title, similarity=config.fallback_base_similarity)
            for s in recent
        ],
        message="No sessions met the similarity threshold, using recent conversation messages",
    )
