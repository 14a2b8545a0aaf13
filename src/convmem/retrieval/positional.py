"""Positional and chronological message retrieval.

Positional queries ("first message", "3 messages ago", "what did I just say")
resolve to exact rows and bypass the similarity threshold: every hit gets the
configured positional score. Queries with loose ordering words ("earlier",
"before") but no exact position fetch messages in time order and blend a
constant order priority with message similarity.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from convmem.classifier import chronological_intent, normalize_query
from convmem.models import (
    MessageRow,
    Ordering,
    PositionDetail,
    PositionKind,
    RankedCandidate,
    RankedSession,
    SearchPath,
    as_utc,
)
from convmem.retrieval.assembler import Retrieval, message_candidate, session_contexts, sort_and_truncate
from convmem.retrieval.context import RequestContext

logger = logging.getLogger(__name__)


async def _fetch_position(
    ctx: RequestContext,
    session_id: str,
    detail: PositionDetail,
) -> list[tuple[int, MessageRow]]:
    """Rows for one session as (rank, message) pairs."""
    store = ctx.store
    cap = min(ctx.config.positional_per_session_cap, ctx.limit)
    sender = ctx.config.user_sender if detail.self_reference else None

    if detail.kind == PositionKind.FIRST and detail.self_reference:
        row = await store.query_offset(session_id, 0, Ordering.ASC, sender=sender)
        return [(1, row)] if row else []

    if detail.kind == PositionKind.FIRST:
        rows = await store.query_messages([session_id], Ordering.ASC, limit_per_session=cap)
        return list(enumerate(rows, start=1))

    if detail.kind == PositionKind.LAST and not detail.self_reference:
        rows = await store.query_messages([session_id], Ordering.DESC, limit_per_session=cap)
        return list(enumerate(rows, start=1))

    offset = 0 if detail.kind == PositionKind.LAST else detail.offset or 0
    row = await store.query_offset(session_id, offset, Ordering.DESC, sender=sender)
    return [(offset + 1, row)] if row else []


def _single_row(detail: PositionDetail) -> bool:
    """Positions that name one message counted back from the most recent one.

    With several sessions in scope each yields its own hit; only the newest
    belongs to the current timeline.
    """
    if detail.kind in (PositionKind.AGO, PositionKind.ORDINAL):
        return True
    return detail.kind == PositionKind.LAST and detail.self_reference


async def retrieve_positional(
    ctx: RequestContext,
    ranked: Sequence[RankedSession],
    search_path: SearchPath = SearchPath.POSITIONAL,
) -> Retrieval | None:
    """Resolve a positional query against the given sessions.

    Falls through to chronological retrieval when the classification carries
    no exact position. Returns None when nothing was found.
    """
    detail = ctx.classification.position_detail
    if detail is None:
        path = SearchPath.CHRONOLOGICAL if search_path == SearchPath.POSITIONAL else search_path
        return await retrieve_chronological(ctx, ranked, search_path=path)

    score = ctx.config.positional_similarity
    candidates: list[RankedCandidate] = []

    for session in ranked:
        if not ctx.proceed("positional fetch", candidates):
            break
        for rank, message in await _fetch_position(ctx, session.session.id, detail):
            candidates.append(
                message_candidate(
                    message,
                    score,
                    search_path,
                    session=session.session,
                    session_similarity=session.similarity,
                    rank=rank,
                )
            )

    if _single_row(detail) and len(candidates) > 1:
        candidates = [max(candidates, key=lambda c: as_utc(c.created_at))]

    candidates = sort_and_truncate(candidates, ctx.limit)
    logger.info(
        f"[POSITIONAL] {detail.kind.value} (offset={detail.offset}, self={detail.self_reference}): "
        f"{len(candidates)} message(s) from {len(ranked)} session(s)"
    )
    if not candidates:
        return None

    return Retrieval(
        candidates=candidates,
        search_path=search_path,
        sessions=session_contexts(ranked),
        message=f"Positional query ({detail.kind.value}) resolved with conversation messages",
    )


async def retrieve_chronological(
    ctx: RequestContext,
    ranked: Sequence[RankedSession],
    search_path: SearchPath = SearchPath.CHRONOLOGICAL,
) -> Retrieval | None:
    """Time-ordered retrieval for ordering words without an exact position."""
    config = ctx.config
    intent = chronological_intent(normalize_query(ctx.query)) or "last"
    ordering = Ordering.ASC if intent == "first" else Ordering.DESC
    window = ctx.limit * 2

    ctx.check_deadline("chronological fetch")
    rows = await ctx.store.query_messages(
        [r.session.id for r in ranked], ordering, limit_per_session=window
    )
    rows = sorted(rows, key=lambda m: as_utc(m.created_at), reverse=ordering == Ordering.DESC)[:window]

    sessions = {r.session.id: r for r in ranked}
    candidates: list[RankedCandidate] = []
    for rank, message in enumerate(rows, start=1):
        score = config.chronological_base_similarity
        if message.embedding:
            similarity = ctx.similarity_to(message.embedding, message.id)
            if similarity is None:
                continue
            score = config.chronological_order_weight + similarity * config.chronological_semantic_weight

        session = sessions.get(message.session_id)
        candidates.append(
            message_candidate(
                message,
                score,
                search_path,
                session=session.session if session else None,
                session_similarity=session.similarity if session else None,
                rank=rank,
            )
        )

    candidates = sort_and_truncate(candidates, ctx.limit)
    logger.info(f"[POSITIONAL] Chronological ({intent}): {len(candidates)} of {len(rows)} messages")
    if not candidates:
        return None

    return Retrieval(
        candidates=candidates,
        search_path=search_path,
        sessions=session_contexts(ranked),
        message=f"Chronological query ({intent}) resolved with conversation messages",
    )
