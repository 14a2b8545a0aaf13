"""Session similarity ranking.

Scores in-scope sessions against the query embedding using their summary
embeddings. When nothing clears the primary threshold and the query is
conversational, a relaxed pass multiplies similarity by a recency weight and
applies a lower threshold.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from convmem.config import ConvMemConfig
from convmem.errors import DimensionMismatchError
from convmem.models import RankedSession, SessionRow, as_utc, top_session_count
from convmem.similarity import cosine_similarity, recency_weight

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


@dataclass
class SessionRanking:
    """Outcome of ranking: the kept sessions plus counts for diagnostics."""

    sessions: list[RankedSession] = field(default_factory=list)
    total: int = 0
    with_embeddings: int = 0
    relaxed: bool = False

    @property
    def no_session_data(self) -> bool:
        """True when no in-scope session carries a summary embedding."""
        return self.with_embeddings == 0


def score_sessions(
    query_embedding: Sequence[float],
    sessions: Sequence[SessionRow],
) -> list[tuple[SessionRow, float]]:
    """Cosine similarity of each embedded session. Wrong-dimension sessions are skipped."""
    scored = []
    for session in sessions:
        if not session.summary_embedding:
            continue
        try:
            similarity = cosine_similarity(query_embedding, session.summary_embedding)
        except DimensionMismatchError as e:
            logger.warning(f"[SESSIONS] Skipping session {session.id}: {e}")
            continue
        scored.append((session, similarity))
    return scored


def rank_sessions(
    query_embedding: Sequence[float],
    sessions: Sequence[SessionRow],
    *,
    threshold: float,
    limit: int,
    conversational: bool,
    config: ConvMemConfig,
    now: datetime | None = None,
) -> SessionRanking:
    """Rank sessions for a query.

    Args:
        query_embedding: Embedding of the query text
        sessions: Sessions in scope
        threshold: Primary similarity threshold
        limit: Result budget; top max(min_top_sessions, ceil(limit/2)) are kept
        conversational: Whether the relaxed recency-weighted retry is allowed
        config: Ranking constants
        now: Reference time for recency (defaults to current UTC time)

    Returns:
        SessionRanking sorted descending by score
    """
    with_embeddings = sum(1 for s in sessions if s.summary_embedding)
    ranking = SessionRanking(total=len(sessions), with_embeddings=with_embeddings)
    if with_embeddings == 0:
        logger.info(f"[SESSIONS] No session embeddings among {len(sessions)} sessions")
        return ranking

    scored = score_sessions(query_embedding, sessions)
    logger.debug(
        "[SESSIONS] Similarities: "
        + ", ".join(f"{s.title or s.id}: {sim:.4f}" for s, sim in scored)
    )

    kept = [
        RankedSession(session=s, similarity=sim, raw_similarity=sim)
        for s, sim in scored
        if sim >= threshold
    ]

    if not kept and conversational and scored:
        relaxed_threshold = config.relaxed_threshold(threshold)
        now = as_utc(now or datetime.now(UTC))
        logger.debug(f"[SESSIONS] None above {threshold}, relaxing to {relaxed_threshold:.4f}")

        for session, similarity in scored:
            age_days = (now - as_utc(session.created_at)).total_seconds() / SECONDS_PER_DAY
            recency = recency_weight(age_days, config.recency_half_life_days)
            score = similarity * recency
            if score >= relaxed_threshold:
                kept.append(
                    RankedSession(
                        session=session,
                        similarity=score,
                        raw_similarity=similarity,
                        recency=recency,
                        relaxed=True,
                    )
                )
        ranking.relaxed = True

    kept.sort(key=lambda r: r.similarity, reverse=True)
    ranking.sessions = kept[: top_session_count(limit, config.min_top_sessions)]

    logger.debug(
        f"[SESSIONS] {len(ranking.sessions)} of {len(scored)} sessions kept"
        f"{' (relaxed)' if ranking.relaxed else ''}"
    )
    return ranking
