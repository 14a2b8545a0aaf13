"""Per-request working state for a single search call."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import timedelta

from convmem.config import ConvMemConfig
from convmem.errors import DeadlineExceededError, DimensionMismatchError
from convmem.lib import Deadline
from convmem.models import Classification, RankedSession, SessionRow
from convmem.similarity import cosine_similarity
from convmem.storage import ConversationStore

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Configuration, collaborators and working set of one search call.

    Created fresh for every call; nothing here outlives the request.
    """

    query: str
    config: ConvMemConfig
    store: ConversationStore
    classification: Classification
    query_embedding: list[float]
    limit: int
    min_similarity: float
    session_threshold: float
    deadline: Deadline
    time_window: timedelta | None = None
    sessions: list[SessionRow] = field(default_factory=list)
    ranked: list[RankedSession] = field(default_factory=list)
    partial: bool = False

    def check_deadline(self, stage: str) -> None:
        """Raise DeadlineExceededError before a storage round-trip if time is up."""
        self.deadline.check(stage)

    def proceed(self, stage: str, gathered: Sequence[object]) -> bool:
        """Whether to issue another round-trip.

        Once the deadline has passed, returns False if something was already
        gathered (marking the request partial) and re-raises otherwise.
        """
        try:
            self.deadline.check(stage)
        except DeadlineExceededError:
            if not gathered:
                raise
            logger.warning(f"[SEARCH] Deadline exceeded before {stage}, returning partial results")
            self.partial = True
            return False
        return True

    def similarity_to(self, embedding: Sequence[float], item_id: str) -> float | None:
        """Query similarity for a stored embedding, or None if its dimension is wrong."""
        try:
            return cosine_similarity(self.query_embedding, embedding)
        except DimensionMismatchError as e:
            logger.warning(f"[SEARCH] Skipping {item_id}: {e}")
            return None

    def session_score(self, session_id: str | None) -> float:
        """Ranked score of a session, or the configured prior if it was not ranked."""
        for ranked in self.ranked:
            if ranked.session.id == session_id:
                return ranked.similarity
        return self.config.default_session_prior
