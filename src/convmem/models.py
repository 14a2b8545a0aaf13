"""Data models for convmem.

Rows (SessionRow, MessageRow, CorpusRow) are read-only views of data owned by
the conversation-capture side. Everything else is per-request working state
or the response shape.
"""

import math
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    """Return current UTC time."""
    return datetime.now(UTC)


# =============================================================================
# Stored rows
# =============================================================================


class SessionRow(BaseModel):
    """A conversation session with its optional summary embedding."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str | None = None
    type: str | None = None
    trigger_reason: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    summary_embedding: list[float] | None = None


class MessageRow(BaseModel):
    """A single message inside a session."""

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    sender: str
    text: str
    created_at: datetime = Field(default_factory=_utcnow)
    embedding: list[float] | None = None


class CorpusRow(BaseModel):
    """A row of the flat corpus: either a memory record or a conversation message."""

    model_config = ConfigDict(frozen=True)

    id: str
    source: Literal["memory", "conversation"]
    text: str
    created_at: datetime = Field(default_factory=_utcnow)
    embedding: list[float]
    session_id: str | None = None
    sender: str | None = None


class Ordering(str, Enum):
    """Chronological direction for message fetches."""

    ASC = "asc"
    DESC = "desc"


# =============================================================================
# Classification
# =============================================================================


class QueryType(str, Enum):
    """What kind of history lookup a conversational query is."""

    POSITIONAL = "positional"
    OVERVIEW = "overview"
    TOPICAL = "topical"
    GENERAL = "general"


class PositionKind(str, Enum):
    """How a positional reference resolves."""

    FIRST = "first"
    LAST = "last"
    ORDINAL = "ordinal"
    AGO = "ago"


class PositionDetail(BaseModel):
    """Resolved positional reference ("first", "3 messages ago", ...)."""

    model_config = ConfigDict(frozen=True)

    kind: PositionKind
    offset: int | None = Field(default=None, ge=0, description="Descending offset for ordinal/ago")
    self_reference: bool = Field(default=False, description="Requester asks about their own words")


class CurrentSession(BaseModel):
    """Search only the session the requester is in."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["current_session"] = "current_session"
    session_id: str | None = None


class CrossSession(BaseModel):
    """Search across all sessions."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["cross_session"] = "cross_session"


Scope = Annotated[CurrentSession | CrossSession, Field(discriminator="kind")]


class Classification(BaseModel):
    """Outcome of conversational query classification."""

    model_config = ConfigDict(frozen=True)

    is_conversational: bool
    type: QueryType = QueryType.GENERAL
    scope: Scope = Field(default_factory=CrossSession)
    position_detail: PositionDetail | None = None
    source: Literal["guard", "llm", "pattern"] = "pattern"
    reason: str | None = Field(default=None, description="Name of the rule that decided")


# =============================================================================
# Request / response
# =============================================================================


class SearchOptions(BaseModel):
    """Per-call search options. Unset values fall back to ConvMemConfig."""

    limit: int | None = Field(default=None, ge=1)
    min_similarity: float | None = Field(default=None, ge=-1.0, le=1.0)
    time_window: timedelta | None = None
    session_id: str | None = None
    use_two_tier: bool = True


class SearchPath(str, Enum):
    """Which retrieval strategy produced a result."""

    POSITIONAL = "two_tier_positional"
    CHRONOLOGICAL = "two_tier_chronological"
    OVERVIEW = "two_tier_overview"
    TOPICAL = "two_tier_topical"
    GENERAL = "two_tier_general"
    SEMANTIC = "two_tier"
    FALLBACK = "two_tier_fallback"
    LEGACY = "legacy"
    NONE = "none"


class RankedSession(BaseModel):
    """A session with its (possibly recency-weighted) score."""

    session: SessionRow
    similarity: float
    raw_similarity: float
    recency: float = 1.0
    relaxed: bool = False


class RankedCandidate(BaseModel):
    """A retrieved message or memory record with its score."""

    id: str
    source: Literal["conversation", "memory"] = "conversation"
    text: str
    sender: str | None = None
    session_id: str | None = None
    created_at: datetime | None = None
    similarity: float
    search_path: SearchPath
    session_title: str | None = None
    session_similarity: float | None = None
    rank: int | None = Field(default=None, description="Chronological rank for ordered results")


class SessionContext(BaseModel):
    """A session consulted while answering a query."""

    session_id: str
    title: str | None = None
    similarity: float


class SearchResult(BaseModel):
    """Uniform response shape for every retrieval path."""

    success: bool
    query: str
    results: list[RankedCandidate] = Field(default_factory=list)
    count: int = 0
    search_path: SearchPath = SearchPath.NONE
    session_context: list[SessionContext] = Field(default_factory=list)
    message: str | None = None
    error: str | None = None
    classification: Classification | None = None
    total_sessions: int = 0
    relevant_sessions: int = 0
    partial: bool = False


def top_session_count(limit: int, minimum: int = 2) -> int:
    """Number of sessions kept for a result budget of ``limit``."""
    return max(minimum, math.ceil(limit / 2))


def parse_time_window(value: str) -> timedelta:
    """Parse a compact window like "30m", "24h", "7d" or "2w"."""
    units = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}
    value = value.strip().lower()
    if len(value) < 2 or value[-1] not in units or not value[:-1].isdigit():
        raise ValueError(f"Invalid time window: {value!r} (expected e.g. 24h, 7d)")
    return timedelta(**{units[value[-1]]: int(value[:-1])})


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
