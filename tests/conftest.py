"""Pytest configuration for convmem tests."""

import math
import os
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from convmem.config import ConvMemConfig
from convmem.lib import Deadline
from convmem.models import Classification, MessageRow, SessionRow
from convmem.retrieval.context import RequestContext
from convmem.storage import InMemoryConversationStore

QUERY_VECTOR = [1.0, 0.0, 0.0, 0.0]


@pytest.fixture(autouse=True)
def clean_convmem_env(monkeypatch, tmp_path):
    """Clear convmem environment variables and prevent .env loading for test isolation."""
    for var in [k for k in os.environ if k.startswith("CONVMEM_")]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    # Change to temp directory to avoid loading local .env file
    monkeypatch.chdir(tmp_path)

    yield


def vector_with_similarity(similarity: float) -> list[float]:
    """Unit vector whose cosine similarity to QUERY_VECTOR is exactly ``similarity``."""
    return [similarity, math.sqrt(1.0 - similarity**2), 0.0, 0.0]


@pytest.fixture
def vec():
    return vector_with_similarity


@pytest.fixture
def base_time():
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def embedder():
    """Embedding provider that always returns QUERY_VECTOR."""
    mock = MagicMock()
    mock.embed = AsyncMock(return_value=list(QUERY_VECTOR))
    return mock


@pytest.fixture
def chat_store(base_time):
    """One session "s1" with six alternating user/assistant messages, one minute apart.

    Messages: u1, a1, u2, a2, u3, a3 (oldest to newest). No message embeddings.
    The session summary has similarity 0.3 to QUERY_VECTOR.
    """
    session = SessionRow(
        id="s1",
        title="Trip planning",
        created_at=base_time,
        summary_embedding=vector_with_similarity(0.3),
    )
    messages = []
    for i, msg_id in enumerate(["u1", "a1", "u2", "a2", "u3", "a3"]):
        messages.append(
            MessageRow(
                id=msg_id,
                session_id="s1",
                sender="user" if msg_id.startswith("u") else "assistant",
                text=f"message {msg_id}",
                created_at=base_time + timedelta(minutes=i),
            )
        )
    return InMemoryConversationStore(sessions=[session], messages=messages)


@pytest.fixture
def make_ctx():
    """Factory for RequestContext with sensible defaults."""

    def _make(
        store,
        classification=None,
        query="test query",
        limit=3,
        min_similarity=0.25,
        session_threshold=0.25,
        config=None,
        deadline=None,
        time_window=None,
        ranked=None,
    ):
        ctx = RequestContext(
            query=query,
            config=config or ConvMemConfig(),
            store=store,
            classification=classification or Classification(is_conversational=True),
            query_embedding=list(QUERY_VECTOR),
            limit=limit,
            min_similarity=min_similarity,
            session_threshold=session_threshold,
            deadline=deadline or Deadline(None),
            time_window=time_window,
        )
        if ranked is not None:
            ctx.ranked = list(ranked)
        return ctx

    return _make
