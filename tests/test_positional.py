"""Tests for positional and chronological message retrieval."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from convmem.classifier import QueryClassifier
from convmem.errors import DeadlineExceededError
from convmem.lib import Deadline
from convmem.models import MessageRow, RankedSession, SearchPath, SessionRow
from convmem.retrieval.positional import retrieve_chronological, retrieve_positional
from convmem.storage import InMemoryConversationStore


def _ranked(store, session_id="s1", similarity=0.3):
    session = next(s for s in store.sessions if s.id == session_id)
    return [RankedSession(session=session, similarity=similarity, raw_similarity=similarity)]


def _classify(query, session_id="s1"):
    return QueryClassifier().classify_with_patterns(query, session_id=session_id)


class TestExactPositions:
    """first / last / ordinal / N-ago lookups."""

    @pytest.mark.asyncio
    async def test_first_message(self, chat_store, make_ctx):
        """'first message' returns the oldest message first."""
        query = "what was the first message"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert retrieval.search_path == SearchPath.POSITIONAL
        assert retrieval.candidates[0].id == "u1"
        assert [c.id for c in retrieval.candidates] == ["u1", "a1", "u2"]
        assert all(c.similarity == 0.9 for c in retrieval.candidates)
        assert retrieval.candidates[0].rank == 1

    @pytest.mark.asyncio
    async def test_first_message_cap(self, chat_store, make_ctx):
        query = "what was the first message"
        ctx = make_ctx(chat_store, _classify(query), query=query, limit=10)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert len(retrieval.candidates) == 5

    @pytest.mark.asyncio
    async def test_my_first_question_filters_to_user(self, chat_store, make_ctx):
        query = "what was my first question?"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert [c.id for c in retrieval.candidates] == ["u1"]

    @pytest.mark.asyncio
    async def test_messages_ago_first_person(self, chat_store, make_ctx):
        """'3 messages ago' is descending offset 2 among the requester's messages."""
        query = "3 messages ago, what did I say?"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert [c.id for c in retrieval.candidates] == ["u1"]
        assert retrieval.candidates[0].sender == "user"
        assert retrieval.candidates[0].rank == 3

    @pytest.mark.asyncio
    async def test_messages_ago_any_sender(self, chat_store, make_ctx):
        query = "what was said 3 messages ago"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        # a3, u3, a2 <- offset 2
        assert [c.id for c in retrieval.candidates] == ["a2"]

    @pytest.mark.asyncio
    async def test_fuzzy_count(self, chat_store, make_ctx):
        query = "a few messages ago what did you say"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert [c.id for c in retrieval.candidates] == ["a2"]

    @pytest.mark.asyncio
    async def test_ordinal(self, chat_store, make_ctx):
        query = "show the 2nd message"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert [c.id for c in retrieval.candidates] == ["u3"]

    @pytest.mark.asyncio
    async def test_just_said_returns_single_user_message(self, chat_store, make_ctx):
        query = "What did I just say?"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert [c.id for c in retrieval.candidates] == ["u3"]

    @pytest.mark.asyncio
    async def test_last_message_across_senders(self, chat_store, make_ctx):
        query = "what was the last message"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert [c.id for c in retrieval.candidates] == ["a3", "u3", "a2"]

    @pytest.mark.asyncio
    async def test_offset_past_end_returns_none(self, chat_store, make_ctx):
        query = "what was said 30 messages ago"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        assert await retrieve_positional(ctx, _ranked(chat_store)) is None

    @pytest.mark.asyncio
    async def test_empty_session_returns_none(self, make_ctx):
        store = InMemoryConversationStore(sessions=[SessionRow(id="empty")])
        query = "what was the first message"
        ctx = make_ctx(store, _classify(query, "empty"), query=query)

        assert await retrieve_positional(ctx, _ranked(store, "empty")) is None

    @pytest.mark.asyncio
    async def test_just_said_across_sessions_keeps_most_recent(self, chat_store, make_ctx, base_time):
        older = SessionRow(id="s0", created_at=base_time - timedelta(days=1))
        chat_store.add_session(older)
        chat_store.add_message(
            MessageRow(id="old", session_id="s0", sender="user", text="old", created_at=base_time - timedelta(days=1))
        )
        query = "What did I just say?"
        ctx = make_ctx(chat_store, _classify(query), query=query)
        ranked = _ranked(chat_store, "s0", 0.9) + _ranked(chat_store, "s1", 0.3)

        retrieval = await retrieve_positional(ctx, ranked)

        assert [c.id for c in retrieval.candidates] == ["u3"]

    @pytest.mark.asyncio
    async def test_ordinal_across_sessions_keeps_most_recent(self, chat_store, make_ctx, base_time):
        chat_store.add_session(SessionRow(id="s0", created_at=base_time - timedelta(days=1)))
        for i in (1, 2):
            chat_store.add_message(
                MessageRow(
                    id=f"old{i}",
                    session_id="s0",
                    sender="assistant",
                    text=f"old {i}",
                    created_at=base_time - timedelta(days=1) + timedelta(minutes=i),
                )
            )
        query = "show the 2nd message"
        ctx = make_ctx(chat_store, _classify(query), query=query)
        ranked = _ranked(chat_store, "s0", 0.9) + _ranked(chat_store, "s1", 0.3)

        retrieval = await retrieve_positional(ctx, ranked)

        assert [c.id for c in retrieval.candidates] == ["u3"]
        assert [s.session_id for s in retrieval.sessions] == ["s0", "s1"]


class TestChronological:
    """Ordering words without an exact position."""

    @pytest.mark.asyncio
    async def test_loose_ordering_uses_chronological_path(self, chat_store, make_ctx):
        query = "what did we talk about earlier?"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_positional(ctx, _ranked(chat_store))

        assert retrieval.search_path == SearchPath.CHRONOLOGICAL
        assert [c.id for c in retrieval.candidates] == ["a3", "u3", "a2"]
        assert all(c.similarity == 0.8 for c in retrieval.candidates)
        assert [c.rank for c in retrieval.candidates] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_start_intent_is_ascending(self, chat_store, make_ctx):
        query = "what did we say at the start, before the hotel"
        ctx = make_ctx(chat_store, _classify(query), query=query)

        retrieval = await retrieve_chronological(ctx, _ranked(chat_store))

        assert retrieval.candidates[0].id == "u1"

    @pytest.mark.asyncio
    async def test_embedding_blend(self, make_ctx, vec, base_time):
        session = SessionRow(id="s1", created_at=base_time)
        store = InMemoryConversationStore(
            sessions=[session],
            messages=[
                MessageRow(id="m1", session_id="s1", sender="user", text="a", created_at=base_time, embedding=vec(0.2)),
                MessageRow(
                    id="m2", session_id="s1", sender="user", text="b",
                    created_at=base_time + timedelta(minutes=1), embedding=vec(1.0),
                ),
                MessageRow(
                    id="m3", session_id="s1", sender="user", text="c",
                    created_at=base_time + timedelta(minutes=2), embedding=[1.0, 0.0],
                ),
            ],
        )
        ctx = make_ctx(store, _classify("what did we talk about earlier?"), query="what did we talk about earlier?")

        retrieval = await retrieve_chronological(ctx, _ranked(store))

        assert [c.id for c in retrieval.candidates] == ["m2", "m1"]
        assert retrieval.candidates[0].similarity == pytest.approx(1.0)
        assert retrieval.candidates[1].similarity == pytest.approx(0.76)


class TestDeadline:
    """Deadline checks between storage round-trips."""

    @pytest.mark.asyncio
    async def test_partial_result_after_first_session(self, chat_store, make_ctx, base_time):
        chat_store.add_session(SessionRow(id="s2", created_at=base_time))
        chat_store.add_message(MessageRow(id="x1", session_id="s2", sender="user", text="x", created_at=base_time))
        clock = MagicMock(side_effect=[0.0, 0.5, 2.0])
        query = "what was the first message"
        ctx = make_ctx(chat_store, _classify(query), query=query, deadline=Deadline(1.0, clock=clock))

        retrieval = await retrieve_positional(ctx, _ranked(chat_store, "s1") + _ranked(chat_store, "s2"))

        assert ctx.partial is True
        assert {c.session_id for c in retrieval.candidates} == {"s1"}

    @pytest.mark.asyncio
    async def test_expired_before_anything_raises(self, chat_store, make_ctx):
        clock = MagicMock(side_effect=[0.0, 5.0])
        query = "what was the first message"
        ctx = make_ctx(chat_store, _classify(query), query=query, deadline=Deadline(1.0, clock=clock))

        with pytest.raises(DeadlineExceededError):
            await retrieve_positional(ctx, _ranked(chat_store))
