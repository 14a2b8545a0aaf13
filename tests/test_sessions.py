"""Tests for session similarity ranking."""

import logging
from datetime import UTC, datetime, timedelta

import pytest

from convmem.config import ConvMemConfig
from convmem.models import SessionRow
from convmem.retrieval.sessions import rank_sessions, score_sessions

QUERY = [1.0, 0.0, 0.0, 0.0]
NOW = datetime(2026, 6, 1, tzinfo=UTC)


def _sessions(vec, similarities, created_at=NOW):
    return [
        SessionRow(id=f"s{i}", title=f"Session {i}", created_at=created_at, summary_embedding=vec(sim))
        for i, sim in enumerate(similarities)
    ]


class TestRankSessions:
    """Tests for rank_sessions."""

    def test_primary_threshold_keeps_only_passing(self, vec):
        """[0.4, 0.1, 0.05] at threshold 0.25 keeps exactly the 0.4 session."""
        ranking = rank_sessions(
            QUERY,
            _sessions(vec, [0.4, 0.1, 0.05]),
            threshold=0.25,
            limit=3,
            conversational=True,
            config=ConvMemConfig(),
            now=NOW,
        )

        assert [r.session.id for r in ranking.sessions] == ["s0"]
        assert ranking.sessions[0].similarity == pytest.approx(0.4)
        assert ranking.relaxed is False

    def test_relaxed_path_when_nothing_passes(self, vec):
        """Conversational queries retry with a relaxed, recency-weighted threshold."""
        ranking = rank_sessions(
            QUERY,
            _sessions(vec, [0.4, 0.1, 0.05]),
            threshold=0.5,
            limit=3,
            conversational=True,
            config=ConvMemConfig(),
            now=NOW,
        )

        assert ranking.relaxed is True
        assert len(ranking.sessions) >= 1
        assert ranking.sessions[0].session.id == "s0"
        assert ranking.sessions[0].relaxed is True

    def test_relaxed_path_uses_floor(self, vec):
        """Relaxed threshold is max(0.05, 0.25 * 0.3) = 0.075."""
        ranking = rank_sessions(
            QUERY,
            _sessions(vec, [0.1, 0.06]),
            threshold=0.25,
            limit=3,
            conversational=True,
            config=ConvMemConfig(),
            now=NOW,
        )

        assert [r.session.id for r in ranking.sessions] == ["s0"]

    def test_no_relaxed_path_for_general_queries(self, vec):
        ranking = rank_sessions(
            QUERY,
            _sessions(vec, [0.1, 0.05]),
            threshold=0.25,
            limit=3,
            conversational=False,
            config=ConvMemConfig(),
            now=NOW,
        )

        assert ranking.sessions == []
        assert ranking.relaxed is False
        assert ranking.no_session_data is False

    def test_recency_reorders_relaxed_sessions(self, vec):
        """An older session with higher raw similarity can rank below a fresh one."""
        old = SessionRow(id="old", created_at=NOW - timedelta(days=90), summary_embedding=vec(0.2))
        fresh = SessionRow(id="fresh", created_at=NOW, summary_embedding=vec(0.12))

        ranking = rank_sessions(
            QUERY,
            [old, fresh],
            threshold=0.3,
            limit=3,
            conversational=True,
            config=ConvMemConfig(),
            now=NOW,
        )

        assert [r.session.id for r in ranking.sessions] == ["fresh", "old"]
        old_ranked = ranking.sessions[1]
        assert old_ranked.recency == pytest.approx(0.5)
        assert old_ranked.similarity == pytest.approx(0.1)
        assert old_ranked.raw_similarity == pytest.approx(0.2)

    def test_sorted_descending_and_truncated(self, vec):
        ranking = rank_sessions(
            QUERY,
            _sessions(vec, [0.3, 0.9, 0.5, 0.7, 0.6]),
            threshold=0.25,
            limit=3,
            conversational=False,
            config=ConvMemConfig(),
            now=NOW,
        )

        assert [r.session.id for r in ranking.sessions] == ["s1", "s3"]
        assert ranking.total == 5

    def test_larger_limit_keeps_more_sessions(self, vec):
        ranking = rank_sessions(
            QUERY,
            _sessions(vec, [0.3, 0.9, 0.5, 0.7, 0.6]),
            threshold=0.25,
            limit=10,
            conversational=False,
            config=ConvMemConfig(),
            now=NOW,
        )

        similarities = [r.similarity for r in ranking.sessions]
        assert len(similarities) == 5
        assert similarities == sorted(similarities, reverse=True)

    def test_no_session_data(self):
        sessions = [SessionRow(id="a"), SessionRow(id="b", summary_embedding=None)]

        ranking = rank_sessions(
            QUERY, sessions, threshold=0.25, limit=3, conversational=True, config=ConvMemConfig()
        )

        assert ranking.no_session_data is True
        assert ranking.total == 2
        assert ranking.sessions == []

    def test_naive_timestamps_are_treated_as_utc(self, vec):
        session = SessionRow(id="naive", created_at=datetime(2026, 5, 1), summary_embedding=vec(0.2))

        ranking = rank_sessions(
            QUERY, [session], threshold=0.3, limit=3, conversational=True, config=ConvMemConfig(), now=NOW
        )

        assert ranking.sessions[0].recency < 1.0


class TestScoreSessions:
    """Tests for score_sessions."""

    def test_dimension_mismatch_skips_only_that_session(self, vec, caplog):
        good = SessionRow(id="good", summary_embedding=vec(0.5))
        bad = SessionRow(id="bad", summary_embedding=[1.0, 0.0, 0.0])

        with caplog.at_level(logging.WARNING):
            scored = score_sessions(QUERY, [bad, good])

        assert [s.id for s, _ in scored] == ["good"]
        assert "Skipping session bad" in caplog.text

    def test_sessions_without_embeddings_are_ignored(self, vec):
        scored = score_sessions(QUERY, [SessionRow(id="none"), SessionRow(id="x", summary_embedding=vec(0.2))])
        assert [s.id for s, _ in scored] == ["x"]
