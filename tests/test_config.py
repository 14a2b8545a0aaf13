"""Tests for convmem configuration."""

import pytest
from pydantic import ValidationError

from convmem.config import ConvMemConfig


class TestConvMemConfig:
    """Tests for ConvMemConfig."""

    def test_default_thresholds(self):
        """Defaults match the calibrated ranking constants."""
        config = ConvMemConfig()

        assert config.session_similarity_threshold == 0.25
        assert config.min_similarity == 0.25
        assert config.relaxed_threshold_floor == 0.05
        assert config.relaxed_threshold_factor == 0.3
        assert config.recency_half_life_days == 90.0
        assert config.min_top_sessions == 2

    def test_default_blend_weights(self):
        config = ConvMemConfig()

        assert config.positional_similarity == 0.9
        assert config.chronological_base_similarity == 0.8
        assert (config.chronological_order_weight, config.chronological_semantic_weight) == (0.7, 0.3)
        assert (config.session_prior_weight, config.message_similarity_weight) == (0.3, 0.7)
        assert config.fallback_base_similarity == 0.6
        assert (config.fallback_order_weight, config.fallback_semantic_weight) == (0.4, 0.6)
        assert config.fuzzy_counts == {"couple": 2, "few": 3, "several": 4}

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CONVMEM_RECENCY_HALF_LIFE_DAYS", "30")
        monkeypatch.setenv("CONVMEM_SESSION_SIMILARITY_THRESHOLD", "0.4")
        monkeypatch.setenv("CONVMEM_DATABASE_URL", "postgresql://localhost/convmem")

        config = ConvMemConfig()

        assert config.recency_half_life_days == 30.0
        assert config.session_similarity_threshold == 0.4
        assert config.database_url == "postgresql://localhost/convmem"

    def test_env_file_loaded(self, tmp_path):
        (tmp_path / ".env").write_text("CONVMEM_DEFAULT_LIMIT=7\n")
        assert ConvMemConfig().default_limit == 7

    def test_unknown_env_ignored(self, monkeypatch):
        monkeypatch.setenv("CONVMEM_NOT_A_SETTING", "x")
        ConvMemConfig()

    def test_relaxed_threshold(self):
        config = ConvMemConfig()

        assert config.relaxed_threshold(0.25) == pytest.approx(0.075)
        assert config.relaxed_threshold(0.1) == pytest.approx(0.05)

    def test_invalid_half_life_rejected(self):
        with pytest.raises(ValidationError, match="recency_half_life_days"):
            ConvMemConfig(recency_half_life_days=0)

    def test_invalid_min_top_sessions_rejected(self):
        with pytest.raises(ValidationError, match="min_top_sessions"):
            ConvMemConfig(min_top_sessions=0)
