"""Configuration for convmem.

Environment Variables:
    - CONVMEM_DATABASE_URL: PostgreSQL connection URL for the conversation store
    - OPENROUTER_API_KEY: Required for query embeddings and LLM classification

    Optional model configuration:
    - CONVMEM_EMBEDDING_MODEL: Embedding model (default: sentence-transformers/all-minilm-l6-v2)
    - CONVMEM_LLM_MODEL: Model for query classification (default: qwen/qwen3-8b)

    Ranking constants (thresholds, blend weights, recency half-life) are all
    overridable with CONVMEM_<FIELD_NAME>, e.g. CONVMEM_RECENCY_HALF_LIFE_DAYS=30.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConvMemConfig(BaseSettings):
    """convmem configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONVMEM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Collaborator Settings
    # =========================================================================
    database_url: str | None = Field(
        default=None,
        description="PostgreSQL connection URL for conversation sessions and messages",
    )
    embedding_model: str = Field(
        default="sentence-transformers/all-minilm-l6-v2",
        description="Embedding model for query text (OpenRouter format)",
    )
    embedding_dimension: int = Field(
        default=384,
        description="Dimension shared by every stored embedding in the corpus",
    )
    llm_model: str = Field(
        default="qwen/qwen3-8b",
        description="Model used for conversational query classification",
    )
    user_sender: str = Field(default="user", description="Sender role of the requester")

    # =========================================================================
    # Timeouts
    # =========================================================================
    classifier_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for the LLM classification call before falling back to patterns",
    )
    request_timeout_seconds: float | None = Field(
        default=None,
        description="Optional deadline for a whole search call (None = no deadline)",
    )

    # =========================================================================
    # Search Defaults
    # =========================================================================
    default_limit: int = Field(default=3, description="Default number of results per search")
    min_similarity: float = Field(
        default=0.25,
        description="Minimum similarity for flat (legacy) search results",
    )

    # =========================================================================
    # Session Ranking
    # =========================================================================
    session_similarity_threshold: float = Field(
        default=0.25,
        description="Primary threshold for query/session-summary similarity",
    )
    relaxed_threshold_factor: float = Field(
        default=0.3,
        description="Relaxed threshold = max(floor, primary * factor) for conversational retries",
    )
    relaxed_threshold_floor: float = Field(default=0.05, description="Floor for the relaxed threshold")
    recency_half_life_days: float = Field(
        default=90.0,
        description="Days at which recency weight drops to 0.5 in relaxed ranking",
    )
    min_top_sessions: int = Field(
        default=2,
        description="Minimum number of top sessions kept (otherwise ceil(limit / 2))",
    )

    # =========================================================================
    # Message Scoring
    # =========================================================================
    positional_similarity: float = Field(
        default=0.9,
        description="Score assigned to exact positional matches",
    )
    positional_per_session_cap: int = Field(
        default=5,
        description="Max messages fetched per session for first/last queries",
    )
    chronological_base_similarity: float = Field(
        default=0.8,
        description="Score for chronological matches without a message embedding",
    )
    chronological_order_weight: float = Field(default=0.7, description="Order priority in chronological blend")
    chronological_semantic_weight: float = Field(default=0.3, description="Semantic part of chronological blend")
    session_prior_weight: float = Field(default=0.3, description="Session prior in topical blend")
    message_similarity_weight: float = Field(default=0.7, description="Message similarity in topical blend")
    default_session_prior: float = Field(
        default=0.5,
        description="Session prior used when a message's session carries no score",
    )
    fallback_base_similarity: float = Field(
        default=0.6,
        description="Score for best-effort recent-session messages without an embedding",
    )
    fallback_order_weight: float = Field(default=0.4, description="Constant part of best-effort blend")
    fallback_semantic_weight: float = Field(default=0.6, description="Semantic part of best-effort blend")
    fallback_recent_sessions: int = Field(
        default=2,
        description="Number of most recent sessions used by the best-effort fallback",
    )
    fuzzy_counts: dict[str, int] = Field(
        default_factory=lambda: {"couple": 2, "few": 3, "several": 4},
        description="Offsets for fuzzy counts like 'a few messages ago'",
    )

    # =========================================================================
    # Server Settings
    # =========================================================================
    server_host: str = Field(default="localhost", description="HTTP server host")
    server_port: int = Field(default=8766, description="HTTP server port")

    @model_validator(mode="after")
    def _check_weights(self) -> "ConvMemConfig":
        if self.relaxed_threshold_floor < 0:
            raise ValueError("relaxed_threshold_floor must be >= 0")
        if self.recency_half_life_days <= 0:
            raise ValueError("recency_half_life_days must be > 0")
        if self.min_top_sessions < 1:
            raise ValueError("min_top_sessions must be >= 1")
        return self

    def relaxed_threshold(self, primary_threshold: float) -> float:
        """Threshold used for the recency-weighted retry."""
        return max(self.relaxed_threshold_floor, primary_threshold * self.relaxed_threshold_factor)
