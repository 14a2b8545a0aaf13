"""Two-tier conversational search engine.

Pipeline for one call: classify -> embed query -> fetch and rank sessions ->
run strategies in order until one produces results -> assemble.

Strategy order (first non-empty wins):
    1. no session embeddings at all     -> legacy flat scan
    2. conversational + ranked sessions -> positional / chronological / topical
    3. general + ranked sessions        -> two-tier semantic
    4. conversational, nothing yet      -> best effort from the most recent sessions
    5. anything else                    -> legacy flat scan
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from convmem.classifier import QueryClassifier
from convmem.config import ConvMemConfig
from convmem.embedding import AsyncEmbeddingClient, EmbeddingProvider
from convmem.errors import DeadlineExceededError, EmbeddingUnavailableError, StorageError
from convmem.lib import Deadline, run_async
from convmem.models import (
    Classification,
    CrossSession,
    CurrentSession,
    QueryType,
    RankedSession,
    SearchOptions,
    SearchPath,
    SearchResult,
    SessionContext,
)
from convmem.retrieval.assembler import Retrieval, assemble, failure_result, session_contexts
from convmem.retrieval.context import RequestContext
from convmem.retrieval.legacy import retrieve_legacy
from convmem.retrieval.positional import retrieve_positional
from convmem.retrieval.sessions import SessionRanking, rank_sessions
from convmem.retrieval.topical import (
    recent_sessions,
    retrieve_recent_fallback,
    retrieve_semantic,
    retrieve_topical,
)
from convmem.storage import ConversationStore, PgConversationStore

logger = logging.getLogger(__name__)

Strategy = Callable[[RequestContext, SessionRanking], Awaitable[Retrieval | None]]


# =============================================================================
# Strategies
# =============================================================================


async def no_session_data(ctx: RequestContext, ranking: SessionRanking) -> Retrieval | None:
    if not ranking.no_session_data:
        return None
    return await retrieve_legacy(ctx, "No session embeddings found, using flat corpus search")


async def conversational_sessions(ctx: RequestContext, ranking: SessionRanking) -> Retrieval | None:
    if not ctx.classification.is_conversational or not ranking.sessions:
        return None
    if ctx.classification.type == QueryType.POSITIONAL:
        return await retrieve_positional(ctx, ranking.sessions)
    return await retrieve_topical(ctx, ranking.sessions)


async def semantic_sessions(ctx: RequestContext, ranking: SessionRanking) -> Retrieval | None:
    if ctx.classification.is_conversational or not ranking.sessions:
        return None
    return await retrieve_semantic(ctx, ranking.sessions)


async def recent_session_fallback(ctx: RequestContext, ranking: SessionRanking) -> Retrieval | None:
    if not ctx.classification.is_conversational or not ctx.sessions:
        return None

    config = ctx.config
    recent = recent_sessions(ctx.sessions, config.fallback_recent_sessions)
    if ctx.classification.type == QueryType.POSITIONAL:
        as_ranked = [
            RankedSession(
                session=s,
                similarity=config.fallback_base_similarity,
                raw_similarity=config.fallback_base_similarity,
            )
            for s in recent
        ]
        return await retrieve_positional(ctx, as_ranked, search_path=SearchPath.FALLBACK)
    return await retrieve_recent_fallback(ctx, recent)


def _consulted_sessions(ctx: RequestContext, ranking: SessionRanking) -> list[SessionContext]:
    """Sessions earlier strategies queried without finding messages."""
    consulted = session_contexts(ranking.sessions)
    if ctx.classification.is_conversational:
        seen = {c.session_id for c in consulted}
        for session in recent_sessions(ctx.sessions, ctx.config.fallback_recent_sessions):
            if session.id not in seen:
                consulted.append(
                    SessionContext(
                        session_id=session.id,
                        title=session.title,
                        similarity=ctx.config.fallback_base_similarity,
                    )
                )
    return consulted


async def flat_corpus(ctx: RequestContext, ranking: SessionRanking) -> Retrieval:
    if ranking.sessions:
        reason = "No messages found in relevant sessions, using flat corpus search"
    else:
        reason = "No sessions met the similarity threshold, using flat corpus search"
    retrieval = await retrieve_legacy(ctx, reason)
    retrieval.sessions = _consulted_sessions(ctx, ranking)
    return retrieval


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    no_session_data,
    conversational_sessions,
    semantic_sessions,
    recent_session_fallback,
    flat_corpus,
)


# =============================================================================
# Engine
# =============================================================================


class ConversationSearchEngine:
    """Search conversation history for a free-text query.

    Holds collaborators and configuration only; each call builds its own
    RequestContext, so one engine can serve concurrent requests.

    Example:
        engine = ConversationSearchEngine(store, embedder)
        result = await engine.search_async(
            "what did I just say?", SearchOptions(session_id="s-1")
        )
    """

    def __init__(
        self,
        store: ConversationStore,
        embedder: EmbeddingProvider,
        classifier: QueryClassifier | None = None,
        config: ConvMemConfig | None = None,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ):
        self.config = config or ConvMemConfig()
        self.store = store
        self.embedder = embedder
        self.classifier = classifier or QueryClassifier(
            timeout=self.config.classifier_timeout_seconds,
            fuzzy_counts=self.config.fuzzy_counts,
        )
        self.strategies = tuple(strategies)
        self._owned: list[Any] = []

    @classmethod
    def from_config(cls, config: ConvMemConfig | None = None) -> "ConversationSearchEngine":
        """Wire the PostgreSQL store, OpenRouter embeddings and LLM classifier.

        The LLM classifier is only attached when OPENROUTER_API_KEY is set;
        otherwise classification uses the deterministic rules.

        Raises:
            ValueError: If no database URL or API key is configured
        """
        config = config or ConvMemConfig()
        if not config.database_url:
            raise ValueError("Database URL required. Set CONVMEM_DATABASE_URL.")

        store = PgConversationStore(config.database_url)
        embedder = AsyncEmbeddingClient(
            model=config.embedding_model,
            dimensions=config.embedding_dimension,
        )

        engine = cls(store, embedder, classifier=QueryClassifier.from_config(config), config=config)
        engine._owned = [store, embedder]
        return engine

    async def close(self) -> None:
        """Close collaborators created by from_config."""
        for resource in self._owned:
            await resource.close()
        self._owned = []

    async def __aenter__(self) -> "ConversationSearchEngine":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # =========================================================================
    # Public API
    # =========================================================================

    async def classify(self, query: str, session_id: str | None = None) -> Classification:
        return await self.classifier.classify(query, session_id=session_id)

    def search(self, query: str, options: SearchOptions | None = None) -> SearchResult:
        """Sync wrapper for search_async (CLI and scripts only)."""
        return run_async(self.search_async(query, options))

    async def search_async(self, query: str, options: SearchOptions | None = None) -> SearchResult:
        """Search conversation history.

        Args:
            query: Free-text query
            options: Per-call options; unset values fall back to config

        Returns:
            SearchResult. Embedding and storage failures come back as
            success=False rather than raising.

        Raises:
            ValueError: If the query is empty
        """
        if not query or not query.strip():
            raise ValueError("query must not be empty")

        options = options or SearchOptions()
        config = self.config
        deadline = Deadline(config.request_timeout_seconds)

        classification = await self.classifier.classify(
            query,
            session_id=options.session_id,
            timeout=deadline.cap(config.classifier_timeout_seconds),
        )
        logger.info(
            f"[SEARCH] {query!r}: conversational={classification.is_conversational} "
            f"type={classification.type.value} scope={classification.scope.kind} "
            f"via {classification.source}"
        )

        try:
            query_embedding = await self.embedder.embed(query)
        except EmbeddingUnavailableError as e:
            logger.error(f"[SEARCH] Query embedding failed: {e}")
            return failure_result(query, f"Embedding unavailable: {e}", classification)

        min_similarity = config.min_similarity if options.min_similarity is None else options.min_similarity
        session_threshold = (
            config.session_similarity_threshold if options.min_similarity is None else options.min_similarity
        )
        ctx = RequestContext(
            query=query,
            config=config,
            store=self.store,
            classification=classification,
            query_embedding=query_embedding,
            limit=options.limit or config.default_limit,
            min_similarity=min_similarity,
            session_threshold=session_threshold,
            deadline=deadline,
            time_window=options.time_window,
        )

        try:
            return await self._run(ctx, options)
        except StorageError as e:
            logger.error(f"[SEARCH] Storage failure: {e}")
            return failure_result(query, f"Storage error: {e}", classification)
        except DeadlineExceededError as e:
            logger.warning(f"[SEARCH] {e}")
            ctx.partial = True
            return assemble(ctx, Retrieval(candidates=[], search_path=SearchPath.NONE, message=str(e)))

    # =========================================================================
    # Internals
    # =========================================================================

    def _scope(self, classification: Classification) -> CurrentSession | CrossSession:
        scope = classification.scope
        if isinstance(scope, CurrentSession) and scope.session_id is None:
            logger.debug("[SEARCH] Current-session scope without a session id, searching all sessions")
            return CrossSession()
        return scope

    async def _run(self, ctx: RequestContext, options: SearchOptions) -> SearchResult:
        if not options.use_two_tier:
            return assemble(ctx, await retrieve_legacy(ctx, "Two-tier search disabled"))

        ctx.check_deadline("session fetch")
        ctx.sessions = await ctx.store.query_sessions(self._scope(ctx.classification))
        ranking = rank_sessions(
            ctx.query_embedding,
            ctx.sessions,
            threshold=ctx.session_threshold,
            limit=ctx.limit,
            conversational=ctx.classification.is_conversational,
            config=ctx.config,
        )
        ctx.ranked = ranking.sessions

        for strategy in self.strategies:
            retrieval = await strategy(ctx, ranking)
            if retrieval is not None:
                logger.info(
                    f"[SEARCH] {retrieval.search_path.value}: {len(retrieval.candidates)} result(s) "
                    f"from {len(retrieval.sessions)} of {len(ctx.sessions)} sessions"
                )
                return assemble(ctx, retrieval)

        return assemble(ctx, Retrieval(candidates=[], search_path=SearchPath.NONE, message="No strategy matched"))
