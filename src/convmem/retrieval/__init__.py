"""Two-tier retrieval: session ranking, message retrieval and the search engine."""

from convmem.retrieval.engine import DEFAULT_STRATEGIES, ConversationSearchEngine
from convmem.retrieval.sessions import SessionRanking, rank_sessions

__all__ = ["DEFAULT_STRATEGIES", "ConversationSearchEngine", "SessionRanking", "rank_sessions"]
