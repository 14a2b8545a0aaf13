"""convmem - two-tier conversational memory retrieval.

Decides whether a query refers to earlier conversation, ranks sessions by
summary similarity, then retrieves messages inside them, with positional
lookups ("first message", "3 messages ago") and a flat-corpus fallback.
"""

from importlib.metadata import version

from convmem.classifier import QueryClassifier
from convmem.config import ConvMemConfig
from convmem.models import SearchOptions, SearchResult
from convmem.retrieval import ConversationSearchEngine

__version__ = version("convmem")
__all__ = [
    "ConvMemConfig",
    "ConversationSearchEngine",
    "QueryClassifier",
    "SearchOptions",
    "SearchResult",
    "__version__",
]
