"""Exception types for convmem.

Only EmbeddingUnavailableError and StorageError ever reach a search caller, and
then only as a structured failure result. The others are recovered inside the
engine.
"""


class ConvMemError(Exception):
    """Base exception for convmem errors."""


class ClassificationUnavailableError(ConvMemError):
    """Classifier backend failed, timed out, or answered outside the grammar."""


class EmbeddingUnavailableError(ConvMemError):
    """The embedding provider could not embed the query text."""


class DimensionMismatchError(ConvMemError, ValueError):
    """Two embeddings being compared have different lengths."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class StorageError(ConvMemError):
    """A read against the conversation store failed."""


class DeadlineExceededError(ConvMemError):
    """The request deadline expired before the next storage round-trip."""
