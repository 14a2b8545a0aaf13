"""Conversation storage backends."""

from convmem.storage.base import ConversationStore
from convmem.storage.memory import InMemoryConversationStore
from convmem.storage.postgres import PgConversationStore

__all__ = ["ConversationStore", "InMemoryConversationStore", "PgConversationStore"]
