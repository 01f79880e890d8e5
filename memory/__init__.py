"""Conversation persistence for the agent service."""

from memory.conversation import (
    ConversationEntry,
    ConversationMessage,
    ConversationStore,
    Role,
)
from memory.database import get_db, init_database

__all__ = [
    "ConversationEntry",
    "ConversationMessage",
    "ConversationStore",
    "Role",
    "get_db",
    "init_database",
]
