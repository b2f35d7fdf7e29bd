"""
Storage components for Luvio Chat.

This package provides:
- An async SQLite wrapper
- Conversation and message persistence
"""

from .database import Database
from .conversations import ConversationStore, SQLiteConversationStore, conversation_title

__all__ = [
    'Database',
    'ConversationStore',
    'SQLiteConversationStore',
    'conversation_title',
]
