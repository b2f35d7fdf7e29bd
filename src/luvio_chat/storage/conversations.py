"""
Conversation persistence for Luvio Chat.

Two collaborators are used by the chat session:
- ``ensure_conversation`` creates the conversation row for a new chat
- ``append_message`` stores one finished message
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiosqlite

from .database import Database
from ..models.chat import Message, Role, new_id
from ..utils.errors import PersistenceError
from ..utils.logging import get_logger, log_function_call

logger = get_logger("luvio-chat.storage")


TITLE_LENGTH = 50
DEFAULT_TITLE = "New Chat"


def conversation_title(seed_text: Optional[str]) -> str:
    """Title derived from the first user message."""
    if not seed_text:
        return DEFAULT_TITLE
    if len(seed_text) > TITLE_LENGTH:
        return seed_text[:TITLE_LENGTH] + "..."
    return seed_text


class ConversationStore(ABC):
    """Storage collaborator of a chat session."""

    @abstractmethod
    async def ensure_conversation(
        self,
        module_id: Optional[str] = None,
        seed_text: Optional[str] = None
    ) -> str:
        """Create a conversation and return its id."""

    @abstractmethod
    async def append_message(self, conversation_id: str, role: str, content: str) -> None:
        """Store one message of a conversation."""

    async def load_messages(self, conversation_id: str) -> List[Message]:
        """Stored messages of a conversation, oldest first."""
        return []

    async def close(self) -> None:
        """Release storage resources."""


class SQLiteConversationStore(ConversationStore):
    """Conversation store backed by SQLite."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            title TEXT NOT NULL,
            module_id TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
            content TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_messages_conversation
            ON messages(conversation_id, created_at);
    """

    def __init__(self, db: Database, user_id: Optional[str] = None):
        self.db = db
        self.user_id = user_id
        self._initialized = False

    async def initialize(self) -> None:
        """Create the schema if needed."""
        if self._initialized:
            return
        await self.db.connect()
        await self.db.executescript(self.SCHEMA)
        self._initialized = True
        logger.info("conversation_store_initialized", path=str(self.db.db_path))

    @log_function_call(logger)
    async def ensure_conversation(
        self,
        module_id: Optional[str] = None,
        seed_text: Optional[str] = None
    ) -> str:
        await self.initialize()
        conversation_id = new_id()
        now = datetime.now(timezone.utc).isoformat()

        try:
            await self.db.execute(
                """
                INSERT INTO conversations (id, user_id, title, module_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (conversation_id, self.user_id, conversation_title(seed_text),
                 module_id, now, now)
            )
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to create conversation: {e}", cause=e) from e

        logger.info("conversation_created", conversation_id=conversation_id, module_id=module_id)
        return conversation_id

    async def append_message(self, conversation_id: str, role: str, content: str) -> None:
        await self.initialize()
        now = datetime.now(timezone.utc).isoformat()

        # The message and the conversation's updated_at land together
        try:
            await self.db.execute_batch([
                (
                    """
                    INSERT INTO messages (id, conversation_id, role, content, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (new_id(), conversation_id, role, content, now)
                ),
                (
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (now, conversation_id)
                ),
            ])
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save message: {e}", cause=e) from e

    async def load_messages(self, conversation_id: str) -> List[Message]:
        await self.initialize()
        rows = await self.db.fetchall(
            """
            SELECT id, role, content FROM messages
            WHERE conversation_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (conversation_id,)
        )
        return [Message(id=row[0], role=Role(row[1]), content=row[2]) for row in rows]

    async def list_conversations(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Conversations of the store's user, most recently updated first."""
        await self.initialize()
        rows = await self.db.fetchall(
            """
            SELECT id, title, module_id, created_at, updated_at FROM conversations
            WHERE user_id IS ?
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (self.user_id, limit)
        )
        return [
            {
                "id": row[0],
                "title": row[1],
                "module_id": row[2],
                "created_at": row[3],
                "updated_at": row[4],
            }
            for row in rows
        ]

    async def close(self) -> None:
        await self.db.close()
        self._initialized = False


__all__ = [
    'ConversationStore',
    'SQLiteConversationStore',
    'conversation_title',
]
