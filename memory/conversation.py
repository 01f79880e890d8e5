"""Conversation log: ordered per (user, agent) message history in SQLite."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from core.errors import ConversationNotFound, InvalidInput
from memory.database import get_db

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationMessage(BaseModel):
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConversationEntry(BaseModel):
    """Handle to one (user, agent) conversation."""

    conversation_id: str
    user_id: str
    agent_id: str
    created_at: datetime
    updated_at: datetime


def _ts(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _coerce_role(role: Role | str) -> Role:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        raise InvalidInput(
            f"Invalid message role: {role!r} (expected user, assistant or system)"
        ) from None


class ConversationStore:
    """Get-or-create, append, tail-read and delete over the conversation log."""

    def __init__(self, db_path: str = "data/agents.db"):
        self.db_path = db_path

    async def get_or_create(self, user_id: str, agent_id: str) -> ConversationEntry:
        now = _ts(datetime.now(timezone.utc))
        async with get_db(self.db_path) as db:
            await db.execute(
                """INSERT OR IGNORE INTO conversations
                   (conversation_id, user_id, agent_id, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (str(uuid4()), user_id, agent_id, now, now),
            )
            await db.commit()
            cursor = await db.execute(
                "SELECT * FROM conversations WHERE user_id = ? AND agent_id = ?",
                (user_id, agent_id),
            )
            row = await cursor.fetchone()
        return self._row_to_entry(row)

    async def get(self, user_id: str, agent_id: str) -> ConversationEntry | None:
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT * FROM conversations WHERE user_id = ? AND agent_id = ?",
                (user_id, agent_id),
            )
            row = await cursor.fetchone()
        return self._row_to_entry(row) if row else None

    async def list_for_user(self, user_id: str) -> list[ConversationEntry]:
        """All conversations of a user, most recently updated first."""
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT * FROM conversations WHERE user_id = ? ORDER BY updated_at DESC",
                (user_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def append(
        self,
        entry: ConversationEntry,
        role: Role | str,
        content: str,
    ) -> ConversationMessage:
        """Append a message with a server-assigned timestamp."""
        message = ConversationMessage(role=_coerce_role(role), content=content)
        stamp = _ts(message.timestamp)
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
                (stamp, entry.conversation_id),
            )
            if cursor.rowcount == 0:
                await db.rollback()
                raise ConversationNotFound(
                    f"Conversation {entry.conversation_id} not found"
                )
            await db.execute(
                """INSERT INTO conversation_messages
                   (conversation_id, role, content, timestamp)
                   VALUES (?, ?, ?, ?)""",
                (entry.conversation_id, message.role.value, message.content, stamp),
            )
            await db.commit()
        return message

    async def read_recent(
        self,
        entry: ConversationEntry,
        limit: int,
    ) -> list[ConversationMessage]:
        """The last `limit` messages, oldest first. Never mutates the log."""
        if limit < 1:
            raise InvalidInput("limit must be a positive integer")
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                """SELECT role, content, timestamp FROM conversation_messages
                   WHERE conversation_id = ?
                   ORDER BY seq DESC
                   LIMIT ?""",
                (entry.conversation_id, limit),
            )
            rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    async def count_messages(self, entry: ConversationEntry) -> int:
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM conversation_messages WHERE conversation_id = ?",
                (entry.conversation_id,),
            )
            row = await cursor.fetchone()
        return row[0]

    async def delete_for_agent(self, user_id: str, agent_id: str) -> bool:
        """Remove the (user, agent) conversation. No-op if absent."""
        async with get_db(self.db_path) as db:
            await db.execute(
                """DELETE FROM conversation_messages WHERE conversation_id IN
                   (SELECT conversation_id FROM conversations
                    WHERE user_id = ? AND agent_id = ?)""",
                (user_id, agent_id),
            )
            cursor = await db.execute(
                "DELETE FROM conversations WHERE user_id = ? AND agent_id = ?",
                (user_id, agent_id),
            )
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.debug("Conversation deleted: user=%s agent=%s", user_id, agent_id)
        return deleted

    async def delete_for_user(self, user_id: str) -> int:
        async with get_db(self.db_path) as db:
            await db.execute(
                """DELETE FROM conversation_messages WHERE conversation_id IN
                   (SELECT conversation_id FROM conversations WHERE user_id = ?)""",
                (user_id,),
            )
            cursor = await db.execute(
                "DELETE FROM conversations WHERE user_id = ?", (user_id,),
            )
            await db.commit()
            return cursor.rowcount

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Administrative sweep: drop conversations not updated since `cutoff`."""
        stamp = _ts(cutoff)
        async with get_db(self.db_path) as db:
            await db.execute(
                """DELETE FROM conversation_messages WHERE conversation_id IN
                   (SELECT conversation_id FROM conversations WHERE updated_at < ?)""",
                (stamp,),
            )
            cursor = await db.execute(
                "DELETE FROM conversations WHERE updated_at < ?", (stamp,),
            )
            await db.commit()
            removed = cursor.rowcount
        if removed:
            logger.info("Pruned %d conversations idle since %s", removed, stamp)
        return removed

    @staticmethod
    def _row_to_entry(row) -> ConversationEntry:
        return ConversationEntry(
            conversation_id=row["conversation_id"],
            user_id=row["user_id"],
            agent_id=row["agent_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> ConversationMessage:
        return ConversationMessage(
            role=Role(row["role"]),
            content=row["content"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )
