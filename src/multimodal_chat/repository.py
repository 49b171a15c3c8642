"""SQLite-backed store for chat users, conversations and messages."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol
from uuid import uuid4

import aiosqlite

from .errors import PersistenceError

logger = logging.getLogger(__name__)

MessageRecord = dict[str, Any]
ConversationRecord = dict[str, Any]
UserRecord = dict[str, Any]

_MESSAGE_FIELDS = (
    "conversation_id",
    "user_id",
    "role",
    "content",
    "image_ref",
    "tabular_ref",
    "tabular_file_name",
)


class MessageStore(Protocol):
    """Append-only sink for finished chat messages."""

    async def add_message(self, record: MessageRecord) -> MessageRecord:
        ...


def _utcnow() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class ChatRepository:
    """Persist chat users, conversations and messages."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS chat_users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                user_id TEXT REFERENCES chat_users(id) ON DELETE CASCADE,
                title TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
                user_id TEXT REFERENCES chat_users(id) ON DELETE SET NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                image_ref TEXT,
                tabular_ref TEXT,
                tabular_file_name TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation_id
                ON messages(conversation_id);
            CREATE INDEX IF NOT EXISTS idx_messages_created_at
                ON messages(created_at);
            CREATE INDEX IF NOT EXISTS idx_conversations_user_id
                ON conversations(user_id);
            """
        )
        await self._connection.commit()

    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise PersistenceError("Repository is not initialized")
        return self._connection

    async def create_user(
        self, name: str, *, user_id: Optional[str] = None
    ) -> UserRecord:
        """Insert a user if missing and return its record."""

        record = {
            "id": user_id or str(uuid4()),
            "name": name,
            "created_at": _utcnow(),
        }
        conn = self._conn()
        try:
            await conn.execute(
                "INSERT OR IGNORE INTO chat_users (id, name, created_at) VALUES (?, ?, ?)",
                (record["id"], record["name"], record["created_at"]),
            )
            await conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not store user: {exc}") from exc
        return record

    async def create_conversation(
        self, user_id: Optional[str], *, title: Optional[str] = None
    ) -> ConversationRecord:
        created_at = _utcnow()
        record = {
            "id": str(uuid4()),
            "user_id": user_id,
            "title": title or f"Conversation {created_at}",
            "created_at": created_at,
        }
        conn = self._conn()
        try:
            await conn.execute(
                "INSERT INTO conversations (id, user_id, title, created_at) VALUES (?, ?, ?, ?)",
                (record["id"], user_id, record["title"], created_at),
            )
            await conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not create conversation: {exc}") from exc
        return record

    async def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        """Return a user's conversations, newest first."""

        conn = self._conn()
        async with conn.execute(
            "SELECT id, user_id, title, created_at FROM conversations "
            "WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def add_message(self, record: MessageRecord) -> MessageRecord:
        """Append one message; the table is never updated in place."""

        missing = [key for key in ("conversation_id", "role") if not record.get(key)]
        if missing:
            raise PersistenceError(f"Message record missing {', '.join(missing)}")

        stored: MessageRecord = {key: record.get(key) for key in _MESSAGE_FIELDS}
        stored["content"] = stored["content"] or ""
        stored["id"] = str(uuid4())
        stored["created_at"] = _utcnow()

        conn = self._conn()
        try:
            await conn.execute(
                """
                INSERT INTO messages (
                    id, conversation_id, user_id, role, content,
                    image_ref, tabular_ref, tabular_file_name, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    stored["id"],
                    stored["conversation_id"],
                    stored["user_id"],
                    stored["role"],
                    stored["content"],
                    stored["image_ref"],
                    stored["tabular_ref"],
                    stored["tabular_file_name"],
                    stored["created_at"],
                ),
            )
            await conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not store message: {exc}") from exc

        logger.debug(
            "Stored %s message for conversation %s",
            stored["role"],
            stored["conversation_id"],
        )
        return stored

    async def get_messages(self, conversation_id: str) -> list[MessageRecord]:
        conn = self._conn()
        async with conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? "
            "ORDER BY created_at ASC, rowid ASC",
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]


__all__ = ["ChatRepository", "MessageRecord", "MessageStore"]
