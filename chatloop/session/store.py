"""
SQLite-backed conversation store.

Uses ``aiosqlite`` for async database access with a write lock to serialise
mutations (SQLite only supports one writer at a time in WAL mode).

Schema is version-tracked via a ``schema_version`` table.  Migrations are
applied automatically on ``init()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 2

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS conversation_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            conversation_id TEXT NOT NULL,
            role TEXT NOT NULL,
            content TEXT NOT NULL,
            tool_calls TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
        )""",
    ],
    2: [
        """CREATE INDEX IF NOT EXISTS idx_messages_conversation
           ON conversation_messages(conversation_id)""",
        """CREATE INDEX IF NOT EXISTS idx_conversations_user
           ON conversations(user_id, updated_at)""",
    ],
}

MEMORY = ":memory:"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ConversationStore:
    """
    Async SQLite store for conversations and their messages.

    Usage::

        store = ConversationStore("~/.chatloop/conversations.db")
        await store.init()
        cid = await store.create_or_get_conversation(None, "user-1", "groq")
        await store.save_message(cid, "user", "What is 2+2?")
        messages = await store.get_messages(cid)
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        if db_path == MEMORY:
            self.db_path: str | Path = MEMORY
        else:
            self.db_path = Path(db_path).expanduser().resolve()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        if self.db_path != MEMORY:
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def _get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if await cursor.fetchone() is None:
            return 0
        cursor = await self._db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        return 0 if row is None else int(row[0])

    async def _set_schema_version(self, version: int) -> None:
        assert self._db is not None
        cursor = await self._db.execute("SELECT COUNT(*) FROM schema_version")
        row = await cursor.fetchone()
        if row[0] == 0:
            await self._db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        else:
            await self._db.execute("UPDATE schema_version SET version = ?", (version,))

    async def _run_migrations(self) -> None:
        """Apply any pending migrations sequentially."""
        assert self._db is not None
        current = await self._get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await self._db.execute(stmt)
            await self._set_schema_version(version)
            logger.info("Applied conversation store migration %d", version)

        await self._db.commit()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_or_get_conversation(
        self,
        conversation_id: str | None,
        user_id: str,
        provider: str,
    ) -> str:
        """
        Return *conversation_id* if it exists, else create a conversation.

        A caller-supplied id that is not yet stored is created under that id.
        """
        assert self._db is not None
        new_id = conversation_id or str(uuid.uuid4())
        now = _now()
        async with self._write_lock:
            await self._db.execute(
                """INSERT OR IGNORE INTO conversations (id, user_id, provider, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (new_id, user_id, provider, now, now),
            )
            await self._db.commit()
        return new_id

    async def get_conversation(self, conversation_id: str) -> dict | None:
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT id, user_id, provider, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        return None if row is None else dict(row)

    async def list_conversations(self, user_id: str | None = None, limit: int = 50) -> list[dict]:
        """Return conversations, most recently updated first."""
        assert self._db is not None
        query = "SELECT id, user_id, provider, created_at, updated_at FROM conversations"
        params: tuple = ()
        if user_id is not None:
            query += " WHERE user_id = ?"
            params = (user_id,)
        query += " ORDER BY updated_at DESC LIMIT ?"
        cursor = await self._db.execute(query, params + (limit,))
        return [dict(row) for row in await cursor.fetchall()]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def save_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tool_calls: list[dict] | None = None,
    ) -> None:
        assert self._db is not None
        now = _now()
        calls_json = json.dumps(tool_calls) if tool_calls else None
        async with self._write_lock:
            await self._db.execute(
                """INSERT INTO conversation_messages
                   (conversation_id, role, content, tool_calls, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (conversation_id, role, content, calls_json, now),
            )
            await self._db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (now, conversation_id),
            )
            await self._db.commit()

    async def get_messages(self, conversation_id: str) -> list[dict]:
        """Return a conversation's messages in insertion order."""
        assert self._db is not None
        cursor = await self._db.execute(
            """SELECT role, content, tool_calls, created_at
               FROM conversation_messages
               WHERE conversation_id = ?
               ORDER BY id ASC""",
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        return [
            {
                "role": row["role"],
                "content": row["content"],
                "tool_calls": json.loads(row["tool_calls"]) if row["tool_calls"] else None,
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    async def get_schema_version(self) -> int:
        """Public accessor for the current schema version."""
        return await self._get_schema_version()
