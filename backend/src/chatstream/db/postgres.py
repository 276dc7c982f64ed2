"""PostgreSQL client for conversation persistence."""

import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import asyncpg

from chatmodels import Conversation, FileCitationEntry, Message, MessageStatus
from chatstream.config import settings
from chatstream.errors import TurnInProgressError


SCHEMA_SQL = """
-- Conversations
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT 'New Chat',
    continuation_token TEXT,
    search_index_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_activity_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_conversations_user_activity
    ON conversations(user_id, last_activity_at DESC);

-- Messages (seq gives insertion order within a conversation)
CREATE TABLE IF NOT EXISTS messages (
    seq BIGSERIAL,
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    status TEXT,
    file_ids TEXT[] DEFAULT '{}',
    uploaded_files JSONB DEFAULT '[]',
    provider_response_id TEXT,
    reasoning_summary TEXT,
    citations JSONB,
    model TEXT,
    reasoning_effort TEXT,
    web_search_enabled BOOLEAN NOT NULL DEFAULT FALSE,
    timezone TEXT,
    error_detail TEXT,
    truncated BOOLEAN NOT NULL DEFAULT FALSE,
    reply_to TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq);
-- At most one typing message per conversation
CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_one_typing
    ON messages(conversation_id) WHERE status = 'typing';

-- File citation index
CREATE TABLE IF NOT EXISTS file_citation_index (
    provider_file_id TEXT PRIMARY KEY,
    file_name TEXT NOT NULL,
    uploaded_by TEXT NOT NULL,
    blob_ref TEXT NOT NULL,
    conversation_id TEXT,
    message_id TEXT,
    mime_type TEXT,
    size BIGINT,
    uploaded_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_file_citation_index_uploaded_by ON file_citation_index(uploaded_by);
CREATE INDEX IF NOT EXISTS idx_file_citation_index_conversation ON file_citation_index(conversation_id);
"""

# Message columns holding JSON documents
_JSON_COLUMNS = {"uploaded_files", "citations"}
_MESSAGE_COLUMNS = {
    "content",
    "status",
    "file_ids",
    "uploaded_files",
    "provider_response_id",
    "reasoning_summary",
    "citations",
    "model",
    "reasoning_effort",
    "web_search_enabled",
    "timezone",
    "error_detail",
    "truncated",
    "reply_to",
}


def _load_json(value: Any) -> Any:
    if value is None or isinstance(value, (list, dict)):
        return value
    return json.loads(value)


def _dump_column(column: str, value: Any) -> Any:
    if isinstance(value, MessageStatus):
        return value.value
    if column in _JSON_COLUMNS and value is not None:
        return json.dumps(
            [v.model_dump() if hasattr(v, "model_dump") else v for v in value]
        )
    return value


class Database:
    """PostgreSQL database client for conversations and messages."""

    def __init__(self):
        self._pool: asyncpg.Pool | None = None

    async def connect(self):
        """Create connection pool."""
        if not settings.database_url:
            return
        self._pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=2,
            max_size=10,
        )

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self):
        """Get a connection from the pool."""
        if not self._pool:
            raise RuntimeError("Database not connected")
        async with self._pool.acquire() as conn:
            yield conn

    async def ensure_tables_exist(self):
        """Create tables if they don't exist."""
        if not self._pool:
            return
        async with self.connection() as conn:
            await conn.execute(SCHEMA_SQL)

    # ============= Conversation Operations =============

    async def create_conversation(
        self, user_id: str, title: str | None = None
    ) -> Conversation:
        """Create a new conversation."""
        now = datetime.now(timezone.utc)
        conversation = Conversation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title or "New Chat",
            created_at=now,
            last_activity_at=now,
        )
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO conversations (id, user_id, title, created_at, last_activity_at)
                VALUES ($1, $2, $3, $4, $5)
                """,
                conversation.id,
                conversation.user_id,
                conversation.title,
                conversation.created_at,
                conversation.last_activity_at,
            )
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get a conversation by ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM conversations WHERE id = $1", conversation_id
            )
        if not row:
            return None
        return self._row_to_conversation(row)

    async def list_conversations(
        self, user_id: str, limit: int = 50
    ) -> list[Conversation]:
        """List conversations for a user, most recently active first."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM conversations
                WHERE user_id = $1
                ORDER BY last_activity_at DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return [self._row_to_conversation(row) for row in rows]

    async def update_conversation(
        self,
        conversation_id: str,
        title: str | None = None,
        continuation_token: str | None = None,
        search_index_id: str | None = None,
        touch: bool = False,
    ) -> bool:
        """Overwrite conversation fields. Returns False if the row is gone."""
        updates = []
        params: list[Any] = []
        param_idx = 1

        if title is not None:
            updates.append(f"title = ${param_idx}")
            params.append(title)
            param_idx += 1
        if continuation_token is not None:
            updates.append(f"continuation_token = ${param_idx}")
            params.append(continuation_token)
            param_idx += 1
        if search_index_id is not None:
            updates.append(f"search_index_id = ${param_idx}")
            params.append(search_index_id)
            param_idx += 1
        if touch:
            updates.append(f"last_activity_at = ${param_idx}")
            params.append(datetime.now(timezone.utc))
            param_idx += 1

        if not updates:
            return await self.get_conversation(conversation_id) is not None

        params.append(conversation_id)
        async with self.connection() as conn:
            result = await conn.execute(
                f"UPDATE conversations SET {', '.join(updates)} WHERE id = ${param_idx}",
                *params,
            )
        return result != "UPDATE 0"

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation, its messages and the file entries it introduced."""
        async with self.connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM file_citation_index WHERE conversation_id = $1",
                    conversation_id,
                )
                await conn.execute(
                    "DELETE FROM messages WHERE conversation_id = $1", conversation_id
                )
                await conn.execute(
                    "DELETE FROM conversations WHERE id = $1", conversation_id
                )

    def _row_to_conversation(self, row: asyncpg.Record) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            continuation_token=row["continuation_token"],
            search_index_id=row["search_index_id"],
            created_at=row["created_at"],
            last_activity_at=row["last_activity_at"],
        )

    # ============= Message Operations =============

    async def create_message(
        self, conversation_id: str, role: str, content: str = "", **fields: Any
    ) -> Message:
        """Create a new message in a conversation."""
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,  # type: ignore
            content=content,
            created_at=datetime.now(timezone.utc),
            **fields,
        )
        try:
            async with self.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO messages
                    (id, conversation_id, role, content, status, file_ids, uploaded_files,
                     provider_response_id, reasoning_summary, citations, model,
                     reasoning_effort, web_search_enabled, timezone, error_detail, reply_to, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
                    """,
                    message.id,
                    message.conversation_id,
                    message.role,
                    message.content,
                    message.status.value if message.status else None,
                    message.file_ids,
                    _dump_column("uploaded_files", message.uploaded_files),
                    message.provider_response_id,
                    message.reasoning_summary,
                    _dump_column("citations", message.citations),
                    message.model,
                    message.reasoning_effort,
                    message.web_search_enabled,
                    message.timezone,
                    message.error_detail,
                    message.reply_to,
                    message.created_at,
                )
        except asyncpg.UniqueViolationError as e:
            raise TurnInProgressError(
                f"Conversation {conversation_id} already has a typing message"
            ) from e
        return message

    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM messages WHERE id = $1", message_id)
        if not row:
            return None
        return self._row_to_message(row)

    async def patch_message(self, message_id: str, **fields: Any) -> Message | None:
        """Overwrite message fields. Returns None if the row is gone."""
        unknown = set(fields) - _MESSAGE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown message fields: {sorted(unknown)}")

        updates = []
        params: list[Any] = []
        for param_idx, (column, value) in enumerate(fields.items(), start=1):
            updates.append(f"{column} = ${param_idx}")
            params.append(_dump_column(column, value))
        params.append(message_id)

        async with self.connection() as conn:
            row = await conn.fetchrow(
                f"UPDATE messages SET {', '.join(updates)} WHERE id = ${len(params)} RETURNING *",
                *params,
            )
        if not row:
            return None
        return self._row_to_message(row)

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """Get all messages for a conversation in insertion order."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE conversation_id = $1
                ORDER BY seq ASC
                """,
                conversation_id,
            )
        return [self._row_to_message(row) for row in rows]

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Get the most recent messages, oldest first."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE conversation_id = $1
                ORDER BY seq DESC
                LIMIT $2
                """,
                conversation_id,
                limit,
            )
        return [self._row_to_message(row) for row in reversed(rows)]

    async def get_first_message(self, conversation_id: str) -> Message | None:
        """Get the oldest message in a conversation."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM messages WHERE conversation_id = $1 ORDER BY seq ASC LIMIT 1",
                conversation_id,
            )
        return self._row_to_message(row) if row else None

    async def get_last_user_message(self, conversation_id: str) -> Message | None:
        """Get the most recent user message in a conversation."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM messages
                WHERE conversation_id = $1 AND role = 'user'
                ORDER BY seq DESC
                LIMIT 1
                """,
                conversation_id,
            )
        return self._row_to_message(row) if row else None

    async def has_typing_message(self, conversation_id: str) -> bool:
        """Check whether any message in the conversation is still typing."""
        async with self.connection() as conn:
            return await conn.fetchval(
                "SELECT EXISTS(SELECT 1 FROM messages WHERE conversation_id = $1 AND status = 'typing')",
                conversation_id,
            )

    async def get_typing_message(self, conversation_id: str) -> Message | None:
        """Get the conversation's in-progress assistant message, if any."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM messages WHERE conversation_id = $1 AND status = 'typing' LIMIT 1",
                conversation_id,
            )
            return self._row_to_message(row) if row else None

    def _row_to_message(self, row: asyncpg.Record) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],  # type: ignore
            content=row["content"],
            status=row["status"],
            file_ids=list(row["file_ids"]) if row["file_ids"] else [],
            uploaded_files=_load_json(row["uploaded_files"]) or [],
            provider_response_id=row["provider_response_id"],
            reasoning_summary=row["reasoning_summary"],
            citations=_load_json(row["citations"]),
            model=row["model"],
            reasoning_effort=row["reasoning_effort"],
            web_search_enabled=row["web_search_enabled"],
            timezone=row["timezone"],
            error_detail=row["error_detail"],
            truncated=row["truncated"],
            reply_to=row["reply_to"],
            created_at=row["created_at"],
        )

    # ============= File Citation Index =============

    async def get_file_entry(self, provider_file_id: str) -> FileCitationEntry | None:
        """Look up a file citation entry by provider file ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM file_citation_index WHERE provider_file_id = $1",
                provider_file_id,
            )
        if not row:
            return None
        return FileCitationEntry(**dict(row))

    async def insert_file_entry(self, entry: FileCitationEntry) -> bool:
        """Insert an entry unless one already exists. Returns True if inserted."""
        async with self.connection() as conn:
            result = await conn.execute(
                """
                INSERT INTO file_citation_index
                (provider_file_id, file_name, uploaded_by, blob_ref, conversation_id,
                 message_id, mime_type, size, uploaded_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (provider_file_id) DO NOTHING
                """,
                entry.provider_file_id,
                entry.file_name,
                entry.uploaded_by,
                entry.blob_ref,
                entry.conversation_id,
                entry.message_id,
                entry.mime_type,
                entry.size,
                entry.uploaded_at,
            )
        return result == "INSERT 0 1"
