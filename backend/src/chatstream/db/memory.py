"""In-process store used for tests and local development."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

from chatmodels import Conversation, FileCitationEntry, Message, MessageStatus
from chatstream.errors import TurnInProgressError


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """Dict-backed implementation of ``DocumentStore``."""

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, Message] = {}
        # conversation_id -> message ids in insertion order
        self._by_conversation: dict[str, list[str]] = {}
        self._files: dict[str, FileCitationEntry] = {}
        self._lock = asyncio.Lock()

    # ============= Conversation Operations =============

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        now = _now()
        conversation = Conversation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title or "New Chat",
            created_at=now,
            last_activity_at=now,
        )
        async with self._lock:
            self._conversations[conversation.id] = conversation
            self._by_conversation[conversation.id] = []
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def list_conversations(self, user_id: str, limit: int = 50) -> list[Conversation]:
        owned = [c for c in self._conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: c.last_activity_at, reverse=True)
        return owned[:limit]

    async def update_conversation(
        self,
        conversation_id: str,
        title: str | None = None,
        continuation_token: str | None = None,
        search_index_id: str | None = None,
        touch: bool = False,
    ) -> bool:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if not conversation:
                return False
            update: dict[str, Any] = {}
            if title is not None:
                update["title"] = title
            if continuation_token is not None:
                update["continuation_token"] = continuation_token
            if search_index_id is not None:
                update["search_index_id"] = search_index_id
            if touch:
                update["last_activity_at"] = _now()
            self._conversations[conversation_id] = conversation.model_copy(update=update)
        return True

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._lock:
            for message_id in self._by_conversation.pop(conversation_id, []):
                self._messages.pop(message_id, None)
            for file_id, entry in list(self._files.items()):
                if entry.conversation_id == conversation_id:
                    del self._files[file_id]
            self._conversations.pop(conversation_id, None)

    # ============= Message Operations =============

    async def create_message(
        self, conversation_id: str, role: str, content: str = "", **fields: Any
    ) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,  # type: ignore
            content=content,
            created_at=_now(),
            **fields,
        )
        async with self._lock:
            ids = self._by_conversation.setdefault(conversation_id, [])
            if message.status == MessageStatus.TYPING and any(
                self._messages[i].status == MessageStatus.TYPING for i in ids
            ):
                raise TurnInProgressError(
                    f"Conversation {conversation_id} already has a typing message"
                )
            self._messages[message.id] = message
            ids.append(message.id)
        return message

    async def get_message(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    async def patch_message(self, message_id: str, **fields: Any) -> Message | None:
        async with self._lock:
            message = self._messages.get(message_id)
            if not message:
                return None
            patched = Message.model_validate({**message.model_dump(), **fields})
            self._messages[message_id] = patched
        return patched

    async def get_messages(self, conversation_id: str) -> list[Message]:
        return [self._messages[i] for i in self._by_conversation.get(conversation_id, [])]

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        messages = await self.get_messages(conversation_id)
        return messages[-limit:] if limit > 0 else []

    async def get_first_message(self, conversation_id: str) -> Message | None:
        messages = await self.get_messages(conversation_id)
        return messages[0] if messages else None

    async def get_last_user_message(self, conversation_id: str) -> Message | None:
        for message in reversed(await self.get_messages(conversation_id)):
            if message.role == "user":
                return message
        return None

    async def has_typing_message(self, conversation_id: str) -> bool:
        return await self.get_typing_message(conversation_id) is not None

    async def get_typing_message(self, conversation_id: str) -> Message | None:
        for message in await self.get_messages(conversation_id):
            if message.status == MessageStatus.TYPING:
                return message
        return None

    # ============= File Citation Index =============

    async def get_file_entry(self, provider_file_id: str) -> FileCitationEntry | None:
        return self._files.get(provider_file_id)

    async def insert_file_entry(self, entry: FileCitationEntry) -> bool:
        async with self._lock:
            if entry.provider_file_id in self._files:
                return False
            self._files[entry.provider_file_id] = entry
        return True
