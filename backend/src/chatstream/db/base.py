"""Storage interface shared by the PostgreSQL and in-memory backends."""

from typing import Any, Protocol

from chatmodels import Conversation, FileCitationEntry, Message


class DocumentStore(Protocol):
    """Durable conversations, messages and file citation entries.

    Every operation is a suspension point. ``patch_message`` is a
    single-document update and returns ``None`` when the message no longer
    exists. Creating a second ``typing`` message in one conversation raises
    ``TurnInProgressError``.
    """

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation: ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def list_conversations(self, user_id: str, limit: int = 50) -> list[Conversation]: ...

    async def update_conversation(
        self,
        conversation_id: str,
        title: str | None = None,
        continuation_token: str | None = None,
        search_index_id: str | None = None,
        touch: bool = False,
    ) -> bool: ...

    async def delete_conversation(self, conversation_id: str) -> None: ...

    async def create_message(
        self, conversation_id: str, role: str, content: str = "", **fields: Any
    ) -> Message: ...

    async def get_message(self, message_id: str) -> Message | None: ...

    async def patch_message(self, message_id: str, **fields: Any) -> Message | None: ...

    async def get_messages(self, conversation_id: str) -> list[Message]: ...

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[Message]: ...

    async def get_first_message(self, conversation_id: str) -> Message | None: ...

    async def get_last_user_message(self, conversation_id: str) -> Message | None: ...

    async def has_typing_message(self, conversation_id: str) -> bool: ...

    async def get_typing_message(self, conversation_id: str) -> Message | None: ...

    async def get_file_entry(self, provider_file_id: str) -> FileCitationEntry | None: ...

    async def insert_file_entry(self, entry: FileCitationEntry) -> bool: ...
