"""Lifecycle of a single assistant message.

An assistant message is created empty with status ``typing``, grows through
``append_content`` and ``append_reasoning``, and is finalized exactly once by
``complete`` or ``fail``. Every write is persisted immediately so subscribers
see the message grow.

A message that disappears mid-stream (conversation deleted) turns every later
call into a logged no-op.
"""

import logging

from chatmodels import Citation, Message, MessageStatus
from chatstream.config import settings
from chatstream.db.base import DocumentStore
from chatstream.sse import EventBus, notify_conversation_updated, notify_message_updated

logger = logging.getLogger(__name__)


class MessageAppendEngine:
    """Create, grow and finalize assistant messages."""

    def __init__(
        self,
        store: DocumentStore,
        max_content_size: int | None = None,
        bus: EventBus | None = None,
    ):
        self.store = store
        self.max_content_size = (
            max_content_size if max_content_size is not None else settings.max_message_size
        )
        self.bus = bus

    async def create(self, conversation_id: str, **fields) -> str:
        """Insert an empty typing assistant message and return its ID."""
        message = await self.store.create_message(
            conversation_id,
            "assistant",
            "",
            status=MessageStatus.TYPING,
            **fields,
        )
        await notify_message_updated(message, self.bus)
        return message.id

    async def create_error(
        self, conversation_id: str, error_detail: str, content: str = ""
    ) -> str | None:
        """Store a brand-new assistant message that is already in error.

        Used when a turn fails before its placeholder existed.
        """
        if not await self.store.get_conversation(conversation_id):
            logger.warning(
                f"Conversation {conversation_id} not found, dropping error message"
            )
            return None
        message = await self.store.create_message(
            conversation_id,
            "assistant",
            content,
            status=MessageStatus.ERROR,
            error_detail=error_detail,
        )
        await self._touch_conversation(conversation_id)
        await notify_message_updated(message, self.bus)
        return message.id

    async def append_content(self, message_id: str, delta: str) -> bool:
        """Append a content delta, truncating at the size cap.

        Returns True if any text was stored.
        """
        if not delta:
            return False
        message = await self.store.get_message(message_id)
        if not message:
            logger.warning(f"Message {message_id} not found for appending")
            return False

        remaining = self.max_content_size - len(message.content)
        if remaining <= 0:
            return False

        fields: dict = {}
        if len(delta) > remaining:
            logger.warning(
                f"Message {message_id} would exceed size limit "
                f"({len(message.content) + len(delta)} > {self.max_content_size}), truncating"
            )
            delta = delta[:remaining]
            fields["truncated"] = True

        patched = await self.store.patch_message(
            message_id, content=message.content + delta, **fields
        )
        if not patched:
            logger.warning(f"Message {message_id} disappeared while appending")
            return False
        await notify_message_updated(patched, self.bus)
        return True

    async def append_reasoning(self, message_id: str, delta: str) -> bool:
        """Append to the reasoning summary. No cap applies."""
        if not delta:
            return False
        message = await self.store.get_message(message_id)
        if not message:
            logger.warning(f"Message {message_id} not found for updating reasoning summary")
            return False

        patched = await self.store.patch_message(
            message_id, reasoning_summary=(message.reasoning_summary or "") + delta
        )
        if not patched:
            logger.warning(f"Message {message_id} disappeared while updating reasoning")
            return False
        await notify_message_updated(patched, self.bus)
        return True

    async def complete(
        self,
        message_id: str,
        provider_response_id: str | None = None,
        reasoning_summary: str | None = None,
        citations: list[Citation] | None = None,
    ) -> Message | None:
        """Mark the message completed and attach its final metadata."""
        message = await self.store.get_message(message_id)
        if not message:
            logger.warning(f"Message {message_id} not found for marking as complete")
            return None
        if message.is_final:
            logger.warning(f"Message {message_id} is already {message.status.value}")

        fields: dict = {"status": MessageStatus.COMPLETED}
        if provider_response_id is not None:
            fields["provider_response_id"] = provider_response_id
        if reasoning_summary is not None:
            fields["reasoning_summary"] = reasoning_summary
        if citations:
            fields["citations"] = citations

        patched = await self.store.patch_message(message_id, **fields)
        if not patched:
            logger.warning(f"Message {message_id} disappeared while completing")
            return None
        await self._touch_conversation(patched.conversation_id)
        await notify_message_updated(patched, self.bus)
        return patched

    async def fail(self, message_id: str, error_detail: str | None = None) -> Message | None:
        """Mark the message as errored with a user-presentable detail."""
        patched = await self.store.patch_message(
            message_id, status=MessageStatus.ERROR, error_detail=error_detail
        )
        if not patched:
            logger.warning(f"Message {message_id} not found for marking as error")
            return None
        await notify_message_updated(patched, self.bus)
        return patched

    async def _touch_conversation(self, conversation_id: str) -> None:
        conversation = await self.store.get_conversation(conversation_id)
        if not conversation:
            return
        await self.store.update_conversation(conversation_id, touch=True)
        await notify_conversation_updated(conversation.user_id, conversation_id, self.bus)
