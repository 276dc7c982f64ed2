"""Conversation-level turn sequencing."""

import logging

from chatmodels import Message
from chatstream.db.base import DocumentStore
from chatstream.errors import TurnInProgressError
from chatstream.sse import EventBus, notify_conversation_updated, notify_message_updated

logger = logging.getLogger(__name__)


class ConversationSequencer:
    """Guards turn ordering within a conversation.

    At most one assistant message per conversation may be ``typing``. The
    check here rejects a new turn early; the store's one-typing constraint
    catches the race between two submissions that both pass it.
    """

    def __init__(self, store: DocumentStore, bus: EventBus | None = None):
        self.store = store
        self.bus = bus

    async def is_first_turn(self, conversation_id: str) -> bool:
        """True if the conversation has no messages yet."""
        return await self.store.get_first_message(conversation_id) is None

    async def ensure_idle(self, conversation_id: str) -> None:
        if await self.store.has_typing_message(conversation_id):
            raise TurnInProgressError(
                f"Conversation {conversation_id} already has a response in progress"
            )

    async def record_user_message(self, conversation_id: str, content: str, **fields) -> Message:
        """Insert a user message and bump the conversation's activity time."""
        message = await self.store.create_message(conversation_id, "user", content, **fields)
        await self.store.update_conversation(conversation_id, touch=True)
        await notify_message_updated(message, self.bus)
        conversation = await self.store.get_conversation(conversation_id)
        if conversation:
            await notify_conversation_updated(conversation.user_id, conversation_id, self.bus)
        return message

    async def record_continuation(self, conversation_id: str, token: str | None) -> bool:
        """Store the continuation token left by a successful turn."""
        if not token:
            return False
        updated = await self.store.update_conversation(conversation_id, continuation_token=token)
        if not updated:
            logger.warning(
                f"Conversation {conversation_id} not found when saving continuation token"
            )
        return updated
