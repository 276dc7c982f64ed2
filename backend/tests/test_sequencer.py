"""Unit tests for conversation sequencing and the store's typing constraint."""

from datetime import datetime, timezone

import pytest

from chatmodels import MessageStatus
from chatstream.errors import TurnInProgressError
from chatstream.services.sequencer import ConversationSequencer


class TestConversationSequencer:
    """Test turn ordering rules."""

    @pytest.mark.asyncio
    async def test_is_first_turn(self, store):
        """Test that only an empty conversation is on its first turn."""
        conversation = await store.create_conversation("user-1")
        sequencer = ConversationSequencer(store)

        assert await sequencer.is_first_turn(conversation.id) is True
        await sequencer.record_user_message(conversation.id, "hello")
        assert await sequencer.is_first_turn(conversation.id) is False

    @pytest.mark.asyncio
    async def test_ensure_idle_rejects_typing_conversation(self, store):
        """Test that a typing message blocks a new turn."""
        conversation = await store.create_conversation("user-1")
        await store.create_message(conversation.id, "assistant", status=MessageStatus.TYPING)
        sequencer = ConversationSequencer(store)

        with pytest.raises(TurnInProgressError):
            await sequencer.ensure_idle(conversation.id)

    @pytest.mark.asyncio
    async def test_store_rejects_second_typing_message(self, store):
        """Test that the store never holds two typing messages in one conversation."""
        conversation = await store.create_conversation("user-1")
        await store.create_message(conversation.id, "assistant", status=MessageStatus.TYPING)

        with pytest.raises(TurnInProgressError):
            await store.create_message(conversation.id, "assistant", status=MessageStatus.TYPING)

        messages = await store.get_messages(conversation.id)
        assert len(messages) == 1

    @pytest.mark.asyncio
    async def test_record_user_message_bumps_activity(self, store):
        """Test that storing a user message updates recency ordering."""
        older = await store.create_conversation("user-1")
        store._conversations[older.id] = older.model_copy(
            update={"last_activity_at": datetime(2020, 1, 1, tzinfo=timezone.utc)}
        )
        newer = await store.create_conversation("user-1")
        assert [c.id for c in await store.list_conversations("user-1")] == [newer.id, older.id]
        sequencer = ConversationSequencer(store)

        await sequencer.record_user_message(older.id, "bump me")

        listed = await store.list_conversations("user-1")
        assert [c.id for c in listed] == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_record_continuation(self, store):
        """Test storing and skipping continuation tokens."""
        conversation = await store.create_conversation("user-1")
        sequencer = ConversationSequencer(store)

        assert await sequencer.record_continuation(conversation.id, None) is False
        assert await sequencer.record_continuation(conversation.id, "resp_1") is True
        assert await sequencer.record_continuation("missing", "resp_2") is False

        updated = await store.get_conversation(conversation.id)
        assert updated.continuation_token == "resp_1"
