"""Unit tests for the SSE event streams."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatmodels import MessageStatus
from chatstream.services.append_engine import MessageAppendEngine
from chatstream.sse import EventType, conversation_event_stream, user_event_stream


def connected_request():
    request = MagicMock()
    request.is_disconnected = AsyncMock(return_value=False)
    return request


def parse(chunk: str) -> tuple[str, dict]:
    fields = dict(line.split(": ", 1) for line in chunk.strip().splitlines())
    return fields["event"], json.loads(fields["data"])


class TestUserEventStream:
    """Test the per-user conversation feed."""

    @pytest.mark.asyncio
    async def test_completed_reply_reaches_user_feed(self, store, bus):
        """Test that finishing a reply tells the owner's feed the conversation changed."""
        conversation = await store.create_conversation("alice")
        engine = MessageAppendEngine(store, bus=bus)
        message_id = await engine.create(conversation.id)
        await engine.append_content(message_id, "Hi")
        stream = user_event_stream("alice", connected_request(), bus=bus)

        event, data = parse(await anext(stream))
        assert event == "connected"
        assert data["user_id"] == "alice"

        await engine.complete(message_id)

        event, data = parse(await anext(stream))
        assert event == EventType.CONVERSATION_UPDATED.value
        assert data == {"conversation_id": conversation.id}
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_closing_unsubscribes(self, bus):
        stream = user_event_stream("alice", connected_request(), bus=bus)
        await anext(stream)
        assert len(bus._user_queues["alice"]) == 1

        await stream.aclose()

        assert "alice" not in bus._user_queues

    @pytest.mark.asyncio
    async def test_heartbeat_when_idle(self, bus):
        stream = user_event_stream("alice", connected_request(), heartbeat_interval=0.01, bus=bus)
        await anext(stream)

        event, _ = parse(await anext(stream))

        assert event == EventType.HEARTBEAT.value
        await stream.aclose()


class TestConversationEventStream:
    """Test the per-conversation message feed."""

    @pytest.mark.asyncio
    async def test_message_updates(self, store, bus):
        conversation = await store.create_conversation("alice")
        stream = conversation_event_stream(conversation.id, connected_request(), bus=bus)
        await anext(stream)

        message_id = await MessageAppendEngine(store, bus=bus).create(conversation.id)

        event, data = parse(await anext(stream))
        assert event == EventType.MESSAGE_UPDATED.value
        assert data == {
            "message_id": message_id,
            "status": MessageStatus.TYPING.value,
            "content_length": 0,
        }
        await stream.aclose()
