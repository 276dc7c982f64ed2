"""Server-Sent Events support for live conversation reads."""

import asyncio
import json
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncGenerator

from fastapi import Request
from fastapi.responses import StreamingResponse

from chatmodels import Message

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """SSE event types."""

    # Per-user events
    CONVERSATION_UPDATED = "conversation:updated"
    HEARTBEAT = "heartbeat"

    # Per-conversation events
    MESSAGE_UPDATED = "message:updated"


@dataclass
class SSEEvent:
    """An SSE event to send to clients."""

    event: str
    data: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    def encode(self) -> str:
        """Encode as SSE format."""
        lines = [
            f"id: {self.id}",
            f"event: {self.event}",
            f"data: {json.dumps(self.data)}",
            "",  # Empty line to end the event
        ]
        return "\n".join(lines) + "\n"


class EventBus:
    """Simple in-process event bus for SSE.

    For production scaling, this should be backed by Redis pub/sub.
    """

    def __init__(self):
        # user_id -> list of queues
        self._user_queues: dict[str, list[asyncio.Queue]] = defaultdict(list)
        # conversation_id -> list of queues
        self._conversation_queues: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def subscribe_user(self, user_id: str) -> asyncio.Queue:
        """Subscribe to events for a user."""
        queue: asyncio.Queue = asyncio.Queue()
        async with self._lock:
            self._user_queues[user_id].append(queue)
        logger.info(f"User {user_id} subscribed to events")
        return queue

    async def unsubscribe_user(self, user_id: str, queue: asyncio.Queue):
        """Unsubscribe from user events."""
        async with self._lock:
            if user_id in self._user_queues:
                try:
                    self._user_queues[user_id].remove(queue)
                    if not self._user_queues[user_id]:
                        del self._user_queues[user_id]
                except ValueError:
                    pass
        logger.info(f"User {user_id} unsubscribed from events")

    async def subscribe_conversation(self, conversation_id: str) -> asyncio.Queue:
        """Subscribe to message updates in a conversation."""
        queue: asyncio.Queue = asyncio.Queue()
        async with self._lock:
            self._conversation_queues[conversation_id].append(queue)
        logger.info(f"Subscribed to conversation {conversation_id}")
        return queue

    async def unsubscribe_conversation(self, conversation_id: str, queue: asyncio.Queue):
        """Unsubscribe from conversation events."""
        async with self._lock:
            if conversation_id in self._conversation_queues:
                try:
                    self._conversation_queues[conversation_id].remove(queue)
                    if not self._conversation_queues[conversation_id]:
                        del self._conversation_queues[conversation_id]
                except ValueError:
                    pass
        logger.info(f"Unsubscribed from conversation {conversation_id}")

    async def publish_to_user(self, user_id: str, event: SSEEvent):
        """Publish an event to all subscribers for a user."""
        async with self._lock:
            queues = self._user_queues.get(user_id, [])
            for queue in queues:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning(f"Queue full for user {user_id}, dropping event")

    async def publish_to_conversation(self, conversation_id: str, event: SSEEvent):
        """Publish an event to all subscribers of a conversation."""
        async with self._lock:
            queues = self._conversation_queues.get(conversation_id, [])
            for queue in queues:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning(
                        f"Queue full for conversation {conversation_id}, dropping event"
                    )


# Global event bus instance
event_bus = EventBus()


async def _queue_stream(
    queue: asyncio.Queue,
    connected: dict[str, Any],
    request: Request,
    heartbeat_interval: int,
) -> AsyncGenerator[str, None]:
    yield SSEEvent(
        event="connected",
        data={**connected, "timestamp": datetime.utcnow().isoformat()},
    ).encode()

    while True:
        if await request.is_disconnected():
            break

        try:
            event = await asyncio.wait_for(
                queue.get(),
                timeout=heartbeat_interval,
            )
            yield event.encode()
        except asyncio.TimeoutError:
            yield SSEEvent(
                event=EventType.HEARTBEAT.value,
                data={"timestamp": datetime.utcnow().isoformat()},
            ).encode()


async def user_event_stream(
    user_id: str,
    request: Request,
    heartbeat_interval: int = 30,
    bus: EventBus | None = None,
) -> AsyncGenerator[str, None]:
    """Generate SSE events about a user's conversations.

    Sends heartbeat pings every heartbeat_interval seconds to keep connection alive.
    """
    bus = bus or event_bus
    queue = await bus.subscribe_user(user_id)
    try:
        async for chunk in _queue_stream(queue, {"user_id": user_id}, request, heartbeat_interval):
            yield chunk
    finally:
        await bus.unsubscribe_user(user_id, queue)


async def conversation_event_stream(
    conversation_id: str,
    request: Request,
    heartbeat_interval: int = 30,
    bus: EventBus | None = None,
) -> AsyncGenerator[str, None]:
    """Generate SSE events for one conversation."""
    bus = bus or event_bus
    queue = await bus.subscribe_conversation(conversation_id)
    try:
        async for chunk in _queue_stream(
            queue, {"conversation_id": conversation_id}, request, heartbeat_interval
        ):
            yield chunk
    finally:
        await bus.unsubscribe_conversation(conversation_id, queue)


def create_sse_response(generator: AsyncGenerator[str, None]) -> StreamingResponse:
    """Create an SSE StreamingResponse."""
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


# Helper functions to publish events from other parts of the app


async def notify_message_updated(message: Message, bus: EventBus | None = None):
    """Tell conversation subscribers that a message changed."""
    await (bus or event_bus).publish_to_conversation(
        message.conversation_id,
        SSEEvent(
            event=EventType.MESSAGE_UPDATED.value,
            data={
                "message_id": message.id,
                "status": message.status.value if message.status else None,
                "content_length": len(message.content),
            },
        ),
    )


async def notify_conversation_updated(
    user_id: str, conversation_id: str, bus: EventBus | None = None, **extra
):
    """Tell a user that one of their conversations changed."""
    await (bus or event_bus).publish_to_user(
        user_id,
        SSEEvent(
            event=EventType.CONVERSATION_UPDATED.value,
            data={"conversation_id": conversation_id, **extra},
        ),
    )
