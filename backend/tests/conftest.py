"""Shared fixtures for chatstream tests."""

from unittest.mock import MagicMock

import pytest

from chatstream.db.memory import InMemoryStore
from chatstream.services.blob_store import LocalBlobStore
from chatstream.sse import EventBus


class FakeProvider:
    """Replays a fixed list of events, optionally raising afterwards."""

    def __init__(self, events, error: BaseException | None = None, kind=None):
        self.events = list(events)
        self.error = error
        self.kind = kind
        self.requests = []

    async def stream(self, request):
        self.requests.append(request)
        for event in self.events:
            yield event
        if self.error:
            raise self.error


def openai_client_double() -> MagicMock:
    """OpenAI client double usable as an async context manager."""
    client = MagicMock()
    client.__aenter__.return_value = client
    client.__aexit__.return_value = False
    return client


class RecordingScheduler:
    """Records scheduled jobs instead of enqueueing them."""

    def __init__(self):
        self.turns: list[tuple[str, str]] = []
        self.titles: list[tuple[str, float]] = []

    async def schedule_turn(self, conversation_id, user_message_id, credentials):
        self.turns.append((conversation_id, user_message_id))
        return f"turn-{user_message_id}"

    async def schedule_title(self, conversation_id, credentials, delay_seconds):
        self.titles.append((conversation_id, delay_seconds))
        return f"title-{conversation_id}"


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(root=tmp_path / "blobs")


@pytest.fixture
def scheduler():
    return RecordingScheduler()
