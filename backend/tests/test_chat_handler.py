"""Unit tests for turn submission and title generation."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatmodels import FileState, MessageStatus, SelectedFile
from chatstream.errors import (
    AccessDenied,
    ConversationNotFound,
    InvalidTurnRequest,
    TurnInProgressError,
)
from chatstream.services.chat_handler import ChatHandler, TurnSubmission
from chatstream.services.file_index import FileCitationIndex
from chatstream.services.provider import ProviderCredentials
from chatstream.services.titles import build_title_prompt, generate_title
from chatstream.services.uploads import FileIngestor

from conftest import openai_client_double

CREDENTIALS = ProviderCredentials(openai_api_key="sk-test")


def handler_for(store, scheduler, blobs):
    client = openai_client_double()
    client.files.create = AsyncMock(return_value=SimpleNamespace(id="file-1"))
    client.vector_stores.create = AsyncMock(return_value=SimpleNamespace(id="vs_1"))
    client.vector_stores.files.create = AsyncMock()
    ingestor = FileIngestor(store, blobs, client_factory=lambda key: client)
    return ChatHandler(store, scheduler, blobs=blobs, ingestor=ingestor)


class TestChatHandler:
    """Test user turn submission."""

    @pytest.mark.asyncio
    async def test_first_turn_schedules_turn_and_title(self, store, scheduler, blobs):
        conversation = await store.create_conversation("alice")
        handler = handler_for(store, scheduler, blobs)

        result = await handler.submit_turn(
            "alice",
            conversation.id,
            TurnSubmission(content="Plan a trip to Lisbon", timezone="Europe/Lisbon"),
            CREDENTIALS,
        )

        assert result.message.role == "user"
        assert result.message.model == "gpt-4.1"
        assert result.message.timezone == "Europe/Lisbon"
        assert result.title_scheduled is True
        assert scheduler.turns == [(conversation.id, result.message.id)]
        assert scheduler.titles == [(conversation.id, 5.0)]

    @pytest.mark.asyncio
    async def test_later_turns_do_not_schedule_title(self, store, scheduler, blobs):
        conversation = await store.create_conversation("alice")
        handler = handler_for(store, scheduler, blobs)
        await handler.submit_turn("alice", conversation.id, TurnSubmission(content="One"), CREDENTIALS)
        await store.create_message(
            conversation.id, "assistant", "Reply", status=MessageStatus.COMPLETED
        )

        await handler.submit_turn("alice", conversation.id, TurnSubmission(content="Two"), CREDENTIALS)

        assert len(scheduler.turns) == 2
        assert len(scheduler.titles) == 1

    @pytest.mark.asyncio
    async def test_rejects_while_typing(self, store, scheduler, blobs):
        """Test that nothing is stored or scheduled while a reply is typing."""
        conversation = await store.create_conversation("alice")
        await store.create_message(conversation.id, "assistant", status=MessageStatus.TYPING)
        handler = handler_for(store, scheduler, blobs)

        with pytest.raises(TurnInProgressError):
            await handler.submit_turn("alice", conversation.id, TurnSubmission(content="Hi"), CREDENTIALS)

        assert scheduler.turns == []
        assert len(await store.get_messages(conversation.id)) == 1

    @pytest.mark.asyncio
    async def test_ownership_and_existence(self, store, scheduler, blobs):
        conversation = await store.create_conversation("alice")
        handler = handler_for(store, scheduler, blobs)

        with pytest.raises(AccessDenied):
            await handler.submit_turn("bob", conversation.id, TurnSubmission(content="Hi"), CREDENTIALS)
        with pytest.raises(ConversationNotFound):
            await handler.submit_turn("alice", "missing", TurnSubmission(content="Hi"), CREDENTIALS)

    @pytest.mark.asyncio
    async def test_invalid_submissions(self, store, scheduler, blobs):
        """Test validation of model, reasoning effort, file state and empty input."""
        conversation = await store.create_conversation("alice")
        handler = handler_for(store, scheduler, blobs)

        for submission in [
            TurnSubmission(content="Hi", model="gpt-2"),
            TurnSubmission(content="Hi", model="gpt-4.1", reasoning_effort="high"),
            TurnSubmission(content="Hi", model="o3", web_search_enabled=True),
            TurnSubmission(
                content="Hi",
                files=[SelectedFile(file_name="a.txt", state=FileState.UPLOADING)],
            ),
            TurnSubmission(content="   "),
        ]:
            with pytest.raises(InvalidTurnRequest):
                await handler.submit_turn("alice", conversation.id, submission, CREDENTIALS)

        assert scheduler.turns == []

    @pytest.mark.asyncio
    async def test_attached_files_are_indexed(self, store, scheduler, blobs):
        """Test that ingested files are recorded with the new message as provenance."""
        conversation = await store.create_conversation("alice")
        handler = handler_for(store, scheduler, blobs)
        blob_ref = await blobs.put("report.pdf", b"%PDF")

        result = await handler.submit_turn(
            "alice",
            conversation.id,
            TurnSubmission(
                content="",
                files=[SelectedFile(file_name="report.pdf", blob_ref=blob_ref, state=FileState.UPLOADED)],
            ),
            CREDENTIALS,
        )

        assert result.message.file_ids == ["file-1"]
        assert result.title_scheduled is False
        target = await FileCitationIndex(store).resolve_for_conversation(
            conversation.id, "file-1", "alice"
        )
        assert target == {"message_id": result.message.id, "file_name": "report.pdf"}

    @pytest.mark.asyncio
    async def test_model_settings_follow_latest_turn(self, store, scheduler, blobs):
        """Test that settings come from the most recent user message."""
        conversation = await store.create_conversation("alice")
        handler = handler_for(store, scheduler, blobs)

        assert await handler.get_model_settings("alice", conversation.id) == {
            "model": None,
            "reasoning_effort": None,
            "web_search_enabled": None,
        }

        await store.create_message(conversation.id, "user", "One", model="gpt-4.1")
        await store.create_message(
            conversation.id, "assistant", "Reply", status=MessageStatus.COMPLETED
        )
        await store.create_message(
            conversation.id,
            "user",
            "Two",
            model="o3",
            reasoning_effort="high",
            web_search_enabled=False,
        )

        assert await handler.get_model_settings("alice", conversation.id) == {
            "model": "o3",
            "reasoning_effort": "high",
            "web_search_enabled": False,
        }
        with pytest.raises(AccessDenied):
            await handler.get_model_settings("bob", conversation.id)

    @pytest.mark.asyncio
    async def test_delete_conversation(self, store, scheduler, blobs):
        conversation = await store.create_conversation("alice")
        handler = handler_for(store, scheduler, blobs)

        with pytest.raises(AccessDenied):
            await handler.delete_conversation("bob", conversation.id)
        await handler.delete_conversation("alice", conversation.id)

        assert await store.get_conversation(conversation.id) is None


class TestTitles:
    """Test conversation title generation."""

    def test_prompt_lists_attached_files(self):
        prompt = build_title_prompt("Review this", ["a.pdf", "b.txt"])

        assert 'First message: "Review this"\nFiles attached: [a.pdf, b.txt]' in prompt
        assert prompt.endswith("Title:")

    @pytest.mark.asyncio
    async def test_generate_title_stores_result(self, store):
        conversation = await store.create_conversation("alice")
        await store.create_message(conversation.id, "user", "Why is the sky blue?")
        client = openai_client_double()
        client.responses.create = AsyncMock(
            return_value=SimpleNamespace(output_text="  Sky Color Explained \n")
        )

        title = await generate_title(
            store, conversation.id, CREDENTIALS, client_factory=lambda key: client
        )

        assert title == "Sky Color Explained"
        stored = await store.get_conversation(conversation.id)
        assert stored.title == "Sky Color Explained"
        assert client.responses.create.call_args.kwargs["model"] == "gpt-4.1-nano"
        client.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_generate_title_failure_is_ignored(self, store):
        conversation = await store.create_conversation("alice")
        await store.create_message(conversation.id, "user", "Hello")
        client = openai_client_double()
        client.responses.create = AsyncMock(side_effect=RuntimeError("provider down"))

        title = await generate_title(
            store, conversation.id, CREDENTIALS, client_factory=lambda key: client
        )

        assert title is None
        stored = await store.get_conversation(conversation.id)
        assert stored.title == "New Chat"

    @pytest.mark.asyncio
    async def test_generate_title_needs_first_message(self, store):
        conversation = await store.create_conversation("alice")
        factory = MagicMock()

        assert await generate_title(store, conversation.id, CREDENTIALS, client_factory=factory) is None
        factory.assert_not_called()
