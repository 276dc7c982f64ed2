"""Turn submission - stores the user's message and schedules the reply."""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import BaseModel, Field

from chatmodels import Conversation, FileState, Message, ReasoningEffort, SelectedFile
from chatstream.config import settings
from chatstream.db.base import DocumentStore
from chatstream.errors import AccessDenied, ConversationNotFound, InvalidTurnRequest
from chatstream.services.blob_store import LocalBlobStore
from chatstream.services.file_index import FileCitationIndex
from chatstream.services.model_registry import get_model
from chatstream.services.provider import ProviderCredentials
from chatstream.services.sequencer import ConversationSequencer
from chatstream.services.uploads import FileIngestor
from chatstream.sse import EventBus

logger = logging.getLogger(__name__)


class TurnSubmission(BaseModel):
    """A user turn as submitted by the client."""

    content: str = Field("", description="Message text")
    files: list[SelectedFile] = Field(default_factory=list, description="Attached files")
    model: str = Field(default_factory=lambda: settings.default_model, description="Model ID")
    web_search_enabled: bool = Field(False, description="Enable the web search tool")
    reasoning_effort: ReasoningEffort | None = Field(None, description="Reasoning effort level")
    timezone: str | None = Field(None, description="Sender's IANA timezone")


class TurnScheduler(Protocol):
    """Schedules work outside the submitting request."""

    async def schedule_turn(
        self, conversation_id: str, user_message_id: str, credentials: ProviderCredentials
    ) -> str: ...

    async def schedule_title(
        self, conversation_id: str, credentials: ProviderCredentials, delay_seconds: float
    ) -> str: ...


@dataclass
class SubmitResult:
    """Result of submitting a turn."""

    message: Message
    file_errors: list[str] = field(default_factory=list)
    title_scheduled: bool = False


async def get_owned_conversation(
    store: DocumentStore, conversation_id: str, user_id: str
) -> Conversation:
    conversation = await store.get_conversation(conversation_id)
    if not conversation:
        raise ConversationNotFound(f"Conversation {conversation_id} not found")
    if conversation.user_id != user_id:
        raise AccessDenied("Conversation does not belong to user")
    return conversation


def validate_submission(submission: TurnSubmission) -> None:
    model = get_model(submission.model)
    if not model:
        raise InvalidTurnRequest(f"Unsupported model: {submission.model}")
    if submission.reasoning_effort and not model.capabilities.thinking:
        raise InvalidTurnRequest(f"Model {model.id} does not support reasoning effort")
    if submission.web_search_enabled and not model.capabilities.web_search:
        raise InvalidTurnRequest(f"Model {model.id} does not support web search")
    if submission.files and not model.capabilities.file_search:
        raise InvalidTurnRequest(f"Model {model.id} does not support file attachments")
    if len(submission.files) > settings.max_files:
        raise InvalidTurnRequest(
            f"Too many files. Maximum allowed: {settings.max_files}, received: {len(submission.files)}"
        )
    pending = [f.file_name for f in submission.files if f.state != FileState.UPLOADED]
    if pending:
        raise InvalidTurnRequest(f"Files not uploaded yet: {', '.join(pending)}")
    if not submission.content.strip() and not submission.files:
        raise InvalidTurnRequest("Message must have text or at least one file")


class ChatHandler:
    """Accepts user turns and hands them to the scheduler."""

    def __init__(
        self,
        store: DocumentStore,
        scheduler: TurnScheduler,
        blobs: LocalBlobStore | None = None,
        ingestor: FileIngestor | None = None,
        bus: EventBus | None = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.blobs = blobs or LocalBlobStore()
        self.ingestor = ingestor or FileIngestor(store, self.blobs)
        self.sequencer = ConversationSequencer(store, bus=bus)
        self.file_index = FileCitationIndex(store)

    async def submit_turn(
        self,
        user_id: str,
        conversation_id: str,
        submission: TurnSubmission,
        credentials: ProviderCredentials,
    ) -> SubmitResult:
        """Store a user message and schedule exactly one turn for it.

        On the first turn with text, a title job is scheduled as well.
        """
        conversation = await get_owned_conversation(self.store, conversation_id, user_id)
        validate_submission(submission)
        await self.sequencer.ensure_idle(conversation_id)

        ingested = await self.ingestor.ingest(
            conversation, submission.files, credentials.openai_api_key
        )
        is_first_turn = await self.sequencer.is_first_turn(conversation_id)

        message = await self.sequencer.record_user_message(
            conversation_id,
            submission.content,
            file_ids=ingested.file_ids,
            uploaded_files=ingested.files,
            model=submission.model,
            reasoning_effort=submission.reasoning_effort,
            web_search_enabled=submission.web_search_enabled,
            timezone=submission.timezone,
        )

        for uploaded in ingested.files:
            await self.file_index.record(
                uploaded.provider_file_id,
                uploaded.file_name,
                user_id,
                uploaded.blob_ref,
                conversation_id=conversation_id,
                message_id=message.id,
                mime_type=uploaded.mime_type,
                size=uploaded.size,
            )

        await self.scheduler.schedule_turn(conversation_id, message.id, credentials)

        title_scheduled = False
        if is_first_turn and submission.content.strip():
            await self.scheduler.schedule_title(
                conversation_id, credentials, settings.title_delay_seconds
            )
            title_scheduled = True

        logger.info(
            f"Turn submitted: conversation={conversation_id}, message={message.id}, "
            f"files={len(ingested.files)}, file_errors={len(ingested.errors)}"
        )
        return SubmitResult(
            message=message, file_errors=ingested.errors, title_scheduled=title_scheduled
        )

    async def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        """Delete a conversation, its messages and the file index entries it introduced."""
        await get_owned_conversation(self.store, conversation_id, user_id)
        await self.store.delete_conversation(conversation_id)
        logger.info(f"Deleted conversation {conversation_id}")

    async def get_model_settings(self, user_id: str, conversation_id: str) -> dict:
        """Model settings of the latest user turn, for restoring the client's picker."""
        await get_owned_conversation(self.store, conversation_id, user_id)
        last = await self.store.get_last_user_message(conversation_id)
        if not last:
            return {"model": None, "reasoning_effort": None, "web_search_enabled": None}
        return {
            "model": last.model,
            "reasoning_effort": last.reasoning_effort,
            "web_search_enabled": last.web_search_enabled,
        }
