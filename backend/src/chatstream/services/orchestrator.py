"""Runs one turn: a single upstream call streamed into one assistant message.

A turn moves through preparing, streaming and one of two finalizing states.
Whatever happens, it ends with the assistant message either ``completed``
with non-empty content or ``error`` with a user-presentable detail.
"""

import logging
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass, field

from chatmodels import Conversation, Message, MessageStatus
from chatstream.config import settings
from chatstream.db.base import DocumentStore
from chatstream.errors import TurnInProgressError
from chatstream.services.append_engine import MessageAppendEngine
from chatstream.services.citations import CitationAccumulator
from chatstream.services.events import (
    Annotations,
    Completed,
    ContentDelta,
    Created,
    ProviderEvent,
    ReasoningDelta,
    ReasoningDone,
    StreamFailed,
)
from chatstream.services.model_registry import (
    DEFAULT_REASONING_EFFORT,
    ProviderKind,
    SupportedModel,
    render_instructions,
    resolve_model,
)
from chatstream.services.provider import (
    Provider,
    ProviderCredentials,
    ProviderRequest,
    ProviderStreamError,
    build_provider,
    describe_provider_error,
)
from chatstream.services.sequencer import ConversationSequencer
from chatstream.sse import EventBus

logger = logging.getLogger(__name__)

NO_CONTENT_MESSAGE = "No content was generated in the response."
INCOMPLETE_STREAM_MESSAGE = "The response ended unexpectedly. Please try again."
INTERRUPTED_MESSAGE = "The response was interrupted. Please try again."

ProviderFactory = Callable[[SupportedModel, ProviderCredentials], Provider]


@dataclass
class _StreamState:
    """What one stream has produced so far."""

    message_id: str | None = None
    content: str = ""
    reasoning: str = ""
    reasoning_part_open: bool = False
    response_id: str | None = None
    continuation_token: str | None = None
    completed: bool = False
    failure: StreamFailed | None = None
    citations: CitationAccumulator = field(default_factory=CitationAccumulator)


def build_input_text(message: Message) -> str:
    """Text sent upstream for the user's message."""
    parts = []
    if message.content.strip():
        parts.append(message.content)
    if message.file_ids:
        parts.append(f"[{len(message.file_ids)} file(s) attached]")
    return "\n".join(parts)


def build_tools(message: Message, conversation: Conversation) -> list[dict]:
    tools: list[dict] = []
    if message.web_search_enabled:
        tools.append({"type": "web_search_preview"})
    if conversation.search_index_id:
        tools.append(
            {
                "type": "file_search",
                "vector_store_ids": [conversation.search_index_id],
                "max_num_results": settings.file_search_max_results,
            }
        )
    return tools


class TurnOrchestrator:
    """Drives a turn from the latest user message to a finalized reply."""

    def __init__(
        self,
        store: DocumentStore,
        engine: MessageAppendEngine | None = None,
        sequencer: ConversationSequencer | None = None,
        provider_factory: ProviderFactory = build_provider,
        bus: EventBus | None = None,
    ):
        self.store = store
        self.engine = engine or MessageAppendEngine(store, bus=bus)
        self.sequencer = sequencer or ConversationSequencer(store, bus=bus)
        self.provider_factory = provider_factory

    async def run_turn(
        self, conversation_id: str, credentials: ProviderCredentials
    ) -> str | None:
        """Run one turn and return the assistant message ID, if one was stored."""
        conversation = await self.store.get_conversation(conversation_id)
        if not conversation:
            logger.warning(f"Conversation {conversation_id} not found, skipping turn")
            return None

        user_message = await self.store.get_last_user_message(conversation_id)
        if not user_message:
            logger.error(f"No user message found in conversation {conversation_id}")
            return None

        stale_id = await self._fail_interrupted_reply(conversation_id, user_message)
        if stale_id:
            return stale_id

        await self.sequencer.ensure_idle(conversation_id)

        state = _StreamState()
        try:
            return await self._run(conversation, user_message, credentials, state)
        except BaseException:
            # Cancellation or a crash while finalizing must not leave the reply typing
            if state.message_id:
                await self._fail_if_typing(state.message_id, INTERRUPTED_MESSAGE)
            raise

    async def _run(
        self,
        conversation: Conversation,
        user_message: Message,
        credentials: ProviderCredentials,
        state: _StreamState,
    ) -> str | None:
        conversation_id = conversation.id
        model = resolve_model(user_message.model)
        try:
            # Preparing
            input_text = build_input_text(user_message)
            if not input_text:
                raise ProviderStreamError("No content found in user message")
            provider = self.provider_factory(model, credentials)
            request = ProviderRequest(
                model=model,
                input_text=input_text,
                instructions=render_instructions(model, user_message.timezone),
                continuation_token=conversation.continuation_token,
                tools=build_tools(user_message, conversation),
                reasoning_effort=(
                    user_message.reasoning_effort or DEFAULT_REASONING_EFFORT
                    if model.capabilities.thinking
                    else None
                ),
            )
            if model.provider == ProviderKind.OPENROUTER:
                request.continuation_token = None
                request.history = await self._history(conversation_id, user_message)

            state.message_id = await self.engine.create(
                conversation_id,
                model=model.id,
                reasoning_effort=request.reasoning_effort,
                web_search_enabled=user_message.web_search_enabled,
                reply_to=user_message.id,
            )
            logger.info(
                f"Turn started: conversation={conversation_id}, "
                f"message={state.message_id}, model={model.id}"
            )

            # Streaming
            await self._consume(provider, request, state)
        except TurnInProgressError:
            raise
        except Exception as e:
            detail = describe_provider_error(e, model.provider)
            logger.error(f"Turn failed for conversation {conversation_id}: {e}")
            return await self._finalize_error(conversation_id, state.message_id, detail)

        # Finalizing
        message_id = state.message_id
        if state.failure is not None:
            error = ProviderStreamError(state.failure.message, state.failure.code)
            logger.error(f"Provider reported failure for message {message_id}: {error}")
            return await self._finalize_error(
                conversation_id, message_id, describe_provider_error(error, model.provider)
            )
        if not state.completed:
            logger.error(f"Stream for message {message_id} ended without completion")
            return await self._finalize_error(conversation_id, message_id, INCOMPLETE_STREAM_MESSAGE)
        if not state.content.strip():
            logger.error(f"No content generated for message {message_id}")
            return await self._finalize_error(conversation_id, message_id, NO_CONTENT_MESSAGE)

        completed = await self.engine.complete(
            message_id,
            provider_response_id=state.response_id,
            reasoning_summary=state.reasoning.strip() or None,
            citations=state.citations.citations,
        )
        if completed is None:
            return message_id
        await self.sequencer.record_continuation(conversation_id, state.continuation_token)
        logger.info(
            f"Turn completed: message={message_id}, chars={len(state.content)}, "
            f"citations={len(state.citations)}"
        )
        return message_id

    async def _consume(
        self, provider: Provider, request: ProviderRequest, state: _StreamState
    ) -> None:
        """Apply stream events to the message in arrival order.

        A failure while handling one event is logged and skipped. Failures of
        the stream itself propagate. The stream is closed as soon as the turn
        stops reading it.
        """
        async with aclosing(provider.stream(request)) as events:
            async for event in events:
                try:
                    await self._apply(event, state, state.message_id)
                except Exception:
                    logger.exception(
                        f"Error handling {type(event).__name__} for message {state.message_id}"
                    )
                if state.completed or state.failure is not None:
                    break

    async def _apply(self, event: ProviderEvent, state: _StreamState, message_id: str) -> None:
        if isinstance(event, Created):
            state.response_id = event.response_id
        elif isinstance(event, ContentDelta):
            state.content += event.text
            await self.engine.append_content(message_id, event.text)
        elif isinstance(event, ReasoningDelta):
            state.reasoning_part_open = True
            state.reasoning += event.text
            await self.engine.append_reasoning(message_id, event.text)
        elif isinstance(event, ReasoningDone):
            # Deltas already carried the text; only separate it from the next part
            piece = "\n\n" if state.reasoning_part_open else event.text
            state.reasoning_part_open = False
            state.reasoning += piece
            await self.engine.append_reasoning(message_id, piece)
        elif isinstance(event, Annotations):
            state.citations.extend(event.annotations)
        elif isinstance(event, Completed):
            state.citations.extend(event.annotations)
            state.response_id = event.response_id or state.response_id
            state.continuation_token = event.continuation_token
            state.completed = True
        elif isinstance(event, StreamFailed):
            state.failure = event

    async def _history(self, conversation_id: str, current: Message) -> list[dict[str, str]]:
        """Recent prior exchanges for providers that cannot continue a response."""
        recent = await self.store.get_recent_messages(conversation_id, settings.history_window)
        history = []
        for message in recent:
            if message.id == current.id:
                continue
            if message.role == "assistant" and (
                message.status != MessageStatus.COMPLETED or not message.content
            ):
                continue
            history.append({"role": message.role, "content": message.content})
        return history

    async def _finalize_error(
        self, conversation_id: str, message_id: str | None, detail: str
    ) -> str | None:
        """Fail the placeholder, or store a new error message if there was none."""
        if message_id:
            await self.engine.fail(message_id, detail)
            return message_id
        return await self.engine.create_error(conversation_id, detail)

    async def _fail_if_typing(self, message_id: str, detail: str) -> None:
        message = await self.store.get_message(message_id)
        if message and message.status == MessageStatus.TYPING:
            logger.warning(f"Turn interrupted for message {message_id}")
            await self.engine.fail(message_id, detail)

    async def _fail_interrupted_reply(
        self, conversation_id: str, user_message: Message
    ) -> str | None:
        """Fail a reply to ``user_message`` left typing by an earlier attempt.

        A rerun of the same turn finds its own placeholder still typing after
        the process died mid-stream. The provider call is not replayed.
        """
        typing = await self.store.get_typing_message(conversation_id)
        if not typing or typing.reply_to != user_message.id:
            return None
        logger.warning(
            f"Found interrupted reply {typing.id} to message {user_message.id}, marking as error"
        )
        await self.engine.fail(typing.id, INTERRUPTED_MESSAGE)
        return typing.id
