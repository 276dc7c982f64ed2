"""Upstream text-generation providers.

Both adapters yield :mod:`chatstream.services.events` objects. Raw SDK
payloads never leave this module.
"""

import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI

from chatstream.config import settings
from chatstream.errors import ChatStreamError, MissingCredentialError
from chatstream.services.events import (
    Annotation,
    Annotations,
    Completed,
    ContentDelta,
    Created,
    FileAnnotation,
    ProviderEvent,
    ReasoningDelta,
    ReasoningDone,
    StreamFailed,
    UrlAnnotation,
)
from chatstream.services.model_registry import ProviderKind, SupportedModel

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."
INVALID_KEY_MESSAGE = "Invalid API key. Please check your API key in Settings."
QUOTA_MESSAGE = "API quota exceeded. Please check your OpenAI account balance."
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a moment."
MODEL_UNAVAILABLE_MESSAGE = "Selected model is not available. Please try a different model."
INVALID_OPENROUTER_KEY_MESSAGE = (
    "Invalid OpenRouter API key. Please check your OpenRouter API key in Settings."
)
TIMEOUT_MESSAGE = "The request timed out. Please try again."

_CODE_MESSAGES = {
    "invalid_api_key": INVALID_KEY_MESSAGE,
    "insufficient_quota": QUOTA_MESSAGE,
    "rate_limit_exceeded": RATE_LIMIT_MESSAGE,
    "model_not_found": MODEL_UNAVAILABLE_MESSAGE,
}


class ProviderStreamError(ChatStreamError):
    """The provider reported a failure, or the stream ended without completing."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ProviderCredentials:
    """Per-request provider keys supplied by the requester."""

    openai_api_key: str | None = None
    openrouter_api_key: str | None = None


@dataclass
class ProviderRequest:
    """Everything needed to open one upstream generation call."""

    model: SupportedModel
    input_text: str
    instructions: str
    continuation_token: str | None = None
    tools: list[dict[str, Any]] = field(default_factory=list)
    reasoning_effort: str | None = None
    # Prior turns for providers without continuation tokens
    history: list[dict[str, str]] = field(default_factory=list)


class Provider(Protocol):
    kind: ProviderKind

    def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]: ...


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from an SDK object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    value = getattr(obj, key, None)
    if value is None:
        extra = getattr(obj, "model_extra", None) or {}
        value = extra.get(key, default)
    return value


def normalize_annotation(raw: Any) -> Annotation | None:
    """Convert one provider annotation into a typed annotation.

    Unknown annotation types return None.
    """
    kind = _get(raw, "type")
    if kind == "file_citation":
        file_id = _get(raw, "file_id")
        if not file_id:
            return None
        return FileAnnotation(file_id=file_id, filename=_get(raw, "filename"))
    if kind == "url_citation":
        # Chat completions nest the payload under "url_citation"
        payload = _get(raw, "url_citation") or raw
        url = _get(payload, "url")
        if not url:
            return None
        return UrlAnnotation(url=url, title=_get(payload, "title"))
    return None


def normalize_annotations(raw: Iterable[Any] | None) -> tuple[Annotation, ...]:
    if not raw:
        return ()
    annotations = []
    for item in raw:
        annotation = normalize_annotation(item)
        if annotation is not None:
            annotations.append(annotation)
    return tuple(annotations)


def completed_annotations(response: Any) -> tuple[Annotation, ...]:
    """Collect annotations from every output_text part of a finished response."""
    collected: list[Annotation] = []
    for item in _get(response, "output") or []:
        if _get(item, "type") != "message":
            continue
        for part in _get(item, "content") or []:
            if _get(part, "type") == "output_text":
                collected.extend(normalize_annotations(_get(part, "annotations")))
    return tuple(collected)


def normalize_responses_event(event: Any) -> ProviderEvent | None:
    """Map a Responses API stream event onto a provider event.

    Events that carry nothing the turn needs return None.
    """
    kind = _get(event, "type")
    if kind == "response.created":
        return Created(response_id=_get(_get(event, "response"), "id"))
    if kind == "response.output_text.delta":
        return ContentDelta(text=str(_get(event, "delta", "")))
    if kind == "response.reasoning_summary_text.delta":
        return ReasoningDelta(text=str(_get(event, "delta", "")))
    if kind == "response.reasoning_summary_text.done":
        return ReasoningDone(text=str(_get(event, "text", "")))
    if kind == "response.output_text.done":
        annotations = normalize_annotations(_get(event, "annotations"))
        return Annotations(annotations=annotations) if annotations else None
    if kind == "response.output_text.annotation.added":
        annotations = normalize_annotations([_get(event, "annotation")])
        return Annotations(annotations=annotations) if annotations else None
    if kind == "response.completed":
        response = _get(event, "response")
        response_id = _get(response, "id")
        return Completed(
            response_id=response_id,
            annotations=completed_annotations(response),
            continuation_token=response_id,
        )
    if kind == "response.failed":
        error = _get(_get(event, "response"), "error")
        return StreamFailed(
            message=_get(error, "message") or GENERIC_ERROR_MESSAGE,
            code=_get(error, "code"),
        )
    if kind == "error":
        return StreamFailed(
            message=_get(event, "message") or GENERIC_ERROR_MESSAGE,
            code=_get(event, "code"),
        )
    return None


def build_openai_client(api_key: str) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=api_key,
        base_url=settings.openai_base_url,
        timeout=settings.provider_timeout_seconds,
    )


class OpenAIResponsesProvider:
    """OpenAI Responses API with continuation via ``previous_response_id``."""

    kind = ProviderKind.OPENAI

    def __init__(self, api_key: str, client: AsyncOpenAI | None = None):
        self.owns_client = client is None
        self.client = client or build_openai_client(api_key)

    async def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        kwargs: dict[str, Any] = {
            "model": request.model.id,
            "input": request.input_text,
            "instructions": request.instructions,
            "stream": True,
        }
        if request.continuation_token:
            kwargs["previous_response_id"] = request.continuation_token
        if request.tools:
            kwargs["tools"] = request.tools
        if request.model.capabilities.thinking and request.reasoning_effort:
            kwargs["reasoning"] = {
                "effort": request.reasoning_effort,
                "summary": "detailed",
            }

        logger.info(
            f"Opening Responses stream: model={request.model.id}, "
            f"tools={[tool['type'] for tool in request.tools]}, "
            f"continuing={bool(request.continuation_token)}"
        )
        try:
            response_stream = await self.client.responses.create(**kwargs)
            try:
                async for raw in response_stream:
                    event = normalize_responses_event(raw)
                    if event is not None:
                        yield event
            finally:
                await response_stream.close()
        finally:
            if self.owns_client:
                await self.client.close()


class OpenRouterChatProvider:
    """OpenRouter chat completions.

    There is no continuation token, so recent history is resent with every
    call. Web search is requested through the ``:online`` model suffix and
    file search is not available.
    """

    kind = ProviderKind.OPENROUTER

    def __init__(self, api_key: str, client: AsyncOpenAI | None = None):
        self.owns_client = client is None
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=settings.openrouter_base_url,
            timeout=settings.provider_timeout_seconds,
        )

    async def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        model_id = request.model.id
        if any(tool.get("type") == "web_search_preview" for tool in request.tools):
            model_id = f"{model_id}:online"

        messages = [
            {"role": "system", "content": request.instructions},
            *request.history,
            {"role": "user", "content": request.input_text},
        ]
        kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "stream": True,
        }
        if request.model.capabilities.thinking and request.reasoning_effort:
            kwargs["extra_body"] = {"reasoning": {"effort": request.reasoning_effort}}

        logger.info(f"Opening OpenRouter stream: model={model_id}, history={len(request.history)}")
        response_id = None
        try:
            chunk_stream = await self.client.chat.completions.create(**kwargs)
            try:
                async for chunk in chunk_stream:
                    if response_id is None and _get(chunk, "id"):
                        response_id = chunk.id
                        yield Created(response_id=response_id)
                    for choice in _get(chunk, "choices") or []:
                        delta = _get(choice, "delta")
                        reasoning = _get(delta, "reasoning")
                        if reasoning:
                            yield ReasoningDelta(text=str(reasoning))
                        content = _get(delta, "content")
                        if content:
                            yield ContentDelta(text=str(content))
                        annotations = normalize_annotations(_get(delta, "annotations"))
                        if annotations:
                            yield Annotations(annotations=annotations)
            finally:
                await chunk_stream.close()
        finally:
            if self.owns_client:
                await self.client.close()

        yield Completed(response_id=response_id)


def build_provider(model: SupportedModel, credentials: ProviderCredentials) -> Provider:
    """Construct the provider client for a model from the requester's keys."""
    if model.provider == ProviderKind.OPENROUTER:
        if not credentials.openrouter_api_key:
            raise MissingCredentialError("OpenRouter API key is required for this model")
        return OpenRouterChatProvider(credentials.openrouter_api_key)
    if not credentials.openai_api_key:
        raise MissingCredentialError("OpenAI API key is required for this model")
    return OpenAIResponsesProvider(credentials.openai_api_key)


def describe_provider_error(exc: BaseException, provider: ProviderKind | None = None) -> str:
    """Turn a provider or precondition failure into a user-facing message."""
    if isinstance(exc, MissingCredentialError):
        return str(exc)
    if isinstance(exc, ProviderStreamError):
        return _CODE_MESSAGES.get(exc.code or "", str(exc) or GENERIC_ERROR_MESSAGE)
    if isinstance(exc, openai.APITimeoutError):
        return TIMEOUT_MESSAGE
    if isinstance(exc, openai.APIStatusError):
        code = getattr(exc, "code", None)
        if code in _CODE_MESSAGES:
            return _CODE_MESSAGES[code]
        if isinstance(exc, openai.AuthenticationError):
            if provider == ProviderKind.OPENROUTER:
                return INVALID_OPENROUTER_KEY_MESSAGE
            return INVALID_KEY_MESSAGE
        if isinstance(exc, openai.RateLimitError):
            return RATE_LIMIT_MESSAGE
        if isinstance(exc, openai.NotFoundError):
            return MODEL_UNAVAILABLE_MESSAGE
        body_message = _get(exc.body, "message") if isinstance(exc.body, dict) else None
        return body_message or exc.message or GENERIC_ERROR_MESSAGE
    return str(exc) or GENERIC_ERROR_MESSAGE
