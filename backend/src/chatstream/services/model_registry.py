"""Supported models and the system instructions sent with every turn."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chatstream.config import settings

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    """Upstream API family a model is served through."""

    OPENAI = "openai"
    OPENROUTER = "openrouter"


@dataclass(frozen=True)
class ModelCapabilities:
    thinking: bool = False
    web_search: bool = False
    file_search: bool = False


@dataclass(frozen=True)
class SupportedModel:
    """A model users may select."""

    id: str
    name: str
    description: str
    capabilities: ModelCapabilities
    provider: ProviderKind


SUPPORTED_MODELS: tuple[SupportedModel, ...] = (
    SupportedModel(
        id="gpt-4.1",
        name="OpenAI GPT-4.1",
        description="Fast, best for web search",
        capabilities=ModelCapabilities(web_search=True, file_search=True),
        provider=ProviderKind.OPENAI,
    ),
    SupportedModel(
        id="o4-mini",
        name="OpenAI o4 Mini",
        description="Fast and powerful",
        capabilities=ModelCapabilities(thinking=True, file_search=True),
        provider=ProviderKind.OPENAI,
    ),
    SupportedModel(
        id="o3",
        name="OpenAI o3",
        description="Slower but more powerful",
        capabilities=ModelCapabilities(thinking=True, file_search=True),
        provider=ProviderKind.OPENAI,
    ),
    SupportedModel(
        id="o3-pro",
        name="OpenAI o3 Pro",
        description="Deep Research, use for background tasks, can take 5-10 minutes",
        capabilities=ModelCapabilities(thinking=True, file_search=True),
        provider=ProviderKind.OPENAI,
    ),
    SupportedModel(
        id="google/gemini-2.0-flash-001",
        name="Google Gemini 2.0 Flash",
        description="Gemini 2.0 Flash via OpenRouter",
        capabilities=ModelCapabilities(web_search=True),
        provider=ProviderKind.OPENROUTER,
    ),
    SupportedModel(
        id="x-ai/grok-3-mini-beta",
        name="Grok 3 Mini",
        description="Grok 3 Mini reasoning model via OpenRouter",
        capabilities=ModelCapabilities(thinking=True),
        provider=ProviderKind.OPENROUTER,
    ),
)

_MODELS_BY_ID = {model.id: model for model in SUPPORTED_MODELS}

REASONING_EFFORT_LEVELS = ("high", "medium", "low")
DEFAULT_REASONING_EFFORT = "medium"


def get_model(model_id: str | None) -> SupportedModel | None:
    """Look up a supported model by ID."""
    if not model_id:
        return None
    return _MODELS_BY_ID.get(model_id)


def is_supported_model(model_id: str | None) -> bool:
    return get_model(model_id) is not None


def resolve_model(model_id: str | None) -> SupportedModel:
    """Return the requested model, or the default one if it is not supported.

    Past messages may carry model IDs that have since been retired, so an
    unknown ID never aborts a turn.
    """
    model = get_model(model_id or settings.default_model)
    if model:
        return model
    logger.error(
        f"Unsupported model in message: {model_id}, falling back to {settings.default_model}"
    )
    return _MODELS_BY_ID[settings.default_model]


SYSTEM_PROMPT = """
You are ChatStream, an AI assistant powered by the {model-name}. My role is to assist and engage in conversation while being helpful, respectful, and engaging.
- If you are specifically asked about the model you are using, you may mention that you use the {model-name} model. If you are not asked specifically about the model you are using, you do not need to mention it.
- The current date and time including timezone is {user-time-with-timezone}.

# Output Format

- Use bullet points, headings, and proper markdown syntax to organize content.
- Include citations from the uploaded file when relevant.
- Always use LaTeX for mathematical expressions:
    - Inline math must be wrapped in escaped parentheses: \\( content \\)
    - Do not use single dollar signs for inline math
    - Display math must be wrapped in double dollar signs: $$ content $$
- Do not use the backslash character to escape parenthesis. Use the actual parentheses instead.
- Ensure code is properly formatted using Prettier with a print width of 80 characters
- Present code in Markdown code blocks with the correct language extension indicated.
""".strip()


def format_user_time(tz_name: str | None, now: datetime | None = None) -> str:
    """Render the requester's local time with its UTC offset.

    Unknown timezones fall back to UTC.
    """
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {tz_name!r}, using UTC")
        tz = ZoneInfo("UTC")
    local = (now or datetime.now(tz)).astimezone(tz)
    offset = local.strftime("%z")
    offset = f"{offset[:3]}:{offset[3:]}" if offset else "+00:00"
    return f"{local.strftime('%m/%d/%Y, %I:%M:%S %p')} GMT{offset}"


def render_instructions(model: SupportedModel, tz_name: str | None, now: datetime | None = None) -> str:
    """Fill the system prompt with the live model name and local time."""
    return SYSTEM_PROMPT.replace("{model-name}", model.id).replace(
        "{user-time-with-timezone}", format_user_time(tz_name, now)
    )
