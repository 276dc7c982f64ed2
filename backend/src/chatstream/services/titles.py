"""Conversation title generation after the first turn."""

import logging
from collections.abc import Callable

from openai import AsyncOpenAI

from chatstream.config import settings
from chatstream.db.base import DocumentStore
from chatstream.services.provider import ProviderCredentials, build_openai_client
from chatstream.sse import EventBus, notify_conversation_updated

logger = logging.getLogger(__name__)

TITLE_PROMPT = """Create a concise and descriptive title (under 8 words) for a chat conversation based on the user's *first message* and any attached files. The title should capture the main topic or intent, suitable for display in a chat list. Avoid generic phrases like "New chat".

Examples:
User message: "Why is the bible in English?"
Title: Bible's Translation to English

User message: "Help me fix this merge conflict"
Title: Fix Merge Conflict

User message: "What are the requirements for setting up a business in USA?"
Title: USA Business Setup Requirements

User message: "Hi"
Title: Greetings Exchanged

User message: "Review this document." Files attached: [project_proposal.docx]
Title: Review Project Proposal

{prompt_content}

Title:"""


def build_title_prompt(content: str, file_names: list[str]) -> str:
    prompt_content = f'First message: "{content}"'
    if file_names:
        prompt_content += f"\nFiles attached: [{', '.join(file_names)}]"
    return TITLE_PROMPT.format(prompt_content=prompt_content)


async def generate_title(
    store: DocumentStore,
    conversation_id: str,
    credentials: ProviderCredentials,
    client_factory: Callable[[str], AsyncOpenAI] = build_openai_client,
    bus: EventBus | None = None,
) -> str | None:
    """Name a conversation from its first message.

    Returns the stored title, or None if none was generated. Failures are
    logged and never raised.
    """
    first = await store.get_first_message(conversation_id)
    file_names = [f.file_name for f in first.uploaded_files] if first else []
    if not first or (not first.content.strip() and not file_names):
        logger.warning(
            f"No first message with content or files for conversation {conversation_id}, "
            "cannot generate title"
        )
        return None

    api_key = credentials.openai_api_key or settings.openai_api_key
    if not api_key:
        logger.warning("No OpenAI API key available for title generation")
        return None

    try:
        async with client_factory(api_key) as client:
            response = await client.responses.create(
                model=settings.title_model,
                input=[{"role": "user", "content": build_title_prompt(first.content, file_names)}],
                temperature=0.5,
            )
        title = (response.output_text or "").strip()
    except Exception as e:
        logger.error(f"Error generating title for conversation {conversation_id}: {e}")
        return None

    if not title:
        logger.warning(f"Title generation returned empty output for {conversation_id}")
        return None

    conversation = await store.get_conversation(conversation_id)
    if not conversation:
        logger.warning(f"Conversation {conversation_id} deleted before title was stored")
        return None
    await store.update_conversation(conversation_id, title=title)
    await notify_conversation_updated(conversation.user_id, conversation_id, bus, title=title)
    logger.info(f'Generated title for conversation {conversation_id}: "{title}"')
    return title
