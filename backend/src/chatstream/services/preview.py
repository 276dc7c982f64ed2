"""File previews for attachments shown in the message list."""

import logging

from pydantic import BaseModel, Field

from chatstream.db.base import DocumentStore
from chatstream.errors import AccessDenied, MessageNotFound
from chatstream.services.blob_store import LocalBlobStore

logger = logging.getLogger(__name__)


class FilePreview(BaseModel):
    """What the client needs to render an attachment preview."""

    file_name: str = Field(..., description="Original file name")
    mime_type: str = Field(..., description="MIME type")
    size: int = Field(..., description="Size in bytes")
    blob_ref: str = Field(..., description="Blob reference for download")
    content: str | None = Field(None, description="Decoded text for plain-text files")


async def get_file_preview(
    store: DocumentStore,
    blobs: LocalBlobStore,
    message_id: str,
    file_name: str,
    user_id: str,
) -> FilePreview:
    """Look up an attachment on a message the user can see.

    Raises ``MessageNotFound`` for an unknown message or file name and
    ``AccessDenied`` if the message's conversation is someone else's.
    """
    message = await store.get_message(message_id)
    if not message:
        raise MessageNotFound(f"Message {message_id} not found")

    conversation = await store.get_conversation(message.conversation_id)
    if not conversation or conversation.user_id != user_id:
        raise AccessDenied("Conversation does not belong to user")

    uploaded = next((f for f in message.uploaded_files if f.file_name == file_name), None)
    if not uploaded:
        raise MessageNotFound(f"File {file_name} not found in message {message_id}")

    content = None
    if uploaded.mime_type == "text/plain" or uploaded.file_name.lower().endswith(".txt"):
        try:
            data = await blobs.get(uploaded.blob_ref)
            if data is not None:
                content = data.decode("utf-8", errors="replace")
        except (OSError, ValueError) as e:
            # Preview still works without the text
            logger.error(f"Failed to read file content for {file_name}: {e}")

    return FilePreview(
        file_name=uploaded.file_name,
        mime_type=uploaded.mime_type,
        size=uploaded.size,
        blob_ref=uploaded.blob_ref,
        content=content,
    )
