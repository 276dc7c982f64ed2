"""Resolves provider file IDs in citations back to their uploads."""

import logging

from chatmodels import FileCitationEntry
from chatstream.db.base import DocumentStore
from chatstream.errors import AccessDenied

logger = logging.getLogger(__name__)


class FileCitationIndex:
    """Write-once index from provider file ID to upload provenance."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def record(
        self,
        file_id: str,
        file_name: str,
        uploader: str,
        blob_ref: str,
        conversation_id: str | None = None,
        message_id: str | None = None,
        mime_type: str | None = None,
        size: int | None = None,
    ) -> bool:
        """Insert an entry unless one exists for ``file_id``.

        The first writer wins. Returns True if a new entry was stored.
        """
        inserted = await self.store.insert_file_entry(
            FileCitationEntry(
                provider_file_id=file_id,
                file_name=file_name,
                uploaded_by=uploader,
                blob_ref=blob_ref,
                conversation_id=conversation_id,
                message_id=message_id,
                mime_type=mime_type,
                size=size,
            )
        )
        if not inserted:
            logger.info(f"File {file_id} already indexed, keeping existing entry")
        return inserted

    async def resolve(self, file_id: str, requesting_user: str) -> FileCitationEntry | None:
        entry = await self.store.get_file_entry(file_id)
        if entry is None:
            return None
        if entry.uploaded_by != requesting_user:
            raise AccessDenied(f"File {file_id} does not belong to the requesting user")
        return entry

    async def resolve_for_conversation(
        self, conversation_id: str, file_id: str, requesting_user: str
    ) -> dict | None:
        """Resolve a citation link shown inside a conversation.

        Returns ``{"message_id", "file_name"}`` or None when the file is
        unknown, belongs to someone else, or was introduced by a different
        conversation. Raises ``AccessDenied`` if the requester does not own
        the conversation itself.
        """
        conversation = await self.store.get_conversation(conversation_id)
        if conversation and conversation.user_id != requesting_user:
            raise AccessDenied(f"Conversation {conversation_id} does not belong to the requesting user")

        try:
            entry = await self.resolve(file_id, requesting_user)
        except AccessDenied:
            logger.warning(f"User {requesting_user} tried to resolve foreign file {file_id}")
            return None
        if entry is None or entry.conversation_id != conversation_id:
            return None
        return {"message_id": entry.message_id, "file_name": entry.file_name}
