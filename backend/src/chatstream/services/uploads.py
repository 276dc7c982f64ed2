"""Ingests attached files into the conversation's search index."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePath

from openai import AsyncOpenAI

from chatmodels import Conversation, SelectedFile, UploadedFile
from chatstream.config import settings
from chatstream.db.base import DocumentStore
from chatstream.errors import InvalidTurnRequest, MissingCredentialError
from chatstream.services.blob_store import LocalBlobStore
from chatstream.services.provider import build_openai_client

logger = logging.getLogger(__name__)

SUPPORTED_FILE_EXTENSIONS = ("txt", "pdf", "docx")

MIME_TYPES = {
    "txt": "text/plain",
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "csv": "text/csv",
    "json": "application/json",
}


def file_extension(file_name: str) -> str:
    return PurePath(file_name).suffix.lstrip(".").lower()


def get_mime_type(file_name: str) -> str:
    return MIME_TYPES.get(file_extension(file_name), "application/octet-stream")


def is_supported_file(file_name: str) -> bool:
    return file_extension(file_name) in SUPPORTED_FILE_EXTENSIONS


@dataclass
class IngestResult:
    """Files that reached the provider, plus one message per file that did not."""

    files: list[UploadedFile] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def file_ids(self) -> list[str]:
        return [f.provider_file_id for f in self.files if f.provider_file_id]


class FileIngestor:
    """Uploads staged files to the provider and indexes them per conversation."""

    def __init__(
        self,
        store: DocumentStore,
        blobs: LocalBlobStore,
        client_factory: Callable[[str], AsyncOpenAI] = build_openai_client,
    ):
        self.store = store
        self.blobs = blobs
        self.client_factory = client_factory

    async def ingest(
        self,
        conversation: Conversation,
        files: list[SelectedFile],
        api_key: str | None,
    ) -> IngestResult:
        """Upload ``files`` and add them to the conversation's search index.

        Per-file problems are collected in the result. Raises
        ``InvalidTurnRequest`` when there are too many files or none of them
        could be ingested.
        """
        result = IngestResult()
        if not files:
            return result
        if len(files) > settings.max_files:
            raise InvalidTurnRequest(
                f"Too many files uploaded. Maximum allowed: {settings.max_files}, received: {len(files)}"
            )
        if not api_key:
            raise MissingCredentialError("OpenAI API key is required to upload files")

        async with self.client_factory(api_key) as client:
            search_index_id = await self._ensure_search_index(client, conversation, result)

            for selected in files:
                uploaded = await self._ingest_one(client, selected, search_index_id, result)
                if uploaded:
                    result.files.append(uploaded)

        if not result.files:
            logger.error(f"All files failed for conversation {conversation.id}: {result.errors}")
            raise InvalidTurnRequest(
                "Failed to process any of the uploaded files. All files encountered errors."
            )
        return result

    async def _ensure_search_index(
        self, client: AsyncOpenAI, conversation: Conversation, result: IngestResult
    ) -> str | None:
        """Return the conversation's search index, creating it on first use."""
        if conversation.search_index_id:
            return conversation.search_index_id
        try:
            vector_store = await client.vector_stores.create(name=f"conversation_{conversation.id}")
        except Exception as e:
            logger.error(f"Failed to create vector store for {conversation.id}: {e}")
            result.errors.append("Failed to create vector store for file search")
            return None

        await self.store.update_conversation(conversation.id, search_index_id=vector_store.id)
        conversation.search_index_id = vector_store.id
        logger.info(f"Created vector store {vector_store.id} for conversation {conversation.id}")
        return vector_store.id

    async def _ingest_one(
        self,
        client: AsyncOpenAI,
        selected: SelectedFile,
        search_index_id: str | None,
        result: IngestResult,
    ) -> UploadedFile | None:
        name = selected.file_name
        if not is_supported_file(name):
            message = f"File {name} has unsupported type: {file_extension(name) or 'none'}. Skipping."
            logger.warning(message)
            result.errors.append(message)
            return None

        data = await self.blobs.get(selected.blob_ref) if selected.blob_ref else None
        if data is None:
            message = f"File {name} was not found in storage. Skipping."
            logger.warning(message)
            result.errors.append(message)
            return None

        if len(data) > settings.max_file_size:
            message = (
                f"File {name} is too large: {len(data)} bytes "
                f"(max: {settings.max_file_size} bytes). Skipping."
            )
            logger.warning(message)
            result.errors.append(message)
            return None

        try:
            provider_file = await client.files.create(file=(name, data), purpose="assistants")
        except Exception as e:
            message = f"Failed to upload file {name}: {e}"
            logger.error(message)
            result.errors.append(message)
            return None
        logger.info(f"Uploaded file {name} with ID {provider_file.id}")

        if search_index_id:
            try:
                await client.vector_stores.files.create(
                    vector_store_id=search_index_id, file_id=provider_file.id
                )
            except Exception as e:
                logger.error(f"Failed to add file {provider_file.id} to vector store: {e}")
                result.errors.append(f"Failed to add file {name} to search index")
        else:
            result.errors.append(
                f"File {name} uploaded but not searchable due to vector store creation failure"
            )

        return UploadedFile(
            file_name=name,
            blob_ref=selected.blob_ref,
            mime_type=get_mime_type(name),
            size=len(data),
            provider_file_id=provider_file.id,
        )
