"""Unit tests for file ingestion, blob storage and previews."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatmodels import FileState, SelectedFile, UploadedFile
from chatstream.errors import AccessDenied, InvalidTurnRequest, MessageNotFound, MissingCredentialError
from chatstream.services.preview import get_file_preview
from chatstream.services.uploads import FileIngestor, get_mime_type, is_supported_file

from conftest import openai_client_double


def fake_openai_client(fail_upload_for: set[str] | None = None):
    """Client double covering the file and vector store calls used by ingestion."""
    fail_upload_for = fail_upload_for or set()
    counter = {"n": 0}

    async def create_file(file, purpose):
        name, _ = file
        if name in fail_upload_for:
            raise RuntimeError("upload rejected")
        counter["n"] += 1
        return SimpleNamespace(id=f"file-{counter['n']}")

    client = openai_client_double()
    client.files.create = AsyncMock(side_effect=create_file)
    client.vector_stores.create = AsyncMock(return_value=SimpleNamespace(id="vs_1"))
    client.vector_stores.files.create = AsyncMock(return_value=SimpleNamespace(id="vsf_1"))
    return client


async def stage(blobs, name, data=b"hello"):
    return SelectedFile(file_name=name, blob_ref=await blobs.put(name, data), state=FileState.UPLOADED)


class TestMimeTypes:
    """Test file type helpers."""

    def test_supported_extensions(self):
        assert is_supported_file("notes.TXT")
        assert is_supported_file("paper.pdf")
        assert is_supported_file("draft.docx")
        assert not is_supported_file("sheet.xlsx")
        assert not is_supported_file("README")

    def test_get_mime_type(self):
        assert get_mime_type("a.txt") == "text/plain"
        assert get_mime_type("a.docx") == (
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
        )
        assert get_mime_type("a.bin") == "application/octet-stream"


class TestFileIngestor:
    """Test uploading attached files into the conversation's search index."""

    @pytest.mark.asyncio
    async def test_creates_search_index_once(self, store, blobs):
        """Test lazy index creation and per-file indexing."""
        conversation = await store.create_conversation("alice")
        client = fake_openai_client()
        ingestor = FileIngestor(store, blobs, client_factory=lambda key: client)
        files = [await stage(blobs, "a.txt"), await stage(blobs, "b.pdf", b"%PDF")]

        result = await ingestor.ingest(conversation, files, "sk-test")

        assert result.errors == []
        assert result.file_ids == ["file-1", "file-2"]
        assert result.files[1].mime_type == "application/pdf"
        assert result.files[1].size == 4
        client.vector_stores.create.assert_awaited_once_with(name=f"conversation_{conversation.id}")
        assert client.vector_stores.files.create.await_count == 2
        stored = await store.get_conversation(conversation.id)
        assert stored.search_index_id == "vs_1"
        client.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reuses_existing_index(self, store, blobs):
        conversation = await store.create_conversation("alice")
        await store.update_conversation(conversation.id, search_index_id="vs_existing")
        conversation = await store.get_conversation(conversation.id)
        client = fake_openai_client()
        ingestor = FileIngestor(store, blobs, client_factory=lambda key: client)

        await ingestor.ingest(conversation, [await stage(blobs, "a.txt")], "sk-test")

        client.vector_stores.create.assert_not_awaited()
        client.vector_stores.files.create.assert_awaited_once_with(
            vector_store_id="vs_existing", file_id="file-1"
        )

    @pytest.mark.asyncio
    async def test_partial_failures_are_collected(self, store, blobs):
        """Test that bad files are skipped while good ones are ingested."""
        conversation = await store.create_conversation("alice")
        client = fake_openai_client(fail_upload_for={"broken.pdf"})
        ingestor = FileIngestor(store, blobs, client_factory=lambda key: client)
        files = [
            await stage(blobs, "good.txt"),
            await stage(blobs, "broken.pdf"),
            SelectedFile(file_name="sheet.xlsx", blob_ref="x.xlsx", state=FileState.UPLOADED),
            SelectedFile(file_name="gone.txt", blob_ref="missing.txt", state=FileState.UPLOADED),
        ]

        result = await ingestor.ingest(conversation, files, "sk-test")

        assert [f.file_name for f in result.files] == ["good.txt"]
        assert len(result.errors) == 3
        assert any("unsupported type" in e for e in result.errors)
        assert any("Failed to upload file broken.pdf" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_all_files_failing_aborts(self, store, blobs):
        conversation = await store.create_conversation("alice")
        client = fake_openai_client(fail_upload_for={"a.txt"})
        ingestor = FileIngestor(store, blobs, client_factory=lambda key: client)

        with pytest.raises(InvalidTurnRequest):
            await ingestor.ingest(conversation, [await stage(blobs, "a.txt")], "sk-test")

    @pytest.mark.asyncio
    async def test_requires_api_key(self, store, blobs):
        conversation = await store.create_conversation("alice")
        ingestor = FileIngestor(store, blobs, client_factory=lambda key: fake_openai_client())

        with pytest.raises(MissingCredentialError):
            await ingestor.ingest(conversation, [await stage(blobs, "a.txt")], None)

    @pytest.mark.asyncio
    async def test_no_files_is_a_noop(self, store, blobs):
        conversation = await store.create_conversation("alice")
        factory = MagicMock()
        ingestor = FileIngestor(store, blobs, client_factory=factory)

        result = await ingestor.ingest(conversation, [], None)

        assert result.files == []
        factory.assert_not_called()


class TestBlobStore:
    """Test local blob storage."""

    @pytest.mark.asyncio
    async def test_put_get_delete(self, blobs):
        blob_ref = await blobs.put("Notes.TXT", b"content")

        assert blob_ref.endswith(".txt")
        assert await blobs.get(blob_ref) == b"content"
        await blobs.delete(blob_ref)
        assert await blobs.get(blob_ref) is None

    @pytest.mark.asyncio
    async def test_rejects_path_references(self, blobs):
        with pytest.raises(ValueError):
            await blobs.get("../etc/passwd")


class TestFilePreview:
    """Test attachment previews."""

    async def _message_with_file(self, store, blobs, name, data):
        conversation = await store.create_conversation("alice")
        blob_ref = await blobs.put(name, data)
        message = await store.create_message(
            conversation.id,
            "user",
            "see attached",
            uploaded_files=[
                UploadedFile(
                    file_name=name,
                    blob_ref=blob_ref,
                    mime_type=get_mime_type(name),
                    size=len(data),
                    provider_file_id="file-1",
                )
            ],
        )
        return message

    @pytest.mark.asyncio
    async def test_text_preview_includes_content(self, store, blobs):
        message = await self._message_with_file(store, blobs, "notes.txt", b"line one")

        preview = await get_file_preview(store, blobs, message.id, "notes.txt", "alice")

        assert preview.content == "line one"
        assert preview.mime_type == "text/plain"
        assert preview.size == 8

    @pytest.mark.asyncio
    async def test_binary_preview_has_no_content(self, store, blobs):
        message = await self._message_with_file(store, blobs, "paper.pdf", b"%PDF-1.7")

        preview = await get_file_preview(store, blobs, message.id, "paper.pdf", "alice")

        assert preview.content is None
        assert preview.mime_type == "application/pdf"

    @pytest.mark.asyncio
    async def test_preview_access_and_lookup(self, store, blobs):
        """Test ownership and not-found handling."""
        message = await self._message_with_file(store, blobs, "notes.txt", b"x")

        with pytest.raises(AccessDenied):
            await get_file_preview(store, blobs, message.id, "notes.txt", "mallory")
        with pytest.raises(MessageNotFound):
            await get_file_preview(store, blobs, message.id, "other.txt", "alice")
        with pytest.raises(MessageNotFound):
            await get_file_preview(store, blobs, "missing", "notes.txt", "alice")
