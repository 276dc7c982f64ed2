"""Local file storage for staged uploads."""

import asyncio
import logging
import uuid
from pathlib import Path

from chatstream.config import settings

logger = logging.getLogger(__name__)


class LocalBlobStore:
    """Stores upload bytes under a root directory, keyed by opaque references."""

    def __init__(self, root: Path | None = None):
        self.root = Path(root or settings.blob_root)

    def _path(self, blob_ref: str) -> Path:
        # References are generated here, never taken as paths from clients
        if "/" in blob_ref or "\\" in blob_ref or blob_ref.startswith("."):
            raise ValueError(f"Invalid blob reference: {blob_ref}")
        return self.root / blob_ref

    async def put(self, file_name: str, data: bytes) -> str:
        """Store bytes and return the new blob reference."""
        suffix = Path(file_name).suffix.lower()
        blob_ref = f"{uuid.uuid4().hex}{suffix}"
        path = self._path(blob_ref)

        def _write():
            self.root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info(f"Stored blob {blob_ref} ({len(data)} bytes) for {file_name}")
        return blob_ref

    async def get(self, blob_ref: str) -> bytes | None:
        path = self._path(blob_ref)
        if not await asyncio.to_thread(path.exists):
            return None
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, blob_ref: str) -> None:
        path = self._path(blob_ref)
        await asyncio.to_thread(path.unlink, missing_ok=True)
