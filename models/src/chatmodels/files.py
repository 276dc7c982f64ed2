"""File citation index and upload state models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class FileCitationEntry(BaseModel):
    """Maps a provider file ID back to its upload provenance."""

    provider_file_id: str = Field(..., description="Provider-assigned file ID")
    file_name: str = Field(..., description="Display name")
    uploaded_by: str = Field(..., description="Uploading user ID")
    blob_ref: str = Field(..., description="Underlying blob reference")
    conversation_id: str | None = Field(
        None, description="Conversation that first introduced the file"
    )
    message_id: str | None = Field(None, description="Message that first introduced the file")
    mime_type: str | None = Field(None, description="MIME type")
    size: int | None = Field(None, description="Size in bytes")
    uploaded_at: datetime = Field(default_factory=datetime.now, description="Upload timestamp")


class FileState(str, Enum):
    """Client-side upload state of a selected file."""

    PENDING = "pending"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    ERROR = "error"


class SelectedFile(BaseModel):
    """A file the user attached to a turn, as staged by the client."""

    file_name: str = Field(..., description="Original file name")
    blob_ref: str | None = Field(None, description="Blob reference once staged")
    state: FileState = Field(default=FileState.PENDING, description="Upload state")
