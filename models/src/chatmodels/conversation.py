"""Conversation and message models."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from chatmodels.citation import Citation


class MessageStatus(str, Enum):
    """Lifecycle status of an assistant message.

    User messages carry no status.
    """

    TYPING = "typing"
    COMPLETED = "completed"
    ERROR = "error"


ReasoningEffort = Literal["low", "medium", "high"]


class UploadedFile(BaseModel):
    """A file attached to a user message."""

    file_name: str = Field(..., description="Original file name")
    blob_ref: str = Field(..., description="Reference into the local blob store")
    mime_type: str = Field(..., description="MIME type derived from the extension")
    size: int = Field(..., description="Size in bytes")
    provider_file_id: str | None = Field(None, description="Provider-assigned file ID")


class Message(BaseModel):
    """A single message in a conversation."""

    id: str = Field(..., description="Unique message ID")
    conversation_id: str = Field(..., description="Parent conversation ID")
    role: Literal["user", "assistant"] = Field(..., description="Message role")
    content: str = Field("", description="Message content")
    status: MessageStatus | None = Field(None, description="Assistant lifecycle status")
    file_ids: list[str] = Field(default_factory=list, description="Provider file IDs attached")
    uploaded_files: list[UploadedFile] = Field(default_factory=list, description="Attached files")
    provider_response_id: str | None = Field(None, description="Provider response ID")
    reasoning_summary: str | None = Field(None, description="Streamed reasoning summary")
    citations: list[Citation] | None = Field(None, description="File and URL citations")
    model: str | None = Field(None, description="Selected model ID")
    reasoning_effort: ReasoningEffort | None = Field(None, description="Reasoning effort level")
    web_search_enabled: bool = Field(False, description="Web search requested for this turn")
    timezone: str | None = Field(None, description="Sender's IANA timezone")
    error_detail: str | None = Field(None, description="User-presentable error detail")
    truncated: bool = Field(False, description="Content hit the size cap")
    reply_to: str | None = Field(None, description="User message this reply answers")
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")

    @property
    def is_final(self) -> bool:
        return self.status in (MessageStatus.COMPLETED, MessageStatus.ERROR)


class Conversation(BaseModel):
    """A conversation thread."""

    id: str = Field(..., description="Unique conversation ID")
    user_id: str = Field(..., description="Owning user ID")
    title: str = Field("New Chat", description="Conversation title")
    continuation_token: str | None = Field(
        None, description="Provider response ID used to continue the exchange"
    )
    search_index_id: str | None = Field(
        None, description="Provider similarity index scoped to this conversation"
    )
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")
    last_activity_at: datetime = Field(
        default_factory=datetime.now, description="Last activity timestamp"
    )
