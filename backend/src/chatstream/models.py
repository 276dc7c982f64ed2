"""API-specific request and response models."""

from pydantic import BaseModel, Field

from chatmodels import Conversation, FileState, Message, ReasoningEffort


class ConversationResponse(BaseModel):
    """Response model for conversation with messages."""

    conversation: Conversation
    messages: list[Message] = Field(default_factory=list)


class ConversationListResponse(BaseModel):
    """Response model for list of conversations."""

    conversations: list[Conversation]
    total: int


class CreateConversationRequest(BaseModel):
    """Request model for starting a conversation."""

    title: str | None = Field(None, description="Initial title")


class TurnResponse(BaseModel):
    """Response model for a submitted turn."""

    conversation_id: str
    message: Message
    file_errors: list[str] = Field(default_factory=list)


class CitationTarget(BaseModel):
    """Where a file citation points inside the conversation."""

    message_id: str | None
    file_name: str


class StagedFileResponse(BaseModel):
    """Response model for a staged upload."""

    file_name: str
    blob_ref: str
    size: int
    state: FileState = FileState.UPLOADED


class ModelSettingsResponse(BaseModel):
    """Model settings of the conversation's latest user turn."""

    model: str | None = None
    reasoning_effort: ReasoningEffort | None = None
    web_search_enabled: bool | None = None
