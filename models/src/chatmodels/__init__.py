"""Shared Pydantic models for chatstream."""

from chatmodels.citation import Citation, FileCitation, UrlCitation
from chatmodels.conversation import (
    Conversation,
    Message,
    MessageStatus,
    ReasoningEffort,
    UploadedFile,
)
from chatmodels.files import FileCitationEntry, FileState, SelectedFile

__all__ = [
    # Conversations
    "Conversation",
    "Message",
    "MessageStatus",
    "ReasoningEffort",
    "UploadedFile",
    # Citations
    "Citation",
    "FileCitation",
    "UrlCitation",
    # File index
    "FileCitationEntry",
    "FileState",
    "SelectedFile",
]
