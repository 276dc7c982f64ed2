"""Exceptions raised by the turn engine and its services."""


class ChatStreamError(Exception):
    """Base class for chatstream errors."""


class ConversationNotFound(ChatStreamError):
    """The conversation does not exist."""


class MessageNotFound(ChatStreamError):
    """The message does not exist."""


class AccessDenied(ChatStreamError):
    """The requester does not own the conversation or file."""


class TurnInProgressError(ChatStreamError):
    """A message in the conversation is still typing."""


class InvalidTurnRequest(ChatStreamError):
    """The submitted turn cannot be started as requested."""


class MissingCredentialError(ChatStreamError):
    """A required provider credential was not supplied."""
