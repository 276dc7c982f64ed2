"""Typed provider stream events.

Raw transport payloads are converted into these dataclasses as soon as they
are received, so nothing downstream depends on a provider's wire shapes.
"""

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class FileAnnotation:
    """A citation of an uploaded file."""

    file_id: str
    filename: str | None = None


@dataclass(frozen=True)
class UrlAnnotation:
    """A citation of a web page."""

    url: str
    title: str | None = None


Annotation = Union[FileAnnotation, UrlAnnotation]


@dataclass(frozen=True)
class Created:
    """The provider accepted the request."""

    response_id: str


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDone:
    """End of one reasoning summary part; ``text`` is the whole part."""

    text: str


@dataclass(frozen=True)
class Annotations:
    """Citations attached to a finished text part or a mid-stream chunk."""

    annotations: tuple[Annotation, ...]


@dataclass(frozen=True)
class Completed:
    """Terminal success event.

    ``continuation_token`` is only set by providers that can resume an
    exchange from it.
    """

    response_id: str | None
    annotations: tuple[Annotation, ...] = field(default_factory=tuple)
    continuation_token: str | None = None


@dataclass(frozen=True)
class StreamFailed:
    """Terminal failure reported inside the stream."""

    message: str
    code: str | None = None


ProviderEvent = Union[
    Created,
    ContentDelta,
    ReasoningDelta,
    ReasoningDone,
    Annotations,
    Completed,
    StreamFailed,
]
