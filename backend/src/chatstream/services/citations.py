"""Citation accumulation for streamed annotations."""

import logging
from collections.abc import Iterable

from chatmodels import Citation, FileCitation, UrlCitation
from chatstream.services.events import Annotation, FileAnnotation, UrlAnnotation

logger = logging.getLogger(__name__)

UNKNOWN_FILE_NAME = "unknown"
DEFAULT_URL_TITLE = "Web Result"


def to_citation(annotation: Annotation) -> Citation:
    """Convert an annotation into a citation, filling in default labels."""
    if isinstance(annotation, FileAnnotation):
        return FileCitation(
            file_id=annotation.file_id,
            file_name=annotation.filename or UNKNOWN_FILE_NAME,
        )
    if isinstance(annotation, UrlAnnotation):
        return UrlCitation(url=annotation.url, title=annotation.title or DEFAULT_URL_TITLE)
    raise TypeError(f"Unsupported annotation: {annotation!r}")


class CitationAccumulator:
    """Ordered, deduplicated citation list for one stream.

    Keyed by file ID for file citations and by URL for URL citations. The
    first occurrence wins, so a later annotation for the same key (for
    example one repeated in the completion event) never replaces it.
    """

    def __init__(self):
        self._citations: list[Citation] = []
        self._seen: set[tuple[str, str]] = set()

    def add(self, annotation: Annotation) -> list[Citation]:
        """Add one annotation and return the citations collected so far."""
        citation = to_citation(annotation)
        if citation.key not in self._seen:
            self._seen.add(citation.key)
            self._citations.append(citation)
            logger.debug(f"Citation added: {citation.key}")
        return list(self._citations)

    def extend(self, annotations: Iterable[Annotation]) -> list[Citation]:
        for annotation in annotations:
            self.add(annotation)
        return list(self._citations)

    @property
    def citations(self) -> list[Citation]:
        return list(self._citations)

    def __len__(self) -> int:
        return len(self._citations)
