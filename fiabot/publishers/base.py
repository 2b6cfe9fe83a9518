"""Base publisher interface."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from ..models import RenderedPage


@dataclass
class PublishAttempt:
    """Transient state of one publish call, returned for logging."""

    image_urls: List[str] = field(default_factory=list)
    container_ids: List[str] = field(default_factory=list)
    post_id: Optional[str] = None
    text: str = ""
    dropped_images: int = 0


class Publisher(Protocol):
    """Protocol for social publishing services."""

    def publish_document(
        self,
        pages: Sequence[RenderedPage],
        title: str,
        published_at: datetime,
        source_url: str,
        summary: str,
    ) -> PublishAttempt:
        """Publish a document as an image or carousel post.

        Args:
            pages: Rendered page images, in page order
            title: Document title
            published_at: Publish time shown in the post header
            source_url: Link to the PDF, shortened when possible
            summary: AI summary; may be empty

        Raises:
            PublishError: If any stage of the publish protocol fails
        """
        ...

    def publish_notice(self, text: str) -> PublishAttempt:
        """Publish a text-only post.

        Raises:
            PublishError: If the post fails
        """
        ...


class PublishError(Exception):
    """Raised when a post fails to publish."""
    pass
