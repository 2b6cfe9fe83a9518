"""
FIA document bot data model

Plain dataclasses shared by the scraper, the dedup store, the renderer and
the publishers.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Tuple


def _as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Document:
    """A decision document discovered on the FIA listing page."""

    title: str
    url: str  # absolute link to the PDF
    published: datetime

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise ValueError("Document title must not be empty")
        # Frozen dataclass, so bypass __setattr__ for normalization
        object.__setattr__(self, "published", _as_utc(self.published))

    @property
    def key(self) -> Tuple[str, str]:
        """Dedup key: the (title, url) pair."""
        return (self.title, self.url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "published": self.published.isoformat(),
        }


@dataclass(frozen=True)
class ProcessedRecord:
    """Durable record of a handled document.

    ``timestamp`` is the document's published time, not the processing time.
    """

    title: str
    url: str
    timestamp: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", _as_utc(self.timestamp))

    @classmethod
    def from_document(cls, document: Document) -> "ProcessedRecord":
        return cls(title=document.title, url=document.url, timestamp=document.published)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.title, self.url)


@dataclass
class RenderedPage:
    """One PDF page rendered to PNG."""

    page_number: int  # 1-based
    png_bytes: bytes
    width: int
    height: int

    @property
    def filename(self) -> str:
        return f"page-{self.page_number:03d}.png"
