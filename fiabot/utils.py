"""Utility functions for the FIA document bot."""

import re
from datetime import datetime, timezone
from typing import Optional

from requests.utils import requote_uri

THREADS_CHARACTER_LIMIT = 500
ELLIPSIS = "..."

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|\x00-\x1f]')
_WHITESPACE = re.compile(r"\s")


def truncate_text(text: str, limit: int, ellipsis: str = ELLIPSIS) -> str:
    """Shorten text to at most ``limit`` characters without splitting a word.

    Text that already fits is returned unchanged. Otherwise the text is cut
    at the last whitespace at or before the cutoff and ``ellipsis`` is
    appended. Returns an empty string when ``limit`` cannot even hold the
    ellipsis.

    Examples:
        truncate_text("Driver 44 reprimanded", 12) -> "Driver 44..."
        truncate_text("Reprimand", 2) -> ""
    """
    if len(text) <= limit:
        return text

    cutoff = limit - len(ellipsis)
    if cutoff < 0:
        return ""

    # Include the character at the cutoff so a space there counts as a boundary
    head = text[: cutoff + 1]
    boundaries = [m.start() for m in _WHITESPACE.finditer(head)]
    kept = text[: boundaries[-1]].rstrip() if boundaries else ""
    return kept + ellipsis


def format_published(published_at: datetime) -> str:
    """Format a publish time the way posts display it (always UTC)."""
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    return published_at.astimezone(timezone.utc).strftime("%d-%m-%Y %H:%M %Z")


def format_post_text(
    title: str,
    published_at: datetime,
    summary: Optional[str] = None,
    short_url: Optional[str] = None,
    hashtag: str = "#F1Threads",
    limit: int = THREADS_CHARACTER_LIMIT,
) -> str:
    """Compose the body of a document post within the character limit.

    Layout:
        New document: <title>
        Published on: <dd-mm-YYYY HH:MM UTC>
        Link: <short url>            (only when a short link exists)

        AI Summary: <summary>        (label kept even when the summary is empty)

        <hashtag>

    Only the summary is shortened to fit; if the header alone overflows the
    limit the whole text is truncated instead.
    """
    header = f"New document: {title}\nPublished on: {format_published(published_at)}\n"
    if short_url:
        header += f"Link: {short_url}\n"
    header += "\nAI Summary: "

    suffix = f"\n\n{hashtag}" if hashtag else ""
    summary = (summary or "").strip()

    budget = limit - len(header) - len(suffix)
    body = truncate_text(summary, budget) if summary and budget >= 0 else ""
    text = header + body + suffix

    if len(text) > limit:
        text = truncate_text(text, limit)
    return text


def format_recall_notice(title: str, published_at: datetime) -> str:
    """Text-only notice for a document the FIA has withdrawn."""
    return (
        f"Document recalled: {title}\n"
        f"Published on: {format_published(published_at)}\n\n"
        "The FIA has withdrawn this document."
    )


def sanitize_filename(name: str) -> str:
    """Replace path-unsafe characters so a title can be used as a filename."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).strip().strip(".")
    return cleaned or "document"


def encode_url(url: str) -> str:
    """Percent-encode unsafe characters (spaces etc.) in a document URL."""
    return requote_uri(url)
