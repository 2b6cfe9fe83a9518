"""Publisher that prints posts instead of sending them."""

import logging
from datetime import datetime
from typing import Optional, Sequence

from rich.console import Console
from rich.panel import Panel

from ..models import RenderedPage
from ..utils import THREADS_CHARACTER_LIMIT, format_post_text, truncate_text
from .base import PublishAttempt
from .threads import MAX_IMAGES

logger = logging.getLogger(__name__)


class DryRunPublisher:
    """Renders would-be posts to the console; never touches the network."""

    def __init__(self, console: Optional[Console] = None, hashtag: str = "#F1Threads"):
        self.console = console or Console()
        self.hashtag = hashtag
        self.published = []

    def publish_document(
        self,
        pages: Sequence[RenderedPage],
        title: str,
        published_at: datetime,
        source_url: str,
        summary: str,
    ) -> PublishAttempt:
        text = format_post_text(
            title, published_at, summary, short_url=source_url, hashtag=self.hashtag
        )
        kept = list(pages)[:MAX_IMAGES]
        attempt = PublishAttempt(
            text=text,
            dropped_images=max(0, len(pages) - MAX_IMAGES),
            post_id=f"dry-run-{len(self.published) + 1}",
        )
        self.console.print(
            Panel(text, title=f"DRY RUN - {len(kept)} images", border_style="yellow")
        )
        logger.info(f"Dry run: would publish {title} with {len(kept)} images")
        self.published.append(attempt)
        return attempt

    def publish_notice(self, text: str) -> PublishAttempt:
        attempt = PublishAttempt(
            text=truncate_text(text, THREADS_CHARACTER_LIMIT),
            post_id=f"dry-run-{len(self.published) + 1}",
        )
        self.console.print(Panel(attempt.text, title="DRY RUN - notice", border_style="yellow"))
        logger.info("Dry run: would publish notice")
        self.published.append(attempt)
        return attempt
