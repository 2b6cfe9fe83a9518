"""Publishing clients for the FIA document bot."""

from .base import PublishAttempt, PublishError, Publisher
from .dry_run import DryRunPublisher
from .picsur import ImageHostError, PicsurClient
from .shortener import ShortenerClient, ShortenerError
from .threads import ThreadsPublisher

__all__ = [
    "DryRunPublisher",
    "ImageHostError",
    "PicsurClient",
    "PublishAttempt",
    "PublishError",
    "Publisher",
    "ShortenerClient",
    "ShortenerError",
    "ThreadsPublisher",
]
