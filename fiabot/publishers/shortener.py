"""Link shortener client."""

import logging
from typing import Optional

import requests

from .base import PublishError

logger = logging.getLogger(__name__)


class ShortenerError(PublishError):
    """Raised when a link cannot be shortened."""


class ShortenerClient:
    """Client for a self-hosted shortener exposing ``POST /api/shorten``."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def shorten(self, url: str) -> str:
        try:
            response = self.session.post(
                f"{self.base_url}/api/shorten",
                json={"url": url},
                headers={"X-API-Key": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ShortenerError(f"Shortener request failed: {e}") from e

        if response.status_code not in (200, 201):
            raise ShortenerError(
                f"Shortener returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            short_url = response.json().get("short_url")
        except ValueError as e:
            raise ShortenerError(f"Shortener returned invalid JSON: {e}") from e

        if not short_url:
            raise ShortenerError("Shortener response has no short_url")
        return short_url
