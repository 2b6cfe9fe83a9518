"""Picsur image host client."""

import logging
from typing import Optional

import requests

from ..models import RenderedPage
from .base import PublishError

logger = logging.getLogger(__name__)


class ImageHostError(PublishError):
    """Raised when an image upload fails."""


class PicsurClient:
    """Uploads rendered pages to a Picsur instance for public hosting."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize Picsur client.

        Args:
            base_url: Picsur instance root, e.g. https://images.example.com
            api_key: Picsur API key
            timeout: Request timeout in seconds
            session: Shared HTTP session
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def upload_image(self, page: RenderedPage) -> str:
        """Upload one page and return its public JPEG URL.

        Raises:
            ImageHostError: If the upload fails or Picsur reports no success
        """
        try:
            response = self.session.post(
                f"{self.base_url}/api/image/upload",
                headers={"Authorization": f"Api-Key {self.api_key}"},
                files={"image": (page.filename, page.png_bytes, "image/png")},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to upload {page.filename} to Picsur: {e}")
            raise ImageHostError(f"Picsur upload failed: {e}") from e

        if response.status_code != 200:
            raise ImageHostError(
                f"Picsur returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ImageHostError(f"Picsur returned invalid JSON: {e}") from e

        image_id = (payload.get("data") or {}).get("id")
        if not payload.get("success") or not image_id:
            raise ImageHostError(f"Picsur upload unsuccessful: {payload}")

        url = f"{self.base_url}/i/{image_id}.jpg"
        logger.debug(f"Uploaded {page.filename} to {url}")
        return url
