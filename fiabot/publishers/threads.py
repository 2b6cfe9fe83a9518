"""Threads publisher: image uploads, media containers and publishing."""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from ..credentials import TokenCell
from ..models import RenderedPage
from ..utils import THREADS_CHARACTER_LIMIT, encode_url, format_post_text, truncate_text
from .base import PublishAttempt, PublishError
from .picsur import PicsurClient
from .shortener import ShortenerClient, ShortenerError

logger = logging.getLogger(__name__)

THREADS_API_URL = "https://graph.threads.net/v1.0"
MAX_IMAGES = 20
READY_STATUSES = {"FINISHED", "PUBLISHED"}
FAILED_STATUSES = {"ERROR", "EXPIRED"}


class ThreadsPublisher:
    """Publishes documents and notices to a Threads account.

    Flow per document: upload pages to the image host, shorten the source
    link, create an IMAGE container (one page) or item containers plus a
    CAROUSEL container (2-20 pages), wait for each container to finish
    server-side processing, then publish. No stage is retried here.
    """

    def __init__(
        self,
        token: TokenCell,
        user_id: str,
        image_host: PicsurClient,
        shortener: Optional[ShortenerClient] = None,
        hashtag: str = "#F1Threads",
        api_url: str = THREADS_API_URL,
        upload_delay: float = 0.5,
        settle_delay: float = 2.0,
        poll_interval: float = 3.0,
        poll_timeout: float = 60.0,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token = token
        self.user_id = user_id
        self.image_host = image_host
        self.shortener = shortener
        self.hashtag = hashtag
        self.api_url = api_url.rstrip("/")
        self.upload_delay = upload_delay
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.timeout = timeout
        # Plain session: failures surface to the caller instead of being retried
        self.session = session or requests.Session()
        self.sleep = sleep
        self.clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def publish_document(
        self,
        pages: Sequence[RenderedPage],
        title: str,
        published_at: datetime,
        source_url: str,
        summary: str,
    ) -> PublishAttempt:
        attempt = PublishAttempt()
        pages = list(pages)

        if len(pages) > MAX_IMAGES:
            attempt.dropped_images = len(pages) - MAX_IMAGES
            logger.warning(
                f"{title}: {len(pages)} pages exceed the {MAX_IMAGES} image limit; "
                f"dropping {attempt.dropped_images}"
            )
            pages = pages[:MAX_IMAGES]

        if not pages:
            raise PublishError(f"{title}: no images to publish")

        attempt.image_urls = self._upload_images(pages)
        short_url = self._shorten(source_url)
        attempt.text = format_post_text(
            title, published_at, summary, short_url=short_url, hashtag=self.hashtag
        )

        if len(attempt.image_urls) == 1:
            container_id = self._create_container(
                {
                    "media_type": "IMAGE",
                    "image_url": attempt.image_urls[0],
                    "text": attempt.text,
                }
            )
            attempt.container_ids.append(container_id)
        else:
            for url in attempt.image_urls:
                attempt.container_ids.append(
                    self._create_container(
                        {
                            "media_type": "IMAGE",
                            "image_url": url,
                            "is_carousel_item": "true",
                        }
                    )
                )
            for item_id in attempt.container_ids:
                self.wait_until_ready(item_id)

            container_id = self._create_container(
                {
                    "media_type": "CAROUSEL",
                    "children": ",".join(attempt.container_ids),
                    "text": attempt.text,
                }
            )

        self.wait_until_ready(container_id)
        attempt.post_id = self._publish(container_id)
        logger.info(
            f"Published {title} to Threads as post {attempt.post_id} "
            f"({len(attempt.image_urls)} images)"
        )
        return attempt

    def publish_notice(self, text: str) -> PublishAttempt:
        attempt = PublishAttempt(text=truncate_text(text, THREADS_CHARACTER_LIMIT))
        container_id = self._create_container(
            {"media_type": "TEXT", "text": attempt.text}
        )
        attempt.container_ids.append(container_id)
        attempt.post_id = self._publish(container_id)
        logger.info(f"Published notice to Threads as post {attempt.post_id}")
        return attempt

    def wait_until_ready(self, container_id: str) -> None:
        """Poll a container until Threads reports it ready.

        Raises:
            PublishError: On ERROR/EXPIRED status or when the timeout elapses
        """
        deadline = self.clock() + self.poll_timeout
        while True:
            payload = self._request(
                "GET", container_id, {"fields": "status,error_message"}
            )
            status = str(payload.get("status", "")).upper()

            if status in READY_STATUSES:
                return
            if status in FAILED_STATUSES:
                raise PublishError(
                    f"Container {container_id} failed with status {status}: "
                    f"{payload.get('error_message', 'no details')}"
                )
            if self.clock() >= deadline:
                raise PublishError(
                    f"Container {container_id} not ready after {self.poll_timeout}s "
                    f"(last status {status or 'unknown'})"
                )

            logger.debug(f"Container {container_id} status {status}; polling again")
            self.sleep(self.poll_interval)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _upload_images(self, pages: List[RenderedPage]) -> List[str]:
        urls = []
        for index, page in enumerate(pages):
            if index > 0:
                self.sleep(self.upload_delay)
            # ImageHostError is a PublishError and aborts the whole post
            urls.append(self.image_host.upload_image(page))

        logger.info(f"Uploaded {len(urls)} images to the image host")
        if self.settle_delay:
            self.sleep(self.settle_delay)
        return urls

    def _shorten(self, source_url: str) -> Optional[str]:
        if self.shortener is None:
            return None
        try:
            return self.shortener.shorten(encode_url(source_url))
        except ShortenerError as e:
            logger.warning(f"Posting without link; shortening failed: {e}")
            return None

    def _create_container(self, fields: Dict[str, str]) -> str:
        payload = self._request("POST", f"{self.user_id}/threads", fields)
        container_id = payload.get("id")
        if not container_id:
            raise PublishError(f"Container creation returned no id: {payload}")
        return str(container_id)

    def _publish(self, container_id: str) -> str:
        payload = self._request(
            "POST", f"{self.user_id}/threads_publish", {"creation_id": container_id}
        )
        post_id = payload.get("id")
        if not post_id:
            raise PublishError(f"Publish returned no id: {payload}")
        return str(post_id)

    def _request(self, method: str, path: str, fields: Dict[str, str]) -> Dict[str, Any]:
        url = f"{self.api_url}/{path}"
        fields = {**fields, "access_token": self.token.get()}
        try:
            if method == "GET":
                response = self.session.get(url, params=fields, timeout=self.timeout)
            else:
                response = self.session.post(url, data=fields, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise PublishError(f"Threads {method} {path} failed: {e}") from e

        if response.status_code != 200:
            raise PublishError(
                f"Threads {method} {path} returned HTTP {response.status_code}: "
                f"{response.text[:300]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise PublishError(f"Threads {method} {path} returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise PublishError(
                f"Threads {method} {path} returned unexpected JSON: {str(payload)[:300]}"
            )
        return payload
