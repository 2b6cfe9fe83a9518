"""FIA decision-document listing scraper and downloader."""

import logging
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import urljoin

import pytz
import requests
from bs4 import BeautifulSoup, Tag
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .models import Document
from .utils import sanitize_filename

logger = logging.getLogger(__name__)

FIA_BASE_URL = "https://www.fia.com"
FIA_TIMEZONE = pytz.timezone("Europe/Paris")
DATE_FORMAT = "%d.%m.%y %H:%M"
PDF_MAGIC = b"%PDF-"
MIN_PDF_BYTES = 1000
DOWNLOAD_TIMEOUT = 30

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ScraperError(Exception):
    """Base class for document source failures."""


class FetchError(ScraperError):
    """Listing or download failed in transport or parsing."""


class NoDocumentsError(ScraperError):
    """The listing loaded but held no documents for the active event."""


class RecalledError(ScraperError):
    """The document has been withdrawn by the FIA."""


class InvalidArtifactError(ScraperError):
    """The downloaded file is not a real PDF (placeholder or error page)."""


def is_recalled(document: Document) -> bool:
    """Check the title for a leading or embedded "recalled" marker."""
    title = document.title.lower()
    return title.startswith("recalled") or "recalled -" in title


def parse_published(raw: str) -> datetime:
    """Parse an FIA listing date (Paris local time) into UTC.

    Unparseable values fall back to the Unix epoch so they sort last.
    """
    try:
        naive = datetime.strptime(raw.strip(), DATE_FORMAT)
    except ValueError:
        logger.warning(f"Unparseable publish date {raw!r}; sorting it last")
        return _EPOCH
    return FIA_TIMEZONE.localize(naive).astimezone(timezone.utc)


class FIAScraper:
    """Reads the FIA decision-document listing and downloads documents."""

    def __init__(
        self,
        listing_url: str,
        timeout: float = 30.0,
        retries: int = 3,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the scraper.

        Args:
            listing_url: Season page listing decision documents
            timeout: Request timeout for the listing page in seconds
            retries: urllib3 retry budget for GET requests
            backoff: urllib3 backoff factor
            session: Pre-built session (tests)
        """
        self.listing_url = listing_url
        self.timeout = timeout
        self.session = session or self._build_session(retries, backoff)

    @staticmethod
    def _build_session(retries: int, backoff: float) -> requests.Session:
        session = requests.Session()

        # Retry strategy for 429, 500, 502, 503, 504
        retry_strategy = Retry(
            total=retries,
            backoff_factor=backoff,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    @staticmethod
    def _cache_busting_headers() -> Dict[str, str]:
        return {
            "User-Agent": random.choice(USER_AGENTS),
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        }

    def _get(self, url: str, timeout: float, stream: bool = False) -> requests.Response:
        return self.session.get(
            url,
            params={"_cb": str(time.time_ns())},
            headers=self._cache_busting_headers(),
            timeout=timeout,
            stream=stream,
        )

    def is_recalled(self, document: Document) -> bool:
        return is_recalled(document)

    def fetch_latest_documents(self, limit: int) -> List[Document]:
        """Return up to ``limit`` documents of the active event, newest first.

        Raises:
            FetchError: The page is unreachable or lacks the event listing
            NoDocumentsError: The page loaded but no documents were found
        """
        try:
            response = self._get(self.listing_url, self.timeout)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Failed to fetch listing {self.listing_url}: {e}") from e

        if response.status_code != 200:
            raise FetchError(
                f"Listing {self.listing_url} returned HTTP {response.status_code}"
            )

        documents = self.parse_listing(response.text)
        if not documents:
            raise NoDocumentsError("No documents found for the current event")

        documents = sorted(documents, key=lambda d: d.published, reverse=True)
        return documents[:limit]

    def parse_listing(self, html: str) -> List[Document]:
        """Extract documents nested under the active event of a listing page."""
        soup = BeautifulSoup(html, "html.parser")
        wrapper = soup.select_one("ul.event-wrapper")
        if wrapper is None:
            raise FetchError("Listing page has no event-wrapper element")

        active_event = self._find_active_event(wrapper)
        if active_event is None:
            logger.info("No active event on the listing page")
            return []

        documents: List[Document] = []
        for row in active_event.select("li.document-row"):
            document = self._parse_row(row)
            if document is not None:
                documents.append(document)
        return documents

    @staticmethod
    def _find_active_event(wrapper: Tag) -> Optional[Tag]:
        for item in wrapper.select("li"):
            if "document-row" in (item.get("class") or []):
                continue
            if item.select_one(".event-title.active") is not None:
                return item
        return None

    @staticmethod
    def _parse_row(row: Tag) -> Optional[Document]:
        title_el = row.select_one(".title")
        link_el = row.select_one("a[href]")
        if title_el is None or link_el is None:
            return None

        title = title_el.get_text().strip()
        href = link_el.get("href", "").strip()
        if not title or not href:
            return None

        date_el = row.select_one(".published .date-display-single")
        published = parse_published(date_el.get_text()) if date_el else _EPOCH

        return Document(
            title=title, url=urljoin(FIA_BASE_URL, href), published=published
        )

    def download_document(
        self, document: Document, destination_dir: Union[str, Path]
    ) -> Path:
        """Download a document PDF into ``destination_dir`` and validate it.

        Raises:
            RecalledError: The title marks the document as recalled (no request made)
            FetchError: Transport failure or non-200 response
            InvalidArtifactError: The file is not a plausible PDF (file removed)
        """
        if is_recalled(document):
            raise RecalledError(f"Document is recalled: {document.title}")

        path = Path(destination_dir) / f"{sanitize_filename(document.title)}.pdf"

        try:
            response = self._get(document.url, DOWNLOAD_TIMEOUT, stream=True)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Failed to download {document.url}: {e}") from e

        with response:
            if response.status_code != 200:
                raise FetchError(
                    f"Download of {document.url} returned HTTP {response.status_code}"
                )
            try:
                with open(path, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=64 * 1024):
                        if chunk:
                            fh.write(chunk)
            except (OSError, requests.exceptions.RequestException) as e:
                path.unlink(missing_ok=True)
                raise FetchError(f"Failed to write {path}: {e}") from e

        self._validate_pdf(path)
        logger.info(f"Downloaded {document.title} ({path.stat().st_size} bytes)")
        return path

    @staticmethod
    def _validate_pdf(path: Path) -> None:
        size = path.stat().st_size
        with open(path, "rb") as fh:
            head = fh.read(len(PDF_MAGIC))

        if head != PDF_MAGIC or size < MIN_PDF_BYTES:
            path.unlink(missing_ok=True)
            raise InvalidArtifactError(
                f"{path.name} is not a valid PDF ({size} bytes, header {head!r})"
            )
