"""Tests for fiabot/scraper.py - listing parser and downloader."""

from datetime import datetime, timezone

import pytest
import requests

from fiabot.scraper import (
    FIAScraper,
    FetchError,
    InvalidArtifactError,
    NoDocumentsError,
    RecalledError,
    is_recalled,
    parse_published,
)
from tests.fakes import FAKE_PDF, LISTING_URL, document_row, listing_html, make_document


@pytest.fixture
def scraper() -> FIAScraper:
    return FIAScraper(LISTING_URL, retries=0)


class TestIsRecalled:
    """Tests for the recall title check."""

    @pytest.mark.parametrize(
        "title",
        [
            "Recalled - Updated Document",
            "RECALLED - Race Direction Notes",
            "recalled Doc 12",
            "Doc 12 - Recalled - Car 4",
        ],
    )
    def test_recalled_titles(self, title):
        """Leading or embedded markers are detected case-insensitively."""
        assert is_recalled(make_document(title=title)) is True

    @pytest.mark.parametrize(
        "title", ["Decision Document 23", "Summons - Car 44", "Recall procedure notes"]
    )
    def test_regular_titles(self, title):
        """Ordinary titles are not recalled."""
        assert is_recalled(make_document(title=title)) is False


class TestParsePublished:
    """Tests for FIA listing dates."""

    def test_paris_summer_time_to_utc(self):
        """CEST dates are shifted two hours back to UTC."""
        assert parse_published("18.05.25 15:00") == datetime(
            2025, 5, 18, 13, 0, tzinfo=timezone.utc
        )

    def test_paris_winter_time_to_utc(self):
        """CET dates are shifted one hour back to UTC."""
        assert parse_published(" 07.12.25 14:05 ") == datetime(
            2025, 12, 7, 13, 5, tzinfo=timezone.utc
        )

    def test_unparseable_date_sorts_last(self):
        """Garbage dates fall back to the epoch."""
        assert parse_published("yesterday") == datetime(1970, 1, 1, tzinfo=timezone.utc)


class TestFetchLatestDocuments:
    """Tests for listing the active event's documents."""

    def test_returns_active_event_newest_first(self, scraper, mock_requests):
        """Only active-event rows are returned, sorted by publish time."""
        html = listing_html(
            active_rows=[
                document_row("Doc 1 - Entry List", "/sites/default/files/doc1.pdf", "16.05.25 10:00"),
                document_row("Doc 3 - Decision Car 44", "/sites/default/files/doc3.pdf", "18.05.25 15:00"),
                document_row("Doc 2 - Summons", "https://www.fia.com/files/doc2.pdf", "17.05.25 12:30"),
            ],
            other_rows=[
                document_row("Doc 99 - Other Event", "/sites/default/files/doc99.pdf", "19.05.25 09:00"),
            ],
        )
        mock_requests.get(LISTING_URL, text=html)

        documents = scraper.fetch_latest_documents(8)

        assert [d.title for d in documents] == [
            "Doc 3 - Decision Car 44",
            "Doc 2 - Summons",
            "Doc 1 - Entry List",
        ]
        assert documents[0].url == "https://www.fia.com/sites/default/files/doc3.pdf"
        assert documents[1].url == "https://www.fia.com/files/doc2.pdf"
        assert documents[0].published == datetime(2025, 5, 18, 13, 0, tzinfo=timezone.utc)

    def test_title_keeps_spacing_around_inline_markup(self, scraper, mock_requests):
        """Nested tags inside the title do not swallow the surrounding spaces."""
        html = listing_html(
            [
                document_row(
                    "  Doc 5 - <span>Summons</span> - Car 44\n",
                    "/sites/default/files/doc5.pdf",
                    "17.05.25 12:30",
                )
            ]
        )
        mock_requests.get(LISTING_URL, text=html)

        documents = scraper.fetch_latest_documents(8)

        assert [d.title for d in documents] == ["Doc 5 - Summons - Car 44"]

    def test_truncates_to_limit(self, scraper, mock_requests):
        """At most ``limit`` documents are returned."""
        rows = [
            document_row(f"Doc {i}", f"/files/doc{i}.pdf", f"{10 + i:02d}.05.25 10:00")
            for i in range(1, 6)
        ]
        mock_requests.get(LISTING_URL, text=listing_html(rows))

        documents = scraper.fetch_latest_documents(2)

        assert [d.title for d in documents] == ["Doc 5", "Doc 4"]

    def test_cache_busting(self, scraper, mock_requests):
        """Requests carry a cache-buster and no-cache headers."""
        mock_requests.get(
            LISTING_URL, text=listing_html([document_row("Doc 1", "/d1.pdf", "16.05.25 10:00")])
        )

        scraper.fetch_latest_documents(8)

        request = mock_requests.request_history[0]
        assert "_cb" in request.qs
        assert request.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
        assert request.headers["Pragma"] == "no-cache"
        assert request.headers["Expires"] == "0"
        assert request.headers["User-Agent"].startswith("Mozilla/5.0")

    def test_missing_event_wrapper(self, scraper, mock_requests):
        """An unexpected page structure is a fetch error."""
        mock_requests.get(LISTING_URL, text="<html><body><p>Maintenance</p></body></html>")

        with pytest.raises(FetchError, match="event-wrapper"):
            scraper.fetch_latest_documents(8)

    def test_no_active_event(self, scraper, mock_requests):
        """A listing without an active event has no documents."""
        html = listing_html([]).replace("event-title active", "event-title")
        mock_requests.get(LISTING_URL, text=html)

        with pytest.raises(NoDocumentsError):
            scraper.fetch_latest_documents(8)

    def test_empty_active_event(self, scraper, mock_requests):
        """An active event without rows raises NoDocumentsError, not FetchError."""
        mock_requests.get(
            LISTING_URL,
            text=listing_html([], other_rows=[document_row("Old", "/old.pdf", "01.05.25 10:00")]),
        )

        with pytest.raises(NoDocumentsError) as excinfo:
            scraper.fetch_latest_documents(8)
        assert not isinstance(excinfo.value, FetchError)

    def test_http_error(self, scraper, mock_requests):
        """Non-200 listing responses are fetch errors."""
        mock_requests.get(LISTING_URL, status_code=503)

        with pytest.raises(FetchError, match="503"):
            scraper.fetch_latest_documents(8)

    def test_connection_error(self, scraper, mock_requests):
        """Transport failures are fetch errors."""
        mock_requests.get(LISTING_URL, exc=requests.exceptions.ConnectionError("refused"))

        with pytest.raises(FetchError, match="refused"):
            scraper.fetch_latest_documents(8)


class TestDownloadDocument:
    """Tests for PDF download and validation."""

    def test_download_success(self, scraper, mock_requests, tmp_path):
        """Valid PDFs are written under a sanitized name."""
        document = make_document(title="Doc 7 - Car 1/16: Offence")
        mock_requests.get(document.url, content=FAKE_PDF)

        path = scraper.download_document(document, tmp_path)

        assert path == tmp_path / "Doc 7 - Car 1_16_ Offence.pdf"
        assert path.read_bytes() == FAKE_PDF
        assert "_cb" in mock_requests.request_history[0].qs

    def test_recalled_document_is_not_requested(self, scraper, mock_requests, tmp_path):
        """Recalled titles fail fast without any HTTP request."""
        document = make_document(title="Recalled - Race Direction Notes")

        with pytest.raises(RecalledError):
            scraper.download_document(document, tmp_path)

        assert mock_requests.call_count == 0

    def test_placeholder_page_is_rejected(self, scraper, mock_requests, tmp_path):
        """A small non-PDF body is invalid and the file is removed."""
        document = make_document()
        mock_requests.get(document.url, content=b"<html>Document not found</html>")

        with pytest.raises(InvalidArtifactError):
            scraper.download_document(document, tmp_path)

        assert list(tmp_path.iterdir()) == []

    def test_tiny_pdf_is_rejected(self, scraper, mock_requests, tmp_path):
        """A PDF header on a pathologically small file is still invalid."""
        document = make_document()
        mock_requests.get(document.url, content=b"%PDF-1.4\n%%EOF")

        with pytest.raises(InvalidArtifactError):
            scraper.download_document(document, tmp_path)

        assert list(tmp_path.iterdir()) == []

    def test_http_error(self, scraper, mock_requests, tmp_path):
        """Non-200 downloads are fetch errors."""
        document = make_document()
        mock_requests.get(document.url, status_code=404)

        with pytest.raises(FetchError, match="404"):
            scraper.download_document(document, tmp_path)
