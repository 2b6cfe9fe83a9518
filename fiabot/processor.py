"""
FIA document bot - poll loop and worker pool

Each cycle lists the newest documents, skips the ones already in the dedup
ledger, posts recall notices synchronously and fans the rest out to a
bounded set of worker threads:

    download -> summarize (best effort) -> render -> publish -> mark processed

A document is marked processed only after its post (or recall notice) went
out, so anything that fails is retried on the next cycle.
"""

import logging
import os
import tempfile
import threading
import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Document, ProcessedRecord
from .publishers.base import PublishError, Publisher
from .render import PDFRenderer, RenderError
from .scraper import (
    FetchError,
    FIAScraper,
    InvalidArtifactError,
    NoDocumentsError,
    RecalledError,
)
from .storage import Store, StoreConnectionError, StoreError
from .summary import SummarizationError, Summarizer
from .utils import format_recall_notice

logger = logging.getLogger(__name__)


class Outcome(Enum):
    """Disposition of one listed document within a cycle."""

    SKIPPED = "skipped"
    RECALLED = "recalled"
    PUBLISHED = "published"
    FAILED = "failed"


@dataclass
class CycleReport:
    """Counts for one poll cycle."""

    listed: int = 0
    skipped: int = 0
    recalled: int = 0
    published: int = 0
    failed: int = 0

    def record(self, outcome: Outcome) -> None:
        attr = outcome.value
        setattr(self, attr, getattr(self, attr) + 1)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DocumentProcessor:
    """Drives the scraper, store, summarizer, renderer and publisher."""

    def __init__(
        self,
        scraper: FIAScraper,
        store: Store,
        publisher: Publisher,
        renderer: PDFRenderer,
        summarizer: Optional[Summarizer] = None,
        documents_to_fetch: int = 8,
        max_workers: int = 5,
        poll_interval: float = 30.0,
        temp_dir: str = "temp",
        store_retry_short: float = 5.0,
        store_retry_long: float = 60.0,
        stop_event: Optional[threading.Event] = None,
    ):
        self.scraper = scraper
        self.store = store
        self.publisher = publisher
        self.renderer = renderer
        self.summarizer = summarizer
        self.documents_to_fetch = documents_to_fetch
        self.max_workers = max_workers
        self.poll_interval = poll_interval
        self.temp_dir = temp_dir
        self.store_retry_short = store_retry_short
        self.store_retry_long = store_retry_long
        self.stop_event = stop_event or threading.Event()

        self._slots = threading.BoundedSemaphore(max_workers)
        self._loop_thread: Optional[threading.Thread] = None
        self.cycles = 0

    # ------------------------------------------------------------------
    # Loop lifecycle
    # ------------------------------------------------------------------

    def run_forever(self) -> None:
        """Run cycles until the stop event is set."""
        while not self.stop_event.is_set():
            try:
                report = self.run_cycle()
                logger.info(f"Cycle finished: {report.to_dict()}")
            except StoreConnectionError as e:
                logger.warning(f"Cycle aborted: {e}")
            except Exception:
                logger.exception("Unexpected error in poll cycle; continuing")

            logger.info(f"Sleeping for {self.poll_interval} seconds...")
            if self.stop_event.wait(self.poll_interval):
                break
        logger.info("Poll loop stopped")

    def start(self) -> threading.Thread:
        """Run the poll loop in a background thread."""
        self._loop_thread = threading.Thread(
            target=self.run_forever, name="poll-loop", daemon=True
        )
        self._loop_thread.start()
        return self._loop_thread

    def shutdown(self, timeout: float = 60.0) -> bool:
        """Stop polling and wait up to ``timeout`` seconds for in-flight work.

        Units are never interrupted. Returns False if the timeout elapsed
        first; unfinished documents were not marked and will be retried.
        """
        self.stop_event.set()
        if self._loop_thread is None:
            return True

        self._loop_thread.join(timeout)
        if self._loop_thread.is_alive():
            logger.warning(f"In-flight documents still running after {timeout}s")
            return False
        return True

    # ------------------------------------------------------------------
    # Store guard
    # ------------------------------------------------------------------

    def ensure_store_connection(self) -> None:
        """Block until the store answers.

        One short-interval recheck, then reconnect attempts on the long
        interval until one succeeds.

        Raises:
            StoreConnectionError: Only if shutdown is requested while waiting
        """
        try:
            self.store.check_connection()
            return
        except StoreConnectionError as e:
            logger.warning(
                f"Database connection lost: {e}; retrying in {self.store_retry_short}s"
            )

        self._wait(self.store_retry_short)
        try:
            self.store.check_connection()
            logger.info("Database connection recovered")
            return
        except StoreConnectionError as e:
            logger.error(f"Database still unreachable: {e}")

        while True:
            try:
                self.store.reconnect()
                logger.info("Database reconnected")
                return
            except StoreConnectionError as e:
                logger.error(
                    f"Database reconnect failed: {e}; "
                    f"retrying in {self.store_retry_long}s"
                )
            self._wait(self.store_retry_long)

    def _wait(self, seconds: float) -> None:
        if self.stop_event.wait(seconds):
            raise StoreConnectionError("Shutdown requested while waiting for the database")

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleReport:
        """List, filter and process one batch of documents."""
        report = CycleReport()
        self.cycles += 1

        self.ensure_store_connection()

        logger.info("Checking for new documents...")
        try:
            documents = self.scraper.fetch_latest_documents(self.documents_to_fetch)
        except NoDocumentsError as e:
            logger.info(f"{e}")
            return report
        except FetchError as e:
            logger.error(f"Error fetching documents: {e}")
            return report

        report.listed = len(documents)
        workers: List[threading.Thread] = []
        outcomes: List[Outcome] = []
        outcomes_lock = threading.Lock()

        for document in documents:
            if self.stop_event.is_set():
                logger.info("Shutdown requested; not dispatching further documents")
                break

            self.ensure_store_connection()
            if self.store.is_processed(document):
                logger.info(f"Skipping already processed document: {document.title}")
                report.record(Outcome.SKIPPED)
                continue

            if self.scraper.is_recalled(document):
                report.record(self.handle_recalled(document))
                continue

            self._slots.acquire()
            worker = threading.Thread(
                target=self._run_unit,
                args=(document, outcomes, outcomes_lock),
                name=f"doc-worker-{len(workers) + 1}",
                daemon=True,
            )
            worker.start()
            workers.append(worker)

        for worker in workers:
            worker.join()

        for outcome in outcomes:
            report.record(outcome)
        return report

    def _run_unit(
        self, document: Document, outcomes: List[Outcome], lock: threading.Lock
    ) -> None:
        outcome = Outcome.FAILED
        try:
            outcome = self.process_document(document)
        except Exception:
            logger.exception(f"Unexpected error processing {document.title}")
        finally:
            self._slots.release()
            with lock:
                outcomes.append(outcome)

    # ------------------------------------------------------------------
    # Per-document work
    # ------------------------------------------------------------------

    def process_document(self, document: Document) -> Outcome:
        """Run the full pipeline for one document in its own temp directory."""
        log = logging.LoggerAdapter(
            logger, {"trace_id": uuid.uuid4().hex[:8], "document": document.title}
        )
        log.info(f"Processing new document: {document.title}")

        os.makedirs(self.temp_dir, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="doc-", dir=self.temp_dir) as work_dir:
            try:
                pdf_path = self.scraper.download_document(document, work_dir)
            except (RecalledError, InvalidArtifactError) as e:
                log.info(f"Document withdrawn after listing ({e}); posting notice")
                return self.handle_recalled(document)
            except FetchError as e:
                log.error(f"Error downloading document: {e}")
                return Outcome.FAILED

            summary = self._summarize(pdf_path, log)

            try:
                pages = self.renderer.render(pdf_path)
            except RenderError as e:
                log.error(f"Error rendering document: {e}")
                return Outcome.FAILED
            log.info(f"Converted PDF to {len(pages)} images")

            try:
                self.publisher.publish_document(
                    pages, document.title, document.published, document.url, summary
                )
            except PublishError as e:
                log.error(f"Error posting to Threads: {e}")
                return Outcome.FAILED

        log.info(f"Successfully posted to Threads: {document.title}")
        self._mark_processed(document)
        return Outcome.PUBLISHED

    def _summarize(self, pdf_path: Path, log: logging.LoggerAdapter) -> str:
        if self.summarizer is None:
            return ""
        try:
            return self.summarizer.generate_summary(pdf_path)
        except (SummarizationError, TimeoutError) as e:
            log.warning(f"Posting without summary: {e}")
            return ""

    def handle_recalled(self, document: Document) -> Outcome:
        """Post a recall notice; mark processed only if it went out."""
        try:
            self.publisher.publish_notice(
                format_recall_notice(document.title, document.published)
            )
        except PublishError as e:
            logger.error(f"Error posting recall notice for {document.title}: {e}")
            return Outcome.FAILED

        logger.info(f"Posted recall notice: {document.title}")
        self._mark_processed(document)
        return Outcome.RECALLED

    def _mark_processed(self, document: Document) -> None:
        # The post is already out; a failed write is logged, not retried here
        try:
            self.ensure_store_connection()
            self.store.mark_processed(ProcessedRecord.from_document(document))
        except StoreError as e:
            logger.error(f"Error updating storage for {document.title}: {e}")
