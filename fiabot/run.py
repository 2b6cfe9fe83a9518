"""Main entry point for the FIA document bot."""

import json
import logging
import os
import re
import signal
import sys
import threading
import time
from datetime import timedelta
from typing import Any, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import settings
from .credentials import (
    TokenCell,
    TokenRefresher,
    TokenRefreshError,
    exchange_for_long_lived_token,
)
from .processor import DocumentProcessor
from .publishers import DryRunPublisher, PicsurClient, ShortenerClient, ThreadsPublisher
from .render import PDFRenderer
from .scraper import FIAScraper
from .storage import MemoryStorage, StoreConnectionError, create_storage
from .summary import SummarizationError, Summarizer
from .web_server import HealthServer, create_web_server

console = Console()

NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "google_genai", "werkzeug")


class SensitiveDataFilter(logging.Filter):
    """Masks tokens, secrets and API keys in log records."""

    PATTERNS = [
        re.compile(r"((?:access_token|client_secret|api_key)=)[^&\s'\"]+", re.I),
        re.compile(r"(Api-Key\s+)\S+", re.I),
        re.compile(r"(X-API-Key['\"]?\s*[:=]\s*['\"]?)[^'\"\s,}]+", re.I),
        re.compile(r"(password=)\S+", re.I),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern in cls.PATTERNS:
            text = pattern.sub(r"\1[REDACTED]", text)
        return text


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with service metadata and pipeline context."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "message": record.getMessage(),
            "name": record.name,
            "service": "fiabot",
            "environment": settings.environment,
            "version": settings.version,
        }
        for key in ("trace_id", "document"):
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exception"] = SensitiveDataFilter.redact(
                self.formatException(record.exc_info)
            )
        return json.dumps(payload)


# Configure logging
def setup_logging(level: str, json_logs: Optional[bool] = None) -> None:
    """Set up logging with Rich handler or JSON lines."""
    log_level = getattr(logging, level.upper())
    use_json = settings.log_json if json_logs is None else json_logs

    if use_json:
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=log_level, handlers=[handler], force=True)
    else:
        handler = RichHandler(console=console, rich_tracebacks=True)
        logging.basicConfig(
            level=log_level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[handler],
            force=True,
        )
    handler.addFilter(SensitiveDataFilter())

    if log_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def create_summarizer() -> Optional[Summarizer]:
    """Build the Gemini summarizer; posts go out without summaries if it fails."""
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set - posts will have no AI summary")
        return None
    try:
        return Summarizer(
            settings.gemini_api_key,
            model=settings.gemini_model,
            timeout=settings.summary_timeout,
        )
    except SummarizationError as e:
        logger.error(f"Failed to initialize summarizer: {e}")
        return None


def create_publisher(dry_run: bool) -> Tuple[Any, Optional[TokenRefresher]]:
    """Create the publisher and, for live posting, its token refresher."""
    if dry_run:
        return DryRunPublisher(console=console, hashtag=settings.post_hashtag), None

    token = TokenCell(settings.threads_access_token or "")
    refresher = TokenRefresher(
        token,
        refresh_every=timedelta(days=settings.token_refresh_days),
        refresh_margin=timedelta(days=settings.token_refresh_margin_days),
    )
    publisher = ThreadsPublisher(
        token=token,
        user_id=settings.threads_user_id or "",
        image_host=PicsurClient(
            settings.picsur_url or "",
            settings.picsur_api or "",
            timeout=settings.http_timeout_seconds,
        ),
        shortener=ShortenerClient(settings.shortener_url or "", settings.shortener_api_key or ""),
        hashtag=settings.post_hashtag,
        poll_interval=settings.threads_poll_interval,
        poll_timeout=settings.threads_poll_timeout,
        timeout=settings.http_timeout_seconds,
    )
    return publisher, refresher


def create_processor(
    store: Any, publisher: Any, limit: Optional[int], stop_event: threading.Event
) -> DocumentProcessor:
    return DocumentProcessor(
        scraper=FIAScraper(
            settings.fia_url,
            timeout=settings.http_timeout_seconds,
            retries=settings.http_retries,
            backoff=settings.http_backoff,
        ),
        store=store,
        publisher=publisher,
        renderer=PDFRenderer(dpi=settings.render_dpi),
        summarizer=create_summarizer(),
        documents_to_fetch=limit or settings.documents_to_fetch,
        max_workers=settings.max_workers,
        poll_interval=settings.scrape_interval,
        temp_dir=settings.temp_dir,
        store_retry_short=settings.store_retry_short,
        store_retry_long=settings.store_retry_long,
        stop_event=stop_event,
    )


def print_report(report: Any) -> None:
    table = Table(title="Cycle report")
    table.add_column("Outcome")
    table.add_column("Documents", justify="right")
    for key, value in report.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM."""

    def handle(signum: int, _frame: Any) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def run_exchange_token(short_lived_token: Optional[str]) -> None:
    """Swap a short-lived Threads token for a long-lived one and print it."""
    if not short_lived_token or not settings.threads_client_secret:
        console.print(
            "[red]❌ exchange-token needs --short-lived-token and THREADS_CLIENT_SECRET[/red]"
        )
        sys.exit(1)
    try:
        payload = exchange_for_long_lived_token(
            short_lived_token, settings.threads_client_secret
        )
    except (TokenRefreshError, ValueError) as e:
        console.print(f"[red]❌ Token exchange failed:[/red] {e}")
        sys.exit(1)

    days = int(payload.get("expires_in", 0)) // 86400
    console.print("[green]✅ Long-lived token (set THREADS_ACCESS_TOKEN):[/green]")
    console.print(payload["access_token"], soft_wrap=True)
    console.print(f"Expires in {days} days")


@click.command()
@click.option(
    "--mode",
    type=click.Choice(["daemon", "once", "exchange-token"]),
    default="daemon",
    help="Run mode: poll forever, run a single cycle, or exchange a Threads token",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Print posts instead of publishing; keeps state in memory only",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Set logging level (defaults to LOG_LEVEL)",
)
@click.option("--json-logs", is_flag=True, default=False, help="Emit logs as JSON lines")
@click.option("--limit", default=None, type=int, help="Documents to check per cycle")
@click.option("--port", default=None, type=int, help="Health server port")
@click.option("--no-health", is_flag=True, default=False, help="Do not start the health server")
@click.option(
    "--short-lived-token",
    default=None,
    help="Short-lived Threads token for exchange-token mode",
)
def main(
    mode: str,
    dry_run: bool,
    log_level: Optional[str],
    json_logs: bool,
    limit: Optional[int],
    port: Optional[int],
    no_health: bool,
    short_lived_token: Optional[str],
) -> None:
    """Watch the FIA decision-document listing and post new documents to Threads."""
    if log_level:
        settings.log_level = log_level
    setup_logging(settings.log_level, json_logs=json_logs or None)

    if mode == "exchange-token":
        run_exchange_token(short_lived_token)
        return

    logger.info(f"🏁 Starting FIA document bot in {mode} mode (version {settings.version})")

    if not dry_run:
        try:
            settings.validate_required()
        except ValueError as e:
            console.print(f"[red]❌ Configuration error:[/red] {e}")
            sys.exit(1)

    os.makedirs(settings.temp_dir, exist_ok=True)

    if dry_run:
        store: Any = MemoryStorage()
    else:
        try:
            store = create_storage(
                settings.database_dsn_kwargs(), max_connections=settings.max_workers + 2
            )
        except StoreConnectionError as e:
            logger.error(f"Failed to initialize storage: {e}")
            sys.exit(1)

    stop_event = threading.Event()
    publisher, refresher = create_publisher(dry_run)
    processor = create_processor(store, publisher, limit, stop_event)

    if mode == "once":
        try:
            print_report(processor.run_cycle())
        except StoreConnectionError as e:
            logger.error(f"Cycle aborted: {e}")
            sys.exit(1)
        finally:
            store.close()
        return

    health: Optional[HealthServer] = None
    if not no_health:
        app = create_web_server(
            store,
            started_at=time.time(),
            enable_debug=settings.enable_debug_endpoints,
            version=settings.version,
            environment=settings.environment,
        )
        health = HealthServer(app, host=settings.health_host, port=port or settings.health_port)
        try:
            health.start()
        except OSError as e:
            logger.error(f"Health server failed to start: {e}")
            health = None

    if refresher is not None:
        refresher.start()

    install_signal_handlers(stop_event)
    loop = processor.start()
    while loop.is_alive() and not stop_event.wait(1.0):
        pass

    if not processor.shutdown(timeout=settings.shutdown_timeout):
        logger.warning("Exiting with documents still in flight; they will be retried")

    if refresher is not None:
        refresher.stop()
    if health is not None:
        health.stop()
    store.close()
    logger.info("✅ FIA document bot stopped")


if __name__ == "__main__":
    main()
