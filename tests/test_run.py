"""
Tests for fiabot/run.py - CLI entry point, logging and component wiring
"""

import json
import logging
import signal
import threading
from typing import Any
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner
from rich.logging import RichHandler

from fiabot import run
from fiabot.credentials import TokenRefresher, TokenRefreshError
from fiabot.processor import CycleReport
from fiabot.publishers import DryRunPublisher, ThreadsPublisher
from fiabot.run import (
    JsonFormatter,
    SensitiveDataFilter,
    create_publisher,
    install_signal_handlers,
    main,
    setup_logging,
)
from fiabot.storage import MemoryStorage, StoreConnectionError


@pytest.fixture
def restore_logging() -> Any:
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cli_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> Any:
    """Real settings pointed at a temp dir, with logging setup stubbed out."""
    monkeypatch.setattr(run.settings, "temp_dir", str(tmp_path / "temp"))
    monkeypatch.setattr(run.settings, "log_level", "INFO")
    monkeypatch.setattr(run, "setup_logging", Mock())
    return run.settings


class TestLogging:
    """Tests for logging configuration."""

    def test_setup_logging_rich(self, restore_logging: Any) -> None:
        """Default logging goes through RichHandler with redaction."""
        setup_logging("DEBUG", json_logs=False)

        assert restore_logging.level == logging.DEBUG
        handler = restore_logging.handlers[0]
        assert isinstance(handler, RichHandler)
        assert any(isinstance(f, SensitiveDataFilter) for f in handler.filters)

    def test_setup_logging_json(self, restore_logging: Any) -> None:
        """JSON mode uses the JSON formatter and quiets noisy libraries."""
        setup_logging("INFO", json_logs=True)

        handler = restore_logging.handlers[0]
        assert isinstance(handler.formatter, JsonFormatter)
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_json_formatter_fields(self) -> None:
        """JSON lines carry service metadata and pipeline context."""
        record = logging.LogRecord("fiabot.processor", logging.INFO, __file__, 1, "Posted %s", ("Doc 3",), None)
        record.trace_id = "abcd1234"
        record.document = "Doc 3"

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "Posted Doc 3"
        assert payload["level"] == "INFO"
        assert payload["service"] == "fiabot"
        assert payload["trace_id"] == "abcd1234"
        assert payload["document"] == "Doc 3"

    @pytest.mark.parametrize(
        "text,secret",
        [
            ("GET /refresh_access_token?grant_type=th_refresh_token&access_token=THAAsecret", "THAAsecret"),
            ("client_secret=abc123&x=1", "abc123"),
            ("Authorization: Api-Key sk_live_42", "sk_live_42"),
            ("headers={'X-API-Key': 'picsur-key'}", "picsur-key"),
            ("dsn host=db password=hunter2", "hunter2"),
        ],
    )
    def test_redaction(self, text: str, secret: str) -> None:
        """Secrets never reach the log output."""
        redacted = SensitiveDataFilter.redact(text)
        assert secret not in redacted
        assert "[REDACTED]" in redacted

    def test_filter_rewrites_record(self) -> None:
        """The filter replaces the formatted message and keeps the record."""
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "token %s", ("access_token=abc",), None)

        assert SensitiveDataFilter().filter(record) is True
        assert record.getMessage() == "token access_token=[REDACTED]"


class TestCreatePublisher:
    """Tests for publisher selection."""

    def test_dry_run(self) -> None:
        """Dry runs print instead of posting and skip token refresh."""
        publisher, refresher = create_publisher(dry_run=True)

        assert isinstance(publisher, DryRunPublisher)
        assert refresher is None

    def test_live(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Live publishing shares one token between publisher and refresher."""
        monkeypatch.setattr(run.settings, "threads_access_token", "THAAtoken")
        monkeypatch.setattr(run.settings, "threads_user_id", "1234")

        publisher, refresher = create_publisher(dry_run=False)

        assert isinstance(publisher, ThreadsPublisher)
        assert isinstance(refresher, TokenRefresher)
        assert publisher.token is refresher.cell
        assert publisher.token.get() == "THAAtoken"


class TestSignals:
    """Tests for shutdown signal handling."""

    def test_signal_sets_stop_event(self) -> None:
        """SIGTERM requests a graceful shutdown."""
        original_int = signal.getsignal(signal.SIGINT)
        original_term = signal.getsignal(signal.SIGTERM)
        stop_event = threading.Event()
        try:
            install_signal_handlers(stop_event)
            signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
        finally:
            signal.signal(signal.SIGINT, original_int)
            signal.signal(signal.SIGTERM, original_term)

        assert stop_event.is_set()


class TestMain:
    """Tests for the click command."""

    def test_missing_configuration_exits(self, cli_settings: Any) -> None:
        """Live runs refuse to start without the required settings."""
        with patch.object(
            type(cli_settings), "validate_required", side_effect=ValueError("Missing required configuration: DB_HOST")
        ):
            result = CliRunner().invoke(main, ["--mode", "once"])

        assert result.exit_code == 1
        assert "DB_HOST" in result.output

    @patch("fiabot.run.create_storage")
    def test_storage_failure_exits(self, mock_create_storage: Mock, cli_settings: Any) -> None:
        """An unreachable database at startup is fatal."""
        mock_create_storage.side_effect = StoreConnectionError("could not connect")

        with patch.object(type(cli_settings), "validate_required"):
            result = CliRunner().invoke(main, ["--mode", "once"])

        assert result.exit_code == 1

    @patch("fiabot.run.create_processor")
    def test_once_dry_run(self, mock_create_processor: Mock, cli_settings: Any) -> None:
        """Dry-run once mode runs one cycle against in-memory state."""
        processor = mock_create_processor.return_value
        processor.run_cycle.return_value = CycleReport(listed=2, published=2)

        result = CliRunner().invoke(main, ["--mode", "once", "--dry-run", "--limit", "3"])

        assert result.exit_code == 0, result.output
        processor.run_cycle.assert_called_once()
        store, publisher, limit, _ = mock_create_processor.call_args.args
        assert isinstance(store, MemoryStorage)
        assert isinstance(publisher, DryRunPublisher)
        assert limit == 3
        assert "Cycle report" in result.output

    @patch("fiabot.run.create_processor")
    def test_once_aborted_cycle(self, mock_create_processor: Mock, cli_settings: Any) -> None:
        """A store outage during a single cycle exits non-zero."""
        mock_create_processor.return_value.run_cycle.side_effect = StoreConnectionError("gone")

        result = CliRunner().invoke(main, ["--mode", "once", "--dry-run"])

        assert result.exit_code == 1

    @patch("fiabot.run.install_signal_handlers")
    @patch("fiabot.run.create_processor")
    def test_daemon_shutdown(
        self, mock_create_processor: Mock, mock_signals: Mock, cli_settings: Any
    ) -> None:
        """Daemon mode waits for the loop and then shuts everything down."""
        processor = mock_create_processor.return_value
        processor.start.return_value.is_alive.return_value = False
        processor.shutdown.return_value = True

        result = CliRunner().invoke(main, ["--mode", "daemon", "--dry-run", "--no-health"])

        assert result.exit_code == 0, result.output
        processor.start.assert_called_once()
        processor.shutdown.assert_called_once_with(timeout=cli_settings.shutdown_timeout)
        mock_signals.assert_called_once()

    @patch("fiabot.run.exchange_for_long_lived_token")
    def test_exchange_token(
        self, mock_exchange: Mock, cli_settings: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """exchange-token prints the long-lived token."""
        monkeypatch.setattr(cli_settings, "threads_client_secret", "client-secret")
        mock_exchange.return_value = {"access_token": "THAAlonglived", "expires_in": 5184000}

        result = CliRunner().invoke(
            main, ["--mode", "exchange-token", "--short-lived-token", "THAAshort"]
        )

        assert result.exit_code == 0, result.output
        mock_exchange.assert_called_once_with("THAAshort", "client-secret")
        assert "THAAlonglived" in result.output
        assert "60 days" in result.output

    def test_exchange_token_requires_token(self, cli_settings: Any) -> None:
        """exchange-token without a token is a usage error."""
        result = CliRunner().invoke(main, ["--mode", "exchange-token"])

        assert result.exit_code == 1

    @patch("fiabot.run.exchange_for_long_lived_token")
    def test_exchange_token_failure(
        self, mock_exchange: Mock, cli_settings: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Endpoint errors are reported and exit non-zero."""
        monkeypatch.setattr(cli_settings, "threads_client_secret", "client-secret")
        mock_exchange.side_effect = TokenRefreshError("HTTP 400")

        result = CliRunner().invoke(
            main, ["--mode", "exchange-token", "--short-lived-token", "THAAshort"]
        )

        assert result.exit_code == 1
        assert "HTTP 400" in result.output
