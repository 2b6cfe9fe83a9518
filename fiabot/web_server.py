"""Health and debug HTTP endpoints for the FIA document bot."""

import logging
import sys
import threading
import time
import traceback
from typing import Any, Optional

from flask import Flask, Response, jsonify
from werkzeug.serving import BaseWSGIServer, make_server

from .storage import Store, StoreConnectionError

logger = logging.getLogger(__name__)


def create_web_server(
    store: Store,
    started_at: Optional[float] = None,
    enable_debug: bool = False,
    version: str = "unknown",
    environment: str = "production",
) -> Flask:
    """Create the Flask app serving /health and optional debug endpoints."""

    app = Flask(__name__)
    started = started_at if started_at is not None else time.time()

    def diagnostics() -> dict:
        return {
            "service": "fiabot",
            "version": version,
            "environment": environment,
            "uptime_seconds": round(time.time() - started, 1),
            "threads": threading.active_count(),
        }

    @app.route("/health", methods=["GET"])
    def health_check() -> Any:
        """Health check endpoint: 200 when the database answers, else 503."""
        try:
            store.check_connection()
        except StoreConnectionError as e:
            logger.warning(f"Health check failed: {e}")
            return jsonify({"status": "unhealthy", "database": str(e), **diagnostics()}), 503
        return jsonify({"status": "healthy", "database": "ok", **diagnostics()})

    if enable_debug:

        @app.route("/debug/threads", methods=["GET"])
        def thread_dump() -> Any:
            """Stack dump of every live thread."""
            names = {t.ident: t.name for t in threading.enumerate()}
            lines = []
            for ident, frame in sys._current_frames().items():
                lines.append(f"--- {names.get(ident, 'unknown')} ({ident}) ---")
                lines.extend(line.rstrip() for line in traceback.format_stack(frame))
                lines.append("")
            return Response("\n".join(lines), mimetype="text/plain")

    return app


class HealthServer:
    """Serves the Flask app from a daemon thread."""

    def __init__(self, app: Flask, host: str = "0.0.0.0", port: int = 8080):
        self.app = app
        self.host = host
        self.port = port
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="health-server", daemon=True
        )
        self._thread.start()
        logger.info(f"Health server listening on {self.host}:{self.port}")

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server = None
