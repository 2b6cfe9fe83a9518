"""PostgreSQL dedup ledger for processed documents."""

import logging
import threading
from contextlib import contextmanager
from datetime import timezone
from typing import Any, Dict, Iterator, Optional, Protocol

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from .models import Document, ProcessedRecord

logger = logging.getLogger(__name__)

TABLE_NAME = "processed_documents"
LEGACY_URL_CONSTRAINT = "processed_documents_url_key"
TITLE_URL_CONSTRAINT = "processed_documents_title_url_key"


class StoreError(Exception):
    """Raised when a dedup store operation fails."""


class StoreConnectionError(StoreError):
    """Raised when the dedup store is unreachable."""


class Store(Protocol):
    """Protocol for dedup stores; every method must be thread-safe."""

    def is_processed(self, document: Document) -> bool:
        """Return True if the (title, url) key is recorded.

        Errors are reported as False (not processed).
        """
        ...

    def mark_processed(self, record: ProcessedRecord) -> None:
        """Record a handled document; recording an existing key is a no-op.

        Raises:
            StoreError: If the record cannot be written
        """
        ...

    def check_connection(self) -> None:
        """Raises StoreConnectionError if the store is unreachable."""
        ...

    def reconnect(self) -> None:
        """Rebuild the connection; raises StoreConnectionError on failure."""
        ...

    def close(self) -> None: ...


class PostgresStorage:
    """Postgres-backed store with a threaded connection pool."""

    def __init__(
        self,
        connect_kwargs: Dict[str, Any],
        min_connections: int = 1,
        max_connections: int = 10,
        connect_timeout: int = 10,
    ):
        """Connect and make sure the schema is current.

        Args:
            connect_kwargs: psycopg2 connect keywords (host, port, user, ...)
            min_connections: Pool floor
            max_connections: Pool ceiling; at least the worker count plus one
            connect_timeout: Seconds before a connection attempt gives up

        Raises:
            StoreConnectionError: If the database cannot be reached
        """
        self.connect_kwargs = dict(connect_kwargs)
        self.connect_kwargs.setdefault("connect_timeout", connect_timeout)
        self.min_connections = min_connections
        self.max_connections = max_connections
        self._lock = threading.Lock()
        self._pool: Optional[ThreadedConnectionPool] = None

        self._pool = self._create_pool()
        self.check_connection()
        self.ensure_schema()

    def _create_pool(self) -> ThreadedConnectionPool:
        try:
            return ThreadedConnectionPool(
                self.min_connections,
                self.max_connections,
                cursor_factory=psycopg2.extras.RealDictCursor,
                **self.connect_kwargs,
            )
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise StoreConnectionError(f"Failed to connect to PostgreSQL: {e}") from e

    @contextmanager
    def _conn(self) -> Iterator[Any]:
        with self._lock:
            pool = self._pool
        if pool is None:
            raise StoreConnectionError("Connection pool is closed")

        conn = pool.getconn()
        broken = False
        try:
            yield conn
        except psycopg2.Error:
            broken = bool(conn.closed)
            raise
        finally:
            with self._lock:
                current = pool is self._pool
            if current:
                pool.putconn(conn, close=broken)
            else:
                # Pool was replaced or closed while this connection was out
                conn.close()

    def ensure_schema(self) -> None:
        """Create the ledger table, or migrate a URL-only unique constraint.

        The migration runs in one transaction and is safe against either
        schema shape.
        """
        with self._conn() as conn:
            with conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT to_regclass(%s) AS oid", (TABLE_NAME,))
                    exists = cur.fetchone()["oid"] is not None

                    if not exists:
                        logger.info(f"Creating {TABLE_NAME} table")
                        cur.execute(
                            f"""
                            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                                id SERIAL PRIMARY KEY,
                                title TEXT NOT NULL,
                                url TEXT NOT NULL,
                                timestamp TIMESTAMP NOT NULL,
                                CONSTRAINT {TITLE_URL_CONSTRAINT} UNIQUE (title, url)
                            )
                            """
                        )
                        return

                    cur.execute(
                        """
                        SELECT conname FROM pg_constraint
                        WHERE conrelid = %s::regclass AND conname IN (%s, %s)
                        """,
                        (TABLE_NAME, LEGACY_URL_CONSTRAINT, TITLE_URL_CONSTRAINT),
                    )
                    constraints = {row["conname"] for row in cur.fetchall()}

                    if LEGACY_URL_CONSTRAINT in constraints:
                        logger.info(f"Dropping legacy constraint {LEGACY_URL_CONSTRAINT}")
                        cur.execute(
                            f"ALTER TABLE {TABLE_NAME} "
                            f"DROP CONSTRAINT {LEGACY_URL_CONSTRAINT}"
                        )
                    if TITLE_URL_CONSTRAINT not in constraints:
                        logger.info(f"Adding constraint {TITLE_URL_CONSTRAINT}")
                        cur.execute(
                            f"ALTER TABLE {TABLE_NAME} ADD CONSTRAINT "
                            f"{TITLE_URL_CONSTRAINT} UNIQUE (title, url)"
                        )

    def is_processed(self, document: Document) -> bool:
        try:
            with self._conn() as conn:
                with conn:
                    with conn.cursor() as cur:
                        cur.execute(
                            f"SELECT 1 FROM {TABLE_NAME} WHERE title = %s AND url = %s",
                            document.key,
                        )
                        return cur.fetchone() is not None
        except (psycopg2.Error, StoreConnectionError) as e:
            logger.error(f"Failed to check processed state of {document.title}: {e}")
            return False

    def mark_processed(self, record: ProcessedRecord) -> None:
        # Stored as naive UTC in a TIMESTAMP column
        timestamp = record.timestamp.astimezone(timezone.utc).replace(tzinfo=None)
        try:
            with self._conn() as conn:
                with conn:
                    with conn.cursor() as cur:
                        cur.execute(
                            f"SELECT 1 FROM {TABLE_NAME} WHERE title = %s AND url = %s",
                            record.key,
                        )
                        if cur.fetchone() is not None:
                            logger.info(f"Already recorded: {record.title}")
                            return

                        cur.execute(
                            f"""
                            INSERT INTO {TABLE_NAME} (title, url, timestamp)
                            VALUES (%s, %s, %s)
                            ON CONFLICT (title, url) DO NOTHING
                            """,
                            (record.title, record.url, timestamp),
                        )
        except psycopg2.Error as e:
            raise StoreError(f"Failed to record {record.title}: {e}") from e

        logger.info(f"Recorded processed document: {record.title}")

    def check_connection(self) -> None:
        try:
            with self._conn() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
                conn.rollback()
        except psycopg2.Error as e:
            raise StoreConnectionError(f"Database ping failed: {e}") from e

    def reconnect(self) -> None:
        """Replace the pool unless the current one already answers.

        Several workers may call this after the same outage; connections
        other threads have checked out are never closed underneath them.
        """
        try:
            self.check_connection()
            logger.info("PostgreSQL already reachable; keeping the current pool")
            return
        except StoreConnectionError as e:
            logger.info(f"Reconnecting to PostgreSQL: {e}")

        new_pool = self._create_pool()
        with self._lock:
            old_pool, self._pool = self._pool, new_pool
        if old_pool is not None:
            self._close_idle(old_pool)
        self.check_connection()
        logger.info("Reconnected to PostgreSQL")

    @staticmethod
    def _close_idle(pool: ThreadedConnectionPool) -> None:
        # Checked-out connections are closed by _conn when they are handed back
        with pool._lock:
            idle, pool._pool = list(pool._pool), []
        for conn in idle:
            conn.close()

    def close(self) -> None:
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.closeall()

    def health_check(self) -> Dict[str, Any]:
        """Perform a simple database health check."""
        try:
            self.check_connection()
            return {"database": "ok", "backend": "postgres"}
        except StoreConnectionError as exc:
            return {"database": "error", "backend": "postgres", "detail": str(exc)}


def create_storage(connect_kwargs: Dict[str, Any], max_connections: int = 10) -> PostgresStorage:
    """Build the production store from psycopg2 connect keywords."""
    return PostgresStorage(connect_kwargs, max_connections=max_connections)


class MemoryStorage:
    """In-process store for dry runs; nothing survives a restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[Any, ProcessedRecord] = {}

    def is_processed(self, document: Document) -> bool:
        with self._lock:
            return document.key in self._records

    def mark_processed(self, record: ProcessedRecord) -> None:
        with self._lock:
            self._records.setdefault(record.key, record)

    def check_connection(self) -> None:
        return None

    def reconnect(self) -> None:
        return None

    def close(self) -> None:
        return None

    def records(self) -> list:
        with self._lock:
            return list(self._records.values())
