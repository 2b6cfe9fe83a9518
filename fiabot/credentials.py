"""Threads access-token holder and background refresher."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

THREADS_GRAPH_URL = "https://graph.threads.net"


class TokenRefreshError(Exception):
    """Raised when the Threads token endpoint rejects a request."""


class TokenCell:
    """Lock-guarded holder for the current access token.

    The refresher writes it, publishers read it for every request.
    """

    def __init__(self, token: str, expires_at: Optional[datetime] = None):
        self._lock = threading.Lock()
        self._token = token
        self._expires_at = expires_at
        self._refreshed_at = datetime.now(timezone.utc)

    def get(self) -> str:
        with self._lock:
            return self._token

    def set(self, token: str, expires_in: Optional[int] = None) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._token = token
            self._refreshed_at = now
            self._expires_at = now + timedelta(seconds=expires_in) if expires_in else None

    @property
    def expires_at(self) -> Optional[datetime]:
        with self._lock:
            return self._expires_at

    @property
    def refreshed_at(self) -> datetime:
        with self._lock:
            return self._refreshed_at

    def expires_within(self, margin: timedelta, now: Optional[datetime] = None) -> bool:
        """True when a known expiry falls inside ``margin`` from ``now``."""
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return expires_at - (now or datetime.now(timezone.utc)) <= margin


def _token_request(
    session: requests.Session, path: str, params: Dict[str, str], timeout: float
) -> Dict[str, Any]:
    try:
        response = session.get(f"{THREADS_GRAPH_URL}/{path}", params=params, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise TokenRefreshError(f"Token request failed: {e}") from e

    if response.status_code != 200:
        raise TokenRefreshError(
            f"Token endpoint returned HTTP {response.status_code}: {response.text[:200]}"
        )

    payload = response.json()
    if not payload.get("access_token"):
        raise TokenRefreshError("Token endpoint response has no access_token")
    return payload


def refresh_long_lived_token(
    token: str, session: Optional[requests.Session] = None, timeout: float = 30.0
) -> Dict[str, Any]:
    """Refresh a long-lived Threads token.

    Returns the endpoint payload (``access_token``, ``token_type``,
    ``expires_in``).
    """
    return _token_request(
        session or requests.Session(),
        "refresh_access_token",
        {"grant_type": "th_refresh_token", "access_token": token},
        timeout,
    )


def exchange_for_long_lived_token(
    short_lived_token: str,
    client_secret: str,
    session: Optional[requests.Session] = None,
    timeout: float = 30.0,
) -> Dict[str, Any]:
    """Swap a short-lived Threads token for a long-lived (60 day) one."""
    return _token_request(
        session or requests.Session(),
        "access_token",
        {
            "grant_type": "th_exchange_token",
            "client_secret": client_secret,
            "access_token": short_lived_token,
        },
        timeout,
    )


class TokenRefresher:
    """Keeps the token cell fresh from a daemon thread.

    Refreshes once at start, then whenever ``refresh_every`` has passed since
    the last refresh or the token expires within ``refresh_margin``.
    """

    def __init__(
        self,
        cell: TokenCell,
        refresh_every: timedelta = timedelta(days=45),
        refresh_margin: timedelta = timedelta(days=7),
        check_interval: float = 6 * 3600,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.cell = cell
        self.refresh_every = refresh_every
        self.refresh_margin = refresh_margin
        self.check_interval = check_interval
        self.session = session or requests.Session()
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_due(self) -> bool:
        now = self.clock()
        if now - self.cell.refreshed_at >= self.refresh_every:
            return True
        return self.cell.expires_within(self.refresh_margin, now=now)

    def refresh_once(self) -> bool:
        """Refresh the cell; failures are logged and reported as False."""
        try:
            payload = refresh_long_lived_token(self.cell.get(), session=self.session)
        except (TokenRefreshError, ValueError) as e:
            logger.error(f"Error refreshing Threads token: {e}")
            return False

        self.cell.set(payload["access_token"], payload.get("expires_in"))
        logger.info(f"Refreshed Threads token; expires at {self.cell.expires_at}")
        return True

    def _run(self) -> None:
        self.refresh_once()
        while not self._stop.wait(self.check_interval):
            if self.is_due():
                self.refresh_once()

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name="token-refresher", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
