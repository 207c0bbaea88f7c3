import logging
import queue
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import NewConnectionError
from urllib3.util.retry import Retry

from .config import DEFAULT_CONNECTION_TIMEOUT, DEFAULT_MAX_CONNECTIONS
from .exceptions import ConnectionStarvedError, RequestError, ServiceConnectionError

logger = logging.getLogger(__name__)


class HTTPConnection:
    """A single persistent, self-healing connection to the service.

    Wraps a requests.Session holding one keep-alive socket. The session is
    started on first use and restarted whenever it was closed or broke
    mid-request; urllib3 re-opens sockets the server dropped while idle.
    """

    def __init__(self, base_url: str, connect_timeout: float = 10.0, read_timeout: float = 300.0,
                 headers: Optional[Dict[str, str]] = None):
        self.base_url = base_url
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.headers = headers or {}
        self._session: Optional[requests.Session] = None

    @property
    def active(self) -> bool:
        return self._session is not None

    def start(self) -> "HTTPConnection":
        session = requests.Session()
        # retries are driven by StatementHTTPClient so every attempt gets a fresh token
        adapter = HTTPAdapter(
            max_retries=Retry(total=0, read=False, redirect=False),
            pool_connections=1,
            pool_maxsize=1
        )
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        session.headers.update(self.headers)
        self._session = session
        return self

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                params: Optional[Dict[str, str]] = None, data: Optional[str] = None) -> requests.Response:
        # connections can time out and close, re-open them
        if not self.active:
            self.start()

        try:
            return self._session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                data=data,
                timeout=(self.connect_timeout, self.read_timeout),
                allow_redirects=False
            )
        except requests.exceptions.SSLError:
            # let TLS errors propagate up to get retried
            self.close()
            raise
        except requests.exceptions.ConnectTimeout as e:
            self.close()
            raise ServiceConnectionError(f"Error connecting to {self.base_url}: {e}") from e
        except requests.exceptions.ConnectionError as e:
            self.close()
            if _is_connect_failure(e):
                raise ServiceConnectionError(f"Error connecting to {self.base_url}: {e}") from e
            raise RequestError(f"HTTP error requesting data: {e}") from e
        except requests.exceptions.RequestException as e:
            self.close()
            raise RequestError(f"HTTP error requesting data: {e}") from e

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None


def _is_connect_failure(error: requests.exceptions.ConnectionError) -> bool:
    reason = error.args[0] if error.args else None
    reason = getattr(reason, "reason", reason)
    return isinstance(reason, NewConnectionError)


class ConnectionPool:
    """Fixed-capacity pool of HTTPConnections.

    Connections are created lazily on checkout until ``size`` exist. After
    that a checkout waits up to ``timeout`` seconds for a connection to be
    returned and raises ConnectionStarvedError when none is.
    """

    def __init__(self, factory: Callable[[], HTTPConnection], size: int = DEFAULT_MAX_CONNECTIONS,
                 timeout: float = DEFAULT_CONNECTION_TIMEOUT):
        if size < 1:
            raise ValueError(f"size must be positive, got {size}")
        if timeout < 0:
            raise ValueError(f"timeout must be non-negative, got {timeout}")

        self.size = size
        self.timeout = timeout
        self._factory = factory
        self._available: "queue.LifoQueue[HTTPConnection]" = queue.LifoQueue(maxsize=size)
        self._created = 0
        self._lock = threading.Lock()
        self._closed = False

    @property
    def created(self) -> int:
        return self._created

    @contextmanager
    def connection(self) -> Iterator[HTTPConnection]:
        conn = self._checkout()
        try:
            yield conn
        finally:
            self._checkin(conn)

    def _checkin(self, conn: HTTPConnection):
        with self._lock:
            closed = self._closed
            if not closed:
                self._available.put_nowait(conn)
        if closed:
            # checked out while the pool was closed
            conn.close()

    def _checkout(self) -> HTTPConnection:
        if self._closed:
            raise ServiceConnectionError("Connection pool is closed")

        try:
            return self._available.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            can_create = self._created < self.size
            if can_create:
                self._created += 1

        if can_create:
            try:
                return self._factory()
            except Exception:
                with self._lock:
                    self._created -= 1
                raise

        try:
            return self._available.get(timeout=self.timeout)
        except queue.Empty:
            logger.warning(f"No connection available after {self.timeout}s (pool size {self.size})")
            raise ConnectionStarvedError(
                f"Timed out after {self.timeout}s waiting for one of {self.size} pooled connections"
            ) from None

    def close(self):
        """Close every idle connection and refuse further checkouts."""
        with self._lock:
            self._closed = True
        while True:
            try:
                conn = self._available.get_nowait()
            except queue.Empty:
                break
            conn.close()
