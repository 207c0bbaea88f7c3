import json
import logging
import time
from typing import Any, Dict, Optional

import requests
from retrying import retry

from .auth import KeyPairAuthManager
from .config import ClientConfig
from .exceptions import (
    BadResponseError,
    RequestError,
    RetryableBadResponseError,
)
from .pool import ConnectionPool, HTTPConnection

logger = logging.getLogger(__name__)

VALID_RESPONSE_CODES = (200, 202)
POLLING_RESPONSE_CODE = 202
AUTH_TOKEN_TYPE_HEADER = "X-Snowflake-Authorization-Token-Type"
AUTH_TOKEN_TYPE = "KEYPAIR_JWT"

# bad request, forbidden (token expired in flight), method not allowed,
# request timeout, too many requests
RETRYABLE_STATUS_CODES = frozenset({400, 403, 405, 408, 429})

RETRYABLE_ERRORS = (RetryableBadResponseError, RequestError, requests.exceptions.SSLError)


def is_retryable_status(status_code: int) -> bool:
    """True for statuses that are frequently transient: the fixed set, any 3xx and any 5xx."""
    return (
        status_code in RETRYABLE_STATUS_CODES
        or 300 <= status_code < 400
        or 500 <= status_code < 600
    )


class StatementHTTPClient:
    """Issues authenticated JSON requests against the statement API.

    Every attempt checks a connection out of the pool and carries a freshly
    fetched bearer token, so a retry after a token expired in flight heals
    itself. Retryable failures back off ``backoff_factor * 2**attempt``
    seconds between attempts.

    Key features:
    - One connection pool and one token cache per client instance
    - Status classification into success, retryable and terminal
    - Retries on transport and TLS errors
    - Telemetry tracking (requests, retries)
    """

    def __init__(self, config: ClientConfig, auth: KeyPairAuthManager,
                 pool: Optional[ConnectionPool] = None, log: Optional[logging.Logger] = None):
        if not config.base_url:
            raise ValueError("base_url cannot be empty")

        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.auth = auth
        self.logger = log or logger
        self.pool = pool or ConnectionPool(
            self._new_connection,
            size=config.max_connections,
            timeout=config.connection_timeout
        )
        # retrying waits multiplier * 2**n ms after the n-th failure, n counting from 1
        self._with_retries = retry(
            stop_max_attempt_number=config.retries + 1,
            wait_exponential_multiplier=config.backoff_factor * 500,
            retry_on_exception=lambda e: isinstance(e, RETRYABLE_ERRORS),
        )

        # Telemetry
        self.total_requests = 0
        self.total_retries = 0

    def _new_connection(self) -> HTTPConnection:
        return HTTPConnection(
            self.base_url,
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
            headers=self.config.headers
        )

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self.auth.get_token()}",
            AUTH_TOKEN_TYPE_HEADER: AUTH_TOKEN_TYPE,
        }

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                body: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Send one API request, retrying retryable failures.

        Args:
            method: HTTP method
            path: API path starting with "/"
            params: Query string parameters
            body: JSON body

        Returns:
            Response with status 200 or 202

        Raises:
            BadResponseError: Terminal status, or retryable status after the last attempt
            RequestError: Transport or TLS failure after the last attempt
            ServiceConnectionError: Connection could not be established
            ConnectionStarvedError: No pooled connection became available
        """
        url = f"{self.base_url}{path}"
        data = json.dumps(body) if body is not None else None
        failures = []

        def attempt() -> requests.Response:
            if failures:
                self.total_retries += 1
                self.logger.info(f"Retry attempt {len(failures)} because {failures[-1]}")
            try:
                # token is fetched per attempt so a retry after expiry carries a new one
                headers = self._auth_headers()
                self.total_requests += 1
                with self.pool.connection() as conn:
                    t0 = time.monotonic()
                    response = conn.request(method, url, headers=headers, params=params, data=data)
                    self.logger.debug(
                        f"HTTP {method} {path} -> {response.status_code} ({time.monotonic() - t0:.3f}s)"
                    )
                self._raise_on_bad_response(response)
                return response
            except RETRYABLE_ERRORS as e:
                failures.append(e)
                raise

        try:
            return self._with_retries(attempt)()
        except RETRYABLE_ERRORS as e:
            self._raise_exhausted(e)

    def _raise_on_bad_response(self, response: requests.Response):
        if response.status_code in VALID_RESPONSE_CODES:
            return

        # there are a class of errors we want to retry rather than just giving up
        if is_retryable_status(response.status_code):
            raise RetryableBadResponseError(response.status_code, response.text)
        raise BadResponseError(response.status_code, response.text)

    def _raise_exhausted(self, error: Exception):
        if isinstance(error, RetryableBadResponseError):
            raise BadResponseError(error.status_code, error.body) from error
        if isinstance(error, requests.exceptions.SSLError):
            raise RequestError(f"TLS error requesting data: {error}") from error
        raise error

    def close(self):
        self.pool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
