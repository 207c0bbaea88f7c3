"""
Custom exceptions for the statement API client.
"""
from typing import Optional


class SnowRestError(Exception):
    """Base exception for all statement API client errors."""
    pass


class ConfigError(SnowRestError):
    """Raised when a required credential or setting is missing or invalid."""
    pass


class ServiceConnectionError(SnowRestError):
    """Raised when a connection to the service cannot be established."""
    pass


class RequestError(SnowRestError):
    """Raised when the transport fails while a request is in flight."""
    pass


class RetryableBadResponseError(SnowRestError):
    """Raised internally for HTTP statuses that are worth another attempt."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Retryable bad response! Got code: {status_code}, w/ message {body}")


class BadResponseError(SnowRestError):
    """Raised when the service answers with a terminal non-success status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Bad response! Got code: {status_code}, w/ message {body}")


class ConnectionStarvedError(SnowRestError):
    """Raised when no pooled connection becomes available in time."""
    pass


class QueryTimeoutError(SnowRestError):
    """Raised when a statement does not complete within the query timeout."""

    def __init__(self, statement: str, duration: float, cancelled: bool):
        self.statement = statement
        self.duration = duration
        self.cancelled = cancelled
        super().__init__(
            f"Query timed out. Query cancelled? {cancelled}; "
            f"Duration: {duration:.1f}; Query: '{statement}'"
        )


class PartitionIntegrityError(SnowRestError):
    """Raised when a partition holds a different number of rows than declared."""

    def __init__(self, index: int, expected: int, actual: Optional[int], message: Optional[str] = None):
        self.index = index
        self.expected = expected
        self.actual = actual
        super().__init__(
            message or f"Partition {index} declared {expected} rows but {actual} were returned"
        )
