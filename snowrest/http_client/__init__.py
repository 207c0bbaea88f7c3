from .auth import KeyPairAuthManager
from .client import StatementHTTPClient, is_retryable_status
from .config import ClientConfig, Credentials
from .pool import ConnectionPool, HTTPConnection
from .exceptions import (
    SnowRestError,
    ConfigError,
    ServiceConnectionError,
    RequestError,
    BadResponseError,
    ConnectionStarvedError,
    QueryTimeoutError,
    PartitionIntegrityError
)

__all__ = [
    "KeyPairAuthManager",
    "StatementHTTPClient",
    "is_retryable_status",
    "ClientConfig",
    "Credentials",
    "ConnectionPool",
    "HTTPConnection",
    "SnowRestError",
    "ConfigError",
    "ServiceConnectionError",
    "RequestError",
    "BadResponseError",
    "ConnectionStarvedError",
    "QueryTimeoutError",
    "PartitionIntegrityError",
]
