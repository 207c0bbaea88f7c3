from .http_client import (
    ClientConfig,
    Credentials,
    SnowRestError,
    ConfigError,
    ServiceConnectionError,
    RequestError,
    BadResponseError,
    ConnectionStarvedError,
    QueryTimeoutError,
    PartitionIntegrityError
)
from .statements import StatementClient, Result, StreamingResult, Row

__version__ = "0.1.0"

__all__ = [
    "StatementClient",
    "ClientConfig",
    "Credentials",
    "Result",
    "StreamingResult",
    "Row",
    "SnowRestError",
    "ConfigError",
    "ServiceConnectionError",
    "RequestError",
    "BadResponseError",
    "ConnectionStarvedError",
    "QueryTimeoutError",
    "PartitionIntegrityError",
]
