import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional

from .exceptions import ConfigError

# seconds, the service rejects tokens valid for longer than this
MAX_JWT_TOKEN_TTL = 3600
# seconds kept off the maximum to absorb clock skew between us and the service
JWT_CLOCK_SKEW = 60
DEFAULT_JWT_TOKEN_TTL = MAX_JWT_TOKEN_TTL - JWT_CLOCK_SKEW
DEFAULT_CONNECTION_TIMEOUT = 60
DEFAULT_MAX_CONNECTIONS = 16
DEFAULT_MAX_THREADS_PER_QUERY = 8
# partition count factor for number of threads
# (i.e. 4 == once we have 5 partitions, spin up a second thread)
DEFAULT_THREAD_SCALE_FACTOR = 4
DEFAULT_HTTP_RETRIES = 2
DEFAULT_QUERY_TIMEOUT = 600
POLLING_INTERVAL = 2

ENV_PREFIX = "SNOWFLAKE_"

# config field -> environment variable (without prefix)
ENV_OPTIONS = {
    "base_url": "URI",
    "jwt_token_ttl": "JWT_TOKEN_TTL",
    "connection_timeout": "CONNECTION_TIMEOUT",
    "max_connections": "MAX_CONNECTIONS",
    "max_threads_per_query": "MAX_THREADS_PER_QUERY",
    "thread_scale_factor": "THREAD_SCALE_FACTOR",
    "retries": "HTTP_RETRIES",
    "query_timeout": "QUERY_TIMEOUT",
    "default_warehouse": "DEFAULT_WAREHOUSE",
    "default_database": "DEFAULT_DATABASE",
    "default_schema": "DEFAULT_SCHEMA",
    "default_role": "DEFAULT_ROLE",
}


def _env(name: str) -> Optional[str]:
    value = os.environ.get(ENV_PREFIX + name)
    return value if value else None


@dataclass(frozen=True)
class ClientConfig:
    """
    Tuning parameters for the statement API client.

    Attributes:
        base_url: Account URL, e.g. https://myorg-myaccount.snowflakecomputing.com
        jwt_token_ttl: Lifetime of generated auth tokens in seconds (capped at 3540)
        connection_timeout: Seconds a thread waits for a pooled connection (default: 60)
        connect_timeout: TCP/TLS connect timeout in seconds (default: 10.0)
        read_timeout: Read timeout in seconds (default: 300.0)
        max_connections: Size of the connection pool (default: 16)
        max_threads_per_query: Upper bound of partition fetch threads per query (default: 8)
        thread_scale_factor: Partitions per additional fetch thread (default: 4)
        retries: Number of retries for retryable failures (default: 2)
        backoff_factor: Multiplier of the 2**attempt retry sleep (default: 1.0)
        query_timeout: Seconds to wait for an asynchronous statement (default: 600)
        poll_interval: Seconds between completion polls (default: 2)
        default_warehouse: Warehouse used when a query does not name one
        default_database: Database used when a query does not name one
        default_schema: Schema used when a query does not name one
        default_role: Role used when a query does not name one
        headers: Extra HTTP headers sent with every request
    """
    base_url: str = ""
    jwt_token_ttl: int = DEFAULT_JWT_TOKEN_TTL
    connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT
    connect_timeout: float = 10.0
    read_timeout: float = 300.0
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    max_threads_per_query: int = DEFAULT_MAX_THREADS_PER_QUERY
    thread_scale_factor: int = DEFAULT_THREAD_SCALE_FACTOR
    retries: int = DEFAULT_HTTP_RETRIES
    backoff_factor: float = 1.0
    query_timeout: float = DEFAULT_QUERY_TIMEOUT
    poll_interval: float = POLLING_INTERVAL
    default_warehouse: Optional[str] = None
    default_database: Optional[str] = None
    default_schema: Optional[str] = None
    default_role: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=lambda: {
        'User-Agent': 'snowrest/0.1.0',
        'Accept-Encoding': 'gzip, deflate',
        'Connection': 'keep-alive'
    })

    def __post_init__(self):
        if self.max_connections < 1:
            raise ValueError(f"max_connections must be positive, got {self.max_connections}")
        if self.max_threads_per_query < 1:
            raise ValueError(f"max_threads_per_query must be positive, got {self.max_threads_per_query}")
        if self.thread_scale_factor < 1:
            raise ValueError(f"thread_scale_factor must be positive, got {self.thread_scale_factor}")
        if self.retries < 0:
            raise ValueError(f"retries must be non-negative, got {self.retries}")
        if self.jwt_token_ttl <= 0:
            raise ValueError(f"jwt_token_ttl must be positive, got {self.jwt_token_ttl}")

    @property
    def effective_jwt_token_ttl(self) -> int:
        """Token lifetime actually used, never above the service maximum minus skew."""
        return min(self.jwt_token_ttl, DEFAULT_JWT_TOKEN_TTL)

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Build a config from SNOWFLAKE_* environment variables.

        Priority (highest to lowest):
        1. Keyword overrides that are not None
        2. Environment variables
        3. Defaults
        """
        types = {f.name: f.type for f in fields(cls)}
        values = {}
        for name, env_name in ENV_OPTIONS.items():
            raw = _env(env_name)
            if raw is None:
                continue
            if types[name] in (int, "int"):
                values[name] = _to_number(int, ENV_PREFIX + env_name, raw)
            elif types[name] in (float, "float"):
                values[name] = _to_number(float, ENV_PREFIX + env_name, raw)
            else:
                values[name] = raw

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _to_number(kind, name: str, raw: str):
    try:
        return kind(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Credentials:
    """
    Key-pair identity used to sign auth tokens.

    Attributes:
        account: Account locator or name
        user: Login name of the user owning the key pair
        private_key: PEM text of the RSA private key
        organization: Organization name, omitted from claims when empty
        public_key_fingerprint: "SHA256:..." fingerprint, derived from the key when absent
    """
    account: str
    user: str
    private_key: str = field(repr=False)
    organization: Optional[str] = None
    public_key_fingerprint: Optional[str] = None

    def __post_init__(self):
        if not self.account:
            raise ConfigError("account cannot be empty")
        if not self.user:
            raise ConfigError("user cannot be empty")
        if not self.private_key:
            raise ConfigError("private_key cannot be empty")

    @classmethod
    def from_env(cls) -> "Credentials":
        private_key = _env("PRIVATE_KEY")
        if private_key is None:
            path = _env("PRIVATE_KEY_PATH")
            if path is None:
                raise ConfigError(
                    f"Either {ENV_PREFIX}PRIVATE_KEY or {ENV_PREFIX}PRIVATE_KEY_PATH must be set"
                )
            try:
                private_key = Path(path).read_text()
            except OSError as e:
                raise ConfigError(f"Cannot read private key file {path}: {e}") from e

        missing = [name for name in ("ACCOUNT", "USER") if _env(name) is None]
        if missing:
            raise ConfigError("Missing required settings: " + ", ".join(ENV_PREFIX + m for m in missing))

        return cls(
            account=_env("ACCOUNT"),
            user=_env("USER"),
            private_key=private_key,
            organization=_env("ORGANIZATION"),
            public_key_fingerprint=_env("PUBLIC_KEY_FINGERPRINT"),
        )
