import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import requests
from rich.console import Console

from ..http_client import KeyPairAuthManager, StatementHTTPClient
from ..http_client.client import POLLING_RESPONSE_CODE
from ..http_client.config import ClientConfig, Credentials
from ..http_client.exceptions import (
    BadResponseError,
    ConfigError,
    QueryTimeoutError,
    SnowRestError,
)
from .logger import QueryFlowLogger, custom_theme, logger
from .meta import ResultSetMeta
from .result import Result, StreamingResult
from .strategies import SingleThreadStrategy, StreamingStrategy, ThreadedStrategy
from .utils import count_statements, new_request_id, number_of_threads, upper_or_none

STATEMENTS_PATH = "/api/v2/statements"


class StatementClient:
    """Run SQL statements through the SQL REST API and assemble their results.

    A client owns its token cache and its connection pool; share one instance
    between threads to share the pool. Each query fetches its partitions with
    up to ``max_threads_per_query`` threads drawn against that pool, so the
    pool should be at least as large as the threads all concurrent queries use.

    ``log_level`` is applied to the logger passed as ``log`` only; the shared
    "snowrest" logger is left for the application to configure.

    Example:
        with StatementClient(credentials, ClientConfig(base_url=url)) as client:
            for row in client.query("SELECT id, name FROM users"):
                print(row["id"], row["NAME"])
    """

    def __init__(self, credentials: Credentials, config: Optional[ClientConfig] = None,
                 log: Optional[logging.Logger] = None, log_level: Optional[int] = None,
                 debug: bool = False):
        self.config = config or ClientConfig()
        if not self.config.base_url:
            raise ConfigError("base_url must be configured")

        if log_level is not None:
            if log is None:
                raise ValueError("log_level requires a logger passed as log")
            log.setLevel(log_level)
        self.logger = log or logger
        self.debug = debug
        self._console = Console(theme=custom_theme, stderr=True)

        self.auth = KeyPairAuthManager(credentials, self.config.effective_jwt_token_ttl)
        self.http = StatementHTTPClient(self.config, self.auth, log=self.logger)

    @classmethod
    def from_env(cls, log: Optional[logging.Logger] = None, log_level: Optional[int] = None,
                 debug: bool = False, **overrides) -> "StatementClient":
        """Build a client from SNOWFLAKE_* environment variables.

        Keyword overrides take precedence over the environment for any
        ClientConfig field.
        """
        config = ClientConfig.from_env(**overrides)
        return cls(Credentials.from_env(), config, log=log, log_level=log_level, debug=debug)

    def create_jwt_token(self) -> str:
        """Current auth token, signing a new one if needed."""
        return self.auth.get_token()

    def query(self, statement: str, warehouse: Optional[str] = None, database: Optional[str] = None,
              schema: Optional[str] = None, role: Optional[str] = None,
              bindings: Optional[Dict[str, Dict[str, str]]] = None, streaming: bool = False,
              statement_count: Optional[int] = None, asynchronous: bool = False) -> Union[Result, StreamingResult]:
        """Execute a statement and return its rows.

        Args:
            statement: SQL text; may contain several ``;`` separated statements
            warehouse: Warehouse override, defaults to the configured one
            database: Database override, defaults to the configured one
            schema: Schema override, defaults to the configured one
            role: Role override, defaults to the configured one
            bindings: Bind variables, e.g. {"1": {"type": "FIXED", "value": "42"}}
            streaming: Return a StreamingResult that fetches partitions while iterated
            statement_count: Number of statements in ``statement``; counted from
                the ``;`` separators when omitted
            asynchronous: Ask the service to answer at once with 202 and poll
                for completion instead of holding the request open

        Returns:
            Result, or StreamingResult when ``streaming`` is set

        Raises:
            QueryTimeoutError: The statement ran longer than ``query_timeout``
            BadResponseError: The service rejected the statement
            PartitionIntegrityError: A partition did not hold its declared rows
        """
        flow = QueryFlowLogger(self.debug, self._console)
        start_time = time.monotonic()

        if statement_count is None:
            statement_count = count_statements(statement)

        request_body = {
            "statement": statement,
            "warehouse": upper_or_none(warehouse or self.config.default_warehouse),
            "database": upper_or_none(database or self.config.default_database),
            "schema": upper_or_none(schema or self.config.default_schema),
            "role": role or self.config.default_role,
            "bindings": bindings,
            "timeout": int(self.config.query_timeout),
            "parameters": {"MULTI_STATEMENT_COUNT": str(statement_count)},
        }
        request_body = {k: v for k, v in request_body.items() if v is not None}
        params = {
            "requestId": new_request_id(),
            "async": "true" if asynchronous else "false",
        }
        flow.start("Submitting Statement", {
            "Query": statement.replace("\n", " ")[:50],
            "Warehouse": request_body.get("warehouse", "-"),
            "Statements": statement_count
        })

        try:
            response = self.http.request("POST", STATEMENTS_PATH, params=params, body=request_body)
            body = self._json(response)

            if response.status_code == POLLING_RESPONSE_CODE:
                handle = body["statementHandle"]
                flow.node("Polling", {"Handle": handle})
                response = self._poll_for_completion_or_timeout(start_time, statement, handle)
                body = self._json(response)

            result = self._retrieve_result(body, streaming, flow)
        except SnowRestError as e:
            flow.fail("Query Failed", e)
            raise

        flow.end("Success", {"Partitions": result.partition_count})
        return result

    fetch = query

    def _poll_for_completion_or_timeout(self, start_time: float, statement: str,
                                        statement_handle: str) -> requests.Response:
        while True:
            time.sleep(self.config.poll_interval)

            elapsed = time.monotonic() - start_time
            if elapsed > self.config.query_timeout:
                cancelled = self._attempt_to_cancel(statement_handle)
                raise QueryTimeoutError(statement, elapsed, cancelled)

            response = self.http.request("GET", f"{STATEMENTS_PATH}/{statement_handle}")
            if response.status_code != POLLING_RESPONSE_CODE:
                return response
            self.logger.debug(f"Statement {statement_handle} still running after {elapsed:.1f}s")

    def _attempt_to_cancel(self, statement_handle: str) -> bool:
        try:
            self.http.request("POST", f"/api/v2/{statement_handle}/cancel")
            return True
        except BadResponseError as e:
            if e.status_code == 404:
                # the service finished or cancelled it before we did
                return True
            self.logger.error(f"Error on attempting to cancel query {statement_handle}: {e}")
            return False
        except SnowRestError as e:
            self.logger.error(f"Error on attempting to cancel query {statement_handle}: {e}")
            return False

    def _retrieve_result(self, body: Dict[str, Any], streaming: bool,
                         flow: QueryFlowLogger) -> Union[Result, StreamingResult]:
        meta = ResultSetMeta.from_response(body)
        handle = meta.statement_handle

        def fetch_partition(index: int) -> List[list]:
            return self._retrieve_partition_data(handle, index)

        num_threads = number_of_threads(
            meta.partition_count,
            self.config.thread_scale_factor,
            self.config.max_threads_per_query
        )
        flow.node("Assembling Result", {
            "Handle": handle,
            "Partitions": meta.partition_count,
            "Threads": "streaming" if streaming else num_threads
        })

        first_partition = body.get("data")
        if streaming:
            return StreamingStrategy.result(meta, first_partition, fetch_partition)
        if num_threads == 1:
            return SingleThreadStrategy.result(meta, first_partition, fetch_partition)
        return ThreadedStrategy(num_threads).result(meta, first_partition, fetch_partition)

    def _retrieve_partition_data(self, statement_handle: str, index: int) -> Optional[List[list]]:
        response = self.http.request(
            "GET",
            f"{STATEMENTS_PATH}/{statement_handle}",
            params={"partition": str(index), "requestId": new_request_id()}
        )
        t0 = time.monotonic()
        data = self._json(response).get("data")
        self.logger.debug(f"JSON parsing of partition {index} took {time.monotonic() - t0:.3f}s")
        return data

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            return response.json(parse_float=Decimal)
        except ValueError as e:
            raise BadResponseError(response.status_code, f"Invalid JSON body: {response.text[:200]}") from e

    def close(self):
        """Close pooled connections."""
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures pooled connections are closed."""
        self.close()
