"""Shared fixtures: RSA keys and an in-process fake of the statement API."""

import json
import threading
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from snowrest.http_client import ClientConfig, ConnectionPool, Credentials
from snowrest.statements import StatementClient

BASE_URL = "https://test-account.snowflakecomputing.com"
HANDLE = "01b2c3d4-0000-1111-0000-000000000001"

ROW_TYPE = [
    {"name": "ID", "type": "fixed", "scale": 0, "precision": 38, "nullable": False},
    {"name": "NAME", "type": "text", "length": 255, "nullable": True},
    {"name": "PRICE", "type": "fixed", "scale": 2, "precision": 8, "nullable": True},
    {"name": "ACTIVE", "type": "boolean", "nullable": True},
]


def make_response(status: int, body: Optional[Any] = None, url: str = BASE_URL) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(body).encode("utf-8") if body is not None else b""
    response.headers["Content-Type"] = "application/json"
    response.encoding = "utf-8"
    response.url = url
    return response


def make_partitions(sizes: List[int]) -> List[List[list]]:
    """Rows numbered consecutively across partitions of the given sizes."""
    partitions = []
    row_id = 0
    for size in sizes:
        rows = []
        for _ in range(size):
            rows.append([str(row_id), f"name-{row_id}", f"{row_id}.505", "true" if row_id % 2 else "false"])
            row_id += 1
        partitions.append(rows)
    return partitions


class FakeStatementService:
    """Serves the statement API routes from memory and records every request."""

    def __init__(self, partitions: List[List[list]], row_type: List[Dict[str, Any]] = None):
        self.partitions = partitions
        self.row_type = row_type or ROW_TYPE
        self.declared_counts = [len(p) for p in partitions]
        self.pending_polls = 0
        self.submit_status = 200
        self.cancel_status = 200
        self.partition_delays: Dict[int, float] = {}
        # path -> statuses answered before the real response
        self.scripted: Dict[str, List[int]] = {}
        self.requests: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def full_body(self) -> Dict[str, Any]:
        return {
            "statementHandle": HANDLE,
            "resultSetMetaData": {
                "numRows": sum(self.declared_counts),
                "rowType": self.row_type,
                "partitionInfo": [{"rowCount": c} for c in self.declared_counts],
            },
            "data": self.partitions[0],
        }

    def handle(self, method: str, url: str, headers: Dict[str, str],
               params: Optional[Dict[str, str]], data: Optional[str]) -> requests.Response:
        path = urlparse(url).path
        params = params or {}
        with self._lock:
            self.requests.append({
                "method": method,
                "path": path,
                "params": dict(params),
                "headers": dict(headers or {}),
                "body": json.loads(data) if data else None,
            })
            scripted = self.scripted.get(path)
            if scripted:
                return make_response(scripted.pop(0), {"message": "scripted failure"}, url)

        if method == "POST" and path == "/api/v2/statements":
            if self.submit_status == 202:
                return make_response(202, {"statementHandle": HANDLE, "message": "Asynchronous execution in progress."}, url)
            return make_response(self.submit_status, self.full_body(), url)

        if method == "POST" and path == f"/api/v2/{HANDLE}/cancel":
            return make_response(self.cancel_status, {"message": "cancel"}, url)

        if method == "GET" and path == f"/api/v2/statements/{HANDLE}":
            if "partition" in params:
                index = int(params["partition"])
                delay = self.partition_delays.get(index)
                if delay:
                    time.sleep(delay)
                return make_response(200, {"data": self.partitions[index]}, url)
            with self._lock:
                if self.pending_polls > 0:
                    self.pending_polls -= 1
                    return make_response(202, {"statementHandle": HANDLE}, url)
            return make_response(200, self.full_body(), url)

        return make_response(404, {"message": f"no route for {method} {path}"}, url)

    def count(self, method: str, path: str, partition: bool = False) -> int:
        return sum(
            1 for r in self.requests
            if r["method"] == method and r["path"] == path and ("partition" in r["params"]) == partition
        )


class FakeConnection:
    """Stands in for HTTPConnection, forwarding requests to a FakeStatementService."""

    def __init__(self, service: FakeStatementService):
        self.service = service

    def request(self, method, url, headers=None, params=None, data=None):
        return self.service.handle(method, url, headers, params, data)

    def close(self):
        pass


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def credentials(private_key_pem) -> Credentials:
    return Credentials(account="myaccount", user="tester", private_key=private_key_pem, organization="myorg")


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        base_url=BASE_URL,
        retries=2,
        backoff_factor=0,
        poll_interval=0,
        max_connections=8,
        connection_timeout=5,
    )


def attach_service(client: StatementClient, service: FakeStatementService) -> StatementClient:
    client.http.pool = ConnectionPool(
        lambda: FakeConnection(service),
        size=client.config.max_connections,
        timeout=client.config.connection_timeout,
    )
    return client


@pytest.fixture
def service() -> FakeStatementService:
    return FakeStatementService(make_partitions([3]))


@pytest.fixture
def client(credentials, config, service) -> StatementClient:
    return attach_service(StatementClient(credentials, config), service)
