"""Pytest configuration and fixtures

Provides dataset files, an in-memory transport and a stub merch API server
shared by the simulator tests.
"""

import asyncio
import json
import sys
import threading
from pathlib import Path
from typing import Callable, Mapping

import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from merchsim.core.dataset import Dataset
from merchsim.core.models import Response, UserRecord
from merchsim.logger import configure_logging


@pytest.fixture(scope="session", autouse=True)
def quiet_logging():
    """Keep per-request debug events out of test output."""
    configure_logging("INFO")


# ============================================================================
# DATASETS
# ============================================================================


def make_dataset(count: int = 5) -> Dataset:
    """Build an in-memory dataset of ``count`` users (u0..uN) with tokens t0..tN."""
    return Dataset(
        users=tuple(UserRecord(username=f"u{i}") for i in range(count)),
        auth_tokens=tuple(f"t{i}" for i in range(count)),
    )


@pytest.fixture(scope="function")
def dataset_files(tmp_path):
    """
    Write a 5-user dataset in the format produced by the service's setup tool.

    Returns:
        (users_path, tokens_path) as absolute path strings
    """
    users = [{"username": f"u{i}", "password": "password"} for i in range(5)]
    tokens = [f"t{i}" for i in range(5)]

    users_path = tmp_path / "users.json"
    tokens_path = tmp_path / "tokens.json"
    users_path.write_text(json.dumps(users), encoding="utf-8")
    tokens_path.write_text(json.dumps(tokens), encoding="utf-8")
    return str(users_path), str(tokens_path)


# ============================================================================
# IN-MEMORY TRANSPORT
# ============================================================================


Handler = Callable[[str, str, bytes | None, Mapping[str, str]], Response]


def ok_handler(method: str, url: str, body: bytes | None, headers: Mapping[str, str]) -> Response:
    return Response(status=200, headers={}, body=b"")


class FakeTransport:
    """Transport that answers from a handler function without any network I/O.

    Records every call and tracks the peak number of in-flight requests.
    """

    def __init__(self, handler: Handler = ok_handler, *, delay_seconds: float = 0.0) -> None:
        self._handler = handler
        self._delay = delay_seconds
        self.calls: list[tuple[str, str, bytes | None, dict[str, str]]] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def get(self, url: str, headers: Mapping[str, str]) -> Response:
        return await self._call("GET", url, None, headers)

    async def post(self, url: str, body: bytes, headers: Mapping[str, str]) -> Response:
        return await self._call("POST", url, body, headers)

    async def _call(self, method, url, body, headers) -> Response:
        self.calls.append((method, url, body, dict(headers)))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            else:
                await asyncio.sleep(0)
            return self._handler(method, url, body, headers)
        finally:
            self.in_flight -= 1


# ============================================================================
# STUB MERCH API SERVER
# ============================================================================


class MerchStubServer:
    """Minimal HTTP server speaking the merch API for transport tests.

    Tokens t0..tN authenticate users u0..uN. Every user starts with
    ``balance`` coins; purchases cost ``item_price`` and fail with
    "not enough coin" once the balance runs out.
    """

    def __init__(self, *, users: int = 5, balance: int = 1000, item_price: int = 10) -> None:
        self.port = 0
        self.balances = {f"u{i}": balance for i in range(users)}
        self.item_price = item_price
        self._lock = threading.Lock()
        self._server = None
        self._thread = None

    def start(self):
        """Start the HTTP server in a background thread."""
        import http.server

        stub = self

        class Handler(http.server.BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def _user(self) -> str | None:
                auth = self.headers.get("Authorization", "")
                if not auth.startswith("Bearer t"):
                    return None
                username = "u" + auth[len("Bearer t"):]
                return username if username in stub.balances else None

            def _reply(self, status: int, payload: dict | None = None) -> None:
                body = json.dumps(payload).encode("utf-8") if payload is not None else b""
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def do_GET(self):  # noqa: N802
                user = self._user()
                if user is None:
                    self._reply(401, {"errors": "unauthorized"})
                    return
                if self.path == "/api/info":
                    self._reply(200, {"coins": stub.balances[user]})
                    return
                if self.path.startswith("/api/buy/"):
                    with stub._lock:
                        if stub.balances[user] < stub.item_price:
                            self._reply(400, {"errors": "not enough coin"})
                            return
                        stub.balances[user] -= stub.item_price
                    self._reply(200)
                    return
                self._reply(404, {"errors": "not found"})

            def do_POST(self):  # noqa: N802
                user = self._user()
                length = int(self.headers.get("Content-Length", "0"))
                raw = self.rfile.read(length)
                if user is None:
                    self._reply(401, {"errors": "unauthorized"})
                    return
                if self.path != "/api/sendCoin":
                    self._reply(404, {"errors": "not found"})
                    return
                req = json.loads(raw)
                to_user, amount = req.get("toUser"), req.get("amount")
                if to_user not in stub.balances:
                    self._reply(400, {"errors": "toUser doesn't exist"})
                    return
                if to_user == user:
                    self._reply(400, {"errors": "fromUser and toUser are equal"})
                    return
                with stub._lock:
                    if stub.balances[user] < amount:
                        self._reply(400, {"errors": "not enough coins"})
                        return
                    stub.balances[user] -= amount
                    stub.balances[to_user] += amount
                self._reply(200)

            def log_message(self, format, *args):  # noqa: A002, ARG002
                pass  # Suppress logging

        self._server = http.server.ThreadingHTTPServer(("127.0.0.1", self.port), Handler)
        self.port = int(self._server.server_port)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self):
        """Stop the HTTP server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def base_url(self) -> str:
        """Get the base URL of the server."""
        return f"http://127.0.0.1:{self.port}"


@pytest.fixture(scope="function")
def merch_stub_server():
    """
    Provide a stub merch API on an ephemeral port.

    Usage:
        async def test_transport(merch_stub_server):
            transport = HTTPXTransport()
            resp = await transport.get(f"{merch_stub_server.base_url}/api/info", {...})
    """
    server = MerchStubServer()
    server.start()
    yield server
    server.stop()
