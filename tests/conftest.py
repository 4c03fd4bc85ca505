"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules.
"""

import gzip
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

from ttlproxy.config import ProxySettings, SecuritySettings, Settings
from ttlproxy.main import create_app

TEST_TOKEN = "test_access_token_123456789abc"

UPSTREAM_BODY = b"hello from upstream"
GZIP_PLAIN_BODY = b"compressed payload " * 32


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UpstreamHandler(BaseHTTPRequestHandler):
    """Small upstream used as a proxy target."""

    def do_GET(self) -> None:
        if self.path == "/ok":
            self._send(
                200,
                UPSTREAM_BODY,
                [
                    ("Content-Type", "text/plain"),
                    ("X-Upstream", "yes"),
                    ("Set-Cookie", "a=1"),
                    ("Set-Cookie", "b=2"),
                ],
            )
        elif self.path == "/gzip":
            self._send(
                200,
                gzip.compress(GZIP_PLAIN_BODY),
                [("Content-Type", "text/plain"), ("Content-Encoding", "gzip")],
            )
        elif self.path == "/teapot":
            self._send(418, b"short and stout", [("Content-Type", "text/plain")])
        elif self.path == "/redirect":
            self._send(302, b"", [("Location", "/ok")])
        elif self.path.startswith("/redirect-chain/"):
            remaining = int(self.path.rsplit("/", 1)[1])
            location = f"/redirect-chain/{remaining - 1}" if remaining > 1 else "/ok"
            self._send(302, b"", [("Location", location)])
        elif self.path == "/redirect-loop":
            self._send(302, b"", [("Location", "/redirect-loop")])
        elif self.path == "/large":
            self._send(200, b"x" * (1 << 20), [("Content-Type", "application/octet-stream")])
        elif self.path == "/slow-body":
            self._send_slowly(b"abcd", delay=0.3)
        elif self.path == "/stalled-body":
            self._send_slowly(b"ab", delay=0, stall=1.5, tail=b"cd")
        elif self.path == "/slow-headers":
            time.sleep(1.5)
            self._send(200, b"late", [("Content-Type", "text/plain")])
        else:
            self._send(404, b"missing", [("Content-Type", "text/plain")])

    def _send(self, status: int, body: bytes, headers: list) -> None:
        self.send_response(status)
        for name, value in headers:
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_slowly(self, body: bytes, delay: float, stall: float = 0.0, tail: bytes = b"") -> None:
        """Write the body byte by byte, optionally pausing before a tail."""
        self.send_response(200)
        self.send_header("Content-Type", "application/octet-stream")
        self.send_header("Content-Length", str(len(body) + len(tail)))
        self.end_headers()
        try:
            for byte in body:
                self.wfile.write(bytes([byte]))
                time.sleep(delay)
            if tail:
                time.sleep(stall)
                self.wfile.write(tail)
        except (BrokenPipeError, ConnectionResetError):
            pass

    def log_message(self, format: str, *args: object) -> None:
        pass


@pytest.fixture(scope="session")
def upstream_server() -> Generator[str, None, None]:
    """Base URL of a threaded local HTTP upstream."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), UpstreamHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    try:
        yield f"http://{host}:{port}"
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def proxy_settings() -> ProxySettings:
    """Proxy policy used by most tests; the sweeper effectively never fires."""
    return ProxySettings(
        min_ttl=60,
        max_ttl=3600,
        sweep_interval_seconds=3600,
        max_redirects=10,
        upstream_timeout_seconds=5,
        stream_chunk_bytes=4096,
        max_body_bytes=4096,
    )


@pytest.fixture
def test_settings(proxy_settings: ProxySettings) -> Settings:
    return Settings(
        log_level="DEBUG",
        security=SecuritySettings(access_token=TEST_TOKEN),
        proxy=proxy_settings,
    )


@pytest.fixture
def test_client(test_settings: Settings, clock: FakeClock) -> Generator[TestClient, None, None]:
    """FastAPI test client with test configuration and a controllable clock."""
    app = create_app(test_settings, clock=clock)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def register_url(test_client: TestClient, auth_headers: dict) -> Callable[..., str]:
    """Register a URL through the API and return the new id."""
    def _register(url: str, ttl: int = 60) -> str:
        response = test_client.post("/proxy", json={"url": url, "ttl": ttl}, headers=auth_headers)
        assert response.status_code == 200, response.text
        return response.json()["id"]

    return _register
