"""
Pytest configuration and shared fixtures for toolmesh tests.
"""

import asyncio
import json
import sys
from collections.abc import AsyncGenerator, Awaitable, Callable
from io import StringIO
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio
from websockets.asyncio.server import ServerConnection, serve
from websockets.datastructures import Headers

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from toolmesh.config import ServerConfig  # noqa: E402
from toolmesh.logging import LogConfig, MeshLogger  # noqa: E402
from toolmesh.transport import Transport  # noqa: E402
from toolmesh.types import LogFormat, LogLevel, TransportKind  # noqa: E402

TOOLS = [
    {"name": "read_file", "description": "Read a file", "inputSchema": {"type": "object"}},
    {"name": "search", "description": "Search", "inputSchema": {"type": "object"}},
]


# =============================================================================
# Path Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def tests_dir() -> Path:
    """Return the tests directory."""
    return Path(__file__).parent


@pytest.fixture(scope="session")
def fixtures_dir(tests_dir: Path) -> Path:
    """Return the fixtures directory."""
    return tests_dir / "fixtures"


@pytest.fixture(scope="session")
def echo_server_path(fixtures_dir: Path) -> Path:
    """Return the stdio tool server script."""
    return fixtures_dir / "echo_server.py"


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def pipe_config(echo_server_path: Path) -> Callable[..., ServerConfig]:
    """Factory for pipe ServerConfigs running the echo server."""

    def _make(name: str = "A", *server_args: str, **overrides: Any) -> ServerConfig:
        settings: dict[str, Any] = {
            "name": name,
            "transport": TransportKind.PIPE,
            "command": sys.executable,
            "args": (str(echo_server_path), *server_args),
            "timeout": 5.0,
        }
        settings.update(overrides)
        return ServerConfig(**settings)

    return _make


# =============================================================================
# Logger Fixtures
# =============================================================================


@pytest.fixture
def log_stream() -> StringIO:
    return StringIO()


@pytest.fixture
def logger(log_stream: StringIO) -> MeshLogger:
    """Debug-level JSON logger writing to log_stream."""
    return MeshLogger(LogConfig(level=LogLevel.DEBUG, format=LogFormat.JSON, output=log_stream))


def log_entries(stream: StringIO) -> list[dict[str, Any]]:
    """Parse JSON log lines written so far."""
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


# =============================================================================
# HTTP Fixtures
# =============================================================================


def make_http_handler(
    tools: list[dict[str, Any]] | None = None,
    health_status: int = 200,
    requests: list[httpx.Request] | None = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """Build an httpx.MockTransport handler that behaves like a tool server."""
    tools = TOOLS if tools is None else tools

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if request.method == "GET" and request.url.path.endswith("/health"):
            return httpx.Response(health_status, json={"status": "ok"})

        frame = json.loads(request.content)
        method = frame.get("method")
        if "id" not in frame:
            return httpx.Response(202)
        if method == "tools/list":
            result: Any = {"tools": tools}
        elif method == "tools/call":
            result = {"content": [{"type": "text", "text": "ok"}], "echo": frame["params"]}
        elif method == "initialize":
            result = {"serverInfo": {"name": "mock-http"}}
        else:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": frame["id"],
                    "error": {"code": -32601, "message": f"Method not found: {method}"},
                },
            )
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": frame["id"], "result": result})

    return handler


# =============================================================================
# WebSocket Fixtures
# =============================================================================


class SocketServer:
    """In-process WebSocket tool server.

    Methods "test/silent" and "test/close" never answer; the latter also
    closes the connection.
    """

    def __init__(self) -> None:
        self.url = ""
        self.headers: list[Headers] = []
        self.frames: list[dict[str, Any]] = []

    async def handler(self, connection: ServerConnection) -> None:
        self.headers.append(connection.request.headers)
        async for message in connection:
            frame = json.loads(message)
            self.frames.append(frame)
            method = frame.get("method")
            if "id" not in frame or method == "test/silent":
                continue
            if method == "test/close":
                await connection.close()
                return
            if method == "tools/list":
                result: Any = {"tools": TOOLS}
            else:
                result = {"method": method, "params": frame.get("params")}
            # String ids exercise id coercion on the client side
            await connection.send(json.dumps({"jsonrpc": "2.0", "id": str(frame["id"]), "result": result}))


@pytest_asyncio.fixture
async def socket_server() -> AsyncGenerator[SocketServer, None]:
    """Run a SocketServer on an ephemeral port."""
    server = SocketServer()
    async with serve(server.handler, "127.0.0.1", 0) as ws_server:
        port = next(iter(ws_server.sockets)).getsockname()[1]
        server.url = f"ws://127.0.0.1:{port}"
        yield server


# =============================================================================
# Markers Configuration
# =============================================================================


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "property: Property-based tests")
    config.addinivalue_line("markers", "integration: Tests that spawn processes or open sockets")
    config.addinivalue_line("markers", "slow: Slow tests")


# =============================================================================
# Fake Transport
# =============================================================================


class FakeTransport(Transport):
    """Scriptable in-memory transport.

    Message-oriented by default: sent frames are recorded and replies are
    injected with ``reply()``. With ``message_oriented=False`` each send()
    awaits ``responder(frame)`` and returns its result.
    """

    def __init__(
        self,
        name: str = "fake",
        timeout: float = 5.0,
        message_oriented: bool = True,
        responder: Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]] | None = None,
    ) -> None:
        super().__init__(ServerConfig(name=name, transport=TransportKind.PIPE, timeout=timeout))
        self.message_oriented = message_oriented
        self.responder = responder
        self.sent: list[dict[str, Any]] = []
        self.send_error: Exception | None = None
        self.open = True

    @property
    def is_open(self) -> bool:
        return self.open

    async def connect(self) -> None:
        self.open = True

    async def send(
        self, frame: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any] | None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(frame)
        if self.responder is not None:
            return await self.responder(frame)
        return None

    async def close(self) -> None:
        self.open = False

    async def wait_sent(self, count: int = 1) -> list[dict[str, Any]]:
        """Yield to the loop until at least count frames were sent."""
        for _ in range(100):
            if len(self.sent) >= count:
                break
            await asyncio.sleep(0)
        return self.sent


# =============================================================================
# Slow HTTP Fixture
# =============================================================================


class SlowHttpServer:
    """Minimal HTTP/1.1 tool server on a real socket.

    The "test/slow" method answers after ``delay`` seconds; every other
    POST and the health probe answer at once.
    """

    def __init__(self, delay: float = 1.0) -> None:
        self.delay = delay
        self.url = ""

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                request_line = await reader.readline()
                if not request_line:
                    break
                length = 0
                while (line := await reader.readline()) not in (b"\r\n", b"\n", b""):
                    name, _, value = line.decode("latin-1").partition(":")
                    if name.strip().lower() == "content-length":
                        length = int(value.strip())
                body = await reader.readexactly(length) if length else b""

                if request_line.startswith(b"GET"):
                    reply: dict[str, Any] = {"status": "ok"}
                else:
                    frame = json.loads(body)
                    method = frame.get("method")
                    if method == "test/slow":
                        await asyncio.sleep(self.delay)
                    result: Any = {"tools": []} if method == "tools/list" else {"method": method}
                    reply = {"jsonrpc": "2.0", "id": frame.get("id"), "result": result}

                payload = json.dumps(reply).encode()
                writer.write(
                    b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n"
                    + f"Content-Length: {len(payload)}\r\n\r\n".encode()
                    + payload
                )
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()


@pytest_asyncio.fixture
async def slow_http_server() -> AsyncGenerator[SlowHttpServer, None]:
    """Run a SlowHttpServer on an ephemeral port."""
    server = SlowHttpServer()
    tcp_server = await asyncio.start_server(server.handle, "127.0.0.1", 0)
    port = tcp_server.sockets[0].getsockname()[1]
    server.url = f"http://127.0.0.1:{port}"
    try:
        yield server
    finally:
        tcp_server.close()
        await tcp_server.wait_closed()
