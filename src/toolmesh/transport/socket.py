"""WebSocket transport: one frame per message on a persistent connection."""

import asyncio
import contextlib
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from toolmesh.config.models import ServerConfig
from toolmesh.errors import create_error
from toolmesh.logging.logger import ServerLogger

from .base import MAX_FRAME_BYTES, Transport
from .protocol import JSONRPCMessage


class SocketTransport(Transport):
    """Persistent duplex WebSocket to a tool server."""

    message_oriented = True

    def __init__(self, config: ServerConfig, logger: ServerLogger | None = None):
        super().__init__(config, logger)
        self._ws: ClientConnection | None = None
        self._receive_task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing and not self._close_notified

    async def connect(self) -> None:
        """Open the WebSocket, sending the bearer token if configured.

        Raises:
            ToolmeshError(CONNECT_FAILED): If the handshake fails or times out
        """
        self._closing = False
        self._close_notified = False
        headers = self.config.auth_headers()

        try:
            self._ws = await connect(
                self.config.url or "",
                additional_headers=headers or None,
                open_timeout=self.config.timeout,
                max_size=MAX_FRAME_BYTES,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            raise create_error(
                "CONNECT_FAILED",
                server_name=self.config.name,
                detail=f"WebSocket connection to {self.config.url} failed: "
                f"{str(e) or type(e).__name__}",
            ) from e

        self._receive_task = asyncio.create_task(self._receive_loop(self._ws))

    async def send(self, frame: dict[str, Any], timeout: float | None = None) -> None:
        """Send one frame as a text message.

        Raises:
            ToolmeshError(CONNECTION_CLOSED): If the socket is not open
            websockets.exceptions.ConnectionClosed: If it closes mid-send
        """
        if not self.is_open or self._ws is None:
            raise create_error(
                "CONNECTION_CLOSED",
                server_name=self.config.name,
                detail="WebSocket is not open",
            )
        await self._ws.send(JSONRPCMessage.encode(frame))
        return None

    async def close(self) -> None:
        """Close the socket and stop the receive loop."""
        self._closing = True
        if self._ws is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await asyncio.wait_for(self._ws.close(), timeout=self.config.timeout)
            self._ws = None

        if self._receive_task and not self._receive_task.done():
            self._receive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._receive_task
        self._receive_task = None

    async def _receive_loop(self, ws: ClientConnection) -> None:
        """Deliver every inbound message until the socket closes."""
        try:
            async for message in ws:
                self._deliver(message)
        except ConnectionClosed as e:
            self._notify_closed(f"socket closed with error: {e}")
            return
        self._notify_closed(f"socket closed by server (code {ws.close_code})")
