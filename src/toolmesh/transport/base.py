"""Transport contract implemented by the pipe, socket and HTTP adapters."""

import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from toolmesh.config.models import ServerConfig
from toolmesh.logging.logger import ServerLogger

from .protocol import JSONRPCMessage

# Callback receives one decoded inbound frame
FrameHandler = Callable[[dict[str, Any]], None]
# Callback receives a human-readable reason the transport went away
CloseHandler = Callable[[str], None]

# Largest single frame accepted from a pipe or socket
MAX_FRAME_BYTES = 16 * 1024 * 1024


class Transport(ABC):
    """One way of carrying JSON-RPC frames to a single tool server.

    Message-oriented transports deliver replies through the frame handler;
    request/response transports return the reply from send().
    """

    message_oriented: bool = True

    def __init__(self, config: ServerConfig, logger: ServerLogger | None = None):
        """Initialize transport.

        Args:
            config: Server configuration
            logger: Optional server-scoped logger
        """
        self.config = config
        self._logger = logger
        self._on_frame: FrameHandler | None = None
        self._on_close: CloseHandler | None = None
        self._closing = False
        self._close_notified = False

    def set_handlers(
        self,
        on_frame: FrameHandler | None = None,
        on_close: CloseHandler | None = None,
    ) -> None:
        """Subscribe to inbound frames and unsolicited closure."""
        self._on_frame = on_frame
        self._on_close = on_close

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether frames can currently be sent."""

    @abstractmethod
    async def connect(self) -> None:
        """Establish the transport within the server's timeout.

        Raises:
            ToolmeshError(CONNECT_FAILED): If the server cannot be reached
        """

    @abstractmethod
    async def send(
        self, frame: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any] | None:
        """Send one frame.

        Args:
            frame: Frame to send
            timeout: Seconds to wait for the reply on request/response
                transports; message-oriented transports ignore it

        Returns:
            The reply frame for request/response transports, None otherwise
        """

    async def notify(self, frame: dict[str, Any]) -> None:
        """Send a frame that expects no response."""
        await self.send(frame)

    @abstractmethod
    async def close(self) -> None:
        """Release the transport. Does not fire the close handler."""

    def _deliver(self, raw: str | bytes) -> None:
        """Decode one inbound frame and hand it to the frame handler."""
        try:
            frame = JSONRPCMessage.parse(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._protocol_error(f"{e} in {raw[:80]!r}")
            return

        if not isinstance(frame, dict):
            self._protocol_error(f"expected a JSON object, got {type(frame).__name__}")
            return

        if self._on_frame:
            self._on_frame(frame)

    def _notify_closed(self, reason: str) -> None:
        """Report an unsolicited close exactly once."""
        if self._closing or self._close_notified:
            return
        self._close_notified = True
        if self._on_close:
            self._on_close(reason)

    def _protocol_error(self, detail: str) -> None:
        if self._logger:
            self._logger.protocol_error(detail)
