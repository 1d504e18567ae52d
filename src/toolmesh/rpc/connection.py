"""Connection - one server's transport and lifecycle state."""

import time
from datetime import UTC, datetime
from typing import Any

from toolmesh.config.models import ServerConfig
from toolmesh.errors import ToolmeshError, create_error
from toolmesh.logging.logger import MeshLogger
from toolmesh.transport import (
    CLIENT_INFO,
    MCP_PROTOCOL_VERSION,
    JSONRPCMessage,
    Transport,
    create_transport,
)
from toolmesh.types import ConnectionStatus, LogLevel

from .correlator import RequestCorrelator
from .types import ServerStatus


class Connection:
    """Runtime binding of a ServerConfig to a live transport.

    State machine: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.
    Disconnected is terminal until connect() is called again.
    """

    def __init__(
        self,
        config: ServerConfig,
        correlator: RequestCorrelator,
        logger: MeshLogger | None = None,
        transport_options: dict[str, Any] | None = None,
    ):
        """Initialize connection.

        Args:
            config: Server configuration
            correlator: Shared request correlator
            logger: Optional logger
            transport_options: Extra keyword arguments for the transport adapter
        """
        self.name = config.name
        self.config = config
        self._correlator = correlator
        self._logger = logger
        self._server_logger = logger.server(config.name) if logger else None
        self._transport_options = transport_options or {}
        self._transport: Transport | None = None
        self._status = ConnectionStatus.DISCONNECTED
        self._last_connected: datetime | None = None
        self._last_error: str | None = None
        self.server_info: dict[str, Any] | None = None

    def _log(self, level: LogLevel, message: str) -> None:
        """Log message if logger available."""
        if self._logger:
            self._logger._log(level, f"connection.{self.name}", message)

    @property
    def status(self) -> ConnectionStatus:
        """Current connection status."""
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def get_status(self, tools: list[str] | None = None) -> ServerStatus:
        """Get detailed status.

        Args:
            tools: Names of tools currently registered for this server

        Returns:
            ServerStatus with current state
        """
        return ServerStatus(
            name=self.name,
            status=self._status,
            transport=self.config.transport.value,
            tools=tools or [],
            pending_calls=self._correlator.pending_count(self.name),
            last_connected=self._last_connected.isoformat() if self._last_connected else None,
            last_error=self._last_error,
        )

    async def connect(self) -> None:
        """Establish the transport and, if configured, the MCP handshake.

        Raises:
            ToolmeshError(CONNECT_FAILED): If the server cannot be reached
        """
        if self._status == ConnectionStatus.CONNECTED:
            self._log(LogLevel.DEBUG, "Already connected")
            return

        await self._release_transport()

        self._status = ConnectionStatus.CONNECTING
        if self._server_logger:
            self._server_logger.connecting(self.config.transport.value, self.config.target)
        start_time = time.time()

        try:
            transport = create_transport(
                self.config, self._server_logger, **self._transport_options
            )
            transport.set_handlers(on_frame=self._on_frame, on_close=self._on_transport_closed)
            self._transport = transport

            await transport.connect()
            if self.config.handshake:
                await self._handshake(transport)
            if not transport.is_open:
                raise create_error(
                    "CONNECT_FAILED",
                    server_name=self.name,
                    detail="Transport closed while connecting",
                )
        except Exception as e:
            error = self._connect_error(e)
            self._status = ConnectionStatus.DISCONNECTED
            self._last_error = str(error)
            await self._release_transport()
            if self._server_logger:
                self._server_logger.connect_failed(error)
            if error is e:
                raise
            raise error from e

        self._status = ConnectionStatus.CONNECTED
        self._last_connected = datetime.now(UTC)
        self._last_error = None
        if self._server_logger:
            self._server_logger.connected(int((time.time() - start_time) * 1000))

    async def disconnect(self) -> None:
        """Close the transport, rejecting this server's pending calls."""
        was_active = self._status != ConnectionStatus.DISCONNECTED
        self._status = ConnectionStatus.DISCONNECTED
        rejected = self._correlator.reject_server(self.name, "closed by client")
        await self._release_transport()

        if (was_active or rejected) and self._server_logger:
            self._server_logger.disconnected("closed by client", rejected)

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Issue one call to this server.

        Raises:
            ToolmeshError(SERVER_UNAVAILABLE): If not connected
            ToolmeshError: Any call-level failure from the correlator
        """
        if self._status != ConnectionStatus.CONNECTED or self._transport is None:
            raise create_error("SERVER_UNAVAILABLE", server_name=self.name)
        return await self._correlator.call(self._transport, method, params, timeout)

    async def _handshake(self, transport: Transport) -> None:
        """Send initialize and the initialized notification."""
        result = await self._correlator.call(
            transport,
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        )
        if isinstance(result, dict):
            self.server_info = result.get("serverInfo")
        self._log(LogLevel.DEBUG, f"Initialized: {self.server_info or 'no server info'}")
        await transport.notify(JSONRPCMessage.notification("notifications/initialized"))

    def _on_frame(self, frame: dict[str, Any]) -> None:
        self._correlator.dispatch(self.name, frame)

    def _on_transport_closed(self, reason: str) -> None:
        """Transport went away on its own: reject pending calls and go Disconnected."""
        self._status = ConnectionStatus.DISCONNECTED
        self._last_error = reason
        rejected = self._correlator.reject_server(self.name, reason)
        if self._server_logger:
            self._server_logger.disconnected(reason, rejected)

    async def _release_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            self._log(LogLevel.WARN, f"Error closing transport: {e}")

    def _connect_error(self, error: Exception) -> ToolmeshError:
        if isinstance(error, ToolmeshError) and error.code == "CONNECT_FAILED":
            return error
        return create_error(
            "CONNECT_FAILED",
            server_name=self.name,
            detail=str(error) or type(error).__name__,
        )
