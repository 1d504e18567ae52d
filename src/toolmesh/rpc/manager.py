"""Connection Registry - owns every configured server connection."""

import asyncio
from typing import Any

from toolmesh.config.models import ClientConfig, ServerConfig
from toolmesh.errors import ErrorFactory
from toolmesh.logging.logger import MeshLogger
from toolmesh.types import LogLevel

from .connection import Connection
from .correlator import RequestCorrelator
from .types import ServerStatus


class ConnectionRegistry:
    """Manages all tool server connections.

    Creates connections from config in document order and drives parallel
    connect/disconnect. One server's failure never blocks the others.
    """

    def __init__(
        self,
        config: ClientConfig,
        logger: MeshLogger | None = None,
        correlator: RequestCorrelator | None = None,
        error_factory: ErrorFactory | None = None,
        transport_options: dict[str, dict[str, Any]] | None = None,
    ):
        """Initialize connection registry.

        Args:
            config: Client configuration
            logger: Optional logger
            correlator: Optional shared correlator (created if omitted)
            error_factory: Optional error factory
            transport_options: Per-server keyword arguments for transport adapters
        """
        self._config = config
        self._logger = logger
        self._correlator = correlator or RequestCorrelator(logger, error_factory)
        self._transport_options = transport_options or {}
        self._connections: dict[str, Connection] = {}
        for server in config.servers:
            self._connections[server.name] = self._create_connection(server)

    def _log(self, level: LogLevel, message: str) -> None:
        """Log message if logger available."""
        if self._logger:
            self._logger._log(level, "connection", message)

    @property
    def correlator(self) -> RequestCorrelator:
        return self._correlator

    @property
    def server_names(self) -> list[str]:
        """Configured server names in document order."""
        return list(self._connections)

    async def connect_all(self) -> dict[str, bool]:
        """Connect to all configured servers in parallel.

        Returns:
            Dict of server name to whether it is connected
        """
        if not self._connections:
            self._log(LogLevel.INFO, "No tool servers configured")
            return {}

        self._log(LogLevel.INFO, f"Connecting to {len(self._connections)} tool server(s)")

        names = list(self._connections)
        results = await asyncio.gather(*(self.connect(name) for name in names))
        outcome = dict(zip(names, results, strict=True))

        connected = sum(1 for ok in outcome.values() if ok)
        self._log(LogLevel.INFO, f"Connected to {connected}/{len(outcome)} servers")
        return outcome

    async def connect(self, name: str) -> bool:
        """Connect one server, containing any failure.

        Args:
            name: Server name

        Returns:
            True if the server is connected afterwards
        """
        conn = self._connections.get(name)
        if conn is None:
            self._log(LogLevel.WARN, f"Unknown server '{name}'")
            return False

        try:
            await conn.connect()
        except Exception as e:
            self._log(LogLevel.ERROR, f"Failed to connect to '{name}': {e}")
            return False
        return conn.is_connected

    async def disconnect(self, name: str) -> None:
        conn = self._connections.get(name)
        if conn is not None:
            await conn.disconnect()

    async def disconnect_all(self, timeout: float = 10.0) -> None:
        """Disconnect from all servers.

        Args:
            timeout: Maximum time to wait for all disconnects in seconds
        """
        self._log(LogLevel.INFO, "Disconnecting from all tool servers")

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    *(conn.disconnect() for conn in self._connections.values()),
                    return_exceptions=True,
                ),
                timeout=timeout,
            )
        except TimeoutError:
            self._log(LogLevel.WARN, f"Timeout ({timeout}s) waiting for all servers to disconnect")

        # Anything still pending belongs to a server that did not close in time
        for name in self._connections:
            self._correlator.reject_server(name, "closed by client")

        self._log(LogLevel.INFO, "Disconnected from all servers")

    def get_connection(self, name: str) -> Connection | None:
        """Get connection by server name."""
        return self._connections.get(name)

    def list_connections(self) -> list[Connection]:
        """List all connections in document order."""
        return list(self._connections.values())

    def connected_names(self) -> list[str]:
        """Names of servers currently Connected, in document order."""
        return [name for name, conn in self._connections.items() if conn.is_connected]

    def get_status(self, tools: dict[str, list[str]] | None = None) -> dict[str, ServerStatus]:
        """Get status of all connections.

        Args:
            tools: Optional server name to registered tool names

        Returns:
            Dict of server name to ServerStatus
        """
        tools = tools or {}
        return {
            name: conn.get_status(tools.get(name)) for name, conn in self._connections.items()
        }

    async def on_config_change(self, new_config: ClientConfig) -> None:
        """Apply a new configuration.

        - Disconnect removed servers
        - Connect new servers
        - Reconnect changed servers

        Args:
            new_config: New client configuration
        """
        self._log(LogLevel.INFO, "Handling config change")

        old_servers = set(self._connections)
        new_servers = {server.name: server for server in new_config.servers}

        for name in old_servers - set(new_servers):
            self._log(LogLevel.INFO, f"Removing server '{name}'")
            conn = self._connections.pop(name)
            await conn.disconnect()

        to_connect: list[str] = []
        connections: dict[str, Connection] = {}
        for name, server in new_servers.items():
            conn = self._connections.get(name)
            if conn is None:
                self._log(LogLevel.INFO, f"Adding server '{name}'")
                conn = self._create_connection(server)
                to_connect.append(name)
            elif conn.config != server:
                self._log(LogLevel.INFO, f"Reconnecting server '{name}' (config changed)")
                await conn.disconnect()
                conn = self._create_connection(server)
                to_connect.append(name)
            connections[name] = conn

        # Keep document order of the new config
        self._connections = connections
        self._config = new_config

        await asyncio.gather(*(self.connect(name) for name in to_connect))
        self._log(LogLevel.INFO, "Config change complete")

    def _create_connection(self, server: ServerConfig) -> Connection:
        return Connection(
            config=server,
            correlator=self._correlator,
            logger=self._logger,
            transport_options=self._transport_options.get(server.name),
        )
