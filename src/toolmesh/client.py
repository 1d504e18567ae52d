"""ToolClient - the facade collaborators hold to reach every tool server."""

import time
from collections.abc import Awaitable
from pathlib import Path
from types import TracebackType
from typing import Any

from toolmesh.config import ClientConfig, ConfigLoader, LoggingConfig
from toolmesh.errors import ToolmeshError, create_error, get_error_factory
from toolmesh.logging import LogConfig, MeshLogger
from toolmesh.registry import CapabilityRegistry, DiscoveryResult, Tool
from toolmesh.rpc import CallOutcome, ConnectionRegistry, ServerStatus
from toolmesh.types import LogLevel


def build_logger(config: LoggingConfig) -> MeshLogger:
    """Create a MeshLogger from the descriptor's logging section."""
    return MeshLogger(
        LogConfig(
            level=config.level,
            format=config.format,
            truncate_at=config.truncate_at,
            components=dict(config.components),
        )
    )


class ToolClient:
    """Multi-transport tool client.

    Explicitly constructed and passed to whoever needs tools; there is no
    module-level instance.

    Example:
        async with ToolClient.from_file("mcp.json") as client:
            outcome = await client.invoke_tool("fs.read_file", {"path": "x"})
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        logger: MeshLogger | None = None,
        loader: ConfigLoader | None = None,
        transport_options: dict[str, dict[str, Any]] | None = None,
    ):
        """Initialize client.

        Args:
            config: Client configuration (defaults to no servers)
            logger: Optional logger
            loader: Loader the config came from, used by reload_config()
            transport_options: Per-server keyword arguments for transport adapters
        """
        self._config = config or ClientConfig()
        self._logger = logger
        self._loader = loader
        self._connections = ConnectionRegistry(
            self._config, logger=logger, transport_options=transport_options
        )
        self._registry = CapabilityRegistry(self._connections, logger=logger)

    @classmethod
    def from_file(
        cls,
        path: str | Path | None = None,
        logger: MeshLogger | None = None,
        strict: bool = True,
        **kwargs: Any,
    ) -> "ToolClient":
        """Build a client from a server-descriptor document.

        A missing document yields a client with no servers.

        Raises:
            ToolmeshError(CONFIG_INVALID): If the document is invalid
        """
        loader = ConfigLoader(logger)
        config = loader.load(path, strict=strict)
        if logger is None:
            logger = build_logger(config.logging)
            loader.set_logger(logger)
        return cls(config, logger=logger, loader=loader, **kwargs)

    def _log(self, level: LogLevel, message: str) -> None:
        """Log message if logger available."""
        if self._logger:
            self._logger._log(level, "client", message)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def connections(self) -> ConnectionRegistry:
        return self._connections

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    async def __aenter__(self) -> "ToolClient":
        await self.connect_all()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect_all()

    async def connect_all(self) -> bool:
        """Connect every configured server, then discover tools.

        Returns:
            True if at least one server connected
        """
        outcome = await self._connections.connect_all()
        if any(outcome.values()):
            await self._registry.discover_all()
        else:
            self._log(LogLevel.WARN, "No tool servers connected, no tools available")
        return any(outcome.values())

    async def disconnect_all(self) -> None:
        """Close every connection, rejecting pending calls with CONNECTION_CLOSED."""
        await self._connections.disconnect_all()

    async def refresh_tools(self) -> DiscoveryResult:
        """Run a discovery pass over every connected server."""
        return await self._registry.discover_all()

    def list_tools(self) -> list[Tool]:
        return self._registry.list_tools()

    def get_tool(self, name: str) -> Tool | None:
        return self._registry.get_tool(name)

    def is_connected(self) -> bool:
        """Whether at least one server is connected."""
        return bool(self._connections.connected_names())

    def connected_server_names(self) -> list[str]:
        return self._connections.connected_names()

    def get_status(self) -> dict[str, ServerStatus]:
        """Status of every configured server."""
        return self._connections.get_status(self._registry.tools_by_server())

    async def invoke_tool(self, name: str, params: dict[str, Any] | None = None) -> CallOutcome:
        """Invoke a tool by qualified or bare name.

        Returns:
            CallOutcome with the tools/call result, or the error
        """
        tool = self._registry.get_tool(name)
        server_name = tool.server_name if tool else None
        return await self._outcome(server_name, self._registry.invoke(name, params))

    async def call(
        self,
        server_name: str,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> CallOutcome:
        """Issue an arbitrary method on one server.

        Args:
            server_name: Configured server name
            method: JSON-RPC method
            params: Optional params
            timeout: Optional timeout override in seconds
        """
        conn = self._connections.get_connection(server_name)
        if conn is None:
            error = create_error(
                "SERVER_UNAVAILABLE",
                server_name=server_name,
                detail=f"Server '{server_name}' is not configured",
            )
            return CallOutcome(error=error, server_name=server_name)
        return await self._outcome(server_name, conn.request(method, params, timeout))

    async def list_resources(self, server_name: str) -> CallOutcome:
        """resources/list on one server."""
        return await self.call(server_name, "resources/list", {})

    async def read_resource(self, server_name: str, uri: str) -> CallOutcome:
        """resources/read of one URI on one server."""
        return await self.call(server_name, "resources/read", {"uri": uri})

    async def reconnect(self, name: str) -> bool:
        """Drop and re-establish one server, then refresh its tools.

        Returns:
            True if the server is connected afterwards
        """
        self._log(LogLevel.INFO, f"Reconnecting '{name}'")
        await self._connections.disconnect(name)
        if not await self._connections.connect(name):
            self._registry.remove_server(name)
            return False

        try:
            await self._registry.discover(name)
        except ToolmeshError as e:
            self._log(LogLevel.ERROR, f"Failed to list tools from '{name}': {e}")
            self._registry.remove_server(name)
        return True

    async def reload_config(self, config: ClientConfig | None = None) -> DiscoveryResult:
        """Apply a new configuration and rediscover tools.

        Removed servers are disconnected, added servers connected and
        changed servers reconnected.

        Args:
            config: New configuration; re-read from the loader's file if omitted

        Raises:
            ToolmeshError(CONFIG_INVALID): If no config is given and there is
                no file to reload from, or the file is invalid
        """
        if config is None:
            if self._loader is None:
                raise create_error("CONFIG_INVALID", detail="No config file to reload from")
            config = self._loader.reload()

        await self._connections.on_config_change(config)
        self._config = config
        # Discovery only keeps slices of connected servers, so removed ones drop out here
        return await self._registry.discover_all()

    async def _outcome(self, server_name: str | None, call: Awaitable[Any]) -> CallOutcome:
        """Await a call and fold its result or error into a CallOutcome."""
        start_time = time.time()
        try:
            result = await call
        except ToolmeshError as e:
            return CallOutcome(
                error=e,
                server_name=e.server_name or server_name,
                call_id=e.call_id,
                duration_ms=int((time.time() - start_time) * 1000),
            )
        except Exception as e:
            error = get_error_factory().from_exception(e, server_name=server_name)
            self._log(LogLevel.ERROR, f"Unexpected error during call: {e}")
            return CallOutcome(
                error=error,
                server_name=server_name,
                duration_ms=int((time.time() - start_time) * 1000),
            )

        return CallOutcome(
            result=result,
            server_name=server_name,
            duration_ms=int((time.time() - start_time) * 1000),
        )
