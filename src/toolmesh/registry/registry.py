"""Capability Registry - merged tool catalog across every connected server."""

import asyncio
from typing import Any

from toolmesh.errors import ToolmeshError, create_error
from toolmesh.logging.logger import MeshLogger
from toolmesh.rpc.manager import ConnectionRegistry
from toolmesh.types import LogLevel

from .types import DiscoveryResult, Tool


class CapabilityRegistry:
    """Aggregated tool index.

    Each server owns a slice of tools; the name index is rebuilt from the
    slices in configuration order, so on a bare-name collision the server
    listed last wins. Qualified names ("server.tool") never collide.
    """

    # Guard against servers that keep handing out cursors
    MAX_PAGES = 100

    def __init__(self, connections: ConnectionRegistry, logger: MeshLogger | None = None):
        """Initialize capability registry.

        Args:
            connections: Connection registry used to reach servers
            logger: Optional logger
        """
        self._connections = connections
        self._logger = logger
        self._slices: dict[str, list[Tool]] = {}
        self._qualified: dict[str, Tool] = {}
        self._bare: dict[str, Tool] = {}

    def _log(self, level: LogLevel, message: str) -> None:
        """Log message if logger available."""
        if self._logger:
            self._logger._log(level, "registry", message)

    async def discover_all(self) -> DiscoveryResult:
        """Query every connected server for its tools, in parallel.

        A server that fails contributes zero tools; the failure is logged
        and reported in the result, never raised.

        Returns:
            DiscoveryResult with changes
        """
        names = self._connections.connected_names()
        self._log(LogLevel.INFO, f"Discovering tools from {len(names)} server(s)")

        old_tools = set(self._qualified)
        results = await asyncio.gather(
            *(self._fetch_tools(name) for name in names), return_exceptions=True
        )

        slices: dict[str, list[Tool]] = {}
        errors: dict[str, str] = {}
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self._log(LogLevel.ERROR, f"Failed to list tools from '{name}': {result}")
                errors[name] = str(result)
                slices[name] = []
            else:
                slices[name] = result

        self._slices = slices
        collisions = self._rebuild_index()

        new_tools = set(self._qualified)
        discovery = DiscoveryResult(
            total_tools=len(new_tools),
            tools_by_server={name: [t.name for t in tools] for name, tools in slices.items()},
            added=sorted(new_tools - old_tools),
            removed=sorted(old_tools - new_tools),
            errors=errors,
            collisions=collisions,
        )
        self._log(
            LogLevel.INFO,
            f"Discovered {discovery.total_tools} tools from {len(names) - len(errors)} server(s)",
        )
        return discovery

    async def discover(self, server_name: str) -> list[Tool]:
        """Refresh a single server's slice.

        Raises:
            ToolmeshError: If the server is unavailable or tools/list fails
        """
        tools = await self._fetch_tools(server_name)
        self._slices[server_name] = tools
        self._rebuild_index()
        return tools

    def remove_server(self, server_name: str) -> None:
        """Drop a server's slice (e.g. after a failed reconnect)."""
        if self._slices.pop(server_name, None) is not None:
            self._rebuild_index()

    def list_tools(self) -> list[Tool]:
        """All registered tools, grouped by server in configuration order."""
        return list(self._qualified.values())

    def get_tool(self, name: str) -> Tool | None:
        """Resolve a qualified or bare tool name."""
        return self._qualified.get(name) or self._bare.get(name)

    def has_tool(self, name: str) -> bool:
        return self.get_tool(name) is not None

    def tools_by_server(self) -> dict[str, list[str]]:
        return {name: [t.name for t in tools] for name, tools in self._slices.items()}

    async def invoke(self, name: str, params: dict[str, Any] | None = None) -> Any:
        """Call a tool on the server that owns it.

        Args:
            name: Qualified ("server.tool") or bare tool name
            params: Tool arguments

        Returns:
            The server's tools/call result, verbatim

        Raises:
            ToolmeshError(UNKNOWN_TOOL): If no server advertised the tool
            ToolmeshError(SERVER_UNAVAILABLE): If the owner is not connected
            ToolmeshError: Any call-level failure
        """
        tool = self.get_tool(name)
        if tool is None:
            raise create_error("UNKNOWN_TOOL", tool_name=name)

        conn = self._connections.get_connection(tool.server_name)
        if conn is None or not conn.is_connected:
            raise create_error(
                "SERVER_UNAVAILABLE",
                server_name=tool.server_name,
                tool_name=tool.qualified_name,
            )

        try:
            return await conn.request("tools/call", {"name": tool.name, "arguments": params or {}})
        except ToolmeshError as e:
            raise e.with_context(tool_name=tool.qualified_name) from e

    async def _fetch_tools(self, server_name: str) -> list[Tool]:
        """Page through tools/list for one server."""
        conn = self._connections.get_connection(server_name)
        if conn is None or not conn.is_connected:
            raise create_error("SERVER_UNAVAILABLE", server_name=server_name)

        tools: list[Tool] = []
        cursor: str | None = None
        seen_cursors: set[str] = set()

        for _ in range(self.MAX_PAGES):
            result = await conn.request("tools/list", {"cursor": cursor} if cursor else {})
            entries, cursor = self._parse_page(server_name, result)
            tools.extend(entries)

            if not cursor or cursor in seen_cursors:
                break
            seen_cursors.add(cursor)
        else:
            self._log(
                LogLevel.WARN,
                f"Stopped paging tools/list on '{server_name}' after {self.MAX_PAGES} pages",
            )

        self._log(LogLevel.DEBUG, f"Server '{server_name}' has {len(tools)} tools")
        return tools

    def _parse_page(self, server_name: str, result: Any) -> tuple[list[Tool], str | None]:
        """Accept {"tools": [...], "nextCursor": ...} or a bare list."""
        cursor = None
        if isinstance(result, dict):
            items = result.get("tools") or []
            next_cursor = result.get("nextCursor")
            cursor = next_cursor if isinstance(next_cursor, str) and next_cursor else None
        elif isinstance(result, list):
            items = result
        else:
            raise create_error(
                "PROTOCOL_ERROR",
                server_name=server_name,
                detail=f"tools/list returned {type(result).__name__}",
            )

        tools = []
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"]:
                tools.append(Tool.from_dict(item, server_name))
            else:
                self._log(LogLevel.WARN, f"Skipping malformed tool entry from '{server_name}'")
        return tools, cursor

    def _rebuild_index(self) -> dict[str, list[str]]:
        """Rebuild both name indexes from the slices.

        Returns:
            Bare names claimed by more than one server, with the servers in order
        """
        qualified: dict[str, Tool] = {}
        bare: dict[str, Tool] = {}
        owners: dict[str, list[str]] = {}

        order = self._connections.server_names
        ordered = [n for n in order if n in self._slices]
        ordered += [n for n in self._slices if n not in order]

        for server_name in ordered:
            for tool in self._slices[server_name]:
                qualified[tool.qualified_name] = tool
                bare[tool.name] = tool
                servers = owners.setdefault(tool.name, [])
                if server_name not in servers:
                    servers.append(server_name)

        collisions = {name: servers for name, servers in owners.items() if len(servers) > 1}
        for name, servers in collisions.items():
            self._log(
                LogLevel.WARN,
                f"Tool '{name}' is offered by {', '.join(servers)}; "
                f"bare name resolves to '{servers[-1]}'",
            )

        self._qualified = qualified
        self._bare = bare
        return collisions
