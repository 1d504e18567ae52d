"""Tests for CapabilityRegistry discovery, name resolution and invocation."""

import json
from io import StringIO
from typing import Any

import httpx
import pytest

from conftest import log_entries, make_http_handler
from toolmesh.config import ClientConfig, ServerConfig
from toolmesh.errors import ToolmeshError
from toolmesh.registry import CapabilityRegistry
from toolmesh.rpc import ConnectionRegistry
from toolmesh.types import TransportKind


def tool(name: str) -> dict[str, Any]:
    return {"name": name, "description": f"{name} tool", "inputSchema": {"type": "object"}}


def http_server(name: str) -> ServerConfig:
    return ServerConfig(name=name, transport=TransportKind.HTTP, url=f"http://{name}", timeout=1.0)


def fixed_result_handler(result: Any):
    """MockTransport handler answering every POST with the same result."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200)
        frame = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": frame["id"], "result": result})

    return handler


async def build(handlers: dict[str, Any], logger=None) -> tuple[ConnectionRegistry, CapabilityRegistry]:
    """Connect one mocked HTTP server per handler, in the given order."""
    config = ClientConfig(servers=[http_server(name) for name in handlers])
    options = {name: {"http_transport": httpx.MockTransport(h)} for name, h in handlers.items()}
    connections = ConnectionRegistry(config, logger=logger, transport_options=options)
    await connections.connect_all()
    return connections, CapabilityRegistry(connections, logger=logger)


class TestDiscovery:
    """Tests for discover_all() and discover()."""

    @pytest.mark.asyncio
    async def test_tools_grouped_by_server_in_config_order(self):
        connections, registry = await build(
            {
                "fs": make_http_handler(tools=[tool("read_file"), tool("write_file")]),
                "web": make_http_handler(tools=[tool("fetch")]),
            }
        )

        result = await registry.discover_all()
        await connections.disconnect_all()

        assert result.total_tools == 3
        assert result.tools_by_server == {"fs": ["read_file", "write_file"], "web": ["fetch"]}
        assert result.added == ["fs.read_file", "fs.write_file", "web.fetch"]
        assert result.errors == {}
        assert [t.qualified_name for t in registry.list_tools()] == [
            "fs.read_file",
            "fs.write_file",
            "web.fetch",
        ]

    @pytest.mark.asyncio
    async def test_failing_server_contributes_nothing(self, logger, log_stream: StringIO):
        connections, registry = await build(
            {
                "good": make_http_handler(tools=[tool("a")]),
                "bad": fixed_result_handler("not a tool list"),
            },
            logger=logger,
        )

        result = await registry.discover_all()
        await connections.disconnect_all()

        assert [t.qualified_name for t in registry.list_tools()] == ["good.a"]
        assert result.tools_by_server["bad"] == []
        assert "bad" in result.errors
        assert any(
            e["level"] == "ERROR" and "bad" in e["message"] for e in log_entries(log_stream)
        )

    @pytest.mark.asyncio
    async def test_bare_list_result_accepted(self):
        connections, registry = await build({"s": fixed_result_handler([tool("x"), tool("y")])})

        await registry.discover_all()
        await connections.disconnect_all()

        assert [t.name for t in registry.list_tools()] == ["x", "y"]

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped(self):
        result = {"tools": [tool("ok"), {"description": "no name"}, "junk", {"name": ""}]}
        connections, registry = await build({"s": fixed_result_handler(result)})

        await registry.discover_all()
        await connections.disconnect_all()

        assert [t.name for t in registry.list_tools()] == ["ok"]

    @pytest.mark.asyncio
    async def test_rediscovery_reports_changes(self):
        tools = [tool("a"), tool("b")]
        connections, registry = await build({"s": make_http_handler(tools=tools)})

        await registry.discover_all()
        tools[:] = [tool("b"), tool("c")]
        result = await registry.discover_all()
        await connections.disconnect_all()

        assert result.added == ["s.c"]
        assert result.removed == ["s.a"]

    @pytest.mark.asyncio
    async def test_disconnected_servers_skipped(self):
        connections, registry = await build(
            {
                "up": make_http_handler(tools=[tool("a")]),
                "down": make_http_handler(health_status=503),
            }
        )

        result = await registry.discover_all()
        await connections.disconnect_all()

        assert list(result.tools_by_server) == ["up"]

    @pytest.mark.asyncio
    async def test_discover_single_server(self):
        tools = [tool("a")]
        connections, registry = await build(
            {"s": make_http_handler(tools=tools), "t": make_http_handler(tools=[tool("z")])}
        )
        await registry.discover_all()

        tools.append(tool("b"))
        refreshed = await registry.discover("s")
        await connections.disconnect_all()

        assert [t.name for t in refreshed] == ["a", "b"]
        assert registry.tools_by_server() == {"s": ["a", "b"], "t": ["z"]}

    @pytest.mark.asyncio
    async def test_remove_server(self):
        connections, registry = await build({"s": make_http_handler(tools=[tool("a")])})
        await registry.discover_all()
        await connections.disconnect_all()

        registry.remove_server("s")

        assert registry.list_tools() == []
        assert not registry.has_tool("a")


@pytest.mark.integration
class TestPagination:
    """tools/list paging against the stdio echo server."""

    @pytest.mark.asyncio
    async def test_follows_next_cursor(self, pipe_config):
        config = ClientConfig(servers=[pipe_config("A", "--tools", "a,b,c,d,e", "--page-size", "2")])
        connections = ConnectionRegistry(config)
        registry = CapabilityRegistry(connections)
        await connections.connect_all()
        try:
            result = await registry.discover_all()
        finally:
            await connections.disconnect_all()

        assert result.tools_by_server == {"A": ["a", "b", "c", "d", "e"]}

    @pytest.mark.asyncio
    async def test_repeated_cursor_stops(self):
        page = {"tools": [tool("a")], "nextCursor": "same"}
        connections, registry = await build({"s": fixed_result_handler(page)})

        result = await registry.discover_all()
        await connections.disconnect_all()

        assert result.total_tools == 1
        assert registry.get_tool("s.a") is not None


class TestNameResolution:
    """Tests for qualified and bare names."""

    @pytest.mark.asyncio
    async def test_bare_name_collision_last_server_wins(self, logger, log_stream: StringIO):
        connections, registry = await build(
            {
                "first": make_http_handler(tools=[tool("search")]),
                "second": make_http_handler(tools=[tool("search"), tool("only_second")]),
            },
            logger=logger,
        )

        result = await registry.discover_all()
        await connections.disconnect_all()

        assert result.collisions == {"search": ["first", "second"]}
        assert registry.get_tool("search").server_name == "second"
        assert registry.get_tool("first.search").server_name == "first"
        assert registry.get_tool("only_second").qualified_name == "second.only_second"
        assert any(
            e["level"] == "WARN" and "search" in e["message"] for e in log_entries(log_stream)
        )

    @pytest.mark.asyncio
    async def test_unknown_names(self):
        connections, registry = await build({"s": make_http_handler(tools=[tool("a")])})
        await registry.discover_all()
        await connections.disconnect_all()

        assert registry.get_tool("nope") is None
        assert registry.get_tool("t.a") is None
        assert registry.has_tool("s.a")


class TestInvoke:
    """Tests for invoke()."""

    @pytest.mark.asyncio
    async def test_invoke_routes_to_owner(self):
        requests: list[httpx.Request] = []
        connections, registry = await build(
            {"s": make_http_handler(tools=[tool("read_file")], requests=requests)}
        )
        await registry.discover_all()
        try:
            result = await registry.invoke("s.read_file", {"path": "README.md"})
        finally:
            await connections.disconnect_all()

        assert result["echo"] == {"name": "read_file", "arguments": {"path": "README.md"}}
        posted = json.loads(requests[-1].content)
        assert posted["method"] == "tools/call"

    @pytest.mark.asyncio
    async def test_arguments_default_to_empty_object(self):
        connections, registry = await build({"s": make_http_handler(tools=[tool("a")])})
        await registry.discover_all()
        try:
            result = await registry.invoke("a")
        finally:
            await connections.disconnect_all()

        assert result["echo"]["arguments"] == {}

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        connections, registry = await build({"s": make_http_handler(tools=[tool("a")])})
        await registry.discover_all()
        await connections.disconnect_all()

        with pytest.raises(ToolmeshError) as exc_info:
            await registry.invoke("s.missing")

        assert exc_info.value.code == "UNKNOWN_TOOL"
        assert exc_info.value.tool_name == "s.missing"

    @pytest.mark.asyncio
    async def test_owner_disconnected(self):
        connections, registry = await build({"s": make_http_handler(tools=[tool("a")])})
        await registry.discover_all()
        await connections.disconnect_all()

        with pytest.raises(ToolmeshError) as exc_info:
            await registry.invoke("s.a")

        assert exc_info.value.code == "SERVER_UNAVAILABLE"
        assert exc_info.value.server_name == "s"

    @pytest.mark.asyncio
    async def test_call_error_carries_tool_name(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200)
            frame = json.loads(request.content)
            if frame["method"] == "tools/list":
                result = {"jsonrpc": "2.0", "id": frame["id"], "result": {"tools": [tool("a")]}}
            else:
                result = {
                    "jsonrpc": "2.0",
                    "id": frame["id"],
                    "error": {"code": -32000, "message": "disk full"},
                }
            return httpx.Response(200, json=result)

        connections, registry = await build({"s": handler})
        await registry.discover_all()
        try:
            with pytest.raises(ToolmeshError) as exc_info:
                await registry.invoke("s.a")
        finally:
            await connections.disconnect_all()

        assert exc_info.value.code == "REMOTE_ERROR"
        assert exc_info.value.tool_name == "s.a"
        assert exc_info.value.detail == "disk full"
