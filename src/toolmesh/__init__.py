"""toolmesh - one client for many tool servers over pipe, socket and HTTP.

Usage:
    from toolmesh import ToolClient

    async with ToolClient.from_file("mcp.json") as client:
        for tool in client.list_tools():
            print(tool.qualified_name)
"""

from toolmesh._version import __version__
from toolmesh.client import ToolClient, build_logger
from toolmesh.config import ClientConfig, ConfigLoader, ServerConfig
from toolmesh.errors import ToolmeshError
from toolmesh.registry import Tool
from toolmesh.rpc import CallOutcome, ServerStatus

__all__ = [
    "__version__",
    "ToolClient",
    "build_logger",
    "ClientConfig",
    "ConfigLoader",
    "ServerConfig",
    "ToolmeshError",
    "Tool",
    "CallOutcome",
    "ServerStatus",
]
