"""Capability registry types."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Tool:
    """One tool advertised by a connected server.

    Addressable by its qualified name "<server>.<name>" and, unless another
    server shadows it, by its bare name.
    """

    name: str  # Server-local name
    server_name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @property
    def qualified_name(self) -> str:
        return f"{self.server_name}.{self.name}"

    @classmethod
    def from_dict(cls, data: dict[str, Any], server_name: str) -> "Tool":
        """Build from a tools/list entry ({"name", "description", "inputSchema"})."""
        schema = data.get("inputSchema", data.get("input_schema"))
        return cls(
            name=data["name"],
            server_name=server_name,
            description=data.get("description") or "",
            input_schema=schema if isinstance(schema, dict) else {},
        )

    def to_mcp_tool(self) -> dict[str, Any]:
        """Convert back to the tools/list wire shape."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass
class DiscoveryResult:
    """Result of one discovery pass.

    Tracks what changed relative to the previous pass.
    """

    total_tools: int
    tools_by_server: dict[str, list[str]]  # server_name -> bare tool names
    added: list[str]  # qualified names
    removed: list[str]  # qualified names
    errors: dict[str, str]  # server_name -> error message
    collisions: dict[str, list[str]] = field(default_factory=dict)  # bare name -> servers
