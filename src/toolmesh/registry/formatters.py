"""Text formatters for the tool catalog."""

import json

from .types import Tool


def format_tool_list(tools: list[Tool], connected: set[str] | None = None) -> str:
    """Format tool list for display.

    Args:
        tools: List of tools to format
        connected: Names of servers currently connected; when given, tools on
            other servers are marked unavailable

    Returns:
        Formatted string
    """
    if not tools:
        return "No tools found."

    lines = []
    lines.append(f"Found {len(tools)} tool(s):\n")

    for tool in tools:
        available = connected is None or tool.server_name in connected
        status_icon = "✓" if available else "✗"
        lines.append(f"  {status_icon} {tool.qualified_name:40} {tool.description}")

    return "\n".join(lines)


def format_tool_detail(tool: Tool) -> str:
    """Format tool detail for display.

    Args:
        tool: Tool to format

    Returns:
        Formatted string
    """
    lines = []

    lines.append(f"Tool: {tool.qualified_name}")
    lines.append("=" * 60)

    lines.append(f"Name:        {tool.name}")
    lines.append(f"Server:      {tool.server_name}")
    lines.append(f"Description: {tool.description or '(none)'}")

    lines.append("\nInput Schema:")
    lines.append(json.dumps(tool.input_schema, indent=2))

    return "\n".join(lines)
