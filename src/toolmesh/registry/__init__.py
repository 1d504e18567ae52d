"""toolmesh registry - aggregated tool catalog."""

from .formatters import format_tool_detail, format_tool_list
from .registry import CapabilityRegistry
from .types import DiscoveryResult, Tool

__all__ = [
    "CapabilityRegistry",
    "Tool",
    "DiscoveryResult",
    "format_tool_list",
    "format_tool_detail",
]
