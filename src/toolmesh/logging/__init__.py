"""toolmesh logging - component logging for connections and calls."""

from .colors import (
    CYAN,
    GREEN,
    LIGHT_BLUE,
    MAGENTA,
    ORANGE,
    RED,
    RESET,
    YELLOW,
)
from .logger import (
    CallLogger,
    LogConfig,
    MeshLogger,
    ServerLogger,
)

__all__ = [
    # Logger classes
    "MeshLogger",
    "ServerLogger",
    "CallLogger",
    "LogConfig",
    # Colors
    "RESET",
    "GREEN",
    "RED",
    "YELLOW",
    "ORANGE",
    "LIGHT_BLUE",
    "CYAN",
    "MAGENTA",
]
