"""ANSI color codes for terminal log output.

All colors use the 256-color palette.

Usage:
    from toolmesh.logging.colors import GREEN, RESET

    print(f"{GREEN}connected{RESET}")
"""

RESET = "\033[0m"

# Status
GREEN = "\033[38;5;82m"  # Connected / completed
RED = "\033[38;5;196m"  # Errors
YELLOW = "\033[38;5;226m"  # Warnings
ORANGE = "\033[38;5;208m"  # Server stderr passthrough

# Information
LIGHT_BLUE = "\033[38;5;153m"  # Debug and context payloads
CYAN = "\033[38;5;51m"  # Info
MAGENTA = "\033[38;5;201m"  # Registry events

# Per-component colors used by the colored formatter
COMPONENT_COLORS = {
    "config": MAGENTA,
    "transport": ORANGE,
    "connection": CYAN,
    "rpc": GREEN,
    "registry": MAGENTA,
    "client": LIGHT_BLUE,
}

__all__ = [
    "RESET",
    "GREEN",
    "RED",
    "YELLOW",
    "ORANGE",
    "LIGHT_BLUE",
    "CYAN",
    "MAGENTA",
    "COMPONENT_COLORS",
]
