"""Shared enumerations for toolmesh."""

from enum import Enum


class LogLevel(str, Enum):
    """Log verbosity level."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class LogFormat(str, Enum):
    """Log output format."""

    COLORED = "colored"
    JSON = "json"


class TransportKind(str, Enum):
    """How a tool server is reached."""

    PIPE = "pipe"  # Spawned subprocess, newline-delimited frames on stdio
    SOCKET = "socket"  # Persistent WebSocket, one message per frame
    HTTP = "http"  # One POST per frame, liveness probe on connect


class ConnectionStatus(str, Enum):
    """Tool server connection status.

    Disconnected is both the initial and the terminal state; a connection
    only leaves it again through an explicit reconnect.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
