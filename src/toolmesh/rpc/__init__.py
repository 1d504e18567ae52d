"""toolmesh rpc - connections, call correlation and the connection registry."""

from .connection import Connection
from .correlator import RequestCorrelator, next_call_id
from .manager import ConnectionRegistry
from .types import CallOutcome, PendingCall, ServerStatus

__all__ = [
    # Connections
    "Connection",
    "ConnectionRegistry",
    # Correlation
    "RequestCorrelator",
    "next_call_id",
    # Types
    "PendingCall",
    "CallOutcome",
    "ServerStatus",
]
