"""toolmesh transports - pipe, socket and HTTP adapters behind one contract."""

from .base import MAX_FRAME_BYTES, CloseHandler, FrameHandler, Transport
from .factory import TRANSPORTS, create_transport
from .http import HttpTransport
from .pipe import PipeTransport
from .protocol import CLIENT_INFO, MCP_PROTOCOL_VERSION, JSONRPCMessage
from .socket import SocketTransport

__all__ = [
    # Contract
    "Transport",
    "FrameHandler",
    "CloseHandler",
    "MAX_FRAME_BYTES",
    # Adapters
    "PipeTransport",
    "SocketTransport",
    "HttpTransport",
    "TRANSPORTS",
    "create_transport",
    # Wire format
    "JSONRPCMessage",
    "MCP_PROTOCOL_VERSION",
    "CLIENT_INFO",
]
