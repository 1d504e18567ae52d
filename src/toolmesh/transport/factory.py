"""Select a transport adapter for a server configuration."""

from typing import Any

from toolmesh.config.models import ServerConfig
from toolmesh.errors import create_error
from toolmesh.logging.logger import ServerLogger
from toolmesh.types import TransportKind

from .base import Transport
from .http import HttpTransport
from .pipe import PipeTransport
from .socket import SocketTransport

TRANSPORTS: dict[TransportKind, type[Transport]] = {
    TransportKind.PIPE: PipeTransport,
    TransportKind.SOCKET: SocketTransport,
    TransportKind.HTTP: HttpTransport,
}


def create_transport(
    config: ServerConfig,
    logger: ServerLogger | None = None,
    **options: Any,
) -> Transport:
    """Create the adapter matching config.transport.

    Args:
        config: Server configuration
        logger: Optional server-scoped logger
        **options: Adapter-specific keyword arguments (e.g. http_transport)

    Returns:
        Unconnected Transport

    Raises:
        ToolmeshError(CONFIG_INVALID): If the transport kind is unknown
    """
    transport_class = TRANSPORTS.get(config.transport)
    if transport_class is None:
        raise create_error(
            "CONFIG_INVALID",
            server_name=config.name,
            detail=f"Server '{config.name}': unknown transport type '{config.transport}'",
        )
    return transport_class(config, logger, **options)
