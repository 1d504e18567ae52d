"""HTTP transport: every frame is an independent POST."""

from typing import Any

import httpx

from toolmesh.config.models import ServerConfig
from toolmesh.errors import create_error
from toolmesh.logging.logger import ServerLogger

from .base import Transport
from .protocol import JSONRPCMessage


class HttpTransport(Transport):
    """Request/response transport over HTTP.

    There is no persistent connection: connect() is a liveness probe and
    each send() POSTs one request frame and returns the reply frame.
    """

    message_oriented = False

    def __init__(
        self,
        config: ServerConfig,
        logger: ServerLogger | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP transport.

        Args:
            config: Server configuration
            logger: Optional server-scoped logger
            http_transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        super().__init__(config, logger)
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_open(self) -> bool:
        return self._client is not None and not self._closing

    async def connect(self) -> None:
        """Probe the health endpoint.

        Raises:
            ToolmeshError(CONNECT_FAILED): If the probe fails or is not 2xx
        """
        self._closing = False
        client = httpx.AsyncClient(
            base_url=self.config.url or "",
            headers=self.config.auth_headers(),
            timeout=self.config.timeout,
            transport=self._http_transport,
        )

        try:
            response = await client.get(self.config.health_path)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            await client.aclose()
            raise create_error(
                "CONNECT_FAILED",
                server_name=self.config.name,
                detail=f"Health check returned HTTP {e.response.status_code} from {e.request.url}",
            ) from e
        except httpx.HTTPError as e:
            await client.aclose()
            raise create_error(
                "CONNECT_FAILED",
                server_name=self.config.name,
                detail=f"Health check to {self.config.url}{self.config.health_path} failed: "
                f"{str(e) or type(e).__name__}",
            ) from e

        self._client = client

    async def send(self, frame: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        """POST one request frame and return the reply frame.

        Args:
            frame: Request frame
            timeout: Seconds for this request (defaults to the server's timeout)

        Raises:
            ToolmeshError(CONNECTION_CLOSED): If the transport was closed
            ToolmeshError(PROTOCOL_ERROR): If the body is not a JSON object
            httpx.HTTPError: On network failure or a non-2xx status
        """
        if self._client is None:
            raise create_error(
                "CONNECTION_CLOSED",
                server_name=self.config.name,
                detail="HTTP client is closed",
            )

        response = await self._client.post(
            self.config.rpc_path,
            json=frame,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        response.raise_for_status()

        reply = JSONRPCMessage.parse(response.content)
        if not isinstance(reply, dict):
            raise create_error(
                "PROTOCOL_ERROR",
                server_name=self.config.name,
                detail=f"Expected a JSON object in the response body, got {type(reply).__name__}",
            )
        return reply

    async def notify(self, frame: dict[str, Any]) -> None:
        """POST a notification frame; the response body is ignored."""
        if self._client is None:
            raise create_error(
                "CONNECTION_CLOSED",
                server_name=self.config.name,
                detail="HTTP client is closed",
            )
        response = await self._client.post(self.config.rpc_path, json=frame)
        response.raise_for_status()

    async def close(self) -> None:
        self._closing = True
        if self._client is not None:
            await self._client.aclose()
            self._client = None
