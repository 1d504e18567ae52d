"""toolmesh configuration data models."""

from dataclasses import dataclass, field

from toolmesh.types import LogFormat, LogLevel, TransportKind

# Seconds; applied when a server omits timeoutMs
DEFAULT_TIMEOUTS: dict[TransportKind, float] = {
    TransportKind.PIPE: 5.0,
    TransportKind.SOCKET: 5.0,
    TransportKind.HTTP: 3.0,
}


@dataclass(frozen=True)
class ServerConfig:
    """Definition of one tool server to connect to.

    Immutable once loaded; the connection registry only reads it.
    """

    name: str
    transport: TransportKind
    command: str | None = None  # For pipe: executable to spawn
    args: tuple[str, ...] = ()  # For pipe: command arguments
    env: tuple[tuple[str, str], ...] = ()  # For pipe: extra environment, sorted pairs
    cwd: str | None = None  # For pipe: working directory
    url: str | None = None  # For socket/http: server URL
    token: str | None = None  # For socket/http: static bearer token
    timeout: float = 5.0  # Connect and per-call timeout, seconds
    health_path: str = "/health"  # For http: liveness probe path
    rpc_path: str = "/mcp"  # For http: POST endpoint path
    handshake: bool = False  # Send MCP initialize after connecting

    @property
    def target(self) -> str:
        """Human-readable connection target for logs."""
        if self.transport == TransportKind.PIPE:
            return " ".join([self.command or "", *self.args]).strip()
        return self.url or ""

    def auth_headers(self) -> dict[str, str]:
        """Bearer header for socket/http transports, empty when no token."""
        if self.token and self.transport != TransportKind.PIPE:
            return {"Authorization": f"Bearer {self.token}"}
        return {}


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.COLORED
    components: dict[str, bool] = field(default_factory=dict)
    truncate_at: int = 200


@dataclass
class ClientConfig:
    """Root configuration object."""

    servers: list[ServerConfig] = field(default_factory=list)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def get_server(self, name: str) -> ServerConfig | None:
        """Get server config by name."""
        for server in self.servers:
            if server.name == name:
                return server
        return None

    @property
    def server_names(self) -> list[str]:
        return [server.name for server in self.servers]
