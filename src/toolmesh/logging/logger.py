"""toolmesh logger - colored or JSON component logging for server fleets."""

import json
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TextIO

from toolmesh.logging.colors import (
    COMPONENT_COLORS,
    CYAN,
    LIGHT_BLUE,
    RED,
    RESET,
    YELLOW,
)
from toolmesh.types import LogFormat, LogLevel

DEFAULT_COMPONENTS = ("config", "transport", "connection", "rpc", "registry", "client")


@dataclass
class LogConfig:
    """Logger configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.COLORED
    show_context: bool = True
    truncate_at: int = 200
    components: dict[str, bool] = field(default_factory=dict)
    output: TextIO = field(default=sys.stdout)

    def __post_init__(self) -> None:
        """Enable every component not explicitly configured."""
        for component in DEFAULT_COMPONENTS:
            self.components.setdefault(component, True)


class MeshLogger:
    """Main logger facade. Creates server- and call-scoped loggers."""

    def __init__(self, config: LogConfig | None = None):
        """Initialize logger with configuration.

        Args:
            config: Logger configuration (defaults to LogConfig())
        """
        self.config = config or LogConfig()
        self._level_order = {
            LogLevel.DEBUG: 0,
            LogLevel.INFO: 1,
            LogLevel.WARN: 2,
            LogLevel.ERROR: 3,
        }

    def server(self, server_name: str) -> "ServerLogger":
        """Get a logger scoped to one tool server.

        Args:
            server_name: Server name from the descriptor document

        Returns:
            ServerLogger instance
        """
        return ServerLogger(self, server_name)

    def configure(self, config: LogConfig) -> None:
        """Update configuration (for config reload)."""
        self.config = config

    def debug(self, component: str, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, component, message, context or None)

    def info(self, component: str, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, component, message, context or None)

    def warn(self, component: str, message: str, **context: Any) -> None:
        self._log(LogLevel.WARN, component, message, context or None)

    def error(self, component: str, message: str, **context: Any) -> None:
        self._log(LogLevel.ERROR, component, message, context or None)

    def _should_log(self, level: LogLevel) -> bool:
        """Check if a log level passes the configured threshold."""
        return self._level_order.get(level, 0) >= self._level_order.get(self.config.level, 1)

    def _log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Internal logging method.

        Args:
            level: Log level
            component: Component name; a dotted suffix ("connection.fs")
                is filtered by its first segment
            message: Log message
            context: Additional context data
        """
        if not self._should_log(level):
            return

        if not self.config.components.get(component.split(".", 1)[0], True):
            return

        if self.config.format == LogFormat.JSON:
            self._log_json(level, component, message, context)
        else:
            self._log_colored(level, component, message, context)

    def _log_json(
        self,
        level: LogLevel,
        component: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": level.value,
            "component": component,
            "message": message,
        }
        if context:
            log_entry.update(context)

        print(json.dumps(log_entry, default=str), file=self.config.output)

    def _log_colored(
        self,
        level: LogLevel,
        component: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        level_colors = {
            LogLevel.DEBUG: LIGHT_BLUE,
            LogLevel.INFO: CYAN,
            LogLevel.WARN: YELLOW,
            LogLevel.ERROR: RED,
        }

        color = level_colors.get(level, RESET)
        component_color = COMPONENT_COLORS.get(component.split(".", 1)[0], RESET)

        # Format: [COMPONENT] message
        output = f"{component_color}[{component.upper()}]{RESET} {color}{message}{RESET}"

        if context and self.config.show_context:
            context_str = str(context)
            if len(context_str) > self.config.truncate_at:
                context_str = context_str[: self.config.truncate_at] + "..."
            output += f" {LIGHT_BLUE}{context_str}{RESET}"

        print(output, file=self.config.output)

    def truncate(self, value: Any) -> str:
        """Render a payload for logging, cut at the configured length."""
        text = value if isinstance(value, str) else json.dumps(value, default=str)
        if len(text) > self.config.truncate_at:
            return text[: self.config.truncate_at] + "..."
        return text


class ServerLogger:
    """Logger for connection lifecycle events of one server."""

    def __init__(self, parent: MeshLogger, server_name: str):
        """Initialize server logger.

        Args:
            parent: Parent MeshLogger instance
            server_name: Server name
        """
        self.parent = parent
        self.server_name = server_name

    def _emit(self, level: LogLevel, component: str, message: str, **context: Any) -> None:
        context["server"] = self.server_name
        self.parent._log(level, component, message, context)

    def connecting(self, transport: str, target: str) -> None:
        """Log a connect attempt."""
        self._emit(
            LogLevel.INFO,
            "connection",
            f"Connecting to '{self.server_name}' over {transport} ({target})",
            event="connecting",
            transport=transport,
        )

    def connected(self, duration_ms: int) -> None:
        """Log a successful connect."""
        self._emit(
            LogLevel.INFO,
            "connection",
            f"Connected to '{self.server_name}' ({duration_ms}ms) ✓",
            event="connected",
            duration_ms=duration_ms,
        )

    def connect_failed(self, error: Exception) -> None:
        """Log a failed connect."""
        self._emit(
            LogLevel.ERROR,
            "connection",
            f"Failed to connect to '{self.server_name}': {error}",
            event="connect_failed",
            error=str(error),
            error_type=type(error).__name__,
        )

    def disconnected(self, reason: str, pending_rejected: int = 0) -> None:
        """Log a transition to Disconnected."""
        self._emit(
            LogLevel.INFO if reason == "closed by client" else LogLevel.WARN,
            "connection",
            f"Disconnected from '{self.server_name}': {reason}",
            event="disconnected",
            reason=reason,
            pending_rejected=pending_rejected,
        )

    def stderr(self, line: str) -> None:
        """Log one line of server stderr."""
        self._emit(LogLevel.INFO, "transport", f"{self.server_name} stderr: {line}", event="stderr")

    def protocol_error(self, detail: str) -> None:
        """Log a dropped malformed frame."""
        self._emit(
            LogLevel.WARN,
            "rpc",
            f"Dropped malformed frame from '{self.server_name}': {detail}",
            event="protocol_error",
        )

    def orphan(self, call_id: Any) -> None:
        """Log a response with no pending call."""
        self._emit(
            LogLevel.WARN,
            "rpc",
            f"Discarded orphan response id={call_id} from '{self.server_name}'",
            event="orphan_response",
            call_id=call_id,
        )

    def notification(self, method: str) -> None:
        """Log a server-initiated message that is not a response."""
        self._emit(
            LogLevel.DEBUG,
            "rpc",
            f"Ignored server message '{method}' from '{self.server_name}'",
            event="server_message",
            method=method,
        )

    def call(self, call_id: int, method: str) -> "CallLogger":
        """Get a logger scoped to one call on this server."""
        return CallLogger(self, call_id, method)


class CallLogger:
    """Logger for a single correlated call."""

    def __init__(self, parent: ServerLogger, call_id: int, method: str):
        self.parent = parent
        self.call_id = call_id
        self.method = method

    @property
    def _root(self) -> MeshLogger:
        return self.parent.parent

    def _context(self, event: str, **extra: Any) -> dict[str, Any]:
        context = {
            "server": self.parent.server_name,
            "call_id": self.call_id,
            "method": self.method,
            "event": event,
        }
        context.update(extra)
        return context

    def sent(self, params: dict[str, Any] | None = None) -> None:
        context = self._context("call_sent")
        if params:
            context["params"] = self._root.truncate(params)
        self._root._log(
            LogLevel.DEBUG,
            "rpc",
            f"-> {self.parent.server_name} {self.method} (id={self.call_id})",
            context,
        )

    def completed(self, duration_ms: int, result: Any = None) -> None:
        context = self._context("call_completed", duration_ms=duration_ms)
        if result is not None:
            context["result"] = self._root.truncate(result)
        self._root._log(
            LogLevel.DEBUG,
            "rpc",
            f"<- {self.parent.server_name} {self.method} (id={self.call_id}, {duration_ms}ms)",
            context,
        )

    def failed(self, error: Exception, duration_ms: int) -> None:
        self._root._log(
            LogLevel.WARN,
            "rpc",
            f"{self.parent.server_name} {self.method} (id={self.call_id}) failed: {error}",
            self._context("call_failed", duration_ms=duration_ms, error=str(error)),
        )

    def timed_out(self, timeout_seconds: float) -> None:
        self._root._log(
            LogLevel.WARN,
            "rpc",
            f"{self.parent.server_name} {self.method} (id={self.call_id}) "
            f"timed out after {timeout_seconds}s",
            self._context("call_timeout", timeout_seconds=timeout_seconds),
        )
