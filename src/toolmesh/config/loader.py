"""toolmesh server-descriptor loader."""

import json
import os
import re
import shlex
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from toolmesh.errors import ToolmeshError, create_error
from toolmesh.types import LogFormat, LogLevel, TransportKind, ValidationIssue, ValidationResult

from .models import DEFAULT_TIMEOUTS, ClientConfig, LoggingConfig, ServerConfig

TRANSPORT_ALIASES: dict[str, TransportKind] = {
    "pipe": TransportKind.PIPE,
    "stdio": TransportKind.PIPE,
    "socket": TransportKind.SOCKET,
    "websocket": TransportKind.SOCKET,
    "ws": TransportKind.SOCKET,
    "http": TransportKind.HTTP,
    "https": TransportKind.HTTP,
}

URL_SCHEMES: dict[TransportKind, tuple[str, ...]] = {
    TransportKind.SOCKET: ("ws://", "wss://"),
    TransportKind.HTTP: ("http://", "https://"),
}

SERVER_FIELDS = {
    "type",
    "command",
    "args",
    "env",
    "cwd",
    "url",
    "token",
    "apiKey",
    "timeoutMs",
    "timeout",
    "healthPath",
    "rpcPath",
    "handshake",
}

# Keys allowed next to "servers" in the wrapped document form
TOP_LEVEL_KEYS = {"servers", "logging", "inputs"}

# Never server names, even in the flat document form
RESERVED_KEYS = {"logging", "inputs"}

DEFAULT_SEARCH_PATHS = (
    Path("mcp.json"),
    Path("toolmesh.yaml"),
    Path.home() / ".toolmesh" / "mcp.json",
)


def resolve_env_vars(value: str) -> str:
    """Resolve environment variable references in string.

    Supports:
    - ${VAR} - Required, error if not set
    - ${VAR:-default} - With default value
    - ${VAR:?error message} - Required with custom error

    Args:
        value: String with potential env var references

    Returns:
        String with env vars resolved

    Raises:
        ToolmeshError(CONFIG_INVALID): If a required var is not set
    """
    pattern = r"\$\{([^}:]+)(?::([?-])([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        operator = match.group(2)  # '-' or '?' or None
        operand = match.group(3)  # default value or error message

        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value

        if operator == "-":
            return operand or ""
        if operator == "?":
            error_msg = operand or f"Required environment variable {var_name} not set"
            raise create_error("CONFIG_INVALID", detail=error_msg)
        raise create_error(
            "CONFIG_INVALID",
            detail=f"Required environment variable {var_name} not set",
        )

    return re.sub(pattern, replacer, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve env vars in data structure."""
    if isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    else:
        return data


class ConfigLoader:
    """Load and validate server-descriptor documents."""

    def __init__(self, logger: Any = None):
        """Initialize config loader.

        Args:
            logger: Optional MeshLogger instance
        """
        self._config: ClientConfig | None = None
        self._config_path: Path | None = None
        self._strict = True
        self._logger = logger
        self._change_callbacks: list[Callable[[ClientConfig], None]] = []

    def set_logger(self, logger: Any) -> None:
        """Attach a logger after construction."""
        self._logger = logger

    @property
    def config_path(self) -> Path | None:
        """Path of the last loaded document, if any."""
        return self._config_path

    def load(self, path: str | Path | None = None, strict: bool = True) -> ClientConfig:
        """Load configuration from a descriptor file.

        Resolution order if path not specified:
        1. TOOLMESH_CONFIG environment variable
        2. ./mcp.json
        3. ./toolmesh.yaml
        4. ~/.toolmesh/mcp.json

        A missing or unreadable file yields an empty server list.

        Args:
            path: Optional path to the descriptor
            strict: If True, any invalid server aborts loading; if False,
                invalid servers are skipped and logged

        Returns:
            Loaded ClientConfig

        Raises:
            ToolmeshError(CONFIG_INVALID): If the document is malformed
        """
        config_path = Path(path) if path is not None else self._resolve_config_path()
        self._config_path = config_path
        self._strict = strict

        if config_path is None or not config_path.is_file():
            self._log("INFO", f"No server descriptor found at {config_path}, no tools available")
            return self._remember(ClientConfig())

        try:
            text = config_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            self._log("WARN", f"Server descriptor {config_path} is unreadable: {e}")
            return self._remember(ClientConfig())

        data = self._parse_document(text, config_path)
        return self.load_from_dict(data, config_path, strict=strict)

    def load_from_dict(
        self,
        data: dict[str, Any],
        config_path: Path | None = None,
        strict: bool = True,
    ) -> ClientConfig:
        """Load configuration from an already-parsed document.

        Args:
            data: Descriptor document
            config_path: Optional path to the source file (for tracking)
            strict: See load()

        Returns:
            Loaded ClientConfig

        Raises:
            ToolmeshError(CONFIG_INVALID): If validation fails in strict mode
        """
        servers, logging_config, validation = self._build(data)

        for warning in validation.warnings:
            self._log("WARN", f"{warning.path}: {warning.message}")

        if not validation.valid:
            error_messages = [f"- {issue.message}" for issue in validation.errors]
            if strict:
                named = {issue.server_name for issue in validation.errors}
                raise create_error(
                    "CONFIG_INVALID",
                    server_name=named.pop() if len(named) == 1 else None,
                    detail="Server descriptor validation failed:\n" + "\n".join(error_messages),
                )
            for issue in validation.errors:
                self._log("ERROR", f"Skipping server: {issue.message}")

        config = ClientConfig(servers=servers, logging=logging_config)
        if config_path is not None:
            self._config_path = config_path

        self._log("INFO", f"Loaded {len(servers)} server(s): {', '.join(config.server_names)}")
        return self._remember(config)

    def validate(self, data: dict[str, Any]) -> ValidationResult:
        """Validate a descriptor document without loading it.

        Args:
            data: Descriptor document

        Returns:
            ValidationResult with errors and warnings
        """
        return self._build(data)[2]

    def get(self) -> ClientConfig:
        """Get current configuration.

        Raises:
            ToolmeshError(CONFIG_INVALID): If configuration not loaded
        """
        if self._config is None:
            raise create_error("CONFIG_INVALID", detail="Configuration not loaded")
        return self._config

    def reload(self) -> ClientConfig:
        """Reload configuration from the last loaded path.

        Notifies registered callbacks with the new config.

        Raises:
            ToolmeshError(CONFIG_INVALID): If nothing was loaded from a file before
        """
        if self._config_path is None:
            raise create_error("CONFIG_INVALID", detail="No config path set, cannot reload")

        new_config = self.load(self._config_path, strict=self._strict)

        for callback in self._change_callbacks:
            try:
                callback(new_config)
            except Exception as e:
                self._log("ERROR", f"Config change callback failed: {e}")

        return new_config

    def on_change(self, callback: Callable[[ClientConfig], None]) -> None:
        """Register callback for config reloads."""
        self._change_callbacks.append(callback)

    def _remember(self, config: ClientConfig) -> ClientConfig:
        self._config = config
        return config

    def _log(self, level: str, message: str) -> None:
        if self._logger:
            self._logger._log(LogLevel(level), "config", message)

    def _resolve_config_path(self) -> Path | None:
        """Resolve descriptor path using resolution order."""
        env_path = os.environ.get("TOOLMESH_CONFIG")
        if env_path:
            return Path(env_path)

        for candidate in DEFAULT_SEARCH_PATHS:
            if candidate.is_file():
                return candidate

        return None

    def _parse_document(self, text: str, path: Path) -> dict[str, Any]:
        """Parse JSON (.json) or YAML (anything else) into a mapping."""
        try:
            if path.suffix.lower() == ".json":
                data = json.loads(text) if text.strip() else {}
            else:
                data = yaml.safe_load(text) or {}
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise create_error(
                "CONFIG_INVALID",
                detail=f"Invalid document syntax in {path}: {e}",
            ) from e

        if not isinstance(data, dict):
            raise create_error(
                "CONFIG_INVALID",
                detail=f"Server descriptor {path} must be a mapping of server name to settings",
            )
        return data

    def _build(
        self, data: dict[str, Any]
    ) -> tuple[list[ServerConfig], LoggingConfig, ValidationResult]:
        """Turn a document into configs, collecting every issue on the way."""
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if isinstance(data.get("servers"), dict):
            raw_servers: dict[str, Any] = data["servers"]
            prefix = "servers."
            for key in data:
                if key not in TOP_LEVEL_KEYS:
                    warnings.append(
                        ValidationIssue(
                            path=key,
                            message=f"Unknown configuration key: {key}",
                            severity="warning",
                        )
                    )
        else:
            raw_servers = {k: v for k, v in data.items() if k not in RESERVED_KEYS}
            prefix = ""
        logging_config = self._build_logging(data.get("logging"), errors)

        servers: list[ServerConfig] = []
        for name, raw in raw_servers.items():
            server = self._build_server(str(name), raw, f"{prefix}{name}", errors, warnings)
            if server is not None:
                servers.append(server)

        return servers, logging_config, ValidationResult(True, errors, warnings)

    def _build_server(
        self,
        name: str,
        raw: Any,
        path: str,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> ServerConfig | None:
        """Build one ServerConfig, or record why it cannot be built."""
        error_count = len(errors)

        def fail(field_path: str, message: str) -> None:
            errors.append(ValidationIssue(path=field_path, message=message, server_name=name))

        if not isinstance(raw, dict):
            fail(path, f"Server '{name}' must be a mapping")
            return None

        try:
            raw = _resolve_env_vars_recursive(raw)
        except ToolmeshError as e:
            fail(path, f"Server '{name}': {e.detail or e.message}")
            return None

        for key in raw:
            if key not in SERVER_FIELDS:
                warnings.append(
                    ValidationIssue(
                        path=f"{path}.{key}",
                        message=f"Server '{name}': unknown field '{key}'",
                        severity="warning",
                        server_name=name,
                    )
                )

        raw_type = str(raw.get("type") or "pipe").lower()
        transport = TRANSPORT_ALIASES.get(raw_type)
        if transport is None:
            fail(f"{path}.type", f"Server '{name}': unknown transport type '{raw_type}'")
            return None

        command = raw.get("command")
        args = raw.get("args") or []
        url = raw.get("url")

        if not isinstance(args, list) or not all(isinstance(a, str | int | float) for a in args):
            fail(f"{path}.args", f"Server '{name}': args must be a list of strings")
            args = []
        args = [str(a) for a in args]

        if transport == TransportKind.PIPE:
            if not command or not isinstance(command, str):
                fail(f"{path}.command", f"Pipe server '{name}' missing command")
            elif not args and any(ch.isspace() for ch in command.strip()):
                # "uvx some-server --flag" given as a single string
                try:
                    command, *args = shlex.split(command)
                except ValueError as e:
                    fail(f"{path}.command", f"Pipe server '{name}' has an invalid command: {e}")
        else:
            schemes = URL_SCHEMES[transport]
            if not url or not isinstance(url, str):
                fail(f"{path}.url", f"{transport.value.upper()} server '{name}' missing URL")
            elif not url.startswith(schemes):
                fail(
                    f"{path}.url",
                    f"{transport.value.upper()} server '{name}' URL must start with "
                    + " or ".join(schemes),
                )

        timeout = DEFAULT_TIMEOUTS[transport]
        raw_timeout = raw.get("timeoutMs", raw.get("timeout"))
        if raw_timeout is not None:
            if isinstance(raw_timeout, bool) or not isinstance(raw_timeout, int | float):
                fail(f"{path}.timeoutMs", f"Server '{name}': timeoutMs must be a number")
            elif raw_timeout <= 0:
                fail(f"{path}.timeoutMs", f"Server '{name}': timeoutMs must be positive")
            else:
                timeout = raw_timeout / 1000

        env = raw.get("env") or {}
        if not isinstance(env, dict):
            fail(f"{path}.env", f"Server '{name}': env must be a mapping")
            env = {}

        cwd = raw.get("cwd")
        if cwd is not None and not isinstance(cwd, str):
            fail(f"{path}.cwd", f"Server '{name}': cwd must be a string")

        paths: dict[str, Any] = {}
        for key, default in (("healthPath", "/health"), ("rpcPath", "/mcp")):
            value = raw.get(key, default)
            if not isinstance(value, str) or not value.startswith("/"):
                fail(f"{path}.{key}", f"Server '{name}': {key} must start with '/'")
            paths[key] = value

        handshake = raw.get("handshake", False)
        if not isinstance(handshake, bool):
            fail(f"{path}.handshake", f"Server '{name}': handshake must be true or false")

        if len(errors) > error_count:
            return None

        return ServerConfig(
            name=name,
            transport=transport,
            command=command if transport == TransportKind.PIPE else None,
            args=tuple(args) if transport == TransportKind.PIPE else (),
            env=tuple(sorted((str(k), str(v)) for k, v in env.items())),
            cwd=cwd,
            url=url.rstrip("/") if transport != TransportKind.PIPE else None,
            token=raw.get("token") or raw.get("apiKey") or None,
            timeout=timeout,
            health_path=paths["healthPath"],
            rpc_path=paths["rpcPath"],
            handshake=handshake,
        )

    def _build_logging(self, raw: Any, errors: list[ValidationIssue]) -> LoggingConfig:
        if raw is None:
            return LoggingConfig()
        if not isinstance(raw, dict):
            errors.append(ValidationIssue(path="logging", message="logging must be a mapping"))
            return LoggingConfig()

        try:
            raw = _resolve_env_vars_recursive(raw)
        except ToolmeshError as e:
            errors.append(
                ValidationIssue(path="logging", message=f"logging: {e.detail or e.message}")
            )
            return LoggingConfig()

        config = LoggingConfig()
        try:
            if "level" in raw:
                level = str(raw["level"]).upper()
                config.level = LogLevel("WARN" if level == "WARNING" else level)
            if "format" in raw:
                config.format = LogFormat(str(raw["format"]).lower())
        except ValueError as e:
            errors.append(ValidationIssue(path="logging", message=f"Invalid logging setting: {e}"))
        if isinstance(raw.get("components"), dict):
            config.components = {str(k): bool(v) for k, v in raw["components"].items()}
        if isinstance(raw.get("truncate_at"), int):
            config.truncate_at = raw["truncate_at"]
        return config
