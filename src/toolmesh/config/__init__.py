"""toolmesh configuration - server descriptors and loading."""

from .loader import ConfigLoader, resolve_env_vars
from .models import DEFAULT_TIMEOUTS, ClientConfig, LoggingConfig, ServerConfig

__all__ = [
    # Loader
    "ConfigLoader",
    "resolve_env_vars",
    # Models
    "ClientConfig",
    "LoggingConfig",
    "ServerConfig",
    "DEFAULT_TIMEOUTS",
]
