"""Turning failures inside a call into ToolmeshErrors."""

from typing import Any

from .errors import ToolmeshError
from .matchers import ErrorMatcherChain
from .registry import ErrorRegistry


class ErrorFactory:
    """Pairs the template registry with the exception matcher chain."""

    def __init__(
        self,
        registry: ErrorRegistry | None = None,
        matcher_chain: ErrorMatcherChain | None = None,
    ):
        self.registry = registry or ErrorRegistry()
        self.matcher_chain = matcher_chain or ErrorMatcherChain()

    def from_exception(
        self,
        error: Exception,
        server_name: str | None = None,
        call_id: int | None = None,
    ) -> ToolmeshError:
        """Classify an exception raised while talking to a server.

        A ToolmeshError keeps its code and only gains the server and call
        it belongs to.
        """
        if isinstance(error, ToolmeshError):
            return error.with_context(server_name=server_name, call_id=call_id)

        match = self.matcher_chain.match(error)
        context = dict(match.context)
        if server_name:
            context["server_name"] = server_name
        if call_id is not None:
            context["call_id"] = call_id

        mesh_error = self.registry.create(match.code, context)
        if match.retryable is not None:
            mesh_error.retryable = match.retryable
        return mesh_error


# Shared by create_error()
_default_factory: ErrorFactory | None = None


def get_error_factory() -> ErrorFactory:
    global _default_factory  # noqa: PLW0603
    if _default_factory is None:
        _default_factory = ErrorFactory()
    return _default_factory


def create_error(code: str, **context: Any) -> ToolmeshError:
    """Build a registered error, e.g. create_error("UNKNOWN_TOOL", tool_name="x")."""
    return get_error_factory().registry.create(code, context)
