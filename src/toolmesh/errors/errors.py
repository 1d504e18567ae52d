"""toolmesh error types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error source categories."""

    CONFIG = "CONFIG"
    TRANSPORT = "TRANSPORT"
    CALL = "CALL"
    PROTOCOL = "PROTOCOL"
    REGISTRY = "REGISTRY"
    SYSTEM = "SYSTEM"


@dataclass
class ToolmeshError(Exception):
    """Every failure a collaborator sees: a registered code plus the call it came from."""

    code: str  # e.g., "CALL_TIMEOUT"
    category: ErrorCategory
    message: str
    detail: str | None = None
    suggestion: str | None = None
    retryable: bool = False
    server_name: str | None = None
    tool_name: str | None = None
    call_id: int | None = None
    data: Any = None  # Remote error payload, when the server sent one

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message

    def with_context(
        self,
        server_name: str | None = None,
        tool_name: str | None = None,
        call_id: int | None = None,
    ) -> "ToolmeshError":
        """Copy with the given server, tool or call attached."""
        return replace(
            self,
            server_name=server_name or self.server_name,
            tool_name=tool_name or self.tool_name,
            call_id=call_id if call_id is not None else self.call_id,
        )


@dataclass
class ErrorTemplate:
    """Template for creating errors."""

    code: str
    category: ErrorCategory
    message_template: str  # "Tool '{tool_name}' is not registered"
    detail_template: str | None = None
    suggestion_template: str | None = None
    default_retryable: bool = False


@dataclass
class MatchResult:
    """Result of matching an exception."""

    code: str
    context: dict[str, Any]
    retryable: bool | None = None  # None = use template default


class ErrorMatcher(ABC):
    """Base class for exception matchers."""

    @abstractmethod
    def matches(self, error: Exception) -> bool:
        """Check if this matcher handles the error."""

    @abstractmethod
    def extract(self, error: Exception) -> MatchResult:
        """Extract toolmesh error info from the exception."""
