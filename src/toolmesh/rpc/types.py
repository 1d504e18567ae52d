"""Call and connection bookkeeping types."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from toolmesh.errors import ToolmeshError
from toolmesh.types import ConnectionStatus


@dataclass
class PendingCall:
    """One outstanding request awaiting its response.

    Lives in the correlator's map from issue until exactly one of
    response, timeout, caller cancellation or connection close.
    """

    call_id: int
    server_name: str
    method: str
    future: asyncio.Future[Any]
    deadline: float  # loop.time() at which the call expires
    timeout_seconds: float
    started: float  # loop.time() at issue, for duration logging
    timer: asyncio.TimerHandle | None = None


@dataclass
class CallOutcome:
    """Result/error pair returned to collaborators.

    Exactly one of result or error is meaningful: error is None on success.
    """

    result: Any = None
    error: ToolmeshError | None = None
    server_name: str | None = None
    call_id: int | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the result or raise the error."""
        if self.error is not None:
            raise self.error
        return self.result


@dataclass
class ServerStatus:
    """Status of one server connection, for monitoring and diagnostics."""

    name: str
    status: ConnectionStatus
    transport: str
    tools: list[str] = field(default_factory=list)
    pending_calls: int = 0
    last_connected: str | None = None
    last_error: str | None = None
