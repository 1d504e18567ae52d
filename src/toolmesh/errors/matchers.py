"""Error matchers for converting transport exceptions to ToolmeshErrors."""

import asyncio
import json
from typing import Any

import httpx
from websockets.exceptions import ConnectionClosed

from .errors import ErrorMatcher, MatchResult


class TimeoutErrorMatcher(ErrorMatcher):
    """Matches timeout errors raised by asyncio or httpx."""

    def matches(self, error: Exception) -> bool:
        return isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException))

    def extract(self, error: Exception) -> MatchResult:
        return MatchResult(
            code="CALL_TIMEOUT",
            context={"timeout_seconds": "unknown", "detail": str(error) or None},
            retryable=True,
        )


class ConnectionClosedMatcher(ErrorMatcher):
    """Matches a peer going away underneath a send."""

    def matches(self, error: Exception) -> bool:
        return isinstance(error, (ConnectionClosed, BrokenPipeError, ConnectionResetError))

    def extract(self, error: Exception) -> MatchResult:
        return MatchResult(
            code="CONNECTION_CLOSED",
            context={"detail": str(error) or type(error).__name__},
        )


class DecodeErrorMatcher(ErrorMatcher):
    """Matches frames that are not valid JSON or not valid UTF-8."""

    def matches(self, error: Exception) -> bool:
        return isinstance(error, (json.JSONDecodeError, UnicodeDecodeError))

    def extract(self, error: Exception) -> MatchResult:
        return MatchResult(
            code="PROTOCOL_ERROR",
            context={"detail": str(error)},
            retryable=False,
        )


class TransportErrorMatcher(ErrorMatcher):
    """Matches lower-level I/O and HTTP failures while sending a frame."""

    def matches(self, error: Exception) -> bool:
        return isinstance(error, (OSError, httpx.HTTPError))

    def extract(self, error: Exception) -> MatchResult:
        context: dict[str, Any] = {"detail": str(error) or type(error).__name__}
        if isinstance(error, httpx.HTTPStatusError):
            context["detail"] = f"HTTP {error.response.status_code} from {error.request.url}"
        return MatchResult(code="SEND_FAILED", context=context)


class GenericErrorMatcher(ErrorMatcher):
    """Fallback matcher for any exception."""

    def matches(self, error: Exception) -> bool:
        """Always matches."""
        return True

    def extract(self, error: Exception) -> MatchResult:
        return MatchResult(
            code="INTERNAL_ERROR",
            context={
                "detail": f"{type(error).__name__}: {error}",
                "error_type": type(error).__name__,
            },
            retryable=False,
        )


class ErrorMatcherChain:
    """Ordered chain of matchers. First match wins."""

    def __init__(self) -> None:
        """Initialize matcher chain with built-in matchers."""
        self.matchers: list[ErrorMatcher] = []
        self._load_builtin_matchers()

    def match(self, error: Exception) -> MatchResult:
        """Find first matching matcher and extract result.

        Args:
            error: Exception to match

        Returns:
            MatchResult from first matching matcher
        """
        for matcher in self.matchers:
            if matcher.matches(error):
                return matcher.extract(error)

        # Unreachable while GenericErrorMatcher is last
        return MatchResult(code="INTERNAL_ERROR", context={"detail": str(error)})

    def _load_builtin_matchers(self) -> None:
        """Load built-in matchers in priority order."""
        # TimeoutError and the connection errors are OSError subclasses,
        # so they must come before TransportErrorMatcher.
        self.matchers = [
            TimeoutErrorMatcher(),
            ConnectionClosedMatcher(),
            DecodeErrorMatcher(),
            TransportErrorMatcher(),
            GenericErrorMatcher(),  # Fallback - must be last
        ]
