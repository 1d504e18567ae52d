"""Error registry for creating errors from templates."""

from typing import Any

from .errors import ErrorCategory, ErrorTemplate, ToolmeshError


class ErrorRegistry:
    """Registry of error templates. Creates errors from templates + context."""

    def __init__(self) -> None:
        """Initialize error registry with built-in templates."""
        self._templates: dict[str, ErrorTemplate] = {}
        self._load_builtin_templates()

    def get_template(self, code: str) -> ErrorTemplate | None:
        """Get template by error code.

        Args:
            code: Error code to look up

        Returns:
            ErrorTemplate if found, None otherwise
        """
        return self._templates.get(code)

    def register(self, template: ErrorTemplate) -> None:
        """Register (or replace) a template."""
        self._templates[template.code] = template

    def list_codes(self) -> list[str]:
        """List all registered error codes."""
        return list(self._templates.keys())

    def create(
        self,
        code: str,
        context: dict[str, Any] | None = None,
    ) -> ToolmeshError:
        """Create error instance from template + context.

        Args:
            code: Error code
            context: Context variables for template interpolation

        Returns:
            ToolmeshError instance

        Raises:
            ValueError: If error code not found
        """
        template = self.get_template(code)
        if not template:
            msg = f"Unknown error code: {code}"
            raise ValueError(msg)

        context = context or {}

        message = self._interpolate(template.message_template, context)
        # An explicit detail in the context wins over the template's generic one
        detail = context.get("detail") or self._interpolate(template.detail_template, context)
        suggestion = self._interpolate(template.suggestion_template, context)

        if message is None:
            message = f"Error {code}"

        return ToolmeshError(
            code=template.code,
            category=template.category,
            message=message,
            detail=detail,
            suggestion=suggestion,
            retryable=template.default_retryable,
            server_name=context.get("server_name"),
            tool_name=context.get("tool_name"),
            call_id=context.get("call_id"),
            data=context.get("data"),
        )

    def _interpolate(
        self,
        template: str | None,
        context: dict[str, Any],
    ) -> str | None:
        """Safe string interpolation.

        Args:
            template: Template string with {var} placeholders
            context: Context variables

        Returns:
            Interpolated string or None if template is None
        """
        if template is None:
            return None

        try:
            return template.format(**context)
        except (KeyError, IndexError):
            # Missing context variable - return template as-is
            return template

    def _load_builtin_templates(self) -> None:
        """Load hardcoded built-in templates."""
        # CONFIG Errors
        self._templates["CONFIG_INVALID"] = ErrorTemplate(
            code="CONFIG_INVALID",
            category=ErrorCategory.CONFIG,
            message_template="Invalid server configuration",
            detail_template="The server-descriptor document is invalid",
            suggestion_template="Check the descriptor file and fix the listed servers",
            default_retryable=False,
        )

        # TRANSPORT Errors
        self._templates["CONNECT_FAILED"] = ErrorTemplate(
            code="CONNECT_FAILED",
            category=ErrorCategory.TRANSPORT,
            message_template="Failed to connect to server '{server_name}'",
            detail_template="Could not establish a connection to the tool server",
            suggestion_template="Check that the server command exists or the URL is reachable",
            default_retryable=True,
        )

        self._templates["CONNECTION_CLOSED"] = ErrorTemplate(
            code="CONNECTION_CLOSED",
            category=ErrorCategory.TRANSPORT,
            message_template="Connection to server '{server_name}' closed",
            detail_template="The connection closed before the call completed",
            suggestion_template="Reconnect to the server and retry the call",
            default_retryable=True,
        )

        self._templates["SEND_FAILED"] = ErrorTemplate(
            code="SEND_FAILED",
            category=ErrorCategory.TRANSPORT,
            message_template="Failed to send request to server '{server_name}'",
            detail_template="The transport could not deliver the request frame",
            suggestion_template="Check the server status and retry",
            default_retryable=True,
        )

        # CALL Errors
        self._templates["CALL_TIMEOUT"] = ErrorTemplate(
            code="CALL_TIMEOUT",
            category=ErrorCategory.CALL,
            message_template="Call '{method}' to server '{server_name}' timed out after {timeout_seconds}s",
            detail_template="No response with a matching id arrived before the deadline",
            suggestion_template="Increase timeoutMs for this server or check if it is stuck",
            default_retryable=True,
        )

        self._templates["REMOTE_ERROR"] = ErrorTemplate(
            code="REMOTE_ERROR",
            category=ErrorCategory.CALL,
            message_template="Server '{server_name}' returned an error",
            detail_template="{remote_message}",
            suggestion_template="Check the request parameters and the server logs",
            default_retryable=False,
        )

        # PROTOCOL Errors
        self._templates["PROTOCOL_ERROR"] = ErrorTemplate(
            code="PROTOCOL_ERROR",
            category=ErrorCategory.PROTOCOL,
            message_template="Malformed frame from server '{server_name}'",
            detail_template="The frame is not a JSON object",
            suggestion_template="Check that the server speaks newline-delimited JSON-RPC",
            default_retryable=False,
        )

        self._templates["ORPHAN_RESPONSE"] = ErrorTemplate(
            code="ORPHAN_RESPONSE",
            category=ErrorCategory.PROTOCOL,
            message_template="Response from server '{server_name}' matches no pending call",
            detail_template="Response id {call_id} is unknown or already completed",
            default_retryable=False,
        )

        # REGISTRY Errors
        self._templates["UNKNOWN_TOOL"] = ErrorTemplate(
            code="UNKNOWN_TOOL",
            category=ErrorCategory.REGISTRY,
            message_template="Tool '{tool_name}' is not registered",
            detail_template="No connected server advertised this tool",
            suggestion_template="Run discovery again or check the tool name",
            default_retryable=False,
        )

        self._templates["SERVER_UNAVAILABLE"] = ErrorTemplate(
            code="SERVER_UNAVAILABLE",
            category=ErrorCategory.REGISTRY,
            message_template="Server '{server_name}' is unavailable",
            detail_template="The server is not in the connected state",
            suggestion_template="Reconnect to the server before calling it",
            default_retryable=True,
        )

        # SYSTEM Errors
        self._templates["INTERNAL_ERROR"] = ErrorTemplate(
            code="INTERNAL_ERROR",
            category=ErrorCategory.SYSTEM,
            message_template="Internal toolmesh error",
            detail_template="An unexpected error occurred",
            suggestion_template="Check the logs and report this issue",
            default_retryable=False,
        )
