"""JSON-RPC frame helpers shared by every transport."""

import json
from typing import Any

from toolmesh._version import __version__

JSONRPC_VERSION = "2.0"
MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "toolmesh", "version": __version__}


class JSONRPCMessage:
    """JSON-RPC 2.0 frame builder and parser."""

    @staticmethod
    def request(method: str, params: dict[str, Any] | None = None, id: int = 1) -> dict[str, Any]:
        """Build a request frame.

        Args:
            method: Method name (e.g., "initialize", "tools/list", "tools/call")
            params: Optional parameters
            id: Call id

        Returns:
            Request frame
        """
        msg: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": id,
            "method": method,
        }
        if params is not None:
            msg["params"] = params
        return msg

    @staticmethod
    def notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Build a notification frame (no response expected)."""
        msg: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "method": method,
        }
        if params is not None:
            msg["params"] = params
        return msg

    @staticmethod
    def success_response(id: int, result: Any) -> dict[str, Any]:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "id": id,
            "result": result,
        }

    @staticmethod
    def error_response(id: int, code: int, message: str, data: Any = None) -> dict[str, Any]:
        error: dict[str, Any] = {
            "code": code,
            "message": message,
        }
        if data is not None:
            error["data"] = data

        return {
            "jsonrpc": JSONRPC_VERSION,
            "id": id,
            "error": error,
        }

    @staticmethod
    def encode(frame: dict[str, Any]) -> str:
        """Serialize a frame to a single line of JSON."""
        return json.dumps(frame, separators=(",", ":"), ensure_ascii=False)

    @staticmethod
    def parse(message: str | bytes) -> Any:
        """Parse one frame.

        Args:
            message: JSON string or bytes

        Returns:
            Decoded JSON value (not necessarily an object)

        Raises:
            json.JSONDecodeError: If message is not valid JSON
            UnicodeDecodeError: If bytes are not valid UTF-8
        """
        if isinstance(message, bytes):
            message = message.decode("utf-8")
        return json.loads(message)

    @staticmethod
    def is_response(message: dict[str, Any]) -> bool:
        """Check if frame is a response (has 'result' or 'error' and no 'method')."""
        return "method" not in message and ("result" in message or "error" in message)

    @staticmethod
    def is_error(message: dict[str, Any]) -> bool:
        return "error" in message

    @staticmethod
    def response_id(message: dict[str, Any]) -> int | None:
        """Extract the call id of a response frame.

        Integer-valued strings ("7") are coerced to int; anything else that
        is not an int yields None.
        """
        raw = message.get("id")
        if isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str):
            try:
                return int(raw.strip())
            except ValueError:
                return None
        return None

    @staticmethod
    def get_error(message: dict[str, Any]) -> dict[str, Any]:
        """Extract the error object, normalizing non-object payloads.

        Returns:
            Error dict with at least a "message" key
        """
        error = message["error"]
        if isinstance(error, dict):
            normalized = dict(error)
            normalized.setdefault("message", "Unknown remote error")
            return normalized
        return {"message": str(error)}
