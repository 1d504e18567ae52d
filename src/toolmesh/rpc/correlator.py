"""Request correlator - matches responses to outstanding calls by id."""

import asyncio
import itertools
from typing import Any

from toolmesh.errors import ErrorFactory, ToolmeshError, create_error, get_error_factory
from toolmesh.logging.logger import CallLogger, MeshLogger
from toolmesh.transport import JSONRPCMessage, Transport

from .types import PendingCall

# Process-wide so ids stay unique across every server and correlator
_call_ids = itertools.count(1)


def next_call_id() -> int:
    """Return a fresh, monotonically increasing call id."""
    return next(_call_ids)


class RequestCorrelator:
    """Owns the in-flight call map.

    All mutation happens on the event loop. Each PendingCall is resolved
    at most once: whichever of response, timer or connection close gets
    there first removes the entry; later attempts find nothing and no-op.
    """

    def __init__(
        self,
        logger: MeshLogger | None = None,
        error_factory: ErrorFactory | None = None,
    ):
        """Initialize request correlator.

        Args:
            logger: Optional logger
            error_factory: Optional error factory for foreign exceptions
        """
        self._logger = logger
        self._error_factory = error_factory or get_error_factory()
        self._pending: dict[int, PendingCall] = {}
        # HTTP exchanges in flight, keyed by call id
        self._exchanges: dict[int, asyncio.Task[None]] = {}

    async def call(
        self,
        transport: Transport,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Issue one call over a transport and wait for its outcome.

        Args:
            transport: Connected transport of the owning server
            method: JSON-RPC method
            params: Optional params
            timeout: Seconds before CALL_TIMEOUT (defaults to the server's timeout)

        Returns:
            The response's result payload

        Raises:
            ToolmeshError: CALL_TIMEOUT, REMOTE_ERROR, CONNECTION_CLOSED,
                SEND_FAILED or PROTOCOL_ERROR
        """
        loop = asyncio.get_running_loop()
        server_name = transport.config.name
        timeout_seconds = timeout if timeout is not None else transport.config.timeout
        call_id = next_call_id()
        frame = JSONRPCMessage.request(method, params, id=call_id)

        now = loop.time()
        pending = PendingCall(
            call_id=call_id,
            server_name=server_name,
            method=method,
            future=loop.create_future(),
            deadline=now + timeout_seconds,
            timeout_seconds=timeout_seconds,
            started=now,
        )
        pending.timer = loop.call_later(timeout_seconds, self._expire, call_id)
        self._pending[call_id] = pending
        call_log = self._call_log(pending)
        if call_log:
            call_log.sent(params)

        try:
            if transport.message_oriented:
                try:
                    await transport.send(frame)
                except Exception as e:
                    self._fail(call_id, self._from_exception(e, server_name, call_id))
            else:
                task = asyncio.create_task(
                    self._exchange(transport, frame, call_id, timeout_seconds)
                )
                self._exchanges[call_id] = task
                task.add_done_callback(lambda _: self._exchanges.pop(call_id, None))

            return await pending.future
        finally:
            # No-op unless the caller was cancelled while waiting
            self._remove(call_id)

    def dispatch(self, server_name: str, frame: dict[str, Any]) -> bool:
        """Route one inbound frame from a message-oriented transport.

        Args:
            server_name: Server the frame arrived from
            frame: Decoded frame

        Returns:
            True if the frame resolved a pending call
        """
        if "method" in frame:
            if self._logger:
                self._logger.server(server_name).notification(str(frame["method"]))
            return False

        if not JSONRPCMessage.is_response(frame):
            self._protocol_error(server_name, "frame has neither result nor error")
            return False

        call_id = JSONRPCMessage.response_id(frame)
        pending = self._pending.get(call_id) if call_id is not None else None
        if pending is None or pending.server_name != server_name:
            self._orphan(server_name, frame.get("id"))
            return False

        self._complete(pending, frame)
        return True

    def reject_server(self, server_name: str, reason: str = "connection closed") -> int:
        """Fail every pending call owned by a server with CONNECTION_CLOSED.

        Args:
            server_name: Server whose connection closed
            reason: Detail attached to each error

        Returns:
            Number of calls rejected
        """
        call_ids = [cid for cid, p in self._pending.items() if p.server_name == server_name]
        for call_id in call_ids:
            pending = self._remove(call_id)
            if pending is None:
                continue
            task = self._exchanges.pop(call_id, None)
            if task and not task.done():
                task.cancel()
            error = create_error(
                "CONNECTION_CLOSED",
                server_name=server_name,
                call_id=call_id,
                detail=reason,
            )
            self._settle_error(pending, error)
        return len(call_ids)

    def pending_count(self, server_name: str | None = None) -> int:
        """Number of in-flight calls, optionally for one server."""
        if server_name is None:
            return len(self._pending)
        return sum(1 for p in self._pending.values() if p.server_name == server_name)

    def has_pending(self, call_id: int) -> bool:
        return call_id in self._pending

    def pending_ids(self) -> list[int]:
        return list(self._pending)

    async def _exchange(
        self, transport: Transport, frame: dict[str, Any], call_id: int, timeout: float
    ) -> None:
        """Run one request/response exchange and resolve its own call id."""
        server_name = transport.config.name
        try:
            reply = await transport.send(frame, timeout=timeout)
        except Exception as e:
            self._fail(call_id, self._from_exception(e, server_name, call_id))
            return

        if not reply or not JSONRPCMessage.is_response(reply):
            self._fail(
                call_id,
                create_error(
                    "PROTOCOL_ERROR",
                    server_name=server_name,
                    call_id=call_id,
                    detail="Response body has neither result nor error",
                ),
            )
            return

        pending = self._pending.get(call_id)
        if pending is None:
            self._orphan(server_name, call_id)
            return
        self._complete(pending, reply)

    def _complete(self, pending: PendingCall, frame: dict[str, Any]) -> None:
        """Resolve a pending call from its response frame."""
        self._remove(pending.call_id)

        if JSONRPCMessage.is_error(frame):
            remote = JSONRPCMessage.get_error(frame)
            error = create_error(
                "REMOTE_ERROR",
                server_name=pending.server_name,
                call_id=pending.call_id,
                remote_message=remote["message"],
                data=remote,
            )
            self._settle_error(pending, error)
            return

        if pending.future.done():
            return
        result = frame.get("result")
        pending.future.set_result(result)
        call_log = self._call_log(pending)
        if call_log:
            call_log.completed(self._duration_ms(pending), result)

    def _expire(self, call_id: int) -> None:
        """Timer callback: fail the call with CALL_TIMEOUT if still pending."""
        pending = self._remove(call_id)
        if pending is None or pending.future.done():
            return
        pending.future.set_exception(self._timeout_error(pending))
        call_log = self._call_log(pending)
        if call_log:
            call_log.timed_out(pending.timeout_seconds)

    def _fail(self, call_id: int, error: ToolmeshError) -> None:
        pending = self._remove(call_id)
        if pending is None:
            return
        if error.code == "CALL_TIMEOUT":
            error = self._timeout_error(pending)
        self._settle_error(pending, error)

    def _settle_error(self, pending: PendingCall, error: ToolmeshError) -> None:
        if pending.future.done():
            return
        pending.future.set_exception(error)
        call_log = self._call_log(pending)
        if call_log:
            call_log.failed(error, self._duration_ms(pending))

    def _remove(self, call_id: int) -> PendingCall | None:
        """Pop an entry and stop its timer. Returns None if already gone."""
        pending = self._pending.pop(call_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        return pending

    def _timeout_error(self, pending: PendingCall) -> ToolmeshError:
        return create_error(
            "CALL_TIMEOUT",
            server_name=pending.server_name,
            call_id=pending.call_id,
            method=pending.method,
            timeout_seconds=pending.timeout_seconds,
        )

    def _from_exception(self, error: Exception, server_name: str, call_id: int) -> ToolmeshError:
        return self._error_factory.from_exception(error, server_name=server_name, call_id=call_id)

    def _duration_ms(self, pending: PendingCall) -> int:
        return int((pending.future.get_loop().time() - pending.started) * 1000)

    def _call_log(self, pending: PendingCall) -> CallLogger | None:
        if self._logger is None:
            return None
        return self._logger.server(pending.server_name).call(pending.call_id, pending.method)

    def _orphan(self, server_name: str, call_id: Any) -> None:
        if self._logger:
            self._logger.server(server_name).orphan(call_id)

    def _protocol_error(self, server_name: str, detail: str) -> None:
        if self._logger:
            self._logger.server(server_name).protocol_error(detail)

