"""Tests for RequestCorrelator against an in-memory transport."""

import asyncio
from io import StringIO

import httpx
import pytest

from conftest import FakeTransport, log_entries
from toolmesh.errors import ToolmeshError
from toolmesh.rpc import RequestCorrelator, next_call_id
from toolmesh.transport import JSONRPCMessage


@pytest.fixture
def correlator(logger) -> RequestCorrelator:
    return RequestCorrelator(logger)


class TestMessageOrientedCalls:
    """Calls whose replies arrive through dispatch()."""

    @pytest.mark.asyncio
    async def test_response_resolves_call(self, correlator):
        transport = FakeTransport("A")
        task = asyncio.create_task(correlator.call(transport, "tools/list", {}))

        (frame,) = await transport.wait_sent()
        assert frame["method"] == "tools/list"
        assert correlator.pending_count("A") == 1

        assert correlator.dispatch("A", JSONRPCMessage.success_response(frame["id"], {"tools": []}))
        assert await task == {"tools": []}
        assert correlator.pending_count() == 0

    @pytest.mark.asyncio
    async def test_string_id_is_coerced(self, correlator):
        transport = FakeTransport("A")
        task = asyncio.create_task(correlator.call(transport, "ping"))

        (frame,) = await transport.wait_sent()
        correlator.dispatch("A", {"jsonrpc": "2.0", "id": str(frame["id"]), "result": "pong"})

        assert await task == "pong"

    @pytest.mark.asyncio
    async def test_out_of_order_responses(self, correlator):
        transport = FakeTransport("A")
        first = asyncio.create_task(correlator.call(transport, "one"))
        second = asyncio.create_task(correlator.call(transport, "two"))

        frames = await transport.wait_sent(2)
        by_method = {f["method"]: f["id"] for f in frames}
        correlator.dispatch("A", JSONRPCMessage.success_response(by_method["two"], 2))
        correlator.dispatch("A", JSONRPCMessage.success_response(by_method["one"], 1))

        assert await first == 1
        assert await second == 2

    @pytest.mark.asyncio
    async def test_remote_error(self, correlator):
        transport = FakeTransport("A")
        task = asyncio.create_task(correlator.call(transport, "nope"))

        (frame,) = await transport.wait_sent()
        correlator.dispatch(
            "A", JSONRPCMessage.error_response(frame["id"], -32601, "Method not found")
        )

        with pytest.raises(ToolmeshError) as exc_info:
            await task
        error = exc_info.value
        assert error.code == "REMOTE_ERROR"
        assert error.detail == "Method not found"
        assert error.data == {"code": -32601, "message": "Method not found"}
        assert error.call_id == frame["id"]

    @pytest.mark.asyncio
    async def test_timeout_clears_entry_and_late_reply_is_orphan(
        self, correlator, log_stream: StringIO
    ):
        transport = FakeTransport("A", timeout=0.05)

        with pytest.raises(ToolmeshError) as exc_info:
            await correlator.call(transport, "slow")

        error = exc_info.value
        assert error.code == "CALL_TIMEOUT"
        assert error.server_name == "A"
        assert "0.05s" in error.message
        assert correlator.pending_count() == 0

        late = JSONRPCMessage.success_response(transport.sent[0]["id"], "too late")
        assert correlator.dispatch("A", late) is False
        assert any(e.get("event") == "orphan_response" for e in log_entries(log_stream))

    @pytest.mark.asyncio
    async def test_per_call_timeout_override(self, correlator):
        transport = FakeTransport("A", timeout=30)

        with pytest.raises(ToolmeshError) as exc_info:
            await correlator.call(transport, "slow", timeout=0.01)
        assert exc_info.value.code == "CALL_TIMEOUT"

    @pytest.mark.asyncio
    async def test_response_from_other_server_is_orphan(self, correlator):
        transport = FakeTransport("A")
        task = asyncio.create_task(correlator.call(transport, "m"))

        (frame,) = await transport.wait_sent()
        assert correlator.dispatch("B", JSONRPCMessage.success_response(frame["id"], "x")) is False
        assert correlator.has_pending(frame["id"])

        correlator.dispatch("A", JSONRPCMessage.success_response(frame["id"], "y"))
        assert await task == "y"

    @pytest.mark.asyncio
    async def test_duplicate_response_is_ignored(self, correlator):
        transport = FakeTransport("A")
        task = asyncio.create_task(correlator.call(transport, "m"))

        (frame,) = await transport.wait_sent()
        assert correlator.dispatch("A", JSONRPCMessage.success_response(frame["id"], 1))
        assert not correlator.dispatch("A", JSONRPCMessage.success_response(frame["id"], 2))
        assert await task == 1

    def test_server_notification_ignored(self, correlator, log_stream: StringIO):
        frame = JSONRPCMessage.notification("notifications/progress", {"progress": 1})

        assert correlator.dispatch("A", frame) is False
        assert log_entries(log_stream)[-1]["event"] == "server_message"

    def test_frame_without_result_or_error(self, correlator, log_stream: StringIO):
        assert correlator.dispatch("A", {"jsonrpc": "2.0", "id": 1}) is False
        assert log_entries(log_stream)[-1]["event"] == "protocol_error"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("exc", "code"),
        [(BrokenPipeError(), "CONNECTION_CLOSED"), (OSError("disk"), "SEND_FAILED")],
    )
    async def test_send_failure(self, correlator, exc, code):
        transport = FakeTransport("A")
        transport.send_error = exc

        with pytest.raises(ToolmeshError) as exc_info:
            await correlator.call(transport, "m")

        assert exc_info.value.code == code
        assert exc_info.value.server_name == "A"
        assert correlator.pending_count() == 0

    @pytest.mark.asyncio
    async def test_reject_server_only_touches_that_server(self, correlator):
        a = FakeTransport("A")
        b = FakeTransport("B")
        call_a = asyncio.create_task(correlator.call(a, "m"))
        call_b = asyncio.create_task(correlator.call(b, "m"))
        await a.wait_sent()
        await b.wait_sent()

        assert correlator.reject_server("A", "process exited with code 1") == 1

        with pytest.raises(ToolmeshError) as exc_info:
            await call_a
        assert exc_info.value.code == "CONNECTION_CLOSED"
        assert exc_info.value.detail == "process exited with code 1"
        assert correlator.pending_count("B") == 1

        correlator.dispatch("B", JSONRPCMessage.success_response(b.sent[0]["id"], "ok"))
        assert await call_b == "ok"

    @pytest.mark.asyncio
    async def test_cancelled_caller_removes_entry(self, correlator):
        transport = FakeTransport("A")
        task = asyncio.create_task(correlator.call(transport, "m"))
        await transport.wait_sent()
        assert correlator.pending_count() == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert correlator.pending_count() == 0


class TestRequestResponseCalls:
    """Calls over a transport whose send() returns the reply."""

    @pytest.mark.asyncio
    async def test_reply_resolves_call(self, correlator):
        async def respond(frame):
            return JSONRPCMessage.success_response(frame["id"], {"ok": True})

        transport = FakeTransport("H", message_oriented=False, responder=respond)

        assert await correlator.call(transport, "tools/list") == {"ok": True}
        assert correlator.pending_count() == 0

    @pytest.mark.asyncio
    async def test_reply_without_result_is_protocol_error(self, correlator):
        async def respond(frame):
            return {"jsonrpc": "2.0", "id": frame["id"]}

        transport = FakeTransport("H", message_oriented=False, responder=respond)

        with pytest.raises(ToolmeshError) as exc_info:
            await correlator.call(transport, "m")
        assert exc_info.value.code == "PROTOCOL_ERROR"

    @pytest.mark.asyncio
    async def test_http_timeout_reports_method(self, correlator):
        async def respond(frame):
            raise httpx.ReadTimeout("timed out")

        transport = FakeTransport("H", timeout=2.0, message_oriented=False, responder=respond)

        with pytest.raises(ToolmeshError) as exc_info:
            await correlator.call(transport, "tools/call")

        error = exc_info.value
        assert error.code == "CALL_TIMEOUT"
        assert error.message == "Call 'tools/call' to server 'H' timed out after 2.0s"

    @pytest.mark.asyncio
    async def test_slow_exchange_times_out(self, correlator):
        release = asyncio.Event()

        async def respond(frame):
            await release.wait()
            return JSONRPCMessage.success_response(frame["id"], "late")

        transport = FakeTransport("H", timeout=0.05, message_oriented=False, responder=respond)

        with pytest.raises(ToolmeshError) as exc_info:
            await correlator.call(transport, "m")
        assert exc_info.value.code == "CALL_TIMEOUT"

        # The late reply finds no entry and is dropped
        release.set()
        await asyncio.sleep(0.01)
        assert correlator.pending_count() == 0

    @pytest.mark.asyncio
    async def test_reject_server_cancels_exchange(self, correlator):
        started = asyncio.Event()

        async def respond(frame):
            started.set()
            await asyncio.sleep(10)

        transport = FakeTransport("H", message_oriented=False, responder=respond)
        task = asyncio.create_task(correlator.call(transport, "m"))
        await started.wait()

        correlator.reject_server("H", "closed by client")

        with pytest.raises(ToolmeshError) as exc_info:
            await task
        assert exc_info.value.code == "CONNECTION_CLOSED"


class TestCallIds:
    def test_ids_strictly_increase(self):
        ids = [next_call_id() for _ in range(50)]
        assert ids == sorted(set(ids))
