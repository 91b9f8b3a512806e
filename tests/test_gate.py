import asyncio
import time
import logging
import pytest

from conftest import make_data
from wshandler.core.context import CallContext
from wshandler.core.contracts import CallData, MessagePayload
from wshandler.core.errors import HandlerError
from wshandler.core.gate import CANCELLED_MARKER, TIMEOUT_MARKER, InvocationGate
from wshandler.core.log import LeveledLogger
from wshandler.core.metrics import counter_value


@pytest.fixture
def gate():
    return InvocationGate(LeveledLogger(logging.getLogger("wshandler.test.gate")), grace=0.001)


@pytest.mark.asyncio
async def test_runs_handler_after_grace(gate):
    async def echo(ctx, data):
        return CallData(MessagePayload(data.payload.event, data={"echo": data.payload.data}, status="ok"),
                        client=data.client)

    out = await gate.invoke(echo, CallContext.background(), make_data("ping", 1))
    assert out.payload.status == "ok"
    assert out.payload.data == {"echo": 1}
    assert out.client == "conn-1"


@pytest.mark.asyncio
async def test_sync_handler_supported(gate):
    def upper(ctx, data):
        return CallData(MessagePayload(data.payload.event, data=data.payload.data.upper()), data.client)

    out = await gate.invoke(upper, CallContext.background(), make_data("ping", "hi"))
    assert out.payload.data == "HI"


@pytest.mark.asyncio
async def test_expired_context_skips_handler(gate):
    called = []

    async def never(ctx, data):
        called.append(1)
        return data

    ctx = CallContext.background().with_timeout(0)
    before = counter_value("gate_timeout_total", event="late")
    out = await gate.invoke(never, ctx, make_data("late"), label="late")
    assert called == []
    assert out.payload.event == "late"
    assert out.payload.status == "error"
    assert out.payload.data == TIMEOUT_MARKER
    assert out.client == "conn-1"
    assert counter_value("gate_timeout_total", event="late") == before + 1


@pytest.mark.asyncio
async def test_cancelled_context_gets_distinct_marker(gate):
    async def never(ctx, data):
        raise AssertionError("must not run")

    ctx = CallContext.background().with_cancel()
    ctx.cancel()
    out = await gate.invoke(never, ctx, make_data("gone"))
    assert out.payload.status == "error"
    assert out.payload.data == CANCELLED_MARKER


@pytest.mark.asyncio
async def test_slow_handler_is_cut_off_at_deadline(gate):
    async def slow(ctx, data):
        await asyncio.sleep(1.0)
        return CallData(MessagePayload(data.payload.event, status="ok"))

    ctx = CallContext.background().with_timeout(0.05)
    out = await asyncio.wait_for(gate.invoke(slow, ctx, make_data("slow")), timeout=0.5)
    assert out.payload.status == "error"
    assert out.payload.data == TIMEOUT_MARKER


@pytest.mark.asyncio
async def test_deadline_not_enforced_lets_handler_finish():
    gate = InvocationGate(LeveledLogger(), grace=0.001, enforce_deadline=False)

    async def slow(ctx, data):
        await asyncio.sleep(0.08)
        return CallData(MessagePayload(data.payload.event, status="ok"))

    out = await gate.invoke(slow, CallContext.background().with_timeout(0.03), make_data("slow"))
    assert out.payload.status == "ok"


@pytest.mark.asyncio
async def test_handler_error_with_data_is_returned_and_logged(gate, caplog):
    caplog.set_level(logging.ERROR, logger="wshandler.test.gate")
    produced = CallData(MessagePayload("pay", data="partial", status="error"), client="c")

    async def failing(ctx, data):
        raise HandlerError("card declined", data=produced)

    out = await gate.invoke(failing, CallContext.background(), make_data("pay"))
    assert out is produced
    assert any("card declined" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_error_payload(gate):
    async def boom(ctx, data):
        raise RuntimeError("kaput")

    before = counter_value("handler_error_total", event="boom")
    out = await gate.invoke(boom, CallContext.background(), make_data("boom"), label="boom")
    assert out.payload.status == "error"
    assert out.payload.data == "kaput"
    assert out.payload.event == "boom"
    assert counter_value("handler_error_total", event="boom") == before + 1


@pytest.mark.asyncio
async def test_wrong_return_type_is_error(gate):
    async def bad(ctx, data):
        return {"not": "calldata"}

    out = await gate.invoke(bad, CallContext.background(), make_data("bad"))
    assert out.payload.status == "error"
    assert "expected CallData" in out.payload.data


@pytest.mark.asyncio
async def test_blocking_plain_handler_past_deadline_times_out(gate):
    def slow(ctx, data):
        time.sleep(0.2)
        return CallData(MessagePayload("slow", status="ok"))

    ctx = CallContext.background().with_timeout(0.05)
    t0 = time.perf_counter()
    out = await gate.invoke(slow, ctx, make_data("slow"), label="slow")
    assert out.payload.status == "error"
    assert out.payload.data == TIMEOUT_MARKER
    # the loop was free to notice the deadline before the thread finished
    assert time.perf_counter() - t0 < 0.18


@pytest.mark.asyncio
async def test_result_after_deadline_is_discarded(gate):
    async def stubborn(ctx, data):
        try:
            await asyncio.sleep(1.0)
        except asyncio.CancelledError:
            pass
        return CallData(MessagePayload("stubborn", status="ok"))

    ctx = CallContext.background().with_timeout(0.05)
    out = await gate.invoke(stubborn, ctx, make_data("stubborn"))
    assert out.payload.status == "error" and out.payload.data == TIMEOUT_MARKER


@pytest.mark.asyncio
async def test_metrics_use_label_not_client_event(gate):
    async def boom(ctx, data):
        raise RuntimeError("x")

    before = counter_value("handler_error_total", event="registered")
    for i in range(3):
        await gate.invoke(boom, CallContext.background(), make_data(f"client-made-{i}"), label="registered")
    assert counter_value("handler_error_total", event="registered") == before + 3
    assert counter_value("handler_error_total", event="client-made-0") == 0
