"""
Event bus tests.
"""

import logging

from taskledger.events import EventBus
from taskledger.observability.metrics import metrics
from taskledger.observability.trace import set_trace_id


async def test_emit_does_not_wait_for_handlers():
    bus = EventBus()
    received = []

    async def handler(payload):
        received.append(payload["task_id"])

    bus.subscribe("task-ledger.created", handler)
    bus.emit("task-ledger.created", {"task_id": "t1", "correlation_id": "c1"})

    assert received == []
    await bus.drain()
    assert received == ["t1"]


async def test_envelope_adds_timestamp_and_correlation():
    bus = EventBus()
    received = []
    bus.subscribe("sms-requested", received.append)

    set_trace_id("trace-from-request")
    bus.emit("sms-requested", {"task_id": "t1"})
    bus.emit("sms-requested", {"task_id": "t2", "correlation_id": "explicit"})
    await bus.drain()

    by_task = {p["task_id"]: p for p in received}
    assert by_task["t1"]["correlation_id"] == "trace-from-request"
    assert by_task["t2"]["correlation_id"] == "explicit"
    assert all("timestamp" in p for p in received)


async def test_handler_errors_are_logged_not_raised(caplog):
    bus = EventBus()
    delivered = []

    def broken(payload):
        raise RuntimeError("subscriber exploded")

    bus.subscribe("task-ledger.executed", broken)
    bus.subscribe("task-ledger.executed", delivered.append)

    with caplog.at_level(logging.ERROR, logger="taskledger.events"):
        bus.emit("task-ledger.executed", {"task_id": "t1", "correlation_id": "c"})
        await bus.drain()

    assert len(delivered) == 1
    assert metrics.counter_value("events.handler_errors") == 1
    assert "subscriber exploded" in caplog.text


async def test_emit_async_waits_for_handlers():
    bus = EventBus()
    received = []

    async def handler(payload):
        received.append(payload["task_id"])

    bus.subscribe("task-ledger.undone", handler)
    await bus.emit_async("task-ledger.undone", {"task_id": "t1", "correlation_id": "c"})

    assert received == ["t1"]


async def test_unsubscribe():
    bus = EventBus()
    received = []
    bus.subscribe("email-requested", received.append)
    bus.unsubscribe("email-requested", received.append)
    bus.unsubscribe("never-subscribed", received.append)

    bus.emit("email-requested", {"task_id": "t1"})
    await bus.drain()

    assert received == []
    assert metrics.counter_value("events.emitted") == 1
