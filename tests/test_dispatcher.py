"""
Dispatcher tests: action type to event mapping and payload shape.
"""

from datetime import datetime, timezone

import pytest

from taskledger.engine import ActionDispatcher
from taskledger.engine.dispatcher import ACTION_EVENTS
from taskledger.errors import ActionExecutionError
from taskledger.events import EVENTS
from taskledger.models import (
    TaskActionType,
    TaskLedgerCategory,
    TaskLedgerEntry,
    TaskLedgerStatus,
    TaskLedgerType,
)

from conftest import RecordingBus, TENANT

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _entry(**overrides) -> TaskLedgerEntry:
    values = {
        "id": "task-1",
        "tenant_id": TENANT,
        "type": TaskLedgerType.AI_ACTION,
        "category": TaskLedgerCategory.BILLING,
        "title": "Send payment reminder",
        "entity_type": "invoice",
        "entity_id": "inv-1",
        "action_type": "SEND_PAYMENT_REMINDER",
        "payload": {"amount_due": 120},
        "idempotency_key": "key-1",
        "trace_id": "trace-1",
        "status": TaskLedgerStatus.IN_PROGRESS,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return TaskLedgerEntry(**values)


@pytest.mark.parametrize(
    "action_type, event, id_field",
    [
        ("SEND_PAYMENT_REMINDER", EVENTS.PAYMENT_REMINDER_REQUESTED, "invoice_id"),
        ("APPLY_LATE_FEE", EVENTS.LATE_FEE_REQUESTED, "invoice_id"),
        ("SEND_QUOTE_FOLLOWUP", EVENTS.QUOTE_FOLLOWUP_REQUESTED, "quote_id"),
        ("SEND_APPOINTMENT_CONFIRMATION", EVENTS.APPOINTMENT_CONFIRMATION_REQUESTED, "appointment_id"),
        ("SEND_APPOINTMENT_REMINDER", EVENTS.APPOINTMENT_REMINDER_REQUESTED, "appointment_id"),
        ("MARK_NO_SHOW", EVENTS.NO_SHOW_REQUESTED, "appointment_id"),
        ("SEND_SMS", EVENTS.SMS_REQUESTED, None),
        ("SEND_EMAIL", EVENTS.EMAIL_REQUESTED, None),
        ("SEND_AI_RESPONSE", EVENTS.AI_RESPONSE_REQUESTED, "customer_id"),
        ("SEND_REVIEW_REQUEST", EVENTS.REVIEW_REQUEST_REQUESTED, "customer_id"),
        ("SEND_WINBACK", EVENTS.WINBACK_REQUESTED, "customer_id"),
        ("SEND_CAMPAIGN", EVENTS.CAMPAIGN_SEND_REQUESTED, "campaign_id"),
        ("ASSIGN_TECHNICIAN", EVENTS.TECHNICIAN_ASSIGNMENT_REQUESTED, "job_id"),
        ("UPDATE_JOB_STATUS", EVENTS.JOB_STATUS_UPDATE_REQUESTED, "job_id"),
    ],
)
def test_known_action_mapping(action_type, event, id_field):
    dispatcher = ActionDispatcher(RecordingBus())

    resolved_event, body = dispatcher.build_payload(_entry(action_type=action_type))

    assert resolved_event == event
    assert body["tenant_id"] == TENANT
    assert body["task_id"] == "task-1"
    assert body["amount_due"] == 120
    assert body["correlation_id"] == "trace-1"
    if id_field:
        assert body[id_field] == "inv-1"
    else:
        assert "entity_id" not in body


def test_every_action_type_is_mapped():
    assert set(ACTION_EVENTS) == {t.value for t in TaskActionType}


def test_payload_fields_override_defaults():
    dispatcher = ActionDispatcher(RecordingBus())

    _, body = dispatcher.build_payload(
        _entry(payload={"invoice_id": "inv-override", "correlation_id": "upstream"})
    )

    assert body["invoice_id"] == "inv-override"
    assert body["correlation_id"] == "upstream"


def test_unknown_action_uses_generic_event():
    dispatcher = ActionDispatcher(RecordingBus())

    event, body = dispatcher.build_payload(_entry(action_type="ORDER_PARTS"))

    assert event == EVENTS.TASK_ACTION_REQUESTED
    assert body == {
        "tenant_id": TENANT,
        "task_id": "task-1",
        "action_type": "ORDER_PARTS",
        "entity_type": "invoice",
        "entity_id": "inv-1",
        "payload": {"amount_due": 120},
        "correlation_id": "trace-1",
    }


def test_non_object_payload_is_rejected():
    dispatcher = ActionDispatcher(RecordingBus())

    with pytest.raises(ActionExecutionError) as exc:
        dispatcher.build_payload(_entry(payload=[1, 2, 3]))

    assert exc.value.retryable is False


async def test_dispatch_emits_event():
    bus = RecordingBus()
    received = []
    bus.subscribe(EVENTS.PAYMENT_REMINDER_REQUESTED, received.append)

    result = await ActionDispatcher(bus).dispatch(_entry())
    await bus.drain()

    assert result["event"] == EVENTS.PAYMENT_REMINDER_REQUESTED
    assert "emitted_at" in result
    assert bus.names() == [EVENTS.PAYMENT_REMINDER_REQUESTED]
    assert received[0]["invoice_id"] == "inv-1"
    assert "timestamp" in received[0]


async def test_dispatch_without_action_type_fails():
    with pytest.raises(ActionExecutionError) as exc:
        await ActionDispatcher(RecordingBus()).dispatch(_entry(action_type=None))

    assert exc.value.retryable is False
