"""Action dispatcher - routes an entry's action type to an outbound event.

The dispatcher never performs side effects itself. Domain modules subscribe to
the emitted events and do the actual work.
"""

import logging
from typing import Any, Optional

from taskledger.errors import ActionExecutionError
from taskledger.events import EVENTS, EventBus
from taskledger.models import TaskActionType, TaskLedgerEntry
from taskledger.observability.metrics import metrics
from taskledger.utils.time import utc_now

logger = logging.getLogger("taskledger.dispatcher")

# action_type -> (event name, payload key that carries entity_id)
ACTION_EVENTS: dict[str, tuple[str, Optional[str]]] = {
    # Billing
    TaskActionType.SEND_PAYMENT_REMINDER.value: (EVENTS.PAYMENT_REMINDER_REQUESTED, "invoice_id"),
    TaskActionType.APPLY_LATE_FEE.value: (EVENTS.LATE_FEE_REQUESTED, "invoice_id"),
    TaskActionType.SEND_QUOTE_FOLLOWUP.value: (EVENTS.QUOTE_FOLLOWUP_REQUESTED, "quote_id"),
    # Scheduling
    TaskActionType.SEND_APPOINTMENT_CONFIRMATION.value: (
        EVENTS.APPOINTMENT_CONFIRMATION_REQUESTED,
        "appointment_id",
    ),
    TaskActionType.SEND_APPOINTMENT_REMINDER.value: (
        EVENTS.APPOINTMENT_REMINDER_REQUESTED,
        "appointment_id",
    ),
    TaskActionType.MARK_NO_SHOW.value: (EVENTS.NO_SHOW_REQUESTED, "appointment_id"),
    # Messaging
    TaskActionType.SEND_SMS.value: (EVENTS.SMS_REQUESTED, None),
    TaskActionType.SEND_EMAIL.value: (EVENTS.EMAIL_REQUESTED, None),
    TaskActionType.SEND_AI_RESPONSE.value: (EVENTS.AI_RESPONSE_REQUESTED, "customer_id"),
    # Marketing
    TaskActionType.SEND_REVIEW_REQUEST.value: (EVENTS.REVIEW_REQUEST_REQUESTED, "customer_id"),
    TaskActionType.SEND_WINBACK.value: (EVENTS.WINBACK_REQUESTED, "customer_id"),
    TaskActionType.SEND_CAMPAIGN.value: (EVENTS.CAMPAIGN_SEND_REQUESTED, "campaign_id"),
    # Operations
    TaskActionType.ASSIGN_TECHNICIAN.value: (EVENTS.TECHNICIAN_ASSIGNMENT_REQUESTED, "job_id"),
    TaskActionType.UPDATE_JOB_STATUS.value: (EVENTS.JOB_STATUS_UPDATE_REQUESTED, "job_id"),
}


class ActionDispatcher:
    """Translate ledger entries into abstract action events."""

    def __init__(self, bus: EventBus):
        self.bus = bus

    def resolve(self, action_type: str) -> tuple[str, Optional[str]]:
        """Return ``(event, id_field)``; unknown action types use the generic event."""
        return ACTION_EVENTS.get(action_type, (EVENTS.TASK_ACTION_REQUESTED, None))

    def build_payload(self, entry: TaskLedgerEntry) -> tuple[str, dict[str, Any]]:
        payload = entry.payload
        if payload is not None and not isinstance(payload, dict):
            raise ActionExecutionError(
                f"Payload for task {entry.id} must be an object, got {type(payload).__name__}",
                retryable=False,
            )

        if entry.action_type not in ACTION_EVENTS:
            return EVENTS.TASK_ACTION_REQUESTED, {
                "tenant_id": entry.tenant_id,
                "task_id": entry.id,
                "action_type": entry.action_type,
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "payload": payload,
                "correlation_id": entry.trace_id,
            }

        event, id_field = self.resolve(entry.action_type)
        body: dict[str, Any] = {"tenant_id": entry.tenant_id, "task_id": entry.id}
        if id_field:
            body[id_field] = entry.entity_id
        body.update(payload or {})
        body.setdefault("correlation_id", entry.trace_id)
        return event, body

    async def dispatch(self, entry: TaskLedgerEntry) -> dict[str, Any]:
        """
        Emit the action event for ``entry``.

        Returns once the event is handed to the bus; subscriber outcomes are
        not awaited.
        """
        if not entry.action_type:
            raise ActionExecutionError(f"Task {entry.id} has no action type", retryable=False)

        event, body = self.build_payload(entry)

        try:
            self.bus.emit(event, body)
        except Exception as e:
            raise ActionExecutionError(f"Failed to emit {event}: {e}") from e

        metrics.inc_counter(f"dispatcher.emitted.{event}")
        logger.info(f"Emitted {event} event for task {entry.id}")
        return {"event": event, "emitted_at": utc_now().isoformat()}
