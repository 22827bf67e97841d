"""
Lifecycle tests: approve, decline, complete, undo and bulk cancellation.
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from taskledger.db.tables import TaskLedgerEntryTable
from taskledger.errors import InvalidState, QueueError, TaskNotFound, UndoWindowExpired
from taskledger.events import EVENTS
from taskledger.models import TaskLedgerStatus, TaskLedgerType
from taskledger.queue import InMemoryQueueBackend, QueueAdapter
from taskledger.engine import TaskLedgerEngine
from taskledger.tasks.worker import process_due_jobs

from conftest import OTHER_TENANT, TENANT, USER, make_opts


class BrokenQueueBackend(InMemoryQueueBackend):
    async def add(self, name, data, delay_ms, job_id, priority=None):
        raise ConnectionError("queue unavailable")


class ApprovalRejectingBackend(InMemoryQueueBackend):
    async def add(self, name, data, delay_ms, job_id, priority=None):
        if job_id.startswith("approved-"):
            raise ConnectionError("queue unavailable")
        return await super().add(name, data, delay_ms, job_id, priority)


async def test_approve_then_execute_payment_reminder(ledger, queue, bus, backend, session_scope):
    """Approved entries run immediately and emit their action event."""
    entry = await ledger.create_task(make_opts())
    assert entry.status == TaskLedgerStatus.PENDING

    approved = await ledger.approve_task(entry.id, TENANT, USER)
    assert approved.status == TaskLedgerStatus.IN_PROGRESS

    job = await backend.get_job(f"approved-{entry.id}")
    assert job is not None
    assert job.priority == 1
    assert job.data["approved_by"] == USER

    assert await process_due_jobs(queue, bus, session_scope=session_scope) == 1

    done = await ledger.get_task(entry.id, TENANT)
    assert done.status == TaskLedgerStatus.COMPLETED
    assert done.executed_by == USER
    assert done.result["event"] == EVENTS.PAYMENT_REMINDER_REQUESTED

    reminders = bus.of(EVENTS.PAYMENT_REMINDER_REQUESTED)
    assert len(reminders) == 1
    assert reminders[0]["invoice_id"] == "inv-1"
    assert reminders[0]["tenant_id"] == TENANT
    assert bus.of(EVENTS.TASK_LEDGER_APPROVED)[0]["approved_by"] == USER


async def test_decline_scheduled_task_before_it_fires(
    ledger, queue, bus, backend, clock, session_scope
):
    entry = await ledger.create_task(make_opts(scheduled_for=clock() + timedelta(hours=1)))
    assert entry.status == TaskLedgerStatus.SCHEDULED
    assert await backend.get_job(f"scheduled-{entry.id}") is not None

    declined = await ledger.decline_task(entry.id, TENANT, USER)

    assert declined.status == TaskLedgerStatus.CANCELLED
    assert declined.failure_reason == "Declined by user"
    assert declined.executed_by == USER
    assert declined.executed_at == clock()
    assert backend.jobs == {}

    clock.advance(hours=2)
    assert await process_due_jobs(queue, bus, session_scope=session_scope) == 0
    assert bus.of(EVENTS.TASK_LEDGER_EXECUTED) == []


async def test_decline_with_reason(ledger, bus):
    entry = await ledger.create_task(make_opts())

    declined = await ledger.decline_task(entry.id, TENANT, USER, "customer already paid")

    assert declined.failure_reason == "customer already paid"
    assert bus.of(EVENTS.TASK_LEDGER_DECLINED)[0]["reason"] == "customer already paid"


async def test_approval_preempts_schedule(ledger, backend, clock):
    entry = await ledger.create_task(make_opts(scheduled_for=clock() + timedelta(hours=1)))

    approved = await ledger.approve_task(entry.id, TENANT, USER)

    assert approved.status == TaskLedgerStatus.IN_PROGRESS
    assert approved.scheduled_for is None
    assert await backend.get_job(f"scheduled-{entry.id}") is None
    job = await backend.get_job(f"approved-{entry.id}")
    assert job is not None
    assert job.due_at_ms == clock.ms()


async def test_approve_surfaces_queue_error(session, bus, clock):
    ledger = TaskLedgerEngine(session, QueueAdapter(BrokenQueueBackend(clock=clock.ms)), bus, clock)
    entry = await ledger.create_task(make_opts())

    with pytest.raises(QueueError):
        await ledger.approve_task(entry.id, TENANT, USER)

    assert (await ledger.get_task(entry.id, TENANT)).status == TaskLedgerStatus.PENDING


async def test_failed_approval_keeps_scheduled_job(session, bus, clock):
    backend = ApprovalRejectingBackend(clock=clock.ms)
    ledger = TaskLedgerEngine(session, QueueAdapter(backend), bus, clock)
    entry = await ledger.create_task(make_opts(scheduled_for=clock() + timedelta(hours=1)))

    with pytest.raises(QueueError):
        await ledger.approve_task(entry.id, TENANT, USER)

    assert (await ledger.get_task(entry.id, TENANT)).status == TaskLedgerStatus.SCHEDULED
    assert list(backend.jobs) == [f"scheduled-{entry.id}"]


async def test_approve_losing_race_removes_approved_job(ledger, session, backend, monkeypatch):
    entry = await ledger.create_task(make_opts())
    original_enqueue = ledger.queue.enqueue_approved

    async def enqueue_then_cancel(entry, approved_by):
        job = await original_enqueue(entry, approved_by)
        # Someone else cancels the entry between the guard and the write
        await session.execute(
            update(TaskLedgerEntryTable)
            .where(TaskLedgerEntryTable.id == entry.id)
            .values(status=TaskLedgerStatus.CANCELLED)
        )
        return job

    monkeypatch.setattr(ledger.queue, "enqueue_approved", enqueue_then_cancel)

    with pytest.raises(InvalidState) as exc_info:
        await ledger.approve_task(entry.id, TENANT, USER)

    assert exc_info.value.current_status == "CANCELLED"
    assert await backend.get_job(f"approved-{entry.id}") is None


async def test_complete_task_manually(ledger, bus, backend, clock):
    entry = await ledger.create_task(make_opts(type=TaskLedgerType.HUMAN_TASK, action_type=None))

    done = await ledger.complete_task(entry.id, TENANT, USER)

    assert done.status == TaskLedgerStatus.COMPLETED
    assert done.executed_by == USER
    assert done.executed_at == clock()
    assert done.result is None
    assert backend.jobs == {}
    assert EVENTS.TASK_LEDGER_COMPLETED in bus.names()
    assert bus.of(EVENTS.PAYMENT_REMINDER_REQUESTED) == []


async def test_complete_in_progress_task(ledger):
    entry = await ledger.create_task(make_opts())
    await ledger.approve_task(entry.id, TENANT, USER)

    done = await ledger.complete_task(entry.id, TENANT, "dispatcher-7")

    assert done.status == TaskLedgerStatus.COMPLETED
    assert done.executed_by == "dispatcher-7"


async def test_undo_inside_window(ledger, bus, clock):
    entry = await ledger.create_task(
        make_opts(undo_window_mins=5, undo_endpoint="/invoices/inv-1/reminders/revert",
                  undo_payload={"reminder": "r-1"})
    )
    await ledger.complete_task(entry.id, TENANT, USER)

    clock.advance(minutes=4, seconds=59)
    undone = await ledger.undo_task(entry.id, TENANT, "owner-2")

    assert undone.status == TaskLedgerStatus.UNDONE
    assert undone.undone_by == "owner-2"
    assert undone.undone_at == clock()

    requested = bus.of(EVENTS.TASK_LEDGER_UNDO_REQUESTED)
    assert requested[0]["endpoint"] == "/invoices/inv-1/reminders/revert"
    assert requested[0]["payload"] == {"reminder": "r-1"}
    names = bus.names()
    assert names.index(EVENTS.TASK_LEDGER_UNDO_REQUESTED) < names.index(EVENTS.TASK_LEDGER_UNDONE)


async def test_undo_at_exact_deadline_is_allowed(ledger, clock):
    entry = await ledger.create_task(make_opts(undo_window_mins=5))
    await ledger.complete_task(entry.id, TENANT, USER)

    clock.advance(minutes=5)
    assert (await ledger.undo_task(entry.id, TENANT, USER)).status == TaskLedgerStatus.UNDONE


async def test_undo_after_window_expires(ledger, bus, clock):
    entry = await ledger.create_task(make_opts(undo_window_mins=5))
    await ledger.complete_task(entry.id, TENANT, USER)

    clock.advance(minutes=5, seconds=1)
    with pytest.raises(UndoWindowExpired) as exc_info:
        await ledger.undo_task(entry.id, TENANT, USER)

    assert exc_info.value.code == "UNDO_WINDOW_EXPIRED"
    assert isinstance(exc_info.value, InvalidState)
    assert (await ledger.get_task(entry.id, TENANT)).status == TaskLedgerStatus.COMPLETED
    assert bus.of(EVENTS.TASK_LEDGER_UNDONE) == []


async def test_undo_without_window_is_unsupported(ledger):
    entry = await ledger.create_task(make_opts())
    await ledger.complete_task(entry.id, TENANT, USER)

    with pytest.raises(InvalidState) as exc_info:
        await ledger.undo_task(entry.id, TENANT, USER)

    assert "does not support undo" in exc_info.value.message


async def test_undo_without_endpoint_emits_no_request(ledger, bus):
    entry = await ledger.create_task(make_opts(undo_window_mins=10))
    await ledger.complete_task(entry.id, TENANT, USER)

    await ledger.undo_task(entry.id, TENANT, USER)

    assert bus.of(EVENTS.TASK_LEDGER_UNDO_REQUESTED) == []
    assert len(bus.of(EVENTS.TASK_LEDGER_UNDONE)) == 1


async def test_lifecycle_operations_are_tenant_scoped(ledger):
    entry = await ledger.create_task(make_opts())

    with pytest.raises(TaskNotFound):
        await ledger.approve_task(entry.id, OTHER_TENANT, USER)
    with pytest.raises(TaskNotFound):
        await ledger.decline_task(entry.id, OTHER_TENANT, USER)

    assert (await ledger.get_task(entry.id, TENANT)).status == TaskLedgerStatus.PENDING


async def test_cancel_entity_tasks_scoping(ledger, clock):
    """Only open entries of the named entity in the named tenant are cancelled."""
    pending = await ledger.create_task(make_opts(idempotency_key="k1"))
    scheduled = await ledger.create_task(
        make_opts(idempotency_key="k2", scheduled_for=clock() + timedelta(days=1))
    )
    completed = await ledger.create_task(make_opts(idempotency_key="k3"))
    await ledger.complete_task(completed.id, TENANT, USER)
    other_tenant = await ledger.create_task(make_opts(idempotency_key="k4", tenant_id=OTHER_TENANT))
    other_entity = await ledger.create_task(make_opts(idempotency_key="k5", entity_id="inv-2"))

    count = await ledger.cancel_entity_tasks(TENANT, "invoice", "inv-1", "Invoice paid")

    assert count == 2
    for entry in (pending, scheduled):
        current = await ledger.get_task(entry.id, TENANT)
        assert current.status == TaskLedgerStatus.CANCELLED
        assert current.failure_reason == "Invoice paid"
        assert current.executed_by == "SYSTEM"
    assert (await ledger.get_task(completed.id, TENANT)).status == TaskLedgerStatus.COMPLETED
    assert (await ledger.get_task(other_tenant.id, OTHER_TENANT)).status == TaskLedgerStatus.PENDING
    assert (await ledger.get_task(other_entity.id, TENANT)).status == TaskLedgerStatus.PENDING


async def test_cancelled_entity_job_fires_as_noop(
    ledger, queue, bus, backend, clock, session_scope
):
    entry = await ledger.create_task(make_opts(scheduled_for=clock() + timedelta(minutes=10)))
    await ledger.cancel_entity_tasks(TENANT, "invoice", "inv-1", "Invoice paid")

    # Bulk cancel leaves the job queued
    assert await backend.get_job(f"scheduled-{entry.id}") is not None

    clock.advance(minutes=11)
    assert await process_due_jobs(queue, bus, session_scope=session_scope) == 1

    assert (await ledger.get_task(entry.id, TENANT)).status == TaskLedgerStatus.CANCELLED
    assert bus.of(EVENTS.PAYMENT_REMINDER_REQUESTED) == []
