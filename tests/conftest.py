"""
Pytest fixtures for Task Ledger tests.
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Ensure test config is set before importing taskledger modules.
os.environ.setdefault("TASKLEDGER_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("TASKLEDGER_ENV", "development")
os.environ.setdefault("TASKLEDGER_WORKER_ENABLED", "false")
os.environ.setdefault(
    "TASKLEDGER_DATABASE_URL",
    os.getenv("TASKLEDGER_TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:"),
)

from taskledger.config import settings
from taskledger.db import base as db_base
import taskledger.db.tables  # noqa: F401
from taskledger.engine import ActionDispatcher, RetryPolicy, TaskExecutor, TaskLedgerEngine
from taskledger.events import EventBus
from taskledger.models import CreateTaskOptions, TaskLedgerCategory, TaskLedgerType
from taskledger.observability.metrics import metrics
from taskledger.queue import InMemoryQueueBackend, QueueAdapter

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
USER = "owner-1"


class FakeClock:
    """Controllable UTC clock shared by the engine, executor and queue."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def ms(self) -> int:
        return int(self.now.timestamp() * 1000)

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingBus(EventBus):
    """Event bus that remembers every emitted event."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, dict(payload)))
        super().emit(event, payload)

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


def make_opts(**overrides) -> CreateTaskOptions:
    """Build admission options with sensible defaults."""
    values: dict[str, Any] = {
        "tenant_id": TENANT,
        "type": TaskLedgerType.AI_ACTION,
        "category": TaskLedgerCategory.BILLING,
        "title": "Send payment reminder",
        "action_type": "SEND_PAYMENT_REMINDER",
        "entity_type": "invoice",
        "entity_id": "inv-1",
    }
    values.update(overrides)
    return CreateTaskOptions(**values)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def clock():
    # Mid-day so "today" windows are unambiguous
    return FakeClock(datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
async def engine():
    """Create a test database engine and wire it into taskledger.db.base."""
    test_engine = db_base.configure(settings.database_url)
    await db_base.drop_db()
    await db_base.init_db()

    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def session(engine):
    """Provide a database session per test."""
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_scope(session):
    """Session scope for the worker that reuses the test session."""

    @asynccontextmanager
    async def scope():
        yield session
        await session.flush()

    return scope


@pytest.fixture
def backend(clock):
    return InMemoryQueueBackend(clock=clock.ms)


@pytest.fixture
def queue(backend):
    return QueueAdapter(backend, queue_name="task-ledger")


@pytest.fixture
async def bus():
    bus = RecordingBus()
    yield bus
    await bus.drain()


@pytest.fixture
def ledger(session, queue, bus, clock):
    return TaskLedgerEngine(session, queue, bus, clock=clock)


@pytest.fixture
def dispatcher(bus):
    return ActionDispatcher(bus)


@pytest.fixture
def executor(session, queue, dispatcher, bus, clock):
    return TaskExecutor(
        session,
        queue,
        dispatcher,
        bus,
        policy=RetryPolicy(base_delay_seconds=30, max_delay_seconds=300),
        clock=clock,
    )


@pytest.fixture
async def client(session, queue, bus):
    """Async test client with overridden dependencies."""
    from taskledger.api.deps import get_db_session
    from taskledger.main import app

    async def override_get_db_session():
        yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.state.queue = queue
    app.state.bus = bus

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
