"""Database engine and session management.

The module-level ``engine`` and ``async_session_factory`` are bound from
settings at import time. ``configure`` rebinds both (tests use it to point
the ledger at an in-memory sqlite database).
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from taskledger.config import settings
from taskledger.observability.metrics import metrics


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pool options suited to the backend."""
    options: dict[str, Any] = {"echo": echo}
    if database_url.startswith("sqlite"):
        # One shared connection, otherwise every session sees its own :memory: db
        if ":memory:" in database_url:
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_pre_ping=True, pool_size=20, max_overflow=10)
    return create_async_engine(database_url, **options)


def _statement_kind(statement: str) -> str:
    head = statement.lstrip().split(None, 1)
    return head[0].lower() if head else "unknown"


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info["query_start_time"] = time.perf_counter()


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    started = conn.info.pop("query_start_time", None)
    if started is None:
        return
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    metrics.inc_counter(f"db.query.{_statement_kind(statement)}")
    metrics.observe("db.query.duration_ms", elapsed_ms)


def attach_query_metrics(target_engine: AsyncEngine) -> None:
    """Count and time statements, split by kind (select, update, insert...)."""
    sync_engine = target_engine.sync_engine
    if event.contains(sync_engine, "before_cursor_execute", _before_cursor_execute):
        return
    event.listen(sync_engine, "before_cursor_execute", _before_cursor_execute)
    event.listen(sync_engine, "after_cursor_execute", _after_cursor_execute)


engine: AsyncEngine = build_engine(settings.database_url, echo=settings.debug)
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
attach_query_metrics(engine)


def configure(
    database_url: Optional[str] = None,
    target_engine: Optional[AsyncEngine] = None,
) -> AsyncEngine:
    """Rebind the module engine and session factory."""
    global engine, async_session_factory

    engine = target_engine or build_engine(database_url or settings.database_url)
    async_session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    attach_query_metrics(engine)
    return engine


async def init_db() -> None:
    """Create missing tables. Deployments run the alembic migrations instead."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def close_db() -> None:
    await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit when the block exits cleanly, roll back otherwise."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
