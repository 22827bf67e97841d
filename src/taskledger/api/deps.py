"""API dependencies."""

import logging
import secrets
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskledger.config import Environment, settings
from taskledger.db.base import get_session
from taskledger.engine import TaskLedgerEngine
from taskledger.events import EventBus
from taskledger.queue import QueueAdapter

logger = logging.getLogger("taskledger.api")

DEV_TENANT_ID = "dev-tenant"
DEV_USER_ID = "dev-user"


def _insecure_dev() -> bool:
    return settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session, committed when the handler returns."""
    async with get_session() as session:
        yield session


async def get_tenant_id(
    x_tenant_id: str | None = Header(None, alias="X-Tenant-ID"),
) -> str:
    """
    Extract tenant ID from request.

    Tenant resolution belongs to the surrounding platform; here it is a header.
    """
    if x_tenant_id:
        return x_tenant_id

    if _insecure_dev():
        return DEV_TENANT_ID

    raise HTTPException(status_code=401, detail="Missing tenant ID")


async def get_user_id(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> str:
    """Extract the acting user from request."""
    if x_user_id:
        return x_user_id

    if _insecure_dev():
        return DEV_USER_ID

    raise HTTPException(status_code=401, detail="Missing user ID")


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
) -> None:
    """
    Verify the shared API key.

    Accepts ``Authorization: Bearer <key>`` or ``X-API-Key``. Fails closed when
    no key is configured outside insecure development mode.
    """
    if _insecure_dev():
        return

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[7:]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
        )

    if not settings.api_key:
        logger.error("SECURITY VIOLATION: No API key configured. Set TASKLEDGER_API_KEY.")
        raise HTTPException(
            status_code=503,
            detail="Server misconfigured: authentication not properly initialized",
        )

    if not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_queue(request: Request) -> QueueAdapter:
    """Queue adapter created in the application lifespan."""
    return request.app.state.queue


def get_event_bus(request: Request) -> EventBus:
    """Event bus created in the application lifespan."""
    return request.app.state.bus


async def get_engine(
    session: AsyncSession = Depends(get_db_session),
    queue: QueueAdapter = Depends(get_queue),
    bus: EventBus = Depends(get_event_bus),
) -> TaskLedgerEngine:
    return TaskLedgerEngine(session, queue, bus)


def validate_auth_config() -> None:
    """
    Validate authentication configuration at startup.

    Raises:
        RuntimeError: If configuration is insecure for the current environment
    """
    if settings.allow_insecure_dev and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: allow_insecure_dev=true is only permitted in development. "
            f"Current environment: {settings.env.value}. "
            f"Set TASKLEDGER_ALLOW_INSECURE_DEV=false for {settings.env.value}."
        )

    if settings.allow_insecure_dev:
        logger.warning(
            "=" * 80 + "\n"
            "WARNING: Running in INSECURE DEV MODE\n"
            "  - Authentication is DISABLED\n"
            "  - Missing X-Tenant-ID / X-User-ID headers fall back to dev identities\n"
            "  - Set TASKLEDGER_ALLOW_INSECURE_DEV=false for any deployment\n"
            + "=" * 80
        )
    else:
        logger.info(f"Authentication enabled: shared API key for {settings.env.value}")
