"""REST API router."""

from typing import Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query

from taskledger import __version__
from taskledger.api.deps import get_engine, get_tenant_id, get_user_id, verify_api_key
from taskledger.api.schemas import (
    CancelEntityTasksRequest,
    CancelEntityTasksResponse,
    CreateTaskRequest,
    DeclineTaskRequest,
    HealthResponse,
)
from taskledger.engine import (
    InvalidState,
    QueueError,
    TaskLedgerEngine,
    TaskLedgerError,
    TaskNotFound,
)
from taskledger.models import TaskLedgerCategory, TaskLedgerEntry, TaskLedgerType, TaskStats

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])

DEFAULT_CANCEL_REASON = "Cancelled by user"

E = TypeVar("E")


def _http_error(e: TaskLedgerError) -> HTTPException:
    """Map engine errors to HTTP errors."""
    if isinstance(e, TaskNotFound):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, InvalidState):
        return HTTPException(
            status_code=409,
            detail={
                "code": e.code,
                "message": e.message,
                "current_status": e.current_status,
                "allowed": e.allowed,
            },
        )
    if isinstance(e, QueueError):
        return HTTPException(status_code=503, detail=e.message)
    return HTTPException(status_code=400, detail=e.message)


def _split_csv(values: Optional[list[str]], enum_cls: type[E]) -> Optional[list[E]]:
    """Accept repeated params and comma-separated lists (``?types=A,B``)."""
    if not values:
        return None
    parts = [part.strip() for value in values for part in value.split(",") if part.strip()]
    try:
        return [enum_cls(part) for part in parts] or None
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


# ============================================================================
# Queries
# ============================================================================


@router.get("/task-ledger/stats", response_model=TaskStats)
async def get_stats(
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
):
    """Dashboard counters."""
    return await engine.get_task_stats(tenant_id)


@router.get("/task-ledger/pending", response_model=list[TaskLedgerEntry])
async def get_pending_tasks(
    types: Optional[list[str]] = Query(None),
    categories: Optional[list[str]] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=100),
    priority_min: Optional[int] = Query(None, ge=1, le=100),
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
):
    """Pending entries, most urgent first."""
    return await engine.get_pending_tasks(
        tenant_id,
        types=_split_csv(types, TaskLedgerType),
        categories=_split_csv(categories, TaskLedgerCategory),
        limit=limit,
        priority_min=priority_min,
    )


@router.get("/task-ledger/approvals", response_model=list[TaskLedgerEntry])
async def get_pending_approvals(
    limit: Optional[int] = Query(None, ge=1, le=100),
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
):
    """Approvals awaiting a decision."""
    return await engine.get_pending_approvals(tenant_id, limit=limit)


@router.get("/task-ledger/today", response_model=list[TaskLedgerEntry])
async def get_todays_tasks(
    limit: Optional[int] = Query(None, ge=1, le=100),
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
):
    """Today's board."""
    return await engine.get_todays_tasks(tenant_id, limit=limit)


@router.get(
    "/task-ledger/entity/{entity_type}/{entity_id}",
    response_model=list[TaskLedgerEntry],
)
async def get_entity_tasks(
    entity_type: str,
    entity_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
):
    """Recent entries for one entity."""
    return await engine.get_entity_tasks(tenant_id, entity_type, entity_id, limit=limit)


@router.get("/task-ledger/{task_id}", response_model=TaskLedgerEntry)
async def get_task(
    task_id: str,
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
):
    """Get one entry."""
    try:
        return await engine.get_task(task_id, tenant_id)
    except TaskLedgerError as e:
        raise _http_error(e)


# ============================================================================
# Admission & lifecycle
# ============================================================================


@router.post("/task-ledger", response_model=TaskLedgerEntry)
async def create_task(
    request: CreateTaskRequest,
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
):
    """Create an entry (repeated requests return the existing entry)."""
    try:
        return await engine.create_task(request.to_options(tenant_id))
    except TaskLedgerError as e:
        raise _http_error(e)


@router.post("/task-ledger/{task_id}/approve", response_model=TaskLedgerEntry)
async def approve_task(
    task_id: str,
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
    user_id: str = Depends(get_user_id),
):
    """Approve an entry and queue it for execution."""
    try:
        return await engine.approve_task(task_id, tenant_id, user_id)
    except TaskLedgerError as e:
        raise _http_error(e)


@router.post("/task-ledger/{task_id}/decline", response_model=TaskLedgerEntry)
async def decline_task(
    task_id: str,
    request: Optional[DeclineTaskRequest] = None,
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
    user_id: str = Depends(get_user_id),
):
    """Decline an entry before it runs."""
    reason = request.reason if request else None
    try:
        return await engine.decline_task(task_id, tenant_id, user_id, reason)
    except TaskLedgerError as e:
        raise _http_error(e)


@router.post("/task-ledger/{task_id}/complete", response_model=TaskLedgerEntry)
async def complete_task(
    task_id: str,
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
    user_id: str = Depends(get_user_id),
):
    """Mark an entry done by hand."""
    try:
        return await engine.complete_task(task_id, tenant_id, user_id)
    except TaskLedgerError as e:
        raise _http_error(e)


@router.post("/task-ledger/{task_id}/undo", response_model=TaskLedgerEntry)
async def undo_task(
    task_id: str,
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
    user_id: str = Depends(get_user_id),
):
    """Undo a completed entry inside its undo window."""
    try:
        return await engine.undo_task(task_id, tenant_id, user_id)
    except TaskLedgerError as e:
        raise _http_error(e)


@router.post(
    "/task-ledger/entity/{entity_type}/{entity_id}/cancel",
    response_model=CancelEntityTasksResponse,
)
async def cancel_entity_tasks(
    entity_type: str,
    entity_id: str,
    request: Optional[CancelEntityTasksRequest] = None,
    engine: TaskLedgerEngine = Depends(get_engine),
    tenant_id: str = Depends(get_tenant_id),
):
    """Cancel every open entry for an entity."""
    reason = (request.reason if request else None) or DEFAULT_CANCEL_REASON
    count = await engine.cancel_entity_tasks(tenant_id, entity_type, entity_id, reason)
    return CancelEntityTasksResponse(cancelled=count)
