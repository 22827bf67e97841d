"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from taskledger.models import CreateTaskOptions, TaskLedgerCategory, TaskLedgerType


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class CreateTaskRequest(BaseModel):
    """Create task request. The tenant comes from the X-Tenant-ID header."""

    type: TaskLedgerType
    category: TaskLedgerCategory
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None
    priority: Optional[int] = Field(None, ge=1, le=100, description="1-100, higher = more urgent")

    entity_type: Optional[str] = None
    entity_id: Optional[str] = None

    action_type: Optional[str] = Field(None, description="Dispatch key, e.g. SEND_SMS")
    action_endpoint: Optional[str] = None
    payload: Optional[dict[str, Any]] = None

    scheduled_for: Optional[datetime] = Field(None, description="Future time => SCHEDULED")

    undo_window_mins: Optional[int] = Field(None, ge=1)
    undo_endpoint: Optional[str] = None
    undo_payload: Optional[dict[str, Any]] = None

    ai_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    ai_reasoning: Optional[str] = None
    ai_model: Optional[str] = None

    idempotency_key: Optional[str] = Field(None, max_length=255)
    trace_id: Optional[str] = None
    max_retries: Optional[int] = Field(None, ge=0)

    def to_options(self, tenant_id: str) -> CreateTaskOptions:
        return CreateTaskOptions(tenant_id=tenant_id, **self.model_dump())


class DeclineTaskRequest(BaseModel):
    """Decline task request."""

    reason: Optional[str] = Field(None, max_length=1000)


class CancelEntityTasksRequest(BaseModel):
    """Bulk cancel request for one entity."""

    reason: Optional[str] = Field(None, max_length=1000)


class CancelEntityTasksResponse(BaseModel):
    """Bulk cancel response."""

    cancelled: int
