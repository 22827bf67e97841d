"""Trace ID propagation via context variables."""

from contextvars import ContextVar
from uuid import uuid4

_trace_id: ContextVar[str | None] = ContextVar("taskledger_trace_id", default=None)


def get_trace_id() -> str | None:
    """Return the trace ID bound to the current context, if any."""
    return _trace_id.get()


def set_trace_id(trace_id: str | None = None) -> str:
    """Bind a trace ID (generated when omitted) to the current context."""
    value = trace_id or str(uuid4())
    _trace_id.set(value)
    return value
