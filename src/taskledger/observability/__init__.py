"""Observability helpers for the Task Ledger."""

from taskledger.observability.metrics import metrics
from taskledger.observability.trace import get_trace_id, set_trace_id

__all__ = ["metrics", "get_trace_id", "set_trace_id"]
