"""Trace ID middleware."""

from fastapi import Request

from taskledger.observability.trace import set_trace_id

TRACE_HEADER = "X-Trace-ID"


async def trace_id_middleware(request: Request, call_next):
    """Bind the caller's trace ID (or a fresh one) for the duration of a request."""
    trace_id = set_trace_id(request.headers.get(TRACE_HEADER))
    response = await call_next(request)
    response.headers[TRACE_HEADER] = trace_id
    return response
