"""In-process event bus.

Handlers are invoked asynchronously: ``emit`` hands the event off and returns
without waiting for subscribers, so a slow or failing handler never blocks the
ledger. Handler errors are logged.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union
from uuid import uuid4

from taskledger.observability.metrics import metrics
from taskledger.observability.trace import get_trace_id
from taskledger.utils.time import utc_now

logger = logging.getLogger("taskledger.events")

Handler = Callable[[dict[str, Any]], Union[Awaitable[None], None]]


class EventBus:
    """Publish/subscribe bus keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def _envelope(self, payload: dict[str, Any]) -> dict[str, Any]:
        full = dict(payload)
        full.setdefault("timestamp", utc_now())
        full["correlation_id"] = payload.get("correlation_id") or get_trace_id() or str(uuid4())
        return full

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Hand an event to its subscribers without waiting for them."""
        full = self._envelope(payload)
        logger.debug("Emitting event: %s [%s]", event, full["correlation_id"])
        metrics.inc_counter("events.emitted")

        for handler in list(self._handlers.get(event, [])):
            task = asyncio.get_running_loop().create_task(self._run(event, handler, full))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def emit_async(self, event: str, payload: dict[str, Any]) -> None:
        """Emit and wait for every subscriber to finish."""
        full = self._envelope(payload)
        logger.debug("Emitting async event: %s [%s]", event, full["correlation_id"])
        metrics.inc_counter("events.emitted")
        await asyncio.gather(
            *(self._run(event, handler, full) for handler in list(self._handlers.get(event, [])))
        )

    async def drain(self) -> None:
        """Wait for in-flight handler tasks (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _run(self, event: str, handler: Handler, payload: dict[str, Any]) -> None:
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            metrics.inc_counter("events.handler_errors")
            logger.error(f"Event handler failed for {event}: {e}", exc_info=True)
