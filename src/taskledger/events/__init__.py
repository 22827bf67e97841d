"""Task Ledger events."""

from taskledger.events.bus import EventBus
from taskledger.events.types import EVENTS

__all__ = ["EVENTS", "EventBus"]
