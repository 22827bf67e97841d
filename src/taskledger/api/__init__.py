"""Task Ledger HTTP API."""

from taskledger.api.router import router

__all__ = ["router"]
