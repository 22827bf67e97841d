"""Task Ledger - durable, idempotent task admission and execution."""

__version__ = "0.1.0"
