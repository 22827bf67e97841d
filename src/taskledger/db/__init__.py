"""Task Ledger database layer."""

from taskledger.db.base import Base, configure, get_session, init_db
from taskledger.db.repositories import TaskLedgerRepository
from taskledger.db.tables import TaskLedgerEntryTable

__all__ = [
    "Base",
    "configure",
    "get_session",
    "init_db",
    "TaskLedgerEntryTable",
    "TaskLedgerRepository",
]
