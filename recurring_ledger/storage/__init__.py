"""Storage package: abstract interfaces plus in-memory and SQLite backends."""

from recurring_ledger.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from recurring_ledger.storage.memory import InMemoryAuditStorage, InMemoryLedgerStorage
from recurring_ledger.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Backends
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteLedgerStorage",
]
