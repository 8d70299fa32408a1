"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
PostgreSQL is the production backend; the in-memory store serves tests
and single-process use.
"""

from ledgerforms.services.storage.interface import (
    AuditStorageInterface,
    BudgetPeriodStorageInterface,
    ConflictError,
    ConnectionError,
    FieldStorageInterface,
    NotFoundError,
    RecordStorageInterface,
    StorageError,
)
from ledgerforms.services.storage.memory import InMemoryStore
from ledgerforms.services.storage.postgres import (
    PostgresAuditStorage,
    PostgresBudgetPeriodStorage,
    PostgresClient,
    PostgresFieldStorage,
    PostgresRecordStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetPeriodStorageInterface",
    "FieldStorageInterface",
    "RecordStorageInterface",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryStore",
    # PostgreSQL implementation
    "PostgresAuditStorage",
    "PostgresBudgetPeriodStorage",
    "PostgresClient",
    "PostgresFieldStorage",
    "PostgresRecordStorage",
]
