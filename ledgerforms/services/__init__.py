"""Services package."""

from ledgerforms.services.storage import (
    AuditStorageInterface,
    BudgetPeriodStorageInterface,
    ConflictError,
    ConnectionError,
    FieldStorageInterface,
    InMemoryStore,
    NotFoundError,
    PostgresAuditStorage,
    PostgresBudgetPeriodStorage,
    PostgresClient,
    PostgresFieldStorage,
    PostgresRecordStorage,
    RecordStorageInterface,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "BudgetPeriodStorageInterface",
    "ConflictError",
    "ConnectionError",
    "FieldStorageInterface",
    "InMemoryStore",
    "NotFoundError",
    "PostgresAuditStorage",
    "PostgresBudgetPeriodStorage",
    "PostgresClient",
    "PostgresFieldStorage",
    "PostgresRecordStorage",
    "RecordStorageInterface",
    "StorageError",
]
