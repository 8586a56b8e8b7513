"""Services package."""

from household_ledger.services.storage import (
    AuditStorageInterface,
    ChoreStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsHouseholdStorage,
    HouseholdStorageInterface,
    InMemoryAuditStorage,
    InMemoryStorage,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ChoreStorageInterface",
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsHouseholdStorage",
    "HouseholdStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "PersistenceError",
    "StorageError",
]
