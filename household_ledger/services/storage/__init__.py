"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
In-memory storage backs tests and local runs; Google Sheets is the hosted
backend.
"""

from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    ChoreStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    HouseholdStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
    StorageError,
)
from household_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryStorage,
)
from household_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsHouseholdStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ChoreStorageInterface",
    "HouseholdStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "PersistenceError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsHouseholdStorage",
]
