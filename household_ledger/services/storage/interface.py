"""
Abstract Storage Interface

DESIGN DECISION: Flows never talk to a concrete backend.
They receive these interfaces, which lets us:
1. Keep Google Sheets as the hosted backend
2. Use in-memory storage for tests and local runs
3. Keep the engines pure (they never see storage at all)

The interface is intentionally narrow - only the reads and writes the
settlement and recurring-chore flows actually perform.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from household_ledger.models.audit import AuditEvent
from household_ledger.models.chores import Chore, ChoreTemplate, RotationCursor
from household_ledger.models.ledger import (
    ExpenseSplitRecord,
    Household,
    Member,
    SettlementRecord,
    SplitUpdate,
)


class HouseholdStorageInterface(ABC):
    """Households and their rosters."""

    @abstractmethod
    async def get_household(self, household_id: str) -> Optional[Household]:
        """
        Retrieve a household by ID.

        Returns:
            The household if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_members(self, household_id: str) -> list[Member]:
        """
        List household members in creation order (oldest first).

        Creation order is the natural rotation order, so implementations
        must return it stably.
        """
        pass


class LedgerStorageInterface(ABC):
    """
    Expense splits and payment notes.

    Splits are returned already joined with their expense so that every
    record carries payer_id.
    """

    @abstractmethod
    async def list_unsettled_splits(self, household_id: str) -> list[ExpenseSplitRecord]:
        """
        List unsettled splits for a household, most recent expense first.

        Args:
            household_id: Household to scan

        Returns:
            Splits with is_settled == False
        """
        pass

    @abstractmethod
    async def update_split(self, update: SplitUpdate) -> None:
        """
        Apply one split change as a conditional write.

        The change is applied only if the stored amount_owed still equals
        update.expected_amount_owed and the split is not already settled.

        Raises:
            NotFoundError: If the split doesn't exist
            ConflictError: If the row changed since the balance was computed
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def append_settlement(self, record: SettlementRecord) -> None:
        """
        Append a payment note. Payment notes are never updated or deleted.

        Raises:
            DuplicateError: If a record with the same id exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_settlements(self, household_id: str, limit: int = 100) -> list[SettlementRecord]:
        """List payment notes for a household, newest first."""
        pass


class ChoreStorageInterface(ABC):
    """Chore templates, rotation cursors and chores."""

    @abstractmethod
    async def list_recurring_templates(
        self,
        template_id: Optional[str] = None,
        household_id: Optional[str] = None,
    ) -> list[ChoreTemplate]:
        """List active recurring templates, due or not."""
        pass

    @abstractmethod
    async def list_due_templates(
        self,
        now: datetime,
        template_id: Optional[str] = None,
        household_id: Optional[str] = None,
    ) -> list[ChoreTemplate]:
        """
        List active recurring templates whose next_creation_date is unset
        or not after `now`.

        Args:
            now: Reference time
            template_id: Restrict to one template
            household_id: Restrict to one household
        """
        pass

    @abstractmethod
    async def get_template(self, template_id: str) -> Optional[ChoreTemplate]:
        """Retrieve a template by ID, None if it doesn't exist."""
        pass

    @abstractmethod
    async def update_template_schedule(
        self,
        template_id: str,
        last_created_at: datetime,
        next_creation_date: datetime,
    ) -> None:
        """
        Record that a template produced a chore and when it is due next.

        Raises:
            NotFoundError: If the template doesn't exist
        """
        pass

    @abstractmethod
    async def get_rotation_cursor(self, household_id: str, template_id: str) -> RotationCursor:
        """
        Get the rotation cursor for a template.

        Returns an unset cursor when nothing has been assigned yet.
        """
        pass

    @abstractmethod
    async def save_rotation_cursor(self, cursor: RotationCursor) -> None:
        """Upsert a rotation cursor keyed by (household_id, template_id)."""
        pass

    @abstractmethod
    async def get_latest_chore_created_at(
        self,
        household_id: str,
        template_id: str,
    ) -> Optional[datetime]:
        """Creation time of the most recent chore from a template, if any."""
        pass

    @abstractmethod
    async def insert_chore(self, chore: Chore) -> Chore:
        """
        Insert a new chore.

        Raises:
            DuplicateError: If a chore with the same id exists
            StorageError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g. one batch run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConflictError(StorageError):
    """A conditional write found the row changed underneath it."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class PersistenceError(StorageError):
    """
    A multi-row write stopped part way.

    applied_split_ids lists the split updates that were written before the
    failure. The balance must be recomputed from storage to reconcile.
    """

    def __init__(
        self,
        message: str,
        applied_split_ids: Optional[Sequence[str]] = None,
        failed_split_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.applied_split_ids = list(applied_split_ids or [])
        self.failed_split_id = failed_split_id
