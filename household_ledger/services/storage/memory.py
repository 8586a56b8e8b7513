"""
In-Memory Storage Implementation

Backs the test suite and local runs without Google credentials.
Rows are kept in plain dicts and lists; insertion order stands in for
creation order.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from household_ledger.engine.schedule import is_template_due
from household_ledger.models.audit import AuditEvent
from household_ledger.models.chores import Chore, ChoreTemplate, RotationCursor
from household_ledger.models.ledger import (
    ExpenseSplitRecord,
    Household,
    Member,
    SettlementRecord,
    SplitUpdate,
)
from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    ChoreStorageInterface,
    ConflictError,
    DuplicateError,
    HouseholdStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
)


class InMemoryStorage(
    HouseholdStorageInterface,
    LedgerStorageInterface,
    ChoreStorageInterface,
):
    """
    Single object implementing the household, ledger and chore interfaces.

    The add_* helpers seed data; they are not part of any interface.
    """

    def __init__(self):
        self.households: dict[str, Household] = {}
        self.members: dict[str, list[Member]] = {}
        self.splits: dict[str, ExpenseSplitRecord] = {}
        self.split_households: dict[str, str] = {}
        self.settlements: list[SettlementRecord] = []
        self.templates: dict[str, ChoreTemplate] = {}
        self.cursors: dict[tuple[str, str], RotationCursor] = {}
        self.chores: list[Chore] = []

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_household(self, household: Household, members: Optional[list[Member]] = None) -> None:
        self.households[household.id] = household
        self.members.setdefault(household.id, [])
        for member in members or []:
            self.add_member(household.id, member)

    def add_member(self, household_id: str, member: Member) -> None:
        roster = self.members.setdefault(household_id, [])
        roster.append(member.model_copy(update={"household_id": household_id}))

    def add_split(self, household_id: str, split: ExpenseSplitRecord) -> None:
        if split.id in self.splits:
            raise DuplicateError(f"Split already exists: {split.id}")
        self.splits[split.id] = split
        self.split_households[split.id] = household_id

    def add_template(self, template: ChoreTemplate) -> None:
        self.templates[template.id] = template

    # ------------------------------------------------------------------
    # Households
    # ------------------------------------------------------------------

    async def get_household(self, household_id: str) -> Optional[Household]:
        return self.households.get(household_id)

    async def list_members(self, household_id: str) -> list[Member]:
        return list(self.members.get(household_id, []))

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def list_unsettled_splits(self, household_id: str) -> list[ExpenseSplitRecord]:
        # Most recently added first
        return [
            split
            for split_id, split in reversed(list(self.splits.items()))
            if self.split_households[split_id] == household_id and not split.is_settled
        ]

    async def update_split(self, update: SplitUpdate) -> None:
        current = self.splits.get(update.split_id)
        if current is None:
            raise NotFoundError(f"Split not found: {update.split_id}")
        if current.is_settled or current.amount_owed != update.expected_amount_owed:
            raise ConflictError(
                f"Split {update.split_id} changed since the balance was computed"
            )

        if update.settled:
            changes = {"is_settled": True}
        else:
            changes = {"amount_owed": update.new_amount_owed}
        self.splits[update.split_id] = current.model_copy(update=changes)

    async def append_settlement(self, record: SettlementRecord) -> None:
        if any(existing.id == record.id for existing in self.settlements):
            raise DuplicateError(f"Settlement already recorded: {record.id}")
        self.settlements.append(record)

    async def list_settlements(self, household_id: str, limit: int = 100) -> list[SettlementRecord]:
        records = [r for r in self.settlements if r.household_id == household_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    # ------------------------------------------------------------------
    # Chores
    # ------------------------------------------------------------------

    async def list_recurring_templates(
        self,
        template_id: Optional[str] = None,
        household_id: Optional[str] = None,
    ) -> list[ChoreTemplate]:
        return [
            template
            for template in self.templates.values()
            if template.is_active
            and template.is_recurring
            and (not template_id or template.id == template_id)
            and (not household_id or template.household_id == household_id)
        ]

    async def list_due_templates(
        self,
        now: datetime,
        template_id: Optional[str] = None,
        household_id: Optional[str] = None,
    ) -> list[ChoreTemplate]:
        templates = await self.list_recurring_templates(template_id, household_id)
        return [t for t in templates if is_template_due(t.next_creation_date, now)]

    async def get_template(self, template_id: str) -> Optional[ChoreTemplate]:
        return self.templates.get(template_id)

    async def update_template_schedule(
        self,
        template_id: str,
        last_created_at: datetime,
        next_creation_date: datetime,
    ) -> None:
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template not found: {template_id}")
        self.templates[template_id] = template.model_copy(update={
            "last_created_at": last_created_at,
            "next_creation_date": next_creation_date,
        })

    async def get_rotation_cursor(self, household_id: str, template_id: str) -> RotationCursor:
        cursor = self.cursors.get((household_id, template_id))
        if cursor is None:
            return RotationCursor(household_id=household_id, template_id=template_id)
        return cursor

    async def save_rotation_cursor(self, cursor: RotationCursor) -> None:
        self.cursors[(cursor.household_id, cursor.template_id)] = cursor

    async def get_latest_chore_created_at(
        self,
        household_id: str,
        template_id: str,
    ) -> Optional[datetime]:
        timestamps = [
            chore.created_at
            for chore in self.chores
            if chore.household_id == household_id and chore.template_id == template_id
        ]
        return max(timestamps) if timestamps else None

    async def insert_chore(self, chore: Chore) -> Chore:
        if any(existing.id == chore.id for existing in self.chores):
            raise DuplicateError(f"Chore already exists: {chore.id}")
        self.chores.append(chore)
        return chore


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
