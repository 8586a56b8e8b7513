"""
Flow tests against in-memory storage.

Covers the settlement flow, recurring chore creation and the batch job.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from conftest import make_split
from household_ledger.audit import AuditLogger
from household_ledger.engine import NoEligibleMemberError, ValidationError
from household_ledger.models import (
    AuditEventType,
    ChoreTemplate,
    Household,
    Member,
    RecurrenceUnit,
)
from household_ledger.orchestrator import (
    RecurringChoreFlow,
    SettlementFlow,
    create_app_components,
)
from household_ledger.services.storage import (
    InMemoryStorage,
    NotFoundError,
    PersistenceError,
    StorageError,
)

HCM = ZoneInfo("Asia/Ho_Chi_Minh")


def local_end(year, month, day):
    return datetime(year, month, day, 23, 59, 59, 999000, tzinfo=HCM)


def event_types(audit_storage):
    return [event.event_type for event in audit_storage.events]


@pytest.fixture
def settlement_flow(storage, audit_storage):
    return SettlementFlow(storage, storage, AuditLogger(audit_storage))


@pytest.fixture
def chore_flow(storage, audit_storage):
    return RecurringChoreFlow(storage, storage, AuditLogger(audit_storage))


class TestSettlementFlow:
    """Tests for SettlementFlow."""

    @pytest.mark.asyncio
    async def test_load_balances(self, storage, settlement_flow, audit_storage):
        storage.add_split("house-1", make_split("user-2", "user-1", "50", id="s1"))

        balances = await settlement_flow.load_balances("house-1")

        assert len(balances) == 1
        assert balances[0].amount == Decimal("50.00")
        assert event_types(audit_storage) == [AuditEventType.BALANCES_COMPUTED]

    @pytest.mark.asyncio
    async def test_partial_settlement_persists(self, storage, settlement_flow, audit_storage):
        storage.add_split("house-1", make_split("user-2", "user-1", "50", id="s1"))

        plan = await settlement_flow.settle_between("house-1", "user-2", "user-1", "20", "cash")

        assert storage.splits["s1"].amount_owed == Decimal("30.00")
        assert storage.splits["s1"].is_settled is False
        assert storage.settlements == [plan.settlement_record]
        assert plan.settlement_record.note == "cash"
        assert AuditEventType.SETTLEMENT_APPLIED in event_types(audit_storage)

        remaining = await settlement_flow.load_balances("house-1")
        assert remaining[0].amount == Decimal("30.00")

    @pytest.mark.asyncio
    async def test_full_settlement_clears_balance(self, storage, settlement_flow):
        storage.add_split("house-1", make_split("user-3", "user-1", "12.50", id="s1"))
        storage.add_split("house-1", make_split("user-3", "user-1", "7.50", id="s2"))

        await settlement_flow.settle_between("house-1", "user-3", "user-1", "20")

        assert storage.splits["s1"].is_settled
        assert storage.splits["s2"].is_settled
        assert await settlement_flow.load_balances("house-1") == []
        assert await settlement_flow.load_member_totals("house-1") == []

    @pytest.mark.asyncio
    async def test_overpayment_rejected_and_audited(self, storage, settlement_flow, audit_storage):
        storage.add_split("house-1", make_split("user-2", "user-1", "50", id="s1"))

        with pytest.raises(ValidationError):
            await settlement_flow.settle_between("house-1", "user-2", "user-1", "60")

        assert storage.splits["s1"].amount_owed == Decimal("50")
        assert storage.settlements == []
        assert AuditEventType.SETTLEMENT_REJECTED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_missing_balance(self, settlement_flow):
        with pytest.raises(NotFoundError):
            await settlement_flow.find_balance("house-1", "user-1", "user-2")

    @pytest.mark.asyncio
    async def test_stale_balance_raises_persistence_error(self, storage, settlement_flow, audit_storage):
        storage.add_split("house-1", make_split("user-2", "user-1", "40", id="big"))
        storage.add_split("house-1", make_split("user-2", "user-1", "10", id="small"))
        balance = await settlement_flow.find_balance("house-1", "user-2", "user-1")

        # Someone else reduces the small split before this payment lands
        storage.splits["small"] = storage.splits["small"].model_copy(
            update={"amount_owed": Decimal("5")}
        )

        with pytest.raises(PersistenceError) as exc_info:
            await settlement_flow.settle("house-1", balance, "45")

        assert exc_info.value.applied_split_ids == ["big"]
        assert exc_info.value.failed_split_id == "small"
        assert storage.settlements == []
        assert AuditEventType.SETTLEMENT_PARTIALLY_PERSISTED in event_types(audit_storage)


class YieldingChoreStorage(InMemoryStorage):
    """Hands control back to the event loop on reads, like a networked store."""

    async def list_due_templates(self, now, template_id=None, household_id=None):
        await asyncio.sleep(0)
        return await super().list_due_templates(now, template_id, household_id)

    async def get_rotation_cursor(self, household_id, template_id):
        await asyncio.sleep(0)
        return await super().get_rotation_cursor(household_id, template_id)


class FailingChoreStorage(InMemoryStorage):
    async def insert_chore(self, chore):
        raise StorageError("sheet unavailable")


class TestRecurringChoreFlow:
    """Tests for RecurringChoreFlow.create_from_template."""

    @pytest.mark.asyncio
    async def test_rotates_in_roster_order(self, storage, chore_flow, template, now):
        first = await chore_flow.create_from_template(template, now=now)
        second = await chore_flow.create_from_template(template, now=now)

        assert first.assigned_to == "user-1"
        assert first.assigned_user_name == "An"
        assert second.assigned_to == "user-2"

        chores = storage.chores
        assert chores[0].due_date == local_end(2024, 3, 15)
        # A chore from this template already exists today
        assert chores[1].due_date == local_end(2024, 3, 16)
        assert chores[0].created_by == "user-1"

        cursor = await storage.get_rotation_cursor("house-1", "tmpl-1")
        assert cursor.last_assigned_member_id == "user-2"

    @pytest.mark.asyncio
    async def test_custom_order_and_availability(self, storage, chore_flow, template, now):
        storage.households["house-1"] = storage.households["house-1"].model_copy(
            update={"chore_rotation_order": ["user-2", "user-3", "user-1"]}
        )
        storage.members["house-1"][2] = storage.members["house-1"][2].model_copy(
            update={"is_available": False}
        )

        picks = [
            (await chore_flow.create_from_template(template, now=now)).assigned_to
            for _ in range(3)
        ]

        assert picks == ["user-2", "user-1", "user-2"]

    @pytest.mark.asyncio
    async def test_no_eligible_member(self, storage, chore_flow, template, now, audit_storage):
        storage.members["house-1"] = [
            m.model_copy(update={"is_available": False}) for m in storage.members["house-1"]
        ]

        with pytest.raises(NoEligibleMemberError):
            await chore_flow.create_from_template(template, now=now)

        assert storage.chores == []
        assert not (await storage.get_rotation_cursor("house-1", "tmpl-1")).is_set
        assert AuditEventType.ROTATION_NO_ELIGIBLE_MEMBER in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_explicit_assignee_advances_cursor(self, storage, chore_flow, template, now):
        result = await chore_flow.create_from_template(template, now=now, assigned_to="user-3")
        assert result.assigned_to == "user-3"

        following = await chore_flow.create_from_template(template, now=now)
        assert following.assigned_to == "user-1"

    @pytest.mark.asyncio
    async def test_unknown_assignee(self, chore_flow, template, now):
        with pytest.raises(NotFoundError):
            await chore_flow.create_from_template(template, now=now, assigned_to="ghost")

    @pytest.mark.asyncio
    async def test_missing_household(self, chore_flow, template, now):
        orphan = template.model_copy(update={"household_id": "nowhere"})
        with pytest.raises(NotFoundError):
            await chore_flow.create_from_template(orphan, now=now)

    @pytest.mark.asyncio
    async def test_failed_insert_leaves_cursor(self, household, members, template, now):
        storage = FailingChoreStorage()
        storage.add_household(household, members)
        flow = RecurringChoreFlow(storage, storage)

        with pytest.raises(PersistenceError):
            await flow.create_from_template(template, now=now)

        assert not (await storage.get_rotation_cursor("house-1", "tmpl-1")).is_set

    @pytest.mark.asyncio
    async def test_preview_is_read_only(self, storage, chore_flow):
        assert await chore_flow.preview_next_assignee("house-1", "tmpl-1") == ("user-1", "An")
        assert await chore_flow.preview_next_assignee("house-1", "tmpl-1") == ("user-1", "An")
        assert storage.cursors == {}


class TestRunDueTemplates:
    """Tests for the batch job."""

    @pytest.fixture
    def seeded(self, storage, template):
        storage.add_template(template)
        storage.add_household(
            Household(id="house-2", name="Empty"),
            [Member(id="user-9", full_name="Away", is_available=False)],
        )
        storage.add_template(ChoreTemplate(
            id="tmpl-2",
            household_id="house-2",
            name="Water plants",
            is_recurring=True,
            recurring_type=RecurrenceUnit.WEEKLY,
            recurring_interval=1,
        ))
        return storage

    @pytest.mark.asyncio
    async def test_failure_does_not_block_batch(self, seeded, chore_flow, now, audit_storage):
        report = await chore_flow.run_due_templates(now=now)

        assert report.success is True
        assert report.message == "Processed 2 templates"
        assert report.created_count == 1
        assert report.failed_count == 1

        by_template = {r.template_id: r for r in report.results}
        assert by_template["tmpl-1"].success
        assert by_template["tmpl-2"].code == "NO_AVAILABLE_USERS"
        assert AuditEventType.BATCH_COMPLETED in event_types(audit_storage)

        # Successful template advanced; skipped one stays due
        assert seeded.templates["tmpl-1"].last_created_at == now
        assert seeded.templates["tmpl-1"].next_creation_date == local_end(2024, 3, 16)
        assert seeded.templates["tmpl-2"].next_creation_date is None

    @pytest.mark.asyncio
    async def test_advanced_template_not_due_again(self, seeded, chore_flow, now):
        await chore_flow.run_due_templates(now=now)

        report = await chore_flow.run_due_templates(now=now + timedelta(hours=1))

        assert [r.template_id for r in report.results] == ["tmpl-2"]

    @pytest.mark.asyncio
    async def test_overlapping_runs_create_one_chore(self, household, members, template, now):
        storage = YieldingChoreStorage()
        storage.add_household(household, members)
        storage.add_template(template)
        flow = RecurringChoreFlow(storage, storage)

        first, second = await asyncio.gather(
            flow.run_due_templates(now=now),
            flow.run_due_templates(now=now),
        )

        assert [chore.assigned_to for chore in storage.chores] == ["user-1"]
        assert first.created_count + second.created_count == 1
        cursor = await storage.get_rotation_cursor("house-1", "tmpl-1")
        assert cursor.last_assigned_member_id == "user-1"

    @pytest.mark.asyncio
    async def test_filters(self, seeded, chore_flow, now):
        report = await chore_flow.run_due_templates(now=now, household_id="house-1")
        assert [r.template_id for r in report.results] == ["tmpl-1"]

        with pytest.raises(NotFoundError):
            await chore_flow.run_due_templates(now=now, template_id="missing")

    @pytest.mark.asyncio
    async def test_nothing_due(self, storage, chore_flow, now):
        report = await chore_flow.run_due_templates(now=now)

        assert report.created_count == 0
        assert report.results == []
        assert report.message == "No recurring templates due for chore creation"

    @pytest.mark.asyncio
    async def test_template_without_household(self, storage, chore_flow, now):
        storage.add_template(ChoreTemplate(
            id="tmpl-x",
            name="Orphan",
            is_recurring=True,
            recurring_type=RecurrenceUnit.DAILY,
            recurring_interval=1,
        ))

        report = await chore_flow.run_due_templates(now=now)

        assert report.results[0].error == "Template missing household_id"
        assert report.results[0].household_id == "unknown"


class TestAppComponents:
    @pytest.mark.asyncio
    async def test_memory_backend_wiring(self, storage):
        components = create_app_components(storage=storage)
        storage.add_split("house-1", make_split("user-2", "user-1", "8", id="s1"))

        balances = await components.settlement_flow.load_balances("house-1")

        assert balances[0].amount == Decimal("8.00")
        assert components.sheets_client is None
