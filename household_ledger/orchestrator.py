"""
Main Orchestrator for Household Ledger

This module ties together storage, the pure engines and auditing, and
defines the end-to-end flows for:
1. Settlement (load splits → net → decompose payment → persist)
2. Recurring chores (due date → rotation → insert chore → advance cursor)
3. The batch job behind the auto-create webhook

DESIGN DECISION: The orchestrator enforces the boundaries:
- Engines never touch storage; flows never do arithmetic
- A rotation cursor only moves after its chore has been written
- One failing template never aborts a batch
- Every step is audited
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from household_ledger.audit import AuditLogger, create_correlation_id
from household_ledger.config import Settings, get_settings
from household_ledger.engine import (
    DEFAULT_TIMEZONE,
    NETTING_THRESHOLD,
    NoEligibleMemberError,
    ValidationError,
    apply_settlement,
    build_rotation_order,
    compute_member_totals,
    compute_net_balances,
    get_next_in_rotation,
    is_template_due,
    next_creation_after,
    select_due_date,
)
from household_ledger.engine.balances import Amount
from household_ledger.models import (
    BatchReport,
    Chore,
    ChoreCreationResult,
    ChoreTemplate,
    Household,
    Member,
    MemberBalance,
    NetBalance,
    SettlementPlan,
    utc_now,
)
from household_ledger.services.storage import (
    AuditStorageInterface,
    ChoreStorageInterface,
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

logger = structlog.get_logger(__name__)


class SettlementFlow:
    """
    Orchestrates balance display and payment settlement.

    Flow:
    1. Load → unsettled splits and the roster for one household
    2. Net → compute_net_balances (pure)
    3. Decompose → apply_settlement, largest split first (pure)
    4. Persist → one conditional write per split, then the payment note

    Balances are always recomputed from storage; nothing is cached
    between calls.
    """

    def __init__(
        self,
        household_storage: HouseholdStorageInterface,
        ledger_storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        netting_threshold: Decimal = NETTING_THRESHOLD,
    ):
        self._households = household_storage
        self._ledger = ledger_storage
        self._audit_logger = audit_logger
        self._threshold = netting_threshold

    async def load_balances(
        self,
        household_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[NetBalance]:
        """Current net balances of a household, largest first."""
        members = await self._households.list_members(household_id)
        splits = await self._ledger.list_unsettled_splits(household_id)

        balances = compute_net_balances(splits, members, self._threshold)

        if self._audit_logger:
            roster = {member.id for member in members}
            skipped = [
                split.id
                for split in splits
                if split.ower_id not in roster or split.payer_id not in roster
            ]
            await self._audit_logger.log_balances_computed(
                household_id=household_id,
                balance_count=len(balances),
                skipped_split_ids=skipped,
                correlation_id=correlation_id,
            )

        return balances

    async def load_member_totals(self, household_id: str) -> list[MemberBalance]:
        """Each member's overall owed/owes position."""
        members = await self._households.list_members(household_id)
        splits = await self._ledger.list_unsettled_splits(household_id)
        return compute_member_totals(splits, members)

    async def find_balance(
        self,
        household_id: str,
        from_member_id: str,
        to_member_id: str,
    ) -> NetBalance:
        """
        Recompute balances and return the one from -> to.

        Raises:
            NotFoundError: If from_member_id owes to_member_id nothing
        """
        for balance in await self.load_balances(household_id):
            if balance.from_member_id == from_member_id and balance.to_member_id == to_member_id:
                return balance
        raise NotFoundError(
            f"No outstanding balance from {from_member_id} to {to_member_id}"
        )

    async def settle(
        self,
        household_id: str,
        balance: NetBalance,
        amount: Amount,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SettlementPlan:
        """
        Apply a payment against a balance and persist it.

        Returns:
            The plan that was written

        Raises:
            ValidationError: If the amount is not positive or exceeds the balance
            PersistenceError: If any write fails; carries the split ids
                              already written
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            plan = apply_settlement(balance, amount, note, household_id=household_id)
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_settlement_rejected(
                    household_id=household_id,
                    from_member_id=balance.from_member_id,
                    to_member_id=balance.to_member_id,
                    amount=str(amount),
                    reason=str(e),
                    correlation_id=correlation_id,
                )
            raise

        record = plan.settlement_record
        applied: list[str] = []

        for update in plan.updated_splits:
            try:
                await self._ledger.update_split(update)
            except StorageError as e:
                await self._report_partial(household_id, plan, applied, update.split_id, e, correlation_id)
                raise PersistenceError(
                    f"Failed to update split {update.split_id}: {e}",
                    applied_split_ids=applied,
                    failed_split_id=update.split_id,
                ) from e
            applied.append(update.split_id)

        try:
            await self._ledger.append_settlement(record)
        except StorageError as e:
            await self._report_partial(household_id, plan, applied, None, e, correlation_id)
            raise PersistenceError(
                f"Splits updated but payment note not recorded: {e}",
                applied_split_ids=applied,
            ) from e

        logger.info(
            "settlement_applied",
            household_id=household_id,
            settlement_id=str(record.id),
            amount=str(record.amount),
            split_count=len(plan.updated_splits),
        )

        if self._audit_logger:
            await self._audit_logger.log_settlement_applied(
                household_id=household_id,
                settlement_id=record.id,
                from_member_id=record.from_member_id,
                to_member_id=record.to_member_id,
                amount=str(record.amount),
                settled_split_ids=[u.split_id for u in plan.updated_splits if u.settled],
                partial_split_ids=[u.split_id for u in plan.updated_splits if not u.settled],
                correlation_id=correlation_id,
            )

        return plan

    async def settle_between(
        self,
        household_id: str,
        from_member_id: str,
        to_member_id: str,
        amount: Amount,
        note: Optional[str] = None,
    ) -> SettlementPlan:
        """Look up the current balance between two members and settle it."""
        balance = await self.find_balance(household_id, from_member_id, to_member_id)
        return await self.settle(household_id, balance, amount, note)

    async def _report_partial(
        self,
        household_id: str,
        plan: SettlementPlan,
        applied: list[str],
        failed_split_id: Optional[str],
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        logger.error(
            "settlement_persistence_failed",
            household_id=household_id,
            applied_split_ids=applied,
            failed_split_id=failed_split_id,
            error=str(error),
        )
        if self._audit_logger:
            await self._audit_logger.log_settlement_partially_persisted(
                household_id=household_id,
                settlement_id=plan.settlement_record.id,
                applied_split_ids=list(applied),
                failed_split_id=failed_split_id,
                error_message=str(error),
                correlation_id=correlation_id,
            )


class RecurringChoreFlow:
    """
    Orchestrates chore creation from recurring templates.

    Flow per template:
    1. Resolve → household, roster, timezone
    2. Assign → explicit assignee, or next member in rotation
    3. Insert → the new chore, due per the due-date policy
    4. Advance → rotation cursor, then the template's schedule

    Steps 3 and 4 are ordered so that a failure never leaves a cursor
    pointing at a member who did not get the chore.
    """

    def __init__(
        self,
        household_storage: HouseholdStorageInterface,
        chore_storage: ChoreStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        default_timezone: str = DEFAULT_TIMEZONE,
    ):
        self._households = household_storage
        self._chores = chore_storage
        self._audit_logger = audit_logger
        self._default_timezone = default_timezone
        self._template_locks: dict[str, asyncio.Lock] = {}

    async def _load_household(self, household_id: str) -> tuple[Household, list[Member]]:
        household = await self._households.get_household(household_id)
        if household is None:
            raise NotFoundError(f"Household not found: {household_id}")
        members = await self._households.list_members(household_id)
        return household, members

    def _timezone_for(self, household: Household) -> str:
        return household.timezone or self._default_timezone

    async def _next_assignee(
        self,
        household: Household,
        members: list[Member],
        template_id: str,
    ) -> Optional[str]:
        order = build_rotation_order(members, household.chore_rotation_order)
        available = [member.id for member in members if member.is_available]
        cursor = await self._chores.get_rotation_cursor(household.id, template_id)
        return get_next_in_rotation(order, available, cursor.last_assigned_member_id)

    async def create_from_template(
        self,
        template: ChoreTemplate,
        now: Optional[datetime] = None,
        assigned_to: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ChoreCreationResult:
        """
        Create one chore from a template.

        Args:
            template: Template to instantiate
            now: Reference time (defaults to the current time)
            assigned_to: Explicit assignee overriding rotation; the cursor
                         still moves to this member
            correlation_id: Correlates events of one batch run

        Raises:
            ValidationError: Template has no household or cannot rotate
            NotFoundError: Household or explicit assignee doesn't exist
            NoEligibleMemberError: Nobody is available for rotation
            PersistenceError: The chore or cursor could not be written
        """
        now = now or utc_now()
        if not template.household_id:
            raise ValidationError("Template missing household_id")

        household, members = await self._load_household(template.household_id)
        names = {member.id: member.full_name for member in members}

        if assigned_to is not None:
            if assigned_to not in names:
                raise NotFoundError(f"Member not found in household: {assigned_to}")
            assignee = assigned_to
        elif not template.auto_assign_rotation:
            raise ValidationError("Template does not rotate; an assignee is required")
        else:
            assignee = await self._next_assignee(household, members, template.id)
            if assignee is None:
                if self._audit_logger:
                    await self._audit_logger.log_rotation_no_eligible_member(
                        household_id=household.id,
                        template_id=template.id,
                        correlation_id=correlation_id,
                    )
                raise NoEligibleMemberError(household.id, template.id)

        last_created_at = await self._chores.get_latest_chore_created_at(household.id, template.id)
        due_date = select_due_date(last_created_at, now, self._timezone_for(household))

        chore = Chore(
            household_id=household.id,
            template_id=template.id,
            name=template.name,
            description=template.description,
            assigned_to=assignee,
            created_by=household.admin_id,
            due_date=due_date,
            recurring_type=template.recurring_type,
            recurring_interval=template.recurring_interval,
            created_at=now,
        )

        try:
            chore = await self._chores.insert_chore(chore)
        except StorageError as e:
            raise PersistenceError(f"Failed to create chore: {e}") from e

        cursor = await self._chores.get_rotation_cursor(household.id, template.id)
        try:
            await self._chores.save_rotation_cursor(cursor.advance_to(assignee))
        except StorageError as e:
            logger.error(
                "rotation_cursor_not_advanced",
                household_id=household.id,
                template_id=template.id,
                chore_id=chore.id,
                error=str(e),
            )
            raise PersistenceError(f"Chore {chore.id} created but rotation not advanced: {e}") from e

        if self._audit_logger:
            await self._audit_logger.log_chore_auto_created(
                household_id=household.id,
                template_id=template.id,
                chore_id=chore.id,
                assigned_to=assignee,
                due_date=due_date,
                rotated=assigned_to is None,
                correlation_id=correlation_id,
            )

        return ChoreCreationResult(
            template_id=template.id,
            template_name=template.name,
            household_id=household.id,
            success=True,
            chore_id=chore.id,
            assigned_to=assignee,
            assigned_user_name=names.get(assignee) or None,
        )

    async def preview_next_assignee(
        self,
        household_id: str,
        template_id: str,
    ) -> Optional[tuple[str, str]]:
        """Who would receive the next chore, as (member_id, full_name). Read-only."""
        household, members = await self._load_household(household_id)
        member_id = await self._next_assignee(household, members, template_id)
        if member_id is None:
            return None
        names = {member.id: member.full_name for member in members}
        return member_id, names.get(member_id, "")

    async def run_due_templates(
        self,
        now: Optional[datetime] = None,
        template_id: Optional[str] = None,
        household_id: Optional[str] = None,
    ) -> BatchReport:
        """
        Create chores for every recurring template that is due.

        Raises:
            NotFoundError: A filter was given and matches no recurring template
            StorageError: Templates could not be fetched
        """
        now = now or utc_now()
        correlation_id = create_correlation_id()

        if template_id or household_id:
            matching = await self._chores.list_recurring_templates(template_id, household_id)
            if not matching:
                raise NotFoundError("No recurring templates found")

        templates = await self._chores.list_due_templates(now, template_id, household_id)
        if not templates:
            return BatchReport(
                message="No recurring templates due for chore creation",
                timestamp=now,
            )

        logger.info("batch_started", template_count=len(templates), correlation_id=str(correlation_id))

        results = []
        for template in templates:
            result = await self._process_template(template, now, correlation_id)
            if result is not None:
                results.append(result)

        created = sum(1 for result in results if result.success)
        failed = len(results) - created

        if self._audit_logger:
            await self._audit_logger.log_batch_completed(
                processed=len(templates),
                created=created,
                failed=failed,
                correlation_id=correlation_id,
            )

        return BatchReport(
            message=f"Processed {len(templates)} templates",
            created_count=created,
            failed_count=failed,
            results=results,
            timestamp=now,
        )

    async def _process_template(
        self,
        template: ChoreTemplate,
        now: datetime,
        correlation_id: UUID,
    ) -> Optional[ChoreCreationResult]:
        def failure(error: str, code: str) -> ChoreCreationResult:
            return ChoreCreationResult(
                template_id=template.id,
                template_name=template.name,
                household_id=template.household_id or "unknown",
                success=False,
                error=error,
                code=code,
            )

        if not template.household_id:
            return failure("Template missing household_id", "INVALID_TEMPLATE")
        if not template.recurring_type or not template.recurring_interval:
            return failure("Template missing recurring configuration", "INVALID_TEMPLATE")

        lock = self._template_locks.setdefault(template.id, asyncio.Lock())
        async with lock:
            # An overlapping run may have advanced the schedule meanwhile
            current = await self._chores.get_template(template.id)
            if current is None or not is_template_due(current.next_creation_date, now):
                logger.info("template_already_processed", template_id=template.id)
                return None
            return await self._create_and_advance(current, now, correlation_id, failure)

    async def _create_and_advance(
        self,
        template: ChoreTemplate,
        now: datetime,
        correlation_id: UUID,
        failure,
    ) -> ChoreCreationResult:
        try:
            result = await self.create_from_template(template, now=now, correlation_id=correlation_id)
        except NoEligibleMemberError as e:
            # Template stays due; the next run tries again
            return failure(str(e), "NO_AVAILABLE_USERS")
        except Exception as e:
            if isinstance(e, ValidationError):
                code = "INVALID_TEMPLATE"
            elif isinstance(e, NotFoundError):
                code = "NOT_FOUND"
            elif isinstance(e, StorageError):
                code = "PERSISTENCE_FAILED"
            else:
                code = "UNEXPECTED_ERROR"
                logger.exception("template_processing_error", template_id=template.id)

            if self._audit_logger:
                await self._audit_logger.log_template_failed(
                    household_id=template.household_id,
                    template_id=template.id,
                    error_code=code,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return failure(str(e), code)

        try:
            household = await self._households.get_household(template.household_id)
            tz = self._timezone_for(household) if household else self._default_timezone
            base = template.next_creation_date or template.recurring_start_date or now
            next_date = next_creation_after(
                base,
                template.recurring_type,
                template.recurring_interval,
                now,
                tz,
            )
            await self._chores.update_template_schedule(template.id, now, next_date)
        except (StorageError, ValidationError) as e:
            logger.error(
                "template_schedule_not_advanced",
                template_id=template.id,
                chore_id=result.chore_id,
                error=str(e),
            )
            return result.model_copy(update={
                "success": False,
                "error": f"Chore created but schedule not advanced: {e}",
                "code": "SCHEDULE_UPDATE_FAILED",
            })

        return result


@dataclass
class AppComponents:
    """Everything the HTTP layer needs, wired to one storage backend."""

    settlement_flow: SettlementFlow
    chore_flow: RecurringChoreFlow
    audit_logger: AuditLogger
    webhook_secret: Optional[str] = None
    sheets_client: Optional[GoogleSheetsClient] = None


def create_app_components(
    settings: Optional[Settings] = None,
    storage_backend: Optional[str] = None,
    storage: Optional[InMemoryStorage] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to read; defaults to get_settings()
        storage_backend: "memory" or "google_sheets"; defaults to the
                         configured backend
        storage: Pre-seeded in-memory storage (forces the memory backend)

    Returns:
        AppComponents with both flows and the audit logger
    """
    settings = settings or get_settings()
    backend = "memory" if storage is not None else (storage_backend or settings.app.storage_backend)

    sheets_client = None
    audit_storage: AuditStorageInterface
    households: HouseholdStorageInterface
    ledger: LedgerStorageInterface
    chores: ChoreStorageInterface

    if backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            sheets_storage = GoogleSheetsHouseholdStorage(sheets_client)
            households = ledger = chores = sheets_storage
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", backend=backend, error=str(e))
            sheets_client = None
            backend = "memory"

    if backend == "memory":
        memory = storage or InMemoryStorage()
        households = ledger = chores = memory
        audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)

    settlement_flow = SettlementFlow(
        household_storage=households,
        ledger_storage=ledger,
        audit_logger=audit_logger,
        netting_threshold=settings.ledger.netting_threshold,
    )

    chore_flow = RecurringChoreFlow(
        household_storage=households,
        chore_storage=chores,
        audit_logger=audit_logger,
        default_timezone=settings.scheduling.default_timezone,
    )

    return AppComponents(
        settlement_flow=settlement_flow,
        chore_flow=chore_flow,
        audit_logger=audit_logger,
        webhook_secret=settings.webhook.secret,
        sheets_client=sheets_client,
    )
