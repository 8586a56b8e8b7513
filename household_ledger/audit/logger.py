"""
Audit Logger

DESIGN DECISION: Every balance-changing action and every automatic chore
assignment is logged. This provides:
1. A trail to answer "who paid what" and "why did I get this chore"
2. Debugging capability for the batch job
3. Correlation of all events from one webhook call

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from household_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from household_ledger.services.storage import AuditStorageInterface


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog JSON logging on top of the stdlib logging module.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog for local logging
configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("household_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_balances_computed(
        self,
        household_id: str,
        balance_count: int,
        skipped_split_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.balances_computed(
            household_id=household_id,
            balance_count=balance_count,
            skipped_split_ids=skipped_split_ids,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_settlement_rejected(
        self,
        household_id: str,
        from_member_id: str,
        to_member_id: str,
        amount: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a payment that failed validation."""
        event = AuditEventBuilder.settlement_rejected(
            household_id=household_id,
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            amount=amount,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_settlement_applied(
        self,
        household_id: str,
        settlement_id: UUID,
        from_member_id: str,
        to_member_id: str,
        amount: str,
        settled_split_ids: list[str],
        partial_split_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a fully persisted settlement."""
        event = AuditEventBuilder.settlement_applied(
            household_id=household_id,
            settlement_id=settlement_id,
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            amount=amount,
            settled_split_ids=settled_split_ids,
            partial_split_ids=partial_split_ids,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_settlement_partially_persisted(
        self,
        household_id: str,
        settlement_id: UUID,
        applied_split_ids: list[str],
        failed_split_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.settlement_partially_persisted(
            household_id=household_id,
            settlement_id=settlement_id,
            applied_split_ids=applied_split_ids,
            failed_split_id=failed_split_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_chore_auto_created(
        self,
        household_id: str,
        template_id: str,
        chore_id: str,
        assigned_to: str,
        due_date: datetime,
        rotated: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a chore created from a recurring template."""
        event = AuditEventBuilder.chore_auto_created(
            household_id=household_id,
            template_id=template_id,
            chore_id=chore_id,
            assigned_to=assigned_to,
            due_date=due_date,
            rotated=rotated,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rotation_no_eligible_member(
        self,
        household_id: str,
        template_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.rotation_no_eligible_member(
            household_id=household_id,
            template_id=template_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_template_failed(
        self,
        household_id: str,
        template_id: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.template_failed(
            household_id=household_id,
            template_id=template_id,
            error_code=error_code,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_batch_completed(
        self,
        processed: int,
        created: int,
        failed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the summary of one batch run."""
        event = AuditEventBuilder.batch_completed(
            processed=processed,
            created=created,
            failed=failed,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new action (a settlement, a batch run).
    Pass it through all subsequent operations.
    """
    return uuid4()
