"""
Audit Models for Household Ledger

Every settlement and every automatic chore assignment is logged for
audit purposes. When members disagree about who paid what, or why a chore
landed on someone, the audit trail is the answer.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from household_ledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Balances
    BALANCES_COMPUTED = "balances_computed"

    # Settlement
    SETTLEMENT_REJECTED = "settlement_rejected"
    SETTLEMENT_APPLIED = "settlement_applied"
    SETTLEMENT_PARTIALLY_PERSISTED = "settlement_partially_persisted"

    # Recurring chores
    CHORE_AUTO_CREATED = "chore_auto_created"
    ROTATION_NO_ELIGIBLE_MEMBER = "rotation_no_eligible_member"
    TEMPLATE_FAILED = "template_failed"
    BATCH_COMPLETED = "batch_completed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'settlement', 'chore', 'template')"
    )
    entity_id: Optional[str] = None
    household_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one batch run)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "household_id": self.household_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         household_id, correlation_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.household_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.settlement_applied(record, settled, partial)
        event = AuditEventBuilder.chore_auto_created(chore, correlation_id)
    """

    @staticmethod
    def balances_computed(
        household_id: str,
        balance_count: int,
        skipped_split_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_COMPUTED,
            severity=AuditSeverity.WARNING if skipped_split_ids else AuditSeverity.INFO,
            entity_type="household",
            entity_id=household_id,
            household_id=household_id,
            correlation_id=correlation_id,
            description=f"Computed {balance_count} net balances",
            details={
                "balance_count": balance_count,
                "skipped_split_ids": skipped_split_ids,
            },
        )

    @staticmethod
    def settlement_rejected(
        household_id: str,
        from_member_id: str,
        to_member_id: str,
        amount: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="balance",
            entity_id=f"{from_member_id}->{to_member_id}",
            household_id=household_id,
            correlation_id=correlation_id,
            description=f"Settlement rejected: {reason}",
            details={
                "from_member_id": from_member_id,
                "to_member_id": to_member_id,
                "amount": amount,
            },
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def settlement_applied(
        household_id: str,
        settlement_id: UUID,
        from_member_id: str,
        to_member_id: str,
        amount: str,
        settled_split_ids: list[str],
        partial_split_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_APPLIED,
            entity_type="settlement",
            entity_id=str(settlement_id),
            household_id=household_id,
            correlation_id=correlation_id,
            description=f"Settlement of {amount} from {from_member_id} to {to_member_id}",
            details={
                "amount": amount,
                "settled_split_ids": settled_split_ids,
                "partial_split_ids": partial_split_ids,
            },
            is_user_action=True,
        )

    @staticmethod
    def settlement_partially_persisted(
        household_id: str,
        settlement_id: UUID,
        applied_split_ids: list[str],
        failed_split_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_PARTIALLY_PERSISTED,
            severity=AuditSeverity.ERROR,
            entity_type="settlement",
            entity_id=str(settlement_id),
            household_id=household_id,
            correlation_id=correlation_id,
            description="Settlement writes failed partway; balances need reconciling",
            details={
                "applied_split_ids": applied_split_ids,
                "failed_split_id": failed_split_id,
            },
            error_code="PERSISTENCE_FAILED",
            error_message=error_message,
        )

    @staticmethod
    def chore_auto_created(
        household_id: str,
        template_id: str,
        chore_id: str,
        assigned_to: str,
        due_date: datetime,
        rotated: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHORE_AUTO_CREATED,
            entity_type="chore",
            entity_id=chore_id,
            household_id=household_id,
            correlation_id=correlation_id,
            description=f"Chore created from template {template_id} for {assigned_to}",
            details={
                "template_id": template_id,
                "assigned_to": assigned_to,
                "due_date": due_date.isoformat(),
                "assigned_by_rotation": rotated,
            },
        )

    @staticmethod
    def rotation_no_eligible_member(
        household_id: str,
        template_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROTATION_NO_ELIGIBLE_MEMBER,
            severity=AuditSeverity.WARNING,
            entity_type="template",
            entity_id=template_id,
            household_id=household_id,
            correlation_id=correlation_id,
            description="No available member to receive the next chore",
            error_code="NO_AVAILABLE_USERS",
        )

    @staticmethod
    def template_failed(
        household_id: str,
        template_id: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="template",
            entity_id=template_id,
            household_id=household_id,
            correlation_id=correlation_id,
            description=f"Recurring template failed: {error_code}",
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def batch_completed(
        processed: int,
        created: int,
        failed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"Processed {processed} templates: {created} created, {failed} failed",
            details={
                "processed": processed,
                "created_count": created,
                "failed_count": failed,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
