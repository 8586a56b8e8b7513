"""
Chore Scheduling Models

Recurring templates, the per-template rotation cursor, the chores
created from them, and the batch report returned by the webhook.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from household_ledger.models.ledger import utc_now


class RecurrenceUnit(str, Enum):
    """How often a recurring template produces a chore."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ChoreStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class ChoreTemplate(BaseModel):
    """
    A chore definition that can be instantiated repeatedly.

    Recurring templates must carry both a recurrence unit and an interval.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    household_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    is_recurring: bool = False
    recurring_type: Optional[RecurrenceUnit] = None
    recurring_interval: Optional[int] = Field(default=None, ge=1, le=365)
    recurring_start_date: Optional[datetime] = None
    last_created_at: Optional[datetime] = None
    next_creation_date: Optional[datetime] = None
    auto_assign_rotation: bool = True

    @model_validator(mode='after')
    def validate_recurrence(self) -> 'ChoreTemplate':
        if self.is_recurring and (
            self.recurring_type is None or self.recurring_interval is None
        ):
            raise ValueError(
                "Recurring type and interval are required for recurring templates"
            )
        return self


class RotationCursor(BaseModel):
    """
    Per (household, template) pointer to the last assignee.

    last_assigned_member_id of None is the "unset" state. The scheduler
    never mutates a cursor; the flow persists advance_to(...) only after
    the new chore has been written.
    """
    model_config = ConfigDict(frozen=True)

    household_id: str
    template_id: str
    last_assigned_member_id: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_set(self) -> bool:
        return self.last_assigned_member_id is not None

    def advance_to(self, member_id: str) -> 'RotationCursor':
        return RotationCursor(
            household_id=self.household_id,
            template_id=self.template_id,
            last_assigned_member_id=member_id,
        )


class Chore(BaseModel):
    """A concrete chore assigned to one member."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    household_id: str
    template_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    assigned_to: str
    created_by: Optional[str] = None
    due_date: datetime
    recurring_type: Optional[RecurrenceUnit] = None
    recurring_interval: Optional[int] = Field(default=None, ge=1, le=365)
    status: ChoreStatus = ChoreStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)


class ChoreCreationResult(BaseModel):
    """Outcome of processing one template in a batch run."""

    template_id: str
    template_name: str
    household_id: str
    success: bool
    chore_id: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_user_name: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None


class BatchReport(BaseModel):
    """
    JSON summary returned by the auto-create webhook.

    success reports that the batch ran, not that every template succeeded.
    """

    success: bool = True
    message: str
    created_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    results: list[ChoreCreationResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
