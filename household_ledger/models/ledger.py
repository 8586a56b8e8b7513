"""
Ledger Data Models

These models define the shapes flowing in and out of the balance engine:
1. Members and households read from storage
2. Expense splits (one row per expense and owing member)
3. Derived net balances between two members
4. Settlement plans and the append-only payment notes they produce

DESIGN DECISION: The split/expense join is flattened at the storage
boundary. ExpenseSplitRecord always carries payer_id, so the engine never
has to dig through nested expense objects.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


# =============================================================================
# HOUSEHOLD
# =============================================================================

class Member(BaseModel):
    """
    A household participant.

    Rosters are returned by storage in creation order, which is the
    natural rotation order when a household has no custom order.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    full_name: str = Field(default="", max_length=200)
    household_id: Optional[str] = None
    is_available: bool = Field(
        default=True,
        description="Eligible to receive rotated chores"
    )
    created_at: Optional[datetime] = None


class Household(BaseModel):
    """Household aggregate settings relevant to the engines."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str = Field(default="", max_length=200)
    admin_id: Optional[str] = None
    timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone name; falls back to the configured default"
    )
    chore_rotation_order: list[str] = Field(
        default_factory=list,
        description="Custom rotation order of member ids (empty = creation order)"
    )


# =============================================================================
# EXPENSE SPLITS AND BALANCES
# =============================================================================

class ExpenseSplitRecord(BaseModel):
    """
    One split of one expense: what a single member owes the payer.

    amount_owed is reduced in place by partial settlements;
    is_settled flips to True once the split is fully paid.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    expense_id: str = Field(..., min_length=1)
    payer_id: str = Field(..., min_length=1)
    ower_id: str = Field(..., min_length=1)
    amount_owed: Decimal = Field(..., ge=0)
    is_settled: bool = False
    expense_description: Optional[str] = None
    created_at: Optional[datetime] = None


class NetBalance(BaseModel):
    """
    Net amount one member owes another after mutual debts cancel out.

    contributing_splits holds only the splits of the net ower's
    direction, in the order they were supplied to the engine.
    """

    from_member_id: str
    to_member_id: str
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    contributing_splits: list[ExpenseSplitRecord] = Field(default_factory=list)
    from_member_name: Optional[str] = None
    to_member_name: Optional[str] = None

    @model_validator(mode='after')
    def validate_direction(self) -> 'NetBalance':
        if self.from_member_id == self.to_member_id:
            raise ValueError("A balance cannot point from a member to themselves")
        return self


class BalanceDirection(str, Enum):
    """Whether a member is, overall, owed money or owes money."""
    OWED = "owed"
    OWES = "owes"


class MemberBalance(BaseModel):
    """A member's overall position across all unsettled splits."""

    member_id: str
    member_name: Optional[str] = None
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    direction: BalanceDirection


# =============================================================================
# SETTLEMENT
# =============================================================================

class SplitUpdate(BaseModel):
    """
    A single row change produced by a settlement.

    expected_amount_owed is the amount the decomposition was computed
    from. Storage applies the change only if the row still holds it.
    """
    model_config = ConfigDict(frozen=True)

    split_id: str
    expected_amount_owed: Decimal = Field(..., ge=0)
    settled: bool = False
    new_amount_owed: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode='after')
    def validate_change(self) -> 'SplitUpdate':
        if self.settled == (self.new_amount_owed is not None):
            raise ValueError("A split update either settles the split or sets a new amount")
        return self


class SettlementRecord(BaseModel):
    """
    Payment note: an immutable log entry written once per settlement.

    Never updated or deleted.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    household_id: Optional[str] = None
    from_member_id: str
    to_member_id: str
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    note: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utc_now)


class SettlementPlan(BaseModel):
    """Everything a caller must persist to apply one payment."""

    updated_splits: list[SplitUpdate] = Field(default_factory=list)
    settlement_record: SettlementRecord

    @property
    def settled_count(self) -> int:
        return sum(1 for update in self.updated_splits if update.settled)
