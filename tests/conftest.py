"""Shared fixtures and builders for the test suite."""

from datetime import datetime, timezone
from decimal import Decimal
from itertools import count

import pytest

from household_ledger.models import (
    ChoreTemplate,
    ExpenseSplitRecord,
    Household,
    Member,
    RecurrenceUnit,
)
from household_ledger.services.storage import InMemoryAuditStorage, InMemoryStorage

_split_ids = count(1)


def make_split(ower_id: str, payer_id: str, amount, expense_id: str = None, **kwargs) -> ExpenseSplitRecord:
    """Build a split with a unique id."""
    n = next(_split_ids)
    return ExpenseSplitRecord(
        id=kwargs.pop("id", f"split-{n}"),
        expense_id=expense_id or f"expense-{n}",
        payer_id=payer_id,
        ower_id=ower_id,
        amount_owed=Decimal(str(amount)),
        **kwargs,
    )


@pytest.fixture
def members() -> list[Member]:
    return [
        Member(id="user-1", full_name="An"),
        Member(id="user-2", full_name="Binh"),
        Member(id="user-3", full_name="Chi"),
    ]


@pytest.fixture
def household() -> Household:
    return Household(id="house-1", name="Flat 4B", admin_id="user-1", timezone="Asia/Ho_Chi_Minh")


@pytest.fixture
def storage(household, members) -> InMemoryStorage:
    store = InMemoryStorage()
    store.add_household(household, members)
    return store


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def template() -> ChoreTemplate:
    return ChoreTemplate(
        id="tmpl-1",
        household_id="house-1",
        name="Take out trash",
        is_recurring=True,
        recurring_type=RecurrenceUnit.DAILY,
        recurring_interval=1,
    )


@pytest.fixture
def now() -> datetime:
    # 2024-03-15 10:00 in Ho Chi Minh City
    return datetime(2024, 3, 15, 3, 0, tzinfo=timezone.utc)
