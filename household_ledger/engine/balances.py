"""
Balance Netting and Settlement Decomposition

DESIGN DECISION: Everything here is a pure function.
The caller loads unsettled splits and the roster, calls the engine,
and persists whatever the engine returns. No storage access, no clock
reads (except a default timestamp on the settlement record).

All arithmetic runs on integer cents. Amounts are converted on the way in
and rounded back to 2-decimal Decimals on the way out, so repeated partial
settlements can never drift.
"""

from collections import defaultdict
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence, Union

import structlog

from household_ledger.engine.errors import ValidationError
from household_ledger.models.ledger import (
    BalanceDirection,
    ExpenseSplitRecord,
    Member,
    MemberBalance,
    NetBalance,
    SettlementPlan,
    SettlementRecord,
    SplitUpdate,
    utc_now,
)

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")

# Net amounts at or below this are treated as noise and not emitted.
NETTING_THRESHOLD = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


def to_cents(amount: Amount) -> int:
    """Convert an amount to integer cents, rounding half up."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError(f"Not a valid amount: {amount!r}")
    if not value.is_finite():
        raise ValidationError(f"Not a valid amount: {amount!r}")
    return int(value.quantize(CENT, rounding=ROUND_HALF_UP) * 100)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a 2-decimal amount."""
    return (Decimal(cents) / 100).quantize(CENT)


def compute_net_balances(
    splits: Sequence[ExpenseSplitRecord],
    members: Sequence[Member],
    threshold: Decimal = NETTING_THRESHOLD,
) -> list[NetBalance]:
    """
    Net per-expense debts down to at most one balance per member pair.

    Args:
        splits: Unsettled splits for one household, in a stable order
                (e.g. most recent first). That order is preserved in each
                balance's contributing_splits.
        members: Household roster, used to resolve names. Splits that
                 reference a member missing from the roster are skipped.
        threshold: Net amounts must exceed this to be emitted.

    Returns:
        Balances sorted by amount, largest first.
    """
    roster = {member.id: member for member in members}
    threshold_cents = to_cents(threshold)

    totals: dict[tuple[str, str], int] = defaultdict(int)
    by_pair: dict[tuple[str, str], list[ExpenseSplitRecord]] = defaultdict(list)

    for split in splits:
        if split.is_settled or split.ower_id == split.payer_id:
            continue

        missing = [
            member_id
            for member_id in (split.ower_id, split.payer_id)
            if member_id not in roster
        ]
        if missing:
            logger.warning(
                "split_skipped_unknown_member",
                split_id=split.id,
                expense_id=split.expense_id,
                missing_member_ids=missing,
            )
            continue

        pair = (split.ower_id, split.payer_id)
        totals[pair] += to_cents(split.amount_owed)
        by_pair[pair].append(split)

    balances: list[NetBalance] = []
    seen: set[frozenset[str]] = set()

    for ower_id, payer_id in list(totals):
        key = frozenset((ower_id, payer_id))
        if key in seen:
            continue
        seen.add(key)

        forward = totals[(ower_id, payer_id)]
        reverse = totals.get((payer_id, ower_id), 0)
        if forward == reverse:
            continue

        if forward > reverse:
            debtor, creditor = ower_id, payer_id
        else:
            debtor, creditor = payer_id, ower_id

        net_cents = abs(forward - reverse)
        if net_cents <= threshold_cents:
            continue

        balances.append(NetBalance(
            from_member_id=debtor,
            to_member_id=creditor,
            amount=from_cents(net_cents),
            contributing_splits=list(by_pair[(debtor, creditor)]),
            from_member_name=roster[debtor].full_name or None,
            to_member_name=roster[creditor].full_name or None,
        ))

    balances.sort(key=lambda balance: balance.amount, reverse=True)
    return balances


def compute_member_totals(
    splits: Sequence[ExpenseSplitRecord],
    members: Sequence[Member],
) -> list[MemberBalance]:
    """
    Overall position of each member across all unsettled splits.

    The ower of a split is debited and the payer credited. Members whose
    position rounds to zero are omitted.
    """
    roster = {member.id: member for member in members}
    positions: dict[str, int] = {member.id: 0 for member in members}

    for split in splits:
        if split.is_settled or split.ower_id == split.payer_id:
            continue
        if split.ower_id not in roster or split.payer_id not in roster:
            logger.warning("split_skipped_unknown_member", split_id=split.id)
            continue
        cents = to_cents(split.amount_owed)
        positions[split.ower_id] -= cents
        positions[split.payer_id] += cents

    totals = [
        MemberBalance(
            member_id=member_id,
            member_name=roster[member_id].full_name or None,
            amount=from_cents(abs(cents)),
            direction=BalanceDirection.OWED if cents > 0 else BalanceDirection.OWES,
        )
        for member_id, cents in positions.items()
        if cents != 0
    ]
    totals.sort(key=lambda total: total.amount, reverse=True)
    return totals


def apply_settlement(
    balance: NetBalance,
    amount: Amount,
    note: Optional[str] = None,
    *,
    household_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SettlementPlan:
    """
    Decompose a payment into per-split updates, largest split first.

    Walks the contributing splits by amount_owed descending. A split the
    remaining payment fully covers (including an exact match) is marked
    settled; the first split it does not cover is reduced by what is left,
    and the walk stops.

    Raises:
        ValidationError: amount is not positive, exceeds the balance, or
            exceeds what the contributing splits still owe.
    """
    amount_cents = to_cents(amount)
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    if amount_cents > to_cents(balance.amount):
        raise ValidationError("Payment amount exceeds balance")

    ordered = sorted(
        balance.contributing_splits,
        key=lambda split: to_cents(split.amount_owed),
        reverse=True,
    )

    remaining = amount_cents
    updates: list[SplitUpdate] = []

    for split in ordered:
        if remaining == 0:
            break

        owed = to_cents(split.amount_owed)
        if remaining >= owed:
            updates.append(SplitUpdate(
                split_id=split.id,
                expected_amount_owed=split.amount_owed,
                settled=True,
            ))
            remaining -= owed
        else:
            updates.append(SplitUpdate(
                split_id=split.id,
                expected_amount_owed=split.amount_owed,
                new_amount_owed=from_cents(owed - remaining),
            ))
            remaining = 0

    if remaining != 0:
        raise ValidationError("Payment amount exceeds the outstanding splits")

    record = SettlementRecord(
        household_id=household_id,
        from_member_id=balance.from_member_id,
        to_member_id=balance.to_member_id,
        amount=from_cents(amount_cents),
        note=note.strip() if note and note.strip() else None,
        created_at=now or utc_now(),
    )

    return SettlementPlan(updated_splits=updates, settlement_record=record)
