"""Tests for balance netting and settlement decomposition."""

import random
from collections import defaultdict
from decimal import Decimal

import pytest

from conftest import make_split
from household_ledger.engine import (
    ValidationError,
    apply_settlement,
    compute_member_totals,
    compute_net_balances,
    from_cents,
    to_cents,
)
from household_ledger.models import BalanceDirection, Member, NetBalance


class TestCents:
    def test_rounds_half_up(self):
        assert to_cents("10.005") == 1001
        assert to_cents(Decimal("0.004")) == 0

    def test_round_trip(self):
        assert from_cents(to_cents("12.30")) == Decimal("12.30")

    def test_rejects_garbage(self):
        with pytest.raises(ValidationError):
            to_cents("abc")
        with pytest.raises(ValidationError):
            to_cents(float("nan"))


class TestComputeNetBalances:
    """Tests for compute_net_balances."""

    def test_even_split_of_one_expense(self, members):
        """100 paid by user-1, split 50/50: user-2 owes user-1 50."""
        splits = [
            make_split("user-1", "user-1", "50", expense_id="e1"),
            make_split("user-2", "user-1", "50", expense_id="e1"),
        ]

        balances = compute_net_balances(splits, members)

        assert len(balances) == 1
        balance = balances[0]
        assert balance.from_member_id == "user-2"
        assert balance.to_member_id == "user-1"
        assert balance.amount == Decimal("50.00")
        assert balance.from_member_name == "Binh"
        assert balance.to_member_name == "An"
        assert [s.id for s in balance.contributing_splits] == [splits[1].id]

    def test_mutual_debts_cancel(self, members):
        forward = make_split("user-2", "user-1", "50")
        backward = make_split("user-1", "user-2", "20")

        balances = compute_net_balances([forward, backward], members)

        assert len(balances) == 1
        assert balances[0].from_member_id == "user-2"
        assert balances[0].amount == Decimal("30.00")
        # Only the net ower's direction contributes
        assert balances[0].contributing_splits == [forward]

    def test_exact_tie_produces_no_balance(self, members):
        splits = [make_split("user-2", "user-1", "25"), make_split("user-1", "user-2", "25")]
        assert compute_net_balances(splits, members) == []

    def test_threshold_is_exclusive(self, members):
        at_threshold = [make_split("user-2", "user-1", "0.01")]
        above = [make_split("user-2", "user-1", "0.02")]

        assert compute_net_balances(at_threshold, members) == []
        assert compute_net_balances(above, members)[0].amount == Decimal("0.02")

    def test_settled_and_self_splits_ignored(self, members):
        splits = [
            make_split("user-2", "user-1", "40", is_settled=True),
            make_split("user-1", "user-1", "40"),
        ]
        assert compute_net_balances(splits, members) == []

    def test_unknown_member_is_skipped(self, members):
        splits = [
            make_split("ghost", "user-1", "99"),
            make_split("user-3", "user-1", "10"),
        ]

        balances = compute_net_balances(splits, members)

        assert [(b.from_member_id, b.amount) for b in balances] == [("user-3", Decimal("10.00"))]

    def test_sorted_largest_first(self, members):
        splits = [
            make_split("user-2", "user-1", "10"),
            make_split("user-3", "user-1", "70"),
            make_split("user-3", "user-2", "30"),
        ]

        amounts = [b.amount for b in compute_net_balances(splits, members)]

        assert amounts == sorted(amounts, reverse=True)
        assert amounts[0] == Decimal("70.00")

    def test_contributing_splits_keep_input_order(self, members):
        splits = [
            make_split("user-2", "user-1", "5"),
            make_split("user-2", "user-1", "15"),
            make_split("user-2", "user-1", "10"),
        ]
        balance = compute_net_balances(splits, members)[0]
        assert balance.contributing_splits == splits

    def test_no_floating_point_drift(self, members):
        splits = [make_split("user-2", "user-1", "0.1") for _ in range(3)]
        assert compute_net_balances(splits, members)[0].amount == Decimal("0.30")


class TestApplySettlement:
    """Tests for apply_settlement."""

    def _balance(self, *amounts) -> NetBalance:
        splits = [make_split("user-2", "user-1", amount) for amount in amounts]
        total = sum(Decimal(str(a)) for a in amounts)
        return NetBalance(
            from_member_id="user-2",
            to_member_id="user-1",
            amount=total,
            contributing_splits=splits,
        )

    def test_partial_payment_reduces_split(self):
        """Settling 20 of a 50 balance leaves 30 on the split."""
        balance = self._balance("50")

        plan = apply_settlement(balance, Decimal("20"), household_id="house-1")

        assert len(plan.updated_splits) == 1
        update = plan.updated_splits[0]
        assert update.settled is False
        assert update.new_amount_owed == Decimal("30.00")
        assert update.expected_amount_owed == Decimal("50")
        assert plan.settlement_record.amount == Decimal("20.00")
        assert plan.settlement_record.household_id == "house-1"

    def test_largest_split_first(self):
        balance = self._balance("10", "30", "20")
        small, large, middle = balance.contributing_splits

        plan = apply_settlement(balance, "35")

        assert [u.split_id for u in plan.updated_splits] == [large.id, middle.id]
        assert plan.updated_splits[0].settled is True
        assert plan.updated_splits[1].new_amount_owed == Decimal("15.00")
        assert small.id not in {u.split_id for u in plan.updated_splits}

    def test_exact_match_settles_split(self):
        balance = self._balance("30", "20")

        plan = apply_settlement(balance, "30")

        assert len(plan.updated_splits) == 1
        assert plan.updated_splits[0].settled is True

    def test_full_payment_settles_everything(self):
        balance = self._balance("12.50", "7.25", "30")

        plan = apply_settlement(balance, balance.amount)

        assert plan.settled_count == 3
        assert all(u.settled for u in plan.updated_splits)

    def test_equal_splits_keep_input_order(self):
        balance = self._balance("10", "10", "10")
        first = balance.contributing_splits[0]

        plan = apply_settlement(balance, "5")

        assert plan.updated_splits[0].split_id == first.id

    @pytest.mark.parametrize("amount", ["0", "-5", "0.001"])
    def test_rejects_non_positive(self, amount):
        with pytest.raises(ValidationError, match="greater than zero"):
            apply_settlement(self._balance("50"), amount)

    def test_rejects_overpayment(self):
        with pytest.raises(ValidationError, match="exceeds balance"):
            apply_settlement(self._balance("50"), "60")

    def test_rejects_payment_beyond_contributing_splits(self):
        """A stale balance larger than its splits cannot record the full payment."""
        balance = NetBalance(
            from_member_id="user-2",
            to_member_id="user-1",
            amount=Decimal("100.00"),
            contributing_splits=[make_split("user-2", "user-1", "50")],
        )

        with pytest.raises(ValidationError, match="outstanding splits"):
            apply_settlement(balance, "80")

        plan = apply_settlement(balance, "50")
        assert plan.settlement_record.amount == Decimal("50.00")
        assert plan.updated_splits[0].settled is True

    def test_note_is_trimmed(self):
        balance = self._balance("50")
        assert apply_settlement(balance, "10", "  cash  ").settlement_record.note == "cash"
        assert apply_settlement(balance, "10", "   ").settlement_record.note is None


class TestMemberTotals:
    def test_positions(self, members):
        splits = [
            make_split("user-2", "user-1", "50"),
            make_split("user-3", "user-1", "20"),
            make_split("user-1", "user-3", "5"),
        ]

        totals = {t.member_id: t for t in compute_member_totals(splits, members)}

        assert totals["user-1"].direction == BalanceDirection.OWED
        assert totals["user-1"].amount == Decimal("65.00")
        assert totals["user-2"].direction == BalanceDirection.OWES
        assert totals["user-2"].amount == Decimal("50.00")
        assert totals["user-3"].amount == Decimal("15.00")

    def test_zero_positions_omitted(self, members):
        splits = [make_split("user-2", "user-1", "10"), make_split("user-1", "user-2", "10")]
        assert compute_member_totals(splits, members) == []


class TestNettingProperties:
    """Randomized checks over seeded inputs."""

    ROSTER = [Member(id=f"m{i}", full_name=f"Member {i}") for i in range(4)]

    def _random_splits(self, rng: random.Random, count: int):
        ids = [m.id for m in self.ROSTER]
        splits = []
        for _ in range(count):
            ower, payer = rng.sample(ids, 2)
            splits.append(make_split(ower, payer, from_cents(rng.randint(1, 50000))))
        return splits

    @pytest.mark.parametrize("seed", range(25))
    def test_net_amount_matches_pair_sums(self, seed):
        rng = random.Random(seed)
        splits = self._random_splits(rng, rng.randint(1, 30))

        balances = compute_net_balances(splits, self.ROSTER)

        sums = defaultdict(int)
        for split in splits:
            sums[(split.ower_id, split.payer_id)] += to_cents(split.amount_owed)

        seen_pairs = set()
        for balance in balances:
            pair = frozenset((balance.from_member_id, balance.to_member_id))
            assert pair not in seen_pairs
            seen_pairs.add(pair)

            forward = sums[(balance.from_member_id, balance.to_member_id)]
            reverse = sums[(balance.to_member_id, balance.from_member_id)]
            assert forward > reverse
            assert to_cents(balance.amount) == forward - reverse
            assert all(
                s.ower_id == balance.from_member_id and s.payer_id == balance.to_member_id
                for s in balance.contributing_splits
            )

        for ower, payer in sums:
            net = sums[(ower, payer)] - sums.get((payer, ower), 0)
            if net > 1:
                assert frozenset((ower, payer)) in seen_pairs

    @pytest.mark.parametrize("seed", range(25))
    def test_settlement_conserves_amount(self, seed):
        rng = random.Random(seed)
        splits = [
            make_split("m1", "m0", from_cents(rng.randint(2, 20000)))
            for _ in range(rng.randint(1, 10))
        ]
        balance = compute_net_balances(splits, self.ROSTER)[0]

        pay_cents = rng.randint(1, to_cents(balance.amount))
        plan = apply_settlement(balance, from_cents(pay_cents))

        reduced = 0
        for update in plan.updated_splits:
            expected = to_cents(update.expected_amount_owed)
            if update.settled:
                reduced += expected
            else:
                assert 0 < to_cents(update.new_amount_owed) < expected
                reduced += expected - to_cents(update.new_amount_owed)
        assert reduced == pay_cents
        assert sum(1 for u in plan.updated_splits if not u.settled) <= 1

    @pytest.mark.parametrize("seed", range(10))
    def test_full_settlement_clears_one_directional_balance(self, seed):
        rng = random.Random(seed)
        splits = [
            make_split("m2", "m3", from_cents(rng.randint(100, 20000)))
            for _ in range(rng.randint(1, 8))
        ]
        balance = compute_net_balances(splits, self.ROSTER)[0]

        plan = apply_settlement(balance, balance.amount)

        assert {u.split_id for u in plan.updated_splits} == {s.id for s in splits}
        assert all(u.settled for u in plan.updated_splits)
