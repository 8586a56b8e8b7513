"""Pure computation engines: balance netting, rotation and scheduling."""

from household_ledger.engine.balances import (
    NETTING_THRESHOLD,
    apply_settlement,
    compute_member_totals,
    compute_net_balances,
    from_cents,
    to_cents,
)
from household_ledger.engine.errors import NoEligibleMemberError, ValidationError
from household_ledger.engine.rotation import (
    build_rotation_order,
    get_next_in_rotation,
    preview_rotation,
)
from household_ledger.engine.schedule import (
    DEFAULT_TIMEZONE,
    as_local,
    calculate_next_occurrence,
    end_of_day,
    is_template_due,
    next_creation_after,
    resolve_timezone,
    select_due_date,
)

__all__ = [
    # Balances
    "NETTING_THRESHOLD",
    "apply_settlement",
    "compute_member_totals",
    "compute_net_balances",
    "from_cents",
    "to_cents",
    # Errors
    "NoEligibleMemberError",
    "ValidationError",
    # Rotation
    "build_rotation_order",
    "get_next_in_rotation",
    "preview_rotation",
    # Scheduling
    "DEFAULT_TIMEZONE",
    "as_local",
    "calculate_next_occurrence",
    "end_of_day",
    "is_template_due",
    "next_creation_after",
    "resolve_timezone",
    "select_due_date",
]
