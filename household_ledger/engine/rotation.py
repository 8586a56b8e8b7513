"""
Chore Rotation (strict round-robin)

The cursor (last assignee per template) lives in storage. These functions
only compute the next candidate from it; they never move it. Calling them
twice with the same inputs gives the same answer, so a retried webhook
picks the same member as long as the cursor has not been advanced yet.
"""

from typing import Collection, Optional, Sequence

from household_ledger.engine.errors import ValidationError
from household_ledger.models.ledger import Member


def _check_unique(ordered_member_ids: Sequence[str]) -> None:
    if len(set(ordered_member_ids)) != len(ordered_member_ids):
        raise ValidationError("Rotation order contains duplicate member ids")


def get_next_in_rotation(
    ordered_member_ids: Sequence[str],
    available_member_ids: Collection[str],
    last_assigned_id: Optional[str],
) -> Optional[str]:
    """
    Pick the member who receives the next chore.

    Args:
        ordered_member_ids: Rotation order, possibly including members who
                            are currently unavailable
        available_member_ids: Members eligible right now
        last_assigned_id: Cursor value, or None if unset

    Returns:
        The next eligible member after the cursor (wrapping around), the
        first eligible member if the cursor is unset or not eligible, or
        None when nobody is eligible.
    """
    _check_unique(ordered_member_ids)
    available = set(available_member_ids)
    eligible = [member_id for member_id in ordered_member_ids if member_id in available]

    if not eligible:
        return None

    if last_assigned_id is None or last_assigned_id not in eligible:
        return eligible[0]

    index = eligible.index(last_assigned_id)
    return eligible[(index + 1) % len(eligible)]


def build_rotation_order(
    members: Sequence[Member],
    custom_order: Optional[Sequence[str]] = None,
) -> list[str]:
    """
    Resolve a household's rotation order.

    Members listed in custom_order come first, in that order. Members the
    custom order does not mention follow in roster (creation) order. Ids in
    custom_order that are not on the roster are dropped.
    """
    natural = [member.id for member in members]
    if not custom_order:
        return natural

    on_roster = set(natural)
    listed: list[str] = []
    for member_id in custom_order:
        if member_id in on_roster and member_id not in listed:
            listed.append(member_id)

    return listed + [member_id for member_id in natural if member_id not in listed]


def preview_rotation(
    ordered_member_ids: Sequence[str],
    available_member_ids: Collection[str],
    last_assigned_id: Optional[str],
    periods: int,
) -> list[str]:
    """
    The next `periods` assignees, feeding each pick back as the cursor.

    Returns an empty list when nobody is eligible.
    """
    if periods < 0:
        raise ValidationError("Number of periods cannot be negative")

    upcoming: list[str] = []
    cursor = last_assigned_id
    for _ in range(periods):
        cursor = get_next_in_rotation(ordered_member_ids, available_member_ids, cursor)
        if cursor is None:
            return []
        upcoming.append(cursor)
    return upcoming
