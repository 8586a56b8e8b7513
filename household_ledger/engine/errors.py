"""Errors raised by the pure engines."""

from typing import Optional


class ValidationError(Exception):
    """
    Invalid input to an engine operation.

    Always recoverable: surface the message to the caller, never retry.
    """
    pass


class NoEligibleMemberError(Exception):
    """
    Nobody in the rotation is available to take the next chore.

    Callers skip this period and leave the template due for the next run.
    """

    def __init__(self, household_id: str, template_id: Optional[str] = None):
        self.household_id = household_id
        self.template_id = template_id
        super().__init__("No available users found for assignment")
