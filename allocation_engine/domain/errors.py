"""Integrity errors raised by the allocation engine.

Over-allocation is a policy outcome, not an error; it is returned as an
`OverAllocationBlocked` value from the service layer.
"""

from __future__ import annotations


class AllocationError(Exception):
    """Base exception for allocation data integrity failures."""

    kind = "allocation_error"


class AllocationNotFoundError(AllocationError):
    """Raised when a referenced allocation or employee id does not resolve."""

    kind = "not_found"


class InvalidRangeError(AllocationError):
    """Raised when end_date precedes start_date or hours are out of bounds."""

    kind = "invalid_range"


class ReferenceViolationError(AllocationError):
    """Raised when an employee or project reference is missing or inactive."""

    kind = "reference_violation"


class InvalidTransitionError(AllocationError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    kind = "invalid_transition"
