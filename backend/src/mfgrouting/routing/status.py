"""Routing status state machine for manufacturing jobs.

State Flow:
    (unrouted) → AUTO | FALLBACK | PENDING
    PENDING → AUTO | FALLBACK | PENDING (re-route) | MANUAL (assign)
    AUTO | FALLBACK → MANUAL (admin override)
    MANUAL → MANUAL (re-assignment)

PENDING is never re-entered from a routed state.
"""

from enum import Enum
from typing import Optional, List

from .exceptions import InvalidStateError


class RoutingTier(str, Enum):
    """How a job or line item got its manufacturer."""
    AUTO = "auto"
    FALLBACK = "fallback"
    MANUAL = "manual"
    PENDING = "pending"


class RoutingOperation(str, Enum):
    """Operation that produced a routing history entry."""
    ROUTE = "route"
    REROUTE = "reroute"
    ASSIGN = "assign"


# None stands for a job that has been created but not routed yet
ALLOWED_TRANSITIONS = {
    None: [RoutingTier.AUTO, RoutingTier.FALLBACK, RoutingTier.PENDING],
    RoutingTier.PENDING: [
        RoutingTier.AUTO,
        RoutingTier.FALLBACK,
        RoutingTier.PENDING,
        RoutingTier.MANUAL,
    ],
    RoutingTier.AUTO: [RoutingTier.MANUAL],
    RoutingTier.FALLBACK: [RoutingTier.MANUAL],
    RoutingTier.MANUAL: [RoutingTier.MANUAL],
}


def parse_status(value: Optional[str]) -> Optional[RoutingTier]:
    """Convert a stored routing_status column value to a RoutingTier."""
    if value is None:
        return None
    return RoutingTier(value)


def can_transition(
    current_status: Optional[RoutingTier],
    new_status: RoutingTier
) -> bool:
    """Check if a routing status transition is allowed without raising.

    Args:
        current_status: Current job status (None for unrouted jobs)
        new_status: Target status

    Returns:
        True if transition is allowed, False otherwise
    """
    allowed = ALLOWED_TRANSITIONS.get(current_status, [])
    return new_status in allowed


def validate_transition(
    current_status: Optional[RoutingTier],
    new_status: RoutingTier,
    job_id: Optional[int] = None
) -> None:
    """Validate that a routing status transition is allowed.

    Raises:
        InvalidStateError: If transition is not allowed
    """
    if not can_transition(current_status, new_status):
        current = current_status.value if current_status else "unrouted"
        allowed = [s.value for s in get_allowed_transitions(current_status)]
        raise InvalidStateError(
            f"Invalid routing transition: {current} -> {new_status.value}. "
            f"Allowed transitions from {current}: {allowed}",
            job_id=job_id,
        )


def get_allowed_transitions(status: Optional[RoutingTier]) -> List[RoutingTier]:
    """Get list of allowed transitions from a given status."""
    return ALLOWED_TRANSITIONS.get(status, [])
