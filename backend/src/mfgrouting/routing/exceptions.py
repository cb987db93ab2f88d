"""Routing error taxonomy.

Each error carries the HTTP status the API layer maps it to, so the
FastAPI exception handler stays a single function.
"""

from typing import Optional


class RoutingError(Exception):
    """Base class for routing errors surfaced to callers."""

    status_code = 500
    error_code = "routing_error"

    def __init__(self, message: str, *, job_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class NotFoundError(RoutingError):
    """Referenced job, line item, or manufacturer does not exist."""

    status_code = 404
    error_code = "not_found"


class InvalidStateError(RoutingError):
    """Operation is not valid for the job's or manufacturer's current state."""

    status_code = 409
    error_code = "invalid_state"


class ValidationError(RoutingError):
    """Malformed input, e.g. missing manufacturer id or empty reason."""

    status_code = 400
    error_code = "validation_error"


class ConsistencyError(RoutingError):
    """Job routing fields disagree with the job's latest history entry.

    Internal data-repair signal. Never retried automatically and never
    shown to end users in detail.
    """

    status_code = 500
    error_code = "consistency_error"


class RoutingUnavailableError(RoutingError):
    """The store failed even after the retry at the gateway boundary.

    No partial state change has been committed when this is raised.
    """

    status_code = 503
    error_code = "routing_unavailable"
