"""Manufacturer routing: matcher, orchestrator and admin gateway."""

from .exceptions import (
    RoutingError,
    NotFoundError,
    InvalidStateError,
    ValidationError,
    ConsistencyError,
    RoutingUnavailableError,
)
from .ports import (
    MatcherPort,
    MatchResult,
    MatchTier,
    ManufacturerCandidate,
    LineItemRequirements,
)
from .matcher import CapabilityMatcher, match
from .status import RoutingTier, RoutingOperation
from .repository import RoutingStore
from .orchestrator import RoutingOrchestrator, RoutingOutcome, LineDecision
from .gateway import RoutingAdminGateway, RoutingStats, PendingJob, HistoryPage

__all__ = [
    "RoutingError",
    "NotFoundError",
    "InvalidStateError",
    "ValidationError",
    "ConsistencyError",
    "RoutingUnavailableError",
    "MatcherPort",
    "MatchResult",
    "MatchTier",
    "ManufacturerCandidate",
    "LineItemRequirements",
    "CapabilityMatcher",
    "match",
    "RoutingTier",
    "RoutingOperation",
    "RoutingStore",
    "RoutingOrchestrator",
    "RoutingOutcome",
    "LineDecision",
    "RoutingAdminGateway",
    "RoutingStats",
    "PendingJob",
    "HistoryPage",
]
