"""Routing ports and value types.

The matcher works on these plain dataclasses rather than ORM rows so it
stays a pure function of its inputs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, FrozenSet, Optional, Sequence


def normalize_capabilities(tags: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Normalize capability tags for comparison (trimmed, lower-case).

    Raises:
        TypeError: tags is a bare string or holds non-string entries
    """
    if isinstance(tags, str):
        raise TypeError(f"Capability tags must be a list of strings, got string {tags!r}")
    if not tags:
        return frozenset()
    if not all(isinstance(tag, str) for tag in tags):
        raise TypeError("Capability tags must be a list of strings")
    return frozenset(tag.strip().lower() for tag in tags if tag.strip())


class MatchTier(str, Enum):
    """Outcome class of a single line item match."""
    AUTO = "auto"
    FALLBACK = "fallback"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class ManufacturerCandidate:
    """Snapshot of a manufacturer as seen by the matcher.

    Attributes:
        id: Manufacturer id (also the final tie-breaker)
        name: Display name used in reason strings
        is_active: Manufacturer is active
        accepting_new_orders: Manufacturer takes new work
        capabilities: Normalized capability tags
        min_order_qty: Minimum quantity per line item
        lead_time_days: Production lead time
        max_concurrent_jobs: Capacity limit (None = unlimited)
        open_job_count: Jobs currently assigned and not completed
    """
    id: int
    name: str
    is_active: bool
    accepting_new_orders: bool
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    min_order_qty: int = 1
    lead_time_days: int = 14
    max_concurrent_jobs: Optional[int] = None
    open_job_count: int = 0

    @classmethod
    def from_model(cls, manufacturer, open_job_count: int = 0) -> "ManufacturerCandidate":
        return cls(
            id=manufacturer.id,
            name=manufacturer.name,
            is_active=bool(manufacturer.is_active),
            accepting_new_orders=bool(manufacturer.accepting_new_orders),
            capabilities=normalize_capabilities(manufacturer.capabilities),
            min_order_qty=manufacturer.min_order_qty if manufacturer.min_order_qty is not None else 1,
            lead_time_days=manufacturer.lead_time_days if manufacturer.lead_time_days is not None else 14,
            max_concurrent_jobs=manufacturer.max_concurrent_jobs,
            open_job_count=open_job_count,
        )

    @property
    def is_eligible(self) -> bool:
        return self.is_active and self.accepting_new_orders

    @property
    def has_capacity(self) -> bool:
        if not self.max_concurrent_jobs:
            return True
        return self.open_job_count < self.max_concurrent_jobs


@dataclass(frozen=True)
class LineItemRequirements:
    """What a line item needs from a manufacturer.

    An empty capability set means the line item can go anywhere.
    """
    quantity: int
    required_capabilities: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_line_item(cls, line_item) -> "LineItemRequirements":
        return cls(
            quantity=line_item.quantity,
            required_capabilities=normalize_capabilities(line_item.required_capabilities),
        )


@dataclass(frozen=True)
class MatchResult:
    """Result of matching one line item.

    Attributes:
        manufacturer_id: Selected manufacturer (None when unmatched)
        tier: auto, fallback, or unmatched
        reason: Human-readable explanation of the decision
    """
    manufacturer_id: Optional[int]
    tier: MatchTier
    reason: str

    @property
    def matched(self) -> bool:
        return self.manufacturer_id is not None


class MatcherPort(ABC):
    """Port interface for manufacturer selection strategies."""

    @abstractmethod
    def match(
        self,
        requirements: LineItemRequirements,
        pool: Sequence[ManufacturerCandidate]
    ) -> MatchResult:
        """Pick a manufacturer for one line item.

        Must be deterministic and must not raise when nothing matches;
        absence of a match is returned as MatchTier.UNMATCHED.
        """
        pass
