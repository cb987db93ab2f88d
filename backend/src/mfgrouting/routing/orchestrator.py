"""Routing orchestrator.

Runs the matcher over every line item of a job, aggregates the per-line
results into a job status, and records exactly one routing history entry
per routing attempt.

Job status aggregation:
    any line unmatched        -> pending (job manufacturer is NULL)
    else any line via fallback -> fallback
    else                       -> auto

A job whose line items end up with two or more manufacturers is a split
order; the job-level manufacturer is then the dominant one (most line
items, ties to the lowest id).
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..models.manufacturing_job import ManufacturingJob, JobLineItem
from ..observability.logging_config import get_logger
from ..observability.metrics import routing_decisions_total, routing_line_items_total
from .exceptions import InvalidStateError, NotFoundError, ValidationError
from .matcher import CapabilityMatcher
from .ports import (
    MatcherPort,
    MatchTier,
    ManufacturerCandidate,
    LineItemRequirements,
)
from .repository import RoutingStore
from .status import RoutingTier, RoutingOperation, parse_status, validate_transition

logger = get_logger(__name__)

NO_CHANGE_PREFIX = "No change, still pending"

_TIER_FOR_MATCH = {
    MatchTier.AUTO: RoutingTier.AUTO,
    MatchTier.FALLBACK: RoutingTier.FALLBACK,
    MatchTier.UNMATCHED: RoutingTier.PENDING,
}


@dataclass
class LineDecision:
    """Routing decision for one line item."""
    line_item_id: int
    manufacturer_id: Optional[int]
    routed_by: RoutingTier
    reason: str
    changed: bool = True
    match_tier: Optional[MatchTier] = None


@dataclass
class RoutingOutcome:
    """Aggregated routing result for a job."""
    job_id: int
    status: RoutingTier
    manufacturer_id: Optional[int]
    reason: str
    decisions: List[LineDecision] = field(default_factory=list)
    split_order: bool = False
    newly_matched: int = 0
    applied: bool = True
    history_entry_id: Optional[int] = None
    operation: Optional[RoutingOperation] = None

    @property
    def pending_line_item_ids(self) -> List[int]:
        return [d.line_item_id for d in self.decisions if d.routed_by == RoutingTier.PENDING]


def aggregate_status(tiers: Sequence[RoutingTier]) -> RoutingTier:
    if any(t == RoutingTier.PENDING for t in tiers):
        return RoutingTier.PENDING
    if any(t == RoutingTier.FALLBACK for t in tiers):
        return RoutingTier.FALLBACK
    if any(t == RoutingTier.MANUAL for t in tiers):
        return RoutingTier.MANUAL
    return RoutingTier.AUTO


def dominant_manufacturer(manufacturer_ids: Sequence[Optional[int]]) -> Optional[int]:
    """Manufacturer holding the most line items; ties go to the lowest id."""
    counts = Counter(m for m in manufacturer_ids if m is not None)
    if not counts:
        return None
    return min(counts, key=lambda m: (-counts[m], m))


def summarize(decisions: Sequence[LineDecision]) -> str:
    """Human-readable job reason, e.g.
    'No manufacturer supports capability dtf; 2 of 3 line items auto-routed, 1 unmatched'.
    """
    total = len(decisions)
    auto = sum(1 for d in decisions if d.routed_by == RoutingTier.AUTO)
    fallback = sum(1 for d in decisions if d.routed_by == RoutingTier.FALLBACK)
    manual = sum(1 for d in decisions if d.routed_by == RoutingTier.MANUAL)
    pending = sum(1 for d in decisions if d.routed_by == RoutingTier.PENDING)

    problems = [d.reason for d in decisions if d.routed_by in (RoutingTier.FALLBACK, RoutingTier.PENDING)]
    if not problems:
        problems = [d.reason for d in decisions]
    # Keep first occurrence order, drop duplicates
    parts = list(dict.fromkeys(problems))

    counts = f"{auto} of {total} line items auto-routed"
    if fallback:
        counts += f", {fallback} via fallback"
    if manual:
        counts += f", {manual} manually assigned"
    if pending:
        counts += f", {pending} unmatched"
    parts.append(counts)
    return "; ".join(parts)


def record_metrics(outcome: RoutingOutcome) -> None:
    """Count a committed outcome. Call only after the unit of work commits."""
    for decision in outcome.decisions:
        if decision.changed and decision.match_tier is not None:
            routing_line_items_total.labels(decision.match_tier.value).inc()
    if outcome.operation is not None:
        routing_decisions_total.labels(outcome.operation.value, outcome.status.value).inc()


class RoutingOrchestrator:
    """Routes manufacturing jobs and keeps the routing history in step."""

    def __init__(self, store: RoutingStore, matcher: Optional[MatcherPort] = None):
        self.store = store
        self.matcher = matcher or CapabilityMatcher()

    def plan(
        self,
        job: ManufacturingJob,
        line_items: Sequence[JobLineItem],
        pool: Sequence[ManufacturerCandidate],
        only_unmatched: bool = False,
    ) -> RoutingOutcome:
        """Compute the routing outcome for a job without touching the store.

        Args:
            job: Job being routed
            line_items: The job's line items
            pool: Manufacturer candidates (matcher filters eligibility itself)
            only_unmatched: Keep existing assignments and only match line
                items that currently have no manufacturer (re-route)

        Returns:
            RoutingOutcome with one LineDecision per line item
        """
        decisions: List[LineDecision] = []
        newly_matched = 0

        for item in line_items:
            if only_unmatched and not item.is_unmatched:
                decisions.append(LineDecision(
                    line_item_id=item.id,
                    manufacturer_id=item.manufacturer_id,
                    routed_by=parse_status(item.routed_by) or RoutingTier.AUTO,
                    reason=item.routing_reason or "",
                    changed=False,
                ))
                continue

            result = self.matcher.match(LineItemRequirements.from_line_item(item), pool)
            if result.matched:
                newly_matched += 1
            decisions.append(LineDecision(
                line_item_id=item.id,
                manufacturer_id=result.manufacturer_id,
                routed_by=_TIER_FOR_MATCH[result.tier],
                reason=result.reason,
                match_tier=result.tier,
            ))

        status = aggregate_status([d.routed_by for d in decisions])
        assigned = [d.manufacturer_id for d in decisions]
        manufacturer_id = None if status == RoutingTier.PENDING else dominant_manufacturer(assigned)

        return RoutingOutcome(
            job_id=job.id,
            status=status,
            manufacturer_id=manufacturer_id,
            reason=summarize(decisions),
            decisions=decisions,
            split_order=len({m for m in assigned if m is not None}) > 1,
            newly_matched=newly_matched,
        )

    def route_job(
        self,
        job: ManufacturingJob,
        line_items: Sequence[JobLineItem],
        pool: Sequence[ManufacturerCandidate],
        actor: str = "system",
    ) -> RoutingOutcome:
        """Initial routing of a freshly created job.

        Writes the line item assignments, the job status and one history
        entry. The caller commits.

        Raises:
            ValidationError: Job has no line items
            InvalidStateError: Job has already been routed
        """
        if not line_items:
            raise ValidationError(f"Job {job.id} has no line items to route", job_id=job.id)

        outcome = self.plan(job, line_items, pool)
        validate_transition(parse_status(job.routing_status), outcome.status, job_id=job.id)
        self._apply(job, line_items, outcome, RoutingOperation.ROUTE, actor)
        return outcome

    def reroute(self, job_id: int, actor: str = "system") -> RoutingOutcome:
        """Re-run routing for a pending job against the current pool.

        Only line items without a manufacturer are re-matched. The new
        outcome is applied only when at least one of them now matches;
        otherwise the job is left untouched and a "no change" history
        entry is appended.

        Raises:
            NotFoundError: Job does not exist
            InvalidStateError: Job is not pending
        """
        job = self.store.get_job(job_id, lock=True)
        if job is None:
            raise NotFoundError(f"Manufacturing job {job_id} not found", job_id=job_id)

        current = parse_status(job.routing_status)
        if current != RoutingTier.PENDING:
            current_label = current.value if current else "unrouted"
            raise InvalidStateError(
                f"Only pending jobs can be re-routed (job {job_id} is {current_label})",
                job_id=job_id,
            )

        line_items = self.store.get_job_line_items(job.id)
        pool = self.store.get_candidate_pool(exclude_job_id=job.id)
        outcome = self.plan(job, line_items, pool, only_unmatched=True)

        if outcome.newly_matched == 0:
            unmatched_reasons = list(dict.fromkeys(
                d.reason for d in outcome.decisions if d.routed_by == RoutingTier.PENDING
            ))
            reason = f"{NO_CHANGE_PREFIX}: {'; '.join(unmatched_reasons)}"
            entry = self.store.insert_routing_history(
                job,
                manufacturer_id=job.manufacturer_id,
                routed_by=RoutingTier.PENDING,
                reason=reason,
                operation=RoutingOperation.REROUTE.value,
                actor=actor,
            )
            logger.info(
                f"Re-route of job {job.id} found no new match",
                extra={"job_id": job.id, "routed_by": RoutingTier.PENDING.value, "operation": "reroute"}
            )
            return RoutingOutcome(
                job_id=job.id,
                status=RoutingTier.PENDING,
                manufacturer_id=job.manufacturer_id,
                reason=reason,
                decisions=outcome.decisions,
                split_order=outcome.split_order,
                newly_matched=0,
                applied=False,
                history_entry_id=entry.id,
                operation=RoutingOperation.REROUTE,
            )

        validate_transition(current, outcome.status, job_id=job.id)
        self._apply(job, line_items, outcome, RoutingOperation.REROUTE, actor)
        return outcome

    def _apply(
        self,
        job: ManufacturingJob,
        line_items: Sequence[JobLineItem],
        outcome: RoutingOutcome,
        operation: RoutingOperation,
        actor: str,
    ) -> None:
        by_id = {item.id: item for item in line_items}
        for decision in outcome.decisions:
            if not decision.changed:
                continue
            item = by_id[decision.line_item_id]
            item.manufacturer_id = decision.manufacturer_id
            item.routed_by = decision.routed_by.value
            item.routing_reason = decision.reason

        self.store.update_job(
            job,
            routing_status=outcome.status.value,
            routing_reason=outcome.reason,
            manufacturer_id=outcome.manufacturer_id,
        )
        entry = self.store.insert_routing_history(
            job,
            manufacturer_id=outcome.manufacturer_id,
            routed_by=outcome.status,
            reason=outcome.reason,
            operation=operation.value,
            actor=actor,
        )
        outcome.history_entry_id = entry.id
        outcome.operation = operation

        logger.info(
            f"Job {job.id} routed: {outcome.status.value}",
            extra={
                "job_id": job.id,
                "order_id": job.order_id,
                "manufacturer_id": outcome.manufacturer_id,
                "routed_by": outcome.status.value,
                "operation": operation.value,
            }
        )
