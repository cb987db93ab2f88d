"""Routing admin gateway.

Entry point for everything the admin surface does with routing: listing
pending jobs, browsing history, stats, manual assignment and re-routing.

Every public operation runs as one unit of work. The job row is locked
(SELECT ... FOR UPDATE) before its state is read, the job update and its
routing history entry are flushed together, and the transaction commits
once at the end. Store failures (lost connection, serialization or
deadlock errors) are rolled back and retried with exponential backoff;
when retries are exhausted RoutingUnavailableError is raised and nothing
has been committed.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..models.manufacturer import Manufacturer
from ..models.manufacturing_job import ManufacturingJob, JobLineItem
from ..models.routing_history import RoutingHistoryEntry
from ..observability.logging_config import get_logger
from ..observability.metrics import (
    routing_store_retries_total,
    routing_consistency_errors_total,
    routing_operation_duration_seconds,
)
from .exceptions import (
    NotFoundError,
    InvalidStateError,
    ValidationError,
    ConsistencyError,
    RoutingUnavailableError,
)
from .orchestrator import RoutingOrchestrator, RoutingOutcome, LineDecision, record_metrics
from .ports import MatcherPort, normalize_capabilities
from .repository import RoutingStore
from .status import RoutingTier, RoutingOperation, parse_status, validate_transition

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_ASSIGNED_BY = "admin"


@dataclass
class PendingJob:
    """A pending job as shown in the admin queue."""
    job_id: int
    order_id: int
    order_code: Optional[str]
    reason: Optional[str]
    created_at: Any
    unmatched_line_items: List[JobLineItem] = field(default_factory=list)
    matched_line_count: int = 0


@dataclass
class HistoryPage:
    entries: List[RoutingHistoryEntry]
    total: int
    limit: int
    offset: int


@dataclass
class RoutingStats:
    """Aggregate counts over the current job table."""
    total_jobs: int
    by_tier: Dict[str, int]
    split_orders: int
    pending_jobs: int
    unrouted_jobs: int


def describe_mismatch(job: ManufacturingJob, entry: Optional[RoutingHistoryEntry]) -> Optional[str]:
    """Return why a job disagrees with its latest history entry, or None."""
    if entry is None:
        if job.routing_status is None:
            return None
        return f"job {job.id} is {job.routing_status} but has no routing history"

    if job.routing_status != entry.routed_by:
        return (
            f"job {job.id} status {job.routing_status!r} != "
            f"latest history routed_by {entry.routed_by!r} (entry {entry.id})"
        )
    if job.manufacturer_id != entry.manufacturer_id:
        return (
            f"job {job.id} manufacturer {job.manufacturer_id} != "
            f"latest history manufacturer {entry.manufacturer_id} (entry {entry.id})"
        )
    return None


class RoutingAdminGateway:
    """Admin-facing routing operations over one database session.

    Args:
        db: SQLAlchemy session (one per request)
        settings: Application settings (defaults to get_settings())
        matcher: Matcher strategy (defaults to CapabilityMatcher)
        sleep: Backoff sleep function, replaceable in tests
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        matcher: Optional[MatcherPort] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.store = RoutingStore(db)
        self.orchestrator = RoutingOrchestrator(self.store, matcher)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _run(self, operation: str, work: Callable[[], T], job_id: Optional[int] = None) -> T:
        """Run work in a transaction, retrying store failures with backoff."""
        max_retries = max(0, self.settings.ROUTING_STORE_RETRY_ATTEMPTS)
        retry_delay_base = self.settings.ROUTING_STORE_RETRY_DELAY_SECONDS
        last_error = None

        with routing_operation_duration_seconds.labels(operation).time():
            for attempt in range(max_retries + 1):
                try:
                    result = work()
                    self.db.commit()
                    return result
                except OperationalError as e:
                    self.db.rollback()
                    last_error = e
                    logger.warning(
                        f"Routing store failure during {operation} on attempt {attempt + 1}: {e}",
                        extra={"operation": operation, "job_id": job_id, "attempt": attempt + 1}
                    )
                    if attempt < max_retries:
                        routing_store_retries_total.labels(operation).inc()
                        delay = retry_delay_base * (2 ** attempt)
                        self._sleep(delay)
                except Exception:
                    self.db.rollback()
                    raise

        logger.error(
            f"Routing store unavailable, {operation} failed after {max_retries + 1} attempts",
            extra={"operation": operation, "job_id": job_id}
        )
        raise RoutingUnavailableError(
            f"Routing store unavailable, {operation} was not applied",
            job_id=job_id,
        ) from last_error

    def _lock_job(self, job_id: int) -> ManufacturingJob:
        job = self.store.get_job(job_id, lock=True)
        if job is None:
            raise NotFoundError(f"Manufacturing job {job_id} not found", job_id=job_id)
        return job

    # ------------------------------------------------------------------
    # Job creation and routing
    # ------------------------------------------------------------------

    def create_job(
        self,
        order_id: int,
        line_items: Iterable[Dict[str, Any]],
        route: bool = True,
        actor: str = "system",
    ) -> ManufacturingJob:
        """Create a job for an order and route it in the same transaction.

        Each line item dict needs product_name and quantity; variant_code and
        required_capabilities are optional. With route=False the job is left
        unrouted (no status, no history) until route() is called.

        Raises:
            NotFoundError: Order does not exist
            ValidationError: No line items, or a line item is malformed
        """
        items = list(line_items or [])
        if not items:
            raise ValidationError("A manufacturing job needs at least one line item")
        for index, item in enumerate(items):
            if not (item.get("product_name") or "").strip():
                raise ValidationError(f"Line item {index + 1} is missing product_name")
            quantity = item.get("quantity")
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
                raise ValidationError(f"Line item {index + 1} quantity must be a positive integer")
            capabilities = item.get("required_capabilities")
            if capabilities is not None and (
                not isinstance(capabilities, (list, tuple))
                or not all(isinstance(tag, str) for tag in capabilities)
            ):
                raise ValidationError(
                    f"Line item {index + 1} required_capabilities must be a list of strings"
                )

        def work() -> Tuple[ManufacturingJob, Optional[RoutingOutcome]]:
            if self.store.get_order(order_id) is None:
                raise NotFoundError(f"Order {order_id} not found")
            job = ManufacturingJob(order_id=order_id)
            job.line_items = [
                JobLineItem(
                    product_name=item["product_name"].strip(),
                    variant_code=item.get("variant_code"),
                    quantity=item["quantity"],
                    required_capabilities=sorted(normalize_capabilities(item.get("required_capabilities"))),
                )
                for item in items
            ]
            self.store.add_job(job)
            logger.info(
                f"Manufacturing job {job.id} created with {len(items)} line items",
                extra={"job_id": job.id, "order_id": order_id}
            )
            outcome = None
            if route:
                outcome = self.orchestrator.route_job(
                    job,
                    self.store.get_job_line_items(job.id),
                    self.store.get_candidate_pool(exclude_job_id=job.id),
                    actor=actor,
                )
            return job, outcome

        job, outcome = self._run("create_job", work)
        if outcome is not None:
            record_metrics(outcome)
        return job

    def route(self, job_id: int, actor: str = "system") -> RoutingOutcome:
        """Route a freshly created job.

        Raises:
            NotFoundError: Job does not exist
            InvalidStateError: Job has already been routed
            ValidationError: Job has no line items
        """
        def work() -> RoutingOutcome:
            job = self._lock_job(job_id)
            if job.routing_status is not None:
                raise InvalidStateError(
                    f"Job {job_id} has already been routed ({job.routing_status}); "
                    f"use reroute or assign",
                    job_id=job_id,
                )
            line_items = self.store.get_job_line_items(job.id)
            pool = self.store.get_candidate_pool(exclude_job_id=job.id)
            return self.orchestrator.route_job(job, line_items, pool, actor=actor)

        outcome = self._run(RoutingOperation.ROUTE.value, work, job_id=job_id)
        record_metrics(outcome)
        return outcome

    def reroute(self, job_id: int, actor: str = "system") -> RoutingOutcome:
        """Re-run routing for a pending job.

        Raises:
            NotFoundError: Job does not exist
            InvalidStateError: Job is not pending
        """
        outcome = self._run(
            RoutingOperation.REROUTE.value,
            lambda: self.orchestrator.reroute(job_id, actor=actor),
            job_id=job_id,
        )
        record_metrics(outcome)
        return outcome

    def assign(
        self,
        job_id: int,
        manufacturer_id: Optional[int],
        reason: Optional[str],
        assigned_by: Optional[str] = None,
        override_inactive: bool = False,
    ) -> RoutingOutcome:
        """Manually assign every line item of a job to one manufacturer.

        The job becomes manual and the previous job-level manufacturer is
        kept in original_manufacturer_id.

        Args:
            job_id: Job to assign
            manufacturer_id: Target manufacturer
            reason: Why the admin overrides routing (required)
            assigned_by: Acting admin, recorded as history actor
            override_inactive: Allow an inactive or non-accepting manufacturer

        Raises:
            ValidationError: manufacturer_id missing or reason empty
            NotFoundError: Job or manufacturer does not exist
            InvalidStateError: Manufacturer not active/accepting without an
                allowed override, or job is unrouted or completed
        """
        if manufacturer_id is None:
            raise ValidationError("manufacturer_id is required", job_id=job_id)
        if reason is None or not reason.strip():
            raise ValidationError("A reason is required for manual assignment", job_id=job_id)

        actor = (assigned_by or "").strip() or DEFAULT_ASSIGNED_BY
        full_reason = f"Manually assigned by {actor}: {reason.strip()}"

        def work() -> RoutingOutcome:
            job = self._lock_job(job_id)
            if job.is_completed:
                raise InvalidStateError(f"Job {job_id} is completed and can no longer be reassigned", job_id=job_id)
            manufacturer = self.store.get_manufacturer(manufacturer_id)
            if manufacturer is None:
                raise NotFoundError(f"Manufacturer {manufacturer_id} not found", job_id=job_id)

            self._check_assignable(manufacturer, job_id, override_inactive)
            validate_transition(parse_status(job.routing_status), RoutingTier.MANUAL, job_id=job_id)

            decisions = []
            for item in self.store.get_job_line_items(job.id):
                item.manufacturer_id = manufacturer.id
                item.routed_by = RoutingTier.MANUAL.value
                item.routing_reason = full_reason
                decisions.append(LineDecision(
                    line_item_id=item.id,
                    manufacturer_id=manufacturer.id,
                    routed_by=RoutingTier.MANUAL,
                    reason=full_reason,
                ))

            self.store.update_job(
                job,
                routing_status=RoutingTier.MANUAL.value,
                routing_reason=full_reason,
                original_manufacturer_id=job.manufacturer_id,
                manufacturer_id=manufacturer.id,
            )
            entry = self.store.insert_routing_history(
                job,
                manufacturer_id=manufacturer.id,
                routed_by=RoutingTier.MANUAL,
                reason=full_reason,
                operation=RoutingOperation.ASSIGN.value,
                actor=actor,
            )

            logger.info(
                f"Job {job.id} manually assigned to manufacturer {manufacturer.id} by {actor}",
                extra={
                    "job_id": job.id,
                    "order_id": job.order_id,
                    "manufacturer_id": manufacturer.id,
                    "routed_by": RoutingTier.MANUAL.value,
                    "operation": RoutingOperation.ASSIGN.value,
                }
            )
            return RoutingOutcome(
                job_id=job.id,
                status=RoutingTier.MANUAL,
                manufacturer_id=manufacturer.id,
                reason=full_reason,
                decisions=decisions,
                split_order=False,
                history_entry_id=entry.id,
                operation=RoutingOperation.ASSIGN,
            )

        outcome = self._run(RoutingOperation.ASSIGN.value, work, job_id=job_id)
        record_metrics(outcome)
        return outcome

    def complete_job(self, job_id: int) -> ManufacturingJob:
        """Mark a routed job as completed (shipped).

        Completed jobs stop counting toward manufacturer capacity, so the
        manufacturers holding its line items can be auto-matched again.

        Raises:
            NotFoundError: Job does not exist
            InvalidStateError: Job is unrouted, pending or already completed
        """
        def work() -> ManufacturingJob:
            job = self._lock_job(job_id)
            if job.is_completed:
                raise InvalidStateError(f"Job {job_id} is already completed", job_id=job_id)
            current = parse_status(job.routing_status)
            if current is None or current == RoutingTier.PENDING:
                current_label = current.value if current else "unrouted"
                raise InvalidStateError(
                    f"Only routed jobs can be completed (job {job_id} is {current_label})",
                    job_id=job_id,
                )
            self.store.update_job(job, is_completed=True)
            logger.info(
                f"Job {job.id} completed, releasing capacity of manufacturers {sorted(job.assigned_manufacturer_ids)}",
                extra={"job_id": job.id, "order_id": job.order_id, "manufacturer_id": job.manufacturer_id}
            )
            return job

        return self._run("complete_job", work, job_id=job_id)

    def _check_assignable(self, manufacturer: Manufacturer, job_id: int, override_inactive: bool) -> None:
        if manufacturer.is_eligible:
            return

        state = "inactive" if not manufacturer.is_active else "not accepting new orders"
        if not override_inactive:
            raise InvalidStateError(
                f'Manufacturer "{manufacturer.name}" is {state}; pass override_inactive to assign anyway',
                job_id=job_id,
            )
        if not self.settings.ROUTING_ALLOW_INACTIVE_OVERRIDE:
            raise InvalidStateError(
                f'Manufacturer "{manufacturer.name}" is {state} and overrides are disabled',
                job_id=job_id,
            )
        logger.warning(
            f'Assigning job {job_id} to manufacturer "{manufacturer.name}" ({state}) by override',
            extra={"job_id": job_id, "manufacturer_id": manufacturer.id}
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_pending(self) -> List[PendingJob]:
        """Pending jobs, oldest first, each with its unmatched line items."""
        def work() -> List[PendingJob]:
            pending = []
            for job in self.store.list_jobs_by_status(RoutingTier.PENDING):
                unmatched = [item for item in job.line_items if item.is_unmatched]
                pending.append(PendingJob(
                    job_id=job.id,
                    order_id=job.order_id,
                    order_code=job.order.order_code if job.order else None,
                    reason=job.routing_reason,
                    created_at=job.created_at,
                    unmatched_line_items=unmatched,
                    matched_line_count=len(job.line_items) - len(unmatched),
                ))
            return pending

        return self._run("list_pending", work)

    def list_history(
        self,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> HistoryPage:
        """Routing history, newest first.

        search filters on order code or manufacturer name (case-insensitive
        substring). limit defaults to ROUTING_HISTORY_PAGE_SIZE and is capped
        at ROUTING_HISTORY_MAX_PAGE_SIZE.
        """
        if limit is None:
            limit = self.settings.ROUTING_HISTORY_PAGE_SIZE
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        limit = min(limit, self.settings.ROUTING_HISTORY_MAX_PAGE_SIZE)

        def work() -> HistoryPage:
            entries, total = self.store.list_history(search=search, limit=limit, offset=offset)
            return HistoryPage(entries=entries, total=total, limit=limit, offset=offset)

        return self._run("list_history", work)

    def get_stats(self) -> RoutingStats:
        def work() -> RoutingStats:
            counts = self.store.count_jobs_by_status()
            by_tier = {tier.value: counts.get(tier.value, 0) for tier in RoutingTier}
            return RoutingStats(
                total_jobs=sum(counts.values()),
                by_tier=by_tier,
                split_orders=self.store.count_split_jobs(),
                pending_jobs=by_tier[RoutingTier.PENDING.value],
                unrouted_jobs=counts.get(None, 0),
            )

        return self._run("get_stats", work)

    def list_manufacturers(self) -> List[Manufacturer]:
        """Active manufacturers ordered by name, for the assignment picker."""
        return self._run("list_manufacturers", self.store.list_active_manufacturers)

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    def check_consistency(self, job_id: int) -> Optional[RoutingHistoryEntry]:
        """Verify a job matches its latest routing history entry.

        Returns:
            The latest history entry (None for a job never routed)

        Raises:
            NotFoundError: Job does not exist
            ConsistencyError: Job fields disagree with the latest entry
        """
        def work() -> Optional[RoutingHistoryEntry]:
            job = self.store.get_job(job_id)
            if job is None:
                raise NotFoundError(f"Manufacturing job {job_id} not found", job_id=job_id)
            entry = self.store.latest_history_entry(job.id)
            problem = describe_mismatch(job, entry)
            if problem:
                routing_consistency_errors_total.inc()
                logger.error(
                    f"Routing consistency violation: {problem}",
                    extra={"job_id": job.id, "routed_by": job.routing_status}
                )
                raise ConsistencyError(problem, job_id=job.id)
            return entry

        return self._run("check_consistency", work, job_id=job_id)

    def find_inconsistent_jobs(self) -> List[int]:
        """Ids of all jobs whose routing fields disagree with their latest history entry."""
        def work() -> List[int]:
            latest = self.store.latest_history_by_job()
            inconsistent = []
            for job in self.store.list_all_jobs():
                problem = describe_mismatch(job, latest.get(job.id))
                if problem:
                    logger.error(
                        f"Routing consistency violation: {problem}",
                        extra={"job_id": job.id, "routed_by": job.routing_status}
                    )
                    inconsistent.append(job.id)
            return inconsistent

        inconsistent = self._run("find_inconsistent_jobs", work)
        if inconsistent:
            routing_consistency_errors_total.inc(len(inconsistent))
        return inconsistent
