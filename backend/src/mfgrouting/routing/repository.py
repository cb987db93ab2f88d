"""Storage access for routing.

Thin query layer over the SQLAlchemy session. Nothing here commits: the
gateway owns the unit of work so the job update and its routing history
row land in the same transaction.
"""

from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload, selectinload

from ..models.manufacturer import Manufacturer
from ..models.order import CustomerOrder
from ..models.manufacturing_job import ManufacturingJob, JobLineItem
from ..models.routing_history import RoutingHistoryEntry
from .ports import ManufacturerCandidate
from .status import RoutingTier


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class RoutingStore:
    """Repository used by the orchestrator and admin gateway."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Manufacturers
    # ------------------------------------------------------------------

    def get_manufacturers(self) -> List[Manufacturer]:
        return self.db.query(Manufacturer).order_by(Manufacturer.id).all()

    def get_manufacturer(self, manufacturer_id: int) -> Optional[Manufacturer]:
        return self.db.get(Manufacturer, manufacturer_id)

    def list_active_manufacturers(self) -> List[Manufacturer]:
        return (
            self.db.query(Manufacturer)
            .filter(Manufacturer.is_active.is_(True))
            .order_by(Manufacturer.name)
            .all()
        )

    def get_open_job_counts(self, exclude_job_id: Optional[int] = None) -> Dict[int, int]:
        """Count open (not completed) jobs per manufacturer.

        A job counts once for every manufacturer holding at least one of its
        line items.
        """
        query = (
            self.db.query(
                JobLineItem.manufacturer_id,
                func.count(func.distinct(JobLineItem.job_id)),
            )
            .join(ManufacturingJob, ManufacturingJob.id == JobLineItem.job_id)
            .filter(
                JobLineItem.manufacturer_id.isnot(None),
                ManufacturingJob.is_completed.is_(False),
            )
        )
        if exclude_job_id is not None:
            query = query.filter(JobLineItem.job_id != exclude_job_id)

        rows = query.group_by(JobLineItem.manufacturer_id).all()
        return {manufacturer_id: count for manufacturer_id, count in rows}

    def get_candidate_pool(self, exclude_job_id: Optional[int] = None) -> List[ManufacturerCandidate]:
        """Current manufacturer pool as matcher candidates."""
        open_jobs = self.get_open_job_counts(exclude_job_id=exclude_job_id)
        return [
            ManufacturerCandidate.from_model(m, open_job_count=open_jobs.get(m.id, 0))
            for m in self.get_manufacturers()
        ]

    # ------------------------------------------------------------------
    # Orders and jobs
    # ------------------------------------------------------------------

    def get_order(self, order_id: int) -> Optional[CustomerOrder]:
        return self.db.get(CustomerOrder, order_id)

    def get_job(self, job_id: int, lock: bool = False) -> Optional[ManufacturingJob]:
        """Load a job with its line items.

        With lock=True the job row is read with SELECT ... FOR UPDATE so
        routing operations on the same job are serialized until commit.
        """
        query = self.db.query(ManufacturingJob).filter(ManufacturingJob.id == job_id)
        if lock:
            query = query.with_for_update().populate_existing()
        job = query.one_or_none()
        if job is not None and lock:
            # Re-read line items inside the lock
            self.db.refresh(job, attribute_names=["line_items"])
        return job

    def get_job_line_items(self, job_id: int) -> List[JobLineItem]:
        return (
            self.db.query(JobLineItem)
            .filter(JobLineItem.job_id == job_id)
            .order_by(JobLineItem.id)
            .all()
        )

    def add_job(self, job: ManufacturingJob) -> ManufacturingJob:
        self.db.add(job)
        self.db.flush()
        return job

    def update_job(self, job: ManufacturingJob, **patch) -> ManufacturingJob:
        for field, value in patch.items():
            setattr(job, field, value)
        self.db.flush()
        return job

    def list_jobs_by_status(self, status: RoutingTier) -> List[ManufacturingJob]:
        return (
            self.db.query(ManufacturingJob)
            .options(
                joinedload(ManufacturingJob.order),
                selectinload(ManufacturingJob.line_items),
            )
            .filter(ManufacturingJob.routing_status == status.value)
            .order_by(ManufacturingJob.created_at, ManufacturingJob.id)
            .all()
        )

    def list_all_jobs(self) -> List[ManufacturingJob]:
        return (
            self.db.query(ManufacturingJob)
            .options(selectinload(ManufacturingJob.line_items))
            .order_by(ManufacturingJob.id)
            .all()
        )

    # ------------------------------------------------------------------
    # Routing history
    # ------------------------------------------------------------------

    def insert_routing_history(
        self,
        job: ManufacturingJob,
        manufacturer_id: Optional[int],
        routed_by: RoutingTier,
        reason: str,
        operation: str,
        actor: str = "system",
    ) -> RoutingHistoryEntry:
        entry = RoutingHistoryEntry(
            job_id=job.id,
            order_id=job.order_id,
            manufacturer_id=manufacturer_id,
            routed_by=routed_by.value,
            reason=reason,
            operation=operation,
            actor=actor,
        )
        self.db.add(entry)
        self.db.flush()  # Get ID without committing transaction
        return entry

    def latest_history_entry(self, job_id: int) -> Optional[RoutingHistoryEntry]:
        return (
            self.db.query(RoutingHistoryEntry)
            .filter(RoutingHistoryEntry.job_id == job_id)
            .order_by(RoutingHistoryEntry.id.desc())
            .first()
        )

    def latest_history_by_job(self) -> Dict[int, RoutingHistoryEntry]:
        """Latest history entry per job, keyed by job id."""
        latest_ids = (
            self.db.query(func.max(RoutingHistoryEntry.id))
            .group_by(RoutingHistoryEntry.job_id)
        )
        entries = (
            self.db.query(RoutingHistoryEntry)
            .filter(RoutingHistoryEntry.id.in_(latest_ids))
            .all()
        )
        return {entry.job_id: entry for entry in entries}

    def list_history(
        self,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[RoutingHistoryEntry], int]:
        """History entries, newest first, optionally filtered.

        search matches order code or manufacturer name as a
        case-insensitive substring.
        """
        query = (
            self.db.query(RoutingHistoryEntry)
            .join(CustomerOrder, CustomerOrder.id == RoutingHistoryEntry.order_id)
            .outerjoin(Manufacturer, Manufacturer.id == RoutingHistoryEntry.manufacturer_id)
            .options(
                joinedload(RoutingHistoryEntry.order),
                joinedload(RoutingHistoryEntry.manufacturer),
            )
        )

        term = (search or "").strip()
        if term:
            pattern = f"%{_escape_like(term)}%"
            query = query.filter(
                or_(
                    CustomerOrder.order_code.ilike(pattern, escape="\\"),
                    Manufacturer.name.ilike(pattern, escape="\\"),
                )
            )

        total = query.count()
        entries = (
            query.order_by(RoutingHistoryEntry.created_at.desc(), RoutingHistoryEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return entries, total

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def count_jobs_by_status(self) -> Dict[Optional[str], int]:
        rows = (
            self.db.query(ManufacturingJob.routing_status, func.count(ManufacturingJob.id))
            .group_by(ManufacturingJob.routing_status)
            .all()
        )
        return {status: count for status, count in rows}

    def count_split_jobs(self) -> int:
        """Jobs whose line items are assigned to two or more manufacturers."""
        split_jobs = (
            self.db.query(JobLineItem.job_id)
            .filter(JobLineItem.manufacturer_id.isnot(None))
            .group_by(JobLineItem.job_id)
            .having(func.count(func.distinct(JobLineItem.manufacturer_id)) > 1)
            .subquery()
        )
        return self.db.query(func.count()).select_from(split_jobs).scalar() or 0
