"""Routing admin API endpoints.

Thin HTTP adapter over RoutingAdminGateway. Routing errors propagate to the
application exception handler, which maps them to JSON error bodies.
Authorization is enforced upstream of this service.
"""

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from .exceptions import NotFoundError
from .gateway import RoutingAdminGateway
from .schemas import (
    JobCreateRequest,
    JobResponse,
    RouteRequest,
    RerouteRequest,
    CompleteRequest,
    AssignRequest,
    RoutingOutcomeResponse,
    PendingJobResponse,
    RoutingHistoryResponse,
    RoutingHistoryListResponse,
    RoutingStatsResponse,
    ManufacturerResponse,
    ConsistencyReportResponse,
)

router = APIRouter(prefix="/admin/routing", tags=["Routing Admin"])


def get_gateway(db: Session = Depends(get_db)) -> RoutingAdminGateway:
    return RoutingAdminGateway(db)


@router.get("/pending", response_model=List[PendingJobResponse])
def list_pending(gateway: RoutingAdminGateway = Depends(get_gateway)):
    """Jobs waiting for a manufacturer, with their unmatched line items."""
    return [PendingJobResponse.model_validate(job) for job in gateway.list_pending()]


@router.get("/history", response_model=RoutingHistoryListResponse)
def list_history(
    search: Optional[str] = Query(
        None,
        description="Case-insensitive substring of order code or manufacturer name"
    ),
    limit: Optional[int] = Query(None, ge=1, description="Page size (default 50, capped at 200)"),
    offset: int = Query(0, ge=0),
    gateway: RoutingAdminGateway = Depends(get_gateway),
):
    """Routing history, most recent first."""
    page = gateway.list_history(search=search, limit=limit, offset=offset)
    return RoutingHistoryListResponse(
        entries=[RoutingHistoryResponse.model_validate(e) for e in page.entries],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/stats", response_model=RoutingStatsResponse)
def get_stats(gateway: RoutingAdminGateway = Depends(get_gateway)):
    return RoutingStatsResponse.model_validate(gateway.get_stats())


@router.get("/manufacturers", response_model=List[ManufacturerResponse])
def list_manufacturers(gateway: RoutingAdminGateway = Depends(get_gateway)):
    """Active manufacturers for the manual assignment picker."""
    return [ManufacturerResponse.model_validate(m) for m in gateway.list_manufacturers()]


@router.get("/consistency", response_model=ConsistencyReportResponse)
def consistency_report(gateway: RoutingAdminGateway = Depends(get_gateway)):
    """Jobs whose routing fields disagree with their latest history entry."""
    return ConsistencyReportResponse(
        inconsistent_job_ids=gateway.find_inconsistent_jobs(),
        checked_at=datetime.now(timezone.utc),
    )


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
def create_job(request: JobCreateRequest, gateway: RoutingAdminGateway = Depends(get_gateway)):
    """Create a manufacturing job and route it unless route=false."""
    job = gateway.create_job(
        order_id=request.order_id,
        line_items=[item.model_dump() for item in request.line_items],
        route=request.route,
    )
    return JobResponse.model_validate(_load_job(gateway, job.id))


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: int, gateway: RoutingAdminGateway = Depends(get_gateway)):
    return JobResponse.model_validate(_load_job(gateway, job_id))


@router.post("/route", response_model=RoutingOutcomeResponse)
def route_job(request: RouteRequest, gateway: RoutingAdminGateway = Depends(get_gateway)):
    """Route a job that has not been routed yet."""
    return RoutingOutcomeResponse.model_validate(gateway.route(request.job_id))


@router.post("/assign", response_model=RoutingOutcomeResponse)
def assign_job(request: AssignRequest, gateway: RoutingAdminGateway = Depends(get_gateway)):
    """Manually assign all line items of a job to one manufacturer."""
    outcome = gateway.assign(
        job_id=request.job_id,
        manufacturer_id=request.manufacturer_id,
        reason=request.reason,
        assigned_by=request.assigned_by,
        override_inactive=request.override_inactive,
    )
    return RoutingOutcomeResponse.model_validate(outcome)


@router.post("/reroute", response_model=RoutingOutcomeResponse)
def reroute_job(request: RerouteRequest, gateway: RoutingAdminGateway = Depends(get_gateway)):
    """Re-run routing for a pending job."""
    return RoutingOutcomeResponse.model_validate(gateway.reroute(request.job_id))


@router.post("/complete", response_model=JobResponse)
def complete_job(request: CompleteRequest, gateway: RoutingAdminGateway = Depends(get_gateway)):
    """Mark a job as shipped so it no longer counts toward manufacturer capacity."""
    job = gateway.complete_job(request.job_id)
    return JobResponse.model_validate(_load_job(gateway, job.id))


def _load_job(gateway: RoutingAdminGateway, job_id: int):
    job = gateway.store.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Manufacturing job {job_id} not found", job_id=job_id)
    return job
