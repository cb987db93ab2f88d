"""Pydantic schemas for the routing admin endpoints.

manufacturer_id and reason on the assign request are Optional so the
gateway reports a missing value as validation_error (400) rather than
FastAPI's generic 422.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .status import RoutingTier


# =============================================================================
# Requests
# =============================================================================

class LineItemCreate(BaseModel):
    """Line item of a new manufacturing job."""
    product_name: str = Field(..., min_length=1)
    variant_code: Optional[str] = None
    quantity: int = Field(..., ge=1)
    required_capabilities: List[str] = Field(default_factory=list)


class JobCreateRequest(BaseModel):
    """Create a manufacturing job for an order and (optionally) route it."""
    order_id: int
    line_items: List[LineItemCreate] = Field(..., min_length=1)
    route: bool = Field(True, description="Route the job right after creating it")


class RouteRequest(BaseModel):
    job_id: int


class RerouteRequest(BaseModel):
    job_id: int


class CompleteRequest(BaseModel):
    """Mark a routed job as completed (shipped)."""
    job_id: int


class AssignRequest(BaseModel):
    """Manual override of a job's manufacturer."""
    job_id: int
    manufacturer_id: Optional[int] = None
    reason: Optional[str] = None
    assigned_by: Optional[str] = Field(None, description="Acting admin (defaults to 'admin')")
    override_inactive: bool = Field(
        False,
        description="Allow an inactive or non-accepting manufacturer"
    )

    @field_validator("assigned_by")
    @classmethod
    def strip_assigned_by(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


# =============================================================================
# Responses
# =============================================================================

class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_name: str
    variant_code: Optional[str] = None
    quantity: int
    required_capabilities: List[str] = Field(default_factory=list)
    manufacturer_id: Optional[int] = None
    routed_by: Optional[str] = None
    routing_reason: Optional[str] = None


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    routing_status: Optional[str] = None
    routing_reason: Optional[str] = None
    manufacturer_id: Optional[int] = None
    original_manufacturer_id: Optional[int] = None
    is_split: bool = False
    is_completed: bool = False
    created_at: datetime
    line_items: List[LineItemResponse] = Field(default_factory=list)


class LineDecisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_item_id: int
    manufacturer_id: Optional[int] = None
    routed_by: RoutingTier
    reason: str


class RoutingOutcomeResponse(BaseModel):
    """Result of route, reroute or assign."""
    model_config = ConfigDict(from_attributes=True)

    job_id: int
    status: RoutingTier = Field(..., description="auto | fallback | manual | pending")
    manufacturer_id: Optional[int] = None
    reason: str
    split_order: bool = False
    newly_matched: int = 0
    applied: bool = Field(True, description="False when a re-route changed nothing")
    history_entry_id: Optional[int] = None
    decisions: List[LineDecisionResponse] = Field(default_factory=list)


class PendingJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: int
    order_id: int
    order_code: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime
    matched_line_count: int
    unmatched_line_items: List[LineItemResponse]


class RoutingHistoryResponse(BaseModel):
    """One routing history entry."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: int
    order_id: int
    order_code: Optional[str] = None
    manufacturer_id: Optional[int] = None
    manufacturer_name: Optional[str] = None
    routed_by: RoutingTier
    reason: str
    operation: str
    actor: str
    created_at: datetime


class RoutingHistoryListResponse(BaseModel):
    entries: List[RoutingHistoryResponse]
    total: int = Field(..., description="Entries matching the search")
    limit: int
    offset: int


class RoutingStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_jobs: int
    by_tier: Dict[str, int]
    split_orders: int
    pending_jobs: int
    unrouted_jobs: int


class ManufacturerResponse(BaseModel):
    """Manufacturer as listed in the assignment picker."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_active: bool
    accepting_new_orders: bool
    country: Optional[str] = None
    zone: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)
    min_order_qty: int
    lead_time_days: int
    max_concurrent_jobs: Optional[int] = None


class ConsistencyReportResponse(BaseModel):
    inconsistent_job_ids: List[int]
    checked_at: datetime
