"""Manufacturing job and job line item models

A manufacturing job is one production run created from a customer order.
Its line items are routed to manufacturers independently, so a single job
may be fulfilled by several manufacturers (a split order).
"""

from sqlalchemy import Column, Integer, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import expression

from .base import Base, PortableJSONB, utcnow


class ManufacturingJob(Base):
    """Manufacturing job header with its current routing decision.

    routing_status is one of auto | fallback | manual | pending, or NULL for
    a job that has not been routed yet. manufacturer_id is NULL exactly when
    the job is pending (or unrouted). Both fields always mirror the most
    recent RoutingHistoryEntry of the job.
    """

    __tablename__ = "manufacturing_job"
    __table_args__ = (
        Index("ix_manufacturing_job_order_id", "order_id"),
        Index("ix_manufacturing_job_manufacturer_id", "manufacturer_id"),
        Index("ix_manufacturing_job_routing_status", "routing_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("customer_order.id", ondelete="RESTRICT"), nullable=False)

    routing_status = Column(Text, nullable=True)
    routing_reason = Column(Text, nullable=True)
    manufacturer_id = Column(Integer, ForeignKey("manufacturer.id", ondelete="RESTRICT"), nullable=True)
    original_manufacturer_id = Column(
        Integer,
        ForeignKey("manufacturer.id", ondelete="SET NULL"),
        nullable=True,
        comment="Manufacturer held before the last manual assignment"
    )

    # Completed jobs no longer count against manufacturer capacity
    is_completed = Column(Boolean, nullable=False, default=False, server_default=expression.false())

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    order = relationship("CustomerOrder", back_populates="jobs")
    manufacturer = relationship("Manufacturer", foreign_keys=[manufacturer_id])
    line_items = relationship(
        "JobLineItem",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobLineItem.id",
    )
    history = relationship(
        "RoutingHistoryEntry",
        back_populates="job",
        order_by="RoutingHistoryEntry.id",
    )

    @property
    def assigned_manufacturer_ids(self) -> set:
        return {item.manufacturer_id for item in self.line_items if item.manufacturer_id is not None}

    @property
    def is_split(self) -> bool:
        """True when line items are assigned to two or more manufacturers."""
        return len(self.assigned_manufacturer_ids) > 1


class JobLineItem(Base):
    """One product/variant and quantity within a manufacturing job.

    Each line item carries its own routing decision (routed_by, reason) so
    the admin surface can explain where every line went.
    """

    __tablename__ = "job_line_item"
    __table_args__ = (
        Index("ix_job_line_item_job_id", "job_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, ForeignKey("manufacturing_job.id", ondelete="CASCADE"), nullable=False)

    product_name = Column(Text, nullable=False)
    variant_code = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False)
    # Capability tags the product needs, e.g. ["screen-print"]; empty means any
    required_capabilities = Column(PortableJSONB, nullable=False, default=list)

    manufacturer_id = Column(Integer, ForeignKey("manufacturer.id", ondelete="RESTRICT"), nullable=True)
    routed_by = Column(Text, nullable=True)
    routing_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    job = relationship("ManufacturingJob", back_populates="line_items")
    manufacturer = relationship("Manufacturer")

    @property
    def is_unmatched(self) -> bool:
        return self.manufacturer_id is None
