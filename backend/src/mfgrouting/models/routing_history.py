"""RoutingHistoryEntry SQLAlchemy model"""

from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class RoutingHistoryEntry(Base):
    """Append-only audit record of a routing attempt.

    One row is written per routing attempt (initial route, re-route, manual
    assignment). Entries are never updated or deleted. order_id is
    denormalized from the job for history queries.
    """
    __tablename__ = "routing_history"
    __table_args__ = (
        Index("ix_routing_history_job_id", "job_id"),
        Index("ix_routing_history_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, ForeignKey("manufacturing_job.id", ondelete="RESTRICT"), nullable=False)
    order_id = Column(Integer, ForeignKey("customer_order.id", ondelete="RESTRICT"), nullable=False)
    manufacturer_id = Column(Integer, ForeignKey("manufacturer.id", ondelete="RESTRICT"), nullable=True)
    routed_by = Column(Text, nullable=False)
    reason = Column(Text, nullable=False)
    operation = Column(Text, nullable=False)
    actor = Column(Text, nullable=False, default="system", server_default="system")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    job = relationship("ManufacturingJob", back_populates="history")
    order = relationship("CustomerOrder")
    manufacturer = relationship("Manufacturer")

    @property
    def order_code(self):
        return self.order.order_code if self.order else None

    @property
    def manufacturer_name(self):
        return self.manufacturer.name if self.manufacturer else None
