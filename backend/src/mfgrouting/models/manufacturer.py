"""Manufacturer SQLAlchemy model"""

from sqlalchemy import Column, Integer, Text, Boolean, DateTime, Index
from sqlalchemy.sql import expression

from .base import Base, PortableJSONB, utcnow


class Manufacturer(Base):
    """Production vendor that manufacturing jobs are routed to.

    Maintained by administrators. The routing logic only reads these rows:
    a manufacturer can receive work only while it is active and accepting
    new orders.
    """
    __tablename__ = "manufacturer"
    __table_args__ = (
        Index("ix_manufacturer_active_accepting", "is_active", "accepting_new_orders"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    contact_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default=expression.true())
    accepting_new_orders = Column(Boolean, nullable=False, default=True, server_default=expression.true())
    country = Column(Text, nullable=True)
    zone = Column(Text, nullable=True)
    # Capability tags, e.g. ["screen-print", "embroidery"]
    capabilities = Column(PortableJSONB, nullable=False, default=list)
    min_order_qty = Column(Integer, nullable=False, default=1, server_default="1")
    lead_time_days = Column(Integer, nullable=False, default=14, server_default="14")
    max_concurrent_jobs = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_eligible(self) -> bool:
        """True when the manufacturer may receive new work."""
        return bool(self.is_active and self.accepting_new_orders)
