"""Customer order SQLAlchemy model"""

from sqlalchemy import Column, Integer, Text, DateTime
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class CustomerOrder(Base):
    """Customer order that manufacturing jobs are created from.

    Only the fields the routing admin surface needs are modelled here;
    the order code is what administrators search routing history by.
    """
    __tablename__ = "customer_order"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_code = Column(Text, nullable=False, unique=True)
    order_name = Column(Text, nullable=False)
    priority = Column(Text, nullable=False, default="normal", server_default="normal")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    jobs = relationship("ManufacturingJob", back_populates="order")
