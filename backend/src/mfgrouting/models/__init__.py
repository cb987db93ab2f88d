"""SQLAlchemy Models for the routing service"""

from .base import Base
from .manufacturer import Manufacturer
from .order import CustomerOrder
from .manufacturing_job import ManufacturingJob, JobLineItem
from .routing_history import RoutingHistoryEntry

__all__ = [
    "Base",
    "Manufacturer",
    "CustomerOrder",
    "ManufacturingJob",
    "JobLineItem",
    "RoutingHistoryEntry",
]
