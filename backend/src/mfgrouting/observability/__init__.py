"""Observability module: structured logging, metrics, and health checks."""

from .logging_config import configure_logging, get_logger
from .metrics import (
    routing_decisions_total,
    routing_line_items_total,
    routing_store_retries_total,
    routing_consistency_errors_total,
    routing_operation_duration_seconds,
)
from .request_id import request_id_var, get_request_id, set_request_id, generate_request_id
from .health import HealthStatus, ComponentHealth
from .middleware import RequestIDMiddleware

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Metrics
    "routing_decisions_total",
    "routing_line_items_total",
    "routing_store_retries_total",
    "routing_consistency_errors_total",
    "routing_operation_duration_seconds",
    # Request ID
    "request_id_var",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    # Health
    "HealthStatus",
    "ComponentHealth",
    # Middleware
    "RequestIDMiddleware",
]
