"""Prometheus metrics for the routing service."""

from prometheus_client import Counter, Histogram

# One increment per routing history entry written
routing_decisions_total = Counter(
    "mfgrouting_routing_decisions_total",
    "Total routing decisions recorded",
    ["operation", "routed_by"]  # operation: route|reroute|assign
)

routing_line_items_total = Counter(
    "mfgrouting_routing_line_items_total",
    "Line items routed by matcher tier",
    ["tier"]  # tier: auto|fallback|unmatched
)

routing_store_retries_total = Counter(
    "mfgrouting_routing_store_retries_total",
    "Store operations retried after a database failure",
    ["operation"]
)

routing_consistency_errors_total = Counter(
    "mfgrouting_routing_consistency_errors_total",
    "Jobs whose routing fields disagree with their latest history entry"
)

routing_operation_duration_seconds = Histogram(
    "mfgrouting_routing_operation_duration_seconds",
    "Time spent in gateway routing operations",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)
