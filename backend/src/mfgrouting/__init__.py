"""Manufacturer routing service.

Assigns manufacturing job line items to manufacturers, keeps an append-only
routing history, and exposes an admin surface for pending jobs, re-routing,
and manual assignment.
"""

__version__ = "0.1.0"
