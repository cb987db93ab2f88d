#!/usr/bin/env python
"""Seed script for a demo routing setup.

Creates a handful of manufacturers with different capabilities, minimum
order quantities and lead times, plus one demo order whose jobs are
routed through the admin gateway so the pending queue, history and stats
have something to show.

Usage:
    python backend/scripts/seed_manufacturers.py

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    SEED_ORDER_CODE: Order code for the demo order (default: DEMO-1001)
"""

import os
import sys

from mfgrouting.database import get_db_session
from mfgrouting.models import Manufacturer, CustomerOrder
from mfgrouting.routing import RoutingAdminGateway, RoutingError

DEMO_MANUFACTURERS = [
    {
        "name": "Northside Print Works",
        "country": "DE",
        "zone": "EU",
        "capabilities": ["screen-print", "dtg"],
        "min_order_qty": 10,
        "lead_time_days": 5,
        "max_concurrent_jobs": 20,
    },
    {
        "name": "Stitch & Co",
        "country": "PT",
        "zone": "EU",
        "capabilities": ["embroidery"],
        "min_order_qty": 5,
        "lead_time_days": 3,
    },
    {
        "name": "Pacific Apparel Lab",
        "country": "US",
        "zone": "NA",
        "capabilities": ["screen-print", "embroidery", "cut-and-sew"],
        "min_order_qty": 100,
        "lead_time_days": 21,
    },
    {
        "name": "Dormant Textiles",
        "country": "PL",
        "zone": "EU",
        "capabilities": ["dtf"],
        "min_order_qty": 1,
        "lead_time_days": 7,
        "accepting_new_orders": False,
    },
]

DEMO_JOBS = [
    [
        {"product_name": "Crew Tee", "variant_code": "TEE-BLK-M", "quantity": 40,
         "required_capabilities": ["screen-print"]},
        {"product_name": "Dad Cap", "variant_code": "CAP-NVY", "quantity": 12,
         "required_capabilities": ["embroidery"]},
    ],
    [
        {"product_name": "Tote Bag", "variant_code": "TOTE-NAT", "quantity": 25,
         "required_capabilities": ["dtf"]},
    ],
]


def main():
    """Create demo manufacturers and a routed demo order."""
    order_code = os.getenv("SEED_ORDER_CODE", "DEMO-1001")

    try:
        with get_db_session() as session:
            created = 0
            for data in DEMO_MANUFACTURERS:
                existing = session.query(Manufacturer).filter(Manufacturer.name == data["name"]).first()
                if existing:
                    continue
                session.add(Manufacturer(**data))
                created += 1

            order = session.query(CustomerOrder).filter(CustomerOrder.order_code == order_code).first()
            if order is not None:
                print(f"Order {order_code} already exists, created {created} manufacturers")
                return

            order = CustomerOrder(order_code=order_code, order_name="Demo merch drop")
            session.add(order)
            session.commit()

            gateway = RoutingAdminGateway(session)
            for line_items in DEMO_JOBS:
                job = gateway.create_job(order_id=order.id, line_items=line_items, actor="seed")
                print(f"  Job {job.id}: {job.routing_status} -> {job.routing_reason}")

            print("SUCCESS: Demo routing data created")
            print(f"  Manufacturers created: {created}")
            print(f"  Order:                 {order_code} (id {order.id})")

    except RoutingError as e:
        print(f"ERROR: Routing failed: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
