"""Pytest fixtures for routing tests.

Provides reusable test fixtures for:
- Database session on a fresh in-memory SQLite schema per test
- Manufacturer, order and job factories
- Admin gateway wired to the test session (no backoff sleeps)
- FastAPI test client using the same session

Usage:
    def test_pending(gateway, make_manufacturer, make_job):
        ...
"""

import os

# Set environment variables BEFORE any imports so settings and engine pick them up
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from mfgrouting.config import Settings
from mfgrouting.database import engine, SessionLocal, get_db
from mfgrouting.main import app
from mfgrouting.models import Base, Manufacturer, CustomerOrder
from mfgrouting.routing.gateway import RoutingAdminGateway


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test.

    Creates all tables before the test and drops them after.
    Each test gets a clean database state.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings() -> Settings:
    """Settings with the default retry policy and overrides enabled."""
    return Settings(
        ROUTING_STORE_RETRY_ATTEMPTS=1,
        ROUTING_STORE_RETRY_DELAY_SECONDS=0.2,
        ROUTING_ALLOW_INACTIVE_OVERRIDE=True,
    )


@pytest.fixture
def sleeps() -> list:
    """Records backoff delays requested by the gateway."""
    return []


@pytest.fixture
def gateway(db_session: Session, settings: Settings, sleeps: list) -> RoutingAdminGateway:
    """Admin gateway on the test session with the default matcher."""
    return RoutingAdminGateway(db_session, settings=settings, sleep=sleeps.append)


@pytest.fixture
def make_manufacturer(db_session: Session):
    """Factory for manufacturers.

    Defaults: active, accepting new orders, no capabilities, MOQ 1,
    lead time 14 days, unlimited capacity.
    """
    def _make(name: str, **fields) -> Manufacturer:
        fields.setdefault("capabilities", [])
        manufacturer = Manufacturer(name=name, **fields)
        db_session.add(manufacturer)
        db_session.commit()
        db_session.refresh(manufacturer)
        return manufacturer

    return _make


@pytest.fixture
def make_order(db_session: Session):
    """Factory for customer orders."""
    def _make(order_code: str, order_name: str = "Test order") -> CustomerOrder:
        order = CustomerOrder(order_code=order_code, order_name=order_name)
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


@pytest.fixture
def make_job(gateway: RoutingAdminGateway, make_order):
    """Factory for unrouted jobs.

    line_items are dicts with product_name, quantity and optional
    required_capabilities. Returns the job id.
    """
    counter = {"n": 0}

    def _make(line_items, order: CustomerOrder = None) -> int:
        if order is None:
            counter["n"] += 1
            order = make_order(f"ORD-{1000 + counter['n']}")
        job = gateway.create_job(order_id=order.id, line_items=line_items, route=False)
        return job.id

    return _make


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Test client whose requests share the test database session."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    yield TestClient(app)

    app.dependency_overrides.clear()
