"""Integration tests for the routing admin gateway

Manual assignment, pending queue, history search, stats, store retry and
consistency checks.
"""

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError

from mfgrouting.config import Settings
from mfgrouting.models import Manufacturer, ManufacturingJob, JobLineItem, RoutingHistoryEntry
from mfgrouting.routing.exceptions import (
    ConsistencyError,
    InvalidStateError,
    NotFoundError,
    RoutingUnavailableError,
    ValidationError,
)
from mfgrouting.routing.gateway import RoutingAdminGateway
from mfgrouting.routing.matcher import CapabilityMatcher
from mfgrouting.routing.ports import MatcherPort, MatchResult, MatchTier
from mfgrouting.routing.status import RoutingTier


class NoFallbackMatcher(MatcherPort):
    """Turns fallback results into unmatched ones."""

    def match(self, requirements, pool):
        result = CapabilityMatcher().match(requirements, pool)
        if result.tier == MatchTier.FALLBACK:
            return MatchResult(None, MatchTier.UNMATCHED, "No capable manufacturer")
        return result


def store_failure():
    return OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly"))


def history_count(db_session, job_id):
    return db_session.query(RoutingHistoryEntry).filter(RoutingHistoryEntry.job_id == job_id).count()


def counter_value(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def pool(make_manufacturer):
    m1 = make_manufacturer("Northside Print", capabilities=["screen-print"], min_order_qty=10, lead_time_days=5)
    m2 = make_manufacturer("Stitch Co", capabilities=["embroidery"], min_order_qty=5, lead_time_days=3)
    return m1, m2


@pytest.fixture
def pending_job(db_session, settings, sleeps, pool, make_job):
    """Two-line job: tee auto-routed to Northside Print, tote unmatched."""
    job_id = make_job([
        {"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]},
        {"product_name": "Tote", "quantity": 20, "required_capabilities": ["dtf"]},
    ])
    strict = RoutingAdminGateway(db_session, settings=settings, matcher=NoFallbackMatcher(), sleep=sleeps.append)
    strict.route(job_id)
    return job_id


class TestAssign:
    """Manual override of a job's manufacturer"""

    def test_assign_pending_job(self, gateway, db_session, pool, pending_job):
        m1, m2 = pool

        outcome = gateway.assign(pending_job, m2.id, "Customer requested M2")

        job = db_session.get(ManufacturingJob, pending_job)
        items = db_session.query(JobLineItem).filter(JobLineItem.job_id == pending_job).all()
        latest = (
            db_session.query(RoutingHistoryEntry)
            .filter(RoutingHistoryEntry.job_id == pending_job)
            .order_by(RoutingHistoryEntry.id.desc())
            .first()
        )
        assert outcome.status == RoutingTier.MANUAL
        assert job.routing_status == "manual"
        assert job.manufacturer_id == m2.id
        assert {item.manufacturer_id for item in items} == {m2.id}
        assert all(item.routed_by == "manual" for item in items)
        assert latest.routed_by == "manual"
        assert latest.manufacturer_id == m2.id
        assert latest.operation == "assign"
        assert latest.reason == "Manually assigned by admin: Customer requested M2"
        assert history_count(db_session, pending_job) == 2

    def test_assign_overrides_auto_job(self, gateway, db_session, pool, make_job):
        m1, m2 = pool
        job_id = make_job([{"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]}])
        gateway.route(job_id)

        gateway.assign(job_id, m2.id, "Rush order", assigned_by="dana")

        job = db_session.get(ManufacturingJob, job_id)
        assert job.routing_status == "manual"
        assert job.manufacturer_id == m2.id
        assert job.original_manufacturer_id == m1.id
        assert job.routing_reason == "Manually assigned by dana: Rush order"

    def test_reassign_manual_job(self, gateway, db_session, pool, pending_job):
        m1, m2 = pool
        gateway.assign(pending_job, m2.id, "first")

        gateway.assign(pending_job, m1.id, "second")

        job = db_session.get(ManufacturingJob, pending_job)
        assert job.routing_status == "manual"
        assert job.manufacturer_id == m1.id
        assert job.original_manufacturer_id == m2.id

    def test_missing_manufacturer_id(self, gateway, pending_job):
        with pytest.raises(ValidationError):
            gateway.assign(pending_job, None, "reason")

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_empty_reason(self, gateway, pool, pending_job, reason):
        with pytest.raises(ValidationError):
            gateway.assign(pending_job, pool[0].id, reason)

    def test_unknown_job(self, gateway, pool):
        with pytest.raises(NotFoundError):
            gateway.assign(999, pool[0].id, "reason")

    def test_unknown_manufacturer(self, gateway, db_session, pending_job):
        with pytest.raises(NotFoundError):
            gateway.assign(pending_job, 999, "reason")

        assert history_count(db_session, pending_job) == 1

    def test_inactive_manufacturer_rejected(self, gateway, db_session, make_manufacturer, pending_job):
        retired = make_manufacturer("Retired Mill", is_active=False)

        with pytest.raises(InvalidStateError, match="inactive"):
            gateway.assign(pending_job, retired.id, "Only they have the fabric")

        assert db_session.get(ManufacturingJob, pending_job).routing_status == "pending"
        assert history_count(db_session, pending_job) == 1

    def test_not_accepting_manufacturer_rejected(self, gateway, make_manufacturer, pending_job):
        paused = make_manufacturer("Paused Mill", accepting_new_orders=False)

        with pytest.raises(InvalidStateError, match="not accepting"):
            gateway.assign(pending_job, paused.id, "reason")

    def test_override_allows_inactive_manufacturer(self, gateway, db_session, make_manufacturer, pending_job):
        retired = make_manufacturer("Retired Mill", is_active=False)

        outcome = gateway.assign(pending_job, retired.id, "Only they have the fabric", override_inactive=True)

        assert outcome.manufacturer_id == retired.id
        assert db_session.get(ManufacturingJob, pending_job).manufacturer_id == retired.id

    def test_override_refused_when_disabled(self, db_session, sleeps, make_manufacturer, pending_job):
        retired = make_manufacturer("Retired Mill", is_active=False)
        locked_down = RoutingAdminGateway(
            db_session,
            settings=Settings(ROUTING_ALLOW_INACTIVE_OVERRIDE=False),
            sleep=sleeps.append,
        )

        with pytest.raises(InvalidStateError, match="overrides are disabled"):
            locked_down.assign(pending_job, retired.id, "reason", override_inactive=True)

    def test_unrouted_job_cannot_be_assigned(self, gateway, pool, make_job):
        job_id = make_job([{"product_name": "Tee", "quantity": 20}])

        with pytest.raises(InvalidStateError):
            gateway.assign(job_id, pool[0].id, "reason")


class TestQueries:
    """Pending queue, manufacturers, history and stats"""

    def test_list_pending_shows_only_unmatched_lines(self, gateway, pool, pending_job):
        pending = gateway.list_pending()

        assert [p.job_id for p in pending] == [pending_job]
        assert [item.product_name for item in pending[0].unmatched_line_items] == ["Tote"]
        assert pending[0].matched_line_count == 1
        assert "1 unmatched" in pending[0].reason

    def test_list_pending_excludes_routed_jobs(self, gateway, pool, make_job):
        gateway.route(make_job([{"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]}]))

        assert gateway.list_pending() == []

    def test_list_manufacturers_active_only_by_name(self, gateway, make_manufacturer):
        make_manufacturer("Zeta Works")
        make_manufacturer("Alpha Knits")
        make_manufacturer("Gone Mill", is_active=False)

        names = [m.name for m in gateway.list_manufacturers()]

        assert names == ["Alpha Knits", "Zeta Works"]

    def test_history_newest_first(self, gateway, pool, pending_job):
        gateway.assign(pending_job, pool[1].id, "Customer requested M2")

        page = gateway.list_history()

        assert page.total == 2
        assert [e.operation for e in page.entries] == ["assign", "route"]

    def test_history_search_by_order_code(self, gateway, pool, make_order, make_job):
        for code in ("ACME-7", "BETA-1"):
            job_id = make_job([{"product_name": "Tee", "quantity": 20}], order=make_order(code))
            gateway.route(job_id)

        page = gateway.list_history(search="acme")

        assert page.total == 1
        assert page.entries[0].order_code == "ACME-7"

    def test_history_search_by_manufacturer_name(self, gateway, pool, make_job):
        gateway.route(make_job([{"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]}]))
        gateway.route(make_job([{"product_name": "Cap", "quantity": 20, "required_capabilities": ["embroidery"]}]))

        page = gateway.list_history(search="STITCH")

        assert page.total == 1
        assert page.entries[0].manufacturer_name == "Stitch Co"

    def test_history_search_treats_wildcards_literally(self, gateway, pool, make_job):
        gateway.route(make_job([{"product_name": "Tee", "quantity": 20}]))

        assert gateway.list_history(search="%").total == 0

    def test_history_pagination(self, gateway, pool, make_job):
        for _ in range(3):
            gateway.route(make_job([{"product_name": "Tee", "quantity": 20}]))

        page = gateway.list_history(limit=2, offset=2)

        assert page.total == 3
        assert len(page.entries) == 1

    def test_history_limit_is_capped(self, gateway):
        assert gateway.list_history(limit=10_000).limit == 200

    def test_history_rejects_bad_paging(self, gateway):
        with pytest.raises(ValidationError):
            gateway.list_history(limit=0)
        with pytest.raises(ValidationError):
            gateway.list_history(offset=-1)

    def test_stats(self, gateway, pool, pending_job, make_job):
        gateway.route(make_job([
            {"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]},
            {"product_name": "Cap", "quantity": 20, "required_capabilities": ["embroidery"]},
        ]))
        gateway.route(make_job([{"product_name": "Tote", "quantity": 20, "required_capabilities": ["dtf"]}]))
        make_job([{"product_name": "Hoodie", "quantity": 20}])

        stats = gateway.get_stats()

        assert stats.total_jobs == 4
        assert stats.by_tier == {"auto": 1, "fallback": 1, "manual": 0, "pending": 1}
        assert stats.pending_jobs == 1
        assert stats.unrouted_jobs == 1
        assert stats.split_orders == 1

    def test_stats_empty(self, gateway):
        stats = gateway.get_stats()

        assert stats.total_jobs == 0
        assert stats.split_orders == 0
        assert set(stats.by_tier.values()) == {0}


class TestStoreRetry:
    """Store failures are retried once with backoff, then surfaced"""

    def test_transient_failure_is_retried(self, gateway, db_session, sleeps, pool, make_job, monkeypatch):
        job_id = make_job([{"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]}])
        real_pool = gateway.store.get_candidate_pool
        calls = {"n": 0}

        def flaky_pool(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise store_failure()
            return real_pool(*args, **kwargs)

        monkeypatch.setattr(gateway.store, "get_candidate_pool", flaky_pool)

        outcome = gateway.route(job_id)

        assert outcome.status == RoutingTier.AUTO
        assert sleeps == [0.2]
        assert history_count(db_session, job_id) == 1

    def test_persistent_failure_leaves_no_partial_state(
        self, gateway, db_session, sleeps, pool, make_job, monkeypatch
    ):
        job_id = make_job([{"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]}])
        real_insert = gateway.store.insert_routing_history

        def failing_insert(*args, **kwargs):
            # Job row is already updated in the transaction when this fails
            real_insert(*args, **kwargs)
            raise store_failure()

        monkeypatch.setattr(gateway.store, "insert_routing_history", failing_insert)

        with pytest.raises(RoutingUnavailableError):
            gateway.route(job_id)

        job = db_session.get(ManufacturingJob, job_id)
        assert job.routing_status is None
        assert job.manufacturer_id is None
        assert history_count(db_session, job_id) == 0
        assert sleeps == [0.2]

    def test_retried_decision_is_counted_once(self, gateway, db_session, sleeps, pool, make_job, monkeypatch):
        job_id = make_job([{"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]}])
        real_insert = gateway.store.insert_routing_history
        calls = {"n": 0}

        def insert_then_fail_once(*args, **kwargs):
            entry = real_insert(*args, **kwargs)
            calls["n"] += 1
            if calls["n"] == 1:
                raise store_failure()
            return entry

        monkeypatch.setattr(gateway.store, "insert_routing_history", insert_then_fail_once)
        decisions_before = counter_value("mfgrouting_routing_decisions_total", operation="route", routed_by="auto")
        line_items_before = counter_value("mfgrouting_routing_line_items_total", tier="auto")

        gateway.route(job_id)

        assert sleeps == [0.2]
        assert history_count(db_session, job_id) == 1
        assert counter_value(
            "mfgrouting_routing_decisions_total", operation="route", routed_by="auto"
        ) == decisions_before + 1
        assert counter_value("mfgrouting_routing_line_items_total", tier="auto") == line_items_before + 1

    def test_backoff_is_exponential(self, db_session, sleeps, pool, make_job, monkeypatch):
        gateway = RoutingAdminGateway(
            db_session,
            settings=Settings(ROUTING_STORE_RETRY_ATTEMPTS=3, ROUTING_STORE_RETRY_DELAY_SECONDS=0.5),
            sleep=sleeps.append,
        )

        def always_fails(*args, **kwargs):
            raise store_failure()

        monkeypatch.setattr(gateway.store, "count_jobs_by_status", always_fails)

        with pytest.raises(RoutingUnavailableError):
            gateway.get_stats()

        assert sleeps == [0.5, 1.0, 2.0]

    def test_routing_errors_are_not_retried(self, gateway, sleeps):
        with pytest.raises(NotFoundError):
            gateway.route(404)

        assert sleeps == []


class TestConsistency:
    """Job fields versus latest routing history entry"""

    def test_routed_job_is_consistent(self, gateway, pool, pending_job):
        entry = gateway.check_consistency(pending_job)

        assert entry.routed_by == "pending"

    def test_unrouted_job_without_history_is_consistent(self, gateway, make_job):
        job_id = make_job([{"product_name": "Tee", "quantity": 1}])

        assert gateway.check_consistency(job_id) is None

    def test_tampered_job_raises(self, gateway, db_session, pool, pending_job):
        job = db_session.get(ManufacturingJob, pending_job)
        job.routing_status = "auto"
        job.manufacturer_id = pool[0].id
        db_session.commit()

        with pytest.raises(ConsistencyError):
            gateway.check_consistency(pending_job)

    def test_find_inconsistent_jobs(self, gateway, db_session, pool, pending_job, make_job):
        clean_id = make_job([{"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]}])
        gateway.route(clean_id)
        job = db_session.get(ManufacturingJob, pending_job)
        job.manufacturer_id = pool[1].id
        db_session.commit()

        assert gateway.find_inconsistent_jobs() == [pending_job]

    def test_check_unknown_job(self, gateway):
        with pytest.raises(NotFoundError):
            gateway.check_consistency(31337)


class TestCreateJob:
    """Job creation validation"""

    def test_unknown_order(self, gateway):
        with pytest.raises(NotFoundError):
            gateway.create_job(order_id=404, line_items=[{"product_name": "Tee", "quantity": 1}])

    @pytest.mark.parametrize("item", [
        {"product_name": "", "quantity": 1},
        {"product_name": "Tee", "quantity": 0},
        {"product_name": "Tee", "quantity": "7"},
        {"product_name": "Tee", "quantity": 20, "required_capabilities": "screen-print"},
        {"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print", 3]},
        {"product_name": "Tee", "quantity": 20, "required_capabilities": {"screen-print": True}},
    ])
    def test_malformed_line_item(self, gateway, make_order, item):
        order = make_order("ORD-BAD")

        with pytest.raises(ValidationError):
            gateway.create_job(order_id=order.id, line_items=[item])

    def test_capabilities_are_normalized(self, gateway, db_session, make_order):
        order = make_order("ORD-CAPS")

        job = gateway.create_job(
            order_id=order.id,
            line_items=[{"product_name": "Tee", "quantity": 1, "required_capabilities": [" DTG", "Screen-Print"]}],
        )

        item = db_session.query(JobLineItem).filter(JobLineItem.job_id == job.id).one()
        assert item.required_capabilities == ["dtg", "screen-print"]

    def test_create_routes_in_same_call(self, gateway, db_session, pool, make_order):
        order = make_order("ORD-NOW")

        job = gateway.create_job(
            order_id=order.id,
            line_items=[{"product_name": "Tee", "quantity": 20, "required_capabilities": ["screen-print"]}],
            actor="importer",
        )

        entries = db_session.query(RoutingHistoryEntry).filter(RoutingHistoryEntry.job_id == job.id).all()
        assert job.routing_status == "auto"
        assert job.manufacturer_id == pool[0].id
        assert [(e.operation, e.actor) for e in entries] == [("route", "importer")]

    def test_bare_string_capability_is_rejected_before_storing(self, gateway, db_session, pool, make_order):
        order = make_order("ORD-STR")

        with pytest.raises(ValidationError, match="list of strings"):
            gateway.create_job(
                order_id=order.id,
                line_items=[{"product_name": "Tee", "quantity": 20, "required_capabilities": "screen-print"}],
            )

        assert db_session.query(ManufacturingJob).count() == 0


def create_routed_job(gateway, make_order, code, capability="screen-print"):
    order = make_order(code)
    return gateway.create_job(
        order_id=order.id,
        line_items=[{"product_name": "Tee", "quantity": 20, "required_capabilities": [capability]}],
    )


class TestCompleteJob:
    """Completing a job releases manufacturer capacity"""

    @pytest.fixture
    def solo(self, make_manufacturer):
        solo = make_manufacturer("Solo Print", capabilities=["screen-print"], max_concurrent_jobs=1)
        make_manufacturer("Other Mill")
        return solo

    def test_full_manufacturer_is_auto_matched_again_after_completion(self, gateway, solo, make_order):
        first = create_routed_job(gateway, make_order, "ORD-C1")
        second = create_routed_job(gateway, make_order, "ORD-C2")
        assert (first.routing_status, first.manufacturer_id) == ("auto", solo.id)
        assert second.routing_status == "fallback"
        assert second.manufacturer_id != solo.id

        completed = gateway.complete_job(first.id)
        third = create_routed_job(gateway, make_order, "ORD-C3")

        assert completed.is_completed is True
        assert (third.routing_status, third.manufacturer_id) == ("auto", solo.id)

    def test_completion_writes_no_history_and_stays_consistent(self, gateway, db_session, solo, make_order):
        job = create_routed_job(gateway, make_order, "ORD-C4")

        gateway.complete_job(job.id)

        assert history_count(db_session, job.id) == 1
        assert gateway.find_inconsistent_jobs() == []

    def test_already_completed(self, gateway, solo, make_order):
        job = create_routed_job(gateway, make_order, "ORD-C5")
        gateway.complete_job(job.id)

        with pytest.raises(InvalidStateError, match="already completed"):
            gateway.complete_job(job.id)

    def test_pending_job_cannot_be_completed(self, gateway, pool, pending_job):
        with pytest.raises(InvalidStateError, match="is pending"):
            gateway.complete_job(pending_job)

    def test_unrouted_job_cannot_be_completed(self, gateway, pool, make_job):
        job_id = make_job([{"product_name": "Tee", "quantity": 20}])

        with pytest.raises(InvalidStateError, match="is unrouted"):
            gateway.complete_job(job_id)

    def test_unknown_job(self, gateway):
        with pytest.raises(NotFoundError):
            gateway.complete_job(404)

    def test_completed_job_cannot_be_reassigned(self, gateway, db_session, solo, make_order):
        job = create_routed_job(gateway, make_order, "ORD-C6")
        other = db_session.query(Manufacturer).filter(Manufacturer.name == "Other Mill").one()
        gateway.complete_job(job.id)

        with pytest.raises(InvalidStateError, match="completed"):
            gateway.assign(job.id, other.id, "late change")

        assert history_count(db_session, job.id) == 1
