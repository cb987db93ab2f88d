"""Unit tests for the routing status state machine"""

import pytest

from mfgrouting.routing.exceptions import InvalidStateError
from mfgrouting.routing.status import (
    RoutingTier,
    ALLOWED_TRANSITIONS,
    can_transition,
    validate_transition,
    get_allowed_transitions,
    parse_status,
)


class TestRoutingStatusStateMachine:
    """Test RoutingTier values and transition validation"""

    def test_routing_tier_values(self):
        assert RoutingTier.AUTO.value == "auto"
        assert RoutingTier.FALLBACK.value == "fallback"
        assert RoutingTier.MANUAL.value == "manual"
        assert RoutingTier.PENDING.value == "pending"

    def test_unrouted_job_transitions(self):
        """Test a new job can be routed but not manually assigned"""
        assert can_transition(None, RoutingTier.AUTO) is True
        assert can_transition(None, RoutingTier.FALLBACK) is True
        assert can_transition(None, RoutingTier.PENDING) is True
        assert can_transition(None, RoutingTier.MANUAL) is False

    def test_pending_moves_forward(self):
        for target in (RoutingTier.AUTO, RoutingTier.FALLBACK, RoutingTier.MANUAL, RoutingTier.PENDING):
            assert can_transition(RoutingTier.PENDING, target) is True

    def test_routed_jobs_never_regress_to_pending(self):
        for current in (RoutingTier.AUTO, RoutingTier.FALLBACK, RoutingTier.MANUAL):
            assert can_transition(current, RoutingTier.PENDING) is False

    def test_admin_override_always_allowed_from_routed_states(self):
        for current in (RoutingTier.AUTO, RoutingTier.FALLBACK, RoutingTier.MANUAL):
            assert can_transition(current, RoutingTier.MANUAL) is True

    def test_manual_only_leads_to_manual(self):
        assert get_allowed_transitions(RoutingTier.MANUAL) == [RoutingTier.MANUAL]

    def test_every_state_has_an_entry(self):
        for tier in RoutingTier:
            assert tier in ALLOWED_TRANSITIONS
        assert None in ALLOWED_TRANSITIONS

    def test_validate_transition_raises_invalid_state(self):
        with pytest.raises(InvalidStateError) as exc_info:
            validate_transition(RoutingTier.AUTO, RoutingTier.PENDING, job_id=42)

        assert exc_info.value.job_id == 42
        assert exc_info.value.status_code == 409
        assert "auto -> pending" in exc_info.value.message

    def test_validate_transition_names_unrouted_state(self):
        with pytest.raises(InvalidStateError, match="unrouted -> manual"):
            validate_transition(None, RoutingTier.MANUAL)

    def test_parse_status(self):
        assert parse_status(None) is None
        assert parse_status("fallback") is RoutingTier.FALLBACK
