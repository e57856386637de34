"""
Tests for the counsel request state machine.
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from counsel_engine.models.db_models import RequestStatus, utcnow
from counsel_engine.models.results import ClaimRejection, TransitionRejection
from counsel_engine.services.counsel.state_machine import RequestStateMachine, REQUEST_STATE_CONFIG


def _request(status, counselor_id=None, expires_in=timedelta(minutes=5)):
    request = MagicMock()
    request.status = status
    request.counselor_id = counselor_id
    request.expires_at = utcnow() + expires_in
    request.is_expired.side_effect = lambda now: (
        counselor_id is None
        and status in (RequestStatus.BROADCASTING, RequestStatus.PENDING, RequestStatus.SCHEDULED)
        and request.expires_at <= now
    )
    return request


class TestTransitions:

    def test_every_status_configured(self):
        assert set(REQUEST_STATE_CONFIG) == set(RequestStatus)

    @pytest.mark.parametrize("state", [RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.EXPIRED])
    def test_terminal_states_have_no_exits(self, state):
        machine = RequestStateMachine()

        assert machine.is_terminal_state(state) is True
        assert machine.get_next_states(state) == []
        for target in RequestStatus:
            allowed, _ = machine.can_transition(state, target)
            assert allowed is False

    def test_only_accepted_can_complete(self):
        machine = RequestStateMachine()

        assert machine.can_transition(RequestStatus.ACCEPTED, RequestStatus.COMPLETED)[0] is True
        for state in (RequestStatus.BROADCASTING, RequestStatus.PENDING, RequestStatus.SCHEDULED):
            allowed, reason = machine.can_transition(state, RequestStatus.COMPLETED)
            assert allowed is False
            assert state.value in reason

    @pytest.mark.parametrize("state", [
        RequestStatus.BROADCASTING, RequestStatus.PENDING, RequestStatus.SCHEDULED, RequestStatus.ACCEPTED,
    ])
    def test_open_states_can_cancel(self, state):
        assert RequestStateMachine().can_transition(state, RequestStatus.CANCELLED)[0] is True


class TestClassification:

    def test_expired_wins_over_stored_status(self):
        machine = RequestStateMachine()
        request = _request(RequestStatus.BROADCASTING, expires_in=timedelta(seconds=-1))

        assert machine.classify_claim_failure(request, utcnow()) == ClaimRejection.EXPIRED
        assert machine.effective_status(request, utcnow()) == RequestStatus.EXPIRED

    def test_claimed_request(self):
        request = _request(RequestStatus.ACCEPTED, counselor_id="c-1")

        assert RequestStateMachine().classify_claim_failure(request, utcnow()) == ClaimRejection.ALREADY_CLAIMED

    def test_missing_request(self):
        machine = RequestStateMachine()

        assert machine.classify_claim_failure(None, utcnow()) == ClaimRejection.NOT_FOUND
        assert machine.classify_transition_failure(None, RequestStatus.COMPLETED, utcnow()) == TransitionRejection.NOT_FOUND

    def test_transition_failure_reasons(self):
        machine = RequestStateMachine()
        now = utcnow()

        assert machine.classify_transition_failure(
            _request(RequestStatus.CANCELLED), RequestStatus.COMPLETED, now,
        ) == TransitionRejection.TERMINAL_STATE
        assert machine.classify_transition_failure(
            _request(RequestStatus.PENDING), RequestStatus.COMPLETED, now,
        ) == TransitionRejection.INVALID_TRANSITION
        assert machine.classify_transition_failure(
            _request(RequestStatus.PENDING, expires_in=timedelta(seconds=-1)), RequestStatus.CANCELLED, now,
        ) == TransitionRejection.EXPIRED
