"""Tests for the pure advisory transition functions."""

import pytest

from servitech.core.exceptions import InvalidTransitionException, ValidationException
from servitech.domain import advisory_lifecycle
from servitech.domain.advisory_lifecycle import AdvisoryState, can_transition
from tests.helpers.scheduling import NOW, advisory_record


@pytest.mark.unit
class TestAdvisoryTransitions:
    def test_confirm_from_pending_payment(self) -> None:
        current = advisory_record(AdvisoryState.PENDING_PAYMENT.value)
        updated = advisory_lifecycle.confirm(current, NOW)
        assert updated.state == AdvisoryState.CONFIRMED.value
        assert updated.confirmed_at == NOW
        # The input record is untouched
        assert current.state == AdvisoryState.PENDING_PAYMENT.value

    def test_complete_stamps_actor_and_review(self) -> None:
        updated = advisory_lifecycle.complete(
            advisory_record(), NOW, "client-1", rating=5, comment="Excelente"
        )
        assert updated.state == AdvisoryState.COMPLETED.value
        assert updated.completed_by == "client-1"
        assert updated.completed_at == NOW
        assert updated.auto_completed is False
        assert updated.review_rating == 5

    def test_cancel_records_reason(self) -> None:
        updated = advisory_lifecycle.cancel(advisory_record(), NOW, "expert-1", "Viaje")
        assert updated.state == AdvisoryState.CANCELLED.value
        assert updated.cancelled_by == "expert-1"
        assert updated.cancellation_reason == "Viaje"

    @pytest.mark.parametrize("state", ["pendiente-pago", "confirmada"])
    def test_reject_allowed_from_open_states(self, state: str) -> None:
        updated = advisory_lifecycle.reject(advisory_record(state), NOW, "Sin cupo")
        assert updated.state == AdvisoryState.REJECTED.value
        assert updated.rejection_reason == "Sin cupo"

    @pytest.mark.parametrize("state", ["pendiente-pago", "completada", "cancelada", "rechazada"])
    def test_finalize_only_from_confirmed(self, state: str) -> None:
        with pytest.raises(InvalidTransitionException) as exc_info:
            advisory_lifecycle.complete(advisory_record(state), NOW, "client-1")
        assert exc_info.value.details["current_state"] == state
        assert exc_info.value.details["operation"] == "finalize"

    def test_cancel_not_allowed_from_pending_payment(self) -> None:
        with pytest.raises(InvalidTransitionException):
            advisory_lifecycle.cancel(advisory_record("pendiente-pago"), NOW, "client-1")

    @pytest.mark.parametrize("terminal", ["completada", "cancelada", "rechazada"])
    def test_terminal_states_have_no_exits(self, terminal: str) -> None:
        for target in AdvisoryState:
            assert not can_transition(terminal, target.value)

    @pytest.mark.parametrize("rating", [0, 6, True])
    def test_invalid_rating(self, rating) -> None:
        with pytest.raises(ValidationException):
            advisory_lifecycle.complete(advisory_record(), NOW, "client-1", rating=rating)
