# backend/tests/integration/services/test_advisory_booking_service.py
"""
Integration tests for advisory booking.

Exercises AdvisoryService.create_advisory / book_with_payment /
confirm_payment / fail_payment against SQLite, including the overlap rules
and the validation order of the booking request.
"""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from servitech.core.exceptions import (
    ConflictException,
    DuplicatePaymentBindingException,
    NotFoundException,
    ScheduleConflictException,
    ValidationException,
)
from servitech.domain.advisory_lifecycle import AdvisoryState
from servitech.domain.payment_lifecycle import PaymentState
from servitech.models.advisory import Advisory
from servitech.models.payment import Payment
from servitech.repositories import RepositoryFactory
from tests.helpers.scheduling import NOW, at


@pytest.mark.integration
class TestBookAdvisory:
    def test_held_payment_books_confirmed_advisory(self, book, publisher) -> None:
        confirmation = book(at(10))
        advisory, payment = confirmation.advisory, confirmation.payment

        assert advisory.state == AdvisoryState.CONFIRMED.value
        assert advisory.confirmed_at == NOW
        assert advisory.code.startswith("ASE-")
        assert advisory.end_time - advisory.start_time == timedelta(hours=1)
        assert advisory.client.display_name == "Laura Prueba"
        assert payment.state == PaymentState.HELD.value
        assert payment.advisory_id == advisory.id
        assert advisory.payment_id == payment.id
        assert publisher.event_types == ["AdvisoryCreated"]

    def test_pending_payment_books_pending_advisory(self, book) -> None:
        confirmation = book(at(10), capture=False)
        assert confirmation.advisory.state == AdvisoryState.PENDING_PAYMENT.value
        assert confirmation.advisory.confirmed_at is None
        assert confirmation.payment.state == PaymentState.PENDING.value

    def test_create_against_existing_payment(
        self, advisory_service, payment_service, make_request, client, expert
    ) -> None:
        payment = payment_service.hold(client.id, expert.id, Decimal("80000"), "pse")
        advisory = advisory_service.create_advisory(make_request(at(14)), payment.id)

        assert advisory.payment_id == payment.id
        assert payment_service.get_payment(payment.id).advisory_id == advisory.id

    def test_dual_role_account_can_be_expert(self, book, dual_role) -> None:
        confirmation = book(at(10), expert_email=dual_role.email)
        assert confirmation.advisory.expert.id == dual_role.id


@pytest.mark.integration
class TestScheduleConflicts:
    def test_overlapping_booking_is_rejected(self, book, db) -> None:
        first = book(at(10))
        with pytest.raises(ScheduleConflictException) as exc_info:
            book(at(10, 30))

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["conflicting_advisory_id"] == first.advisory.id
        # Nothing from the failed attempt survives
        assert db.query(Advisory).count() == 1
        assert db.query(Payment).count() == 1

    def test_back_to_back_bookings_succeed(self, book) -> None:
        first = book(at(10))
        second = book(at(11))
        assert first.advisory.end_time == second.advisory.start_time

    def test_other_expert_same_slot(self, book, other_expert) -> None:
        book(at(10))
        assert book(at(10), expert_email=other_expert.email).advisory is not None

    def test_pending_advisory_does_not_block(self, book) -> None:
        book(at(10), capture=False)
        confirmed = book(at(10))
        assert confirmed.advisory.state == AdvisoryState.CONFIRMED.value

    def test_cancelled_advisory_frees_the_slot(self, book, advisory_service, client) -> None:
        first = book(at(10))
        advisory_service.cancel(first.advisory.id, client.id)
        assert book(at(10)).advisory.state == AdvisoryState.CONFIRMED.value


@pytest.mark.integration
class TestBookingValidation:
    def test_same_party(self, book, client) -> None:
        with pytest.raises(ValidationException) as exc_info:
            book(at(10), expert_email=client.email.upper())
        assert exc_info.value.code == "SAME_PARTY"

    def test_unknown_client(self, book) -> None:
        with pytest.raises(NotFoundException) as exc_info:
            book(at(10), client_email="nadie@cliente.co")
        assert exc_info.value.code == "PARTY_NOT_FOUND"

    def test_role_mismatch(self, book, stranger) -> None:
        with pytest.raises(ValidationException) as exc_info:
            book(at(10), expert_email=stranger.email)
        assert exc_info.value.code == "ROLE_MISMATCH"

    def test_inactive_expert(self, book, db, expert) -> None:
        RepositoryFactory.create_user_repository(db).set_active(expert.id, False)
        db.commit()
        with pytest.raises(ValidationException) as exc_info:
            book(at(10))
        assert exc_info.value.code == "PARTY_INACTIVE"

    def test_unknown_category(self, advisory_service, make_request) -> None:
        request = replace(make_request(at(10)), category="astrologia")
        with pytest.raises(NotFoundException) as exc_info:
            advisory_service.book_with_payment(request, amount=Decimal("50000"), method="pse")
        assert exc_info.value.code == "CATEGORY_NOT_FOUND"

    def test_start_in_the_past(self, book) -> None:
        with pytest.raises(ValidationException) as exc_info:
            book(NOW - timedelta(minutes=5))
        assert exc_info.value.code == "START_IN_PAST"

    @pytest.mark.parametrize("duration", [0, 45])
    def test_duration_not_allowed(self, book, duration: int) -> None:
        with pytest.raises(ValidationException) as exc_info:
            book(at(10), duration)
        assert exc_info.value.code == "INVALID_DURATION"

    def test_payment_of_another_pair(
        self, advisory_service, payment_service, make_request, client, other_expert
    ) -> None:
        payment = payment_service.hold(client.id, other_expert.id, Decimal("80000"), "pse")
        with pytest.raises(ValidationException) as exc_info:
            advisory_service.create_advisory(make_request(at(10)), payment.id)
        assert exc_info.value.code == "PAYMENT_PARTY_MISMATCH"

    def test_payment_already_bound(self, book, advisory_service, make_request) -> None:
        first = book(at(10))
        with pytest.raises(DuplicatePaymentBindingException):
            advisory_service.create_advisory(make_request(at(15)), first.payment.id)

    def test_failed_payment_cannot_back_an_advisory(
        self, advisory_service, payment_service, make_request, client, expert
    ) -> None:
        payment = payment_service.open_pending(client.id, expert.id, Decimal("80000"), "pse")
        payment_service.mark_failed(payment.id)
        with pytest.raises(ValidationException) as exc_info:
            advisory_service.create_advisory(make_request(at(10)), payment.id)
        assert exc_info.value.code == "PAYMENT_NOT_USABLE"


@pytest.mark.integration
class TestIdempotentCreate:
    def test_same_key_same_payment_returns_existing(
        self, advisory_service, payment_service, make_request, client, expert, db
    ) -> None:
        payment = payment_service.hold(client.id, expert.id, Decimal("80000"), "pse")
        first = advisory_service.create_advisory(make_request(at(10), key="req-1"), payment.id)
        again = advisory_service.create_advisory(make_request(at(10), key="req-1"), payment.id)

        assert again.id == first.id
        assert db.query(Advisory).count() == 1

    def test_same_key_other_payment_conflicts(
        self, advisory_service, payment_service, make_request, client, expert
    ) -> None:
        first_payment = payment_service.hold(client.id, expert.id, Decimal("80000"), "pse")
        second_payment = payment_service.hold(client.id, expert.id, Decimal("80000"), "pse")
        advisory_service.create_advisory(make_request(at(10), key="req-1"), first_payment.id)

        with pytest.raises(ConflictException) as exc_info:
            advisory_service.create_advisory(make_request(at(12), key="req-1"), second_payment.id)
        assert exc_info.value.code == "IDEMPOTENCY_KEY_REUSED"


@pytest.mark.integration
class TestGatewayConfirmation:
    def test_capture_confirms_pending_advisory(self, book, advisory_service, publisher) -> None:
        pending = book(at(10), capture=False)
        result = advisory_service.confirm_payment(pending.payment.id, "MP-991")

        assert result.payment.state == PaymentState.HELD.value
        assert result.payment.transaction_id == "MP-991"
        assert result.advisory.state == AdvisoryState.CONFIRMED.value
        assert publisher.event_types[-1] == "AdvisoryConfirmed"

    def test_capture_conflicting_with_confirmed_booking(
        self, book, advisory_service, payment_service
    ) -> None:
        pending = book(at(10), capture=False)
        book(at(10, 30))

        with pytest.raises(ScheduleConflictException):
            advisory_service.confirm_payment(pending.payment.id)

        assert payment_service.get_payment(pending.payment.id).state == PaymentState.PENDING.value
        advisory = advisory_service.get_advisory(pending.advisory.id)
        assert advisory.state == AdvisoryState.PENDING_PAYMENT.value

    def test_capture_unbound_payment(self, advisory_service, payment_service, client, expert) -> None:
        payment = payment_service.open_pending(client.id, expert.id, Decimal("80000"), "pse")
        result = advisory_service.confirm_payment(payment.id)
        assert result.advisory is None
        assert result.payment.state == PaymentState.HELD.value

    def test_gateway_failure_rejects_pending_advisory(self, book, advisory_service) -> None:
        pending = book(at(10), capture=False)
        result = advisory_service.fail_payment(pending.payment.id, "tarjeta rechazada")

        assert result.payment.state == PaymentState.FAILED.value
        assert result.advisory.state == AdvisoryState.REJECTED.value
        assert result.advisory.rejection_reason == "tarjeta rechazada"
