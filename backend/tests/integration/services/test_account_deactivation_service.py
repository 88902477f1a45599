# backend/tests/integration/services/test_account_deactivation_service.py
"""Integration tests for the account deactivation cascade."""

from decimal import Decimal

import pytest

from servitech.core.exceptions import NotFoundException, ValidationException
from servitech.domain.advisory_lifecycle import AdvisoryState
from servitech.domain.payment_lifecycle import PaymentState
from servitech.services.account_deactivation_service import AccountDeactivationService
from tests.helpers.scheduling import at


@pytest.mark.integration
class TestAccountDeactivation:
    @pytest.fixture
    def deactivation(self, db, clock, config, publisher) -> AccountDeactivationService:
        return AccountDeactivationService(
            db,
            clock=clock,
            # Cascade refunds stay full even when client cancellations are partial
            config=config.model_copy(update={"client_cancellation_refund_pct": 50}),
            publisher=publisher,
        )

    def test_cancels_confirmed_advisories_with_full_refund(
        self, book, deactivation, advisory_service, payment_service, expert, client
    ) -> None:
        first = book(at(10))
        second = book(at(12))
        pending = book(at(14), capture=False)
        done = book(at(16))
        advisory_service.finalize(done.advisory.id, client.id)

        report = deactivation.deactivate(expert.id)

        assert report.was_active is True
        assert sorted(report.cancelled) == sorted([first.advisory.id, second.advisory.id])
        assert report.failed == {}
        for confirmation in (first, second):
            advisory = advisory_service.get_advisory(confirmation.advisory.id)
            assert advisory.state == AdvisoryState.CANCELLED.value
            assert advisory.cancellation_reason == "account deactivated"
            payment = payment_service.get_payment(confirmation.payment.id)
            assert payment.state == PaymentState.REFUNDED.value
            assert payment.refunded_amount == Decimal("100000.00")

        assert advisory_service.get_advisory(pending.advisory.id).state == "pendiente-pago"
        assert advisory_service.get_advisory(done.advisory.id).state == "completada"

    def test_is_idempotent(self, book, deactivation, expert) -> None:
        book(at(10))
        deactivation.deactivate(expert.id)
        again = deactivation.deactivate(expert.id)

        assert again.was_active is False
        assert again.cancelled == []

    def test_deactivated_party_cannot_be_booked(self, book, deactivation, expert) -> None:
        deactivation.deactivate(expert.id)
        with pytest.raises(ValidationException) as exc_info:
            book(at(10))
        assert exc_info.value.code == "PARTY_INACTIVE"

    def test_client_side_cascade(self, book, deactivation, advisory_service, client) -> None:
        confirmation = book(at(10))
        report = deactivation.deactivate(client.id)
        assert report.cancelled == [confirmation.advisory.id]
        assert advisory_service.get_advisory(confirmation.advisory.id).cancelled_by == "system"

    def test_unknown_party(self, deactivation) -> None:
        with pytest.raises(NotFoundException):
            deactivation.deactivate("01HNOSUCHPARTY000000000000")
