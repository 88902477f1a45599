# backend/tests/integration/services/test_payment_escrow_service.py
"""
Integration tests for PaymentService against SQLite.

Covers opening payments (held and pending), commission persistence and the
escrow transitions, including the guard that keeps a bound payment in step
with its advisory.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from servitech.core.exceptions import (
    ConflictException,
    DuplicateTransactionException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from servitech.domain.payment_lifecycle import PaymentState, RefundMode
from servitech.services.directory import SqlIdentityDirectory
from servitech.services.payment_service import PaymentService
from tests.helpers.scheduling import NOW


@pytest.mark.integration
class TestOpenPayment:
    def test_hold_splits_commission(self, db, clock, config, client, expert) -> None:
        service = PaymentService(db, clock=clock, config=config)
        payment = service.hold(client.id, expert.id, Decimal("100.00"), "tarjeta")

        assert payment.state == PaymentState.HELD.value
        assert payment.commission == Decimal("15.00")
        assert payment.expert_amount == Decimal("85.00")
        assert payment.currency == "COP"

        stored = service.get_payment(payment.id)
        assert stored.amount == Decimal("100.00")
        assert stored.commission + stored.expert_amount == stored.amount
        assert stored.created_at == NOW

    def test_open_pending(self, payment_service, client, expert) -> None:
        payment = payment_service.open_pending(
            client.id, expert.id, Decimal("50000"), "nequi", metadata={"ref": "abc"}
        )
        assert payment.state == PaymentState.PENDING.value
        assert payment_service.get_payment(payment.id).metadata == {"ref": "abc"}

    def test_same_party_rejected(self, payment_service, client) -> None:
        with pytest.raises(ValidationException) as exc_info:
            payment_service.hold(client.id, client.id, Decimal("50000"), "pse")
        assert exc_info.value.code == "SAME_PARTY"

    def test_unknown_method_rejected(self, payment_service, client, expert) -> None:
        with pytest.raises(ValidationException) as exc_info:
            payment_service.hold(client.id, expert.id, Decimal("50000"), "bitcoin")
        assert exc_info.value.code == "INVALID_PAYMENT_METHOD"

    @pytest.mark.parametrize("amount", ["0.004", "10000000.01"])
    def test_amount_outside_range(self, payment_service, client, expert, amount: str) -> None:
        with pytest.raises(ValidationException) as exc_info:
            payment_service.hold(client.id, expert.id, Decimal(amount), "pse")
        assert exc_info.value.code == "AMOUNT_OUT_OF_RANGE"

    def test_duplicate_transaction_id(self, payment_service, client, expert) -> None:
        payment_service.hold(client.id, expert.id, Decimal("50000"), "pse", transaction_id="MP-1")
        with pytest.raises(DuplicateTransactionException) as exc_info:
            payment_service.hold(
                client.id, expert.id, Decimal("70000"), "pse", transaction_id="MP-1"
            )
        assert isinstance(exc_info.value, ConflictException)
        assert exc_info.value.status_code == 409

    def test_unknown_party_with_directory(self, db, clock, config, expert) -> None:
        service = PaymentService(db, clock=clock, config=config, directory=SqlIdentityDirectory(db))
        with pytest.raises(NotFoundException):
            service.hold("01HNOSUCHPARTY000000000000", expert.id, Decimal("50000"), "pse")


@pytest.mark.integration
class TestEscrowTransitions:
    @pytest.fixture
    def held(self, payment_service, client, expert):
        return payment_service.hold(client.id, expert.id, Decimal("100000"), "pse")

    def test_release_is_idempotent(self, payment_service, held, clock) -> None:
        first = payment_service.release(held.id)
        assert first.state == PaymentState.RELEASED.value
        assert first.released_at == NOW

        clock.advance(timedelta(hours=1))
        second = payment_service.release(held.id)
        assert second.state == PaymentState.RELEASED.value
        assert second.released_at == first.released_at

    def test_refund_after_release(self, payment_service, held) -> None:
        payment_service.release(held.id)
        refunded = payment_service.refund(held.id)
        assert refunded.state == PaymentState.REFUNDED.value
        assert refunded.refunded_amount == Decimal("100000.00")

    def test_partial_refund(self, payment_service, held) -> None:
        refunded = payment_service.refund(held.id, RefundMode.PARTIAL, Decimal("30000"))
        assert refunded.state == PaymentState.PARTIALLY_REFUNDED.value
        stored = payment_service.get_payment(held.id)
        assert stored.refund_mode == RefundMode.PARTIAL.value
        assert stored.refunded_amount == Decimal("30000.00")

    def test_refund_of_refunded_is_invalid(self, payment_service, held) -> None:
        payment_service.refund(held.id)
        with pytest.raises(InvalidTransitionException) as exc_info:
            payment_service.refund(held.id)
        assert exc_info.value.details["current_state"] == PaymentState.REFUNDED.value

    def test_release_of_refunded_is_invalid(self, payment_service, held) -> None:
        payment_service.refund(held.id)
        with pytest.raises(InvalidTransitionException):
            payment_service.release(held.id)

    def test_pending_fails(self, payment_service, client, expert) -> None:
        pending = payment_service.open_pending(client.id, expert.id, Decimal("50000"), "pse")
        failed = payment_service.mark_failed(pending.id)
        assert failed.state == PaymentState.FAILED.value
        assert failed.failed_at == NOW

    def test_unknown_payment(self, payment_service) -> None:
        with pytest.raises(NotFoundException):
            payment_service.release("01HNOSUCHPAYMENT0000000000")


@pytest.mark.integration
class TestBoundPaymentGuard:
    def test_cannot_release_while_advisory_open(self, book, payment_service) -> None:
        confirmation = book()
        with pytest.raises(InvalidTransitionException):
            payment_service.release(confirmation.payment.id)
        assert payment_service.get_payment(confirmation.payment.id).state == "retenido"

    def test_cannot_refund_while_advisory_open(self, book, payment_service) -> None:
        confirmation = book()
        with pytest.raises(InvalidTransitionException):
            payment_service.refund(confirmation.payment.id)

    def test_dispute_refund_after_completion(
        self, book, payment_service, advisory_service, client
    ) -> None:
        confirmation = book()
        advisory_service.finalize(confirmation.advisory.id, client.id)
        refunded = payment_service.refund(confirmation.payment.id)
        assert refunded.state == PaymentState.REFUNDED.value
