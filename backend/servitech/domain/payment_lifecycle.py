"""
Payment escrow lifecycle.

    pendiente --capture--> retenido --release--> liberado
    pendiente --fail--> fallido
    retenido | liberado --refund--> reembolsado | reembolsado-parcial

``release`` on an already released payment is a no-op so retries are safe.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

from servitech.core.exceptions import InvalidTransitionException, ValidationException
from servitech.domain.commission import to_money
from servitech.domain.records import PaymentRecord


class PaymentState(str, Enum):
    PENDING = "pendiente"
    HELD = "retenido"
    RELEASED = "liberado"
    REFUNDED = "reembolsado"
    PARTIALLY_REFUNDED = "reembolsado-parcial"
    FAILED = "fallido"


class RefundMode(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


REFUNDABLE_STATES: FrozenSet[str] = frozenset(
    {PaymentState.HELD.value, PaymentState.RELEASED.value}
)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PaymentState.PENDING.value: frozenset({PaymentState.HELD.value, PaymentState.FAILED.value}),
    PaymentState.HELD.value: frozenset(
        {
            PaymentState.RELEASED.value,
            PaymentState.REFUNDED.value,
            PaymentState.PARTIALLY_REFUNDED.value,
        }
    ),
    PaymentState.RELEASED.value: frozenset(
        {PaymentState.REFUNDED.value, PaymentState.PARTIALLY_REFUNDED.value}
    ),
    PaymentState.REFUNDED.value: frozenset(),
    PaymentState.PARTIALLY_REFUNDED.value: frozenset(),
    PaymentState.FAILED.value: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _require(payment: PaymentRecord, target: PaymentState, operation: str) -> None:
    if not can_transition(payment.state, target.value):
        raise InvalidTransitionException("payment", payment.id, payment.state, operation)


def capture(payment: PaymentRecord, transaction_id: Optional[str] = None) -> PaymentRecord:
    _require(payment, PaymentState.HELD, "capture")
    return replace(
        payment,
        state=PaymentState.HELD.value,
        transaction_id=transaction_id or payment.transaction_id,
    )


def release(payment: PaymentRecord, at: datetime) -> PaymentRecord:
    if payment.state == PaymentState.RELEASED.value:
        return payment
    _require(payment, PaymentState.RELEASED, "release")
    return replace(payment, state=PaymentState.RELEASED.value, released_at=at)


def refund(
    payment: PaymentRecord,
    at: datetime,
    mode: RefundMode = RefundMode.FULL,
    amount: Optional[Decimal] = None,
) -> PaymentRecord:
    """
    Refund a held or released payment.

    A partial refund needs ``0 < amount < payment.amount``; a full refund
    returns the gross and ignores ``amount``.
    """
    mode = RefundMode(mode)
    target = PaymentState.REFUNDED if mode is RefundMode.FULL else PaymentState.PARTIALLY_REFUNDED
    _require(payment, target, "refund")

    if mode is RefundMode.FULL:
        refunded = payment.amount
    else:
        if amount is None:
            raise ValidationException(
                "Partial refunds require an amount", code="INVALID_REFUND_AMOUNT"
            )
        refunded = to_money(amount, "refund_amount")
        if not Decimal("0") < refunded < payment.amount:
            raise ValidationException(
                "Partial refund must be greater than zero and below the payment amount",
                code="INVALID_REFUND_AMOUNT",
                details={"amount": str(refunded), "payment_amount": str(payment.amount)},
            )
    return replace(
        payment,
        state=target.value,
        refund_mode=mode.value,
        refunded_amount=refunded,
        refunded_at=at,
    )


def fail(payment: PaymentRecord, at: datetime) -> PaymentRecord:
    _require(payment, PaymentState.FAILED, "fail")
    return replace(payment, state=PaymentState.FAILED.value, failed_at=at)
