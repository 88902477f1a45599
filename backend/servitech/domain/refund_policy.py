"""Refund policy evaluation for advisory cancellations and rejections."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from servitech.domain.commission import CENT
from servitech.domain.payment_lifecycle import REFUNDABLE_STATES, RefundMode
from servitech.domain.records import AdvisoryRecord, PaymentRecord


class RefundTrigger(str, Enum):
    CLIENT_CANCEL = "client_cancel"
    EXPERT_CANCEL = "expert_cancel"
    EXPERT_REJECT = "expert_reject"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    SYSTEM_CANCEL = "system_cancel"


@dataclass(frozen=True)
class RefundDecision:
    refund: bool
    mode: Optional[RefundMode] = None
    amount: Decimal = Decimal("0.00")
    policy_basis: str = ""

    def to_payload(self) -> dict[str, object]:
        return {
            "refund": self.refund,
            "mode": self.mode.value if self.mode else None,
            "amount": str(self.amount),
            "policy_basis": self.policy_basis,
        }


class RefundPolicyEngine:
    """
    Decides how much of the gross goes back to the client.

    Every trigger refunds in full except a client cancelling a confirmed
    advisory while ``client_cancellation_refund_pct`` is below 100.
    """

    def __init__(self, client_cancellation_refund_pct: int = 100) -> None:
        if not 0 <= client_cancellation_refund_pct <= 100:
            raise ValueError("client_cancellation_refund_pct must be within [0, 100]")
        self.client_cancellation_refund_pct = client_cancellation_refund_pct

    def evaluate(
        self,
        advisory: AdvisoryRecord,
        payment: PaymentRecord,
        trigger: RefundTrigger,
    ) -> RefundDecision:
        if payment.state not in REFUNDABLE_STATES:
            return RefundDecision(refund=False, policy_basis=f"payment_{payment.state}")

        pct = self.client_cancellation_refund_pct
        if trigger is RefundTrigger.CLIENT_CANCEL and pct < 100:
            amount = (payment.amount * Decimal(pct) / Decimal(100)).quantize(
                CENT, rounding=ROUND_HALF_UP
            )
            if amount <= 0:
                # Nothing goes back; the caller releases the escrow to the expert
                return RefundDecision(refund=False, policy_basis="client_cancel_no_refund")
            return RefundDecision(
                refund=True,
                mode=RefundMode.PARTIAL,
                amount=amount,
                policy_basis=f"client_cancel_{pct}pct",
            )

        return RefundDecision(
            refund=True,
            mode=RefundMode.FULL,
            amount=payment.amount,
            policy_basis=trigger.value,
        )
