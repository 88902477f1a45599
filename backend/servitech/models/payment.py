# backend/servitech/models/payment.py
"""
Payment escrow record.

Money is held (``retenido``) while an advisory is open and either released
to the expert on completion or refunded to the client. Amounts are Decimal
with two places and ``commission + expert_amount == amount`` always holds.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base
from ..domain.payment_lifecycle import PaymentState
from ..domain.records import PaymentRecord
from .types import JSONDictType, TimestampMixin, UTCDateTime


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    client_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    expert_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    expert_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="COP")

    state: Mapped[str] = mapped_column(
        String(24), nullable=False, default=PaymentState.PENDING.value, index=True
    )
    # Set once when an advisory binds this payment; id only, no FK to keep the cycle out
    advisory_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, unique=True)

    refund_mode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    refunded_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    released_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    extra_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONDictType(), nullable=True, default=dict
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "state IN ('pendiente', 'retenido', 'liberado', 'reembolsado', "
            "'reembolsado-parcial', 'fallido')",
            name="ck_payments_state",
        ),
        CheckConstraint(
            "refund_mode IS NULL OR refund_mode IN ('full', 'partial')",
            name="ck_payments_refund_mode",
        ),
        Index("ix_payments_pair_state", "client_id", "expert_id", "state"),
    )

    def to_record(self) -> PaymentRecord:
        return PaymentRecord(
            id=self.id,
            client_id=self.client_id,
            expert_id=self.expert_id,
            amount=Decimal(self.amount),
            commission=Decimal(self.commission),
            expert_amount=Decimal(self.expert_amount),
            method=self.method,
            currency=self.currency,
            state=self.state,
            created_at=self.created_at,
            transaction_id=self.transaction_id,
            advisory_id=self.advisory_id,
            refund_mode=self.refund_mode,
            refunded_amount=(
                Decimal(self.refunded_amount) if self.refunded_amount is not None else None
            ),
            released_at=self.released_at,
            refunded_at=self.refunded_at,
            failed_at=self.failed_at,
            metadata=dict(self.extra_metadata or {}),
        )

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.state} {self.amount} {self.currency}>"
