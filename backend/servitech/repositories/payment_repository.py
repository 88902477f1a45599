# backend/servitech/repositories/payment_repository.py
"""
Payment Repository for ServiTech

Escrow rows change only through compare-and-swap transitions, and binding
to an advisory is a conditional write on ``advisory_id IS NULL``.
"""

from datetime import datetime, timezone
import logging
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..domain.records import PaymentRecord
from ..models.payment import Payment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

TRANSITION_FIELDS: Tuple[str, ...] = (
    "state",
    "transaction_id",
    "refund_mode",
    "refunded_amount",
    "released_at",
    "refunded_at",
    "failed_at",
)


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_record(self, payment_id: str, *, for_update: bool = False) -> Optional[PaymentRecord]:
        payment = self.get_by_id(payment_id, for_update=for_update)
        return payment.to_record() if payment else None

    def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        return self.find_one_by(transaction_id=transaction_id)

    def insert(self, record: PaymentRecord) -> PaymentRecord:
        entity = self.add(
            Payment(
                id=record.id,
                transaction_id=record.transaction_id,
                client_id=record.client_id,
                expert_id=record.expert_id,
                amount=record.amount,
                commission=record.commission,
                expert_amount=record.expert_amount,
                method=record.method,
                currency=record.currency,
                state=record.state,
                created_at=record.created_at,
                extra_metadata=dict(record.metadata),
            )
        )
        return entity.to_record()

    def save_transition(self, current: PaymentRecord, updated: PaymentRecord) -> bool:
        """Persist ``updated`` only if the stored row is still in ``current.state``."""
        values = {
            field: getattr(updated, field)
            for field in TRANSITION_FIELDS
            if getattr(updated, field) != getattr(current, field)
        }
        values["updated_at"] = datetime.now(timezone.utc)
        return self.compare_and_set(current.id, current.state, **values)

    def bind_to_advisory(self, payment_id: str, advisory_id: str) -> bool:
        """
        Record the advisory back-reference exactly once.

        Returns:
            False when the payment is already bound (or missing).
        """
        try:
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.advisory_id.is_(None))
                .values(advisory_id=advisory_id, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error binding payment {payment_id}: {str(e)}")
            raise RepositoryException(f"Failed to bind payment: {str(e)}") from e
        bound = (result.rowcount or 0) == 1
        if bound:
            self._expire_cached(payment_id)
        return bound
