# backend/servitech/services/payment_service.py
"""
Payment escrow service for ServiTech.

Owns every money movement: opening a payment (held or pending capture),
capture, release to the expert, refund to the client and failure. Each
``apply_*`` method works inside the caller's transaction so the advisory
service can move the advisory and its payment atomically; the public
methods wrap them in their own transaction.

All transitions are compare-and-swap on the stored state. Losing a race on
``release`` to another release is a success (the money moved exactly once);
losing any other race is an InvalidTransitionException.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    DuplicateTransactionException,
    InvalidTransitionException,
    NotFoundException,
    RepositoryException,
    ValidationException,
)
from ..core.ulid_helper import generate_ulid
from ..domain import payment_lifecycle
from ..domain.advisory_lifecycle import AdvisoryState, TERMINAL_STATES
from ..domain.commission import split_commission, to_money
from ..domain.payment_lifecycle import PaymentState, RefundMode
from ..domain.records import PaymentRecord
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from .base import BaseService
from .directory import IdentityDirectory

logger = logging.getLogger(__name__)


class PaymentService(BaseService):
    """Payment escrow state machine."""

    def __init__(
        self,
        db: Session,
        *,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        directory: Optional[IdentityDirectory] = None,
    ):
        super().__init__(db)
        self.clock = clock or system_clock
        self.config = config or default_settings
        self.directory = directory
        self.repository = RepositoryFactory.create_payment_repository(db)
        self.advisory_repository = RepositoryFactory.create_advisory_repository(db)

    # ------------------------------------------------------------------
    # Public operations (own transaction)
    # ------------------------------------------------------------------

    @BaseService.measure_operation("hold_payment")
    def hold(
        self,
        client_id: str,
        expert_id: str,
        amount: Any,
        method: str,
        transaction_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentRecord:
        """Create a payment whose funds are already captured and held in escrow."""
        with self.transaction():
            record = self.insert_payment(
                client_id,
                expert_id,
                amount,
                method,
                transaction_id=transaction_id,
                metadata=metadata,
                state=PaymentState.HELD,
            )
        self.log_operation("hold_payment", payment_id=record.id, amount=str(record.amount))
        return record

    @BaseService.measure_operation("open_pending_payment")
    def open_pending(
        self,
        client_id: str,
        expert_id: str,
        amount: Any,
        method: str,
        transaction_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentRecord:
        """Create a payment awaiting gateway capture."""
        with self.transaction():
            record = self.insert_payment(
                client_id,
                expert_id,
                amount,
                method,
                transaction_id=transaction_id,
                metadata=metadata,
                state=PaymentState.PENDING,
            )
        self.log_operation("open_pending_payment", payment_id=record.id)
        return record

    @BaseService.measure_operation("release_payment")
    def release(self, payment_id: str) -> PaymentRecord:
        """
        Release a held payment to the expert. Idempotent on ``liberado``.

        A payment bound to an advisory can only be released once that
        advisory is completed; use finalize for that path.
        """
        with self.transaction():
            current = self._get_or_404(payment_id)
            self._guard_bound_payment(current, "release")
            return self.apply_release(payment_id)

    @BaseService.measure_operation("refund_payment")
    def refund(
        self,
        payment_id: str,
        mode: RefundMode = RefundMode.FULL,
        amount: Optional[Any] = None,
    ) -> PaymentRecord:
        """
        Refund a held or released payment.

        A payment bound to an advisory that is still open must be refunded
        through cancel or reject so advisory and escrow stay in step.
        """
        with self.transaction():
            current = self._get_or_404(payment_id)
            self._guard_bound_payment(current, "refund")
            return self.apply_refund(payment_id, mode, amount)

    @BaseService.measure_operation("fail_payment")
    def mark_failed(self, payment_id: str) -> PaymentRecord:
        """Gateway reported failure for a pending payment."""
        with self.transaction():
            current = self._get_or_404(payment_id)
            self._guard_bound_payment(current, "fail")
            return self.apply_failure(payment_id)

    def get_payment(self, payment_id: str) -> PaymentRecord:
        return self._get_or_404(payment_id)

    # ------------------------------------------------------------------
    # In-transaction building blocks
    # ------------------------------------------------------------------

    def insert_payment(
        self,
        client_id: str,
        expert_id: str,
        amount: Any,
        method: str,
        *,
        transaction_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        state: PaymentState = PaymentState.HELD,
    ) -> PaymentRecord:
        """Validate and insert a payment. Does not commit."""
        if not client_id or not expert_id:
            raise ValidationException(
                "Client and expert are required", code="MISSING_FIELDS"
            )
        if client_id == expert_id:
            raise ValidationException(
                "Client and expert must be different parties", code="SAME_PARTY"
            )
        if method not in self.config.payment_methods:
            raise ValidationException(
                f"Unsupported payment method '{method}'",
                code="INVALID_PAYMENT_METHOD",
                details={"allowed": list(self.config.payment_methods)},
            )

        gross = to_money(amount)
        if not self.config.payment_min_amount <= gross <= self.config.payment_max_amount:
            raise ValidationException(
                "Amount is outside the accepted range",
                code="AMOUNT_OUT_OF_RANGE",
                details={
                    "amount": str(gross),
                    "min": str(self.config.payment_min_amount),
                    "max": str(self.config.payment_max_amount),
                },
            )
        split = split_commission(gross, self.config.platform_commission_rate)

        if self.directory is not None:
            for party_id in (client_id, expert_id):
                if self.directory.resolve_by_id(party_id) is None:
                    raise NotFoundException(
                        f"Party {party_id} not found", code="PARTY_NOT_FOUND"
                    )

        if transaction_id and self.repository.get_by_transaction_id(transaction_id):
            raise DuplicateTransactionException(transaction_id)

        record = PaymentRecord(
            id=generate_ulid(),
            client_id=client_id,
            expert_id=expert_id,
            amount=split.amount,
            commission=split.commission,
            expert_amount=split.expert_amount,
            method=method,
            currency=self.config.payment_currency,
            state=state.value,
            created_at=self.clock.now(),
            transaction_id=transaction_id or None,
            metadata=dict(metadata or {}),
        )
        try:
            stored = self.repository.insert(record)
        except RepositoryException as exc:
            # Lost a race with a concurrent insert of the same gateway transaction
            if transaction_id and "transaction_id" in str(exc.__cause__ or exc).lower():
                raise DuplicateTransactionException(transaction_id) from exc
            raise
        prometheus_metrics.record_payment_transition(stored.state)
        return stored

    def apply_capture(self, payment_id: str, transaction_id: Optional[str] = None) -> PaymentRecord:
        current = self._get_or_404(payment_id)
        if transaction_id and transaction_id != current.transaction_id:
            existing = self.repository.get_by_transaction_id(transaction_id)
            if existing is not None and existing.id != payment_id:
                raise DuplicateTransactionException(transaction_id)
        updated = payment_lifecycle.capture(current, transaction_id)
        return self._persist(current, updated, "capture")

    def apply_release(self, payment_id: str) -> PaymentRecord:
        current = self._get_or_404(payment_id)
        updated = payment_lifecycle.release(current, self.clock.now())
        if updated is current:
            self.logger.info(
                "Payment already released; release is a no-op", extra={"payment_id": payment_id}
            )
            return current
        if self.repository.save_transition(current, updated):
            prometheus_metrics.record_payment_transition(updated.state)
            return updated

        latest = self._get_or_404(payment_id)
        if latest.state == PaymentState.RELEASED.value:
            # A concurrent finalize or sweep released it first
            return latest
        raise InvalidTransitionException("payment", payment_id, latest.state, "release")

    def apply_refund(
        self,
        payment_id: str,
        mode: RefundMode = RefundMode.FULL,
        amount: Optional[Any] = None,
    ) -> PaymentRecord:
        current = self._get_or_404(payment_id)
        refund_amount = to_money(amount, "refund_amount") if amount is not None else None
        updated = payment_lifecycle.refund(current, self.clock.now(), RefundMode(mode), refund_amount)
        return self._persist(current, updated, "refund")

    def apply_failure(self, payment_id: str) -> PaymentRecord:
        current = self._get_or_404(payment_id)
        updated = payment_lifecycle.fail(current, self.clock.now())
        return self._persist(current, updated, "fail")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _persist(self, current: PaymentRecord, updated: PaymentRecord, operation: str) -> PaymentRecord:
        if not self.repository.save_transition(current, updated):
            latest = self._get_or_404(current.id)
            raise InvalidTransitionException("payment", current.id, latest.state, operation)
        prometheus_metrics.record_payment_transition(updated.state)
        self.logger.info(
            f"Payment {operation}",
            extra={"payment_id": current.id, "from_state": current.state, "to_state": updated.state},
        )
        return updated

    def _get_or_404(self, payment_id: str) -> PaymentRecord:
        record = self.repository.get_record(payment_id)
        if record is None:
            raise NotFoundException(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
        return record

    def _guard_bound_payment(self, payment: PaymentRecord, operation: str) -> None:
        """Keep direct escrow moves from running ahead of the bound advisory."""
        if not payment.advisory_id:
            return
        advisory = self.advisory_repository.get_by_id(payment.advisory_id)
        if advisory is None:
            return
        if operation == "release":
            allowed = advisory.state == AdvisoryState.COMPLETED.value
        elif operation == "refund":
            allowed = advisory.state in TERMINAL_STATES
        else:
            allowed = False
        if not allowed:
            raise InvalidTransitionException(
                "payment", payment.id, payment.state, f"{operation} (advisory is {advisory.state})"
            )

