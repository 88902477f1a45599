# backend/servitech/services/advisory_service.py
"""
Advisory Service for ServiTech

Drives advisories through their lifecycle and keeps the bound payment in
step:

- create / book: validate parties, slot and payment, then insert the
  advisory and bind the payment in one transaction, under the per-expert
  lock so the overlap check and the insert cannot interleave
- confirm_payment: gateway capture moves ``pendiente-pago`` to ``confirmada``
- finalize: ``confirmada`` to ``completada`` and release the escrow
- cancel / reject: close the advisory and refund per the refund policy

Notifications are published only after the transaction commits.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Callable, ContextManager, List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    ConflictException,
    DuplicatePaymentBindingException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    RepositoryException,
    ScheduleConflictException,
    ValidationException,
)
from ..core.expert_lock import expert_lock
from ..core.ulid_helper import generate_advisory_code, generate_ulid
from ..domain import advisory_lifecycle
from ..domain.advisory_lifecycle import AdvisoryState
from ..domain.payment_lifecycle import PaymentState
from ..domain.records import AdvisoryRecord, PartySnapshot, PaymentRecord
from ..domain.refund_policy import RefundPolicyEngine, RefundTrigger
from ..domain.time_interval import TimeInterval
from ..events import (
    AdvisoryCancelled,
    AdvisoryCompleted,
    AdvisoryConfirmed,
    AdvisoryCreated,
    AdvisoryRejected,
    EventPublisher,
)
from ..events.publisher import Event
from ..models.user import RoleName
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from .base import BaseService
from .conflict_checker import ConflictChecker
from .directory import (
    CategoryDirectory,
    IdentityDirectory,
    Party,
    SqlCategoryDirectory,
    SqlIdentityDirectory,
)
from .payment_service import PaymentService

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
_CODE_ATTEMPTS = 5

LockFactory = Callable[[str], ContextManager[None]]


@dataclass(frozen=True)
class AdvisoryRequest:
    """Validated booking input; parties are referenced by email."""

    client_email: str
    expert_email: str
    start_time: datetime
    duration_minutes: int
    category: str
    title: str
    idempotency_key: Optional[str] = None
    video_room_url: Optional[str] = None


@dataclass(frozen=True)
class PaymentConfirmation:
    payment: PaymentRecord
    advisory: Optional[AdvisoryRecord]


@dataclass(frozen=True)
class AdvisoryPage:
    items: List[AdvisoryRecord]
    total: int
    page: int
    limit: int


class AdvisoryService(BaseService):
    """Advisory state machine and booking orchestration."""

    def __init__(
        self,
        db: Session,
        *,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        directory: Optional[IdentityDirectory] = None,
        categories: Optional[CategoryDirectory] = None,
        publisher: Optional[EventPublisher] = None,
        lock_factory: Optional[LockFactory] = None,
    ):
        super().__init__(db)
        self.clock = clock or system_clock
        self.config = config or default_settings
        self.directory = directory or SqlIdentityDirectory(db)
        self.categories = categories or SqlCategoryDirectory(db)
        self.publisher = publisher or EventPublisher()
        self.lock_factory: LockFactory = lock_factory or expert_lock
        self.repository = RepositoryFactory.create_advisory_repository(db)
        self.conflict_repository = RepositoryFactory.create_conflict_checker_repository(db)
        self.conflict_checker = ConflictChecker(db, self.conflict_repository)
        self.payment_service = PaymentService(
            db, clock=self.clock, config=self.config, directory=self.directory
        )
        self.refund_policy = RefundPolicyEngine(self.config.client_cancellation_refund_pct)

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_advisory")
    def create_advisory(self, request: AdvisoryRequest, payment_id: str) -> AdvisoryRecord:
        """
        Book an advisory against an existing payment.

        A held payment yields a ``confirmada`` advisory; a pending one yields
        ``pendiente-pago`` until the gateway confirms it.

        Raises:
            ValidationException: missing fields, same party, past start, bad
                duration, role or payment-pair mismatch, unusable payment
            NotFoundException: unknown party, category or payment
            ConflictException: overlap, payment already bound, reused idempotency key
        """
        if not payment_id:
            raise ValidationException("Payment id is required", code="MISSING_FIELDS")

        # A replay returns the stored advisory even once its start has passed
        existing = self._find_idempotent(request.idempotency_key, payment_id)
        if existing is not None:
            return existing

        client, expert, interval = self._validate_request(request)

        with self.lock_factory(expert.id):
            with self.transaction():
                self.conflict_repository.lock_expert_calendar(expert.id)
                # A concurrent attempt with the same key may have committed while we waited
                existing = self._find_idempotent(request.idempotency_key, payment_id)
                if existing is not None:
                    return existing
                payment = self.payment_service.get_payment(payment_id)
                record = self._create_in_transaction(request, client, expert, interval, payment)

        self._after_create(record)
        return record

    @BaseService.measure_operation("book_advisory")
    def book_with_payment(
        self,
        request: AdvisoryRequest,
        *,
        amount: Any,
        method: str,
        transaction_id: Optional[str] = None,
        capture: bool = True,
    ) -> PaymentConfirmation:
        """
        Open the payment and book the advisory in a single transaction.

        With ``capture=False`` the payment starts ``pendiente`` and the
        advisory ``pendiente-pago``. Nothing is persisted if either half fails.
        """
        client, expert, interval = self._validate_request(request)

        with self.lock_factory(expert.id):
            with self.transaction():
                self.conflict_repository.lock_expert_calendar(expert.id)
                payment = self.payment_service.insert_payment(
                    client.id,
                    expert.id,
                    amount,
                    method,
                    transaction_id=transaction_id,
                    state=PaymentState.HELD if capture else PaymentState.PENDING,
                )
                record = self._create_in_transaction(request, client, expert, interval, payment)
                payment = self.payment_service.get_payment(payment.id)

        self._after_create(record)
        return PaymentConfirmation(payment=payment, advisory=record)

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(
        self, payment_id: str, transaction_id: Optional[str] = None
    ) -> PaymentConfirmation:
        """
        Gateway capture: ``pendiente`` payment becomes ``retenido``.

        If the payment is bound to a ``pendiente-pago`` advisory, that advisory
        is confirmed in the same transaction after a fresh overlap check; a
        conflict leaves both untouched.
        """
        bound = self.repository.get_by_payment_id(payment_id)
        if bound is None:
            with self.transaction():
                payment = self.payment_service.apply_capture(payment_id, transaction_id)
            return PaymentConfirmation(payment=payment, advisory=None)

        events: List[Event] = []
        with self.lock_factory(bound.expert_id):
            with self.transaction():
                self.conflict_repository.lock_expert_calendar(bound.expert_id)
                current = self._get_or_404(bound.id)
                now = self.clock.now()
                updated = advisory_lifecycle.confirm(current, now)
                self._ensure_slot_free(current.expert.id, current.interval, exclude=current.id)
                payment = self.payment_service.apply_capture(payment_id, transaction_id)
                self._save(current, updated, "confirm")
                events.append(
                    AdvisoryConfirmed(advisory_id=updated.id, payment_id=payment_id, confirmed_at=now)
                )

        self._publish(events)
        return PaymentConfirmation(payment=payment, advisory=updated)

    @BaseService.measure_operation("fail_payment")
    def fail_payment(self, payment_id: str, reason: Optional[str] = None) -> PaymentConfirmation:
        """Gateway failure: payment ``fallido`` and its pending advisory ``rechazada``."""
        events: List[Event] = []
        with self.transaction():
            bound = self.repository.get_by_payment_id(payment_id)
            advisory = None
            if bound is not None:
                current = bound.to_record()
                if current.state != AdvisoryState.PENDING_PAYMENT.value:
                    raise InvalidTransitionException(
                        "advisory", current.id, current.state, "fail payment"
                    )
                advisory = advisory_lifecycle.reject(
                    current, self.clock.now(), reason or "payment failed"
                )
                self._save(current, advisory, "reject")
                events.append(
                    AdvisoryRejected(
                        advisory_id=advisory.id,
                        rejected_at=advisory.rejected_at,
                        reason=advisory.rejection_reason,
                    )
                )
            payment = self.payment_service.apply_failure(payment_id)

        self._publish(events)
        return PaymentConfirmation(payment=payment, advisory=advisory)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @BaseService.measure_operation("finalize_advisory")
    def finalize(
        self,
        advisory_id: str,
        acting_party_id: str,
        *,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
        auto: bool = False,
    ) -> AdvisoryRecord:
        """
        Complete a confirmed advisory and release its payment to the expert.

        Raises:
            NotFoundException: unknown advisory
            ForbiddenException: actor is not a participant
            InvalidTransitionException: advisory is not ``confirmada``
        """
        with self.transaction():
            current = self._get_or_404(advisory_id)
            self._authorize(current, acting_party_id, "finalize")
            now = self.clock.now()
            updated = advisory_lifecycle.complete(
                current, now, acting_party_id, auto=auto, rating=rating, comment=comment
            )
            self._save(current, updated, "finalize")
            payment = self.payment_service.apply_release(current.payment_id)

        self.log_operation(
            "finalize_advisory", advisory_id=advisory_id, auto=auto, actor=acting_party_id
        )
        self._publish(
            [
                AdvisoryCompleted(
                    advisory_id=advisory_id,
                    completed_at=now,
                    completed_by=acting_party_id,
                    auto_completed=auto,
                    released_amount=str(payment.expert_amount),
                )
            ]
        )
        return updated

    @BaseService.measure_operation("cancel_advisory")
    def cancel(
        self,
        advisory_id: str,
        acting_party_id: str,
        reason: Optional[str] = None,
        *,
        trigger: Optional[RefundTrigger] = None,
    ) -> AdvisoryRecord:
        """
        Cancel a confirmed advisory and refund its payment per the refund policy.

        ``trigger`` is only honoured for the system actor (e.g. cascade on
        account deactivation); for parties it is derived from who acts.
        """
        with self.transaction():
            current = self._get_or_404(advisory_id)
            self._authorize(current, acting_party_id, "cancel")
            now = self.clock.now()
            updated = advisory_lifecycle.cancel(current, now, acting_party_id, reason)
            self._save(current, updated, "cancel")

            if acting_party_id == current.client.id:
                effective = RefundTrigger.CLIENT_CANCEL
            elif acting_party_id == current.expert.id:
                effective = RefundTrigger.EXPERT_CANCEL
            else:
                effective = trigger or RefundTrigger.SYSTEM_CANCEL
            refunded = self._settle_closed_payment(updated, effective)

        self.log_operation(
            "cancel_advisory", advisory_id=advisory_id, actor=acting_party_id, trigger=effective.value
        )
        self._publish(
            [
                AdvisoryCancelled(
                    advisory_id=advisory_id,
                    cancelled_by=acting_party_id,
                    cancelled_at=now,
                    reason=reason,
                    refund_amount=refunded,
                )
            ]
        )
        return updated

    @BaseService.measure_operation("reject_advisory")
    def reject(
        self, advisory_id: str, acting_party_id: str, reason: Optional[str] = None
    ) -> AdvisoryRecord:
        """Expert declines a pending or confirmed advisory; the client is refunded in full."""
        with self.transaction():
            current = self._get_or_404(advisory_id)
            if acting_party_id not in (current.expert.id, SYSTEM_ACTOR):
                raise ForbiddenException(
                    "Only the expert can reject this advisory",
                    code="NOT_ADVISORY_EXPERT",
                    details={"advisory_id": advisory_id},
                )
            now = self.clock.now()
            updated = advisory_lifecycle.reject(current, now, reason)
            self._save(current, updated, "reject")
            refunded = self._settle_closed_payment(updated, RefundTrigger.EXPERT_REJECT)

        self.log_operation("reject_advisory", advisory_id=advisory_id, actor=acting_party_id)
        self._publish(
            [
                AdvisoryRejected(
                    advisory_id=advisory_id, rejected_at=now, reason=reason, refund_amount=refunded
                )
            ]
        )
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_advisory(self, advisory_id: str, viewer_id: Optional[str] = None) -> AdvisoryRecord:
        record = self._get_or_404(advisory_id)
        if viewer_id is not None and not record.is_participant(viewer_id):
            viewer = self.directory.resolve_by_id(viewer_id)
            if viewer is None or not viewer.is_admin:
                raise ForbiddenException(
                    "You do not have access to this advisory", code="NOT_ADVISORY_PARTICIPANT"
                )
        return record

    def list_for_party(
        self,
        party_id: str,
        *,
        role: Optional[str] = None,
        state: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> AdvisoryPage:
        if page < 1 or not 1 <= limit <= 100:
            raise ValidationException("Invalid pagination", code="INVALID_PAGINATION")
        if role is not None and role not in (RoleName.CLIENT.value, RoleName.EXPERT.value):
            raise ValidationException("Role must be 'cliente' or 'experto'", code="INVALID_ROLE")
        if state is not None and state not in {s.value for s in AdvisoryState}:
            raise ValidationException(f"Unknown state '{state}'", code="INVALID_STATE")
        rows, total = self.repository.list_for_party(
            party_id, role=role, state=state, offset=(page - 1) * limit, limit=limit
        )
        return AdvisoryPage(
            items=[row.to_record() for row in rows], total=total, page=page, limit=limit
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_request(self, request: AdvisoryRequest) -> tuple[Party, Party, TimeInterval]:
        missing = [
            name
            for name in ("client_email", "expert_email", "start_time", "category", "title")
            if not getattr(request, name)
        ]
        if request.duration_minutes is None:
            missing.append("duration_minutes")
        if missing:
            raise ValidationException(
                "Missing required fields", code="MISSING_FIELDS", details={"fields": missing}
            )
        if len(request.title) > self.config.advisory_title_max_length:
            raise ValidationException(
                f"Title cannot exceed {self.config.advisory_title_max_length} characters",
                code="TITLE_TOO_LONG",
            )
        if request.client_email.strip().lower() == request.expert_email.strip().lower():
            raise ValidationException(
                "Client and expert must be different parties", code="SAME_PARTY"
            )

        interval = TimeInterval.create(
            request.start_time, request.duration_minutes, now=self.clock.now()
        )
        if request.duration_minutes not in self.config.advisory_allowed_durations:
            raise ValidationException(
                "Duration not allowed",
                code="INVALID_DURATION",
                details={"allowed": list(self.config.advisory_allowed_durations)},
            )

        client = self._resolve_party(request.client_email, RoleName.CLIENT)
        expert = self._resolve_party(request.expert_email, RoleName.EXPERT)
        if client.id == expert.id:
            raise ValidationException(
                "Client and expert must be different parties", code="SAME_PARTY"
            )
        if not self.categories.exists(request.category):
            raise NotFoundException(
                f"Category '{request.category}' not found", code="CATEGORY_NOT_FOUND"
            )
        return client, expert, interval

    def _resolve_party(self, email: str, role: RoleName) -> Party:
        party = self.directory.resolve_by_email(email)
        if party is None:
            raise NotFoundException(
                f"No account found for {email}",
                code="PARTY_NOT_FOUND",
                details={"email": email, "role": role.value},
            )
        if not party.is_active:
            raise ValidationException(
                f"Account {email} is not active", code="PARTY_INACTIVE", details={"email": email}
            )
        if not party.has_role(role):
            raise ValidationException(
                f"Account {email} does not have the '{role.value}' role",
                code="ROLE_MISMATCH",
                details={"email": email, "required_role": role.value},
            )
        return party

    def _find_idempotent(self, key: Optional[str], payment_id: str) -> Optional[AdvisoryRecord]:
        if not key:
            return None
        existing = self.repository.get_by_idempotency_key(key)
        if existing is None:
            return None
        if existing.payment_id != payment_id:
            raise ConflictException(
                "Idempotency key was already used for a different payment",
                code="IDEMPOTENCY_KEY_REUSED",
                details={"idempotency_key": key},
            )
        self.logger.info(
            "Idempotent create replayed", extra={"advisory_id": existing.id, "idempotency_key": key}
        )
        return existing.to_record()

    def _ensure_slot_free(
        self, expert_id: str, interval: TimeInterval, exclude: Optional[str] = None
    ) -> None:
        result = self.conflict_checker.check_conflict(expert_id, interval, exclude)
        if result.conflict:
            raise ScheduleConflictException(expert_id, result.conflicting_advisory_id)

    def _create_in_transaction(
        self,
        request: AdvisoryRequest,
        client: Party,
        expert: Party,
        interval: TimeInterval,
        payment: PaymentRecord,
    ) -> AdvisoryRecord:
        """Checks and writes that must run inside the locked transaction."""
        if payment.client_id != client.id or payment.expert_id != expert.id:
            raise ValidationException(
                "Payment belongs to a different client/expert pair",
                code="PAYMENT_PARTY_MISMATCH",
                details={"payment_id": payment.id},
            )
        if payment.advisory_id or self.repository.get_by_payment_id(payment.id):
            raise DuplicatePaymentBindingException(payment.id, payment.advisory_id)

        if payment.state == PaymentState.HELD.value:
            state = AdvisoryState.CONFIRMED
        elif payment.state == PaymentState.PENDING.value:
            state = AdvisoryState.PENDING_PAYMENT
        else:
            raise ValidationException(
                f"Payment in state '{payment.state}' cannot back a new advisory",
                code="PAYMENT_NOT_USABLE",
                details={"payment_id": payment.id, "state": payment.state},
            )

        self._ensure_slot_free(expert.id, interval)

        now = self.clock.now()
        record = AdvisoryRecord(
            id=generate_ulid(),
            code=self._new_code(now),
            title=request.title.strip(),
            category=request.category,
            client=PartySnapshot(client.id, client.email, client.display_name),
            expert=PartySnapshot(expert.id, expert.email, expert.display_name),
            start_time=interval.start,
            end_time=interval.end,
            duration_minutes=request.duration_minutes,
            state=state.value,
            payment_id=payment.id,
            created_at=now,
            idempotency_key=request.idempotency_key,
            confirmed_at=now if state is AdvisoryState.CONFIRMED else None,
            video_room_url=request.video_room_url,
        )
        try:
            stored = self.repository.insert(record)
        except RepositoryException as exc:
            # Unique indexes are the last line of defence against racing writers
            if self.repository.is_unique_violation(exc, "payment_id"):
                raise DuplicatePaymentBindingException(payment.id) from exc
            if self.repository.is_unique_violation(exc, "idempotency_key"):
                raise ConflictException(
                    "Idempotency key was already used",
                    code="IDEMPOTENCY_KEY_REUSED",
                    details={"idempotency_key": request.idempotency_key},
                ) from exc
            raise
        if not self.payment_service.repository.bind_to_advisory(payment.id, stored.id):
            raise DuplicatePaymentBindingException(payment.id)
        return stored

    def _new_code(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        for _ in range(_CODE_ATTEMPTS):
            code = generate_advisory_code(millis)
            if not self.repository.code_exists(code):
                return code
        raise ConflictException("Could not allocate a unique advisory code", code="CODE_EXHAUSTED")

    def _settle_closed_payment(
        self, advisory: AdvisoryRecord, trigger: RefundTrigger
    ) -> Optional[str]:
        """Refund (or release/fail) the payment of an advisory that just closed."""
        payment = self.payment_service.get_payment(advisory.payment_id)
        if payment.state == PaymentState.PENDING.value:
            self.payment_service.apply_failure(payment.id)
            return None

        decision = self.refund_policy.evaluate(advisory, payment, trigger)
        if decision.refund and decision.mode is not None:
            refunded = self.payment_service.apply_refund(payment.id, decision.mode, decision.amount)
            self.logger.info(
                "Refund issued",
                extra={"advisory_id": advisory.id, "payment_id": payment.id, **decision.to_payload()},
            )
            return str(refunded.refunded_amount)
        if payment.state == PaymentState.HELD.value:
            # Policy keeps nothing back for the client: the expert is paid out
            self.payment_service.apply_release(payment.id)
        return None

    def _authorize(self, advisory: AdvisoryRecord, actor_id: str, operation: str) -> None:
        if actor_id == SYSTEM_ACTOR or advisory.is_participant(actor_id):
            return
        raise ForbiddenException(
            f"Only participants can {operation} this advisory",
            code="NOT_ADVISORY_PARTICIPANT",
            details={"advisory_id": advisory.id},
        )

    def _get_or_404(self, advisory_id: str) -> AdvisoryRecord:
        record = self.repository.get_record(advisory_id)
        if record is None:
            raise NotFoundException(
                f"Advisory {advisory_id} not found", code="ADVISORY_NOT_FOUND"
            )
        return record

    def _save(self, current: AdvisoryRecord, updated: AdvisoryRecord, operation: str) -> None:
        if not self.repository.save_transition(current, updated):
            latest = self._get_or_404(current.id)
            raise InvalidTransitionException("advisory", current.id, latest.state, operation)
        prometheus_metrics.record_advisory_transition(updated.state)

    def _after_create(self, record: AdvisoryRecord) -> None:
        prometheus_metrics.record_advisory_transition(record.state)
        self.log_operation(
            "create_advisory",
            advisory_id=record.id,
            code=record.code,
            expert_id=record.expert.id,
            state=record.state,
        )
        self._publish(
            [
                AdvisoryCreated(
                    advisory_id=record.id,
                    code=record.code,
                    state=record.state,
                    client_email=record.client.email,
                    expert_email=record.expert.email,
                    start_time=record.start_time,
                    end_time=record.end_time,
                )
            ]
        )

    def _publish(self, events: List[Event]) -> None:
        for event in events:
            self.publisher.publish(event)
