# backend/servitech/services/advisory_engine.py
"""
Public facade of the advisory booking and payment escrow engine.

Every operation opens its own session, runs the matching service call and
returns ``Ok(value)`` or ``Err(error)``. Nothing raises across this
boundary: domain exceptions become ``Err`` as they are, input that fails
schema validation becomes a ``ValidationException`` and anything unexpected
is logged with its traceback and reported as a ``ServiceException``.
"""

import logging
from typing import Any, Callable, Mapping, Optional, TypeVar, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import Settings, settings as default_settings
from ..core.exceptions import DomainException, ServiceException, ValidationException
from ..database import init_session_factory
from ..domain.payment_lifecycle import RefundMode
from ..domain.results import Err, Ok, OperationResult
from ..events import EventPublisher
from ..schemas.advisory import AdvisoryBookInput, AdvisoryCreateInput, ReviewInput
from ..schemas.payment import PaymentCreateInput, RefundInput
from .account_deactivation_service import AccountDeactivationService
from .advisory_service import AdvisoryRequest, AdvisoryService, LockFactory
from .auto_resolution_sweeper import AutoResolutionSweeper
from .directory import CategoryDirectory, IdentityDirectory
from .payment_service import PaymentService

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], Session]
DirectoryFactory = Callable[[Session], IdentityDirectory]
CategoryFactory = Callable[[Session], CategoryDirectory]

InputData = Union[Mapping[str, Any], AdvisoryCreateInput, AdvisoryBookInput, PaymentCreateInput]


def _validation_error(exc: ValidationError) -> ValidationException:
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    missing = bool(errors) and all(error["type"] == "missing" for error in errors)
    return ValidationException(
        "Missing required fields" if missing else "Invalid input",
        code="MISSING_FIELDS" if missing else "INVALID_INPUT",
        details={"errors": errors},
    )


def _to_request(data: Union[AdvisoryCreateInput, AdvisoryBookInput]) -> AdvisoryRequest:
    return AdvisoryRequest(
        client_email=data.client_email,
        expert_email=data.expert_email,
        start_time=data.start_time,
        duration_minutes=data.duration_minutes,
        category=data.category,
        title=data.title,
        idempotency_key=data.idempotency_key,
        video_room_url=data.video_room_url,
    )


class AdvisoryEngine:
    """Entry point for callers that embed the engine (HTTP layer, workers, scripts)."""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        *,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        publisher: Optional[EventPublisher] = None,
        lock_factory: Optional[LockFactory] = None,
        directory_factory: Optional[DirectoryFactory] = None,
        category_factory: Optional[CategoryFactory] = None,
    ):
        self.session_factory: SessionFactory = session_factory or init_session_factory()
        self.clock = clock or system_clock
        self.config = config or default_settings
        self.publisher = publisher or EventPublisher()
        self.lock_factory = lock_factory
        self.directory_factory = directory_factory
        self.category_factory = category_factory

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def advisory_service(self, session: Session) -> AdvisoryService:
        return AdvisoryService(
            session,
            clock=self.clock,
            config=self.config,
            directory=self.directory_factory(session) if self.directory_factory else None,
            categories=self.category_factory(session) if self.category_factory else None,
            publisher=self.publisher,
            lock_factory=self.lock_factory,
        )

    def payment_service(self, session: Session) -> PaymentService:
        return self.advisory_service(session).payment_service

    def _run(self, operation: str, call: Callable[[Session], T]) -> OperationResult[T]:
        session = self.session_factory()
        try:
            return self._guard(operation, lambda: call(session))
        finally:
            session.close()

    def _guard(self, operation: str, call: Callable[[], T]) -> OperationResult[T]:
        """Map whatever ``call`` raises onto ``Err``; callers own any session."""
        try:
            return Ok(call())
        except ValidationError as exc:
            return Err(_validation_error(exc))
        except DomainException as exc:
            logger.info(
                f"{operation} rejected: {exc.message}",
                extra={"operation": operation, "code": exc.code, "kind": exc.kind},
            )
            return Err(exc)
        except Exception as exc:
            logger.error(f"Unexpected error in {operation}: {exc}", exc_info=True)
            return Err(
                ServiceException(
                    "An unexpected error occurred",
                    code="INTERNAL_ERROR",
                    details={"operation": operation, "error_type": type(exc).__name__},
                )
            )

    # ------------------------------------------------------------------
    # Advisories
    # ------------------------------------------------------------------

    def create_advisory(self, data: InputData) -> OperationResult:
        """Book an advisory against an existing payment (``pagoId``)."""

        def call(session: Session):
            parsed = AdvisoryCreateInput.model_validate(data)
            return self.advisory_service(session).create_advisory(
                _to_request(parsed), parsed.payment_id
            )

        return self._run("create_advisory", call)

    def book_advisory(self, data: InputData) -> OperationResult:
        """Open the payment and book the advisory atomically; value is a PaymentConfirmation."""

        def call(session: Session):
            parsed = AdvisoryBookInput.model_validate(data)
            return self.advisory_service(session).book_with_payment(
                _to_request(parsed),
                amount=parsed.amount,
                method=parsed.method,
                transaction_id=parsed.transaction_id,
                capture=parsed.capture,
            )

        return self._run("book_advisory", call)

    def finalize_advisory(
        self,
        advisory_id: str,
        acting_party_id: str,
        review: Optional[Union[Mapping[str, Any], ReviewInput]] = None,
    ) -> OperationResult:
        def call(session: Session):
            parsed = ReviewInput.model_validate(review or {})
            return self.advisory_service(session).finalize(
                advisory_id, acting_party_id, rating=parsed.rating, comment=parsed.comment
            )

        return self._run("finalize_advisory", call)

    def cancel_advisory(
        self, advisory_id: str, acting_party_id: str, reason: Optional[str] = None
    ) -> OperationResult:
        return self._run(
            "cancel_advisory",
            lambda session: self.advisory_service(session).cancel(
                advisory_id, acting_party_id, reason
            ),
        )

    def reject_advisory(
        self, advisory_id: str, acting_party_id: str, reason: Optional[str] = None
    ) -> OperationResult:
        return self._run(
            "reject_advisory",
            lambda session: self.advisory_service(session).reject(
                advisory_id, acting_party_id, reason
            ),
        )

    def get_advisory(self, advisory_id: str, viewer_id: Optional[str] = None) -> OperationResult:
        return self._run(
            "get_advisory",
            lambda session: self.advisory_service(session).get_advisory(advisory_id, viewer_id),
        )

    def list_advisories(
        self,
        party_id: str,
        *,
        role: Optional[str] = None,
        state: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> OperationResult:
        return self._run(
            "list_advisories",
            lambda session: self.advisory_service(session).list_for_party(
                party_id, role=role, state=state, page=page, limit=limit
            ),
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def create_payment(self, data: InputData) -> OperationResult:
        """Hold a payment in escrow, or open it ``pendiente`` when ``capture`` is false."""

        def call(session: Session):
            parsed = PaymentCreateInput.model_validate(data)
            service = self.payment_service(session)
            opener = service.hold if parsed.capture else service.open_pending
            return opener(
                parsed.client_id,
                parsed.expert_id,
                parsed.amount,
                parsed.method,
                transaction_id=parsed.transaction_id,
                metadata=parsed.metadata,
            )

        return self._run("create_payment", call)

    def confirm_payment(
        self, payment_id: str, transaction_id: Optional[str] = None
    ) -> OperationResult:
        return self._run(
            "confirm_payment",
            lambda session: self.advisory_service(session).confirm_payment(
                payment_id, transaction_id
            ),
        )

    def fail_payment(self, payment_id: str, reason: Optional[str] = None) -> OperationResult:
        return self._run(
            "fail_payment",
            lambda session: self.advisory_service(session).fail_payment(payment_id, reason),
        )

    def release_payment(self, payment_id: str) -> OperationResult:
        return self._run(
            "release_payment", lambda session: self.payment_service(session).release(payment_id)
        )

    def refund_payment(
        self, payment_id: str, mode: str = RefundMode.FULL.value, amount: Optional[Any] = None
    ) -> OperationResult:
        def call(session: Session):
            parsed = RefundInput.model_validate({"mode": mode, "amount": amount})
            return self.payment_service(session).refund(
                payment_id, RefundMode(parsed.mode), parsed.amount
            )

        return self._run("refund_payment", call)

    def get_payment(self, payment_id: str) -> OperationResult:
        return self._run(
            "get_payment", lambda session: self.payment_service(session).get_payment(payment_id)
        )

    # ------------------------------------------------------------------
    # Background operations
    # ------------------------------------------------------------------

    def deactivate_account(self, party_id: str) -> OperationResult:
        def call(session: Session):
            advisory_service = self.advisory_service(session)
            return AccountDeactivationService(
                session,
                directory=advisory_service.directory,
                advisory_service=advisory_service,
            ).deactivate(party_id)

        return self._run("deactivate_account", call)

    def run_sweep(self) -> OperationResult:
        sweeper = AutoResolutionSweeper(
            self.session_factory,
            clock=self.clock,
            config=self.config,
            publisher=self.publisher,
            service_factory=self.advisory_service,
        )
        # The sweeper opens a session per advisory
        return self._guard("run_sweep", sweeper.run)
