# backend/servitech/core/exceptions.py
"""
Domain-specific exceptions for the ServiTech advisory engine.

These exceptions provide clear, business-focused error messages. Each one
carries the HTTP status an embedding API layer should answer with, so the
mapping from failure kind to status stays deterministic.
"""

from http import HTTPStatus
from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    kind: str = "InternalError"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "kind": self.kind,
            "details": self.details,
        }


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = HTTPStatus.BAD_REQUEST
    kind = "ValidationError"


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = HTTPStatus.NOT_FOUND
    kind = "NotFoundError"


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = HTTPStatus.CONFLICT
    kind = "ConflictError"


class InvalidTransitionException(DomainException):
    """Raised when a lifecycle operation is not allowed from the current state."""

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    kind = "InvalidTransitionError"

    def __init__(
        self,
        entity: str,
        entity_id: str,
        current_state: str,
        operation: str,
    ) -> None:
        super().__init__(
            message=f"Cannot {operation} {entity} {entity_id} in state '{current_state}'",
            code="INVALID_TRANSITION",
            details={
                "entity": entity,
                "id": entity_id,
                "current_state": current_state,
                "operation": operation,
            },
        )


class ForbiddenException(DomainException):
    """Raised when the acting party may not perform an action."""

    status_code = HTTPStatus.FORBIDDEN
    kind = "ForbiddenError"


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    kind = "InternalError"


# Specific business exceptions


class ScheduleConflictException(ConflictException):
    """Raised when an advisory overlaps an existing blocking advisory of the expert."""

    def __init__(self, expert_id: str, conflicting_advisory_id: Optional[str]) -> None:
        super().__init__(
            message="This time slot conflicts with an existing advisory of the expert",
            code="SCHEDULE_CONFLICT",
            details={
                "expert_id": expert_id,
                "conflicting_advisory_id": conflicting_advisory_id,
            },
        )


class DuplicatePaymentBindingException(ConflictException):
    """Raised when a payment is already bound to another advisory."""

    def __init__(self, payment_id: str, advisory_id: Optional[str] = None) -> None:
        super().__init__(
            message=f"Payment {payment_id} is already bound to an advisory",
            code="PAYMENT_ALREADY_BOUND",
            details={"payment_id": payment_id, "advisory_id": advisory_id},
        )


class DuplicateTransactionException(ConflictException):
    """Raised when a gateway transaction id was already recorded."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message="A payment with this transaction id already exists",
            code="DUPLICATE_TRANSACTION",
            details={"transaction_id": transaction_id},
        )


class LockUnavailableException(ConflictException):
    """Raised when the per-expert booking lock could not be obtained in time."""

    def __init__(self, expert_id: str) -> None:
        super().__init__(
            message="Another booking for this expert is in progress, please retry",
            code="EXPERT_LOCKED",
            details={"expert_id": expert_id},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
