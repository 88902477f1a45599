"""
Advisory lifecycle.

    pendiente-pago --confirm--> confirmada --complete--> completada
    confirmada --cancel--> cancelada
    pendiente-pago | confirmada --reject--> rechazada

Every function takes the current record and returns a new one; an illegal
step raises ``InvalidTransitionException`` and leaves nothing changed.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from servitech.core.exceptions import InvalidTransitionException, ValidationException
from servitech.domain.records import AdvisoryRecord


class AdvisoryState(str, Enum):
    PENDING_PAYMENT = "pendiente-pago"
    CONFIRMED = "confirmada"
    COMPLETED = "completada"
    CANCELLED = "cancelada"
    REJECTED = "rechazada"


# Only these occupy the expert's calendar
BLOCKING_STATES: FrozenSet[str] = frozenset(
    {AdvisoryState.CONFIRMED.value, AdvisoryState.COMPLETED.value}
)
TERMINAL_STATES: FrozenSet[str] = frozenset(
    {
        AdvisoryState.COMPLETED.value,
        AdvisoryState.CANCELLED.value,
        AdvisoryState.REJECTED.value,
    }
)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    AdvisoryState.PENDING_PAYMENT.value: frozenset(
        {AdvisoryState.CONFIRMED.value, AdvisoryState.REJECTED.value}
    ),
    AdvisoryState.CONFIRMED.value: frozenset(
        {
            AdvisoryState.COMPLETED.value,
            AdvisoryState.CANCELLED.value,
            AdvisoryState.REJECTED.value,
        }
    ),
    AdvisoryState.COMPLETED.value: frozenset(),
    AdvisoryState.CANCELLED.value: frozenset(),
    AdvisoryState.REJECTED.value: frozenset(),
}

MIN_REVIEW_RATING = 1
MAX_REVIEW_RATING = 5


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _require(advisory: AdvisoryRecord, target: AdvisoryState, operation: str) -> None:
    if not can_transition(advisory.state, target.value):
        raise InvalidTransitionException("advisory", advisory.id, advisory.state, operation)


def validate_review(rating: Optional[int], comment: Optional[str]) -> None:
    if rating is None:
        return
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationException("Rating must be an integer", code="INVALID_RATING")
    if not MIN_REVIEW_RATING <= rating <= MAX_REVIEW_RATING:
        raise ValidationException(
            f"Rating must be between {MIN_REVIEW_RATING} and {MAX_REVIEW_RATING}",
            code="INVALID_RATING",
            details={"rating": rating},
        )
    if comment is not None and len(comment) > 1000:
        raise ValidationException("Review comment is too long", code="INVALID_REVIEW")


def confirm(advisory: AdvisoryRecord, at: datetime) -> AdvisoryRecord:
    _require(advisory, AdvisoryState.CONFIRMED, "confirm")
    return replace(advisory, state=AdvisoryState.CONFIRMED.value, confirmed_at=at)


def complete(
    advisory: AdvisoryRecord,
    at: datetime,
    completed_by: str,
    *,
    auto: bool = False,
    rating: Optional[int] = None,
    comment: Optional[str] = None,
) -> AdvisoryRecord:
    _require(advisory, AdvisoryState.COMPLETED, "finalize")
    validate_review(rating, comment)
    return replace(
        advisory,
        state=AdvisoryState.COMPLETED.value,
        completed_at=at,
        completed_by=completed_by,
        auto_completed=auto,
        review_rating=rating,
        review_comment=comment,
    )


def cancel(
    advisory: AdvisoryRecord, at: datetime, cancelled_by: str, reason: Optional[str] = None
) -> AdvisoryRecord:
    # pendiente-pago is withdrawn through reject, not cancel
    _require(advisory, AdvisoryState.CANCELLED, "cancel")
    return replace(
        advisory,
        state=AdvisoryState.CANCELLED.value,
        cancelled_at=at,
        cancelled_by=cancelled_by,
        cancellation_reason=reason,
    )


def reject(advisory: AdvisoryRecord, at: datetime, reason: Optional[str] = None) -> AdvisoryRecord:
    _require(advisory, AdvisoryState.REJECTED, "reject")
    return replace(
        advisory,
        state=AdvisoryState.REJECTED.value,
        rejected_at=at,
        rejection_reason=reason,
    )
