"""
Immutable value records handed out by the services.

ORM rows are never returned to callers; a lifecycle step produces a new
record, and the repository persists it with a compare-and-swap on ``state``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from servitech.domain.time_interval import TimeInterval


@dataclass(frozen=True)
class PartySnapshot:
    """Participant details copied onto the advisory at creation time."""

    id: str
    email: str
    display_name: str


@dataclass(frozen=True)
class AdvisoryRecord:
    id: str
    code: str
    title: str
    category: str
    client: PartySnapshot
    expert: PartySnapshot
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    state: str
    payment_id: str
    created_at: datetime
    idempotency_key: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    auto_completed: bool = False
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    review_rating: Optional[int] = None
    review_comment: Optional[str] = None
    video_room_url: Optional[str] = None

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(start=self.start_time, end=self.end_time)

    def is_participant(self, party_id: str) -> bool:
        return party_id in (self.client.id, self.expert.id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    client_id: str
    expert_id: str
    amount: Decimal
    commission: Decimal
    expert_amount: Decimal
    method: str
    currency: str
    state: str
    created_at: datetime
    transaction_id: Optional[str] = None
    advisory_id: Optional[str] = None
    refund_mode: Optional[str] = None
    refunded_amount: Optional[Decimal] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
