# backend/servitech/models/advisory.py
"""
Advisory (asesoría) model.

An advisory is a paid, time-boxed session between a client and an expert.
Party details are snapshotted by value at booking time so the record stays
readable after the accounts change. ``end_time`` is stored, not derived,
so overlap checks are a plain range predicate on indexed columns.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base
from ..domain.advisory_lifecycle import AdvisoryState
from ..domain.records import AdvisoryRecord, PartySnapshot
from .types import TimestampMixin, UTCDateTime


class Advisory(TimestampMixin, Base):
    __tablename__ = "advisories"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    code: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Party snapshots
    client_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    client_email: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    expert_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    expert_email: Mapped[str] = mapped_column(String(255), nullable=False)
    expert_name: Mapped[str] = mapped_column(String(255), nullable=False)

    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AdvisoryState.PENDING_PAYMENT.value, index=True
    )
    payment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("payments.id"), nullable=False, unique=True
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)

    # Lifecycle
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    auto_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Review and session room
    review_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    review_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    video_room_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_advisories_time_order"),
        CheckConstraint("duration_minutes > 0", name="ck_advisories_duration_positive"),
        CheckConstraint("client_id <> expert_id", name="ck_advisories_distinct_parties"),
        CheckConstraint(
            "state IN ('pendiente-pago', 'confirmada', 'completada', 'cancelada', 'rechazada')",
            name="ck_advisories_state",
        ),
        CheckConstraint(
            "review_rating IS NULL OR (review_rating >= 1 AND review_rating <= 5)",
            name="ck_advisories_review_rating",
        ),
        # Overlap lookups: expert + state, then the time range
        Index("ix_advisories_expert_state_start", "expert_id", "state", "start_time", "end_time"),
        # Sweeper scan: confirmed advisories by end time
        Index("ix_advisories_state_end", "state", "end_time"),
    )

    @classmethod
    def from_record(cls, record: AdvisoryRecord) -> "Advisory":
        return cls(
            id=record.id,
            code=record.code,
            title=record.title,
            category=record.category,
            client_id=record.client.id,
            client_email=record.client.email,
            client_name=record.client.display_name,
            expert_id=record.expert.id,
            expert_email=record.expert.email,
            expert_name=record.expert.display_name,
            start_time=record.start_time,
            end_time=record.end_time,
            duration_minutes=record.duration_minutes,
            state=record.state,
            payment_id=record.payment_id,
            idempotency_key=record.idempotency_key,
            confirmed_at=record.confirmed_at,
            created_at=record.created_at,
            video_room_url=record.video_room_url,
        )

    def to_record(self) -> AdvisoryRecord:
        return AdvisoryRecord(
            id=self.id,
            code=self.code,
            title=self.title,
            category=self.category,
            client=PartySnapshot(self.client_id, self.client_email, self.client_name),
            expert=PartySnapshot(self.expert_id, self.expert_email, self.expert_name),
            start_time=self.start_time,
            end_time=self.end_time,
            duration_minutes=self.duration_minutes,
            state=self.state,
            payment_id=self.payment_id,
            created_at=self.created_at,
            idempotency_key=self.idempotency_key,
            confirmed_at=self.confirmed_at,
            completed_at=self.completed_at,
            completed_by=self.completed_by,
            auto_completed=bool(self.auto_completed),
            cancelled_at=self.cancelled_at,
            cancelled_by=self.cancelled_by,
            cancellation_reason=self.cancellation_reason,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
            review_rating=self.review_rating,
            review_comment=self.review_comment,
            video_room_url=self.video_room_url,
        )

    def __repr__(self) -> str:
        return f"<Advisory {self.code} expert={self.expert_id} {self.start_time} {self.state}>"
