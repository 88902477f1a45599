# backend/servitech/repositories/advisory_repository.py
"""
Advisory Repository for ServiTech

Persists advisory records and their lifecycle transitions. Transitions are
written with a compare-and-swap on ``state`` so two concurrent actors can
never both move the same advisory.
"""

from datetime import datetime, timezone
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..domain.advisory_lifecycle import AdvisoryState
from ..domain.records import AdvisoryRecord
from ..models.advisory import Advisory
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Columns a lifecycle transition is allowed to touch
TRANSITION_FIELDS: Tuple[str, ...] = (
    "state",
    "confirmed_at",
    "completed_at",
    "completed_by",
    "auto_completed",
    "cancelled_at",
    "cancelled_by",
    "cancellation_reason",
    "rejected_at",
    "rejection_reason",
    "review_rating",
    "review_comment",
)


class AdvisoryRepository(BaseRepository[Advisory]):
    def __init__(self, db: Session):
        super().__init__(db, Advisory)

    def get_record(self, advisory_id: str) -> Optional[AdvisoryRecord]:
        advisory = self.get_by_id(advisory_id)
        return advisory.to_record() if advisory else None

    def get_by_payment_id(self, payment_id: str) -> Optional[Advisory]:
        return self.find_one_by(payment_id=payment_id)

    def get_by_idempotency_key(self, key: str) -> Optional[Advisory]:
        return self.find_one_by(idempotency_key=key)

    def code_exists(self, code: str) -> bool:
        return self.exists(code=code)

    def insert(self, record: AdvisoryRecord) -> AdvisoryRecord:
        """Insert a freshly built record. Unique violations surface as RepositoryException."""
        entity = self.add(Advisory.from_record(record))
        return entity.to_record()

    def save_transition(self, current: AdvisoryRecord, updated: AdvisoryRecord) -> bool:
        """
        Persist ``updated`` only if the stored row is still in ``current.state``.

        Returns:
            False when another writer moved the advisory first.
        """
        values = {
            field: getattr(updated, field)
            for field in TRANSITION_FIELDS
            if getattr(updated, field) != getattr(current, field)
        }
        values["updated_at"] = datetime.now(timezone.utc)
        return self.compare_and_set(current.id, current.state, **values)

    def list_for_party(
        self,
        party_id: str,
        *,
        role: Optional[str] = None,
        state: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Advisory], int]:
        """
        Advisories where the party is client and/or expert, newest start first.

        Args:
            role: ``"cliente"`` or ``"experto"`` to restrict the side; both when None

        Returns:
            (page of advisories, total matching)
        """
        try:
            if role == "cliente":
                party_filter = Advisory.client_id == party_id
            elif role == "experto":
                party_filter = Advisory.expert_id == party_id
            else:
                party_filter = or_(Advisory.client_id == party_id, Advisory.expert_id == party_id)

            stmt = select(Advisory).where(party_filter)
            if state:
                stmt = stmt.where(Advisory.state == state)

            total = self.db.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()
            rows = self.db.execute(
                stmt.order_by(Advisory.start_time.desc()).offset(offset).limit(limit)
            ).scalars()
            return list(rows), int(total)
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing advisories for {party_id}: {str(e)}")
            raise RepositoryException(f"Failed to list advisories: {str(e)}")

    def find_stale_confirmed(self, ended_before: datetime, limit: int) -> List[str]:
        """Ids of confirmed advisories whose end_time is strictly before the cutoff, oldest first."""
        try:
            stmt = (
                select(Advisory.id)
                .where(
                    Advisory.state == AdvisoryState.CONFIRMED.value,
                    Advisory.end_time < ended_before,
                )
                .order_by(Advisory.end_time)
                .limit(limit)
            )
            return list(self.db.execute(stmt).scalars())
        except SQLAlchemyError as e:
            self.logger.error(f"Error scanning stale advisories: {str(e)}")
            raise RepositoryException(f"Failed to scan stale advisories: {str(e)}")

    def find_confirmed_for_party(self, party_id: str) -> List[str]:
        """Ids of confirmed advisories where the party is either side."""
        try:
            stmt = (
                select(Advisory.id)
                .where(
                    Advisory.state == AdvisoryState.CONFIRMED.value,
                    or_(Advisory.client_id == party_id, Advisory.expert_id == party_id),
                )
                .order_by(Advisory.start_time)
            )
            return list(self.db.execute(stmt).scalars())
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding confirmed advisories for {party_id}: {str(e)}")
            raise RepositoryException(f"Failed to find advisories: {str(e)}")

    @staticmethod
    def is_unique_violation(exc: BaseException, column: str) -> bool:
        """Best-effort detection of which unique column a failed insert hit."""
        cause = exc.__cause__ if isinstance(exc, RepositoryException) else exc
        if not isinstance(cause, IntegrityError):
            return False
        return column in str(cause.orig).lower()
