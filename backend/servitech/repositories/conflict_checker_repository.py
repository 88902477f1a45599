# backend/servitech/repositories/conflict_checker_repository.py
"""
ConflictChecker Repository for ServiTech

Overlap queries over the expert's blocking advisories. Only confirmed and
completed advisories occupy the calendar; pending, cancelled and rejected
ones never block a slot.

The overlap predicate is half-open: ``existing.start < new.end AND
new.start < existing.end``, so back-to-back sessions are allowed.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..domain.advisory_lifecycle import BLOCKING_STATES
from ..models.advisory import Advisory
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ConflictCheckerRepository(BaseRepository[Advisory]):
    """Repository for conflict checking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Advisory)
        self.logger = logging.getLogger(__name__)

    def find_first_overlap(
        self,
        expert_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_advisory_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Return the id of the earliest blocking advisory overlapping the range, if any.

        Args:
            expert_id: The expert whose calendar is checked
            start_time: Start of the candidate range (UTC)
            end_time: End of the candidate range (UTC, exclusive)
            exclude_advisory_id: Advisory to ignore (the one being confirmed)
        """
        try:
            stmt = (
                select(Advisory.id)
                .where(
                    Advisory.expert_id == expert_id,
                    Advisory.state.in_(sorted(BLOCKING_STATES)),
                    Advisory.start_time < end_time,
                    Advisory.end_time > start_time,
                )
                .order_by(Advisory.start_time)
                .limit(1)
            )
            if exclude_advisory_id:
                stmt = stmt.where(Advisory.id != exclude_advisory_id)
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking overlaps for expert {expert_id}: {str(e)}")
            raise RepositoryException(f"Failed to check advisory overlaps: {str(e)}")

    def get_blocking_advisories(
        self, expert_id: str, window_start: datetime, window_end: datetime
    ) -> List[Advisory]:
        """Blocking advisories of the expert intersecting the window, ordered by start."""
        try:
            stmt = (
                select(Advisory)
                .where(
                    Advisory.expert_id == expert_id,
                    Advisory.state.in_(sorted(BLOCKING_STATES)),
                    Advisory.start_time < window_end,
                    Advisory.end_time > window_start,
                )
                .order_by(Advisory.start_time)
            )
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting booked intervals: {str(e)}")
            raise RepositoryException(f"Failed to get booked intervals: {str(e)}")

    def lock_expert_calendar(self, expert_id: str) -> None:
        """
        Serialize booking writers for one expert until the transaction ends.

        PostgreSQL only: a transaction-scoped advisory lock keyed on the expert id.
        Other backends rely on the process/Redis expert lock.
        """
        if self.dialect_name != "postgresql":
            return
        try:
            self.db.execute(select(func.pg_advisory_xact_lock(func.hashtext(f"expert:{expert_id}"))))
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking calendar for expert {expert_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock expert calendar: {str(e)}")
