# backend/servitech/services/conflict_checker.py
"""
Conflict Checker Service for ServiTech

Answers "is this slot free for the expert?" against confirmed and completed
advisories. The check is only authoritative when it runs inside the same
critical section as the insert that depends on it; AdvisoryService takes
care of that.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..domain.time_interval import TimeInterval, ensure_utc
from ..repositories import RepositoryFactory
from ..repositories.conflict_checker_repository import ConflictCheckerRepository
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictCheckResult:
    conflict: bool
    conflicting_advisory_id: Optional[str] = None


@dataclass(frozen=True)
class BookedInterval:
    advisory_id: str
    interval: TimeInterval
    state: str


class ConflictChecker(BaseService):
    """Service for checking expert schedule conflicts."""

    def __init__(self, db: Session, repository: Optional[ConflictCheckerRepository] = None):
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.repository = repository or RepositoryFactory.create_conflict_checker_repository(db)

    @BaseService.measure_operation("check_conflict")
    def check_conflict(
        self,
        expert_id: str,
        interval: TimeInterval,
        exclude_advisory_id: Optional[str] = None,
    ) -> ConflictCheckResult:
        """
        Check whether ``interval`` overlaps a blocking advisory of the expert.

        Args:
            expert_id: The expert whose calendar is checked
            interval: Candidate ``[start, end)`` in UTC
            exclude_advisory_id: Advisory to ignore, e.g. the one being confirmed

        Returns:
            ConflictCheckResult with the earliest overlapping advisory id, if any
        """
        conflicting_id = self.repository.find_first_overlap(
            expert_id, interval.start, interval.end, exclude_advisory_id
        )
        if conflicting_id:
            self.logger.info(
                "Schedule conflict detected",
                extra={
                    "expert_id": expert_id,
                    "start_time": interval.start.isoformat(),
                    "conflicting_advisory_id": conflicting_id,
                },
            )
            return ConflictCheckResult(conflict=True, conflicting_advisory_id=conflicting_id)
        return ConflictCheckResult(conflict=False)

    def get_booked_intervals(
        self, expert_id: str, window_start: datetime, window_end: datetime
    ) -> List[BookedInterval]:
        """Blocking advisories of the expert inside a window, for calendar views."""
        start = ensure_utc(window_start, "window_start")
        end = ensure_utc(window_end, "window_end")
        return [
            BookedInterval(
                advisory_id=advisory.id,
                interval=TimeInterval(start=advisory.start_time, end=advisory.end_time),
                state=advisory.state,
            )
            for advisory in self.repository.get_blocking_advisories(expert_id, start, end)
        ]
