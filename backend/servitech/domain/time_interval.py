"""Half-open UTC time intervals used for expert scheduling."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from servitech.core.exceptions import ValidationException


def ensure_utc(value: datetime, field: str = "datetime") -> datetime:
    """Normalize an aware datetime to UTC; naive values are rejected."""
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValidationException(
            f"{field} must include a timezone offset",
            code="NAIVE_DATETIME",
            details={"field": field},
        )
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeInterval:
    """``[start, end)`` in UTC. Two back-to-back intervals never overlap."""

    start: datetime
    end: datetime

    @classmethod
    def create(
        cls,
        start: datetime,
        duration_minutes: int,
        now: Optional[datetime] = None,
    ) -> "TimeInterval":
        """
        Build an interval from a start instant and a positive duration.

        Args:
            start: Timezone-aware start instant
            duration_minutes: Length in minutes, must be > 0
            now: Evaluation instant; when given, a start before it is rejected

        Raises:
            ValidationException: non-positive duration, naive or past start
        """
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationException(
                "Duration must be a whole number of minutes",
                code="INVALID_DURATION",
                details={"duration_minutes": duration_minutes},
            )
        if duration_minutes <= 0:
            raise ValidationException(
                "Duration must be positive",
                code="INVALID_DURATION",
                details={"duration_minutes": duration_minutes},
            )
        start_utc = ensure_utc(start, "start_time")
        if now is not None and start_utc < ensure_utc(now, "now"):
            raise ValidationException(
                "Cannot book an advisory in the past",
                code="START_IN_PAST",
                details={"start_time": start_utc.isoformat()},
            )
        return cls(start=start_utc, end=start_utc + timedelta(minutes=duration_minutes))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_minutes(self) -> int:
        return int(self.duration.total_seconds() // 60)

    def overlaps(self, other: "TimeInterval") -> bool:
        return overlaps(self, other)

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) < self.end


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    return a.start < b.end and b.start < a.end
