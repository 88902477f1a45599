"""Advisory and escrow domain events, published after the owning transaction commits."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class AdvisoryCreated:
    """Fired after an advisory is booked (confirmed or awaiting payment)."""

    advisory_id: str
    code: str
    state: str
    client_email: str
    expert_email: str
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdvisoryConfirmed:
    """Fired when a pending advisory's payment is captured."""

    advisory_id: str
    payment_id: str
    confirmed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdvisoryCompleted:
    advisory_id: str
    completed_at: datetime
    completed_by: str
    auto_completed: bool
    released_amount: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdvisoryCancelled:
    advisory_id: str
    cancelled_by: str
    cancelled_at: datetime
    reason: Optional[str] = None
    refund_amount: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdvisoryRejected:
    advisory_id: str
    rejected_at: datetime
    reason: Optional[str] = None
    refund_amount: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

