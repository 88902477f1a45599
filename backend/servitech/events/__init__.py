"""Domain events emitted after advisory and escrow state changes commit."""

from servitech.events.advisory_events import (
    AdvisoryCancelled,
    AdvisoryCompleted,
    AdvisoryConfirmed,
    AdvisoryCreated,
    AdvisoryRejected,
)
from servitech.events.publisher import EventPublisher

__all__ = [
    "AdvisoryCancelled",
    "AdvisoryCompleted",
    "AdvisoryConfirmed",
    "AdvisoryCreated",
    "AdvisoryRejected",
    "EventPublisher",
]
