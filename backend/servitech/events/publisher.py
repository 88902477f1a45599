"""Event publisher - hands committed domain events to the notification worker."""
from datetime import datetime
import logging
from typing import Any, Callable, Dict, Optional, Protocol

from servitech.core.config import settings
from servitech.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

Dispatch = Callable[[str, Dict[str, Any]], Any]


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


def _celery_dispatch(event_type: str, payload: Dict[str, Any]) -> Any:
    from servitech.tasks.notification_tasks import deliver_notification

    return deliver_notification.delay(event_type, payload)


def serialize_event(event: Event) -> Dict[str, Any]:
    payload = event.to_dict()
    # Convert datetime objects to ISO strings for JSON serialization
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
    return payload


class EventPublisher:
    """
    Publishes domain events for asynchronous notification delivery.

    Publishing is best effort: a broker or serialization failure is logged
    and counted, never raised, because the state change it reports has
    already committed.
    """

    def __init__(self, dispatch: Optional[Dispatch] = None, enabled: Optional[bool] = None):
        self._dispatch = dispatch or _celery_dispatch
        self.enabled = settings.notifications_enabled if enabled is None else enabled

    def publish(self, event: Event) -> bool:
        event_type = type(event).__name__
        if not self.enabled:
            prometheus_metrics.record_notification(event_type, "disabled")
            return False
        try:
            self._dispatch(event_type, serialize_event(event))
        except Exception as exc:
            prometheus_metrics.record_notification(event_type, "failed")
            logger.warning(
                "event_publish_failed",
                extra={"event_type": event_type, "error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )
            return False
        prometheus_metrics.record_notification(event_type, "published")
        return True
