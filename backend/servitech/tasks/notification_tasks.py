# backend/servitech/tasks/notification_tasks.py
"""
Celery task that hands committed advisory events to notification delivery.

Email and push delivery live outside this service; the task is the seam a
delivery provider plugs into and records what was handed over.
"""

from typing import Any, Dict

from celery.utils.log import get_task_logger

from servitech.monitoring.prometheus_metrics import prometheus_metrics
from servitech.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(
    name="servitech.tasks.notification_tasks.deliver_notification",
    max_retries=5,
    queue="notifications",
)
def deliver_notification(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    advisory_id = payload.get("advisory_id")
    logger.info(
        f"Handing off {event_type} notification",
        extra={"event_type": event_type, "advisory_id": advisory_id},
    )
    # Nothing is sent from here; a provider plugs in at this point
    prometheus_metrics.record_notification(event_type, "handed_off")
    return {"event_type": event_type, "advisory_id": advisory_id, "handed_off": True}
