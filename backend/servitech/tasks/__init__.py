# backend/servitech/tasks/__init__.py
"""
Celery tasks package for ServiTech.

- Auto-resolution sweep of stale advisories
- Cascade cancellation on account deactivation
- Notification hand-off for committed advisory events
"""

from servitech.tasks.advisory_tasks import process_account_deactivation, sweep_stale_advisories
from servitech.tasks.celery_app import BaseTask, celery_app, health_check
from servitech.tasks.notification_tasks import deliver_notification

__all__ = [
    "BaseTask",
    "celery_app",
    "deliver_notification",
    "health_check",
    "process_account_deactivation",
    "sweep_stale_advisories",
]
