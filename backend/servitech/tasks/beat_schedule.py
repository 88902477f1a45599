# backend/servitech/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for ServiTech.

The auto-resolution sweep runs on a fixed interval taken from settings so
deployments can tighten or relax it without code changes.
"""

from datetime import timedelta
from typing import Any

from servitech.core.config import Settings

SWEEP_TASK = "servitech.tasks.advisory_tasks.sweep_stale_advisories"


def get_beat_schedule(config: Settings) -> dict[str, dict[str, Any]]:
    """
    Build the beat schedule for the given settings.

    Returns:
        Mapping of entry name to Celery beat configuration dict
    """
    interval = timedelta(minutes=config.sweep_interval_minutes)
    return {
        "sweep-stale-advisories": {
            "task": SWEEP_TASK,
            "schedule": interval,
            "options": {
                "queue": "advisories" if config.is_production else "celery",
                "priority": 6,
                # A sweep still queued when the next one is due is dropped
                "expires": int(interval.total_seconds()),
            },
        },
    }
