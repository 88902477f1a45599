# backend/servitech/tasks/celery_app.py
"""
Celery application configuration for ServiTech.

This module sets up the Celery app with Redis as the broker, configures
task serialization and timezone, registers the task modules and installs
the beat schedule for the auto-resolution sweep.
"""

import logging
from typing import Any, Dict, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from servitech.core.config import settings
from servitech.core.exceptions import LockUnavailableException, ServiceException

TASK_MODULES = (
    "servitech.tasks.advisory_tasks",
    "servitech.tasks.notification_tasks",
)

# Storage outages surface as ServiceException once they pass through a service
RETRYABLE_ERRORS = (
    ServiceException,
    LockUnavailableException,
    OperationalError,
    RedisConnectionError,
)


def _broker_url() -> str:
    broker_url = settings.celery_broker_url or settings.redis_url or "redis://localhost:6379"
    # Ensure Redis URL includes database number
    if not any(broker_url.endswith(f"/{i}") for i in range(16)):
        broker_url = f"{broker_url}/0"
    return broker_url


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = _broker_url()
    celery_app = Celery(
        "servitech",
        broker=broker_url,
        backend=settings.celery_result_backend or broker_url,
    )

    celery_app.conf.update(
        {
            # Task settings
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "America/Bogota",
            "enable_utc": True,
            # Worker settings
            "worker_prefetch_multiplier": 1 if settings.is_production else 4,
            "worker_max_tasks_per_child": 1000,
            "worker_hijack_root_logger": False,
            # Task execution settings
            "task_soft_time_limit": 300,  # 5 minutes soft limit
            "task_time_limit": 600,  # 10 minutes hard limit
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            # Error handling
            "task_default_retry_delay": 60,
            "task_max_retries": 3,
            "beat_schedule_filename": "celerybeat-schedule",
        }
    )

    # Force import of task modules so tasks are registered even if autodiscovery fails
    celery_app.conf.imports = tuple(set(celery_app.conf.imports or ()) | set(TASK_MODULES))

    celery_app.conf.task_routes = {
        "servitech.tasks.advisory_tasks.*": {"queue": "advisories"},
        "servitech.tasks.notification_tasks.*": {"queue": "notifications"},
    }

    from servitech.tasks.beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule(settings)

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """
    Retries transient infrastructure failures only.

    Domain rejections are final and fail the task on the first attempt.
    """

    autoretry_for = RETRYABLE_ERRORS
    max_retries = 3
    retry_backoff = 30
    retry_backoff_max = 600
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).error(
            f"{self.name}[{task_id}] gave up: {type(exc).__name__}: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "retries": self.request.retries},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


celery_app.Task = cast(Type[Task], BaseTask)


@celery_app.task(name="servitech.tasks.health_check")  # type: ignore[misc]
def health_check() -> Dict[str, str]:
    """Simple health check task to verify Celery is working."""
    from datetime import datetime, timezone

    current_task = celery_app.current_task

    return {
        "status": "healthy",
        "worker": current_task.request.hostname if current_task else "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
