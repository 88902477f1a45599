# backend/servitech/tasks/advisory_tasks.py
"""
Celery tasks for advisory lifecycle housekeeping.

- ``sweep_stale_advisories``: periodic auto-resolution of confirmed
  advisories past the grace window (scheduled by beat)
- ``process_account_deactivation``: cascade cancellation when an account is
  deactivated by the identity service
"""

import logging
from typing import Any, Callable, Dict, List, TypedDict, TypeVar, cast

from servitech.core.exceptions import NotFoundException
from servitech.services.advisory_engine import AdvisoryEngine
from servitech.tasks.celery_app import celery_app

TaskCallable = TypeVar("TaskCallable", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


def typed_task(*task_args: Any, **task_kwargs: Any) -> Callable[[TaskCallable], TaskCallable]:
    """Return a typed Celery task decorator for mypy."""

    return cast(Callable[[TaskCallable], TaskCallable], celery_app.task(*task_args, **task_kwargs))


class SweepJobResults(TypedDict):
    cutoff: str
    scanned: int
    completed: int
    skipped: int
    failed: Dict[str, str]


class DeactivationJobResults(TypedDict):
    party_id: str
    status: str
    cancelled: List[str]
    skipped: List[str]
    failed: Dict[str, str]


def build_engine() -> AdvisoryEngine:
    return AdvisoryEngine()


@typed_task(name="servitech.tasks.advisory_tasks.sweep_stale_advisories", max_retries=1)
def sweep_stale_advisories() -> SweepJobResults:
    """Finalize confirmed advisories whose grace window has passed."""
    result = build_engine().run_sweep()
    if not result.ok:
        raise result.error

    report = result.value
    if report.failed:
        logger.warning(
            f"Sweep left {len(report.failed)} advisories unresolved",
            extra={"failed": list(report.failed)},
        )
    return {
        "cutoff": report.cutoff.isoformat(),
        "scanned": report.scanned,
        "completed": len(report.completed),
        "skipped": len(report.skipped),
        "failed": dict(report.failed),
    }


@typed_task(name="servitech.tasks.advisory_tasks.process_account_deactivation")
def process_account_deactivation(party_id: str) -> DeactivationJobResults:
    """Cancel and refund every confirmed advisory of a deactivated party."""
    result = build_engine().deactivate_account(party_id)
    if not result.ok:
        if isinstance(result.error, NotFoundException):
            # Nothing to retry for an account we never knew about
            logger.warning(f"Deactivation for unknown party {party_id}")
            return {
                "party_id": party_id,
                "status": "not_found",
                "cancelled": [],
                "skipped": [],
                "failed": {},
            }
        raise result.error

    report = result.value
    return {
        "party_id": party_id,
        "status": "failed" if report.failed else "processed",
        "cancelled": list(report.cancelled),
        "skipped": list(report.skipped),
        "failed": dict(report.failed),
    }
