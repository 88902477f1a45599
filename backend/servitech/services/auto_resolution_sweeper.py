# backend/servitech/services/auto_resolution_sweeper.py
"""
Automatic resolution of stale advisories.

A confirmed advisory whose session ended more than the grace period ago is
finalized on behalf of the system, which releases its escrow to the expert.
Each advisory is finalized in its own session and transaction: one failure
is logged and reported without stopping the batch, and an advisory that a
participant finalized concurrently is counted as skipped.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import time
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import Settings, settings as default_settings
from ..core.exceptions import InvalidTransitionException
from ..events import EventPublisher
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from .advisory_service import SYSTEM_ACTOR, AdvisoryService

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]
ServiceFactory = Callable[[Session], AdvisoryService]


@dataclass
class SweepReport:
    cutoff: datetime
    completed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def scanned(self) -> int:
        return len(self.completed) + len(self.skipped) + len(self.failed)

    def to_dict(self) -> Dict[str, object]:
        return {
            "cutoff": self.cutoff.isoformat(),
            "scanned": self.scanned,
            "completed": list(self.completed),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
        }


class AutoResolutionSweeper:
    """Finalizes confirmed advisories that ended more than ``grace`` ago."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        publisher: Optional[EventPublisher] = None,
        service_factory: Optional[ServiceFactory] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or system_clock
        self.config = config or default_settings
        self.publisher = publisher
        self.service_factory = service_factory or self._default_service

    @property
    def grace(self) -> timedelta:
        return timedelta(hours=self.config.auto_complete_grace_hours)

    def _default_service(self, session: Session) -> AdvisoryService:
        return AdvisoryService(
            session, clock=self.clock, config=self.config, publisher=self.publisher
        )

    def find_candidates(self, cutoff: datetime) -> List[str]:
        session = self.session_factory()
        try:
            repository = RepositoryFactory.create_advisory_repository(session)
            return repository.find_stale_confirmed(cutoff, self.config.sweep_batch_size)
        finally:
            session.close()

    def run(self) -> SweepReport:
        started = time.monotonic()
        cutoff = self.clock.now() - self.grace
        report = SweepReport(cutoff=cutoff)

        for advisory_id in self.find_candidates(cutoff):
            session = self.session_factory()
            try:
                self.service_factory(session).finalize(advisory_id, SYSTEM_ACTOR, auto=True)
                report.completed.append(advisory_id)
            except InvalidTransitionException as exc:
                # Finalized, cancelled or rejected since the scan
                report.skipped.append(advisory_id)
                logger.info(
                    "Sweep skipped advisory",
                    extra={"advisory_id": advisory_id, "current_state": exc.details.get("current_state")},
                )
            except Exception as exc:
                report.failed[advisory_id] = f"{type(exc).__name__}: {exc}"
                logger.error(
                    f"Sweep failed to finalize advisory {advisory_id}: {exc}",
                    exc_info=True,
                    extra={"advisory_id": advisory_id},
                )
            finally:
                session.close()

        prometheus_metrics.record_sweep(
            completed=len(report.completed),
            skipped=len(report.skipped),
            failed=len(report.failed),
            duration=time.monotonic() - started,
        )
        logger.info(
            f"Auto-resolution sweep finished: {len(report.completed)} completed, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed",
            extra={"cutoff": cutoff.isoformat()},
        )
        return report
