# backend/servitech/services/account_deactivation_service.py
"""
Cascade handling for account deactivation.

When a party is deactivated every confirmed advisory where they are client
or expert is cancelled by the system with a full refund. The party is also
flagged inactive so no new advisory can be booked with them. Running the
cascade twice is harmless: the second run finds nothing left to cancel.
"""

from dataclasses import dataclass, field
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import Settings
from ..core.exceptions import DomainException, InvalidTransitionException, NotFoundException
from ..domain.refund_policy import RefundTrigger
from ..events import EventPublisher
from .advisory_service import SYSTEM_ACTOR, AdvisoryService
from .base import BaseService
from .directory import IdentityDirectory, SqlIdentityDirectory

logger = logging.getLogger(__name__)

DEACTIVATION_REASON = "account deactivated"


@dataclass
class DeactivationReport:
    party_id: str
    was_active: bool
    cancelled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class AccountDeactivationService(BaseService):
    def __init__(
        self,
        db: Session,
        *,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        directory: Optional[IdentityDirectory] = None,
        publisher: Optional[EventPublisher] = None,
        advisory_service: Optional[AdvisoryService] = None,
    ):
        super().__init__(db)
        self.directory = directory or SqlIdentityDirectory(db)
        self.advisory_service = advisory_service or AdvisoryService(
            db, clock=clock, config=config, directory=self.directory, publisher=publisher
        )

    @BaseService.measure_operation("deactivate_account")
    def deactivate(self, party_id: str) -> DeactivationReport:
        party = self.directory.resolve_by_id(party_id)
        if party is None:
            raise NotFoundException(f"Party {party_id} not found", code="PARTY_NOT_FOUND")

        with self.transaction():
            if party.is_active:
                self.directory.deactivate(party_id)
        report = DeactivationReport(party_id=party_id, was_active=party.is_active)

        for advisory_id in self.advisory_service.repository.find_confirmed_for_party(party_id):
            try:
                self.advisory_service.cancel(
                    advisory_id,
                    SYSTEM_ACTOR,
                    DEACTIVATION_REASON,
                    trigger=RefundTrigger.ACCOUNT_DEACTIVATED,
                )
                report.cancelled.append(advisory_id)
            except InvalidTransitionException:
                report.skipped.append(advisory_id)
            except DomainException as exc:
                report.failed[advisory_id] = exc.message
                self.logger.error(
                    f"Cascade cancel failed for advisory {advisory_id}: {exc.message}",
                    extra={"party_id": party_id, "advisory_id": advisory_id, "code": exc.code},
                )

        self.log_operation(
            "deactivate_account",
            party_id=party_id,
            cancelled=len(report.cancelled),
            failed=len(report.failed),
        )
        return report
