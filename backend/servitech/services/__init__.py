# backend/servitech/services/__init__.py
"""
Service layer for ServiTech.

Services own transactions and business rules; ``AdvisoryEngine`` is the
facade external callers use.
"""

from .account_deactivation_service import AccountDeactivationService, DeactivationReport
from .advisory_engine import AdvisoryEngine
from .advisory_service import (
    SYSTEM_ACTOR,
    AdvisoryPage,
    AdvisoryRequest,
    AdvisoryService,
    PaymentConfirmation,
)
from .auto_resolution_sweeper import AutoResolutionSweeper, SweepReport
from .base import BaseService
from .conflict_checker import ConflictChecker, ConflictCheckResult
from .directory import (
    CategoryDirectory,
    IdentityDirectory,
    Party,
    SqlCategoryDirectory,
    SqlIdentityDirectory,
)
from .payment_service import PaymentService

__all__ = [
    "SYSTEM_ACTOR",
    "AccountDeactivationService",
    "AdvisoryEngine",
    "AdvisoryPage",
    "AdvisoryRequest",
    "AdvisoryService",
    "AutoResolutionSweeper",
    "BaseService",
    "CategoryDirectory",
    "ConflictCheckResult",
    "ConflictChecker",
    "DeactivationReport",
    "IdentityDirectory",
    "Party",
    "PaymentConfirmation",
    "PaymentService",
    "SqlCategoryDirectory",
    "SqlIdentityDirectory",
    "SweepReport",
]
