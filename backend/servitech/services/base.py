# backend/servitech/services/base.py
"""
Shared plumbing for ServiTech services.

Every service owns one SQLAlchemy session and decides its own unit of work:
``transaction()`` commits on success and rolls back on any failure, and
``measure_operation`` times public operations into Prometheus plus a small
in-process summary used by health checks and tests.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from functools import wraps
import logging
import time
from typing import Any, Callable, ClassVar, Dict, Iterator, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException, ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


@dataclass
class OperationStats:
    calls: int = 0
    failures: int = 0
    total_seconds: float = 0.0
    fastest: float = float("inf")
    slowest: float = 0.0

    def observe(self, elapsed: float, ok: bool) -> None:
        self.calls += 1
        self.total_seconds += elapsed
        self.fastest = min(self.fastest, elapsed)
        self.slowest = max(self.slowest, elapsed)
        if not ok:
            self.failures += 1

    def summary(self) -> Dict[str, Any]:
        return {
            "count": self.calls,
            "avg_time": self.total_seconds / self.calls,
            "min_time": self.fastest,
            "max_time": self.slowest,
            "success_rate": (self.calls - self.failures) / self.calls,
            "failure_count": self.failures,
        }


class BaseService:
    """Session holder with transaction, logging and timing helpers."""

    # service class name -> operation -> stats
    _operation_stats: ClassVar[Dict[str, Dict[str, OperationStats]]] = {}

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Unit of work around the block.

        Storage errors (``SQLAlchemyError``/``RepositoryException``) roll back
        and surface as ``ServiceException``; domain exceptions roll back and
        propagate unchanged so callers see the real cause.
        """
        try:
            yield self.db
            self.db.commit()
        except (SQLAlchemyError, RepositoryException) as exc:
            self.db.rollback()
            self.logger.error(f"Rolled back after storage error: {exc}")
            raise ServiceException(f"Database operation failed: {exc}") from exc
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Time a service method and record its outcome.

            @BaseService.measure_operation("finalize_advisory")
            def finalize(self, advisory_id, acting_party_id): ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                error_type = None
                try:
                    return func(self, *args, **kwargs)
                except Exception as exc:
                    error_type = type(exc).__name__
                    raise
                finally:
                    self._observe(operation_name, time.perf_counter() - started, error_type)

            return cast(F, wrapper)

        return decorator

    def _observe(self, operation: str, elapsed: float, error_type: Any) -> None:
        service = self.__class__.__name__
        ok = error_type is None
        per_service = BaseService._operation_stats.setdefault(service, {})
        per_service.setdefault(operation, OperationStats()).observe(elapsed, ok)

        if elapsed > SLOW_OPERATION_SECONDS:
            self.logger.warning(f"Slow operation: {operation} took {elapsed:.2f}s")
        try:
            prometheus_metrics.record_service_operation(
                service=service,
                operation=operation,
                duration=elapsed,
                status="success" if ok else "error",
                error_type=error_type,
            )
        except Exception as metrics_error:
            # Metrics must never fail the operation
            self.logger.debug(f"Metrics recording failed: {metrics_error}")

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})

    def get_metrics(self) -> Dict[str, Any]:
        """Per-operation timing summary for this service class."""
        stats = BaseService._operation_stats.get(self.__class__.__name__, {})
        return {operation: data.summary() for operation, data in stats.items() if data.calls}
