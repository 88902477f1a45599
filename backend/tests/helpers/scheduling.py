"""Shared test constants and fakes for advisory scheduling tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, List

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
CATEGORY = "desarrollo-web"


def at(hour: int, minute: int = 0, days: int = 1) -> datetime:
    """UTC instant ``days`` after NOW at ``hour:minute``."""
    return (NOW + timedelta(days=days)).replace(hour=hour, minute=minute)


class RecordingPublisher:
    """Stands in for EventPublisher; keeps every event it is handed."""

    def __init__(self) -> None:
        self.events: List[Any] = []

    def publish(self, event: Any) -> bool:
        self.events.append(event)
        return True

    @property
    def event_types(self) -> List[str]:
        return [type(event).__name__ for event in self.events]


def advisory_record(state: str = "confirmada", **overrides: Any):
    from servitech.domain.records import AdvisoryRecord, PartySnapshot

    start = at(10)
    values = dict(
        id="01HADVISORY0000000000000001",
        code="ASE-1772463600000-ABC123",
        title="Revisión de arquitectura",
        category=CATEGORY,
        client=PartySnapshot("client-1", "laura@cliente.co", "Laura Prueba"),
        expert=PartySnapshot("expert-1", "andres@experto.co", "Andrés Prueba"),
        start_time=start,
        end_time=start + timedelta(hours=1),
        duration_minutes=60,
        state=state,
        payment_id="01HPAYMENT00000000000000001",
        created_at=NOW,
    )
    values.update(overrides)
    return AdvisoryRecord(**values)


def payment_record(state: str = "retenido", amount: str = "100000.00", **overrides: Any):
    from decimal import Decimal

    from servitech.domain.commission import split_commission
    from servitech.domain.records import PaymentRecord

    split = split_commission(Decimal(amount))
    values = dict(
        id="01HPAYMENT00000000000000001",
        client_id="client-1",
        expert_id="expert-1",
        amount=split.amount,
        commission=split.commission,
        expert_amount=split.expert_amount,
        method="pse",
        currency="COP",
        state=state,
        created_at=NOW,
    )
    values.update(overrides)
    return PaymentRecord(**values)
