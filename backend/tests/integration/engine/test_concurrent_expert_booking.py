# backend/tests/integration/engine/test_concurrent_expert_booking.py
"""Concurrent bookings of the same expert slot: exactly one wins."""

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from servitech.models.advisory import Advisory
from servitech.models.payment import Payment
from servitech.services.advisory_engine import AdvisoryEngine
from tests.helpers.scheduling import CATEGORY, at

WORKERS = 6


@pytest.mark.integration
def test_same_slot_race_has_single_winner(
    session_factory, clock, config, publisher, client, expert, category
) -> None:
    engine = AdvisoryEngine(session_factory, clock=clock, config=config, publisher=publisher)
    barrier = threading.Barrier(WORKERS)

    def attempt(index: int):
        barrier.wait()
        return engine.book_advisory(
            {
                "titulo": f"Intento {index}",
                "categoria": CATEGORY,
                "fechaHoraInicio": at(10, 15 * (index % 2)).isoformat(),
                "duracionMinutos": 60,
                "clienteEmail": client.email,
                "expertoEmail": expert.email,
                "monto": "100000.00",
                "metodo": "tarjeta",
            }
        )

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(attempt, range(WORKERS)))

    winners = [result for result in results if result.ok]
    losers = [result for result in results if not result.ok]
    assert len(winners) == 1
    assert len(losers) == WORKERS - 1
    assert all(result.status_code == 409 for result in losers)

    with session_factory() as session:
        assert session.query(Advisory).count() == 1
        # Losing bookings roll back their payment along with the advisory
        assert session.query(Payment).count() == 1
