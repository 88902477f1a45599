"""EventPublisher: serialization and best-effort dispatch."""

from unittest.mock import MagicMock

import pytest

from servitech.events import AdvisoryCancelled, AdvisoryCompleted, EventPublisher
from servitech.events.publisher import serialize_event
from tests.helpers.scheduling import NOW


@pytest.mark.unit
class TestEventPublisher:
    def test_serializes_datetimes_to_iso(self):
        payload = serialize_event(
            AdvisoryCancelled(
                advisory_id="01HADV", cancelled_by="system", cancelled_at=NOW, reason="account deactivated"
            )
        )
        assert payload["cancelled_at"] == "2026-03-02T15:00:00+00:00"
        assert payload["refund_amount"] is None

    def test_dispatches_event_type_and_payload(self):
        dispatch = MagicMock()
        publisher = EventPublisher(dispatch=dispatch, enabled=True)
        event = AdvisoryCompleted(
            advisory_id="01HADV",
            completed_at=NOW,
            completed_by="system",
            auto_completed=True,
            released_amount="85000.00",
        )

        assert publisher.publish(event) is True

        dispatch.assert_called_once()
        event_type, payload = dispatch.call_args.args
        assert event_type == "AdvisoryCompleted"
        assert payload["auto_completed"] is True
        assert payload["completed_at"] == NOW.isoformat()

    def test_disabled_publisher_does_not_dispatch(self):
        dispatch = MagicMock()
        publisher = EventPublisher(dispatch=dispatch, enabled=False)
        event = AdvisoryCancelled(advisory_id="01HADV", cancelled_by="c", cancelled_at=NOW)

        assert publisher.publish(event) is False
        dispatch.assert_not_called()

    def test_dispatch_failure_is_not_raised(self):
        dispatch = MagicMock(side_effect=ConnectionError("broker down"))
        publisher = EventPublisher(dispatch=dispatch, enabled=True)
        event = AdvisoryCancelled(advisory_id="01HADV", cancelled_by="c", cancelled_at=NOW)

        assert publisher.publish(event) is False
