"""Input schemas accept the wire (Spanish) keys and reject anything unexpected."""

from datetime import timezone
from decimal import Decimal

from pydantic import ValidationError
import pytest

from servitech.schemas.advisory import AdvisoryBookInput, AdvisoryCreateInput, ReviewInput
from servitech.schemas.payment import PaymentCreateInput, RefundInput

BASE = {
    "titulo": "  Revisión de API  ",
    "categoria": "desarrollo-web",
    "fechaHoraInicio": "2026-03-03T05:00:00-05:00",
    "duracionMinutos": 60,
    "clienteEmail": "Laura@Cliente.co",
    "expertoEmail": "andres@experto.co",
}


@pytest.mark.unit
class TestAdvisoryInputs:
    def test_wire_keys(self):
        parsed = AdvisoryCreateInput.model_validate({**BASE, "pagoId": "01HPAY"})
        assert parsed.title == "Revisión de API"
        assert parsed.client_email == "laura@cliente.co"
        assert parsed.start_time.astimezone(timezone.utc).hour == 10
        assert parsed.payment_id == "01HPAY"

    def test_field_names_also_accepted(self):
        parsed = AdvisoryBookInput.model_validate(
            {
                "title": "Sesión",
                "category": "desarrollo-web",
                "start_time": "2026-03-03T10:00:00Z",
                "duration_minutes": 30,
                "client_email": "laura@cliente.co",
                "expert_email": "andres@experto.co",
                "amount": "50000",
                "method": "pse",
            }
        )
        assert parsed.amount == Decimal("50000")
        assert parsed.capture is True

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            AdvisoryCreateInput.model_validate(
                {**BASE, "fechaHoraInicio": "2026-03-03T10:00:00", "pagoId": "p"}
            )
        assert exc_info.value.errors()[0]["type"] == "timezone_aware"

    @pytest.mark.parametrize("email", ["sin-arroba", "a@dominio", "@x.co"])
    def test_bad_email(self, email):
        with pytest.raises(ValidationError):
            AdvisoryCreateInput.model_validate({**BASE, "clienteEmail": email, "pagoId": "p"})

    def test_extra_keys_forbidden(self):
        with pytest.raises(ValidationError) as exc_info:
            AdvisoryCreateInput.model_validate({**BASE, "pagoId": "p", "precio": 1})
        assert exc_info.value.errors()[0]["type"] == "extra_forbidden"

    def test_non_positive_amount(self):
        with pytest.raises(ValidationError):
            AdvisoryBookInput.model_validate({**BASE, "monto": "0", "metodo": "pse"})

    def test_review_bounds(self):
        assert ReviewInput.model_validate({"calificacion": 4}).rating == 4
        with pytest.raises(ValidationError):
            ReviewInput.model_validate({"calificacion": 0})


@pytest.mark.unit
class TestPaymentInputs:
    def test_payment_wire_keys(self):
        parsed = PaymentCreateInput.model_validate(
            {
                "clienteId": "c-1",
                "expertoId": "e-1",
                "monto": "120000.50",
                "metodo": "nequi",
                "metadatos": {"origen": "web"},
            }
        )
        assert parsed.amount == Decimal("120000.50")
        assert parsed.metadata == {"origen": "web"}

    def test_partial_refund_needs_amount(self):
        with pytest.raises(ValidationError):
            RefundInput.model_validate({"mode": "partial"})
        assert RefundInput.model_validate({"mode": "partial", "monto": "10"}).amount == Decimal("10")
        assert RefundInput.model_validate({}).mode == "full"
