# backend/servitech/schemas/advisory.py
"""Advisory input schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, AwareDatetime, Field, field_validator

from ._strict_base import StrictRequestModel


def _normalize_email(value: str) -> str:
    candidate = value.strip().lower()
    local, sep, domain = candidate.partition("@")
    if not sep or not local or "." not in domain:
        raise ValueError("must be a valid email address")
    return candidate


class AdvisoryBase(StrictRequestModel):
    title: str = Field(
        ..., min_length=1, max_length=200, validation_alias=AliasChoices("titulo", "title")
    )
    category: str = Field(
        ..., min_length=1, max_length=100, validation_alias=AliasChoices("categoria", "category")
    )
    start_time: AwareDatetime = Field(
        ..., validation_alias=AliasChoices("fechaHoraInicio", "start_time")
    )
    duration_minutes: int = Field(
        ..., validation_alias=AliasChoices("duracionMinutos", "duration_minutes")
    )
    client_email: str = Field(..., validation_alias=AliasChoices("clienteEmail", "client_email"))
    expert_email: str = Field(..., validation_alias=AliasChoices("expertoEmail", "expert_email"))
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=128,
        validation_alias=AliasChoices("idempotencyKey", "idempotency_key"),
    )
    video_room_url: Optional[str] = Field(
        default=None, max_length=500, validation_alias=AliasChoices("salaUrl", "video_room_url")
    )

    @field_validator("client_email", "expert_email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class AdvisoryCreateInput(AdvisoryBase):
    """Book against an existing payment."""

    payment_id: str = Field(..., min_length=1, validation_alias=AliasChoices("pagoId", "payment_id"))


class AdvisoryBookInput(AdvisoryBase):
    """Open the payment and book in one step."""

    amount: Decimal = Field(..., gt=0, validation_alias=AliasChoices("monto", "amount"))
    method: str = Field(..., validation_alias=AliasChoices("metodo", "method"))
    transaction_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("transaccionId", "transaction_id")
    )
    capture: bool = Field(default=True, description="False leaves the payment pending capture")


class ReviewInput(StrictRequestModel):
    rating: Optional[int] = Field(
        default=None, ge=1, le=5, validation_alias=AliasChoices("calificacion", "rating")
    )
    comment: Optional[str] = Field(
        default=None, max_length=1000, validation_alias=AliasChoices("comentario", "comment")
    )
