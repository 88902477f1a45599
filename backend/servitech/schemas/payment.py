# backend/servitech/schemas/payment.py
"""Payment input schemas."""

from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, Field, model_validator

from ._strict_base import StrictRequestModel


class PaymentCreateInput(StrictRequestModel):
    client_id: str = Field(..., min_length=1, validation_alias=AliasChoices("clienteId", "client_id"))
    expert_id: str = Field(..., min_length=1, validation_alias=AliasChoices("expertoId", "expert_id"))
    amount: Decimal = Field(..., gt=0, validation_alias=AliasChoices("monto", "amount"))
    method: str = Field(..., validation_alias=AliasChoices("metodo", "method"))
    transaction_id: Optional[str] = Field(
        default=None, max_length=255, validation_alias=AliasChoices("transaccionId", "transaction_id")
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("metadatos", "metadata")
    )
    capture: bool = Field(default=True, description="False opens the payment as pendiente")


class RefundInput(StrictRequestModel):
    mode: Literal["full", "partial"] = "full"
    amount: Optional[Decimal] = Field(default=None, gt=0, validation_alias=AliasChoices("monto", "amount"))

    @model_validator(mode="after")
    def _partial_needs_amount(self) -> "RefundInput":
        if self.mode == "partial" and self.amount is None:
            raise ValueError("partial refunds require an amount")
        return self
