"""Platform commission split for a gross payment amount."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from servitech.core.exceptions import ValidationException

CENT = Decimal("0.01")
DEFAULT_COMMISSION_RATE = Decimal("0.15")

AmountLike = Union[Decimal, int, str]


def to_money(value: AmountLike, field: str = "amount") -> Decimal:
    """Coerce to a 2-place Decimal. Floats are refused to avoid binary rounding."""
    if isinstance(value, (float, bool)):
        raise ValidationException(
            f"{field} must be a decimal string or integer",
            code="INVALID_AMOUNT",
            details={field: repr(value)},
        )
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationException(
            f"{field} is not a valid amount", code="INVALID_AMOUNT", details={field: str(value)}
        )
    if not amount.is_finite():
        raise ValidationException(
            f"{field} is not a valid amount", code="INVALID_AMOUNT", details={field: str(value)}
        )
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CommissionSplit:
    amount: Decimal
    commission: Decimal
    expert_amount: Decimal


def split_commission(amount: AmountLike, rate: Decimal = DEFAULT_COMMISSION_RATE) -> CommissionSplit:
    """
    ``commission = round(amount * rate, 2)`` (half-up) and the expert keeps the rest,
    so ``commission + expert_amount == amount`` exactly.
    """
    gross = to_money(amount)
    if gross <= 0:
        raise ValidationException(
            "Amount must be greater than zero", code="INVALID_AMOUNT", details={"amount": str(gross)}
        )
    commission = (gross * Decimal(rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return CommissionSplit(amount=gross, commission=commission, expert_amount=gross - commission)
