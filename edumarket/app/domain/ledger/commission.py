"""
Commission Calculator.

Splits a gross payment into platform commission and teacher share.
Pure and stateless; no database access.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict

from edumarket.app.core.exceptions import InvalidAmountError, InvalidRateError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CommissionBreakdown:
    gross_amount: Decimal
    commission: Decimal
    teacher_share: Decimal
    commission_rate_used: Decimal

    def as_dict(self) -> Dict[str, str]:
        return {key: str(value) for key, value in asdict(self).items()}


def to_money(value: Any) -> Decimal:
    """Coerce to Decimal quantized to the smallest currency unit."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(value)
    if not amount.is_finite():
        raise InvalidAmountError(value)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def split(gross_amount: Any, commission_rate: Any) -> CommissionBreakdown:
    """
    Split a gross amount by a commission percentage.

    The commission is rounded half-up to the cent and the teacher share is
    the exact remainder, so commission + teacher_share == gross_amount.

    Raises:
        InvalidAmountError: gross_amount <= 0
        InvalidRateError: rate outside [0, 100]
    """
    gross = to_money(gross_amount)
    if gross <= 0:
        raise InvalidAmountError(gross_amount)

    try:
        rate = Decimal(str(commission_rate))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidRateError(commission_rate)
    if not rate.is_finite() or rate < 0 or rate > HUNDRED:
        raise InvalidRateError(commission_rate)

    commission = (gross * rate / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
    return CommissionBreakdown(
        gross_amount=gross,
        commission=commission,
        teacher_share=gross - commission,
        commission_rate_used=rate,
    )
