# Overview: Shared money rounding rule (integer minor units).

"""
All money is stored as integer cents. Decimal input is rounded exactly once,
at the boundary, with ROUND_HALF_UP to the smallest currency unit; everything
after that is integer arithmetic so sums of derived amounts (installments,
debts, part lines) can never drift from the listed totals.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")


def to_cents(value, *, field: str = "amount") -> int:
    """
    Convert a major-unit amount (int, float, str or Decimal) to integer cents.

    Floats are routed through str() so 0.1 + 0.2 style artefacts do not leak
    into the rounding step.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def cents_to_decimal(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / 100).quantize(CENT)


def format_cents(cents: int | None) -> str:
    return f"{cents_to_decimal(cents):.2f}"


def line_total_cents(unit_cost_cents: int, quantity: int) -> int:
    return unit_cost_cents * quantity


def split_installments(total_cents: int, paid_cents: int, count: int) -> list[int]:
    """
    Split the remaining balance into `count` installments.

    Each installment gets the floor share; the last one absorbs the
    remainder so the sum always equals total - paid exactly.
    """
    if count <= 0:
        raise ValidationError("installment count must be positive")
    remaining = total_cents - paid_cents
    if remaining < 0:
        raise ValidationError("paid amount exceeds total")

    share = remaining // count
    amounts = [share] * count
    amounts[-1] = remaining - share * (count - 1)
    return amounts
