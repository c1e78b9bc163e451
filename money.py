from decimal import Decimal, ROUND_HALF_UP

from errors import ValidationError

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    """Convert a two-place decimal amount to integer cents (half-up)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def installment_amount_cents(total_cents: int, count: int) -> int:
    """Per-installment amount: total / count rounded half-up to the cent."""
    if count <= 0:
        raise ValidationError("Installment count must be positive")
    return int((Decimal(total_cents) / count).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_installments(total_cents: int, count: int) -> list[int]:
    """Split ``total_cents`` into ``count`` payments that sum to it exactly.

    Every payment but the last is the rounded installment amount; the last
    one is whatever remains of the total, so rounding drift never leaks.

    >>> split_installments(10000, 3)
    [3333, 3333, 3334]
    """
    base = installment_amount_cents(total_cents, count)
    closing = total_cents - base * (count - 1)
    if closing <= 0:
        raise ValidationError(
            f"Total of {from_cents(total_cents)} is too small to split into {count} installments"
        )
    return [base] * (count - 1) + [closing]
