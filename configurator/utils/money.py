"""Conversions between Decimal amounts and the integer cents stored in the database."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal("0.01")


def to_cents(amount: Union[Decimal, int, float, str]) -> int:
    """Convert an amount to integer cents, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a two-decimal Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)
