from __future__ import annotations

from decimal import Decimal

from .normalize.config import (
    CANONICAL_AMOUNT_SCALE,
    CANONICAL_RATE_MULTIPLIER,
    CANONICAL_RATE_SHIFT,
)

_CANONICAL_RATE_ONE = (1 << CANONICAL_RATE_SHIFT) * CANONICAL_RATE_MULTIPLIER


def rate_to_fraction(rate: int) -> Decimal:
    """Convert a canonical rate back into a plain fraction (0.05 for 5%)."""
    return Decimal(rate) / Decimal(_CANONICAL_RATE_ONE)


def rate_to_percent(rate: int) -> Decimal:
    return rate_to_fraction(rate) * 100


def amount_to_tokens(amount: int, decimals: int) -> Decimal:
    """Convert a canonical amount into whole tokens.

    Args:
        amount: Native token units scaled by 10**18.
        decimals: Decimal places of the token mint.

    Returns:
        The amount in whole tokens.
    """
    return Decimal(amount) / Decimal(CANONICAL_AMOUNT_SCALE) / (Decimal(10) ** decimals)


def format_large_number(value: float | int | Decimal) -> str:
    """Abbreviate a number with bn/m/k suffixes, two decimals.

    Examples:
        1_500_000_000 -> "1.50bn", 2_300_000 -> "2.30m", 950 -> "950.00"
    """
    number = Decimal(value)
    sign = "-" if number < 0 else ""
    number = abs(number)
    for threshold, suffix in (
        (Decimal(10) ** 9, "bn"),
        (Decimal(10) ** 6, "m"),
        (Decimal(10) ** 3, "k"),
    ):
        if number >= threshold:
            return f"{sign}{number / threshold:.2f}{suffix}"
    return f"{sign}{number:.2f}"
