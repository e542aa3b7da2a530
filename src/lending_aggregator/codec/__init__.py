from __future__ import annotations

from .curve import PiecewiseLinearCurve
from .fixed import (
    I80F48,
    WAD,
    FixedPoint,
    Fraction,
    Rate,
    SpotRate,
    WadDecimal,
    apr_to_apy,
    slot_adjusted,
)
from .layout import AccountReader, AccountWriter, anchor_discriminator, parse_pubkey

__all__ = [
    "AccountReader",
    "AccountWriter",
    "FixedPoint",
    "Fraction",
    "I80F48",
    "PiecewiseLinearCurve",
    "Rate",
    "SpotRate",
    "WAD",
    "WadDecimal",
    "anchor_discriminator",
    "apr_to_apy",
    "parse_pubkey",
    "slot_adjusted",
]
