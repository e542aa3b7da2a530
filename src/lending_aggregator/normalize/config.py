"""Per-protocol normalization constants.

Canonical rate: ``rate * 2**60 * 1000`` as an unsigned 128-bit integer.
Canonical amount: native token units ``* 10**18`` as an unsigned 128-bit integer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

CANONICAL_RATE_SHIFT = 60
CANONICAL_RATE_MULTIPLIER = 1_000
CANONICAL_AMOUNT_SCALE = 10**18


class Protocol(str, Enum):
    SAVE = "Save"
    MARGINFI = "Marginfi"
    KAMINO = "Kamino"
    DRIFT = "Drift"


@dataclass(frozen=True)
class RateConfig:
    """Rate conversion: ``((bits << shift) // scale_factor) * multiplier``."""

    scale_factor: int
    shift: int
    multiplier: int


@dataclass(frozen=True)
class PoolLiquidityConfig:
    """Amount conversion factor; divides decimal encodings, multiplies the rest."""

    scale_factor: int


@dataclass(frozen=True)
class NormalizationConfig:
    rate: RateConfig
    liquidity: PoolLiquidityConfig
    # APYs compounded at a wider precision than the native rate
    apy: RateConfig | None = None

    @property
    def apy_rate(self) -> RateConfig:
        return self.apy or self.rate


NORMALIZATION_CONFIGS: dict[Protocol, NormalizationConfig] = {
    # Rate is a WAD decimal; reserve amounts are WAD decimals already.
    Protocol.SAVE: NormalizationConfig(
        rate=RateConfig(
            scale_factor=10**18,
            shift=CANONICAL_RATE_SHIFT,
            multiplier=CANONICAL_RATE_MULTIPLIER,
        ),
        liquidity=PoolLiquidityConfig(scale_factor=1),
    ),
    # I80F48 carries 48 fractional bits.
    Protocol.MARGINFI: NormalizationConfig(
        rate=RateConfig(
            scale_factor=1,
            shift=CANONICAL_RATE_SHIFT - 48,
            multiplier=CANONICAL_RATE_MULTIPLIER,
        ),
        liquidity=PoolLiquidityConfig(scale_factor=CANONICAL_AMOUNT_SCALE),
    ),
    # Fraction already carries 60 fractional bits.
    Protocol.KAMINO: NormalizationConfig(
        rate=RateConfig(
            scale_factor=1, shift=0, multiplier=CANONICAL_RATE_MULTIPLIER
        ),
        liquidity=PoolLiquidityConfig(scale_factor=CANONICAL_AMOUNT_SCALE),
    ),
    # Spot rates are integers at 10^6 precision, APYs are compounded as WAD decimals;
    # token amounts are native integers.
    Protocol.DRIFT: NormalizationConfig(
        rate=RateConfig(
            scale_factor=10**6,
            shift=CANONICAL_RATE_SHIFT,
            multiplier=CANONICAL_RATE_MULTIPLIER,
        ),
        liquidity=PoolLiquidityConfig(scale_factor=CANONICAL_AMOUNT_SCALE),
        apy=RateConfig(
            scale_factor=10**18,
            shift=CANONICAL_RATE_SHIFT,
            multiplier=CANONICAL_RATE_MULTIPLIER,
        ),
    ),
}


def get_config(protocol: Protocol | str) -> NormalizationConfig:
    """Resolve the normalization constants for a protocol (enum or display name)."""
    try:
        return NORMALIZATION_CONFIGS[Protocol(protocol)]
    except ValueError as exc:
        raise ValueError(
            f"Unknown protocol '{protocol}'. "
            f"Available: {', '.join(p.value for p in Protocol)}"
        ) from exc
