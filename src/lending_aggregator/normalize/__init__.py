from __future__ import annotations

from .config import (
    NORMALIZATION_CONFIGS,
    NormalizationConfig,
    PoolLiquidityConfig,
    Protocol,
    RateConfig,
    get_config,
)
from .liquidity import convert_amount, normalize_amount
from .rate import convert_rate, normalize_apy, normalize_rate

__all__ = [
    "NORMALIZATION_CONFIGS",
    "NormalizationConfig",
    "PoolLiquidityConfig",
    "Protocol",
    "RateConfig",
    "convert_amount",
    "convert_rate",
    "get_config",
    "normalize_amount",
    "normalize_apy",
    "normalize_rate",
]
