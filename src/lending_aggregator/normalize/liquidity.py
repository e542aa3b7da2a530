from __future__ import annotations

from ..codec.fixed import U128_MAX, FixedPoint
from ..errors import MathOverflow
from .config import PoolLiquidityConfig, Protocol, get_config

AmountValue = FixedPoint | int


def convert_amount(value: AmountValue, config: PoolLiquidityConfig) -> int:
    """Apply a liquidity config to a native amount.

    Decimal encodings (already scaled by a power of ten) are divided by the scale
    factor; binary fixed-point values contribute their integer part and raw
    integers are used as-is, both then multiplied by the scale factor.
    """
    if isinstance(value, FixedPoint) and value.DECIMAL:
        if value.bits < 0:
            raise MathOverflow(f"negative amount cannot be normalized: {value!r}")
        if value.bits == 0:
            return 0
        result = (
            value.bits
            if config.scale_factor == 1
            else value.bits // config.scale_factor
        )
    else:
        native = value.to_floor() if isinstance(value, FixedPoint) else value
        if native < 0:
            raise MathOverflow(f"negative amount cannot be normalized: {native}")
        if native == 0:
            return 0
        result = native * config.scale_factor

    if result > U128_MAX:
        raise MathOverflow(f"amount normalization overflow: {result}")
    return result


def normalize_amount(value: AmountValue, protocol: Protocol | str) -> int:
    """Convert a protocol-native amount into the canonical amount integer."""
    return convert_amount(value, get_config(protocol).liquidity)
