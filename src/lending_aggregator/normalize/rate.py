from __future__ import annotations

from ..codec.fixed import U128_MAX, FixedPoint
from ..errors import MathOverflow
from .config import Protocol, RateConfig, get_config

RateValue = FixedPoint | int


def _checked(value: int, step: str) -> int:
    if not 0 <= value <= U128_MAX:
        raise MathOverflow(f"rate normalization overflow at {step}: {value}")
    return value


def convert_rate(value: RateValue, config: RateConfig) -> int:
    """Apply a rate config to a native value's bit pattern.

    Raw integers are treated as already divided by the scale factor, so they are
    multiplied by it before the shift/divide/multiply sequence.
    """
    if isinstance(value, FixedPoint):
        bits = value.bits
    else:
        bits = _checked(value * config.scale_factor, "scale")

    if bits == 0:
        return 0
    bits = _checked(bits, "input")
    shifted = _checked(bits << config.shift, "shift")
    scaled = shifted // config.scale_factor
    return _checked(scaled * config.multiplier, "multiply")


def normalize_rate(value: RateValue, protocol: Protocol | str) -> int:
    """Convert a protocol-native rate into the canonical rate integer."""
    return convert_rate(value, get_config(protocol).rate)


def normalize_apy(value: RateValue, protocol: Protocol | str) -> int:
    """Convert a protocol-native APY into the canonical rate integer."""
    return convert_rate(value, get_config(protocol).apy_rate)
