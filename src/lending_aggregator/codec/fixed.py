"""Protocol-native fixed-point numbers with checked arithmetic.

Every type stores its value as a single scaled integer (``bits``) and a class-level
``ONE_BITS`` giving the integer that represents 1.0. Binary types (``I80F48``,
``Fraction``) scale by a power of two, decimal types (``WadDecimal``, ``Rate``,
``SpotRate``) by a power of ten. All arithmetic is exact integer math rounded toward
negative infinity, and any result outside the type's range raises ``MathOverflow``.
"""

from __future__ import annotations

from functools import total_ordering
from typing import ClassVar, TypeVar

from ..errors import MathOverflow

WAD = 10**18
U128_MAX = (1 << 128) - 1

COMPOUNDING_PERIODS_PER_YEAR = 365
SLOTS_PER_SECOND = 2
DEFAULT_SLOT_DURATION_MS = 450

_F = TypeVar("_F", bound="FixedPoint")


@total_ordering
class FixedPoint:
    """A number stored as ``bits / ONE_BITS``."""

    ONE_BITS: ClassVar[int]
    MIN_BITS: ClassVar[int]
    MAX_BITS: ClassVar[int]
    DECIMAL: ClassVar[bool] = False

    __slots__ = ("bits",)

    def __init__(self, bits: int) -> None:
        if not self.MIN_BITS <= bits <= self.MAX_BITS:
            raise MathOverflow(f"{type(self).__name__} out of range: {bits}")
        self.bits = bits

    @classmethod
    def zero(cls: type[_F]) -> _F:
        return cls(0)

    @classmethod
    def one(cls: type[_F]) -> _F:
        return cls(cls.ONE_BITS)

    @classmethod
    def from_int(cls: type[_F], value: int) -> _F:
        return cls(value * cls.ONE_BITS)

    @classmethod
    def from_ratio(cls: type[_F], numerator: int, denominator: int) -> _F:
        if denominator == 0:
            raise MathOverflow(f"{cls.__name__} division by zero")
        return cls(numerator * cls.ONE_BITS // denominator)

    @classmethod
    def from_percent(cls: type[_F], percent: int) -> _F:
        return cls.from_ratio(percent, 100)

    @classmethod
    def from_bps(cls: type[_F], bps: int) -> _F:
        return cls.from_ratio(bps, 10_000)

    def convert(self, target: type[_F]) -> _F:
        """Re-express this value in another fixed-point type (floored)."""
        return target(self.bits * target.ONE_BITS // self.ONE_BITS)

    def _other_bits(self, other: object) -> int:
        if isinstance(other, int):
            return other * self.ONE_BITS
        if type(other) is type(self):
            return other.bits  # type: ignore[attr-defined]
        raise TypeError(
            f"cannot combine {type(self).__name__} with {type(other).__name__}"
        )

    def __add__(self: _F, other: _F | int) -> _F:
        return type(self)(self.bits + self._other_bits(other))

    __radd__ = __add__

    def __sub__(self: _F, other: _F | int) -> _F:
        return type(self)(self.bits - self._other_bits(other))

    def __rsub__(self: _F, other: int) -> _F:
        return type(self)(self._other_bits(other) - self.bits)

    def __mul__(self: _F, other: _F | int) -> _F:
        if isinstance(other, int):
            return type(self)(self.bits * other)
        return type(self)(self.bits * self._other_bits(other) // self.ONE_BITS)

    __rmul__ = __mul__

    def __truediv__(self: _F, other: _F | int) -> _F:
        if isinstance(other, int):
            if other == 0:
                raise MathOverflow(f"{type(self).__name__} division by zero")
            return type(self)(self.bits // other)
        divisor = self._other_bits(other)
        if divisor == 0:
            raise MathOverflow(f"{type(self).__name__} division by zero")
        return type(self)(self.bits * self.ONE_BITS // divisor)

    def mul_ratio(self: _F, numerator: int, denominator: int) -> _F:
        """Multiply by ``numerator / denominator`` with a single rounding step."""
        if denominator == 0:
            raise MathOverflow(f"{type(self).__name__} division by zero")
        return type(self)(self.bits * numerator // denominator)

    def pow(self: _F, exponent: int) -> _F:
        """Raise to a non-negative integer power by repeated squaring."""
        if exponent < 0:
            raise ValueError("exponent must be non-negative")
        result = self.one()
        base = self
        while exponent:
            if exponent & 1:
                result = result * base
            exponent >>= 1
            if exponent:
                base = base * base
        return result

    def saturating_sub(self: _F, other: _F | int) -> _F:
        return type(self)(max(self.bits - self._other_bits(other), self.MIN_BITS))

    def clamp(self: _F, low: _F, high: _F) -> _F:
        return max(low, min(self, high))

    def to_floor(self) -> int:
        return self.bits // self.ONE_BITS

    def to_ceil(self) -> int:
        return -(-self.bits // self.ONE_BITS)

    def round(self) -> int:
        return (self.bits + self.ONE_BITS // 2) // self.ONE_BITS

    def is_zero(self) -> bool:
        return self.bits == 0

    def __float__(self) -> float:
        return self.bits / self.ONE_BITS

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.bits == other.bits  # type: ignore[attr-defined]

    def __lt__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.bits < other.bits  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.bits))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({float(self)!r})"


class I80F48(FixedPoint):
    """Signed 128-bit binary fixed point with 48 fractional bits."""

    FRAC_BITS = 48
    ONE_BITS = 1 << FRAC_BITS
    MIN_BITS = -(1 << 127)
    MAX_BITS = (1 << 127) - 1


class Fraction(FixedPoint):
    """Unsigned 128-bit binary fixed point with 60 fractional bits (U68F60)."""

    FRAC_BITS = 60
    ONE_BITS = 1 << FRAC_BITS
    MIN_BITS = 0
    MAX_BITS = U128_MAX


class WadDecimal(FixedPoint):
    """Unsigned 192-bit decimal scaled by 10^18."""

    DECIMAL = True
    ONE_BITS = WAD
    MIN_BITS = 0
    MAX_BITS = (1 << 192) - 1


class Rate(FixedPoint):
    """Unsigned 128-bit decimal scaled by 10^18."""

    DECIMAL = True
    ONE_BITS = WAD
    MIN_BITS = 0
    MAX_BITS = U128_MAX


class SpotRate(FixedPoint):
    """Unsigned decimal scaled by 10^6 (percentage precision)."""

    DECIMAL = True
    ONE_BITS = 10**6
    MIN_BITS = 0
    MAX_BITS = U128_MAX


def apr_to_apy(apr: _F, periods: int = COMPOUNDING_PERIODS_PER_YEAR) -> _F:
    """Compound an APR into an APY: ``(1 + apr / periods) ** periods - 1``."""
    one = apr.one()
    return (one + apr / periods).pow(periods) - one


def slot_adjusted(rate: _F) -> _F:
    """Scale a per-slot-accruing rate by the observed slot duration."""
    return rate.mul_ratio(1_000, SLOTS_PER_SECOND * DEFAULT_SLOT_DURATION_MS)
