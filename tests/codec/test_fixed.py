import pytest

from lending_aggregator.codec.fixed import (
    I80F48,
    U128_MAX,
    WAD,
    Fraction,
    Rate,
    SpotRate,
    WadDecimal,
    apr_to_apy,
    slot_adjusted,
)
from lending_aggregator.errors import MathOverflow


def test_one_has_type_specific_bits():
    assert I80F48.one().bits == 1 << 48
    assert Fraction.one().bits == 1 << 60
    assert WadDecimal.one().bits == WAD
    assert SpotRate.one().bits == 10**6


def test_from_ratio_floors():
    assert Rate.from_ratio(1, 3).bits == WAD // 3
    assert WadDecimal.from_percent(5).bits == 5 * 10**16
    assert SpotRate.from_bps(250).bits == 25_000


def test_arithmetic_with_ints_and_same_type():
    half = WadDecimal.from_ratio(1, 2)
    assert (half + half) == WadDecimal.one()
    assert (WadDecimal.one() - half) == half
    assert (half * 4) == WadDecimal.from_int(2)
    assert (WadDecimal.from_int(3) / WadDecimal.from_int(2)).bits == 3 * WAD // 2
    assert (1 + half).bits == 3 * WAD // 2


def test_mixing_types_is_rejected():
    with pytest.raises(TypeError):
        _ = WadDecimal.one() + Rate.one()


def test_unsigned_underflow_raises_math_overflow():
    with pytest.raises(MathOverflow):
        _ = Rate.zero() - Rate.one()


def test_unsigned_overflow_raises_math_overflow():
    with pytest.raises(MathOverflow):
        Fraction(U128_MAX + 1)


def test_division_by_zero_raises_math_overflow():
    with pytest.raises(MathOverflow):
        _ = WadDecimal.one() / WadDecimal.zero()
    with pytest.raises(MathOverflow):
        _ = WadDecimal.one() / 0
    with pytest.raises(MathOverflow):
        WadDecimal.from_ratio(1, 0)


def test_signed_type_allows_negative_values():
    value = I80F48.from_int(-2)
    assert value.bits == -2 << 48
    assert value.to_floor() == -2
    assert value < I80F48.zero()


def test_saturating_sub_stops_at_minimum():
    assert Rate.from_int(1).saturating_sub(Rate.from_int(5)) == Rate.zero()
    assert Rate.from_int(5).saturating_sub(2) == Rate.from_int(3)


def test_rounding_helpers():
    value = WadDecimal(WAD + WAD // 2)
    assert value.to_floor() == 1
    assert value.to_ceil() == 2
    assert value.round() == 2
    assert WadDecimal(WAD + 1).to_ceil() == 2
    assert WadDecimal.from_int(7).to_ceil() == 7


def test_convert_between_binary_and_decimal():
    half = Fraction.from_ratio(1, 2)
    assert half.convert(WadDecimal) == WadDecimal.from_ratio(1, 2)
    assert WadDecimal.from_ratio(1, 4).convert(I80F48) == I80F48.from_ratio(1, 4)


def test_clamp():
    low, high = Rate.zero(), Rate.one()
    assert Rate.from_int(3).clamp(low, high) == high
    assert Rate.from_ratio(1, 2).clamp(low, high) == Rate.from_ratio(1, 2)


def test_pow():
    assert WadDecimal.from_int(2).pow(10) == WadDecimal.from_int(1024)
    assert WadDecimal.from_int(9).pow(0) == WadDecimal.one()
    with pytest.raises(ValueError):
        WadDecimal.one().pow(-1)


def test_apr_to_apy_compounds_daily():
    apy = apr_to_apy(WadDecimal.from_percent(10))
    # (1 + 0.1/365)^365 - 1 ~= 0.10515578
    assert 0.10515 < float(apy) < 0.10516


def test_apr_to_apy_of_zero_is_zero():
    assert apr_to_apy(Fraction.zero()).is_zero()


def test_slot_adjusted_scales_by_observed_slot_time():
    assert slot_adjusted(Rate.from_int(9)) == Rate.from_int(10)


def test_equality_and_hash_depend_on_type():
    assert Rate.one() != WadDecimal.one()
    assert len({Rate.one(), Rate.one(), WadDecimal.one()}) == 2
