"""Tests for the Kamino Lend reserve layout and adapter."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from solders.pubkey import Pubkey

from lending_aggregator.adapters.kamino import KaminoAdapter, KaminoMarket
from lending_aggregator.adapters.kamino.layout import (
    CURVE_POINTS,
    OBLIGATION_LEN,
    RESERVE_LEN,
    CurvePoint,
    KaminoObligation,
    KaminoReserve,
    ObligationCollateral,
    ObligationLiquidity,
    ReserveConfig,
    ReserveLiquidity,
    ReserveStatus,
    decode_obligation,
    decode_reserve,
    encode_obligation,
    encode_reserve,
)
from lending_aggregator.codec.fixed import Fraction
from lending_aggregator.constants import NamedMarket
from lending_aggregator.errors import DeserializationError
from lending_aggregator.models import ObligationType
from lending_aggregator.rpc.pool import RpcConnectionPool

LENDING_MARKET = Pubkey.new_unique()
MINT = Pubkey.new_unique()


def curve(*points: tuple[int, int]) -> tuple[CurvePoint, ...]:
    """Pad a curve to the on-chain point count by repeating the last point."""
    padded = list(points) + [points[-1]] * (CURVE_POINTS - len(points))
    return tuple(CurvePoint(util, rate) for util, rate in padded)


DEFAULT_CURVE = curve((0, 0), (8_000, 800), (10_000, 10_000))


def make_reserve(
    *,
    available: int = 500_000,
    borrowed: Fraction | None = None,
    protocol_fees: Fraction | None = None,
    host_fixed_bps: int = 0,
    take_rate: int = 0,
    liquidation_threshold: int = 80,
    token_name: str = "USDC",
    borrow_rate_curve: tuple[CurvePoint, ...] = DEFAULT_CURVE,
) -> KaminoReserve:
    return KaminoReserve(
        version=1,
        last_update_slot=300_000_000,
        lending_market=LENDING_MARKET,
        liquidity=ReserveLiquidity(
            mint=MINT,
            supply_vault=Pubkey.new_unique(),
            fee_vault=Pubkey.new_unique(),
            available_amount=available,
            borrowed_amount_sf=(
                borrowed if borrowed is not None else Fraction.from_int(500_000)
            ),
            market_price_sf=1 << 60,
            market_price_last_updated_ts=1_700_000_000,
            mint_decimals=6,
            accumulated_protocol_fees_sf=protocol_fees or Fraction.zero(),
        ),
        collateral_mint=Pubkey.new_unique(),
        collateral_mint_total_supply=800_000,
        config=ReserveConfig(
            status=ReserveStatus.ACTIVE,
            asset_tier=0,
            host_fixed_interest_rate_bps=host_fixed_bps,
            protocol_take_rate_pct=take_rate,
            protocol_liquidation_fee_pct=0,
            loan_to_value_pct=75,
            liquidation_threshold_pct=liquidation_threshold,
            borrow_fee_sf=0,
            flash_loan_fee_sf=0,
            borrow_rate_curve=borrow_rate_curve,
            borrow_factor_pct=100,
            deposit_limit=10**15,
            borrow_limit=10**15,
            token_name=token_name,
        ),
    )


def keyed(pubkey: Pubkey, data: bytes) -> SimpleNamespace:
    return SimpleNamespace(pubkey=pubkey, account=SimpleNamespace(data=data))


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def adapter(client):
    pool = RpcConnectionPool(client_factory=lambda endpoint, timeout: client)
    return KaminoAdapter(
        "https://rpc.test",
        pool,
        lending_markets=[NamedMarket(str(LENDING_MARKET), "Main Market")],
        max_tries=1,
    )


# --- layout ---


def test_reserve_encodes_and_decodes():
    reserve = make_reserve(protocol_fees=Fraction.from_int(3), host_fixed_bps=50)
    data = encode_reserve(reserve)

    assert len(data) == RESERVE_LEN
    assert decode_reserve(data) == reserve


def test_non_monotonic_curve_is_rejected():
    bad = curve((0, 0), (8_000, 800), (5_000, 10_000))
    data = encode_reserve(make_reserve(borrow_rate_curve=bad))
    with pytest.raises(DeserializationError, match="monotonic"):
        decode_reserve(data)


def test_obligation_exposes_only_occupied_slots():
    reserve = Pubkey.new_unique()
    obligation = KaminoObligation(
        tag=0,
        last_update_slot=1,
        lending_market=LENDING_MARKET,
        owner=Pubkey.new_unique(),
        deposits=(ObligationCollateral(reserve, 10),),
        borrows=(ObligationLiquidity(reserve, Fraction.from_int(4)),),
    )
    data = encode_obligation(obligation)
    decoded = decode_obligation(data)

    assert len(data) == OBLIGATION_LEN
    assert len(decoded.deposits) == 8
    assert decoded.active_deposits() == [ObligationCollateral(reserve, 10)]
    assert decoded.active_borrows() == [
        ObligationLiquidity(reserve, Fraction.from_int(4))
    ]


def test_borrowed_amount_floors_scaled_fraction():
    position = ObligationLiquidity(
        Pubkey.new_unique(), Fraction(7 * Fraction.ONE_BITS + Fraction.ONE_BITS - 1)
    )
    assert position.borrowed_amount() == 7


# --- derived values ---


def test_total_supply_nets_out_fees():
    reserve = make_reserve(protocol_fees=Fraction.from_int(100_000))
    assert reserve.total_supply() == Fraction.from_int(900_000)


def test_utilization_edge_cases():
    assert make_reserve(borrowed=Fraction.zero()).utilization() == Fraction.zero()
    exhausted = make_reserve(available=0, protocol_fees=Fraction.from_int(10**7))
    assert exhausted.utilization() == Fraction.one()
    over = make_reserve(available=0, protocol_fees=Fraction.from_int(100_000))
    assert over.utilization() == Fraction.one()


def test_borrow_rate_interpolates_bps_curve():
    reserve = make_reserve()
    assert reserve.utilization() == Fraction.from_ratio(1, 2)
    assert float(reserve.borrow_rate()) == pytest.approx(0.05, abs=1e-12)
    assert float(reserve.supply_rate()) == pytest.approx(0.025, abs=1e-12)


def test_host_fixed_rate_is_added_after_compounding():
    base = make_reserve().borrow_apy()
    with_host = make_reserve(host_fixed_bps=100).borrow_apy()
    assert with_host == base + Fraction.from_bps(100)


def test_collateral_exchange_rate():
    assert make_reserve().collateral_to_liquidity(80_000) == 100_000


def test_symbol_prefers_token_name():
    address = Pubkey.new_unique()
    assert KaminoMarket(address, make_reserve(), "Main Market").symbol == "USDC"
    unnamed = KaminoMarket(address, make_reserve(token_name=""), "Main Market")
    assert unnamed.symbol == "UNKNOWN"


# --- adapter ---


def test_fetch_markets_filters_by_lending_market(adapter, client):
    reserve_address = Pubkey.new_unique()
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(reserve_address, encode_reserve(make_reserve()))]
    )

    markets = adapter.fetch_markets()

    market = markets[reserve_address]
    assert market.market_name == "Main Market"
    assert market.is_collateral()
    assert market.total_supply() == Fraction.from_int(1_000_000)

    _, kwargs = client.get_program_accounts.call_args
    size, market_filter = kwargs["filters"]
    assert size == RESERVE_LEN
    assert market_filter.offset == 32


def test_fetch_obligations(adapter, client):
    owner = Pubkey.new_unique()
    reserve_address = Pubkey.new_unique()
    adapter.apply_market_data(
        {reserve_address: KaminoMarket(reserve_address, make_reserve(), "Main Market")}
    )
    obligation = KaminoObligation(
        tag=0,
        last_update_slot=1,
        lending_market=LENDING_MARKET,
        owner=owner,
        deposits=(ObligationCollateral(reserve_address, 80_000),),
        borrows=(
            ObligationLiquidity(
                reserve_address,
                Fraction(2_500_000 * Fraction.ONE_BITS + Fraction.ONE_BITS * 9 // 10),
            ),
        ),
    )
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(Pubkey.new_unique(), encode_obligation(obligation))]
    )

    positions = adapter.fetch_obligations(str(owner))

    assert [(p.obligation_type, p.amount, p.symbol) for p in positions] == [
        (ObligationType.ASSET, 100_000, "USDC"),
        (ObligationType.LIABILITY, 2_500_000, "USDC"),
    ]
    assert {p.market_name for p in positions} == {"Main Market"}
    client.get_multiple_accounts.assert_not_called()

    _, kwargs = client.get_program_accounts.call_args
    size, owner_filter = kwargs["filters"]
    assert size == OBLIGATION_LEN
    assert owner_filter.offset == 64
