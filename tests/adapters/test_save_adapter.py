"""Tests for the Save (Solend) reserve layout and adapter."""

from __future__ import annotations

from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from solders.pubkey import Pubkey

from lending_aggregator.adapters.save import SaveAdapter, SaveMarket
from lending_aggregator.adapters.save.layout import (
    OBLIGATION_LEN,
    RESERVE_LEN,
    ObligationCollateral,
    ObligationLiquidity,
    RateLimiter,
    ReserveCollateral,
    ReserveConfig,
    ReserveLiquidity,
    SaveObligation,
    SaveReserve,
    decode_obligation,
    decode_reserve,
    encode_obligation,
    encode_reserve,
)
from lending_aggregator.codec.fixed import WAD, Rate, WadDecimal
from lending_aggregator.constants import NamedMarket
from lending_aggregator.errors import DeserializationError, InvalidAddress
from lending_aggregator.models import ObligationType
from lending_aggregator.rpc.pool import RpcConnectionPool

LENDING_MARKET = Pubkey.new_unique()
MINT = Pubkey.new_unique()


def make_reserve(
    *,
    available: int = 500_000,
    borrowed: WadDecimal | None = None,
    fees: WadDecimal | None = None,
    collateral_supply: int = 800_000,
    take_rate: int = 0,
    liquidation_threshold: int = 85,
    lending_market: Pubkey = LENDING_MARKET,
) -> SaveReserve:
    return SaveReserve(
        version=1,
        last_update_slot=250_000_000,
        last_update_stale=False,
        lending_market=lending_market,
        liquidity=ReserveLiquidity(
            mint=MINT,
            mint_decimals=6,
            supply=Pubkey.new_unique(),
            pyth_oracle=Pubkey.new_unique(),
            switchboard_oracle=Pubkey.default(),
            available_amount=available,
            borrowed_amount_wads=(
                borrowed if borrowed is not None else WadDecimal.from_int(500_000)
            ),
            cumulative_borrow_rate_wads=WadDecimal.one(),
            market_price=WadDecimal.one(),
            accumulated_protocol_fees_wads=fees or WadDecimal.zero(),
            smoothed_market_price=WadDecimal.one(),
        ),
        collateral=ReserveCollateral(
            mint=Pubkey.new_unique(),
            mint_total_supply=collateral_supply,
            supply=Pubkey.new_unique(),
        ),
        config=ReserveConfig(
            optimal_utilization_rate=80,
            max_utilization_rate=90,
            loan_to_value_ratio=75,
            liquidation_bonus=5,
            max_liquidation_bonus=10,
            liquidation_threshold=liquidation_threshold,
            max_liquidation_threshold=90,
            min_borrow_rate=0,
            optimal_borrow_rate=8,
            max_borrow_rate=100,
            super_max_borrow_rate=150,
            borrow_fee_wad=0,
            flash_loan_fee_wad=0,
            host_fee_percentage=20,
            deposit_limit=10**15,
            borrow_limit=10**15,
            fee_receiver=Pubkey.new_unique(),
            protocol_liquidation_fee=0,
            protocol_take_rate=take_rate,
            added_borrow_weight_bps=0,
            reserve_type=0,
            scaled_price_offset_bps=-25,
            extra_oracle=Pubkey.default(),
        ),
        rate_limiter=RateLimiter(max_outflow=10**12, window_duration=86_400),
        attributed_borrow_value=WadDecimal.zero(),
        attributed_borrow_limit_open=0,
        attributed_borrow_limit_close=0,
    )


def make_obligation(owner: Pubkey, deposits=(), borrows=()) -> SaveObligation:
    zero = WadDecimal.zero()
    return SaveObligation(
        version=1,
        last_update_slot=1,
        last_update_stale=True,
        lending_market=LENDING_MARKET,
        owner=owner,
        deposited_value=zero,
        borrowed_value=zero,
        allowed_borrow_value=zero,
        unhealthy_borrow_value=zero,
        borrowed_value_upper_bound=zero,
        borrowing_isolated_asset=False,
        super_unhealthy_borrow_value=zero,
        unweighted_borrowed_value=zero,
        closeable=False,
        deposits=tuple(deposits),
        borrows=tuple(borrows),
    )


def keyed(pubkey: Pubkey, data: bytes) -> SimpleNamespace:
    return SimpleNamespace(pubkey=pubkey, account=SimpleNamespace(data=data))


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def adapter(client):
    pool = RpcConnectionPool(client_factory=lambda endpoint, timeout: client)
    return SaveAdapter(
        "https://rpc.test",
        pool,
        pools=[NamedMarket(str(LENDING_MARKET), "Main Pool")],
        max_tries=1,
    )


# --- layout ---


def test_reserve_encodes_to_fixed_length_and_decodes_back():
    reserve = make_reserve()
    data = encode_reserve(reserve)

    assert len(data) == RESERVE_LEN
    assert decode_reserve(data) == reserve


def test_reserve_with_wrong_version_is_rejected():
    data = bytearray(encode_reserve(make_reserve()))
    data[0] = 2
    with pytest.raises(DeserializationError, match="version"):
        decode_reserve(bytes(data))


def test_truncated_reserve_is_rejected():
    with pytest.raises(DeserializationError):
        decode_reserve(encode_reserve(make_reserve())[:600])


def test_obligation_decodes_deposits_then_borrows():
    owner = Pubkey.new_unique()
    obligation = make_obligation(
        owner,
        deposits=[ObligationCollateral(Pubkey.new_unique(), 1_000)],
        borrows=[
            ObligationLiquidity(
                Pubkey.new_unique(), WadDecimal.one(), WadDecimal.from_int(42)
            )
        ],
    )
    data = encode_obligation(obligation)

    assert len(data) == OBLIGATION_LEN
    assert decode_obligation(data) == obligation


def test_obligation_with_too_many_positions_is_rejected():
    data = bytearray(encode_obligation(make_obligation(Pubkey.new_unique())))
    data[202] = 6
    data[203] = 5
    with pytest.raises(DeserializationError, match="exceeds"):
        decode_obligation(bytes(data))


def test_borrowed_amount_rounds_half_up():
    position = ObligationLiquidity(
        Pubkey.new_unique(), WadDecimal.one(), WadDecimal(2 * WAD + WAD // 2)
    )
    assert position.borrowed_amount() == 3


# --- derived values ---


def test_total_supply_subtracts_protocol_fees():
    reserve = make_reserve(fees=WadDecimal.from_int(100_000))
    assert reserve.total_supply() == WadDecimal.from_int(900_000)


def test_total_supply_saturates_at_zero():
    reserve = make_reserve(available=0, fees=WadDecimal.from_int(10**7))
    assert reserve.total_supply().is_zero()


def test_utilization_is_zero_without_borrows():
    reserve = make_reserve(borrowed=WadDecimal.zero())
    assert reserve.utilization() == Rate.zero()
    assert reserve.borrow_rate() == Rate.zero()
    assert reserve.supply_rate() == Rate.zero()


def test_utilization_is_one_when_supply_is_exhausted():
    reserve = make_reserve(available=0, fees=WadDecimal.from_int(10**7))
    assert reserve.utilization() == Rate.one()


def test_utilization_is_clamped_to_one():
    # fees shrink supply below the borrowed amount
    reserve = make_reserve(available=0, fees=WadDecimal.from_int(100_000))
    assert reserve.utilization() == Rate.one()


def test_borrow_rate_follows_curve_below_optimal():
    reserve = make_reserve()  # 50% utilization, 8% at 80%
    assert reserve.utilization() == Rate.from_percent(50)
    assert reserve.borrow_rate() == Rate.from_percent(5)


def test_supply_rate_is_borrow_rate_times_utilization_minus_take_rate():
    assert make_reserve().supply_rate() == Rate.from_ratio(25, 1000)
    assert make_reserve(take_rate=20).supply_rate() == Rate.from_percent(2)


def test_apy_exceeds_apr():
    reserve = make_reserve()
    assert reserve.borrow_apy() > reserve.borrow_rate()
    assert reserve.supply_apy() > reserve.supply_rate()


def test_collateral_exchange_rate():
    reserve = make_reserve()  # 1_000_000 liquidity backing 800_000 cTokens
    assert reserve.collateral_to_liquidity(80_000) == 100_000


# --- adapter ---


def test_fetch_markets_decodes_pool_reserves_and_skips_garbage(adapter, client):
    reserve_address = Pubkey.new_unique()
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[
            keyed(reserve_address, encode_reserve(make_reserve())),
            keyed(Pubkey.new_unique(), b"\x00" * RESERVE_LEN),
        ]
    )

    markets = adapter.fetch_markets()

    assert list(markets) == [reserve_address]
    market = markets[reserve_address]
    assert isinstance(market, SaveMarket)
    assert market.market_name == "Main Pool"
    assert market.mint == str(MINT)
    assert market.decimals == 6
    assert market.is_collateral()

    _, kwargs = client.get_program_accounts.call_args
    size, memcmp = kwargs["filters"]
    assert size == RESERVE_LEN
    assert memcmp.offset == 10


def test_fetch_markets_does_not_mutate_adapter(adapter, client):
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(Pubkey.new_unique(), encode_reserve(make_reserve()))]
    )
    adapter.fetch_markets()
    assert adapter.markets == []


def test_zero_liquidation_threshold_is_not_collateral():
    market = SaveMarket(
        Pubkey.new_unique(), make_reserve(liquidation_threshold=0), "Main Pool"
    )
    assert not market.is_collateral()


def test_fetch_obligations_converts_deposits_and_borrows(adapter, client):
    owner = Pubkey.new_unique()
    reserve_address = Pubkey.new_unique()
    unknown_reserve = Pubkey.new_unique()
    adapter.apply_market_data(
        {reserve_address: SaveMarket(reserve_address, make_reserve(), "Main Pool")}
    )
    obligation = make_obligation(
        owner,
        deposits=[
            ObligationCollateral(reserve_address, 80_000),
            ObligationCollateral(reserve_address, 0),
        ],
        borrows=[
            ObligationLiquidity(
                reserve_address,
                WadDecimal.one(),
                WadDecimal(2_500_000 * WAD + 4 * 10**17),
            ),
            ObligationLiquidity(unknown_reserve, WadDecimal.one(), WadDecimal.from_int(7)),
        ],
    )
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(Pubkey.new_unique(), encode_obligation(obligation))]
    )
    client.get_multiple_accounts.return_value = SimpleNamespace(value=[None])

    positions = adapter.fetch_obligations(str(owner))

    assert [(p.obligation_type, p.amount, p.mint) for p in positions] == [
        (ObligationType.ASSET, 100_000, str(MINT)),
        (ObligationType.LIABILITY, 2_500_000, str(MINT)),
        (ObligationType.LIABILITY, 7, f"UNKNOWN-{unknown_reserve}"),
    ]
    assert all(p.protocol_name == "Save" for p in positions)
    assert all(p.market_name == "Main Pool" for p in positions)
    assert positions[2].symbol == "UNKNOWN"
    assert positions[2].mint_decimals == 6

    _, kwargs = client.get_program_accounts.call_args
    size, owner_filter = kwargs["filters"]
    assert size == OBLIGATION_LEN
    assert owner_filter.offset == 42


def test_fetch_obligations_resolves_reserves_not_loaded(adapter, client):
    owner = Pubkey.new_unique()
    reserve_address = Pubkey.new_unique()
    other_pool = Pubkey.new_unique()
    obligation = replace(
        make_obligation(
            owner,
            borrows=[
                ObligationLiquidity(
                    reserve_address, WadDecimal.one(), WadDecimal.from_int(5)
                )
            ],
        ),
        lending_market=other_pool,
    )
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(Pubkey.new_unique(), encode_obligation(obligation))]
    )
    client.get_multiple_accounts.return_value = SimpleNamespace(
        value=[SimpleNamespace(data=encode_reserve(make_reserve(lending_market=other_pool)))]
    )

    (position,) = adapter.fetch_obligations(str(owner))

    assert position.mint == str(MINT)
    assert position.market_name == "Unknown"


def test_fetch_obligations_rejects_invalid_wallet(adapter, client):
    with pytest.raises(InvalidAddress):
        adapter.fetch_obligations("definitely not base58!")
    client.get_program_accounts.assert_not_called()
