"""Tests for the Marginfi bank layout and adapter."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from solders.pubkey import Pubkey

from lending_aggregator.adapters.marginfi import MarginfiAdapter, MarginfiMarket
from lending_aggregator.adapters.marginfi.layout import (
    ACCOUNT_LEN,
    BANK_DISCRIMINATOR,
    BANK_LEN,
    Balance,
    BalanceSide,
    Bank,
    BankConfig,
    InterestRateConfig,
    MarginfiAccount,
    MarginfiGroup,
    decode_account,
    decode_bank,
    decode_group,
    encode_account,
    encode_bank,
    encode_group,
)
from lending_aggregator.codec.fixed import I80F48
from lending_aggregator.constants import NamedMarket
from lending_aggregator.errors import DeserializationError, ProtocolError
from lending_aggregator.models import ObligationType
from lending_aggregator.rpc.pool import RpcConnectionPool

GROUP = Pubkey.new_unique()
MINT = Pubkey.new_unique()


def fx(numerator: int, denominator: int = 1) -> I80F48:
    return I80F48.from_ratio(numerator, denominator)


def make_bank(
    *,
    asset_shares: I80F48 | None = None,
    liability_shares: I80F48 | None = None,
    asset_share_value: I80F48 | None = None,
    liability_share_value: I80F48 | None = None,
    protocol_ir_fee: I80F48 | None = None,
    protocol_fixed_fee_apr: I80F48 | None = None,
    group: Pubkey = GROUP,
) -> Bank:
    return Bank(
        mint=MINT,
        mint_decimals=9,
        group=group,
        asset_share_value=asset_share_value or fx(1),
        liability_share_value=liability_share_value or fx(1),
        liquidity_vault=Pubkey.new_unique(),
        collected_insurance_fees_outstanding=I80F48.zero(),
        collected_group_fees_outstanding=I80F48.zero(),
        total_liability_shares=(
            liability_shares if liability_shares is not None else fx(500)
        ),
        total_asset_shares=asset_shares if asset_shares is not None else fx(1_000),
        last_update=1_700_000_000,
        config=BankConfig(
            asset_weight_init=fx(9, 10),
            asset_weight_maint=fx(95, 100),
            liability_weight_init=fx(11, 10),
            liability_weight_maint=fx(105, 100),
            deposit_limit=10**15,
            interest_rate_config=InterestRateConfig(
                optimal_utilization_rate=fx(1, 2),
                plateau_interest_rate=fx(1, 4),
                max_interest_rate=fx(1),
                insurance_fee_fixed_apr=I80F48.zero(),
                insurance_ir_fee=I80F48.zero(),
                protocol_fixed_fee_apr=protocol_fixed_fee_apr or I80F48.zero(),
                protocol_ir_fee=protocol_ir_fee or I80F48.zero(),
            ),
            operational_state=1,
            oracle_setup=3,
            borrow_limit=10**14,
        ),
    )


def balance(bank_pk: Pubkey, *, assets=None, liabilities=None, active=True) -> Balance:
    return Balance(
        active=active,
        bank_pk=bank_pk,
        asset_shares=assets or I80F48.zero(),
        liability_shares=liabilities or I80F48.zero(),
    )


def keyed(pubkey: Pubkey, data: bytes) -> SimpleNamespace:
    return SimpleNamespace(pubkey=pubkey, account=SimpleNamespace(data=data))


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def adapter(client):
    pool = RpcConnectionPool(client_factory=lambda endpoint, timeout: client)
    return MarginfiAdapter(
        "https://rpc.test",
        pool,
        group=NamedMarket(str(GROUP), "Global Pool"),
        max_tries=1,
    )


# --- layout ---


def test_bank_encodes_and_decodes():
    bank = make_bank(protocol_fixed_fee_apr=fx(1, 100))
    data = encode_bank(bank)

    assert len(data) == BANK_LEN
    assert data[:8] == BANK_DISCRIMINATOR
    assert decode_bank(data) == bank


def test_bank_discriminator_is_checked():
    data = bytearray(encode_bank(make_bank()))
    data[0] ^= 0xFF
    with pytest.raises(DeserializationError, match="discriminator"):
        decode_bank(bytes(data))


def test_group_encodes_and_decodes():
    group = MarginfiGroup(admin=Pubkey.new_unique(), program_fee_rate=fx(1, 10))
    assert decode_group(encode_group(group)) == group


def test_account_decodes_all_balance_slots():
    account = MarginfiAccount(
        group=GROUP,
        authority=Pubkey.new_unique(),
        balances=(balance(Pubkey.new_unique(), assets=fx(10)),),
    )
    decoded = decode_account(encode_account(account))

    assert len(encode_account(account)) == ACCOUNT_LEN
    assert len(decoded.balances) == 16
    assert decoded.balances[0] == account.balances[0]
    assert decoded.active_balances() == [account.balances[0]]


def test_balance_side_ignores_dust():
    bank_pk = Pubkey.new_unique()
    assert balance(bank_pk, assets=fx(5)).side() is BalanceSide.ASSET
    assert balance(bank_pk, liabilities=fx(2)).side() is BalanceSide.LIABILITY
    assert balance(bank_pk, assets=fx(1, 2)).side() is None


# --- derived values ---


def test_utilization_is_liabilities_over_assets():
    assert make_bank().utilization() == fx(1, 2)


def test_utilization_edge_cases():
    assert make_bank(liability_shares=I80F48.zero()).utilization() == I80F48.zero()
    assert make_bank(asset_shares=I80F48.zero()).utilization() == I80F48.one()
    assert make_bank(liability_shares=fx(2_000)).utilization() == I80F48.one()


def test_rates_at_plateau():
    lending, borrowing = make_bank().rates()
    assert borrowing == fx(1, 4)
    assert lending == fx(1, 8)


def test_borrow_rate_includes_fees():
    fixed = fx(1, 100)
    bank = make_bank(protocol_ir_fee=fx(1, 4), protocol_fixed_fee_apr=fixed)
    group = MarginfiGroup(admin=Pubkey.new_unique(), program_fee_rate=fx(1, 4))

    lending, borrowing = bank.rates(group)

    assert lending == fx(1, 8)
    assert borrowing == fx(3, 8) + fixed


def test_zero_utilization_has_zero_rates():
    lending, borrowing = make_bank(liability_shares=I80F48.zero()).rates()
    assert lending.is_zero()
    assert borrowing.is_zero()


# --- adapter ---


def test_fetch_markets_filters_by_group_and_attaches_it(adapter, client):
    bank_address = Pubkey.new_unique()
    group = MarginfiGroup(admin=Pubkey.new_unique(), program_fee_rate=fx(1, 4))
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(bank_address, encode_bank(make_bank()))]
    )
    client.get_account_info.return_value = SimpleNamespace(
        value=SimpleNamespace(data=encode_group(group))
    )

    markets = adapter.fetch_markets()
    adapter.apply_market_data(markets)

    market = adapter.get_market(bank_address)
    assert isinstance(market, MarginfiMarket)
    assert market.market_name == "Global Pool"
    assert market.group == group
    assert adapter.group == group
    assert market.total_supply() == fx(1_000)
    assert market.total_borrows() == fx(500)
    assert not market.is_collateral()

    _, kwargs = client.get_program_accounts.call_args
    discriminator, group_filter = kwargs["filters"]
    assert discriminator.offset == 0
    assert group_filter.offset == 41


def test_fetch_obligations_values_shares(adapter, client):
    owner = Pubkey.new_unique()
    bank_address = Pubkey.new_unique()
    unknown_bank = Pubkey.new_unique()
    bank = make_bank(asset_share_value=fx(3, 2), liability_share_value=fx(11, 10))
    adapter.apply_market_data(
        {bank_address: MarginfiMarket(bank_address, bank, "Global Pool")}
    )
    account = MarginfiAccount(
        group=GROUP,
        authority=owner,
        balances=(
            balance(bank_address, assets=fx(100)),
            balance(bank_address, liabilities=fx(10)),
            balance(bank_address, assets=fx(1, 2)),
            balance(bank_address, assets=fx(50), active=False),
            balance(unknown_bank, assets=fx(7)),
        ),
    )
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(Pubkey.new_unique(), encode_account(account))]
    )
    client.get_multiple_accounts.return_value = SimpleNamespace(value=[None])

    positions = adapter.fetch_obligations(str(owner))

    assert [(p.obligation_type, p.amount) for p in positions] == [
        (ObligationType.ASSET, 150),
        (ObligationType.LIABILITY, 11),
        (ObligationType.ASSET, 7),
    ]
    assert positions[0].mint == str(MINT)
    assert positions[0].mint_decimals == 9
    assert positions[2].mint == f"UNKNOWN-{unknown_bank}"
    assert {p.market_name for p in positions} == {"Global Pool"}

    _, kwargs = client.get_program_accounts.call_args
    offsets = [getattr(f, "offset", None) for f in kwargs["filters"]]
    assert offsets == [0, None, 40]


def test_accounts_from_other_groups_get_unknown_market(adapter, client):
    owner = Pubkey.new_unique()
    bank_address = Pubkey.new_unique()
    adapter.apply_market_data(
        {bank_address: MarginfiMarket(bank_address, make_bank(), "Global Pool")}
    )
    account = MarginfiAccount(
        group=Pubkey.new_unique(),
        authority=owner,
        balances=(balance(bank_address, assets=fx(3)),),
    )
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(Pubkey.new_unique(), encode_account(account))]
    )

    (position,) = adapter.fetch_obligations(str(owner))

    assert position.market_name == "Unknown"


def test_missing_group_account_is_a_protocol_error(adapter, client):
    client.get_program_accounts.return_value = SimpleNamespace(
        value=[keyed(Pubkey.new_unique(), encode_bank(make_bank()))]
    )
    client.get_account_info.return_value = SimpleNamespace(value=None)

    with pytest.raises(ProtocolError, match="Marginfi group"):
        adapter.fetch_markets()


def test_undecodable_group_account_is_a_protocol_error(adapter, client):
    client.get_program_accounts.return_value = SimpleNamespace(value=[])
    client.get_account_info.return_value = SimpleNamespace(
        value=SimpleNamespace(data=b"\x00" * 16)
    )

    with pytest.raises(ProtocolError) as excinfo:
        adapter.fetch_markets()
    assert isinstance(excinfo.value.__cause__, DeserializationError)
