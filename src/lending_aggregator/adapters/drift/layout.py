"""Drift v2 spot-market and user account layouts.

Rates and utilization use percentage precision (10^6). Balances are scaled by
10^9 and grow with a cumulative interest index held at 10^10, so converting a
balance into token units divides by 10^(19 - decimals).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from solders.pubkey import Pubkey

from ...codec.curve import PiecewiseLinearCurve
from ...codec.fixed import SpotRate, WadDecimal, apr_to_apy
from ...codec.layout import AccountReader, AccountWriter
from ...errors import DeserializationError

SPOT_MARKET_DISCRIMINATOR = bytes([100, 177, 8, 107, 168, 65, 65, 39])
USER_DISCRIMINATOR = bytes([159, 117, 95, 227, 239, 151, 58, 236])

SPOT_MARKET_LEN = 776
USER_LEN = 4376

PERCENTAGE_PRECISION = 10**6
SPOT_UTILIZATION_PRECISION = PERCENTAGE_PRECISION
INTEREST_DECIMALS = 19

# SpotMarket
M_PUBKEY = 8
M_ORACLE = 40
M_MINT = 72
M_VAULT = 104
M_NAME = 136
M_INSURANCE_FUND = 304
M_INSURANCE_TOTAL_FACTOR = M_INSURANCE_FUND + 104
M_INSURANCE_USER_FACTOR = M_INSURANCE_FUND + 108
M_DEPOSIT_BALANCE = 432
M_BORROW_BALANCE = 448
M_CUMULATIVE_DEPOSIT_INTEREST = 464
M_CUMULATIVE_BORROW_INTEREST = 480
M_OPTIMAL_UTILIZATION = 668
M_OPTIMAL_BORROW_RATE = 672
M_MAX_BORROW_RATE = 676
M_DECIMALS = 680
M_MARKET_INDEX = 684
M_ORDERS_ENABLED = 686
M_ORACLE_SOURCE = 687
M_STATUS = 688
M_ASSET_TIER = 689
M_MIN_BORROW_RATE = 728
M_POOL_ID = 735

# User
U_AUTHORITY = 8
U_DELEGATE = 40
U_NAME = 72
U_SPOT_POSITIONS = 104
MAX_SPOT_POSITIONS = 8
SPOT_POSITION_LEN = 40


class MarketStatus(IntEnum):
    INITIALIZED = 0
    ACTIVE = 1
    FUNDING_PAUSED = 2
    AMM_PAUSED = 3
    FILL_PAUSED = 4
    WITHDRAW_PAUSED = 5
    REDUCE_ONLY = 6
    SETTLEMENT = 7
    DELISTED = 8


class SpotBalanceType(IntEnum):
    DEPOSIT = 0
    BORROW = 1


@dataclass(frozen=True)
class InsuranceFund:
    total_factor: int = 0
    user_factor: int = 0


@dataclass(frozen=True)
class SpotMarket:
    pubkey: Pubkey
    oracle: Pubkey
    mint: Pubkey
    vault: Pubkey
    name: str
    insurance_fund: InsuranceFund
    deposit_balance: int
    borrow_balance: int
    cumulative_deposit_interest: int
    cumulative_borrow_interest: int
    optimal_utilization: int
    optimal_borrow_rate: int
    max_borrow_rate: int
    decimals: int
    market_index: int
    status: int
    orders_enabled: bool = True
    oracle_source: int = 0
    asset_tier: int = 0
    min_borrow_rate: int = 0
    pool_id: int = 0

    def is_active(self) -> bool:
        return self.status == MarketStatus.ACTIVE

    def token_amount(self, balance: int, balance_type: SpotBalanceType) -> int:
        """Token units for a scaled balance; borrows round up."""
        precision_decrease = 10 ** (INTEREST_DECIMALS - self.decimals)
        if balance_type is SpotBalanceType.BORROW:
            return -(-balance * self.cumulative_borrow_interest // precision_decrease)
        return balance * self.cumulative_deposit_interest // precision_decrease

    def deposits(self) -> int:
        return self.token_amount(self.deposit_balance, SpotBalanceType.DEPOSIT)

    def borrows(self) -> int:
        return self.token_amount(self.borrow_balance, SpotBalanceType.BORROW)

    def utilization(self) -> SpotRate:
        borrows = self.borrows()
        if borrows == 0:
            return SpotRate.zero()
        deposits = self.deposits()
        if deposits == 0:
            return SpotRate.one()
        return SpotRate.from_ratio(borrows, deposits).clamp(SpotRate.zero(), SpotRate.one())

    def min_rate(self) -> SpotRate:
        return SpotRate(self.min_borrow_rate * (PERCENTAGE_PRECISION // 200))

    def borrow_curve(self) -> PiecewiseLinearCurve[SpotRate]:
        optimal = SpotRate(min(self.optimal_utilization, SPOT_UTILIZATION_PRECISION))
        return PiecewiseLinearCurve(
            [
                (SpotRate.zero(), SpotRate.zero()),
                (optimal, SpotRate(self.optimal_borrow_rate)),
                (SpotRate.one(), SpotRate(self.max_borrow_rate)),
            ]
        )

    def borrow_rate(self) -> SpotRate:
        return max(self.borrow_curve().rate_at(self.utilization()), self.min_rate())

    def deposit_rate(self) -> SpotRate:
        keep = SpotRate(max(0, PERCENTAGE_PRECISION - self.insurance_fund.total_factor))
        return self.borrow_rate() * self.utilization() * keep

    # Compounded at WAD precision; SpotRate is too coarse for 365 periods.
    def borrow_apy(self) -> WadDecimal:
        return apr_to_apy(self.borrow_rate().convert(WadDecimal))

    def deposit_apy(self) -> WadDecimal:
        return apr_to_apy(self.deposit_rate().convert(WadDecimal))


@dataclass(frozen=True)
class SpotPosition:
    scaled_balance: int
    market_index: int
    balance_type: SpotBalanceType
    open_orders: int = 0


@dataclass(frozen=True)
class DriftUser:
    authority: Pubkey
    delegate: Pubkey = field(default_factory=Pubkey.default)
    name: str = ""
    spot_positions: tuple[SpotPosition, ...] = ()

    def active_positions(self) -> list[SpotPosition]:
        return [p for p in self.spot_positions if p.scaled_balance > 0]


def decode_spot_market(data: bytes) -> SpotMarket:
    r = AccountReader(
        data,
        name="Drift spot market",
        min_size=SPOT_MARKET_LEN,
        discriminator=SPOT_MARKET_DISCRIMINATOR,
    )
    decimals = r.u32(M_DECIMALS)
    if decimals > INTEREST_DECIMALS:
        raise DeserializationError(f"{r.name}: decimals {decimals} out of range")
    return SpotMarket(
        pubkey=r.pubkey(M_PUBKEY),
        oracle=r.pubkey(M_ORACLE),
        mint=r.pubkey(M_MINT),
        vault=r.pubkey(M_VAULT),
        name=r.name_field(M_NAME),
        insurance_fund=InsuranceFund(
            total_factor=r.u32(M_INSURANCE_TOTAL_FACTOR),
            user_factor=r.u32(M_INSURANCE_USER_FACTOR),
        ),
        deposit_balance=r.u128(M_DEPOSIT_BALANCE),
        borrow_balance=r.u128(M_BORROW_BALANCE),
        cumulative_deposit_interest=r.u128(M_CUMULATIVE_DEPOSIT_INTEREST),
        cumulative_borrow_interest=r.u128(M_CUMULATIVE_BORROW_INTEREST),
        optimal_utilization=r.u32(M_OPTIMAL_UTILIZATION),
        optimal_borrow_rate=r.u32(M_OPTIMAL_BORROW_RATE),
        max_borrow_rate=r.u32(M_MAX_BORROW_RATE),
        decimals=decimals,
        market_index=r.u16(M_MARKET_INDEX),
        status=r.u8(M_STATUS),
        orders_enabled=r.flag(M_ORDERS_ENABLED),
        oracle_source=r.u8(M_ORACLE_SOURCE),
        asset_tier=r.u8(M_ASSET_TIER),
        min_borrow_rate=r.u8(M_MIN_BORROW_RATE),
        pool_id=r.u8(M_POOL_ID),
    )


def encode_spot_market(market: SpotMarket) -> bytes:
    w = AccountWriter(SPOT_MARKET_LEN, SPOT_MARKET_DISCRIMINATOR)
    w.pubkey(M_PUBKEY, market.pubkey)
    w.pubkey(M_ORACLE, market.oracle)
    w.pubkey(M_MINT, market.mint)
    w.pubkey(M_VAULT, market.vault)
    w.name_field(M_NAME, market.name)
    w.u32(M_INSURANCE_TOTAL_FACTOR, market.insurance_fund.total_factor)
    w.u32(M_INSURANCE_USER_FACTOR, market.insurance_fund.user_factor)
    w.u128(M_DEPOSIT_BALANCE, market.deposit_balance)
    w.u128(M_BORROW_BALANCE, market.borrow_balance)
    w.u128(M_CUMULATIVE_DEPOSIT_INTEREST, market.cumulative_deposit_interest)
    w.u128(M_CUMULATIVE_BORROW_INTEREST, market.cumulative_borrow_interest)
    w.u32(M_OPTIMAL_UTILIZATION, market.optimal_utilization)
    w.u32(M_OPTIMAL_BORROW_RATE, market.optimal_borrow_rate)
    w.u32(M_MAX_BORROW_RATE, market.max_borrow_rate)
    w.u32(M_DECIMALS, market.decimals)
    w.u16(M_MARKET_INDEX, market.market_index)
    w.flag(M_ORDERS_ENABLED, market.orders_enabled)
    w.u8(M_ORACLE_SOURCE, market.oracle_source)
    w.u8(M_STATUS, market.status)
    w.u8(M_ASSET_TIER, market.asset_tier)
    w.u8(M_MIN_BORROW_RATE, market.min_borrow_rate)
    w.u8(M_POOL_ID, market.pool_id)
    return w.to_bytes()


def decode_user(data: bytes) -> DriftUser:
    r = AccountReader(
        data, name="Drift user", min_size=USER_LEN, discriminator=USER_DISCRIMINATOR
    )
    positions = []
    for index in range(MAX_SPOT_POSITIONS):
        base = U_SPOT_POSITIONS + index * SPOT_POSITION_LEN
        balance_type = r.u8(base + 34)
        if balance_type not in (SpotBalanceType.DEPOSIT, SpotBalanceType.BORROW):
            raise DeserializationError(f"{r.name}: invalid balance type {balance_type}")
        positions.append(
            SpotPosition(
                scaled_balance=r.u64(base),
                market_index=r.u16(base + 32),
                balance_type=SpotBalanceType(balance_type),
                open_orders=r.u8(base + 35),
            )
        )
    return DriftUser(
        authority=r.pubkey(U_AUTHORITY),
        delegate=r.pubkey(U_DELEGATE),
        name=r.name_field(U_NAME),
        spot_positions=tuple(positions),
    )


def encode_user(user: DriftUser) -> bytes:
    if len(user.spot_positions) > MAX_SPOT_POSITIONS:
        raise ValueError(f"at most {MAX_SPOT_POSITIONS} spot positions")
    w = AccountWriter(USER_LEN, USER_DISCRIMINATOR)
    w.pubkey(U_AUTHORITY, user.authority)
    w.pubkey(U_DELEGATE, user.delegate)
    w.name_field(U_NAME, user.name)
    for index, position in enumerate(user.spot_positions):
        base = U_SPOT_POSITIONS + index * SPOT_POSITION_LEN
        w.u64(base, position.scaled_balance)
        w.u16(base + 32, position.market_index)
        w.u8(base + 34, position.balance_type)
        w.u8(base + 35, position.open_orders)
    return w.to_bytes()
