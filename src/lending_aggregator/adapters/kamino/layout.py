"""Kamino Lend (klend) account layouts.

Scaled-fraction (``_sf``) fields are U68F60 values held in a u128. Offsets
include the 8-byte Anchor discriminator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from solders.pubkey import Pubkey

from ...codec.curve import PiecewiseLinearCurve
from ...codec.fixed import Fraction, apr_to_apy, slot_adjusted
from ...codec.layout import AccountReader, AccountWriter, anchor_discriminator
from ...errors import DeserializationError

RESERVE_DISCRIMINATOR = anchor_discriminator("Reserve")
OBLIGATION_DISCRIMINATOR = anchor_discriminator("Obligation")

RESERVE_LEN = 8624
OBLIGATION_LEN = 3344

# Reserve
R_VERSION = 8
R_LAST_UPDATE_SLOT = 16
R_LENDING_MARKET = 32
R_LIQUIDITY_MINT = 128
R_SUPPLY_VAULT = 160
R_FEE_VAULT = 192
R_AVAILABLE_AMOUNT = 224
R_BORROWED_AMOUNT_SF = 232
R_MARKET_PRICE_SF = 248
R_MARKET_PRICE_LAST_UPDATED_TS = 264
R_MINT_DECIMALS = 272
R_CUMULATIVE_BORROW_RATE_BSF = 296
R_ACCUMULATED_PROTOCOL_FEES_SF = 344
R_ACCUMULATED_REFERRER_FEES_SF = 360
R_PENDING_REFERRER_FEES_SF = 376
R_TOKEN_PROGRAM = 408
R_COLLATERAL_MINT = 2560
R_COLLATERAL_MINT_TOTAL_SUPPLY = 2592
R_STATUS = 4856
R_ASSET_TIER = 4857
R_HOST_FIXED_INTEREST_RATE_BPS = 4858
R_PROTOCOL_TAKE_RATE_PCT = 4870
R_PROTOCOL_LIQUIDATION_FEE_PCT = 4871
R_LOAN_TO_VALUE_PCT = 4872
R_LIQUIDATION_THRESHOLD_PCT = 4873
R_BORROW_FEE_SF = 4896
R_FLASH_LOAN_FEE_SF = 4904
R_BORROW_RATE_CURVE = 4920
R_BORROW_FACTOR_PCT = 5008
R_DEPOSIT_LIMIT = 5016
R_BORROW_LIMIT = 5024
R_TOKEN_NAME = 5032
CURVE_POINTS = 11

# Obligation
O_TAG = 8
O_LAST_UPDATE_SLOT = 16
O_LENDING_MARKET = 32
O_OWNER = 64
O_DEPOSITS = 96
O_LOWEST_DEPOSIT_LTV = 1184
O_DEPOSITED_VALUE_SF = 1192
O_BORROWS = 1208
MAX_DEPOSITS = 8
MAX_BORROWS = 5
DEPOSIT_LEN = 136
BORROW_LEN = 200


class ReserveStatus(IntEnum):
    ACTIVE = 0
    OBSOLETE = 1
    HIDDEN = 2


@dataclass(frozen=True)
class CurvePoint:
    utilization_rate_bps: int
    borrow_rate_bps: int


@dataclass(frozen=True)
class ReserveLiquidity:
    mint: Pubkey
    supply_vault: Pubkey
    fee_vault: Pubkey
    available_amount: int
    borrowed_amount_sf: Fraction
    market_price_sf: int
    market_price_last_updated_ts: int
    mint_decimals: int
    accumulated_protocol_fees_sf: Fraction = field(default_factory=Fraction.zero)
    accumulated_referrer_fees_sf: Fraction = field(default_factory=Fraction.zero)
    pending_referrer_fees_sf: Fraction = field(default_factory=Fraction.zero)
    token_program: Pubkey = field(default_factory=Pubkey.default)


@dataclass(frozen=True)
class ReserveConfig:
    status: int
    asset_tier: int
    host_fixed_interest_rate_bps: int
    protocol_take_rate_pct: int
    protocol_liquidation_fee_pct: int
    loan_to_value_pct: int
    liquidation_threshold_pct: int
    borrow_fee_sf: int
    flash_loan_fee_sf: int
    borrow_rate_curve: tuple[CurvePoint, ...]
    borrow_factor_pct: int
    deposit_limit: int
    borrow_limit: int
    token_name: str


@dataclass(frozen=True)
class KaminoReserve:
    version: int
    last_update_slot: int
    lending_market: Pubkey
    liquidity: ReserveLiquidity
    collateral_mint: Pubkey
    collateral_mint_total_supply: int
    config: ReserveConfig

    def total_supply(self) -> Fraction:
        liquidity = self.liquidity
        gross = Fraction.from_int(liquidity.available_amount) + liquidity.borrowed_amount_sf
        fees = (
            liquidity.accumulated_protocol_fees_sf
            + liquidity.accumulated_referrer_fees_sf
            + liquidity.pending_referrer_fees_sf
        )
        return gross.saturating_sub(fees)

    def total_borrows(self) -> Fraction:
        return self.liquidity.borrowed_amount_sf

    def utilization(self) -> Fraction:
        borrowed = self.liquidity.borrowed_amount_sf
        if borrowed.is_zero():
            return Fraction.zero()
        supply = self.total_supply()
        if supply.is_zero():
            return Fraction.one()
        return (borrowed / supply).clamp(Fraction.zero(), Fraction.one())

    def borrow_curve(self) -> PiecewiseLinearCurve[Fraction]:
        return PiecewiseLinearCurve(
            [
                (
                    Fraction.from_bps(point.utilization_rate_bps),
                    Fraction.from_bps(point.borrow_rate_bps),
                )
                for point in self.config.borrow_rate_curve
            ]
        )

    def borrow_rate(self) -> Fraction:
        return self.borrow_curve().rate_at(self.utilization())

    def supply_rate(self) -> Fraction:
        keep = Fraction.from_percent(max(0, 100 - self.config.protocol_take_rate_pct))
        return self.borrow_rate() * self.utilization() * keep

    def borrow_apy(self) -> Fraction:
        """Compounded borrow rate plus the host's fixed interest."""
        host_fixed = Fraction.from_bps(self.config.host_fixed_interest_rate_bps)
        return apr_to_apy(slot_adjusted(self.borrow_rate())) + host_fixed

    def supply_apy(self) -> Fraction:
        return apr_to_apy(slot_adjusted(self.supply_rate()))

    def collateral_to_liquidity(self, collateral_amount: int) -> int:
        supply = self.total_supply()
        mint_supply = self.collateral_mint_total_supply
        if mint_supply == 0 or supply.is_zero():
            return collateral_amount
        return collateral_amount * supply.bits // (mint_supply * Fraction.ONE_BITS)


@dataclass(frozen=True)
class ObligationCollateral:
    deposit_reserve: Pubkey
    deposited_amount: int
    market_value_sf: int = 0


@dataclass(frozen=True)
class ObligationLiquidity:
    borrow_reserve: Pubkey
    borrowed_amount_sf: Fraction
    market_value_sf: int = 0

    def borrowed_amount(self) -> int:
        return self.borrowed_amount_sf.to_floor()


@dataclass(frozen=True)
class KaminoObligation:
    tag: int
    last_update_slot: int
    lending_market: Pubkey
    owner: Pubkey
    deposits: tuple[ObligationCollateral, ...] = ()
    borrows: tuple[ObligationLiquidity, ...] = ()
    lowest_reserve_deposit_liquidation_ltv: int = 0
    deposited_value_sf: int = 0

    def active_deposits(self) -> list[ObligationCollateral]:
        return [
            deposit
            for deposit in self.deposits
            if deposit.deposit_reserve != Pubkey.default()
        ]

    def active_borrows(self) -> list[ObligationLiquidity]:
        return [
            borrow for borrow in self.borrows if borrow.borrow_reserve != Pubkey.default()
        ]


def decode_reserve(data: bytes) -> KaminoReserve:
    r = AccountReader(
        data,
        name="Kamino reserve",
        min_size=RESERVE_LEN,
        discriminator=RESERVE_DISCRIMINATOR,
    )
    curve = tuple(
        CurvePoint(
            utilization_rate_bps=r.u32(R_BORROW_RATE_CURVE + index * 8),
            borrow_rate_bps=r.u32(R_BORROW_RATE_CURVE + index * 8 + 4),
        )
        for index in range(CURVE_POINTS)
    )
    for previous, point in zip(curve, curve[1:]):
        if point.utilization_rate_bps < previous.utilization_rate_bps:
            raise DeserializationError(f"{r.name}: borrow curve is not monotonic")

    return KaminoReserve(
        version=r.u64(R_VERSION),
        last_update_slot=r.u64(R_LAST_UPDATE_SLOT),
        lending_market=r.pubkey(R_LENDING_MARKET),
        liquidity=ReserveLiquidity(
            mint=r.pubkey(R_LIQUIDITY_MINT),
            supply_vault=r.pubkey(R_SUPPLY_VAULT),
            fee_vault=r.pubkey(R_FEE_VAULT),
            available_amount=r.u64(R_AVAILABLE_AMOUNT),
            borrowed_amount_sf=Fraction(r.u128(R_BORROWED_AMOUNT_SF)),
            market_price_sf=r.u128(R_MARKET_PRICE_SF),
            market_price_last_updated_ts=r.u64(R_MARKET_PRICE_LAST_UPDATED_TS),
            mint_decimals=r.u64(R_MINT_DECIMALS),
            accumulated_protocol_fees_sf=Fraction(r.u128(R_ACCUMULATED_PROTOCOL_FEES_SF)),
            accumulated_referrer_fees_sf=Fraction(r.u128(R_ACCUMULATED_REFERRER_FEES_SF)),
            pending_referrer_fees_sf=Fraction(r.u128(R_PENDING_REFERRER_FEES_SF)),
            token_program=r.pubkey(R_TOKEN_PROGRAM),
        ),
        collateral_mint=r.pubkey(R_COLLATERAL_MINT),
        collateral_mint_total_supply=r.u64(R_COLLATERAL_MINT_TOTAL_SUPPLY),
        config=ReserveConfig(
            status=r.u8(R_STATUS),
            asset_tier=r.u8(R_ASSET_TIER),
            host_fixed_interest_rate_bps=r.u16(R_HOST_FIXED_INTEREST_RATE_BPS),
            protocol_take_rate_pct=r.u8(R_PROTOCOL_TAKE_RATE_PCT),
            protocol_liquidation_fee_pct=r.u8(R_PROTOCOL_LIQUIDATION_FEE_PCT),
            loan_to_value_pct=r.u8(R_LOAN_TO_VALUE_PCT),
            liquidation_threshold_pct=r.u8(R_LIQUIDATION_THRESHOLD_PCT),
            borrow_fee_sf=r.u64(R_BORROW_FEE_SF),
            flash_loan_fee_sf=r.u64(R_FLASH_LOAN_FEE_SF),
            borrow_rate_curve=curve,
            borrow_factor_pct=r.u64(R_BORROW_FACTOR_PCT),
            deposit_limit=r.u64(R_DEPOSIT_LIMIT),
            borrow_limit=r.u64(R_BORROW_LIMIT),
            token_name=r.name_field(R_TOKEN_NAME),
        ),
    )


def encode_reserve(reserve: KaminoReserve) -> bytes:
    if len(reserve.config.borrow_rate_curve) > CURVE_POINTS:
        raise ValueError(f"at most {CURVE_POINTS} curve points")
    w = AccountWriter(RESERVE_LEN, RESERVE_DISCRIMINATOR)
    liquidity, config = reserve.liquidity, reserve.config
    w.u64(R_VERSION, reserve.version)
    w.u64(R_LAST_UPDATE_SLOT, reserve.last_update_slot)
    w.pubkey(R_LENDING_MARKET, reserve.lending_market)
    w.pubkey(R_LIQUIDITY_MINT, liquidity.mint)
    w.pubkey(R_SUPPLY_VAULT, liquidity.supply_vault)
    w.pubkey(R_FEE_VAULT, liquidity.fee_vault)
    w.u64(R_AVAILABLE_AMOUNT, liquidity.available_amount)
    w.u128(R_BORROWED_AMOUNT_SF, liquidity.borrowed_amount_sf.bits)
    w.u128(R_MARKET_PRICE_SF, liquidity.market_price_sf)
    w.u64(R_MARKET_PRICE_LAST_UPDATED_TS, liquidity.market_price_last_updated_ts)
    w.u64(R_MINT_DECIMALS, liquidity.mint_decimals)
    w.u128(R_ACCUMULATED_PROTOCOL_FEES_SF, liquidity.accumulated_protocol_fees_sf.bits)
    w.u128(R_ACCUMULATED_REFERRER_FEES_SF, liquidity.accumulated_referrer_fees_sf.bits)
    w.u128(R_PENDING_REFERRER_FEES_SF, liquidity.pending_referrer_fees_sf.bits)
    w.pubkey(R_TOKEN_PROGRAM, liquidity.token_program)
    w.pubkey(R_COLLATERAL_MINT, reserve.collateral_mint)
    w.u64(R_COLLATERAL_MINT_TOTAL_SUPPLY, reserve.collateral_mint_total_supply)
    w.u8(R_STATUS, config.status)
    w.u8(R_ASSET_TIER, config.asset_tier)
    w.u16(R_HOST_FIXED_INTEREST_RATE_BPS, config.host_fixed_interest_rate_bps)
    w.u8(R_PROTOCOL_TAKE_RATE_PCT, config.protocol_take_rate_pct)
    w.u8(R_PROTOCOL_LIQUIDATION_FEE_PCT, config.protocol_liquidation_fee_pct)
    w.u8(R_LOAN_TO_VALUE_PCT, config.loan_to_value_pct)
    w.u8(R_LIQUIDATION_THRESHOLD_PCT, config.liquidation_threshold_pct)
    w.u64(R_BORROW_FEE_SF, config.borrow_fee_sf)
    w.u64(R_FLASH_LOAN_FEE_SF, config.flash_loan_fee_sf)
    for index, point in enumerate(config.borrow_rate_curve):
        w.u32(R_BORROW_RATE_CURVE + index * 8, point.utilization_rate_bps)
        w.u32(R_BORROW_RATE_CURVE + index * 8 + 4, point.borrow_rate_bps)
    w.u64(R_BORROW_FACTOR_PCT, config.borrow_factor_pct)
    w.u64(R_DEPOSIT_LIMIT, config.deposit_limit)
    w.u64(R_BORROW_LIMIT, config.borrow_limit)
    w.name_field(R_TOKEN_NAME, config.token_name)
    return w.to_bytes()


def decode_obligation(data: bytes) -> KaminoObligation:
    r = AccountReader(
        data,
        name="Kamino obligation",
        min_size=OBLIGATION_LEN,
        discriminator=OBLIGATION_DISCRIMINATOR,
    )
    deposits = tuple(
        ObligationCollateral(
            deposit_reserve=r.pubkey(base),
            deposited_amount=r.u64(base + 32),
            market_value_sf=r.u128(base + 40),
        )
        for base in (O_DEPOSITS + i * DEPOSIT_LEN for i in range(MAX_DEPOSITS))
    )
    borrows = tuple(
        ObligationLiquidity(
            borrow_reserve=r.pubkey(base),
            borrowed_amount_sf=Fraction(r.u128(base + 88)),
            market_value_sf=r.u128(base + 104),
        )
        for base in (O_BORROWS + i * BORROW_LEN for i in range(MAX_BORROWS))
    )
    return KaminoObligation(
        tag=r.u64(O_TAG),
        last_update_slot=r.u64(O_LAST_UPDATE_SLOT),
        lending_market=r.pubkey(O_LENDING_MARKET),
        owner=r.pubkey(O_OWNER),
        deposits=deposits,
        borrows=borrows,
        lowest_reserve_deposit_liquidation_ltv=r.u64(O_LOWEST_DEPOSIT_LTV),
        deposited_value_sf=r.u128(O_DEPOSITED_VALUE_SF),
    )


def encode_obligation(obligation: KaminoObligation) -> bytes:
    if len(obligation.deposits) > MAX_DEPOSITS or len(obligation.borrows) > MAX_BORROWS:
        raise ValueError("too many obligation positions")
    w = AccountWriter(OBLIGATION_LEN, OBLIGATION_DISCRIMINATOR)
    w.u64(O_TAG, obligation.tag)
    w.u64(O_LAST_UPDATE_SLOT, obligation.last_update_slot)
    w.pubkey(O_LENDING_MARKET, obligation.lending_market)
    w.pubkey(O_OWNER, obligation.owner)
    for index, deposit in enumerate(obligation.deposits):
        base = O_DEPOSITS + index * DEPOSIT_LEN
        w.pubkey(base, deposit.deposit_reserve)
        w.u64(base + 32, deposit.deposited_amount)
        w.u128(base + 40, deposit.market_value_sf)
    w.u64(O_LOWEST_DEPOSIT_LTV, obligation.lowest_reserve_deposit_liquidation_ltv)
    w.u128(O_DEPOSITED_VALUE_SF, obligation.deposited_value_sf)
    for index, borrow in enumerate(obligation.borrows):
        base = O_BORROWS + index * BORROW_LEN
        w.pubkey(base, borrow.borrow_reserve)
        w.u128(base + 88, borrow.borrowed_amount_sf.bits)
        w.u128(base + 104, borrow.market_value_sf)
    return w.to_bytes()
