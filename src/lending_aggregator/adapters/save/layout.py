"""Save (Solend) account layouts.

Save accounts carry no Anchor discriminator; the leading version byte and the
exact account length identify them. Decimals are u128 WAD values (10^18).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from solders.pubkey import Pubkey

from ...codec.curve import PiecewiseLinearCurve
from ...codec.fixed import (
    WAD,
    Rate,
    WadDecimal,
    apr_to_apy,
    slot_adjusted,
)
from ...codec.layout import AccountReader, AccountWriter
from ...errors import DeserializationError

PROGRAM_VERSION = 1
RESERVE_LEN = 619
OBLIGATION_LEN = 1300
MAX_OBLIGATION_RESERVES = 10

# Reserve offsets
R_VERSION = 0
R_LAST_UPDATE_SLOT = 1
R_LAST_UPDATE_STALE = 9
R_LENDING_MARKET = 10
R_LIQUIDITY_MINT = 42
R_LIQUIDITY_MINT_DECIMALS = 74
R_LIQUIDITY_SUPPLY = 75
R_PYTH_ORACLE = 107
R_SWITCHBOARD_ORACLE = 139
R_AVAILABLE_AMOUNT = 171
R_BORROWED_AMOUNT_WADS = 179
R_CUMULATIVE_BORROW_RATE_WADS = 195
R_MARKET_PRICE = 211
R_COLLATERAL_MINT = 227
R_COLLATERAL_MINT_TOTAL_SUPPLY = 259
R_COLLATERAL_SUPPLY = 267
R_OPTIMAL_UTILIZATION_RATE = 299
R_LOAN_TO_VALUE_RATIO = 300
R_LIQUIDATION_BONUS = 301
R_LIQUIDATION_THRESHOLD = 302
R_MIN_BORROW_RATE = 303
R_OPTIMAL_BORROW_RATE = 304
R_MAX_BORROW_RATE = 305
R_BORROW_FEE_WAD = 306
R_FLASH_LOAN_FEE_WAD = 314
R_HOST_FEE_PERCENTAGE = 322
R_DEPOSIT_LIMIT = 323
R_BORROW_LIMIT = 331
R_FEE_RECEIVER = 339
R_PROTOCOL_LIQUIDATION_FEE = 371
R_PROTOCOL_TAKE_RATE = 372
R_ACCUMULATED_PROTOCOL_FEES_WADS = 373
R_RATE_LIMITER = 389
R_ADDED_BORROW_WEIGHT_BPS = 445
R_SMOOTHED_MARKET_PRICE = 453
R_RESERVE_TYPE = 469
R_MAX_UTILIZATION_RATE = 470
R_SUPER_MAX_BORROW_RATE = 471
R_MAX_LIQUIDATION_BONUS = 479
R_MAX_LIQUIDATION_THRESHOLD = 480
R_SCALED_PRICE_OFFSET_BPS = 481
R_EXTRA_ORACLE = 489
R_ATTRIBUTED_BORROW_VALUE = 538
R_ATTRIBUTED_BORROW_LIMIT_OPEN = 554
R_ATTRIBUTED_BORROW_LIMIT_CLOSE = 562

# Obligation offsets
O_VERSION = 0
O_LAST_UPDATE_SLOT = 1
O_LAST_UPDATE_STALE = 9
O_LENDING_MARKET = 10
O_OWNER = 42
O_DEPOSITED_VALUE = 74
O_BORROWED_VALUE = 90
O_ALLOWED_BORROW_VALUE = 106
O_UNHEALTHY_BORROW_VALUE = 122
O_BORROWED_VALUE_UPPER_BOUND = 138
O_BORROWING_ISOLATED_ASSET = 154
O_SUPER_UNHEALTHY_BORROW_VALUE = 155
O_UNWEIGHTED_BORROWED_VALUE = 171
O_CLOSEABLE = 187
O_DEPOSITS_LEN = 202
O_BORROWS_LEN = 203
O_DATA = 204
COLLATERAL_LEN = 88  # reserve 32, amount 8, market value 16, attributed 16, pad 16
LIQUIDITY_LEN = 112  # reserve 32, cumulative rate 16, borrowed 16, value 16, pad 32


@dataclass(frozen=True)
class RateLimiter:
    max_outflow: int = 0
    window_duration: int = 0
    previous_quantity: WadDecimal = field(default_factory=WadDecimal.zero)
    window_start: int = 0
    current_quantity: WadDecimal = field(default_factory=WadDecimal.zero)


@dataclass(frozen=True)
class ReserveLiquidity:
    mint: Pubkey
    mint_decimals: int
    supply: Pubkey
    pyth_oracle: Pubkey
    switchboard_oracle: Pubkey
    available_amount: int
    borrowed_amount_wads: WadDecimal
    cumulative_borrow_rate_wads: WadDecimal
    market_price: WadDecimal
    accumulated_protocol_fees_wads: WadDecimal
    smoothed_market_price: WadDecimal


@dataclass(frozen=True)
class ReserveCollateral:
    mint: Pubkey
    mint_total_supply: int
    supply: Pubkey


@dataclass(frozen=True)
class ReserveConfig:
    optimal_utilization_rate: int
    max_utilization_rate: int
    loan_to_value_ratio: int
    liquidation_bonus: int
    max_liquidation_bonus: int
    liquidation_threshold: int
    max_liquidation_threshold: int
    min_borrow_rate: int
    optimal_borrow_rate: int
    max_borrow_rate: int
    super_max_borrow_rate: int
    borrow_fee_wad: int
    flash_loan_fee_wad: int
    host_fee_percentage: int
    deposit_limit: int
    borrow_limit: int
    fee_receiver: Pubkey
    protocol_liquidation_fee: int
    protocol_take_rate: int
    added_borrow_weight_bps: int
    reserve_type: int
    scaled_price_offset_bps: int
    extra_oracle: Pubkey


@dataclass(frozen=True)
class SaveReserve:
    version: int
    last_update_slot: int
    last_update_stale: bool
    lending_market: Pubkey
    liquidity: ReserveLiquidity
    collateral: ReserveCollateral
    config: ReserveConfig
    rate_limiter: RateLimiter
    attributed_borrow_value: WadDecimal
    attributed_borrow_limit_open: int
    attributed_borrow_limit_close: int

    def total_supply(self) -> WadDecimal:
        """Available plus borrowed liquidity, net of accrued protocol fees."""
        gross = (
            WadDecimal.from_int(self.liquidity.available_amount)
            + self.liquidity.borrowed_amount_wads
        )
        return gross.saturating_sub(self.liquidity.accumulated_protocol_fees_wads)

    def total_borrows(self) -> WadDecimal:
        return self.liquidity.borrowed_amount_wads

    def utilization(self) -> Rate:
        borrowed = self.liquidity.borrowed_amount_wads
        if borrowed.is_zero():
            return Rate.zero()
        supply = self.total_supply()
        if supply.is_zero():
            return Rate.one()
        return Rate.from_ratio(borrowed.bits, supply.bits).clamp(Rate.zero(), Rate.one())

    def borrow_curve(self) -> PiecewiseLinearCurve[Rate]:
        config = self.config
        optimal = config.optimal_utilization_rate
        max_utilization = max(config.max_utilization_rate, optimal)
        return PiecewiseLinearCurve(
            [
                (Rate.zero(), Rate.from_percent(config.min_borrow_rate)),
                (Rate.from_percent(optimal), Rate.from_percent(config.optimal_borrow_rate)),
                (
                    Rate.from_percent(max_utilization),
                    Rate.from_percent(config.max_borrow_rate),
                ),
                (Rate.one(), Rate.from_percent(config.super_max_borrow_rate)),
            ]
        )

    def borrow_rate(self) -> Rate:
        return self.borrow_curve().rate_at(self.utilization())

    def supply_rate(self) -> Rate:
        keep = Rate.from_percent(max(0, 100 - self.config.protocol_take_rate))
        return self.borrow_rate() * self.utilization() * keep

    def borrow_apy(self) -> Rate:
        return apr_to_apy(slot_adjusted(self.borrow_rate()))

    def supply_apy(self) -> Rate:
        return apr_to_apy(slot_adjusted(self.supply_rate()))

    def collateral_to_liquidity(self, collateral_amount: int) -> int:
        """Convert cToken units into underlying liquidity units (floored)."""
        total_liquidity = self.total_supply()
        mint_supply = self.collateral.mint_total_supply
        if mint_supply == 0 or total_liquidity.is_zero():
            return collateral_amount
        return collateral_amount * total_liquidity.bits // (mint_supply * WAD)


@dataclass(frozen=True)
class ObligationCollateral:
    deposit_reserve: Pubkey
    deposited_amount: int
    market_value: WadDecimal = field(default_factory=WadDecimal.zero)
    attributed_borrow_value: WadDecimal = field(default_factory=WadDecimal.zero)


@dataclass(frozen=True)
class ObligationLiquidity:
    borrow_reserve: Pubkey
    cumulative_borrow_rate_wads: WadDecimal
    borrowed_amount_wads: WadDecimal
    market_value: WadDecimal = field(default_factory=WadDecimal.zero)

    def borrowed_amount(self) -> int:
        """Borrowed liquidity in native units, rounded half up."""
        return self.borrowed_amount_wads.round()


@dataclass(frozen=True)
class SaveObligation:
    version: int
    last_update_slot: int
    last_update_stale: bool
    lending_market: Pubkey
    owner: Pubkey
    deposited_value: WadDecimal
    borrowed_value: WadDecimal
    allowed_borrow_value: WadDecimal
    unhealthy_borrow_value: WadDecimal
    borrowed_value_upper_bound: WadDecimal
    borrowing_isolated_asset: bool
    super_unhealthy_borrow_value: WadDecimal
    unweighted_borrowed_value: WadDecimal
    closeable: bool
    deposits: tuple[ObligationCollateral, ...] = ()
    borrows: tuple[ObligationLiquidity, ...] = ()

    def is_empty(self) -> bool:
        return not self.deposits and not self.borrows


def _check_version(version: int, what: str) -> None:
    if version != PROGRAM_VERSION:
        raise DeserializationError(f"{what}: unsupported version {version}")


def decode_reserve(data: bytes) -> SaveReserve:
    r = AccountReader(data, name="Save reserve", min_size=RESERVE_LEN)
    _check_version(r.u8(R_VERSION), r.name)
    wad = lambda offset: WadDecimal(r.u128(offset))  # noqa: E731
    return SaveReserve(
        version=r.u8(R_VERSION),
        last_update_slot=r.u64(R_LAST_UPDATE_SLOT),
        last_update_stale=r.flag(R_LAST_UPDATE_STALE),
        lending_market=r.pubkey(R_LENDING_MARKET),
        liquidity=ReserveLiquidity(
            mint=r.pubkey(R_LIQUIDITY_MINT),
            mint_decimals=r.u8(R_LIQUIDITY_MINT_DECIMALS),
            supply=r.pubkey(R_LIQUIDITY_SUPPLY),
            pyth_oracle=r.pubkey(R_PYTH_ORACLE),
            switchboard_oracle=r.pubkey(R_SWITCHBOARD_ORACLE),
            available_amount=r.u64(R_AVAILABLE_AMOUNT),
            borrowed_amount_wads=wad(R_BORROWED_AMOUNT_WADS),
            cumulative_borrow_rate_wads=wad(R_CUMULATIVE_BORROW_RATE_WADS),
            market_price=wad(R_MARKET_PRICE),
            accumulated_protocol_fees_wads=wad(R_ACCUMULATED_PROTOCOL_FEES_WADS),
            smoothed_market_price=wad(R_SMOOTHED_MARKET_PRICE),
        ),
        collateral=ReserveCollateral(
            mint=r.pubkey(R_COLLATERAL_MINT),
            mint_total_supply=r.u64(R_COLLATERAL_MINT_TOTAL_SUPPLY),
            supply=r.pubkey(R_COLLATERAL_SUPPLY),
        ),
        config=ReserveConfig(
            optimal_utilization_rate=r.u8(R_OPTIMAL_UTILIZATION_RATE),
            max_utilization_rate=r.u8(R_MAX_UTILIZATION_RATE),
            loan_to_value_ratio=r.u8(R_LOAN_TO_VALUE_RATIO),
            liquidation_bonus=r.u8(R_LIQUIDATION_BONUS),
            max_liquidation_bonus=r.u8(R_MAX_LIQUIDATION_BONUS),
            liquidation_threshold=r.u8(R_LIQUIDATION_THRESHOLD),
            max_liquidation_threshold=r.u8(R_MAX_LIQUIDATION_THRESHOLD),
            min_borrow_rate=r.u8(R_MIN_BORROW_RATE),
            optimal_borrow_rate=r.u8(R_OPTIMAL_BORROW_RATE),
            max_borrow_rate=r.u8(R_MAX_BORROW_RATE),
            super_max_borrow_rate=r.u64(R_SUPER_MAX_BORROW_RATE),
            borrow_fee_wad=r.u64(R_BORROW_FEE_WAD),
            flash_loan_fee_wad=r.u64(R_FLASH_LOAN_FEE_WAD),
            host_fee_percentage=r.u8(R_HOST_FEE_PERCENTAGE),
            deposit_limit=r.u64(R_DEPOSIT_LIMIT),
            borrow_limit=r.u64(R_BORROW_LIMIT),
            fee_receiver=r.pubkey(R_FEE_RECEIVER),
            protocol_liquidation_fee=r.u8(R_PROTOCOL_LIQUIDATION_FEE),
            protocol_take_rate=r.u8(R_PROTOCOL_TAKE_RATE),
            added_borrow_weight_bps=r.u64(R_ADDED_BORROW_WEIGHT_BPS),
            reserve_type=r.u8(R_RESERVE_TYPE),
            scaled_price_offset_bps=r.i64(R_SCALED_PRICE_OFFSET_BPS),
            extra_oracle=r.pubkey(R_EXTRA_ORACLE),
        ),
        rate_limiter=RateLimiter(
            max_outflow=r.u64(R_RATE_LIMITER),
            window_duration=r.u64(R_RATE_LIMITER + 8),
            previous_quantity=wad(R_RATE_LIMITER + 16),
            window_start=r.u64(R_RATE_LIMITER + 32),
            current_quantity=wad(R_RATE_LIMITER + 40),
        ),
        attributed_borrow_value=wad(R_ATTRIBUTED_BORROW_VALUE),
        attributed_borrow_limit_open=r.u64(R_ATTRIBUTED_BORROW_LIMIT_OPEN),
        attributed_borrow_limit_close=r.u64(R_ATTRIBUTED_BORROW_LIMIT_CLOSE),
    )


def encode_reserve(reserve: SaveReserve) -> bytes:
    w = AccountWriter(RESERVE_LEN)
    liquidity, collateral, config = reserve.liquidity, reserve.collateral, reserve.config
    limiter = reserve.rate_limiter
    w.u8(R_VERSION, reserve.version)
    w.u64(R_LAST_UPDATE_SLOT, reserve.last_update_slot)
    w.flag(R_LAST_UPDATE_STALE, reserve.last_update_stale)
    w.pubkey(R_LENDING_MARKET, reserve.lending_market)
    w.pubkey(R_LIQUIDITY_MINT, liquidity.mint)
    w.u8(R_LIQUIDITY_MINT_DECIMALS, liquidity.mint_decimals)
    w.pubkey(R_LIQUIDITY_SUPPLY, liquidity.supply)
    w.pubkey(R_PYTH_ORACLE, liquidity.pyth_oracle)
    w.pubkey(R_SWITCHBOARD_ORACLE, liquidity.switchboard_oracle)
    w.u64(R_AVAILABLE_AMOUNT, liquidity.available_amount)
    w.u128(R_BORROWED_AMOUNT_WADS, liquidity.borrowed_amount_wads.bits)
    w.u128(R_CUMULATIVE_BORROW_RATE_WADS, liquidity.cumulative_borrow_rate_wads.bits)
    w.u128(R_MARKET_PRICE, liquidity.market_price.bits)
    w.u128(R_ACCUMULATED_PROTOCOL_FEES_WADS, liquidity.accumulated_protocol_fees_wads.bits)
    w.u128(R_SMOOTHED_MARKET_PRICE, liquidity.smoothed_market_price.bits)
    w.pubkey(R_COLLATERAL_MINT, collateral.mint)
    w.u64(R_COLLATERAL_MINT_TOTAL_SUPPLY, collateral.mint_total_supply)
    w.pubkey(R_COLLATERAL_SUPPLY, collateral.supply)
    w.u8(R_OPTIMAL_UTILIZATION_RATE, config.optimal_utilization_rate)
    w.u8(R_MAX_UTILIZATION_RATE, config.max_utilization_rate)
    w.u8(R_LOAN_TO_VALUE_RATIO, config.loan_to_value_ratio)
    w.u8(R_LIQUIDATION_BONUS, config.liquidation_bonus)
    w.u8(R_MAX_LIQUIDATION_BONUS, config.max_liquidation_bonus)
    w.u8(R_LIQUIDATION_THRESHOLD, config.liquidation_threshold)
    w.u8(R_MAX_LIQUIDATION_THRESHOLD, config.max_liquidation_threshold)
    w.u8(R_MIN_BORROW_RATE, config.min_borrow_rate)
    w.u8(R_OPTIMAL_BORROW_RATE, config.optimal_borrow_rate)
    w.u8(R_MAX_BORROW_RATE, config.max_borrow_rate)
    w.u64(R_SUPER_MAX_BORROW_RATE, config.super_max_borrow_rate)
    w.u64(R_BORROW_FEE_WAD, config.borrow_fee_wad)
    w.u64(R_FLASH_LOAN_FEE_WAD, config.flash_loan_fee_wad)
    w.u8(R_HOST_FEE_PERCENTAGE, config.host_fee_percentage)
    w.u64(R_DEPOSIT_LIMIT, config.deposit_limit)
    w.u64(R_BORROW_LIMIT, config.borrow_limit)
    w.pubkey(R_FEE_RECEIVER, config.fee_receiver)
    w.u8(R_PROTOCOL_LIQUIDATION_FEE, config.protocol_liquidation_fee)
    w.u8(R_PROTOCOL_TAKE_RATE, config.protocol_take_rate)
    w.u64(R_ADDED_BORROW_WEIGHT_BPS, config.added_borrow_weight_bps)
    w.u8(R_RESERVE_TYPE, config.reserve_type)
    w.i64(R_SCALED_PRICE_OFFSET_BPS, config.scaled_price_offset_bps)
    w.pubkey(R_EXTRA_ORACLE, config.extra_oracle)
    w.u64(R_RATE_LIMITER, limiter.max_outflow)
    w.u64(R_RATE_LIMITER + 8, limiter.window_duration)
    w.u128(R_RATE_LIMITER + 16, limiter.previous_quantity.bits)
    w.u64(R_RATE_LIMITER + 32, limiter.window_start)
    w.u128(R_RATE_LIMITER + 40, limiter.current_quantity.bits)
    w.u128(R_ATTRIBUTED_BORROW_VALUE, reserve.attributed_borrow_value.bits)
    w.u64(R_ATTRIBUTED_BORROW_LIMIT_OPEN, reserve.attributed_borrow_limit_open)
    w.u64(R_ATTRIBUTED_BORROW_LIMIT_CLOSE, reserve.attributed_borrow_limit_close)
    return w.to_bytes()


def decode_obligation(data: bytes) -> SaveObligation:
    r = AccountReader(data, name="Save obligation", min_size=OBLIGATION_LEN)
    _check_version(r.u8(O_VERSION), r.name)
    deposits_len = r.u8(O_DEPOSITS_LEN)
    borrows_len = r.u8(O_BORROWS_LEN)
    if deposits_len + borrows_len > MAX_OBLIGATION_RESERVES:
        raise DeserializationError(
            f"{r.name}: {deposits_len} deposits + {borrows_len} borrows exceeds "
            f"{MAX_OBLIGATION_RESERVES}"
        )
    wad = lambda offset: WadDecimal(r.u128(offset))  # noqa: E731

    deposits = []
    offset = O_DATA
    for _ in range(deposits_len):
        deposits.append(
            ObligationCollateral(
                deposit_reserve=r.pubkey(offset),
                deposited_amount=r.u64(offset + 32),
                market_value=wad(offset + 40),
                attributed_borrow_value=wad(offset + 56),
            )
        )
        offset += COLLATERAL_LEN

    borrows = []
    for _ in range(borrows_len):
        borrows.append(
            ObligationLiquidity(
                borrow_reserve=r.pubkey(offset),
                cumulative_borrow_rate_wads=wad(offset + 32),
                borrowed_amount_wads=wad(offset + 48),
                market_value=wad(offset + 64),
            )
        )
        offset += LIQUIDITY_LEN

    return SaveObligation(
        version=r.u8(O_VERSION),
        last_update_slot=r.u64(O_LAST_UPDATE_SLOT),
        last_update_stale=r.flag(O_LAST_UPDATE_STALE),
        lending_market=r.pubkey(O_LENDING_MARKET),
        owner=r.pubkey(O_OWNER),
        deposited_value=wad(O_DEPOSITED_VALUE),
        borrowed_value=wad(O_BORROWED_VALUE),
        allowed_borrow_value=wad(O_ALLOWED_BORROW_VALUE),
        unhealthy_borrow_value=wad(O_UNHEALTHY_BORROW_VALUE),
        borrowed_value_upper_bound=wad(O_BORROWED_VALUE_UPPER_BOUND),
        borrowing_isolated_asset=r.flag(O_BORROWING_ISOLATED_ASSET),
        super_unhealthy_borrow_value=wad(O_SUPER_UNHEALTHY_BORROW_VALUE),
        unweighted_borrowed_value=wad(O_UNWEIGHTED_BORROWED_VALUE),
        closeable=r.flag(O_CLOSEABLE),
        deposits=tuple(deposits),
        borrows=tuple(borrows),
    )


def encode_obligation(obligation: SaveObligation) -> bytes:
    if len(obligation.deposits) + len(obligation.borrows) > MAX_OBLIGATION_RESERVES:
        raise ValueError("too many obligation positions")
    w = AccountWriter(OBLIGATION_LEN)
    w.u8(O_VERSION, obligation.version)
    w.u64(O_LAST_UPDATE_SLOT, obligation.last_update_slot)
    w.flag(O_LAST_UPDATE_STALE, obligation.last_update_stale)
    w.pubkey(O_LENDING_MARKET, obligation.lending_market)
    w.pubkey(O_OWNER, obligation.owner)
    w.u128(O_DEPOSITED_VALUE, obligation.deposited_value.bits)
    w.u128(O_BORROWED_VALUE, obligation.borrowed_value.bits)
    w.u128(O_ALLOWED_BORROW_VALUE, obligation.allowed_borrow_value.bits)
    w.u128(O_UNHEALTHY_BORROW_VALUE, obligation.unhealthy_borrow_value.bits)
    w.u128(O_BORROWED_VALUE_UPPER_BOUND, obligation.borrowed_value_upper_bound.bits)
    w.flag(O_BORROWING_ISOLATED_ASSET, obligation.borrowing_isolated_asset)
    w.u128(O_SUPER_UNHEALTHY_BORROW_VALUE, obligation.super_unhealthy_borrow_value.bits)
    w.u128(O_UNWEIGHTED_BORROWED_VALUE, obligation.unweighted_borrowed_value.bits)
    w.flag(O_CLOSEABLE, obligation.closeable)
    w.u8(O_DEPOSITS_LEN, len(obligation.deposits))
    w.u8(O_BORROWS_LEN, len(obligation.borrows))

    offset = O_DATA
    for deposit in obligation.deposits:
        w.pubkey(offset, deposit.deposit_reserve)
        w.u64(offset + 32, deposit.deposited_amount)
        w.u128(offset + 40, deposit.market_value.bits)
        w.u128(offset + 56, deposit.attributed_borrow_value.bits)
        offset += COLLATERAL_LEN
    for borrow in obligation.borrows:
        w.pubkey(offset, borrow.borrow_reserve)
        w.u128(offset + 32, borrow.cumulative_borrow_rate_wads.bits)
        w.u128(offset + 48, borrow.borrowed_amount_wads.bits)
        w.u128(offset + 64, borrow.market_value.bits)
        offset += LIQUIDITY_LEN
    return w.to_bytes()
