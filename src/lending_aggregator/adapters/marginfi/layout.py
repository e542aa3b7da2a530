"""Marginfi v2 account layouts.

All numeric bank fields are I80F48 values stored as little-endian i128. Offsets
below include the 8-byte Anchor discriminator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from solders.pubkey import Pubkey

from ...codec.curve import PiecewiseLinearCurve
from ...codec.fixed import I80F48
from ...codec.layout import AccountReader, AccountWriter, anchor_discriminator

BANK_DISCRIMINATOR = bytes([142, 49, 166, 242, 50, 66, 97, 188])
ACCOUNT_DISCRIMINATOR = bytes([67, 178, 130, 109, 126, 114, 28, 42])
GROUP_DISCRIMINATOR = anchor_discriminator("MarginfiGroup")

BANK_LEN = 1864
ACCOUNT_LEN = 2312
GROUP_LEN = 1056

# Bank
B_MINT = 8
B_MINT_DECIMALS = 40
B_GROUP = 41
B_ASSET_SHARE_VALUE = 80
B_LIABILITY_SHARE_VALUE = 96
B_LIQUIDITY_VAULT = 112
B_COLLECTED_INSURANCE_FEES = 184
B_COLLECTED_GROUP_FEES = 240
B_TOTAL_LIABILITY_SHARES = 256
B_TOTAL_ASSET_SHARES = 272
B_LAST_UPDATE = 288
B_ASSET_WEIGHT_INIT = 296
B_ASSET_WEIGHT_MAINT = 312
B_LIABILITY_WEIGHT_INIT = 328
B_LIABILITY_WEIGHT_MAINT = 344
B_DEPOSIT_LIMIT = 360
B_OPTIMAL_UTILIZATION_RATE = 368
B_PLATEAU_INTEREST_RATE = 384
B_MAX_INTEREST_RATE = 400
B_INSURANCE_FEE_FIXED_APR = 416
B_INSURANCE_IR_FEE = 432
B_PROTOCOL_FIXED_FEE_APR = 448
B_PROTOCOL_IR_FEE = 464
B_PROTOCOL_ORIGINATION_FEE = 480
B_OPERATIONAL_STATE = 608
B_ORACLE_SETUP = 609
B_BORROW_LIMIT = 776

# Group
G_ADMIN = 8
G_GROUP_FLAGS = 40
G_GLOBAL_FEE_WALLET = 48
G_PROGRAM_FEE_FIXED = 80
G_PROGRAM_FEE_RATE = 96
G_LAST_UPDATE = 112

# Account
A_GROUP = 8
A_AUTHORITY = 40
A_BALANCES = 72
MAX_BALANCES = 16
BALANCE_LEN = 104

# Positions below one native unit of shares are dust.
EMPTY_BALANCE_THRESHOLD = I80F48.one()


class BankOperationalState(IntEnum):
    PAUSED = 0
    OPERATIONAL = 1
    REDUCE_ONLY = 2


class BalanceSide(IntEnum):
    ASSET = 0
    LIABILITY = 1


@dataclass(frozen=True)
class InterestRateConfig:
    optimal_utilization_rate: I80F48
    plateau_interest_rate: I80F48
    max_interest_rate: I80F48
    insurance_fee_fixed_apr: I80F48
    insurance_ir_fee: I80F48
    protocol_fixed_fee_apr: I80F48
    protocol_ir_fee: I80F48
    protocol_origination_fee: I80F48 = field(default_factory=I80F48.zero)


@dataclass(frozen=True)
class BankConfig:
    asset_weight_init: I80F48
    asset_weight_maint: I80F48
    liability_weight_init: I80F48
    liability_weight_maint: I80F48
    deposit_limit: int
    interest_rate_config: InterestRateConfig
    operational_state: int
    oracle_setup: int
    borrow_limit: int


@dataclass(frozen=True)
class MarginfiGroup:
    admin: Pubkey
    group_flags: int = 0
    global_fee_wallet: Pubkey = field(default_factory=Pubkey.default)
    program_fee_fixed: I80F48 = field(default_factory=I80F48.zero)
    program_fee_rate: I80F48 = field(default_factory=I80F48.zero)
    last_update: int = 0


@dataclass(frozen=True)
class Bank:
    mint: Pubkey
    mint_decimals: int
    group: Pubkey
    asset_share_value: I80F48
    liability_share_value: I80F48
    liquidity_vault: Pubkey
    collected_insurance_fees_outstanding: I80F48
    collected_group_fees_outstanding: I80F48
    total_liability_shares: I80F48
    total_asset_shares: I80F48
    last_update: int
    config: BankConfig

    def total_asset_value(self) -> I80F48:
        return self.total_asset_shares * self.asset_share_value

    def total_liability_value(self) -> I80F48:
        return self.total_liability_shares * self.liability_share_value

    def utilization(self) -> I80F48:
        liabilities = self.total_liability_value()
        if liabilities.bits <= 0:
            return I80F48.zero()
        assets = self.total_asset_value()
        if assets.bits <= 0:
            return I80F48.one()
        return (liabilities / assets).clamp(I80F48.zero(), I80F48.one())

    def base_rate_curve(self) -> PiecewiseLinearCurve[I80F48]:
        ir = self.config.interest_rate_config
        optimal = ir.optimal_utilization_rate.clamp(I80F48.zero(), I80F48.one())
        return PiecewiseLinearCurve(
            [
                (I80F48.zero(), I80F48.zero()),
                (optimal, ir.plateau_interest_rate),
                (I80F48.one(), ir.max_interest_rate),
            ]
        )

    def rates(self, group: MarginfiGroup | None = None) -> tuple[I80F48, I80F48]:
        """Return ``(lending_apr, borrowing_apr)``.

        Borrowers pay the base rate marked up by the protocol, insurance and
        group program fees, plus their fixed APR components.
        """
        ir = self.config.interest_rate_config
        program_fee_rate = group.program_fee_rate if group else I80F48.zero()
        program_fee_fixed = group.program_fee_fixed if group else I80F48.zero()

        utilization = self.utilization()
        base = self.base_rate_curve().rate_at(utilization)
        lending = base * utilization
        markup = I80F48.one() + ir.protocol_ir_fee + ir.insurance_ir_fee + program_fee_rate
        borrowing = (
            base * markup
            + ir.protocol_fixed_fee_apr
            + ir.insurance_fee_fixed_apr
            + program_fee_fixed
        )
        return lending, borrowing


@dataclass(frozen=True)
class Balance:
    active: bool
    bank_pk: Pubkey
    asset_shares: I80F48
    liability_shares: I80F48
    bank_asset_tag: int = 0
    emissions_outstanding: I80F48 = field(default_factory=I80F48.zero)
    last_update: int = 0

    def side(self) -> BalanceSide | None:
        """Which side of the book this balance sits on, or None when it is dust."""
        if self.liability_shares >= EMPTY_BALANCE_THRESHOLD:
            return BalanceSide.LIABILITY
        if self.asset_shares >= EMPTY_BALANCE_THRESHOLD:
            return BalanceSide.ASSET
        return None


@dataclass(frozen=True)
class MarginfiAccount:
    group: Pubkey
    authority: Pubkey
    balances: tuple[Balance, ...] = ()

    def active_balances(self) -> list[Balance]:
        return [balance for balance in self.balances if balance.active]


def _i80(r: AccountReader, offset: int) -> I80F48:
    return I80F48(r.i128(offset))


def decode_bank(data: bytes) -> Bank:
    r = AccountReader(
        data, name="Marginfi bank", min_size=BANK_LEN, discriminator=BANK_DISCRIMINATOR
    )
    return Bank(
        mint=r.pubkey(B_MINT),
        mint_decimals=r.u8(B_MINT_DECIMALS),
        group=r.pubkey(B_GROUP),
        asset_share_value=_i80(r, B_ASSET_SHARE_VALUE),
        liability_share_value=_i80(r, B_LIABILITY_SHARE_VALUE),
        liquidity_vault=r.pubkey(B_LIQUIDITY_VAULT),
        collected_insurance_fees_outstanding=_i80(r, B_COLLECTED_INSURANCE_FEES),
        collected_group_fees_outstanding=_i80(r, B_COLLECTED_GROUP_FEES),
        total_liability_shares=_i80(r, B_TOTAL_LIABILITY_SHARES),
        total_asset_shares=_i80(r, B_TOTAL_ASSET_SHARES),
        last_update=r.i64(B_LAST_UPDATE),
        config=BankConfig(
            asset_weight_init=_i80(r, B_ASSET_WEIGHT_INIT),
            asset_weight_maint=_i80(r, B_ASSET_WEIGHT_MAINT),
            liability_weight_init=_i80(r, B_LIABILITY_WEIGHT_INIT),
            liability_weight_maint=_i80(r, B_LIABILITY_WEIGHT_MAINT),
            deposit_limit=r.u64(B_DEPOSIT_LIMIT),
            interest_rate_config=InterestRateConfig(
                optimal_utilization_rate=_i80(r, B_OPTIMAL_UTILIZATION_RATE),
                plateau_interest_rate=_i80(r, B_PLATEAU_INTEREST_RATE),
                max_interest_rate=_i80(r, B_MAX_INTEREST_RATE),
                insurance_fee_fixed_apr=_i80(r, B_INSURANCE_FEE_FIXED_APR),
                insurance_ir_fee=_i80(r, B_INSURANCE_IR_FEE),
                protocol_fixed_fee_apr=_i80(r, B_PROTOCOL_FIXED_FEE_APR),
                protocol_ir_fee=_i80(r, B_PROTOCOL_IR_FEE),
                protocol_origination_fee=_i80(r, B_PROTOCOL_ORIGINATION_FEE),
            ),
            operational_state=r.u8(B_OPERATIONAL_STATE),
            oracle_setup=r.u8(B_ORACLE_SETUP),
            borrow_limit=r.u64(B_BORROW_LIMIT),
        ),
    )


def encode_bank(bank: Bank) -> bytes:
    w = AccountWriter(BANK_LEN, BANK_DISCRIMINATOR)
    config = bank.config
    ir = config.interest_rate_config
    w.pubkey(B_MINT, bank.mint)
    w.u8(B_MINT_DECIMALS, bank.mint_decimals)
    w.pubkey(B_GROUP, bank.group)
    w.i128(B_ASSET_SHARE_VALUE, bank.asset_share_value.bits)
    w.i128(B_LIABILITY_SHARE_VALUE, bank.liability_share_value.bits)
    w.pubkey(B_LIQUIDITY_VAULT, bank.liquidity_vault)
    w.i128(B_COLLECTED_INSURANCE_FEES, bank.collected_insurance_fees_outstanding.bits)
    w.i128(B_COLLECTED_GROUP_FEES, bank.collected_group_fees_outstanding.bits)
    w.i128(B_TOTAL_LIABILITY_SHARES, bank.total_liability_shares.bits)
    w.i128(B_TOTAL_ASSET_SHARES, bank.total_asset_shares.bits)
    w.i64(B_LAST_UPDATE, bank.last_update)
    w.i128(B_ASSET_WEIGHT_INIT, config.asset_weight_init.bits)
    w.i128(B_ASSET_WEIGHT_MAINT, config.asset_weight_maint.bits)
    w.i128(B_LIABILITY_WEIGHT_INIT, config.liability_weight_init.bits)
    w.i128(B_LIABILITY_WEIGHT_MAINT, config.liability_weight_maint.bits)
    w.u64(B_DEPOSIT_LIMIT, config.deposit_limit)
    w.i128(B_OPTIMAL_UTILIZATION_RATE, ir.optimal_utilization_rate.bits)
    w.i128(B_PLATEAU_INTEREST_RATE, ir.plateau_interest_rate.bits)
    w.i128(B_MAX_INTEREST_RATE, ir.max_interest_rate.bits)
    w.i128(B_INSURANCE_FEE_FIXED_APR, ir.insurance_fee_fixed_apr.bits)
    w.i128(B_INSURANCE_IR_FEE, ir.insurance_ir_fee.bits)
    w.i128(B_PROTOCOL_FIXED_FEE_APR, ir.protocol_fixed_fee_apr.bits)
    w.i128(B_PROTOCOL_IR_FEE, ir.protocol_ir_fee.bits)
    w.i128(B_PROTOCOL_ORIGINATION_FEE, ir.protocol_origination_fee.bits)
    w.u8(B_OPERATIONAL_STATE, config.operational_state)
    w.u8(B_ORACLE_SETUP, config.oracle_setup)
    w.u64(B_BORROW_LIMIT, config.borrow_limit)
    return w.to_bytes()


def decode_group(data: bytes) -> MarginfiGroup:
    r = AccountReader(
        data,
        name="Marginfi group",
        min_size=G_LAST_UPDATE + 8,
        discriminator=GROUP_DISCRIMINATOR,
    )
    return MarginfiGroup(
        admin=r.pubkey(G_ADMIN),
        group_flags=r.u64(G_GROUP_FLAGS),
        global_fee_wallet=r.pubkey(G_GLOBAL_FEE_WALLET),
        program_fee_fixed=_i80(r, G_PROGRAM_FEE_FIXED),
        program_fee_rate=_i80(r, G_PROGRAM_FEE_RATE),
        last_update=r.i64(G_LAST_UPDATE),
    )


def encode_group(group: MarginfiGroup) -> bytes:
    w = AccountWriter(GROUP_LEN, GROUP_DISCRIMINATOR)
    w.pubkey(G_ADMIN, group.admin)
    w.u64(G_GROUP_FLAGS, group.group_flags)
    w.pubkey(G_GLOBAL_FEE_WALLET, group.global_fee_wallet)
    w.i128(G_PROGRAM_FEE_FIXED, group.program_fee_fixed.bits)
    w.i128(G_PROGRAM_FEE_RATE, group.program_fee_rate.bits)
    w.i64(G_LAST_UPDATE, group.last_update)
    return w.to_bytes()


def decode_account(data: bytes) -> MarginfiAccount:
    r = AccountReader(
        data,
        name="Marginfi account",
        min_size=ACCOUNT_LEN,
        discriminator=ACCOUNT_DISCRIMINATOR,
    )
    balances = []
    for index in range(MAX_BALANCES):
        base = A_BALANCES + index * BALANCE_LEN
        balances.append(
            Balance(
                active=r.u8(base) != 0,
                bank_pk=r.pubkey(base + 1),
                bank_asset_tag=r.u8(base + 33),
                asset_shares=_i80(r, base + 40),
                liability_shares=_i80(r, base + 56),
                emissions_outstanding=_i80(r, base + 72),
                last_update=r.u64(base + 88),
            )
        )
    return MarginfiAccount(
        group=r.pubkey(A_GROUP),
        authority=r.pubkey(A_AUTHORITY),
        balances=tuple(balances),
    )


def encode_account(account: MarginfiAccount) -> bytes:
    if len(account.balances) > MAX_BALANCES:
        raise ValueError(f"at most {MAX_BALANCES} balances")
    w = AccountWriter(ACCOUNT_LEN, ACCOUNT_DISCRIMINATOR)
    w.pubkey(A_GROUP, account.group)
    w.pubkey(A_AUTHORITY, account.authority)
    for index, balance in enumerate(account.balances):
        base = A_BALANCES + index * BALANCE_LEN
        w.u8(base, 1 if balance.active else 0)
        w.pubkey(base + 1, balance.bank_pk)
        w.u8(base + 33, balance.bank_asset_tag)
        w.i128(base + 40, balance.asset_shares.bits)
        w.i128(base + 56, balance.liability_shares.bits)
        w.i128(base + 72, balance.emissions_outstanding.bits)
        w.u64(base + 88, balance.last_update)
    return w.to_bytes()

