"""Canonical entities produced by the aggregator."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class ObligationType(str, Enum):
    ASSET = "Asset"
    LIABILITY = "Liability"


@dataclass(frozen=True)
class LendingReserve:
    """One protocol market for one token, in canonical units.

    Amounts are native token units * 10**18; rates are ``rate * 2**60 * 1000``.
    """

    protocol_name: str
    market_name: str
    total_supply: int
    total_borrows: int
    supply_rate: int
    borrow_rate: int
    supply_apy: int
    borrow_apy: int
    slot: int
    collateral_assets: tuple[str, ...] = ()


@dataclass
class MintAsset:
    """A tracked token and the reserves it appears in for the current cycle."""

    name: str
    symbol: str
    mint: str
    lending_reserves: list[LendingReserve] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UserObligation:
    """One deposit or loan held by a wallet.

    ``amount`` is in native token units; apply ``mint_decimals`` for display.
    """

    symbol: str
    mint: str
    mint_decimals: int
    amount: int
    protocol_name: str
    market_name: str
    obligation_type: ObligationType

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["obligation_type"] = self.obligation_type.value
        return data


@dataclass(frozen=True)
class TokenBalance:
    symbol: str
    mint: str
    amount: int
    decimals: int
    token_account: str = ""
