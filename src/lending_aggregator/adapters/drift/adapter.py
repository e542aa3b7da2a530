from __future__ import annotations

from dataclasses import dataclass

from solders.pubkey import Pubkey

from ...codec.fixed import SpotRate, WadDecimal
from ...codec.layout import parse_pubkey
from ...constants import DRIFT_PROGRAM_ID, UNKNOWN_MARKET
from ...logger import get_logger
from ...models import ObligationType, UserObligation
from ...normalize.config import Protocol
from ...rpc.pool import RpcConnectionPool
from ..base import BaseLendingAdapter, MarketData, MarketRecord
from .layout import (
    INTEREST_DECIMALS,
    SPOT_MARKET_DISCRIMINATOR,
    SPOT_MARKET_LEN,
    U_AUTHORITY,
    USER_DISCRIMINATOR,
    USER_LEN,
    SpotBalanceType,
    SpotMarket,
    decode_spot_market,
    decode_user,
)

logger = get_logger(__name__)

# Cumulative interest index value that represents 1.0.
INTEREST_INDEX_ONE = 10**10


def spot_market_address(program_id: Pubkey, market_index: int) -> Pubkey:
    """Program-derived address of the spot market with ``market_index``."""
    address, _bump = Pubkey.find_program_address(
        [b"spot_market", market_index.to_bytes(2, "little")], program_id
    )
    return address


@dataclass
class DriftMarket(MarketRecord):
    address: Pubkey
    spot_market: SpotMarket
    market_name: str

    @property
    def mint(self) -> str:
        return str(self.spot_market.mint)

    @property
    def symbol(self) -> str:
        return self.spot_market.name or super().symbol

    @property
    def decimals(self) -> int:
        return self.spot_market.decimals

    @property
    def collateral_group(self) -> str:
        return f"pool-{self.spot_market.pool_id}"

    def is_collateral(self) -> bool:
        return self.spot_market.optimal_utilization > 0

    def total_supply(self) -> int:
        return self.spot_market.deposits()

    def total_borrows(self) -> int:
        return self.spot_market.borrows()

    def borrow_rate(self) -> SpotRate:
        return self.spot_market.borrow_rate()

    def supply_rate(self) -> SpotRate:
        return self.spot_market.deposit_rate()

    def borrow_apy(self) -> WadDecimal:
        return self.spot_market.borrow_apy()

    def supply_apy(self) -> WadDecimal:
        return self.spot_market.deposit_apy()


class DriftAdapter(BaseLendingAdapter):
    """Adapter for Drift v2 spot (borrow/lend) markets."""

    def __init__(
        self,
        rpc_url: str,
        pool: RpcConnectionPool,
        *,
        program_id: str = DRIFT_PROGRAM_ID,
        **kwargs,
    ):
        super().__init__(rpc_url, pool, **kwargs)
        self._program_id = parse_pubkey(program_id, "Drift program")

    @property
    def protocol(self) -> Protocol:
        return Protocol.DRIFT

    @property
    def program_id(self) -> Pubkey:
        return self._program_id

    def fetch_markets(self) -> MarketData:
        with self.pool.client(self.rpc_url) as client:
            accounts = (
                self._query(client)
                .with_memcmp(0, SPOT_MARKET_DISCRIMINATOR)
                .with_data_size(SPOT_MARKET_LEN)
                .optimize_filters()
                .fetch()
            )
        markets: MarketData = {}
        for address, spot_market in self._decode_all(
            accounts, decode_spot_market, "spot market"
        ):
            if not spot_market.is_active():
                logger.debug(
                    "Drift: skipping %s market %d (status %d)",
                    spot_market.name,
                    spot_market.market_index,
                    spot_market.status,
                )
                continue
            markets[address] = DriftMarket(address, spot_market, spot_market.name)
        logger.debug("Drift: %d active spot market(s)", len(markets))
        return markets

    def decode_market(self, address: Pubkey, data: bytes) -> DriftMarket:
        spot_market = decode_spot_market(data)
        return DriftMarket(address, spot_market, spot_market.name)

    def _unresolved_amount(self, scaled_balance: int) -> int:
        """Token estimate for a balance whose market is unknown (interest index 1)."""
        precision_decrease = 10 ** (INTEREST_DECIMALS - self.unknown_mint_decimals)
        return scaled_balance * INTEREST_INDEX_ONE // precision_decrease

    def fetch_obligations(self, wallet: str) -> list[UserObligation]:
        authority = self._parse_wallet(wallet)
        with self.pool.client(self.rpc_url) as client:
            accounts = (
                self._query(client)
                .with_memcmp(0, USER_DISCRIMINATOR)
                .with_data_size(USER_LEN)
                .with_owner(U_AUTHORITY, authority)
                .optimize_filters()
                .fetch()
            )
            users = self._decode_all(accounts, decode_user, "user")
            addresses = {
                position.market_index: spot_market_address(
                    self.program_id, position.market_index
                )
                for _, user in users
                for position in user.active_positions()
            }
            markets = self._resolve_markets(client, addresses.values())

        results: list[UserObligation] = []
        for _, user in users:
            for position in user.active_positions():
                market = markets.get(addresses[position.market_index])
                if isinstance(market, DriftMarket):
                    amount = market.spot_market.token_amount(
                        position.scaled_balance, position.balance_type
                    )
                    market_name = market.market_name
                else:
                    amount = self._unresolved_amount(position.scaled_balance)
                    market_name = UNKNOWN_MARKET
                if amount <= 0:
                    continue
                obligation_type = (
                    ObligationType.LIABILITY
                    if position.balance_type is SpotBalanceType.BORROW
                    else ObligationType.ASSET
                )
                results.append(
                    self._obligation(
                        market,
                        f"spot-{position.market_index}",
                        amount,
                        obligation_type,
                        market_name,
                    )
                )
        logger.debug("Drift: %d position(s) for %s", len(results), wallet)
        return results
