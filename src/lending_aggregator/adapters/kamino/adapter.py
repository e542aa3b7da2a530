from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from solders.pubkey import Pubkey

from ...codec.fixed import Fraction
from ...codec.layout import parse_pubkey
from ...constants import KAMINO_MARKETS, KAMINO_PROGRAM_ID, UNKNOWN_MARKET, NamedMarket
from ...logger import get_logger
from ...models import ObligationType, UserObligation
from ...normalize.config import Protocol
from ...rpc.pool import RpcConnectionPool
from ..base import BaseLendingAdapter, MarketData, MarketRecord
from .layout import (
    O_OWNER,
    OBLIGATION_LEN,
    R_LENDING_MARKET,
    RESERVE_LEN,
    KaminoReserve,
    decode_obligation,
    decode_reserve,
)

logger = get_logger(__name__)


@dataclass
class KaminoMarket(MarketRecord):
    address: Pubkey
    reserve: KaminoReserve
    market_name: str

    @property
    def mint(self) -> str:
        return str(self.reserve.liquidity.mint)

    @property
    def symbol(self) -> str:
        # Reserves carry their own token name; fall back to the asset map.
        return self.reserve.config.token_name or super().symbol

    @property
    def decimals(self) -> int:
        return self.reserve.liquidity.mint_decimals

    def is_collateral(self) -> bool:
        return self.reserve.config.liquidation_threshold_pct > 0

    def total_supply(self) -> Fraction:
        return self.reserve.total_supply()

    def total_borrows(self) -> Fraction:
        return self.reserve.total_borrows()

    def borrow_rate(self) -> Fraction:
        return self.reserve.borrow_rate()

    def supply_rate(self) -> Fraction:
        return self.reserve.supply_rate()

    def borrow_apy(self) -> Fraction:
        return self.reserve.borrow_apy()

    def supply_apy(self) -> Fraction:
        return self.reserve.supply_apy()


class KaminoAdapter(BaseLendingAdapter):
    """Adapter for Kamino Lend markets."""

    def __init__(
        self,
        rpc_url: str,
        pool: RpcConnectionPool,
        *,
        lending_markets: Iterable[NamedMarket] = KAMINO_MARKETS,
        **kwargs,
    ):
        super().__init__(rpc_url, pool, **kwargs)
        self.lending_markets: dict[Pubkey, str] = {
            parse_pubkey(entry.address, "Kamino market"): entry.name
            for entry in lending_markets
        }
        self._program_id = Pubkey.from_string(KAMINO_PROGRAM_ID)

    @property
    def protocol(self) -> Protocol:
        return Protocol.KAMINO

    @property
    def program_id(self) -> Pubkey:
        return self._program_id

    def market_name(self, lending_market: Pubkey) -> str:
        return self.lending_markets.get(lending_market, UNKNOWN_MARKET)

    def fetch_markets(self) -> MarketData:
        markets: MarketData = {}
        with self.pool.client(self.rpc_url) as client:
            for market_address, name in self.lending_markets.items():
                accounts = (
                    self._query(client)
                    .with_data_size(RESERVE_LEN)
                    .with_memcmp_pubkey(R_LENDING_MARKET, market_address)
                    .optimize_filters()
                    .fetch()
                )
                reserves = self._decode_all(accounts, decode_reserve, "reserve")
                logger.debug("Kamino %s: %d reserve(s)", name, len(reserves))
                for address, reserve in reserves:
                    markets[address] = KaminoMarket(address, reserve, name)
        return markets

    def decode_market(self, address: Pubkey, data: bytes) -> KaminoMarket:
        reserve = decode_reserve(data)
        return KaminoMarket(address, reserve, self.market_name(reserve.lending_market))

    def fetch_obligations(self, wallet: str) -> list[UserObligation]:
        owner = self._parse_wallet(wallet)
        with self.pool.client(self.rpc_url) as client:
            accounts = (
                self._query(client)
                .with_data_size(OBLIGATION_LEN)
                .with_owner(O_OWNER, owner)
                .optimize_filters()
                .fetch()
            )
            obligations = self._decode_all(accounts, decode_obligation, "obligation")
            reserve_keys = [
                deposit.deposit_reserve
                for _, obligation in obligations
                for deposit in obligation.active_deposits()
            ] + [
                borrow.borrow_reserve
                for _, obligation in obligations
                for borrow in obligation.active_borrows()
            ]
            markets = self._resolve_markets(client, reserve_keys)

        results: list[UserObligation] = []
        for _, obligation in obligations:
            market_name = self.market_name(obligation.lending_market)
            for deposit in obligation.active_deposits():
                market = markets.get(deposit.deposit_reserve)
                amount = deposit.deposited_amount
                if isinstance(market, KaminoMarket):
                    amount = market.reserve.collateral_to_liquidity(amount)
                if amount > 0:
                    results.append(
                        self._obligation(
                            market,
                            str(deposit.deposit_reserve),
                            amount,
                            ObligationType.ASSET,
                            market_name,
                        )
                    )
            for borrow in obligation.active_borrows():
                amount = borrow.borrowed_amount()
                if amount > 0:
                    results.append(
                        self._obligation(
                            markets.get(borrow.borrow_reserve),
                            str(borrow.borrow_reserve),
                            amount,
                            ObligationType.LIABILITY,
                            market_name,
                        )
                    )
        logger.debug("Kamino: %d position(s) for %s", len(results), wallet)
        return results
