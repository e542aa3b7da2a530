from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from solders.pubkey import Pubkey

from ...codec.fixed import Rate, WadDecimal
from ...codec.layout import parse_pubkey
from ...constants import SAVE_POOLS, SAVE_PROGRAM_ID, UNKNOWN_MARKET, NamedMarket
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
    SaveReserve,
    decode_obligation,
    decode_reserve,
)

logger = get_logger(__name__)


@dataclass
class SaveMarket(MarketRecord):
    address: Pubkey
    reserve: SaveReserve
    market_name: str

    @property
    def mint(self) -> str:
        return str(self.reserve.liquidity.mint)

    @property
    def decimals(self) -> int:
        return self.reserve.liquidity.mint_decimals

    def is_collateral(self) -> bool:
        return self.reserve.config.liquidation_threshold > 0

    def total_supply(self) -> WadDecimal:
        return self.reserve.total_supply()

    def total_borrows(self) -> WadDecimal:
        return self.reserve.total_borrows()

    def borrow_rate(self) -> Rate:
        return self.reserve.borrow_rate()

    def supply_rate(self) -> Rate:
        return self.reserve.supply_rate()

    def borrow_apy(self) -> Rate:
        return self.reserve.borrow_apy()

    def supply_apy(self) -> Rate:
        return self.reserve.supply_apy()


class SaveAdapter(BaseLendingAdapter):
    """Adapter for Save (formerly Solend) lending pools."""

    def __init__(
        self,
        rpc_url: str,
        pool: RpcConnectionPool,
        *,
        pools: Iterable[NamedMarket] = SAVE_POOLS,
        **kwargs,
    ):
        super().__init__(rpc_url, pool, **kwargs)
        self.pools: dict[Pubkey, str] = {
            parse_pubkey(entry.address, "Save pool"): entry.name for entry in pools
        }
        self._program_id = Pubkey.from_string(SAVE_PROGRAM_ID)

    @property
    def protocol(self) -> Protocol:
        return Protocol.SAVE

    @property
    def program_id(self) -> Pubkey:
        return self._program_id

    def pool_name(self, lending_market: Pubkey) -> str:
        return self.pools.get(lending_market, UNKNOWN_MARKET)

    def fetch_markets(self) -> MarketData:
        markets: MarketData = {}
        with self.pool.client(self.rpc_url) as client:
            for pool_address, pool_name in self.pools.items():
                accounts = (
                    self._query(client)
                    .with_data_size(RESERVE_LEN)
                    .with_memcmp_pubkey(R_LENDING_MARKET, pool_address)
                    .optimize_filters()
                    .fetch()
                )
                reserves = self._decode_all(accounts, decode_reserve, "reserve")
                logger.debug("Save %s: %d reserve(s)", pool_name, len(reserves))
                for address, reserve in reserves:
                    markets[address] = SaveMarket(address, reserve, pool_name)
        return markets

    def decode_market(self, address: Pubkey, data: bytes) -> SaveMarket:
        reserve = decode_reserve(data)
        return SaveMarket(address, reserve, self.pool_name(reserve.lending_market))

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
                position.deposit_reserve
                for _, obligation in obligations
                for position in obligation.deposits
            ] + [
                position.borrow_reserve
                for _, obligation in obligations
                for position in obligation.borrows
            ]
            markets = self._resolve_markets(client, reserve_keys)

        results: list[UserObligation] = []
        for _, obligation in obligations:
            market_name = self.pool_name(obligation.lending_market)
            for deposit in obligation.deposits:
                market = markets.get(deposit.deposit_reserve)
                amount = deposit.deposited_amount
                if isinstance(market, SaveMarket):
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
            for borrow in obligation.borrows:
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
        logger.debug("Save: %d position(s) for %s", len(results), wallet)
        return results
