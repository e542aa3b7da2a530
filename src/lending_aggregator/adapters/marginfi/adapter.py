from __future__ import annotations

from dataclasses import dataclass

from solders.pubkey import Pubkey

from ...codec.fixed import I80F48, apr_to_apy
from ...codec.layout import parse_pubkey
from ...constants import (
    MARGINFI_GROUP,
    MARGINFI_PROGRAM_ID,
    UNKNOWN_MARKET,
    NamedMarket,
)
from ...errors import AccountNotFound, DeserializationError, ProtocolError
from ...logger import get_logger
from ...models import ObligationType, UserObligation
from ...normalize.config import Protocol
from ...rpc.calls import fetch_account
from ...rpc.pool import RpcConnectionPool
from ..base import BaseLendingAdapter, MarketData, MarketRecord
from .layout import (
    A_AUTHORITY,
    ACCOUNT_DISCRIMINATOR,
    ACCOUNT_LEN,
    B_GROUP,
    BANK_DISCRIMINATOR,
    BalanceSide,
    Bank,
    MarginfiGroup,
    decode_account,
    decode_bank,
    decode_group,
)

logger = get_logger(__name__)


@dataclass
class MarginfiMarket(MarketRecord):
    address: Pubkey
    bank: Bank
    market_name: str
    group: MarginfiGroup | None = None

    @property
    def mint(self) -> str:
        return str(self.bank.mint)

    @property
    def decimals(self) -> int:
        return self.bank.mint_decimals

    def total_supply(self) -> I80F48:
        return self.bank.total_asset_value()

    def total_borrows(self) -> I80F48:
        return self.bank.total_liability_value()

    def supply_rate(self) -> I80F48:
        return self.bank.rates(self.group)[0]

    def borrow_rate(self) -> I80F48:
        return self.bank.rates(self.group)[1]

    def supply_apy(self) -> I80F48:
        return apr_to_apy(self.supply_rate())

    def borrow_apy(self) -> I80F48:
        return apr_to_apy(self.borrow_rate())


class MarginfiAdapter(BaseLendingAdapter):
    """Adapter for the Marginfi v2 global lending group."""

    def __init__(
        self,
        rpc_url: str,
        pool: RpcConnectionPool,
        *,
        group: NamedMarket = MARGINFI_GROUP,
        **kwargs,
    ):
        super().__init__(rpc_url, pool, **kwargs)
        self.group_address = parse_pubkey(group.address, "Marginfi group")
        self.group_name = group.name
        self.group: MarginfiGroup | None = None
        self._program_id = Pubkey.from_string(MARGINFI_PROGRAM_ID)

    @property
    def protocol(self) -> Protocol:
        return Protocol.MARGINFI

    @property
    def program_id(self) -> Pubkey:
        return self._program_id

    def fetch_markets(self) -> MarketData:
        with self.pool.client(self.rpc_url) as client:
            accounts = (
                self._query(client)
                .with_memcmp(0, BANK_DISCRIMINATOR)
                .with_memcmp_pubkey(B_GROUP, self.group_address)
                .optimize_filters()
                .fetch()
            )
            banks = self._decode_all(accounts, decode_bank, "bank")
            group = self._fetch_group(client)
        logger.debug("Marginfi: %d bank(s) in %s", len(banks), self.group_name)
        return {
            address: MarginfiMarket(address, bank, self.group_name, group)
            for address, bank in banks
        }

    def _fetch_group(self, client) -> MarginfiGroup:
        """Program fee rates live on the group; banks cannot be priced without it."""
        try:
            return decode_group(
                fetch_account(client, self.group_address, max_tries=self.max_tries)
            )
        except (AccountNotFound, DeserializationError) as exc:
            raise ProtocolError(
                f"Marginfi group {self.group_address} unavailable: {exc}"
            ) from exc

    def apply_market_data(self, data: MarketData) -> None:
        super().apply_market_data(data)
        self.group = next(
            (m.group for m in data.values() if isinstance(m, MarginfiMarket)), None
        )

    def decode_market(self, address: Pubkey, data: bytes) -> MarginfiMarket:
        bank = decode_bank(data)
        name = self.group_name if bank.group == self.group_address else UNKNOWN_MARKET
        return MarginfiMarket(address, bank, name, self.group)

    def fetch_obligations(self, wallet: str) -> list[UserObligation]:
        authority = self._parse_wallet(wallet)
        with self.pool.client(self.rpc_url) as client:
            accounts = (
                self._query(client)
                .with_memcmp(0, ACCOUNT_DISCRIMINATOR)
                .with_data_size(ACCOUNT_LEN)
                .with_owner(A_AUTHORITY, authority)
                .optimize_filters()
                .fetch()
            )
            decoded = self._decode_all(accounts, decode_account, "account")
            bank_keys = [
                balance.bank_pk
                for _, account in decoded
                for balance in account.active_balances()
            ]
            markets = self._resolve_markets(client, bank_keys)

        results: list[UserObligation] = []
        for _, account in decoded:
            in_group = account.group == self.group_address
            market_name = self.group_name if in_group else UNKNOWN_MARKET
            for balance in account.active_balances():
                side = balance.side()
                if side is None:
                    continue
                market = markets.get(balance.bank_pk)
                bank = market.bank if isinstance(market, MarginfiMarket) else None
                if side is BalanceSide.LIABILITY:
                    value = balance.liability_shares
                    if bank is not None:
                        value = value * bank.liability_share_value
                    amount = value.to_ceil()
                    obligation_type = ObligationType.LIABILITY
                else:
                    value = balance.asset_shares
                    if bank is not None:
                        value = value * bank.asset_share_value
                    amount = value.to_floor()
                    obligation_type = ObligationType.ASSET
                if amount > 0:
                    results.append(
                        self._obligation(
                            market,
                            str(balance.bank_pk),
                            amount,
                            obligation_type,
                            market_name,
                        )
                    )
        logger.debug("Marginfi: %d position(s) for %s", len(results), wallet)
        return results
