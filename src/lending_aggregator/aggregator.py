from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from .adapters import BaseLendingAdapter, MarketData, MarketRecord, get_adapter_class
from .assets import get_valid_assets, supported_mints
from .codec.layout import parse_pubkey
from .constants import ASSETS, AssetInfo
from .errors import RpcError
from .logger import get_logger
from .models import LendingReserve, MintAsset, TokenBalance, UserObligation
from .normalize import normalize_amount, normalize_apy, normalize_rate
from .rpc.calls import fetch_slot
from .rpc.pool import RpcConnectionPool
from .settings import AggregatorSettings
from .wallet import fetch_wallet_token_balances

logger = get_logger(__name__)


def _process_adapter_results(
    adapters: Sequence[BaseLendingAdapter],
    results: Sequence[BaseException | MarketData],
) -> None:
    """Apply gathered fetch results to their adapters.

    A failed fetch is logged and its adapter contributes no markets this cycle.
    """
    for adapter, result in zip(adapters, results):
        if isinstance(result, BaseException):
            logger.error("Adapter '%s' failed: %s", adapter.protocol_name, result)
            adapter.apply_market_data({})
        else:
            logger.debug(
                "Adapter '%s' returned %d markets", adapter.protocol_name, len(result)
            )
            adapter.apply_market_data(result)


def _running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class LendingAggregator:
    """Per-token view of lending markets and wallet positions across protocols.

    Adapters are built from ``settings.enabled_protocols`` and share one RPC
    connection pool. Each ``load_markets`` call fetches every protocol
    concurrently, then rebuilds ``assets`` from scratch.
    """

    def __init__(
        self,
        settings: AggregatorSettings | None = None,
        *,
        pool: RpcConnectionPool | None = None,
        adapters: Sequence[BaseLendingAdapter] | None = None,
        asset_infos: Sequence[AssetInfo] = ASSETS,
    ):
        self.settings = settings or AggregatorSettings()
        self.pool = pool or RpcConnectionPool(
            max_clients_per_endpoint=self.settings.rpc_max_clients_per_endpoint,
            timeout=self.settings.rpc_timeout,
        )
        self.adapters: list[BaseLendingAdapter] = (
            list(adapters) if adapters is not None else self._build_adapters()
        )
        self.asset_infos = tuple(asset_infos)
        self.assets: dict[str, MintAsset] = get_valid_assets(self.asset_infos)
        self.slot = 0

    def _build_adapters(self) -> list[BaseLendingAdapter]:
        adapters = [
            get_adapter_class(protocol).from_settings(self.settings, self.pool)
            for protocol in self.settings.enabled_protocols
        ]
        logger.debug(
            "Enabled adapters: %s", ", ".join(a.protocol_name for a in adapters)
        )
        return adapters

    # --- markets ---

    def _fetch_slot(self) -> int:
        """Current slot, or 0 when it cannot be read."""
        try:
            with self.pool.client(self.settings.rpc_url) as client:
                return fetch_slot(client, max_tries=self.settings.rpc_max_tries)
        except RpcError as exc:
            logger.warning("Could not fetch current slot: %s", exc)
            return 0

    async def load_markets_async(self) -> dict[str, MintAsset]:
        """Fetch every adapter concurrently, apply results, and rebuild ``assets``."""
        logger.info("Loading markets from %d protocol(s)...", len(self.adapters))
        for adapter in self.adapters:
            adapter.mark_loading()

        # Each fetch runs on a clone so worker threads never share adapter state.
        slot, *results = await asyncio.gather(
            asyncio.to_thread(self._fetch_slot),
            *(
                asyncio.to_thread(adapter.clone().fetch_markets)
                for adapter in self.adapters
            ),
            return_exceptions=True,
        )
        if isinstance(slot, BaseException):
            logger.warning("Could not fetch current slot: %s", slot)
            slot = 0

        _process_adapter_results(self.adapters, results)
        return self._merge(slot)

    def load_markets_sequential(self) -> dict[str, MintAsset]:
        """Fetch and apply adapters one after another; same result as the async path."""
        logger.info(
            "Loading markets from %d protocol(s) sequentially...", len(self.adapters)
        )
        slot = self._fetch_slot()
        for adapter in self.adapters:
            adapter.mark_loading()
            try:
                data = adapter.fetch_markets()
            except Exception as exc:
                logger.error("Adapter '%s' failed: %s", adapter.protocol_name, exc)
                data = {}
            adapter.apply_market_data(data)
        return self._merge(slot)

    def load_markets(self) -> dict[str, MintAsset]:
        """Load markets concurrently, or sequentially inside a running loop."""
        if _running_loop():
            logger.debug("Event loop already running, falling back to sequential load")
            return self.load_markets_sequential()
        return asyncio.run(self.load_markets_async())

    def _collateral_by_group(
        self, markets: list[MarketRecord]
    ) -> dict[str, tuple[str, ...]]:
        groups: dict[str, list[str]] = {}
        for market in markets:
            if market.is_collateral():
                mints = groups.setdefault(market.collateral_group, [])
                if market.mint not in mints:
                    mints.append(market.mint)
        return {group: tuple(mints) for group, mints in groups.items()}

    def _to_reserve(
        self,
        adapter: BaseLendingAdapter,
        market: MarketRecord,
        slot: int,
        collateral: dict[str, tuple[str, ...]],
    ) -> LendingReserve:
        protocol = adapter.protocol
        return LendingReserve(
            protocol_name=adapter.protocol_name,
            market_name=market.market_name,
            total_supply=normalize_amount(market.total_supply(), protocol),
            total_borrows=normalize_amount(market.total_borrows(), protocol),
            supply_rate=normalize_rate(market.supply_rate(), protocol),
            borrow_rate=normalize_rate(market.borrow_rate(), protocol),
            supply_apy=normalize_apy(market.supply_apy(), protocol),
            borrow_apy=normalize_apy(market.borrow_apy(), protocol),
            slot=slot,
            collateral_assets=collateral.get(market.collateral_group, ()),
        )

    def _merge(self, slot: int) -> dict[str, MintAsset]:
        """Rebuild every tracked asset's reserve list from the adapters' markets.

        Raises:
            MathOverflow: If a market value cannot be normalized.
        """
        assets = get_valid_assets(self.asset_infos)
        for adapter in self.adapters:
            markets = adapter.markets
            collateral = self._collateral_by_group(markets)
            merged = 0
            for market in markets:
                asset = assets.get(market.mint)
                if asset is None:
                    continue
                asset.lending_reserves.append(
                    self._to_reserve(adapter, market, slot, collateral)
                )
                merged += 1
            logger.debug(
                "%s: %d of %d market(s) tracked",
                adapter.protocol_name,
                merged,
                len(markets),
            )

        self.assets = assets
        self.slot = slot
        logger.info(
            "Loaded %d reserve(s) across %d asset(s) at slot %d",
            sum(len(a.lending_reserves) for a in assets.values()),
            len(assets),
            slot,
        )
        return assets

    # --- obligations ---

    def _collect_obligations(
        self,
        results: Sequence[BaseException | list[UserObligation]],
        wallet: str,
    ) -> list[UserObligation]:
        obligations: list[UserObligation] = []
        for adapter, result in zip(self.adapters, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Adapter '%s' failed for wallet %s: %s",
                    adapter.protocol_name,
                    wallet,
                    result,
                )
                continue
            logger.debug(
                "Adapter '%s' returned %d position(s)",
                adapter.protocol_name,
                len(result),
            )
            obligations.extend(result)
        return obligations

    async def get_user_obligations_async(self, wallet: str) -> list[UserObligation]:
        """Positions held by ``wallet`` across every adapter.

        Raises:
            InvalidAddress: If ``wallet`` is not a valid address.
        """
        parse_pubkey(wallet, "wallet address")
        results = await asyncio.gather(
            *(
                asyncio.to_thread(adapter.fetch_obligations, wallet)
                for adapter in self.adapters
            ),
            return_exceptions=True,
        )
        return self._collect_obligations(results, wallet)

    def get_user_obligations_sequential(self, wallet: str) -> list[UserObligation]:
        parse_pubkey(wallet, "wallet address")
        results: list[Any] = []
        for adapter in self.adapters:
            try:
                results.append(adapter.fetch_obligations(wallet))
            except Exception as exc:
                results.append(exc)
        return self._collect_obligations(results, wallet)

    def get_user_obligations(self, wallet: str) -> list[UserObligation]:
        if _running_loop():
            logger.debug("Event loop already running, falling back to sequential fetch")
            return self.get_user_obligations_sequential(wallet)
        return asyncio.run(self.get_user_obligations_async(wallet))

    # --- wallet ---

    def fetch_wallet_token_balances(self, wallet: str) -> list[TokenBalance]:
        """SPL balances of ``wallet`` for every supported token."""
        s = self.settings
        with self.pool.client(s.rpc_url) as client:
            return fetch_wallet_token_balances(
                client,
                wallet,
                supported_mints(self.asset_infos),
                default_decimals=s.unknown_mint_decimals,
                batch_size=s.rpc_batch_size,
                max_tries=s.rpc_max_tries,
            )
