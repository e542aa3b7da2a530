from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any, TypeVar

from solders.pubkey import Pubkey

from ..assets import get_symbol_for_mint
from ..codec.fixed import FixedPoint
from ..codec.layout import parse_pubkey
from ..constants import UNKNOWN_SYMBOL
from ..errors import DeserializationError
from ..logger import get_logger
from ..models import ObligationType, UserObligation
from ..normalize.config import Protocol
from ..rpc.batch import DEFAULT_BATCH_SIZE, get_multiple_accounts
from ..rpc.calls import DEFAULT_MAX_TRIES
from ..rpc.pool import RpcConnectionPool
from ..rpc.query import ProgramAccountQuery
from ..settings import AggregatorSettings

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_UNKNOWN_MINT_DECIMALS = 6


class AdapterState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    LOADED = "loaded"


class MarketRecord(ABC):
    """A decoded protocol market and its derived values.

    Amounts and rates are returned in the protocol's native representation
    (a ``FixedPoint`` subclass or a plain integer); normalization into the
    canonical domain happens in the aggregator.
    """

    address: Pubkey
    market_name: str

    @property
    @abstractmethod
    def mint(self) -> str:
        """Base58 address of the underlying token mint."""
        ...

    @property
    @abstractmethod
    def decimals(self) -> int:
        ...

    @property
    def symbol(self) -> str:
        return get_symbol_for_mint(self.mint) or UNKNOWN_SYMBOL

    @property
    def collateral_group(self) -> str:
        """Markets in the same group may back each other's borrows."""
        return self.market_name

    def is_collateral(self) -> bool:
        return False

    @abstractmethod
    def total_supply(self) -> FixedPoint | int:
        ...

    @abstractmethod
    def total_borrows(self) -> FixedPoint | int:
        ...

    @abstractmethod
    def borrow_rate(self) -> FixedPoint:
        ...

    @abstractmethod
    def supply_rate(self) -> FixedPoint:
        ...

    @abstractmethod
    def borrow_apy(self) -> FixedPoint:
        ...

    @abstractmethod
    def supply_apy(self) -> FixedPoint:
        ...


MarketData = dict[Pubkey, MarketRecord]


class BaseLendingAdapter(ABC):
    """Abstract base class for lending protocol adapters.

    Loading is split in two: ``fetch_markets`` performs every RPC read and
    returns decoded markets without touching adapter state, so it can run on a
    worker thread; ``apply_market_data`` then installs the result. The
    aggregator drives both steps.
    """

    def __init__(
        self,
        rpc_url: str,
        pool: RpcConnectionPool,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_tries: int = DEFAULT_MAX_TRIES,
        unknown_mint_decimals: int = DEFAULT_UNKNOWN_MINT_DECIMALS,
    ):
        """Initialize the adapter.

        Args:
            rpc_url: Ledger RPC endpoint
            pool: Shared client pool
            batch_size: Addresses per getMultipleAccounts call
            max_tries: Attempts per RPC call before giving up
            unknown_mint_decimals: Decimals reported for unresolvable positions
        """
        self.rpc_url = rpc_url
        self.pool = pool
        self.batch_size = batch_size
        self.max_tries = max_tries
        self.unknown_mint_decimals = unknown_mint_decimals
        self.state = AdapterState.UNINITIALIZED
        self._markets: MarketData = {}

    @classmethod
    def from_settings(
        cls: type[T], settings: AggregatorSettings, pool: RpcConnectionPool
    ) -> T:
        return cls(  # type: ignore[call-arg]
            settings.rpc_url,
            pool,
            batch_size=settings.rpc_batch_size,
            max_tries=settings.rpc_max_tries,
            unknown_mint_decimals=settings.unknown_mint_decimals,
        )

    @property
    @abstractmethod
    def protocol(self) -> Protocol:
        ...

    @property
    def protocol_name(self) -> str:
        return self.protocol.value

    @property
    @abstractmethod
    def program_id(self) -> Pubkey:
        ...

    @abstractmethod
    def fetch_markets(self) -> MarketData:
        """Read and decode every market this adapter tracks.

        Must not mutate adapter state.
        """
        ...

    @abstractmethod
    def fetch_obligations(self, wallet: str) -> list[UserObligation]:
        """Return the non-zero deposits and borrows ``wallet`` holds in this protocol.

        Raises:
            InvalidAddress: If ``wallet`` is not a valid address.
        """
        ...

    def decode_market(self, address: Pubkey, data: bytes) -> MarketRecord | None:
        """Decode one market account fetched by address, or None if unsupported."""
        return None

    @property
    def markets(self) -> list[MarketRecord]:
        return list(self._markets.values())

    def get_market(self, address: Pubkey) -> MarketRecord | None:
        return self._markets.get(address)

    def mark_loading(self) -> None:
        self.state = AdapterState.LOADING

    def apply_market_data(self, data: MarketData) -> None:
        """Replace the loaded markets wholesale and mark the adapter loaded."""
        self._markets = dict(data)
        self.state = AdapterState.LOADED
        logger.debug("%s: %d market(s) loaded", self.protocol_name, len(data))

    def load_markets(self) -> None:
        """Fetch and apply in one step (sequential use)."""
        self.mark_loading()
        self.apply_market_data(self.fetch_markets())

    def clone(self) -> BaseLendingAdapter:
        """Shallow copy used to run ``fetch_markets`` off the event loop."""
        return copy.copy(self)

    # --- helpers for subclasses ---

    def _query(self, client: Any) -> ProgramAccountQuery:
        return ProgramAccountQuery(client, self.program_id, max_tries=self.max_tries)

    def _parse_wallet(self, wallet: str) -> Pubkey:
        return parse_pubkey(wallet, "wallet address")

    def _decode_all(
        self,
        accounts: Iterable[tuple[Pubkey, bytes]],
        decode: Callable[[bytes], T],
        kind: str,
    ) -> list[tuple[Pubkey, T]]:
        """Decode each account, logging and skipping the ones that fail."""
        decoded: list[tuple[Pubkey, T]] = []
        for address, data in accounts:
            try:
                decoded.append((address, decode(data)))
            except DeserializationError as exc:
                logger.debug(
                    "%s: skipping %s %s: %s", self.protocol_name, kind, address, exc
                )
        return decoded

    def _resolve_markets(
        self, client: Any, addresses: Iterable[Pubkey]
    ) -> dict[Pubkey, MarketRecord]:
        """Look up markets referenced by positions.

        Markets already loaded are used as-is; the rest are batch-fetched and
        decoded with ``decode_market``. Addresses that cannot be resolved are
        absent from the result.
        """
        resolved: dict[Pubkey, MarketRecord] = {}
        missing: list[Pubkey] = []
        for address in addresses:
            if address in resolved or address in missing:
                continue
            market = self._markets.get(address)
            if market is not None:
                resolved[address] = market
            else:
                missing.append(address)

        if missing:
            logger.debug(
                "%s: fetching %d market(s) not loaded", self.protocol_name, len(missing)
            )
            fetched = get_multiple_accounts(
                client, missing, batch_size=self.batch_size, max_tries=self.max_tries
            )
            for address, data in fetched.items():
                try:
                    market = self.decode_market(address, data)
                except DeserializationError as exc:
                    logger.debug(
                        "%s: cannot decode market %s: %s",
                        self.protocol_name,
                        address,
                        exc,
                    )
                    continue
                if market is not None:
                    resolved[address] = market
        return resolved

    def _obligation(
        self,
        market: MarketRecord | None,
        reference: str,
        amount: int,
        obligation_type: ObligationType,
        market_name: str,
    ) -> UserObligation:
        """Build a position, falling back to an UNKNOWN placeholder when unresolved."""
        if market is None:
            logger.warning(
                "%s: position references unknown market %s",
                self.protocol_name,
                reference,
            )
            return UserObligation(
                symbol=UNKNOWN_SYMBOL,
                mint=f"{UNKNOWN_SYMBOL}-{reference}",
                mint_decimals=self.unknown_mint_decimals,
                amount=amount,
                protocol_name=self.protocol_name,
                market_name=market_name,
                obligation_type=obligation_type,
            )
        return UserObligation(
            symbol=market.symbol,
            mint=market.mint,
            mint_decimals=market.decimals,
            amount=amount,
            protocol_name=self.protocol_name,
            market_name=market_name,
            obligation_type=obligation_type,
        )
