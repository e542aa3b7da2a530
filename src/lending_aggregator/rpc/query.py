"""Filtered program-account queries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Union

import base58
from solana.rpc.types import MemcmpOpts
from solders.pubkey import Pubkey

from ..errors import InvalidAddress
from ..logger import get_logger
from .calls import DEFAULT_MAX_TRIES, call_with_retry

logger = get_logger(__name__)


class FilterPriority(IntEnum):
    """Evaluation order applied by ``optimize_filters`` (lowest first)."""

    DISCRIMINATOR = 0
    DATA_SIZE = 1
    OWNER = 2
    OTHER = 3


@dataclass(frozen=True)
class MemcmpFilter:
    """Exact byte match at ``offset`` within the account data."""

    offset: int
    data: bytes
    is_owner: bool = False

    def to_rpc(self) -> MemcmpOpts:
        encoded = base58.b58encode(self.data).decode()
        return MemcmpOpts(offset=self.offset, bytes=encoded)


@dataclass(frozen=True)
class DataSizeFilter:
    """Exact account data length."""

    size: int

    def to_rpc(self) -> int:
        return self.size


AccountFilter = Union[MemcmpFilter, DataSizeFilter]


def filter_priority(account_filter: AccountFilter) -> FilterPriority:
    if isinstance(account_filter, DataSizeFilter):
        return FilterPriority.DATA_SIZE
    if account_filter.offset == 0:
        return FilterPriority.DISCRIMINATOR
    if account_filter.is_owner:
        return FilterPriority.OWNER
    return FilterPriority.OTHER


def optimize_filters(filters: list[AccountFilter]) -> list[AccountFilter]:
    """Order filters most-selective first; ties keep their insertion order."""
    return sorted(filters, key=filter_priority)


class ProgramAccountQuery:
    """Builder for a single ``getProgramAccounts`` call.

    Example:
        accounts = (
            ProgramAccountQuery(client, program_id)
            .with_memcmp(0, discriminator)
            .with_data_size(2312)
            .with_owner(40, wallet)
            .optimize_filters()
            .fetch()
        )
    """

    def __init__(
        self,
        client: Any,
        program_id: Pubkey,
        *,
        max_tries: int = DEFAULT_MAX_TRIES,
    ):
        self.client = client
        self.program_id = program_id
        self.max_tries = max_tries
        self.filters: list[AccountFilter] = []
        self.encoding = "base64"
        self.commitment: str | None = None

    def with_data_size(self, size: int) -> ProgramAccountQuery:
        self.filters.append(DataSizeFilter(size))
        return self

    def with_memcmp(self, offset: int, data: bytes) -> ProgramAccountQuery:
        self.filters.append(MemcmpFilter(offset, bytes(data)))
        return self

    def with_memcmp_base58(self, offset: int, encoded: str) -> ProgramAccountQuery:
        try:
            data = base58.b58decode(encoded)
        except ValueError as exc:
            raise InvalidAddress(f"Invalid base58 filter value {encoded!r}") from exc
        self.filters.append(MemcmpFilter(offset, data))
        return self

    def with_memcmp_pubkey(self, offset: int, pubkey: Pubkey) -> ProgramAccountQuery:
        self.filters.append(MemcmpFilter(offset, bytes(pubkey)))
        return self

    def with_owner(self, offset: int, owner: Pubkey) -> ProgramAccountQuery:
        """Owner/authority address filter; ordered after size filters."""
        self.filters.append(MemcmpFilter(offset, bytes(owner), is_owner=True))
        return self

    def with_encoding(self, encoding: str) -> ProgramAccountQuery:
        self.encoding = encoding
        return self

    def with_commitment(self, commitment: str) -> ProgramAccountQuery:
        self.commitment = commitment
        return self

    def optimize_filters(self) -> ProgramAccountQuery:
        self.filters = optimize_filters(self.filters)
        return self

    def rpc_filters(self) -> list[int | MemcmpOpts]:
        return [account_filter.to_rpc() for account_filter in self.filters]

    def fetch(self) -> list[tuple[Pubkey, bytes]]:
        """Run the query and return ``(address, data)`` for each matching account."""
        logger.debug(
            "getProgramAccounts %s with %d filter(s)",
            self.program_id,
            len(self.filters),
        )
        response = call_with_retry(
            self.client.get_program_accounts,
            self.program_id,
            commitment=self.commitment,
            encoding=self.encoding,
            filters=self.rpc_filters(),
            max_tries=self.max_tries,
            description=f"getProgramAccounts({self.program_id})",
        )
        return [(keyed.pubkey, bytes(keyed.account.data)) for keyed in response.value]
