"""Chunked multi-account lookups."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any, TypeVar

from solders.pubkey import Pubkey

from ..logger import get_logger
from .calls import DEFAULT_MAX_TRIES, call_with_retry

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 100
MAX_BATCH_SIZE = 100

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def get_multiple_accounts(
    client: Any,
    pubkeys: Sequence[Pubkey],
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_tries: int = DEFAULT_MAX_TRIES,
) -> dict[Pubkey, bytes]:
    """Fetch many accounts, one ``getMultipleAccounts`` call per chunk.

    Addresses with no account are absent from the returned mapping.
    """
    if not 1 <= batch_size <= MAX_BATCH_SIZE:
        raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

    accounts: dict[Pubkey, bytes] = {}
    for chunk in chunked(list(pubkeys), batch_size):
        response = call_with_retry(
            client.get_multiple_accounts,
            list(chunk),
            encoding="base64",
            max_tries=max_tries,
            description=f"getMultipleAccounts({len(chunk)} keys)",
        )
        for pubkey, account in zip(chunk, response.value):
            if account is not None:
                accounts[pubkey] = bytes(account.data)

    logger.debug(
        "Fetched %d of %d requested accounts", len(accounts), len(pubkeys)
    )
    return accounts
