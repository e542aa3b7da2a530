"""Retried single RPC calls and the small read helpers built on them."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import backoff
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solana.rpc.types import TokenAccountOpts
from solders.pubkey import Pubkey

from ..errors import AccountNotFound, RpcError
from ..logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_TRIES = 3

TRANSPORT_ERRORS: tuple[type[Exception], ...] = (SolanaRpcException, RPCException)

T = TypeVar("T")


def call_with_retry(
    method: Callable[..., T],
    *args: Any,
    max_tries: int = DEFAULT_MAX_TRIES,
    description: str = "rpc call",
    **kwargs: Any,
) -> T:
    """Invoke ``method`` with exponential backoff on transport errors.

    Raises:
        RpcError: If every attempt failed with a transport error.
    """

    def _on_backoff(details: Any) -> None:
        logger.warning(
            "RPC %s failed (attempt %d of %d): %s",
            description,
            details["tries"],
            max_tries,
            details.get("exception"),
        )

    @backoff.on_exception(
        backoff.expo,
        TRANSPORT_ERRORS,
        max_tries=max_tries,
        factor=0.5,
        max_value=8,
        jitter=backoff.full_jitter,
        on_backoff=_on_backoff,
    )
    def _call() -> T:
        return method(*args, **kwargs)

    try:
        return _call()
    except TRANSPORT_ERRORS as exc:
        raise RpcError(
            f"RPC {description} failed after {max_tries} attempt(s): {exc}"
        ) from exc


def fetch_slot(client: Any, max_tries: int = DEFAULT_MAX_TRIES) -> int:
    response = call_with_retry(
        client.get_slot, max_tries=max_tries, description="getSlot"
    )
    return int(response.value)


def fetch_account(
    client: Any, pubkey: Pubkey, max_tries: int = DEFAULT_MAX_TRIES
) -> bytes:
    """Return the raw data of one account.

    Raises:
        AccountNotFound: If no account exists at ``pubkey``.
    """
    response = call_with_retry(
        client.get_account_info,
        pubkey,
        encoding="base64",
        max_tries=max_tries,
        description=f"getAccountInfo({pubkey})",
    )
    if response.value is None:
        raise AccountNotFound(f"Account {pubkey} not found")
    return bytes(response.value.data)


def fetch_token_accounts_by_owner(
    client: Any,
    owner: Pubkey,
    mint: Pubkey,
    max_tries: int = DEFAULT_MAX_TRIES,
) -> list[tuple[Pubkey, bytes]]:
    """Return ``(token_account, data)`` for every SPL account of ``owner`` for ``mint``."""
    response = call_with_retry(
        client.get_token_accounts_by_owner,
        owner,
        TokenAccountOpts(mint=mint),
        max_tries=max_tries,
        description=f"getTokenAccountsByOwner({owner}, {mint})",
    )
    return [(keyed.pubkey, bytes(keyed.account.data)) for keyed in response.value]
