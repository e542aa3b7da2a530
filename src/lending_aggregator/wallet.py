"""SPL token balances held directly by a wallet."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from solders.pubkey import Pubkey

from .assets import get_symbol_for_mint
from .codec.layout import AccountReader, parse_pubkey
from .constants import UNKNOWN_SYMBOL
from .errors import DeserializationError
from .logger import get_logger
from .models import TokenBalance
from .rpc.batch import DEFAULT_BATCH_SIZE, get_multiple_accounts
from .rpc.calls import DEFAULT_MAX_TRIES, fetch_token_accounts_by_owner

logger = get_logger(__name__)

TOKEN_ACCOUNT_LEN = 165
MINT_LEN = 82
MINT_DECIMALS_OFFSET = 44
DEFAULT_DECIMALS = 6


@dataclass(frozen=True)
class TokenAccount:
    mint: Pubkey
    owner: Pubkey
    amount: int


def decode_token_account(data: bytes) -> TokenAccount:
    r = AccountReader(data, name="token account", min_size=TOKEN_ACCOUNT_LEN)
    return TokenAccount(mint=r.pubkey(0), owner=r.pubkey(32), amount=r.u64(64))


def decode_mint_decimals(data: bytes) -> int:
    return AccountReader(data, name="mint", min_size=MINT_LEN).u8(MINT_DECIMALS_OFFSET)


def fetch_wallet_token_balances(
    client: Any,
    wallet: str,
    mints: Iterable[str],
    *,
    default_decimals: int = DEFAULT_DECIMALS,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_tries: int = DEFAULT_MAX_TRIES,
) -> list[TokenBalance]:
    """Return one balance per mint, summed over every token account the wallet owns.

    Mints the wallet holds no account for report a zero balance. Decimals come from
    the mint account, or ``default_decimals`` when it cannot be read.

    Raises:
        InvalidAddress: If ``wallet`` or a mint is not a valid address.
    """
    owner = parse_pubkey(wallet, "wallet address")
    mint_keys = [parse_pubkey(mint, "mint") for mint in mints]

    mint_accounts = get_multiple_accounts(
        client, mint_keys, batch_size=batch_size, max_tries=max_tries
    )

    balances: list[TokenBalance] = []
    for mint in mint_keys:
        decimals = default_decimals
        if mint in mint_accounts:
            try:
                decimals = decode_mint_decimals(mint_accounts[mint])
            except DeserializationError as exc:
                logger.debug("Cannot read decimals of mint %s: %s", mint, exc)

        amount = 0
        first_account = ""
        for address, data in fetch_token_accounts_by_owner(
            client, owner, mint, max_tries=max_tries
        ):
            try:
                account = decode_token_account(data)
            except DeserializationError as exc:
                logger.debug("Skipping token account %s: %s", address, exc)
                continue
            amount += account.amount
            first_account = first_account or str(address)

        balances.append(
            TokenBalance(
                symbol=get_symbol_for_mint(str(mint)) or UNKNOWN_SYMBOL,
                mint=str(mint),
                amount=amount,
                decimals=decimals,
                token_account=first_account,
            )
        )
    return balances
