"""Ledger address constants."""

from typing import NamedTuple

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


class NamedMarket(NamedTuple):
    """A protocol sub-market (pool / lending market) and its display name."""

    address: str
    name: str


class AssetInfo(NamedTuple):
    symbol: str
    mint: str
    is_valid: bool


# Tokens the aggregator knows about; only valid ones are tracked.
ASSETS: tuple[AssetInfo, ...] = (
    AssetInfo("SOL", "So11111111111111111111111111111111111111112", False),
    AssetInfo("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", True),
    AssetInfo("USDT", "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", False),
)

# --- Save (Solend) ---
SAVE_PROGRAM_ID = "So1endDq2YkqhipRh3WViPa8hdiSpxWy6z3Z6tMCpAo"
SAVE_POOLS: tuple[NamedMarket, ...] = (
    NamedMarket("4UpD2fh7xH3VP9QQaXtsS1YY3bxzWhtfpks7FatyKvdY", "Main Pool"),
    NamedMarket("7XttJ7hp83u5euzT7ybC5zsjdgKA4WPbQHVS27CATAJH", "JLP Pool"),
    NamedMarket("ErM46rCeAtGtEKjvZ3tuGrzL6L5nVq6pFuXukocbKqGX", "JLP/SOL/USDC Pool"),
    NamedMarket("7RCz8wb6WXxUhAigok9ttgrVgDFFFbibcirECzWSBauM", "Turbo SOL Pool"),
)

# --- Marginfi ---
MARGINFI_PROGRAM_ID = "MFv2hWf31Z9kbCa1snEPYctwafyhdvnV7FZnsebVacA"
MARGINFI_GROUP = NamedMarket("4qp6Fx6tnZkY5Wropq9wUYgtFxXKwE6viZxFHg3rdAG8", "Global Pool")

# --- Kamino ---
KAMINO_PROGRAM_ID = "KLend2g3cP87fffoy8q1mQqGKjrxjC8boSyAYavgmjD"
KAMINO_MARKETS: tuple[NamedMarket, ...] = (
    NamedMarket("7u3HeHxYDLhnCoErrtycNokbQYbWGzLs6JSDqGAv5PfF", "Main Market"),
    NamedMarket("H6rHXmXoCQvq8Ue81MqNh7ow5ysPa1dSozwW3PU1dDH6", "JITO Market"),
    NamedMarket("DxXdAyU3kCjnyggvHmY5nAwg5cRbbmdyX3npfDMjjMek", "JLP Market"),
    NamedMarket("ByYiZxp8QrdN9qbdtaAiePN8AAr3qvTPppNJDpf5DVJ5", "Altcoins Market"),
    NamedMarket("BJnbcRHqvppTyGesLzWASGKnmnF1wq9jZu6ExrjT7wvF", "Ethena Market"),
)

# --- Drift ---
DRIFT_PROGRAM_ID = "dRiftyHA39MWEi3m9aunc5MzRF1JYuBsbn6VPcn33UH"

UNKNOWN_SYMBOL = "UNKNOWN"
UNKNOWN_MARKET = "Unknown"
