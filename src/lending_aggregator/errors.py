"""Error taxonomy shared by the codec, RPC and aggregation layers."""

from __future__ import annotations


class LendingError(Exception):
    """Base class for every error raised by the aggregator."""


class InvalidAddress(LendingError):
    """A wallet, mint or market address string could not be parsed."""


class DeserializationError(LendingError):
    """Account bytes did not match the expected discriminator or layout."""


class AccountNotFound(LendingError):
    """No account exists at the requested address."""


class RpcError(LendingError):
    """Transport or timeout failure talking to the ledger endpoint."""


class MathOverflow(LendingError):
    """A fixed-point or normalization computation left its representable range."""


class ProtocolError(LendingError):
    """A protocol account the adapter depends on is missing or unreadable."""
