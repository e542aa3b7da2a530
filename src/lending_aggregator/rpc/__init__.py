from __future__ import annotations

from .batch import DEFAULT_BATCH_SIZE, get_multiple_accounts
from .calls import (
    call_with_retry,
    fetch_account,
    fetch_slot,
    fetch_token_accounts_by_owner,
)
from .pool import RpcConnectionPool
from .query import (
    DataSizeFilter,
    FilterPriority,
    MemcmpFilter,
    ProgramAccountQuery,
    optimize_filters,
)

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DataSizeFilter",
    "FilterPriority",
    "MemcmpFilter",
    "ProgramAccountQuery",
    "RpcConnectionPool",
    "call_with_retry",
    "fetch_account",
    "fetch_slot",
    "fetch_token_accounts_by_owner",
    "get_multiple_accounts",
    "optimize_filters",
]
