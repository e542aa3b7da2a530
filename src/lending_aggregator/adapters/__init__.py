from __future__ import annotations

from ..normalize.config import Protocol
from .base import AdapterState, BaseLendingAdapter, MarketData, MarketRecord
from .drift import DriftAdapter
from .kamino import KaminoAdapter
from .marginfi import MarginfiAdapter
from .save import SaveAdapter

ADAPTER_REGISTRY: dict[Protocol, type[BaseLendingAdapter]] = {
    Protocol.SAVE: SaveAdapter,
    Protocol.MARGINFI: MarginfiAdapter,
    Protocol.KAMINO: KaminoAdapter,
    Protocol.DRIFT: DriftAdapter,
}

LENDING_ADAPTERS: list[type[BaseLendingAdapter]] = list(ADAPTER_REGISTRY.values())


def get_adapter_class(adapter_name: str | Protocol) -> type[BaseLendingAdapter]:
    """Get adapter class by protocol name.

    Args:
        adapter_name: Protocol or its name (case-insensitive)

    Returns:
        Adapter class

    Raises:
        ValueError: If adapter_name is not recognized
    """
    if isinstance(adapter_name, Protocol):
        return ADAPTER_REGISTRY[adapter_name]
    by_name = {protocol.value.lower(): protocol for protocol in ADAPTER_REGISTRY}
    protocol = by_name.get(adapter_name.lower())
    if protocol is None:
        raise ValueError(
            f"Unknown adapter '{adapter_name}'. "
            f"Available: {', '.join(p.value for p in ADAPTER_REGISTRY)}"
        )
    return ADAPTER_REGISTRY[protocol]


__all__ = [
    "ADAPTER_REGISTRY",
    "AdapterState",
    "BaseLendingAdapter",
    "DriftAdapter",
    "KaminoAdapter",
    "LENDING_ADAPTERS",
    "MarginfiAdapter",
    "MarketData",
    "MarketRecord",
    "SaveAdapter",
    "get_adapter_class",
]
