from __future__ import annotations

from .adapter import DriftAdapter, DriftMarket, spot_market_address

__all__ = ["DriftAdapter", "DriftMarket", "spot_market_address"]
