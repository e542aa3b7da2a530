from __future__ import annotations

from .adapter import MarginfiAdapter, MarginfiMarket

__all__ = ["MarginfiAdapter", "MarginfiMarket"]
