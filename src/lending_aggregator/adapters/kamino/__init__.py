from __future__ import annotations

from .adapter import KaminoAdapter, KaminoMarket

__all__ = ["KaminoAdapter", "KaminoMarket"]
