from __future__ import annotations

from .adapter import SaveAdapter, SaveMarket

__all__ = ["SaveAdapter", "SaveMarket"]
