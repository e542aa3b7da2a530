"""Supported-token allow-list."""

from __future__ import annotations

from collections.abc import Iterable

from .constants import ASSETS, AssetInfo
from .models import MintAsset

ASSET_MAP: dict[str, AssetInfo] = {asset.mint: asset for asset in ASSETS}


def get_symbol_for_mint(mint: str) -> str | None:
    """Symbol of a known mint (valid or not), else None."""
    info = ASSET_MAP.get(mint)
    return info.symbol if info else None


def supported_mints(assets: Iterable[AssetInfo] = ASSETS) -> list[str]:
    return [asset.mint for asset in assets if asset.is_valid]


def get_valid_assets(assets: Iterable[AssetInfo] = ASSETS) -> dict[str, MintAsset]:
    """Fresh ``MintAsset`` entries (with empty reserve lists) for every valid token."""
    return {
        asset.mint: MintAsset(name=asset.symbol, symbol=asset.symbol, mint=asset.mint)
        for asset in assets
        if asset.is_valid
    }
