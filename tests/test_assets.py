from lending_aggregator.assets import (
    ASSET_MAP,
    get_symbol_for_mint,
    get_valid_assets,
    supported_mints,
)
from lending_aggregator.constants import ASSETS, AssetInfo

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOL = "So11111111111111111111111111111111111111112"


def test_symbol_lookup_covers_known_mints():
    assert get_symbol_for_mint(USDC) == "USDC"
    assert get_symbol_for_mint(SOL) == "SOL"
    assert get_symbol_for_mint("unknown") is None
    assert len(ASSET_MAP) == len(ASSETS)


def test_only_valid_assets_are_tracked():
    assets = (AssetInfo("USDC", USDC, True), AssetInfo("SOL", SOL, False))

    assert supported_mints(assets) == [USDC]
    tracked = get_valid_assets(assets)
    assert list(tracked) == [USDC]
    assert tracked[USDC].symbol == "USDC"
    assert tracked[USDC].lending_reserves == []


def test_valid_assets_are_fresh_each_call():
    first = get_valid_assets()
    first[USDC].lending_reserves.append("stale")

    assert get_valid_assets()[USDC].lending_reserves == []
