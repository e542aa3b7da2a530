"""CLI entrypoint for the lending aggregator."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer

from .aggregator import LendingAggregator
from .errors import InvalidAddress
from .logger import setup_logging
from .models import MintAsset
from .settings import CONFIG_ENV_VAR, AggregatorSettings
from .state import AppState
from .units import amount_to_tokens, format_large_number, rate_to_percent

app = typer.Typer(
    add_completion=False,
    no_args_is_help=False,
    add_help_option=True,
    pretty_exceptions_enable=True,
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
    help="Aggregate lending markets and wallet positions across Solana protocols.",
)


def _build_logger() -> logging.Logger:
    return logging.getLogger("lending_aggregator")


def _state(ctx: typer.Context) -> AppState:
    return ctx.ensure_object(AppState)


def _echo_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2))


def _format_markets(assets: dict[str, MintAsset], decimals: dict[str, int]) -> str:
    lines = []
    for asset in assets.values():
        lines.append(f"{asset.symbol} ({asset.mint})")
        for reserve in asset.lending_reserves:
            token_decimals = decimals.get(asset.mint, 0)
            supply = amount_to_tokens(reserve.total_supply, token_decimals)
            borrows = amount_to_tokens(reserve.total_borrows, token_decimals)
            lines.append(
                f"  {reserve.protocol_name:<9} {reserve.market_name:<20} "
                f"supply {format_large_number(supply):>9}  "
                f"borrows {format_large_number(borrows):>9}  "
                f"supply APY {rate_to_percent(reserve.supply_apy):6.2f}%  "
                f"borrow APY {rate_to_percent(reserve.borrow_apy):6.2f}%"
            )
    return "\n".join(lines)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to a TOML config file (can include [lending_aggregator] table).",
        ),
    ] = None,
    rpc_url: Annotated[
        str | None,
        typer.Option("--rpc-url", help="Solana RPC endpoint."),
    ] = None,
    protocols: Annotated[
        str | None,
        typer.Option(
            "--protocols",
            help="Comma-separated protocols to enable (Save, Marginfi, Kamino, Drift).",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Override logging verbosity (TRACE, DEBUG, INFO, ...).",
        ),
    ] = None,
    show_config: Annotated[
        bool,
        typer.Option(
            "--show-config",
            help="Print effective config (with secrets redacted) and exit.",
        ),
    ] = False,
):
    """Load configuration and hand it to the selected command."""
    if config_path:
        os.environ[CONFIG_ENV_VAR] = str(config_path)

    init_kwargs: dict[str, str] = {}
    if rpc_url is not None:
        init_kwargs["rpc_url"] = rpc_url
    if protocols is not None:
        init_kwargs["enabled_protocols"] = protocols
    if log_level is not None:
        init_kwargs["log_level"] = log_level.upper()

    settings = AggregatorSettings(**init_kwargs)

    setup_logging(settings.log_level)
    ctx.obj = AppState(settings=settings, logger=_build_logger())

    if show_config:
        _echo_json(settings.as_safe_dict())
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)


@app.command()
def markets(
    ctx: typer.Context,
    human: Annotated[
        bool,
        typer.Option("--human", help="Print a readable table instead of JSON."),
    ] = False,
):
    """Load every enabled protocol and print the per-token market view."""
    state = _state(ctx)
    aggregator = LendingAggregator(state.settings)
    assets = aggregator.load_markets()

    if human:
        decimals = {
            market.mint: market.decimals
            for adapter in aggregator.adapters
            for market in adapter.markets
        }
        typer.echo(_format_markets(assets, decimals))
        return
    _echo_json({mint: asset.to_dict() for mint, asset in assets.items()})


@app.command()
def obligations(
    ctx: typer.Context,
    wallet: Annotated[str, typer.Argument(help="Wallet address to inspect.")],
):
    """Print every deposit and loan held by WALLET."""
    state = _state(ctx)
    aggregator = LendingAggregator(state.settings)
    try:
        positions = aggregator.get_user_obligations(wallet)
    except InvalidAddress as exc:
        raise typer.BadParameter(str(exc), param_hint="WALLET") from exc
    state.logger.debug("Found %d position(s) for %s", len(positions), wallet)
    _echo_json([position.to_dict() for position in positions])


@app.command()
def balances(
    ctx: typer.Context,
    wallet: Annotated[str, typer.Argument(help="Wallet address to inspect.")],
):
    """Print WALLET's token balances for every supported asset."""
    state = _state(ctx)
    aggregator = LendingAggregator(state.settings)
    try:
        token_balances = aggregator.fetch_wallet_token_balances(wallet)
    except InvalidAddress as exc:
        raise typer.BadParameter(str(exc), param_hint="WALLET") from exc
    _echo_json([asdict(balance) for balance in token_balances])


def run() -> None:
    """Entrypoint used by the console script."""
    app()


if __name__ == "__main__":
    run()
