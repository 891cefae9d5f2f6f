"""
Whisper Market CLI

Read-only command-line interface for browsing prediction markets.

Usage:
    whispermarket markets [--limit N] [--offset N] [--active]
    whispermarket market <market_id>
    whispermarket quote <market_id> --side yes|no --amount <microcredits>
    whispermarket fee <function>
"""

import asyncio
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .client import WhisperMarketClient
from .config import load_config
from .constants import BPS_SCALE
from .exceptions import WhisperMarketException
from .exchange.amm import format_price_cents, quote_swap
from .logger import LogManager
from .market.state import MarketStatus
from .program import FUNCTION_FEES_CREDITS, fee_for_function, format_credits

console = Console()


def _status_name(status: int) -> str:
    try:
        return MarketStatus(status).name.lower()
    except ValueError:
        return f"unknown ({status})"


def _format_last_update(value: Optional[int]) -> str:
    """Registry ``last_price_update``: a bps price renders in cents, anything else raw."""
    if value is None:
        return "-"
    if 0 <= value <= BPS_SCALE:
        return format_price_cents(value)
    return str(value)


def _run(config_path: Optional[str], action):
    """Run ``action(client)`` against a fresh client, mapping domain errors to click errors."""
    async def runner():
        async with WhisperMarketClient(load_config(config_path)) as client:
            return await action(client)

    try:
        return asyncio.run(runner())
    except WhisperMarketException as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(version="0.1.0", prog_name="whispermarket")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to whisper.toml")
@click.option("--log-level", default=None, help="Logging level (DEBUG, INFO, ...)")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]):
    """Whisper Market command line interface

    Browse markets, read state and quote swaps.
    """
    if log_level:
        LogManager().set_level(log_level)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command("markets")
@click.option("--limit", "-l", type=int, default=None, help="Maximum number of markets")
@click.option("--offset", "-o", type=int, default=0, help="Number of markets to skip")
@click.option("--active", is_flag=True, help="Only open markets")
@click.pass_context
def markets_cmd(ctx: click.Context, limit: Optional[int], offset: int, active: bool):
    """List markets from the on-chain registry.

    Examples:

        whispermarket markets --active --limit 10
    """
    listings = _run(
        ctx.obj["config_path"],
        lambda client: client.list_markets(limit=limit, offset=offset, active_only=active),
    )
    if not listings:
        console.print("[yellow]No markets found[/yellow]")
        return

    table = Table(title="Markets")
    table.add_column("Market ID", style="cyan", overflow="fold")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Last update", justify="right")
    for listing in listings:
        entry = listing.entry
        table.add_row(
            entry.market_id,
            listing.metadata.title,
            listing.metadata.category,
            _status_name(entry.status),
            _format_last_update(entry.last_price_update),
        )
    console.print(table)


@cli.command("market")
@click.argument("market_id")
@click.pass_context
def market_cmd(ctx: click.Context, market_id: str):
    """Show the current state of one market."""
    state = _run(ctx.obj["config_path"], lambda client: client.market_state.get_market_state(market_id))

    table = Table(title=f"Market {state.market_id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Status", _status_name(state.status))
    table.add_row("YES price", f"{format_price_cents(state.price_yes)} ({state.price_source.value})")
    table.add_row("NO price", format_price_cents(state.price_no))
    table.add_row("YES reserve", str(state.yes_reserve))
    table.add_row("NO reserve", str(state.no_reserve))
    table.add_row("Collateral pool", f"{format_credits(state.collateral_pool)} credits")
    table.add_row("Fee", f"{state.fee_bps} bps")
    if state.outcome is not None:
        table.add_row("Outcome", "YES" if state.outcome else "NO")
    console.print(table)


@cli.command("quote")
@click.argument("market_id")
@click.option("--side", "-s", type=click.Choice(["yes", "no"]), required=True, help="Outcome to buy")
@click.option("--amount", "-a", type=int, required=True, help="Collateral in microcredits")
@click.pass_context
def quote_cmd(ctx: click.Context, market_id: str, side: str, amount: int):
    """Quote a collateral → shares swap against current reserves.

    Examples:

        whispermarket quote 1234567890123field --side yes --amount 1000000
    """
    state = _run(ctx.obj["config_path"], lambda client: client.market_state.get_market_state(market_id))
    try:
        quote = quote_swap(amount, state.yes_reserve, state.no_reserve, state.fee_bps, side)
    except WhisperMarketException as e:
        raise click.ClickException(str(e))

    table = Table(title=f"Swap {format_credits(amount)} credits → {side.upper()}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Minted (complete sets)", str(quote.minted))
    table.add_row("Fee", str(quote.fee))
    table.add_row("Swapped out", str(quote.swapped_out))
    table.add_row(f"Total {side.upper()} shares", str(quote.total_out))
    table.add_row("YES price before", format_price_cents(state.price_yes))
    table.add_row("YES price after", format_price_cents(quote.price_after_bps))
    console.print(table)


@cli.command("fee")
@click.argument("function", required=False)
def fee_cmd(function: Optional[str]):
    """Show the execution fee of one function, or all of them."""
    names = [function] if function else list(FUNCTION_FEES_CREDITS)
    table = Table(title="Execution fees")
    table.add_column("Function", style="cyan")
    table.add_column("Credits", justify="right")
    table.add_column("Microcredits", justify="right")
    for name in names:
        try:
            fee = fee_for_function(name)
        except WhisperMarketException as e:
            raise click.ClickException(str(e))
        table.add_row(name, format_credits(fee), str(fee))
    console.print(table)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
