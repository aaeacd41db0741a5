"""CLI entry point for the ETH trading simulator.

Commands:
  ethsim run                 — Start the Telegram bot with the auto-trade poller
  ethsim poll                — Run the auto-trade poller without the bot
  ethsim tick                — Run a single auto-trade tick and exit
  ethsim price               — Show the current ETH price
  ethsim balance --user ID   — Show a user's balances
  ethsim history --user ID   — Show a user's recent transactions
  ethsim configs             — List stored auto-trade configs
  ethsim backup              — Back up the SQLite database
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from ethsim import messages
from ethsim.app import Services, build_services
from ethsim.config import BotConfig, load_config
from ethsim.observability.logger import configure_logging, get_logger

load_dotenv()

console = Console()
log = get_logger(__name__)


def _run(coro: Any) -> Any:
    """Run an async coroutine from sync CLI."""
    return asyncio.run(coro)


def _open(cfg: BotConfig) -> Services:
    svc = build_services(cfg)
    svc.startup()
    return svc


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """ETH Trading Simulator."""
    ctx.ensure_object(dict)
    cfg = load_config(config_path)
    ctx.obj["config"] = cfg
    configure_logging(
        level=cfg.observability.log_level,
        fmt=cfg.observability.log_format,
        log_file=cfg.observability.log_file,
    )


# ─── RUN ─────────────────────────────────────────────────────────────

@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the Telegram bot and the auto-trade poller."""
    from ethsim.bot.handlers import build_application
    from telegram import Update

    cfg: BotConfig = ctx.obj["config"]
    svc = _open(cfg)
    app = build_application(svc)
    console.print(
        f"[bold green]🤖 Bot starting[/bold green] "
        f"(auto-trade checks every {cfg.poller.interval_secs:g}s)"
    )
    app.run_polling(
        drop_pending_updates=cfg.telegram.drop_pending_updates,
        allowed_updates=Update.ALL_TYPES,
    )


@cli.command()
@click.pass_context
def poll(ctx: click.Context) -> None:
    """Run the auto-trade poller headless (notifications go to the log)."""
    cfg: BotConfig = ctx.obj["config"]

    async def _poll() -> None:
        svc = _open(cfg)
        try:
            await svc.poller.start(install_signal_handlers=True)
        finally:
            await svc.shutdown()

    _run(_poll())


@cli.command()
@click.pass_context
def tick(ctx: click.Context) -> None:
    """Run a single auto-trade tick."""
    cfg: BotConfig = ctx.obj["config"]

    async def _tick() -> dict[str, Any]:
        svc = _open(cfg)
        try:
            result = await svc.poller.run_tick()
        finally:
            await svc.shutdown()
        return result.to_dict()

    console.print_json(json.dumps(_run(_tick())))


# ─── READ-ONLY ───────────────────────────────────────────────────────

@cli.command()
@click.pass_context
def price(ctx: click.Context) -> None:
    """Show the current ETH price."""
    from ethsim.connectors.price_feed import CoinGeckoPriceFeed

    cfg: BotConfig = ctx.obj["config"]

    async def _price() -> tuple[Any, bool]:
        feed = CoinGeckoPriceFeed(cfg.price_feed)
        try:
            value = await feed.fetch_current_price()
        finally:
            await feed.close()
        return value, feed.last_was_fallback

    value, fallback = _run(_price())
    suffix = " [yellow](fallback)[/yellow]" if fallback else ""
    console.print(messages.price(value) + suffix)


@cli.command()
@click.option("--user", "user_id", required=True, help="Telegram user id")
@click.pass_context
def balance(ctx: click.Context, user_id: str) -> None:
    """Show a user's balances."""
    cfg: BotConfig = ctx.obj["config"]
    svc = _open(cfg)
    try:
        portfolio = svc.store.get(user_id)
    finally:
        _run(svc.shutdown())
    if portfolio is None:
        console.print(f"[red]No portfolio for user {user_id}[/red]")
        raise SystemExit(1)

    table = Table(title=f"📊 Balance — {user_id}")
    table.add_column("Asset", style="cyan")
    table.add_column("Amount", justify="right", style="green")
    table.add_row("ETH", messages.eth(portfolio.eth_balance))
    table.add_row("USD", f"${messages.usd(portfolio.usd_balance)}")
    table.add_row("Trades", str(len(portfolio.transactions)))
    console.print(table)


@cli.command()
@click.option("--user", "user_id", required=True, help="Telegram user id")
@click.option("--limit", default=10, help="Number of transactions to show")
@click.pass_context
def history(ctx: click.Context, user_id: str, limit: int) -> None:
    """Show a user's recent transactions."""
    cfg: BotConfig = ctx.obj["config"]
    svc = _open(cfg)
    try:
        portfolio = svc.store.get(user_id)
    finally:
        _run(svc.shutdown())
    if portfolio is None:
        console.print(f"[red]No portfolio for user {user_id}[/red]")
        raise SystemExit(1)

    table = Table(title=f"📜 Last {limit} Transactions — {user_id}")
    table.add_column("Time", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("ETH", justify="right")
    table.add_column("Price", justify="right", style="yellow")
    table.add_column("USD", justify="right", style="green")
    for tx in portfolio.recent(limit):
        table.add_row(
            tx.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            tx.kind.value,
            messages.eth(tx.eth_amount),
            f"${tx.price}",
            f"${messages.usd(tx.usd_amount)}",
        )
    console.print(table)


@cli.command()
@click.pass_context
def configs(ctx: click.Context) -> None:
    """List stored auto-trade configs."""
    cfg: BotConfig = ctx.obj["config"]
    svc = _open(cfg)
    try:
        items = svc.registry.items()
    finally:
        _run(svc.shutdown())

    table = Table(title=f"⚙️ Auto-Trade Configs ({len(items)})")
    table.add_column("User", style="dim")
    table.add_column("Buy at", justify="right")
    table.add_column("Sell at", justify="right")
    table.add_column("USD/buy", justify="right")
    table.add_column("ETH/sell", justify="right")
    table.add_column("Status")
    for user_id, c in items:
        table.add_row(
            user_id,
            str(c.buy_at or "-"),
            str(c.sell_at or "-"),
            str(c.trade_amount_usd),
            str(c.eth_amount_per_sell),
            "[green]ENABLED[/green]" if c.enabled else "[red]DISABLED[/red]",
        )
    console.print(table)


@cli.command()
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Back up the SQLite database."""
    from ethsim.storage.backup import backup_database

    cfg: BotConfig = ctx.obj["config"]
    path = backup_database(
        source_path=cfg.storage.sqlite_path,
        backup_dir=cfg.storage.backup_dir,
        max_backups=cfg.storage.max_backups,
    )
    console.print(f"[green]✅ Backup written to {path}[/green]")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
