"""User-facing message texts shared by the chat bot and the poller."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from ethsim.engine.autotrade_config import AutoTradeConfig
from ethsim.storage.models import Transaction, UserPortfolio

NEED_START = "Please use /start to initialize your account."
POSITIVE_NUMBER = "Please enter a positive number."
NO_HISTORY = "You have no transaction history yet."
GENERIC_ERROR = "An error occurred while processing your request."
DIALOG_CANCELLED = "Cancelled."
AUTOTRADE_MENU = "⚙️ Auto-Trading Configuration\n\nPlease select an option:"
DONATE_MENU = "What would you like to add to your account?"


def eth(value: Decimal) -> str:
    return f"{value:.4f}"


def usd(value: Decimal) -> str:
    return f"{value:.2f}"


def welcome(default_eth: Decimal) -> str:
    return (
        "Welcome to ETH Trading Simulator Bot!\n\n"
        f"You have been credited with {default_eth} ETH to start trading.\n\n"
        "Use /balance to check your balance\n"
        "Use /buy to buy ETH with USD\n"
        "Use /sell to sell ETH for USD\n"
        "Use /price to check current ETH price\n"
        "Use /history to view your transaction history\n"
        "Use /autotrade to set up automated trading"
    )


def welcome_back() -> str:
    return "Welcome back! Your account is already set up. Use /balance to check it."


def price(value: Decimal) -> str:
    return f"Current ETH Price: ${value}"


def balance(portfolio: UserPortfolio, current_price: Decimal) -> str:
    return (
        "📊 Your Balance:\n\n"
        f"ETH: {eth(portfolio.eth_balance)} ETH\n"
        f"USD: ${usd(portfolio.usd_balance)}\n\n"
        f"Current ETH Price: ${current_price}\n"
        f"Total Portfolio Value: ${usd(portfolio.value_usd(current_price))}"
    )


def history(transactions: Iterable[Transaction], limit: int) -> str:
    lines = [f"📜 Your Last {limit} Transactions:\n"]
    for tx in transactions:
        when = tx.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")
        lines.append(
            f"{when} - {tx.kind.value}: {eth(tx.eth_amount)} ETH at ${tx.price} "
            f"(${usd(tx.usd_amount)})\n"
        )
    return "\n".join(lines)


def buy_prompt(current_price: Decimal, usd_balance: Decimal) -> str:
    return (
        f"Current ETH Price: ${current_price}\n"
        f"Your USD Balance: ${usd(usd_balance)}\n\n"
        "How much USD do you want to spend on ETH? Enter the USD amount:"
    )


def sell_prompt(current_price: Decimal, eth_balance: Decimal) -> str:
    return (
        f"Current ETH Price: ${current_price}\n"
        f"Your ETH Balance: {eth(eth_balance)} ETH\n\n"
        "How much ETH do you want to sell? Enter the ETH amount:"
    )


def insufficient(asset: str, available: Decimal) -> str:
    if asset == "ETH":
        return f"You don't have enough ETH. Your balance is {eth(available)} ETH."
    return f"You don't have enough USD. Your balance is ${usd(available)}."


def _trade_lines(tx: Transaction, portfolio: UserPortfolio) -> str:
    verb = "Bought" if tx.kind.is_buy else "Sold"
    return (
        f"{verb}: {eth(tx.eth_amount)} ETH\n"
        f"Price: ${tx.price}\n"
        f"Total: ${usd(tx.usd_amount)}\n\n"
        f"New ETH Balance: {eth(portfolio.eth_balance)} ETH\n"
        f"New USD Balance: ${usd(portfolio.usd_balance)}"
    )


def trade_receipt(tx: Transaction, portfolio: UserPortfolio) -> str:
    header = "🤖 Auto-Trade Executed!" if tx.kind.is_auto else "Transaction Successful!"
    return f"{header}\n\n" + _trade_lines(tx, portfolio)


def _config_lines(config: AutoTradeConfig) -> str:
    return (
        f"Buy at: {config.buy_at if config.buy_at is not None else '-'}\n"
        f"Sell at: {config.sell_at if config.sell_at is not None else '-'}\n"
        f"USD per buy: {config.trade_amount_usd}\n"
        f"ETH per sell: {config.eth_amount_per_sell}"
    )


def config_saved(config: AutoTradeConfig, interval_secs: float) -> str:
    return (
        "✅ Auto-Trading Configuration Saved!\n\n"
        f"{_config_lines(config)}\n\n"
        "Auto-trading is now ENABLED. The system will check prices every "
        f"{interval_secs:g} seconds."
    )


def config_show(config: AutoTradeConfig) -> str:
    return (
        "📊 Your Auto-Trading Configuration\n\n"
        f"{_config_lines(config)}\n\n"
        f"Status: {'ENABLED' if config.enabled else 'DISABLED'}"
    )


def config_missing(action: str = "show") -> str:
    if action == "enable":
        return "You have not set up auto-trading yet. Use the Setup option first."
    if action == "disable":
        return "You have not set up auto-trading yet."
    return "You have not set up auto-trading yet. Use the Setup option to configure."


def autotrade_toggled(enabled: bool) -> str:
    if enabled:
        return "✅ Auto-trading has been ENABLED."
    return "❌ Auto-trading has been DISABLED."


def donated(asset: str, amount: Decimal) -> str:
    if asset == "ETH":
        return f"Added {amount} ETH to your account! Use /balance to check your new balance."
    return f"Added ${amount} to your account! Use /balance to check your new balance."
