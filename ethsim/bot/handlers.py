"""Telegram chat surface.

Commands:
  /start      — create the portfolio (DEFAULT_ETH, 0 USD)
  /balance    — balances and total value at the current price
  /price      — current ETH price
  /history    — last transactions
  /buy /sell  — one-question manual trade dialogs
  /donate     — top-up keyboard
  /autotrade  — setup / show / enable / disable keyboard
  /cancel     — abandon an open dialog

Open dialogs live in ``context.user_data["dialog"]``; free text is routed
to whichever dialog is open.
"""

from __future__ import annotations

import functools
import re
from decimal import Decimal
from typing import Any, Awaitable, Callable

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ethsim import messages
from ethsim.app import Services
from ethsim.engine.dialogs import ManualTradeDialog, SetupWizard, TradeSide
from ethsim.engine.errors import InsufficientBalance, InvalidInput, UninitializedUser
from ethsim.observability.logger import get_logger, log_context

log = get_logger(__name__)

_DIALOG_KEY = "dialog"
_DONATE_RE = re.compile(r"^donate_(eth|usd)_(\d+)$")


def _services(context: ContextTypes.DEFAULT_TYPE) -> Services:
    return context.application.bot_data["services"]


def _user_id(update: Update) -> str:
    return str(update.effective_user.id)


def _chat_id(update: Update) -> str:
    return str(update.effective_chat.id)


Handler = Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]


def _with_user(handler: Handler) -> Handler:
    """Bind the sender's user id to every event the handler logs."""
    @functools.wraps(handler)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        with log_context(user_id=str(user.id) if user else None):
            await handler(update, context)
    return wrapper


def autotrade_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("Setup Auto-Trade", callback_data="autotrade_setup")],
        [InlineKeyboardButton("Show Current Configuration", callback_data="autotrade_show")],
        [InlineKeyboardButton("Enable Auto-Trading", callback_data="autotrade_enable")],
        [InlineKeyboardButton("Disable Auto-Trading", callback_data="autotrade_disable")],
    ])


def donate_keyboard(eth_options: list[int], usd_options: list[int]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(f"{a} ETH", callback_data=f"donate_eth_{a}") for a in eth_options],
        [InlineKeyboardButton(f"${a:,} USD", callback_data=f"donate_usd_{a}") for a in usd_options],
    ])


# ── Commands ─────────────────────────────────────────────────────────

async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    svc = _services(context)
    _, created = await svc.desk.start_user(_user_id(update))
    if created:
        await update.message.reply_text(messages.welcome(svc.config.trading.default_eth))
    else:
        await update.message.reply_text(messages.welcome_back())


async def cmd_balance(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        portfolio, price = await _services(context).desk.balance(_user_id(update))
    except UninitializedUser:
        await update.message.reply_text(messages.NEED_START)
        return
    await update.message.reply_text(messages.balance(portfolio, price))


async def cmd_price(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    price = await _services(context).desk.current_price()
    await update.message.reply_text(messages.price(price))


async def cmd_history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    svc = _services(context)
    try:
        transactions = svc.desk.history(_user_id(update))
    except UninitializedUser:
        transactions = ()
    if not transactions:
        await update.message.reply_text(messages.NO_HISTORY)
        return
    await update.message.reply_text(
        messages.history(transactions, svc.config.trading.history_limit)
    )


async def _open_trade_dialog(
    update: Update, context: ContextTypes.DEFAULT_TYPE, side: TradeSide,
) -> None:
    svc = _services(context)
    try:
        portfolio, price = await svc.desk.balance(_user_id(update))
    except UninitializedUser:
        await update.message.reply_text(messages.NEED_START)
        return
    context.user_data[_DIALOG_KEY] = ManualTradeDialog(side=side)
    if side is TradeSide.BUY:
        await update.message.reply_text(messages.buy_prompt(price, portfolio.usd_balance))
    else:
        await update.message.reply_text(messages.sell_prompt(price, portfolio.eth_balance))


async def cmd_buy(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _open_trade_dialog(update, context, TradeSide.BUY)


async def cmd_sell(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _open_trade_dialog(update, context, TradeSide.SELL)


async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    context.user_data.pop(_DIALOG_KEY, None)
    await update.message.reply_text(messages.DIALOG_CANCELLED)


async def cmd_donate(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    svc = _services(context)
    if _user_id(update) not in svc.store:
        await update.message.reply_text(messages.NEED_START)
        return
    cfg = svc.config.trading
    await update.message.reply_text(
        messages.DONATE_MENU,
        reply_markup=donate_keyboard(cfg.donate_eth_options, cfg.donate_usd_options),
    )


async def cmd_autotrade(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if _user_id(update) not in _services(context).store:
        await update.message.reply_text(messages.NEED_START)
        return
    await update.message.reply_text(messages.AUTOTRADE_MENU, reply_markup=autotrade_keyboard())


# ── Inline keyboard ──────────────────────────────────────────────────

async def on_button(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    svc = _services(context)
    user_id = _user_id(update)
    data = query.data or ""

    if data == "autotrade_setup":
        if user_id not in svc.store:
            await query.message.reply_text(messages.NEED_START)
            return
        wizard = SetupWizard(notify_target=_chat_id(update))
        context.user_data[_DIALOG_KEY] = wizard
        await query.message.reply_text(wizard.prompt)
        return

    if data == "autotrade_show":
        config = svc.desk.show_autotrade(user_id)
        await query.edit_message_text(
            messages.config_show(config) if config else messages.config_missing("show")
        )
        return

    if data == "autotrade_enable":
        config = svc.desk.enable_autotrade(user_id, notify_target=_chat_id(update))
        await query.edit_message_text(
            messages.autotrade_toggled(True) if config else messages.config_missing("enable")
        )
        return

    if data == "autotrade_disable":
        config = svc.desk.disable_autotrade(user_id)
        await query.edit_message_text(
            messages.autotrade_toggled(False) if config else messages.config_missing("disable")
        )
        return

    match = _DONATE_RE.match(data)
    if match:
        asset, amount = match.group(1).upper(), Decimal(match.group(2))
        try:
            await svc.desk.donate(user_id, asset, amount)
        except UninitializedUser:
            await query.message.reply_text(messages.NEED_START)
            return
        except InvalidInput as e:
            await query.edit_message_text(str(e))
            return
        await query.edit_message_text(messages.donated(asset, amount))
        return

    log.warning("bot.unknown_callback", data=data)


# ── Free text ────────────────────────────────────────────────────────

async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    dialog = context.user_data.get(_DIALOG_KEY)
    if dialog is None:
        return
    text = update.message.text or ""

    if isinstance(dialog, SetupWizard):
        await _continue_setup(update, context, dialog, text)
    elif isinstance(dialog, ManualTradeDialog):
        await _continue_trade(update, context, dialog, text)


async def _continue_setup(
    update: Update, context: ContextTypes.DEFAULT_TYPE, wizard: SetupWizard, text: str,
) -> None:
    svc = _services(context)
    step = wizard.feed(text)
    if not step.done:
        await update.message.reply_text(step.reply)
        return
    context.user_data.pop(_DIALOG_KEY, None)
    try:
        svc.desk.save_autotrade(_user_id(update), step.config)
    except UninitializedUser:
        await update.message.reply_text(messages.NEED_START)
        return
    await update.message.reply_text(
        messages.config_saved(step.config, svc.config.poller.interval_secs)
    )


async def _continue_trade(
    update: Update, context: ContextTypes.DEFAULT_TYPE, dialog: ManualTradeDialog, text: str,
) -> None:
    svc = _services(context)
    user_id = _user_id(update)
    try:
        amount = dialog.read_amount(text)
    except InvalidInput as e:
        await update.message.reply_text(str(e))
        return

    context.user_data.pop(_DIALOG_KEY, None)
    try:
        if dialog.side is TradeSide.BUY:
            portfolio, tx = await svc.desk.manual_buy(user_id, amount)
        else:
            portfolio, tx = await svc.desk.manual_sell(user_id, amount)
    except InsufficientBalance as e:
        await update.message.reply_text(messages.insufficient(e.asset, e.available))
        return
    except UninitializedUser:
        await update.message.reply_text(messages.NEED_START)
        return
    await update.message.reply_text(messages.trade_receipt(tx, portfolio))


# ── Errors ───────────────────────────────────────────────────────────

async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    log.error("bot.handler_error", error=str(context.error), exc_info=context.error)
    if isinstance(update, Update) and update.effective_message is not None:
        try:
            await update.effective_message.reply_text(messages.GENERIC_ERROR)
        except Exception as e:
            log.warning("bot.error_reply_failed", error=str(e))


# ── Application ──────────────────────────────────────────────────────

def build_application(services: Services) -> Application:
    """Build the bot; the poller starts with it and stops before the bot client closes."""
    token = services.config.telegram.bot_token
    if not token:
        raise RuntimeError("Missing TELEGRAM_BOT_TOKEN env var")

    async def _post_init(app: Application) -> None:
        async def _send(target: str, text: str) -> Any:
            return await app.bot.send_message(chat_id=target, text=text)

        services.notifier.attach(_send)
        services.start_poller()

    async def _post_stop(app: Application) -> None:
        # The bot client is still open here, so a finishing tick can notify
        services.poller.stop()
        await services.poller.wait_stopped()

    async def _post_shutdown(app: Application) -> None:
        await services.shutdown()

    app = (
        Application.builder()
        .token(token)
        .post_init(_post_init)
        .post_stop(_post_stop)
        .post_shutdown(_post_shutdown)
        .build()
    )
    app.bot_data["services"] = services

    app.add_handler(CommandHandler("start", _with_user(cmd_start)))
    app.add_handler(CommandHandler("balance", _with_user(cmd_balance)))
    app.add_handler(CommandHandler("price", _with_user(cmd_price)))
    app.add_handler(CommandHandler("history", _with_user(cmd_history)))
    app.add_handler(CommandHandler("buy", _with_user(cmd_buy)))
    app.add_handler(CommandHandler("sell", _with_user(cmd_sell)))
    app.add_handler(CommandHandler("cancel", _with_user(cmd_cancel)))
    app.add_handler(CommandHandler("donate", _with_user(cmd_donate)))
    app.add_handler(CommandHandler("autotrade", _with_user(cmd_autotrade)))
    app.add_handler(CallbackQueryHandler(_with_user(on_button)))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, _with_user(on_text)))
    app.add_error_handler(on_error)
    return app
