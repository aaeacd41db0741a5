"""Trade executor — applies one intent to one user's portfolio.

Pure function over a single portfolio value. Balance checks are repeated
here even for intents the evaluator already vetted: a manual trade may
have changed the balance between evaluation and execution.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from ethsim.engine.errors import InsufficientBalance, InvalidInput
from ethsim.engine.evaluator import TradeIntent
from ethsim.storage.models import Transaction, UserPortfolio, utcnow


def _check_intent(user_id: str, intent: TradeIntent, portfolio: UserPortfolio) -> None:
    if intent.user_id != user_id or portfolio.user_id != user_id:
        raise InvalidInput(
            f"intent for {intent.user_id} applied to portfolio of {portfolio.user_id}"
        )
    if intent.price <= 0:
        raise InvalidInput("price must be positive")
    if intent.eth_amount <= 0 or intent.usd_amount <= 0:
        raise InvalidInput("trade amounts must be positive")


def execute(
    user_id: str,
    intent: TradeIntent,
    portfolio: UserPortfolio,
    now: dt.datetime | None = None,
) -> tuple[UserPortfolio, Transaction]:
    """Apply ``intent`` and return the new portfolio plus its transaction.

    Raises:
        InsufficientBalance: the source asset cannot cover the trade.
        InvalidInput: the intent is malformed or belongs to another user.
    """
    _check_intent(user_id, intent, portfolio)

    eth = portfolio.eth_balance
    usd = portfolio.usd_balance
    if intent.is_buy:
        if usd < intent.usd_amount:
            raise InsufficientBalance("USD", intent.usd_amount, usd)
        usd -= intent.usd_amount
        eth += intent.eth_amount
    else:
        if eth < intent.eth_amount:
            raise InsufficientBalance("ETH", intent.eth_amount, eth)
        eth -= intent.eth_amount
        usd += intent.usd_amount

    timestamp = now or utcnow()
    last = portfolio.last_timestamp
    if last is not None and timestamp < last:
        timestamp = last

    tx = Transaction(
        kind=intent.kind,
        eth_amount=intent.eth_amount,
        price=intent.price,
        usd_amount=intent.usd_amount,
        timestamp=timestamp,
    )
    updated = portfolio.model_copy(update={
        "eth_balance": eth,
        "usd_balance": usd,
        "transactions": portfolio.transactions + (tx,),
    })
    return updated, tx


def credit(portfolio: UserPortfolio, eth: Decimal = Decimal("0"), usd: Decimal = Decimal("0")) -> UserPortfolio:
    """Top up balances without recording a trade."""
    if eth < 0 or usd < 0:
        raise InvalidInput("credit amounts must not be negative")
    return portfolio.model_copy(update={
        "eth_balance": portfolio.eth_balance + eth,
        "usd_balance": portfolio.usd_balance + usd,
    })
