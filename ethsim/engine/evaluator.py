"""Auto-trade evaluator — turns one price tick into trade intents.

For every enabled config the two legs are checked in a fixed order:

  1. Buy leg:  buy_at set, price <= buy_at, usd_balance >= trade_amount_usd
  2. Sell leg: sell_at set, price >= sell_at, eth_balance >= eth_amount_per_sell

Both legs are judged against the same portfolio snapshot and may fire in
the same tick. Evaluation is pure: it reads the snapshot and returns
intents, it never touches storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from ethsim.engine.autotrade_config import AutoTradeConfig
from ethsim.observability.logger import get_logger
from ethsim.storage.models import TransactionKind, UserPortfolio

log = get_logger(__name__)


@dataclass(frozen=True)
class TradeIntent:
    """A proposed trade, not yet applied."""
    user_id: str
    kind: TransactionKind
    eth_amount: Decimal
    usd_amount: Decimal
    price: Decimal
    notify_target: str = ""

    @property
    def is_buy(self) -> bool:
        return self.kind.is_buy

    def to_dict(self) -> dict[str, str]:
        return {
            "user_id": self.user_id,
            "kind": self.kind.value,
            "eth_amount": str(self.eth_amount),
            "usd_amount": str(self.usd_amount),
            "price": str(self.price),
        }


def buy_intent(
    user_id: str,
    usd_amount: Decimal,
    price: Decimal,
    kind: TransactionKind = TransactionKind.BUY,
    notify_target: str = "",
) -> TradeIntent:
    """Spend ``usd_amount`` on ETH at ``price``."""
    return TradeIntent(
        user_id=user_id,
        kind=kind,
        eth_amount=usd_amount / price,
        usd_amount=usd_amount,
        price=price,
        notify_target=notify_target,
    )


def sell_intent(
    user_id: str,
    eth_amount: Decimal,
    price: Decimal,
    kind: TransactionKind = TransactionKind.SELL,
    notify_target: str = "",
) -> TradeIntent:
    """Sell ``eth_amount`` ETH at ``price``."""
    return TradeIntent(
        user_id=user_id,
        kind=kind,
        eth_amount=eth_amount,
        usd_amount=eth_amount * price,
        price=price,
        notify_target=notify_target,
    )


def evaluate_user(
    user_id: str,
    price: Decimal,
    config: AutoTradeConfig,
    portfolio: UserPortfolio,
) -> list[TradeIntent]:
    """Evaluate both legs for a single user."""
    intents: list[TradeIntent] = []
    if not config.enabled:
        return intents

    if config.buy_at is not None and price <= config.buy_at:
        if portfolio.usd_balance >= config.trade_amount_usd:
            intents.append(buy_intent(
                user_id, config.trade_amount_usd, price,
                kind=TransactionKind.AUTO_BUY,
                notify_target=config.notify_target,
            ))
        else:
            log.debug(
                "evaluator.buy_skipped_balance",
                user_id=user_id,
                usd_balance=str(portfolio.usd_balance),
                required=str(config.trade_amount_usd),
            )

    if config.sell_at is not None and price >= config.sell_at:
        if portfolio.eth_balance >= config.eth_amount_per_sell:
            intents.append(sell_intent(
                user_id, config.eth_amount_per_sell, price,
                kind=TransactionKind.AUTO_SELL,
                notify_target=config.notify_target,
            ))
        else:
            log.debug(
                "evaluator.sell_skipped_balance",
                user_id=user_id,
                eth_balance=str(portfolio.eth_balance),
                required=str(config.eth_amount_per_sell),
            )

    return intents


def evaluate(
    price: Decimal,
    configs: Iterable[tuple[str, AutoTradeConfig]],
    portfolios: Mapping[str, UserPortfolio],
) -> list[TradeIntent]:
    """Compute all trade intents for one price tick.

    Users without a portfolio are ignored. A non-positive price never
    produces intents.
    """
    if price <= 0:
        return []
    intents: list[TradeIntent] = []
    for user_id, config in configs:
        portfolio = portfolios.get(user_id)
        if portfolio is None:
            continue
        intents.extend(evaluate_user(user_id, price, config, portfolio))
    return intents
