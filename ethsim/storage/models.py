"""Portfolio models — immutable Pydantic records for users and trades."""

from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class TransactionKind(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    AUTO_BUY = "AUTO_BUY"
    AUTO_SELL = "AUTO_SELL"

    @property
    def is_buy(self) -> bool:
        return self in (TransactionKind.BUY, TransactionKind.AUTO_BUY)

    @property
    def is_auto(self) -> bool:
        return self in (TransactionKind.AUTO_BUY, TransactionKind.AUTO_SELL)


class Transaction(BaseModel):
    """One executed trade. Immutable once appended."""
    model_config = ConfigDict(frozen=True)

    kind: TransactionKind
    eth_amount: Decimal = Field(gt=0)
    price: Decimal = Field(gt=0)
    usd_amount: Decimal = Field(gt=0)
    timestamp: dt.datetime = Field(default_factory=utcnow)


class UserPortfolio(BaseModel):
    """A user's ETH/USD balances and trade log.

    Portfolios are values: a trade produces a new portfolio that replaces
    the old one in the store.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    eth_balance: Decimal = Field(default=Decimal("0"), ge=0)
    usd_balance: Decimal = Field(default=Decimal("0"), ge=0)
    transactions: tuple[Transaction, ...] = ()

    @property
    def last_timestamp(self) -> dt.datetime | None:
        if not self.transactions:
            return None
        return self.transactions[-1].timestamp

    def value_usd(self, price: Decimal) -> Decimal:
        """Total portfolio value at ``price``."""
        return self.eth_balance * price + self.usd_balance

    def recent(self, limit: int) -> tuple[Transaction, ...]:
        if limit <= 0:
            return ()
        return self.transactions[-limit:]


def new_portfolio(
    user_id: str,
    eth_balance: Decimal,
    usd_balance: Decimal = Decimal("0"),
) -> UserPortfolio:
    return UserPortfolio(
        user_id=user_id, eth_balance=eth_balance, usd_balance=usd_balance,
    )
