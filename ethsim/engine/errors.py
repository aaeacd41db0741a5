"""Error taxonomy for the trading simulator.

Every error here is recoverable: command handlers and the poller catch
``EthSimError`` and keep running.
"""

from __future__ import annotations

from decimal import Decimal


class EthSimError(Exception):
    """Base class for all simulator errors."""


class PriceFetchError(EthSimError):
    """The price source could not produce a usable price."""


class InvalidInput(EthSimError):
    """User input failed validation; nothing was changed."""


class InsufficientBalance(EthSimError):
    """A trade would drive a balance negative; nothing was changed."""

    def __init__(self, asset: str, required: Decimal, available: Decimal):
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(
            f"insufficient {asset} balance: need {required}, have {available}"
        )


class PersistenceError(EthSimError):
    """Reading or writing the portfolio snapshot failed."""


class UninitializedUser(EthSimError):
    """The user has no portfolio yet and must run /start first."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"user {user_id} has no portfolio")
