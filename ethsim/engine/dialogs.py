"""Chat dialogs as explicit state machines.

``SetupWizard`` collects an auto-trade config one answer at a time:

    AWAIT_BUY -> AWAIT_SELL -> AWAIT_USD_AMOUNT -> AWAIT_ETH_AMOUNT -> DONE

Each state owns one validator. Invalid input leaves the state unchanged
and returns the re-prompt text. ``ManualTradeDialog`` is the one-question
dialog behind /buy and /sell.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Callable

from ethsim.engine.autotrade_config import AutoTradeConfig
from ethsim.engine.errors import InvalidInput
from ethsim.messages import POSITIVE_NUMBER

INVALID_PRICE = "Invalid price. Please enter a valid number:"
INVALID_AMOUNT = "Invalid amount. Please enter a positive number:"
SELL_NOT_ABOVE_BUY = "Sell price must be higher than buy price. Please enter a higher sell price:"


def parse_positive(text: str, error: str = INVALID_AMOUNT) -> Decimal:
    """Parse user text as a finite, strictly positive decimal."""
    cleaned = (text or "").strip().lstrip("$").replace(",", "")
    try:
        value = Decimal(cleaned)
    except InvalidOperation as e:
        raise InvalidInput(error) from e
    if not value.is_finite() or value <= 0:
        raise InvalidInput(error)
    return value


class SetupState(str, enum.Enum):
    AWAIT_BUY = "AWAIT_BUY"
    AWAIT_SELL = "AWAIT_SELL"
    AWAIT_USD_AMOUNT = "AWAIT_USD_AMOUNT"
    AWAIT_ETH_AMOUNT = "AWAIT_ETH_AMOUNT"
    DONE = "DONE"


PROMPTS: dict[SetupState, str] = {
    SetupState.AWAIT_BUY: "Enter the price at which you want to automatically BUY ETH (e.g., 1830):",
    SetupState.AWAIT_SELL: "Enter the price at which you want to automatically SELL ETH (e.g., 1832):",
    SetupState.AWAIT_USD_AMOUNT: "Enter the USD amount you want to spend on each auto-buy (e.g., 500):",
    SetupState.AWAIT_ETH_AMOUNT: "Enter the ETH amount you want to sell on each auto-sell (e.g., 1):",
}


@dataclass
class StepResult:
    state: SetupState
    reply: str
    advanced: bool
    config: AutoTradeConfig | None = None

    @property
    def done(self) -> bool:
        return self.state is SetupState.DONE


@dataclass
class SetupWizard:
    """Collects buy_at, sell_at, trade_amount_usd and eth_amount_per_sell."""
    notify_target: str = ""
    state: SetupState = SetupState.AWAIT_BUY
    answers: dict[str, Decimal] = field(default_factory=dict)

    @property
    def prompt(self) -> str:
        return PROMPTS.get(self.state, "")

    def _validators(self) -> dict[SetupState, tuple[str, Callable[[str], Decimal], SetupState]]:
        return {
            SetupState.AWAIT_BUY: ("buy_at", self._read_buy, SetupState.AWAIT_SELL),
            SetupState.AWAIT_SELL: ("sell_at", self._read_sell, SetupState.AWAIT_USD_AMOUNT),
            SetupState.AWAIT_USD_AMOUNT: ("trade_amount_usd", self._read_amount, SetupState.AWAIT_ETH_AMOUNT),
            SetupState.AWAIT_ETH_AMOUNT: ("eth_amount_per_sell", self._read_amount, SetupState.DONE),
        }

    def _read_buy(self, text: str) -> Decimal:
        return parse_positive(text, INVALID_PRICE)

    def _read_sell(self, text: str) -> Decimal:
        value = parse_positive(text, INVALID_PRICE)
        if value <= self.answers["buy_at"]:
            raise InvalidInput(SELL_NOT_ABOVE_BUY)
        return value

    def _read_amount(self, text: str) -> Decimal:
        return parse_positive(text, INVALID_AMOUNT)

    def feed(self, text: str) -> StepResult:
        """Consume one answer.

        Raises InvalidInput if the wizard has already finished.
        """
        if self.state is SetupState.DONE:
            raise InvalidInput("setup already finished")

        key, validator, next_state = self._validators()[self.state]
        try:
            self.answers[key] = validator(text)
        except InvalidInput as e:
            return StepResult(state=self.state, reply=str(e), advanced=False)

        self.state = next_state
        if next_state is not SetupState.DONE:
            return StepResult(state=next_state, reply=self.prompt, advanced=True)

        config = AutoTradeConfig(
            buy_at=self.answers["buy_at"],
            sell_at=self.answers["sell_at"],
            trade_amount_usd=self.answers["trade_amount_usd"],
            eth_amount_per_sell=self.answers["eth_amount_per_sell"],
            enabled=True,
            notify_target=self.notify_target,
        )
        return StepResult(state=SetupState.DONE, reply="", advanced=True, config=config)


class TradeSide(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass
class ManualTradeDialog:
    """Asks once for the amount of a manual trade (USD for buys, ETH for sells)."""
    side: TradeSide
    done: bool = False

    def read_amount(self, text: str) -> Decimal:
        """Parse the amount. Invalid input raises and keeps the dialog open."""
        amount = parse_positive(text, POSITIVE_NUMBER)
        self.done = True
        return amount
