"""Auto-trade rules and the process-scoped registry that holds them.

One ``AutoTradeConfig`` per user. The registry starts empty and is
injected into the poller and the trading desk; nothing reads it as
module-level state.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ethsim.observability.logger import get_logger

log = get_logger(__name__)


class AutoTradeConfig(BaseModel):
    """Standing buy/sell conditions for one user."""
    model_config = ConfigDict(frozen=True)

    buy_at: Decimal | None = Field(default=None, gt=0)
    sell_at: Decimal | None = Field(default=None, gt=0)
    trade_amount_usd: Decimal = Field(gt=0)
    eth_amount_per_sell: Decimal = Field(gt=0)
    enabled: bool = True
    notify_target: str = ""

    @model_validator(mode="after")
    def _sell_above_buy(self) -> "AutoTradeConfig":
        if (
            self.buy_at is not None
            and self.sell_at is not None
            and self.sell_at <= self.buy_at
        ):
            raise ValueError("sell_at must be higher than buy_at")
        return self


ConfigListener = Callable[[str, AutoTradeConfig], None]


class ConfigRegistry:
    """In-memory map of user id -> AutoTradeConfig."""

    def __init__(self) -> None:
        self._configs: dict[str, AutoTradeConfig] = {}
        self._listeners: list[ConfigListener] = []

    def __len__(self) -> int:
        return len(self._configs)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._configs

    def on_change(self, callback: ConfigListener) -> None:
        """Register a callback fired after every put/toggle."""
        self._listeners.append(callback)

    def _notify(self, user_id: str, config: AutoTradeConfig) -> None:
        for cb in self._listeners:
            try:
                cb(user_id, config)
            except Exception as e:
                log.warning("config_registry.listener_error", user_id=user_id, error=str(e))

    def get(self, user_id: str) -> AutoTradeConfig | None:
        return self._configs.get(user_id)

    def put(self, user_id: str, config: AutoTradeConfig) -> None:
        """Create or wholesale-replace a user's config."""
        self._configs[user_id] = config
        log.info(
            "config_registry.put",
            user_id=user_id,
            buy_at=str(config.buy_at),
            sell_at=str(config.sell_at),
            enabled=config.enabled,
        )
        self._notify(user_id, config)

    def set_enabled(
        self,
        user_id: str,
        enabled: bool,
        notify_target: str | None = None,
    ) -> AutoTradeConfig | None:
        """Toggle a config. Returns None when the user has none."""
        current = self._configs.get(user_id)
        if current is None:
            return None
        update: dict[str, object] = {"enabled": enabled}
        if notify_target:
            update["notify_target"] = notify_target
        updated = current.model_copy(update=update)
        self._configs[user_id] = updated
        log.info("config_registry.toggled", user_id=user_id, enabled=enabled)
        self._notify(user_id, updated)
        return updated

    def has_enabled(self) -> bool:
        return any(c.enabled for c in self._configs.values())

    def enabled_items(self) -> list[tuple[str, AutoTradeConfig]]:
        return [(uid, c) for uid, c in self._configs.items() if c.enabled]

    def items(self) -> list[tuple[str, AutoTradeConfig]]:
        return list(self._configs.items())

    def restore(self, configs: Iterable[tuple[str, AutoTradeConfig]]) -> None:
        """Load persisted configs without firing listeners."""
        for user_id, config in configs:
            self._configs[user_id] = config
