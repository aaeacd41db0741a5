"""Tests for AutoTradeConfig validation and the ConfigRegistry."""

from __future__ import annotations

from decimal import Decimal

import pytest
from conftest import make_config
from pydantic import ValidationError

from ethsim.engine.autotrade_config import AutoTradeConfig, ConfigRegistry


class TestAutoTradeConfig:
    def test_valid(self) -> None:
        config = make_config()
        assert config.enabled
        assert config.notify_target == ""

    def test_sell_must_be_above_buy(self) -> None:
        with pytest.raises(ValidationError):
            make_config(buy_at=Decimal("2500"), sell_at=Decimal("2500"))

    @pytest.mark.parametrize("field", ["buy_at", "sell_at", "trade_amount_usd", "eth_amount_per_sell"])
    def test_amounts_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            make_config(**{field: Decimal("0")})

    def test_legs_are_optional(self) -> None:
        config = AutoTradeConfig(trade_amount_usd=Decimal("1"), eth_amount_per_sell=Decimal("1"))
        assert config.buy_at is None and config.sell_at is None

    def test_frozen(self) -> None:
        config = make_config()
        with pytest.raises(ValidationError):
            config.enabled = False  # type: ignore[misc]


class TestConfigRegistry:
    def test_put_and_get(self) -> None:
        registry = ConfigRegistry()
        registry.put("u1", make_config())
        assert "u1" in registry
        assert len(registry) == 1
        assert registry.get("u1") == make_config()
        assert registry.get("u2") is None

    def test_toggle(self) -> None:
        registry = ConfigRegistry()
        registry.put("u1", make_config())
        disabled = registry.set_enabled("u1", False)
        assert disabled is not None and not disabled.enabled
        assert not registry.has_enabled()
        assert registry.enabled_items() == []

        enabled = registry.set_enabled("u1", True, notify_target="chat-9")
        assert enabled is not None and enabled.enabled
        assert enabled.notify_target == "chat-9"
        assert registry.has_enabled()

    def test_toggle_missing_user(self) -> None:
        assert ConfigRegistry().set_enabled("nobody", True) is None

    def test_listeners_fire_on_change(self) -> None:
        seen: list[tuple[str, bool]] = []
        registry = ConfigRegistry()
        registry.on_change(lambda uid, c: seen.append((uid, c.enabled)))
        registry.put("u1", make_config())
        registry.set_enabled("u1", False)
        assert seen == [("u1", True), ("u1", False)]

    def test_listener_errors_do_not_propagate(self) -> None:
        registry = ConfigRegistry()

        def boom(uid: str, c: AutoTradeConfig) -> None:
            raise RuntimeError("disk full")

        registry.on_change(boom)
        registry.put("u1", make_config())
        assert registry.get("u1") is not None

    def test_restore_is_silent(self) -> None:
        seen: list[str] = []
        registry = ConfigRegistry()
        registry.on_change(lambda uid, c: seen.append(uid))
        registry.restore([("u1", make_config()), ("u2", make_config(enabled=False))])
        assert seen == []
        assert [uid for uid, _ in registry.enabled_items()] == ["u1"]
        assert len(registry.items()) == 2
