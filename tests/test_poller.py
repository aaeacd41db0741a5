"""Tests for the auto-trade poller tick and lifecycle."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import structlog
from conftest import make_config, make_feed, make_portfolio

from ethsim.config import PriceFeedConfig
from ethsim.connectors.price_feed import CoinGeckoPriceFeed
from ethsim.engine.autotrade_config import ConfigRegistry
from ethsim.engine.errors import PersistenceError
from ethsim.engine.poller import AutoTradePoller
from ethsim.observability.notifications import Notifier
from ethsim.storage.models import TransactionKind
from ethsim.storage.portfolio_store import PortfolioStore


async def _setup(usd: str = "1000", eth: str = "10000", price: str = "2390", enabled: bool = True):
    db = MagicMock()
    store = PortfolioStore(db)
    await store.create(make_portfolio(eth=eth, usd=usd))
    await store.persist()
    db.save_all.reset_mock()

    registry = ConfigRegistry()
    registry.put("u1", make_config(enabled=enabled, notify_target="chat-1"))
    feed = make_feed(price)
    sender = AsyncMock()
    poller = AutoTradePoller(store, registry, feed, Notifier(sender), interval_secs=0.01)
    return poller, store, db, feed, sender


class TestRunTick:
    @pytest.mark.asyncio
    async def test_no_enabled_configs_does_nothing(self) -> None:
        poller, store, db, feed, sender = await _setup(enabled=False)
        tick = await poller.run_tick()
        assert tick.status == "skipped"
        feed.fetch_current_price.assert_not_called()
        db.save_all.assert_not_called()
        sender.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_registry_does_nothing(self) -> None:
        store = PortfolioStore(MagicMock())
        feed = make_feed()
        poller = AutoTradePoller(store, ConfigRegistry(), feed, Notifier())
        tick = await poller.run_tick()
        assert tick.status == "skipped"
        feed.fetch_current_price.assert_not_called()

    @pytest.mark.asyncio
    async def test_auto_buy_executes_persists_and_notifies(self) -> None:
        poller, store, db, feed, sender = await _setup(usd="1000", price="2390")
        tick = await poller.run_tick()

        assert tick.status == "completed"
        assert tick.price == Decimal("2390")
        assert len(tick.trades) == 1
        assert tick.persisted

        portfolio = store.require("u1")
        assert portfolio.usd_balance == Decimal("0")
        assert portfolio.eth_balance == Decimal("10000") + Decimal("1000") / Decimal("2390")
        assert portfolio.transactions[-1].kind is TransactionKind.AUTO_BUY

        db.save_all.assert_called_once()
        sender.assert_awaited_once()
        target, text = sender.await_args.args
        assert target == "chat-1"
        assert text.startswith("🤖 Auto-Trade Executed!")

    @pytest.mark.asyncio
    async def test_insufficient_usd_means_no_trade(self) -> None:
        poller, store, db, feed, sender = await _setup(usd="400", price="2390")
        tick = await poller.run_tick()
        assert tick.trades == []
        assert store.require("u1").usd_balance == Decimal("400")
        db.save_all.assert_not_called()
        sender.assert_not_called()

    @pytest.mark.asyncio
    async def test_auto_sell(self) -> None:
        poller, store, db, feed, sender = await _setup(usd="0", eth="2", price="2600")
        tick = await poller.run_tick()
        assert [t.transaction.kind for t in tick.trades] == [TransactionKind.AUTO_SELL]
        portfolio = store.require("u1")
        assert portfolio.eth_balance == Decimal("1")
        assert portfolio.usd_balance == Decimal("2600")

    @pytest.mark.asyncio
    async def test_persistence_failure_is_recorded_not_raised(self) -> None:
        poller, store, db, feed, sender = await _setup()
        db.save_all.side_effect = PersistenceError("disk full")
        tick = await poller.run_tick()
        assert tick.status == "completed"
        assert not tick.persisted
        assert tick.errors and "disk full" in tick.errors[0]
        assert store.dirty
        # The trade stands in memory and the user is still told
        assert store.require("u1").usd_balance == Decimal("0")
        sender.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_undo_trade(self) -> None:
        poller, store, db, feed, sender = await _setup()
        sender.side_effect = RuntimeError("chat not found")
        tick = await poller.run_tick()
        assert len(tick.trades) == 1
        assert store.require("u1").usd_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_sell_threshold_is_inclusive(self) -> None:
        poller, store, db, feed, sender = await _setup(usd="1000", price="2500")
        tick = await poller.run_tick()
        assert [t.transaction.kind for t in tick.trades] == [TransactionKind.AUTO_SELL]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        poller, *_ = await _setup(enabled=False)
        task = asyncio.create_task(poller.start())
        while not poller.tick_history:
            await asyncio.sleep(0.005)
        assert poller.is_running
        poller.stop()
        await asyncio.wait_for(poller.wait_stopped(), timeout=1)
        await task
        assert not poller.is_running

    @pytest.mark.asyncio
    async def test_tick_error_does_not_stop_loop(self) -> None:
        poller, store, db, feed, sender = await _setup(usd="0")
        calls = {"n": 0}

        async def flaky() -> Decimal:
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("boom")
            return Decimal("2450")

        feed.fetch_current_price = flaky
        task = asyncio.create_task(poller.start())
        await asyncio.wait_for(_until(lambda: poller.tick_history), timeout=1)
        poller.stop()
        await asyncio.wait_for(task, timeout=1)
        assert poller.tick_history[0].status == "completed"
        assert calls["n"] >= 2

    def test_history_is_bounded(self) -> None:
        store = PortfolioStore()
        poller = AutoTradePoller(store, ConfigRegistry(), make_feed(), Notifier(), history_size=3)
        for _ in range(5):
            asyncio.run(poller.run_tick())
        assert [t.tick_id for t in poller.tick_history] == [3, 4, 5]


async def _until(predicate) -> None:
    while not predicate():
        await asyncio.sleep(0.005)


class TestScenarios:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("usd,expected_usd,trades", [
        ("1000", Decimal("500"), 1),
        ("400", Decimal("400"), 0),
    ])
    async def test_tick_at_2390(self, usd: str, expected_usd: Decimal, trades: int) -> None:
        store = PortfolioStore()
        await store.create(make_portfolio(eth="10000", usd=usd))
        registry = ConfigRegistry()
        registry.put("u1", make_config(
            sell_at=Decimal("2600"), trade_amount_usd=Decimal("500"),
        ))
        poller = AutoTradePoller(store, registry, make_feed("2390"), Notifier())

        tick = await poller.run_tick()

        portfolio = store.require("u1")
        assert len(tick.trades) == trades
        assert len(portfolio.transactions) == trades
        assert portfolio.usd_balance == expected_usd
        if trades:
            assert portfolio.transactions[0].eth_amount == Decimal("500") / Decimal("2390")


class TestPriceFailures:
    @pytest.mark.asyncio
    async def test_unparseable_price_response_uses_fallback(self) -> None:
        store = PortfolioStore()
        await store.create(make_portfolio(eth="10000", usd="0"))
        registry = ConfigRegistry()
        registry.put("u1", make_config())
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>rate limited</html>"))
        )
        feed = CoinGeckoPriceFeed(PriceFeedConfig(max_attempts=1), client=client)
        poller = AutoTradePoller(store, registry, feed, Notifier())
        try:
            tick = await poller.run_tick()
        finally:
            await feed.close()

        assert tick.status == "completed"
        assert tick.price == Decimal("2500")
        assert [t.transaction.kind for t in tick.trades] == [TransactionKind.AUTO_SELL]


class TestTickLogContext:
    @pytest.mark.asyncio
    async def test_tick_id_is_bound_during_tick(self) -> None:
        poller, store, db, feed, sender = await _setup()
        seen: list[dict] = []

        async def price() -> Decimal:
            seen.append(structlog.contextvars.get_contextvars())
            return Decimal("2450")

        feed.fetch_current_price = price
        tick = await poller.run_tick()
        assert seen == [{"tick_id": tick.tick_id}]
        assert "tick_id" not in structlog.contextvars.get_contextvars()
