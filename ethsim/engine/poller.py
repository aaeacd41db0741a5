"""Auto-trade poller — the recurring tick driver.

Every ``interval_secs`` (default 10s):
  1. Skip entirely when no auto-trade config is enabled (no price fetch,
     no state read, no write)
  2. Fetch one price (the feed falls back on failure)
  3. Snapshot portfolios and evaluate every enabled config
  4. Execute each intent under that user's lock, re-checking balances
  5. Persist the full portfolio set once if anything changed
  6. Notify each executed trade's target

A failure inside one tick is logged and the loop carries on with the next
one. ``stop()`` lets the in-flight tick finish before the loop exits.
"""

from __future__ import annotations

import asyncio
import signal
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from ethsim import messages
from ethsim.connectors.price_feed import CoinGeckoPriceFeed
from ethsim.engine.autotrade_config import ConfigRegistry
from ethsim.engine.errors import EthSimError, PersistenceError
from ethsim.engine.evaluator import TradeIntent, evaluate
from ethsim.engine.executor import execute
from ethsim.observability.logger import get_logger, log_context
from ethsim.observability.metrics import metrics
from ethsim.observability.notifications import Notifier
from ethsim.storage.models import Transaction, UserPortfolio
from ethsim.storage.portfolio_store import PortfolioStore

log = get_logger(__name__)


@dataclass
class ExecutedTrade:
    intent: TradeIntent
    transaction: Transaction
    portfolio: UserPortfolio


@dataclass
class TickResult:
    """Summary of one tick."""
    tick_id: int
    started_at: float
    ended_at: float = 0.0
    duration_secs: float = 0.0
    price: Decimal | None = None
    intents: int = 0
    trades: list[ExecutedTrade] = field(default_factory=list)
    persisted: bool = False
    errors: list[str] = field(default_factory=list)
    status: str = "pending"  # skipped | completed

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_id": self.tick_id,
            "duration_secs": round(self.duration_secs, 4),
            "price": str(self.price) if self.price is not None else None,
            "intents": self.intents,
            "trades_executed": len(self.trades),
            "persisted": self.persisted,
            "errors": list(self.errors),
            "status": self.status,
        }


class AutoTradePoller:
    """Runs the evaluate/execute/persist/notify cycle on a timer."""

    def __init__(
        self,
        store: PortfolioStore,
        registry: ConfigRegistry,
        price_feed: CoinGeckoPriceFeed,
        notifier: Notifier,
        interval_secs: float = 10.0,
        history_size: int = 100,
    ):
        self._store = store
        self._registry = registry
        self._price_feed = price_feed
        self._notifier = notifier
        self._interval = interval_secs
        self._history_size = history_size
        self._running = False
        self._tick_count = 0
        self._tick_history: list[TickResult] = []
        self._wake = asyncio.Event()
        self._stopped = asyncio.Event()
        self._stopped.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def interval_secs(self) -> float:
        return self._interval

    @property
    def tick_history(self) -> list[TickResult]:
        return list(self._tick_history)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self, install_signal_handlers: bool = False) -> None:
        """Tick until ``stop()`` is called."""
        self._running = True
        self._stopped.clear()
        self._wake.clear()

        if install_signal_handlers:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                try:
                    loop.add_signal_handler(sig, self._handle_signal, sig)
                except (NotImplementedError, RuntimeError):
                    pass  # Windows or non-main thread

        log.info("poller.starting", interval_secs=self._interval)
        try:
            while self._running:
                try:
                    await self.run_tick()
                except Exception as e:
                    metrics.incr("poller.tick_errors")
                    log.exception("poller.tick_error", error=str(e))
                if self._running:
                    try:
                        await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
                    except asyncio.TimeoutError:
                        pass
        finally:
            self._running = False
            self._stopped.set()
            log.info("poller.stopped", total_ticks=self._tick_count)

    def stop(self) -> None:
        """Request shutdown; an in-flight tick is allowed to finish."""
        log.info("poller.stop_requested")
        self._running = False
        self._wake.set()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def _handle_signal(self, sig: signal.Signals) -> None:
        log.info("poller.signal_received", signal=sig.name)
        self.stop()

    # ── Tick ─────────────────────────────────────────────────────────

    async def run_tick(self) -> TickResult:
        self._tick_count += 1
        tick = TickResult(tick_id=self._tick_count, started_at=time.time())

        if not self._registry.has_enabled():
            tick.status = "skipped"
            metrics.incr("poller.ticks_skipped")
            self._finish_tick(tick)
            return tick

        with log_context(tick_id=tick.tick_id):
            await self._trade(tick)
        self._finish_tick(tick)
        return tick

    async def _trade(self, tick: TickResult) -> None:
        log.info("poller.tick_start")
        price = await self._price_feed.fetch_current_price()
        tick.price = price

        intents = evaluate(price, self._registry.enabled_items(), self._store.snapshot())
        tick.intents = len(intents)

        for intent in intents:
            trade = await self._apply(intent)
            if trade is not None:
                tick.trades.append(trade)

        if tick.trades or self._store.dirty:
            try:
                tick.persisted = await self._store.persist()
            except PersistenceError as e:
                log.error("poller.persist_error", error=str(e))
                tick.errors.append(f"persist: {e}")

        for trade in tick.trades:
            await self._notifier.notify(
                trade.intent.notify_target,
                messages.trade_receipt(trade.transaction, trade.portfolio),
            )

        tick.status = "completed"

    async def _apply(self, intent: TradeIntent) -> ExecutedTrade | None:
        try:
            portfolio, tx = await self._store.transact(
                intent.user_id,
                lambda current: execute(intent.user_id, intent, current),
            )
        except EthSimError as e:
            # Balance moved since the snapshot, or the user vanished
            metrics.incr("poller.intents_dropped")
            log.info("poller.intent_dropped", error=str(e), **intent.to_dict())
            return None

        metrics.incr(f"trades.{intent.kind.value.lower()}")
        log.info("poller.trade_executed", **intent.to_dict())
        return ExecutedTrade(intent=intent, transaction=tx, portfolio=portfolio)

    def _finish_tick(self, tick: TickResult) -> None:
        tick.ended_at = time.time()
        tick.duration_secs = tick.ended_at - tick.started_at
        metrics.incr("poller.ticks")
        metrics.histogram("poller.tick_duration_secs", tick.duration_secs)

        self._tick_history.append(tick)
        if len(self._tick_history) > self._history_size:
            self._tick_history = self._tick_history[-self._history_size:]

        if tick.status != "skipped":
            log.info("poller.tick_complete", **tick.to_dict())
