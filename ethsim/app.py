"""Service wiring — builds and tears down the process-scoped objects.

One ``Services`` instance owns the database, portfolio store, config
registry, price feed, notifier, desk and poller. The chat bot and the CLI
both go through it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from ethsim.config import BotConfig
from ethsim.connectors.price_feed import CoinGeckoPriceFeed
from ethsim.engine.autotrade_config import AutoTradeConfig, ConfigRegistry
from ethsim.engine.desk import TradingDesk
from ethsim.engine.errors import PersistenceError
from ethsim.engine.poller import AutoTradePoller
from ethsim.observability.logger import get_logger
from ethsim.observability.metrics import metrics
from ethsim.observability.notifications import Notifier
from ethsim.storage.database import Database
from ethsim.storage.portfolio_store import PortfolioStore

log = get_logger(__name__)


@dataclass
class Services:
    config: BotConfig
    db: Database
    store: PortfolioStore
    registry: ConfigRegistry
    price_feed: CoinGeckoPriceFeed
    notifier: Notifier
    desk: TradingDesk
    poller: AutoTradePoller
    poller_task: asyncio.Task[None] | None = None

    def startup(self) -> None:
        """Open the database and load portfolios and configs."""
        self.db.connect()
        users = self.store.load()
        self.registry.restore(self.db.load_configs())
        self.registry.on_change(self._save_config)
        log.info(
            "app.started",
            users=users,
            configs=len(self.registry),
            enabled=len(self.registry.enabled_items()),
        )

    def _save_config(self, user_id: str, config: AutoTradeConfig) -> None:
        try:
            self.db.save_config(user_id, config)
        except PersistenceError as e:
            log.error("app.config_persist_error", user_id=user_id, error=str(e))

    def start_poller(self) -> None:
        if not self.config.poller.enabled:
            log.info("app.poller_disabled")
            return
        self.poller_task = asyncio.create_task(self.poller.start())

    async def shutdown(self) -> None:
        """Stop the timer, let the in-flight tick finish, flush, close."""
        if self.poller_task is not None:
            self.poller.stop()
            await self.poller.wait_stopped()
            self.poller_task = None
        if self.store.dirty:
            try:
                await self.store.persist()
            except PersistenceError as e:
                log.error("app.final_persist_error", error=str(e))
        await self.price_feed.close()
        self.db.close()
        log.info("app.stopped", metrics=metrics.snapshot()["counters"])


def build_services(config: BotConfig) -> Services:
    db = Database(config.storage)
    store = PortfolioStore(db)
    registry = ConfigRegistry()
    price_feed = CoinGeckoPriceFeed(config.price_feed)
    notifier = Notifier()
    desk = TradingDesk(store, registry, price_feed, config.trading)
    poller = AutoTradePoller(
        store, registry, price_feed, notifier,
        interval_secs=config.poller.interval_secs,
    )
    return Services(
        config=config,
        db=db,
        store=store,
        registry=registry,
        price_feed=price_feed,
        notifier=notifier,
        desk=desk,
        poller=poller,
    )
