"""Trading desk — command-level operations behind the chat bot and CLI.

Manual trades go through the same executor as the auto legs and the same
per-user lock in the store, so a /buy racing an auto-trade tick is
serialized. The price is fetched before the lock is taken.
"""

from __future__ import annotations

from decimal import Decimal

from ethsim.config import TradingConfig
from ethsim.connectors.price_feed import CoinGeckoPriceFeed
from ethsim.engine.autotrade_config import AutoTradeConfig, ConfigRegistry
from ethsim.engine.errors import InvalidInput, PersistenceError
from ethsim.engine.evaluator import TradeIntent, buy_intent, sell_intent
from ethsim.engine.executor import credit, execute
from ethsim.observability.logger import get_logger
from ethsim.observability.metrics import metrics
from ethsim.storage.models import Transaction, UserPortfolio, new_portfolio
from ethsim.storage.portfolio_store import PortfolioStore

log = get_logger(__name__)


class TradingDesk:
    """Operations a user can trigger directly."""

    def __init__(
        self,
        store: PortfolioStore,
        registry: ConfigRegistry,
        price_feed: CoinGeckoPriceFeed,
        config: TradingConfig | None = None,
    ):
        self.store = store
        self.registry = registry
        self.price_feed = price_feed
        self.config = config or TradingConfig()

    # ── Accounts ─────────────────────────────────────────────────────

    async def start_user(self, user_id: str) -> tuple[UserPortfolio, bool]:
        """Create the user's portfolio on first contact."""
        portfolio, created = await self.store.create(new_portfolio(
            user_id,
            eth_balance=self.config.default_eth,
            usd_balance=self.config.default_usd,
        ))
        if created:
            await self._persist()
        return portfolio, created

    async def current_price(self) -> Decimal:
        return await self.price_feed.fetch_current_price()

    async def balance(self, user_id: str) -> tuple[UserPortfolio, Decimal]:
        self.store.require(user_id)
        price = await self.current_price()
        # Re-read after the await: a tick may have traded meanwhile
        return self.store.require(user_id), price

    def history(self, user_id: str, limit: int | None = None) -> tuple[Transaction, ...]:
        limit = self.config.history_limit if limit is None else limit
        return self.store.require(user_id).recent(limit)

    # ── Manual trades ────────────────────────────────────────────────

    async def manual_buy(
        self, user_id: str, usd_amount: Decimal, price: Decimal | None = None,
    ) -> tuple[UserPortfolio, Transaction]:
        """Spend ``usd_amount`` USD on ETH at the current price."""
        self.store.require(user_id)
        if usd_amount <= 0:
            raise InvalidInput("amount must be positive")
        if price is None:
            price = await self.current_price()
        return await self._trade(buy_intent(user_id, usd_amount, price))

    async def manual_sell(
        self, user_id: str, eth_amount: Decimal, price: Decimal | None = None,
    ) -> tuple[UserPortfolio, Transaction]:
        """Sell ``eth_amount`` ETH at the current price."""
        self.store.require(user_id)
        if eth_amount <= 0:
            raise InvalidInput("amount must be positive")
        if price is None:
            price = await self.current_price()
        return await self._trade(sell_intent(user_id, eth_amount, price))

    async def _trade(self, intent: TradeIntent) -> tuple[UserPortfolio, Transaction]:
        portfolio, tx = await self.store.transact(
            intent.user_id,
            lambda current: execute(intent.user_id, intent, current),
        )
        metrics.incr(f"trades.{intent.kind.value.lower()}")
        log.info("desk.trade_executed", **intent.to_dict())
        await self._persist()
        return portfolio, tx

    async def donate(self, user_id: str, asset: str, amount: Decimal) -> UserPortfolio:
        """Credit one of the fixed top-up options."""
        asset = asset.upper()
        if asset == "ETH":
            allowed = self.config.donate_eth_options
        elif asset == "USD":
            allowed = self.config.donate_usd_options
        else:
            raise InvalidInput(f"unknown asset {asset}")
        if amount not in [Decimal(a) for a in allowed]:
            raise InvalidInput(f"{amount} {asset} is not an available top-up")

        eth, usd = (amount, Decimal("0")) if asset == "ETH" else (Decimal("0"), amount)
        portfolio, _ = await self.store.transact(
            user_id, lambda current: (credit(current, eth=eth, usd=usd), None),
        )
        log.info("desk.donated", user_id=user_id, asset=asset, amount=str(amount))
        await self._persist()
        return portfolio

    async def _persist(self) -> None:
        try:
            await self.store.persist()
        except PersistenceError as e:
            # Memory keeps the change; the next successful write saves it
            log.error("desk.persist_error", error=str(e))

    # ── Auto-trade ───────────────────────────────────────────────────

    def show_autotrade(self, user_id: str) -> AutoTradeConfig | None:
        return self.registry.get(user_id)

    def save_autotrade(self, user_id: str, config: AutoTradeConfig) -> AutoTradeConfig:
        self.store.require(user_id)
        self.registry.put(user_id, config)
        return config

    def enable_autotrade(self, user_id: str, notify_target: str = "") -> AutoTradeConfig | None:
        return self.registry.set_enabled(user_id, True, notify_target=notify_target or None)

    def disable_autotrade(self, user_id: str) -> AutoTradeConfig | None:
        return self.registry.set_enabled(user_id, False)
