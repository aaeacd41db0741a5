"""Database — SQLite persistence layer.

Portfolios are stored as whole snapshots: ``load_all`` reads every user,
``save_all`` replaces every row inside one transaction. Auto-trade configs
are upserted per user.
"""

from __future__ import annotations

import datetime as dt
import sqlite3
from decimal import Decimal
from pathlib import Path
from threading import Lock
from typing import Mapping

from ethsim.config import StorageConfig
from ethsim.engine.autotrade_config import AutoTradeConfig
from ethsim.engine.errors import PersistenceError
from ethsim.observability.logger import get_logger
from ethsim.storage.migrations import run_migrations
from ethsim.storage.models import Transaction, TransactionKind, UserPortfolio

log = get_logger(__name__)


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


class Database:
    """SQLite database for portfolios and auto-trade configs."""

    def __init__(self, config: StorageConfig):
        self._config = config
        self._conn: sqlite3.Connection | None = None
        # save_all runs in a worker thread; one connection, one user at a time
        self._lock = Lock()

    def connect(self) -> None:
        """Open database connection and run migrations."""
        path = self._config.sqlite_path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            run_migrations(self._conn)
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open database {path}: {e}") from e
        log.info("database.connected", path=path)

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # ── Portfolios ───────────────────────────────────────────────────

    def load_all(self) -> dict[str, UserPortfolio]:
        """Read every portfolio with its full transaction history."""
        try:
            with self._lock:
                rows = self.conn.execute(
                    "SELECT user_id, eth_balance, usd_balance FROM portfolios"
                ).fetchall()
                tx_rows = self.conn.execute(
                    "SELECT user_id, kind, eth_amount, price, usd_amount, timestamp "
                    "FROM transactions ORDER BY user_id, seq"
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"load_all failed: {e}") from e

        history: dict[str, list[Transaction]] = {}
        for r in tx_rows:
            history.setdefault(r["user_id"], []).append(Transaction(
                kind=TransactionKind(r["kind"]),
                eth_amount=Decimal(r["eth_amount"]),
                price=Decimal(r["price"]),
                usd_amount=Decimal(r["usd_amount"]),
                timestamp=dt.datetime.fromisoformat(r["timestamp"]),
            ))

        portfolios = {
            r["user_id"]: UserPortfolio(
                user_id=r["user_id"],
                eth_balance=Decimal(r["eth_balance"]),
                usd_balance=Decimal(r["usd_balance"]),
                transactions=tuple(history.get(r["user_id"], ())),
            )
            for r in rows
        }
        log.info("database.load_all", users=len(portfolios), transactions=len(tx_rows))
        return portfolios

    def save_all(self, portfolios: Mapping[str, UserPortfolio]) -> None:
        """Replace the stored snapshot with ``portfolios`` atomically."""
        now = dt.datetime.now(dt.timezone.utc).isoformat()
        portfolio_rows = [
            (p.user_id, str(p.eth_balance), str(p.usd_balance), now)
            for p in portfolios.values()
        ]
        tx_rows = [
            (
                p.user_id, seq, tx.kind.value, str(tx.eth_amount),
                str(tx.price), str(tx.usd_amount), tx.timestamp.isoformat(),
            )
            for p in portfolios.values()
            for seq, tx in enumerate(p.transactions)
        ]
        try:
            with self._lock, self.conn:
                self.conn.execute("DELETE FROM transactions")
                self.conn.execute("DELETE FROM portfolios")
                self.conn.executemany(
                    "INSERT INTO portfolios (user_id, eth_balance, usd_balance, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    portfolio_rows,
                )
                self.conn.executemany(
                    "INSERT INTO transactions "
                    "(user_id, seq, kind, eth_amount, price, usd_amount, timestamp) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    tx_rows,
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"save_all failed: {e}") from e
        log.debug("database.save_all", users=len(portfolio_rows), transactions=len(tx_rows))

    # ── Auto-trade configs ───────────────────────────────────────────

    def save_config(self, user_id: str, config: AutoTradeConfig) -> None:
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    """
                    INSERT OR REPLACE INTO autotrade_configs
                        (user_id, buy_at, sell_at, trade_amount_usd,
                         eth_amount_per_sell, enabled, notify_target, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        str(config.buy_at) if config.buy_at is not None else None,
                        str(config.sell_at) if config.sell_at is not None else None,
                        str(config.trade_amount_usd),
                        str(config.eth_amount_per_sell),
                        int(config.enabled),
                        config.notify_target,
                        dt.datetime.now(dt.timezone.utc).isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"save_config failed: {e}") from e

    def load_configs(self) -> list[tuple[str, AutoTradeConfig]]:
        try:
            with self._lock:
                rows = self.conn.execute("SELECT * FROM autotrade_configs").fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"load_configs failed: {e}") from e
        return [
            (
                r["user_id"],
                AutoTradeConfig(
                    buy_at=_dec(r["buy_at"]),
                    sell_at=_dec(r["sell_at"]),
                    trade_amount_usd=Decimal(r["trade_amount_usd"]),
                    eth_amount_per_sell=Decimal(r["eth_amount_per_sell"]),
                    enabled=bool(r["enabled"]),
                    notify_target=r["notify_target"] or "",
                ),
            )
            for r in rows
        ]
