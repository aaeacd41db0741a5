"""Database migrations — create and upgrade schema."""

from __future__ import annotations

import sqlite3

from ethsim.observability.logger import get_logger

log = get_logger(__name__)

SCHEMA_VERSION = 2

# Decimal columns are TEXT so balances round-trip exactly.
_MIGRATIONS: dict[int, list[str]] = {
    1: [
        """
        CREATE TABLE IF NOT EXISTS portfolios (
            user_id TEXT PRIMARY KEY,
            eth_balance TEXT NOT NULL,
            usd_balance TEXT NOT NULL,
            updated_at TEXT
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            seq INTEGER NOT NULL,
            kind TEXT NOT NULL,
            eth_amount TEXT NOT NULL,
            price TEXT NOT NULL,
            usd_amount TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            UNIQUE (user_id, seq),
            FOREIGN KEY (user_id) REFERENCES portfolios(user_id)
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id, seq);
        """,
    ],
    2: [
        # Auto-trade rules survive restarts
        """
        CREATE TABLE IF NOT EXISTS autotrade_configs (
            user_id TEXT PRIMARY KEY,
            buy_at TEXT,
            sell_at TEXT,
            trade_amount_usd TEXT NOT NULL,
            eth_amount_per_sell TEXT NOT NULL,
            enabled INTEGER NOT NULL DEFAULT 1,
            notify_target TEXT DEFAULT '',
            updated_at TEXT
        );
        """,
    ],
}


def run_migrations(conn: sqlite3.Connection) -> None:
    """Run all pending migrations."""
    conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)")
    conn.commit()

    current = _get_current_version(conn)

    for version in sorted(_MIGRATIONS.keys()):
        if version <= current:
            continue
        log.info("migrations.running", version=version)
        for sql in _MIGRATIONS[version]:
            conn.execute(sql)
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (version,),
        )
        conn.commit()
        log.info("migrations.applied", version=version)

    log.info("migrations.complete", version=_get_current_version(conn))


def _get_current_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row and row[0] else 0
