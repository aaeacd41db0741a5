"""Tests for SQLite persistence: migrations, snapshot round-trip, configs, backups."""

from __future__ import annotations

import datetime as dt
import sqlite3
from decimal import Decimal
from pathlib import Path

import pytest
from conftest import make_config, make_db, make_portfolio

from ethsim.config import StorageConfig
from ethsim.engine.errors import PersistenceError
from ethsim.storage.backup import backup_database, list_backups
from ethsim.storage.database import Database
from ethsim.storage.migrations import SCHEMA_VERSION, _get_current_version, run_migrations
from ethsim.storage.models import Transaction, TransactionKind


def _portfolio_with_history():
    ts = dt.datetime(2026, 3, 1, 12, 30, 15, 123456, tzinfo=dt.timezone.utc)
    txs = (
        Transaction(
            kind=TransactionKind.BUY, eth_amount=Decimal("0.4184100418410041841004184100"),
            price=Decimal("2390"), usd_amount=Decimal("1000"), timestamp=ts,
        ),
        Transaction(
            kind=TransactionKind.AUTO_SELL, eth_amount=Decimal("1"),
            price=Decimal("2500.55"), usd_amount=Decimal("2500.55"), timestamp=ts,
        ),
    )
    return make_portfolio(eth="9999.41841", usd="2500.55").model_copy(update={"transactions": txs})


class TestMigrations:
    def test_fresh_database_reaches_latest_version(self) -> None:
        conn = sqlite3.connect(":memory:")
        run_migrations(conn)
        assert _get_current_version(conn) == SCHEMA_VERSION
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"portfolios", "transactions", "autotrade_configs"} <= tables

    def test_rerun_is_noop(self) -> None:
        conn = sqlite3.connect(":memory:")
        run_migrations(conn)
        run_migrations(conn)
        assert _get_current_version(conn) == SCHEMA_VERSION


class TestDatabase:
    def test_empty_load(self, db: Database) -> None:
        assert db.load_all() == {}

    def test_round_trip_is_exact(self, db: Database) -> None:
        portfolio = _portfolio_with_history()
        db.save_all({"u1": portfolio, "u2": make_portfolio(user_id="u2")})
        loaded = db.load_all()
        assert loaded["u1"] == portfolio
        assert loaded["u1"].transactions[0].eth_amount == Decimal("0.4184100418410041841004184100")
        assert loaded["u1"].transactions[0].timestamp.tzinfo is not None
        assert loaded["u2"].transactions == ()

    def test_save_all_replaces_snapshot(self, db: Database) -> None:
        db.save_all({"u1": make_portfolio(), "u2": make_portfolio(user_id="u2")})
        db.save_all({"u2": make_portfolio(user_id="u2", eth="5")})
        loaded = db.load_all()
        assert list(loaded) == ["u2"]
        assert loaded["u2"].eth_balance == Decimal("5")

    def test_survives_reconnect(self, tmp_path: Path) -> None:
        first = make_db(tmp_path)
        first.save_all({"u1": _portfolio_with_history()})
        first.close()
        second = make_db(tmp_path)
        try:
            assert second.load_all()["u1"] == _portfolio_with_history()
        finally:
            second.close()

    def test_config_round_trip(self, db: Database) -> None:
        db.save_config("u1", make_config(notify_target="chat-1"))
        db.save_config("u2", make_config(buy_at=None, enabled=False))
        configs = dict(db.load_configs())
        assert configs["u1"] == make_config(notify_target="chat-1")
        assert configs["u2"].buy_at is None
        assert configs["u2"].enabled is False

    def test_config_upsert(self, db: Database) -> None:
        db.save_config("u1", make_config())
        db.save_config("u1", make_config(enabled=False))
        configs = db.load_configs()
        assert len(configs) == 1
        assert configs[0][1].enabled is False

    def test_requires_connect(self) -> None:
        db = Database(StorageConfig(sqlite_path=":memory:"))
        with pytest.raises(RuntimeError):
            db.load_all()

    def test_unopenable_path_raises_persistence_error(self, tmp_path: Path) -> None:
        # A directory cannot be opened as a database file
        target = tmp_path / "dir.db"
        target.mkdir()
        db = Database(StorageConfig(sqlite_path=str(target)))
        with pytest.raises(PersistenceError):
            db.connect()


class TestBackup:
    def test_backup_copies_data(self, tmp_path: Path) -> None:
        db = make_db(tmp_path)
        db.save_all({"u1": _portfolio_with_history()})
        db.close()

        path = backup_database(
            source_path=str(tmp_path / "test.db"),
            backup_dir=str(tmp_path / "backups"),
        )
        restored = Database(StorageConfig(sqlite_path=path))
        restored.connect()
        try:
            assert restored.load_all()["u1"] == _portfolio_with_history()
        finally:
            restored.close()

    def test_prunes_old_backups(self, tmp_path: Path) -> None:
        make_db(tmp_path).close()
        backup_dir = str(tmp_path / "backups")
        paths = [
            backup_database(str(tmp_path / "test.db"), backup_dir, max_backups=2)
            for _ in range(3)
        ]
        kept = list_backups(backup_dir)
        assert len(kept) == 2
        assert str(kept[0]) == paths[-1]

    def test_missing_source(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            backup_database(str(tmp_path / "nope.db"), str(tmp_path / "backups"))

    def test_list_backups_without_dir(self, tmp_path: Path) -> None:
        assert list_backups(str(tmp_path / "missing")) == []
