"""Shared test fixtures."""

from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure the ethsim package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ethsim.config import StorageConfig  # noqa: E402
from ethsim.engine.autotrade_config import AutoTradeConfig  # noqa: E402
from ethsim.storage.database import Database  # noqa: E402
from ethsim.storage.models import UserPortfolio  # noqa: E402


def make_db(tmp_path: Path) -> Database:
    db = Database(StorageConfig(sqlite_path=str(tmp_path / "test.db")))
    db.connect()
    return db


def make_portfolio(user_id: str = "u1", eth: str = "10000", usd: str = "0") -> UserPortfolio:
    return UserPortfolio(user_id=user_id, eth_balance=Decimal(eth), usd_balance=Decimal(usd))


def make_config(**overrides: object) -> AutoTradeConfig:
    values: dict[str, object] = {
        "buy_at": Decimal("2400"),
        "sell_at": Decimal("2500"),
        "trade_amount_usd": Decimal("1000"),
        "eth_amount_per_sell": Decimal("1"),
    }
    values.update(overrides)
    return AutoTradeConfig(**values)


def make_feed(price: str = "2390") -> MagicMock:
    feed = MagicMock()
    feed.fetch_current_price = AsyncMock(return_value=Decimal(price))
    feed.close = AsyncMock()
    return feed


@pytest.fixture()
def db(tmp_path: Path):
    database = make_db(tmp_path)
    yield database
    database.close()
