"""Shared configuration loader and Pydantic settings.

Supports:
  - YAML file loading (``config.yaml`` at the project root, or the path in
    ``ETHSIM_CONFIG``)
  - Env var overrides for secrets (``TELEGRAM_BOT_TOKEN``)
  - All subsystem configs: trading, price feed, poller, storage,
    observability, telegram
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class TradingConfig(BaseModel):
    default_eth: Decimal = Decimal("10000")
    default_usd: Decimal = Decimal("0")
    history_limit: int = 10
    # Top-up buttons offered by /donate
    donate_eth_options: list[int] = Field(default_factory=lambda: [1000, 5000])
    donate_usd_options: list[int] = Field(default_factory=lambda: [10000, 50000])


class PriceFeedConfig(BaseModel):
    url: str = "https://api.coingecko.com/api/v3/simple/price"
    asset_id: str = "ethereum"
    vs_currency: str = "usd"
    timeout_secs: float = 5.0
    max_attempts: int = 2
    fallback_price: Decimal = Decimal("2500")


class PollerConfig(BaseModel):
    """Auto-trade tick driver configuration."""
    interval_secs: float = 10.0
    enabled: bool = True


class StorageConfig(BaseModel):
    sqlite_path: str = "data/ethsim.db"
    backup_dir: str = "data/backups"
    max_backups: int = 10


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = "logs/ethsim.log"


class TelegramConfig(BaseModel):
    bot_token: str = ""
    drop_pending_updates: bool = True


class BotConfig(BaseModel):
    trading: TradingConfig = Field(default_factory=TradingConfig)
    price_feed: PriceFeedConfig = Field(default_factory=PriceFeedConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)


def load_config(path: str | Path | None = None) -> BotConfig:
    """Load config from YAML file, falling back to defaults."""
    if path is None:
        path = os.environ.get("ETHSIM_CONFIG") or _PROJECT_ROOT / "config.yaml"
    path = Path(path)
    raw: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    cfg = BotConfig(**raw)

    token = os.environ.get("TELEGRAM_BOT_TOKEN", "").strip()
    if token:
        cfg.telegram.bot_token = token
    return cfg
