"""CoinGecko spot price connector.

``fetch_current_price`` never raises: network errors, HTTP errors, bad
payloads and timeouts all end in the configured fallback price so the
auto-trade loop keeps ticking.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ethsim.config import PriceFeedConfig
from ethsim.engine.errors import PriceFetchError
from ethsim.observability.logger import get_logger
from ethsim.observability.metrics import metrics

log = get_logger(__name__)


def parse_price(data: Any, asset_id: str, vs_currency: str) -> Decimal:
    """Extract a positive price from a ``/simple/price`` payload."""
    try:
        raw = data[asset_id][vs_currency]
        price = Decimal(str(raw))
    except (KeyError, TypeError, InvalidOperation) as e:
        raise PriceFetchError(f"unexpected price payload: {data!r:.200}") from e
    if not price.is_finite() or price <= 0:
        raise PriceFetchError(f"non-positive price: {raw!r}")
    return price


class CoinGeckoPriceFeed:
    """Async client for the CoinGecko simple-price endpoint."""

    def __init__(self, config: PriceFeedConfig, client: httpx.AsyncClient | None = None):
        self._config = config
        self._client = client or httpx.AsyncClient(
            timeout=config.timeout_secs,
            headers={"Accept": "application/json"},
        )
        self.last_price: Decimal | None = None
        self.last_was_fallback = False

    @property
    def fallback_price(self) -> Decimal:
        return self._config.fallback_price

    async def close(self) -> None:
        await self._client.aclose()

    async def _fetch_once(self) -> Decimal:
        resp = await self._client.get(
            self._config.url,
            params={
                "ids": self._config.asset_id,
                "vs_currencies": self._config.vs_currency,
            },
        )
        resp.raise_for_status()
        try:
            data = resp.json()
        except ValueError as e:
            # Rate-limit and proxy pages come back as 200 with HTML
            raise PriceFetchError(f"non-JSON price response: {resp.text[:200]!r}") from e
        return parse_price(data, self._config.asset_id, self._config.vs_currency)

    async def fetch_price(self) -> Decimal:
        """Fetch with retries. Raises PriceFetchError when all attempts fail."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self._config.max_attempts)),
                wait=wait_exponential(min=0.5, max=4),
                retry=retry_if_exception_type((httpx.HTTPError, PriceFetchError)),
                reraise=True,
            ):
                with attempt:
                    return await self._fetch_once()
        except httpx.HTTPError as e:
            raise PriceFetchError(f"{type(e).__name__}: {e}") from e
        raise PriceFetchError("no attempt made")

    async def fetch_current_price(self) -> Decimal:
        """Current price, or the fallback price on any failure."""
        try:
            price = await self.fetch_price()
        except PriceFetchError as e:
            metrics.incr("price_feed.failures")
            log.warning(
                "price_feed.fallback",
                error=str(e),
                fallback=str(self._config.fallback_price),
            )
            self.last_was_fallback = True
            self.last_price = self._config.fallback_price
            return self._config.fallback_price
        metrics.incr("price_feed.fetches")
        metrics.gauge("price_feed.last_price", float(price))
        self.last_was_fallback = False
        self.last_price = price
        return price
