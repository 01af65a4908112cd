"""Shared in-memory price cache for market data consumers.

Provides an async-safe (asyncio.Lock) price cache that a price feed writes
and the TickerPriceOracle reads from.
"""

import asyncio
import time
from decimal import Decimal

from tradebox.logging import get_logger

logger = get_logger(__name__)


class TickerService:
    """Shared in-memory price cache with staleness detection.

    Stores the latest price and timestamp for each asset symbol.
    Uses asyncio.Lock for safe concurrent reads/writes from multiple coroutines.
    """

    def __init__(self) -> None:
        self._prices: dict[str, tuple[Decimal, float]] = {}
        self._lock = asyncio.Lock()

    async def update_price(
        self, asset: str, price: Decimal, timestamp: float | None = None
    ) -> None:
        """Store the latest price for an asset.

        Args:
            asset: Asset symbol (e.g., "BTC").
            price: The latest price as Decimal.
            timestamp: Unix timestamp of the observation. Defaults to now.
        """
        async with self._lock:
            self._prices[asset.upper()] = (
                price,
                timestamp if timestamp is not None else time.time(),
            )
        logger.debug("ticker_price_updated", asset=asset, price=str(price))

    async def get_price(self, asset: str) -> Decimal | None:
        """Return the latest cached price for an asset, or None if not cached."""
        async with self._lock:
            entry = self._prices.get(asset.upper())
            return entry[0] if entry is not None else None

    async def get_entry(self, asset: str) -> tuple[Decimal, float] | None:
        """Return (price, timestamp) for an asset, or None if not cached."""
        async with self._lock:
            return self._prices.get(asset.upper())

    async def get_price_age(self, asset: str) -> float | None:
        """Return seconds since the last price update for an asset.

        Returns None if the asset has no cached price.
        """
        async with self._lock:
            entry = self._prices.get(asset.upper())
            if entry is None:
                return None
            return time.time() - entry[1]

    async def is_stale(self, asset: str, max_age_seconds: float = 60.0) -> bool:
        """Check if a cached price is stale or missing."""
        age = await self.get_price_age(asset)
        if age is None:
            return True
        return age > max_age_seconds
