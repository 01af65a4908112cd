"""Exchange ticker price oracle via ccxt async.

Wraps a public ccxt exchange (no API keys required) to read last-trade
prices. Every call is bounded by a timeout; timeouts, exchange errors,
missing, non-positive, and stale prices all surface as PriceUnavailableError.
"""

import asyncio
import time
from datetime import datetime, timezone
from decimal import Decimal

import ccxt.async_support as ccxt_async

from tradebox.config import OracleSettings
from tradebox.exceptions import PriceUnavailableError
from tradebox.logging import get_logger
from tradebox.models import PriceQuote
from tradebox.oracle.client import PriceOracle

logger = get_logger(__name__)


class CcxtPriceOracle(PriceOracle):
    """Concrete price oracle using a ccxt async exchange's ticker endpoint.

    Args:
        settings: Oracle settings (exchange id, quote currency, timeouts).
        exchange: Optional pre-built ccxt exchange instance (tests inject a mock).
    """

    def __init__(
        self,
        settings: OracleSettings,
        exchange: ccxt_async.Exchange | None = None,
    ) -> None:
        self._settings = settings
        if exchange is None:
            exchange_class = getattr(ccxt_async, settings.exchange_id)
            exchange = exchange_class({"enableRateLimit": True})
        self._exchange = exchange

    @property
    def exchange(self) -> ccxt_async.Exchange:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    def _symbol(self, asset: str) -> str:
        return f"{asset.upper()}/{self._settings.quote_currency}"

    async def connect(self) -> None:
        """Initialize connection by loading markets."""
        logger.info("connecting_price_oracle", exchange=self._settings.exchange_id)
        markets = await self._exchange.load_markets()
        logger.info(
            "price_oracle_connected",
            exchange=self._settings.exchange_id,
            market_count=len(markets),
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.info("price_oracle_closed", exchange=self._settings.exchange_id)

    async def _fetch_ticker(self, asset: str) -> dict:
        symbol = self._symbol(asset)
        try:
            return await asyncio.wait_for(
                self._exchange.fetch_ticker(symbol),
                timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "price_fetch_timeout",
                symbol=symbol,
                timeout=self._settings.timeout_seconds,
            )
            raise PriceUnavailableError(
                f"Price request for {asset} timed out after "
                f"{self._settings.timeout_seconds}s"
            )
        except ccxt_async.BaseError as e:
            logger.warning("price_fetch_failed", symbol=symbol, error=str(e))
            raise PriceUnavailableError(
                f"Unable to fetch real-time price for {asset}"
            ) from e

    @staticmethod
    def _extract_price(asset: str, ticker: dict) -> Decimal:
        raw = ticker.get("last")
        if raw is None:
            raw = ticker.get("close")
        if raw is None:
            raise PriceUnavailableError(f"No price in ticker for {asset}")
        price = Decimal(str(raw))
        if price <= 0:
            raise PriceUnavailableError(f"Invalid price {price} for {asset}")
        return price

    async def get_validated_price(self, asset: str) -> PriceQuote:
        """Fetch a live ticker price and reject stale observations."""
        ticker = await self._fetch_ticker(asset)
        price = self._extract_price(asset, ticker)

        now = time.time()
        timestamp_ms = ticker.get("timestamp")
        observed = timestamp_ms / 1000 if timestamp_ms else now
        age = now - observed
        if age > self._settings.max_price_age_seconds:
            raise PriceUnavailableError(
                f"Price for {asset} is stale ({age:.0f}s old). Please try again."
            )

        return PriceQuote(
            asset=asset.upper(),
            price=price,
            source=self._settings.exchange_id,
            observed_at=datetime.fromtimestamp(observed, tz=timezone.utc),
        )

    async def get_current_price(self, asset: str) -> Decimal:
        ticker = await self._fetch_ticker(asset)
        return self._extract_price(asset, ticker)
