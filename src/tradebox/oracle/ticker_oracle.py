"""Price oracle backed by the in-memory TickerService cache.

Used in paper mode and tests, where prices are pushed into the cache by a
feed (or a fixture) rather than fetched from an exchange.
"""

from datetime import datetime, timezone
from decimal import Decimal

from tradebox.exceptions import PriceUnavailableError
from tradebox.logging import get_logger
from tradebox.models import PriceQuote
from tradebox.oracle.client import PriceOracle
from tradebox.oracle.ticker_service import TickerService

logger = get_logger(__name__)


class TickerPriceOracle(PriceOracle):
    """Reads prices from a TickerService with staleness checks.

    Args:
        ticker_service: Shared price cache.
        max_price_age_seconds: Age beyond which a cached price is rejected.
    """

    source_name = "ticker"

    def __init__(
        self, ticker_service: TickerService, max_price_age_seconds: float = 120.0
    ) -> None:
        self._ticker_service = ticker_service
        self._max_price_age_seconds = max_price_age_seconds

    async def connect(self) -> None:
        logger.info("ticker_oracle_ready")

    async def close(self) -> None:
        pass

    async def _fresh_price(self, asset: str) -> tuple[Decimal, float]:
        entry = await self._ticker_service.get_entry(asset)
        if entry is None:
            raise PriceUnavailableError(f"No price available for {asset}")

        if await self._ticker_service.is_stale(
            asset, max_age_seconds=self._max_price_age_seconds
        ):
            raise PriceUnavailableError(
                f"Price for {asset} is stale (>{self._max_price_age_seconds}s old)"
            )

        price, timestamp = entry
        if price <= 0:
            raise PriceUnavailableError(f"Invalid price {price} for {asset}")
        return price, timestamp

    async def get_validated_price(self, asset: str) -> PriceQuote:
        price, timestamp = await self._fresh_price(asset)
        return PriceQuote(
            asset=asset.upper(),
            price=price,
            source=self.source_name,
            observed_at=datetime.fromtimestamp(timestamp, tz=timezone.utc),
        )

    async def get_current_price(self, asset: str) -> Decimal:
        price, _ = await self._fresh_price(asset)
        return price
