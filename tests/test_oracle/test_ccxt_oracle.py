"""Tests for CcxtPriceOracle.

All tests use a mocked ccxt exchange object to avoid real API calls.
"""

import asyncio
import time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import ccxt.async_support as ccxt_async
import pytest

from tradebox.config import OracleSettings
from tradebox.exceptions import PriceUnavailableError
from tradebox.oracle.ccxt_oracle import CcxtPriceOracle


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _ticker(last: float | None = 50000.5, close: float | None = None, age: float = 0.0) -> dict:
    return {
        "symbol": "BTC/USDT",
        "last": last,
        "close": close,
        "timestamp": int((time.time() - age) * 1000),
    }


@pytest.fixture
def oracle_settings() -> OracleSettings:
    return OracleSettings(
        exchange_id="binance",
        quote_currency="USDT",
        timeout_seconds=0.05,
        max_price_age_seconds=60.0,
    )


@pytest.fixture
def mock_exchange() -> MagicMock:
    exchange = MagicMock()
    exchange.load_markets = AsyncMock(return_value={"BTC/USDT": {}, "ETH/USDT": {}})
    exchange.fetch_ticker = AsyncMock(return_value=_ticker())
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def ccxt_oracle(oracle_settings: OracleSettings, mock_exchange: MagicMock) -> CcxtPriceOracle:
    return CcxtPriceOracle(oracle_settings, exchange=mock_exchange)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_loads_markets(self, ccxt_oracle, mock_exchange) -> None:
        await ccxt_oracle.connect()
        mock_exchange.load_markets.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_releases_exchange(self, ccxt_oracle, mock_exchange) -> None:
        await ccxt_oracle.close()
        mock_exchange.close.assert_awaited_once()

    def test_exposes_exchange(self, ccxt_oracle, mock_exchange) -> None:
        assert ccxt_oracle.exchange is mock_exchange


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


class TestValidatedPrice:
    @pytest.mark.asyncio
    async def test_returns_quote_with_provenance(self, ccxt_oracle, mock_exchange) -> None:
        quote = await ccxt_oracle.get_validated_price("btc")

        mock_exchange.fetch_ticker.assert_awaited_once_with("BTC/USDT")
        assert quote.asset == "BTC"
        assert quote.price == Decimal("50000.5")
        assert quote.source == "binance"
        assert quote.observed_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_falls_back_to_close(self, ccxt_oracle, mock_exchange) -> None:
        mock_exchange.fetch_ticker.return_value = _ticker(last=None, close=49999.0)
        quote = await ccxt_oracle.get_validated_price("BTC")
        assert quote.price == Decimal("49999.0")

    @pytest.mark.asyncio
    async def test_missing_price(self, ccxt_oracle, mock_exchange) -> None:
        mock_exchange.fetch_ticker.return_value = _ticker(last=None, close=None)
        with pytest.raises(PriceUnavailableError):
            await ccxt_oracle.get_validated_price("BTC")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", [0, -1.5])
    async def test_non_positive_price(self, ccxt_oracle, mock_exchange, price: float) -> None:
        mock_exchange.fetch_ticker.return_value = _ticker(last=price)
        with pytest.raises(PriceUnavailableError, match="Invalid price"):
            await ccxt_oracle.get_validated_price("BTC")

    @pytest.mark.asyncio
    async def test_stale_price(self, ccxt_oracle, mock_exchange) -> None:
        mock_exchange.fetch_ticker.return_value = _ticker(age=600)
        with pytest.raises(PriceUnavailableError, match="stale"):
            await ccxt_oracle.get_validated_price("BTC")

    @pytest.mark.asyncio
    async def test_timeout(self, ccxt_oracle, mock_exchange) -> None:
        async def hang(symbol: str) -> dict:
            await asyncio.sleep(5)
            return _ticker()

        mock_exchange.fetch_ticker = hang
        with pytest.raises(PriceUnavailableError, match="timed out"):
            await ccxt_oracle.get_validated_price("BTC")

    @pytest.mark.asyncio
    async def test_exchange_error(self, ccxt_oracle, mock_exchange) -> None:
        mock_exchange.fetch_ticker.side_effect = ccxt_async.NetworkError("connection reset")
        with pytest.raises(PriceUnavailableError):
            await ccxt_oracle.get_validated_price("BTC")


class TestCurrentPrice:
    @pytest.mark.asyncio
    async def test_ignores_staleness(self, ccxt_oracle, mock_exchange) -> None:
        mock_exchange.fetch_ticker.return_value = _ticker(last=101.25, age=600)
        assert await ccxt_oracle.get_current_price("ETH") == Decimal("101.25")
        mock_exchange.fetch_ticker.assert_awaited_once_with("ETH/USDT")

    @pytest.mark.asyncio
    async def test_exchange_error(self, ccxt_oracle, mock_exchange) -> None:
        mock_exchange.fetch_ticker.side_effect = ccxt_async.ExchangeError("bad symbol")
        with pytest.raises(PriceUnavailableError):
            await ccxt_oracle.get_current_price("BTC")
