"""Price oracle layer -- exchange tickers via ccxt, or the in-memory ticker cache."""

from tradebox.oracle.ccxt_oracle import CcxtPriceOracle
from tradebox.oracle.client import PriceOracle
from tradebox.oracle.ticker_oracle import TickerPriceOracle
from tradebox.oracle.ticker_service import TickerService

__all__ = ["CcxtPriceOracle", "PriceOracle", "TickerPriceOracle", "TickerService"]
