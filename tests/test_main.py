"""Tests for component wiring and the server lifespan."""

import logging
from decimal import Decimal

import pytest

from tradebox.admin import AdminService
from tradebox.api.app import create_app
from tradebox.config import AppSettings, OracleSettings, OutcomeSettings
from tradebox.logging import setup_logging
from tradebox.main import build_components, lifespan
from tradebox.oracle.ccxt_oracle import CcxtPriceOracle
from tradebox.oracle.ticker_oracle import TickerPriceOracle
from tradebox.oracle.ticker_service import TickerService
from tradebox.settlement.processor import SettlementProcessor
from tradebox.trading.intake import TradeIntake


@pytest.fixture
def paper_oracle() -> TickerPriceOracle:
    return TickerPriceOracle(TickerService())


class TestBuildComponents:
    def test_wires_every_component(
        self, mock_settings: AppSettings, paper_oracle: TickerPriceOracle
    ) -> None:
        components = build_components(mock_settings, oracle=paper_oracle)

        assert isinstance(components["intake"], TradeIntake)
        assert isinstance(components["processor"], SettlementProcessor)
        assert isinstance(components["admin"], AdminService)
        assert components["oracle"] is paper_oracle
        assert components["ledger"].currency == "USDT"
        assert components["database"].path == mock_settings.database.path

    def test_outcome_defaults_flow_into_policy(
        self, mock_settings: AppSettings, paper_oracle: TickerPriceOracle
    ) -> None:
        settings = mock_settings.model_copy(
            update={"outcome": OutcomeSettings(default_loss_percentage=Decimal("0.5"))}
        )
        policy = build_components(settings, oracle=paper_oracle)["policy"]
        assert policy.default_loss == Decimal("0.5")

    def test_exchange_oracle_by_default(self, mock_settings: AppSettings) -> None:
        settings = mock_settings.model_copy(
            update={"oracle": OracleSettings(exchange_id="binance")}
        )
        assert isinstance(build_components(settings)["oracle"], CcxtPriceOracle)


class TestLifespan:
    @pytest.mark.asyncio
    async def test_opens_and_closes_resources(
        self, mock_settings: AppSettings, paper_oracle: TickerPriceOracle
    ) -> None:
        components = build_components(mock_settings, oracle=paper_oracle)
        app = create_app(components=components, lifespan=lifespan)
        app.state.components = components

        async with lifespan(app):
            await components["store"].create_account("acct-1", trade_limit=1)
            assert (await components["store"].get_account("acct-1")) is not None


class TestLogging:
    def test_levels_applied(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("DEBUG", "json")

            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert logging.getLogger("aiosqlite").level == logging.WARNING
            assert logging.getLogger("uvicorn").propagate is True
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
