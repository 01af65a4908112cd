"""Entry point for the tradebox trade engine.

Wires all components together and serves the HTTP API with uvicorn. The
engine has no internal timer: an external scheduler (cron, a k8s CronJob)
calls ``/api/settlement/run``.

Component wiring order (in build_components):
1. AppSettings (configuration)
2. Logging setup
3. TradeDatabase + TradeStore (persistence)
4. PriceOracle (CcxtPriceOracle unless one is injected)
5. EventBus and SettingsCache
6. BalanceLedger
7. OutcomePolicy (fallback movement percentages)
8. TradeIntake
9. SettlementProcessor
10. AdminService
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from tradebox.admin import AdminService
from tradebox.config import AppSettings
from tradebox.data.database import TradeDatabase
from tradebox.data.store import TradeStore
from tradebox.events import EventBus
from tradebox.ledger.balance_ledger import BalanceLedger
from tradebox.logging import get_logger, setup_logging
from tradebox.oracle.client import PriceOracle
from tradebox.settings_cache import SettingsCache
from tradebox.settlement.processor import SettlementProcessor
from tradebox.settlement.resolver import OutcomePolicy
from tradebox.trading.intake import TradeIntake


def _build_oracle(settings: AppSettings) -> PriceOracle:
    from tradebox.oracle.ccxt_oracle import CcxtPriceOracle

    return CcxtPriceOracle(settings.oracle)


def build_components(
    settings: AppSettings, oracle: PriceOracle | None = None
) -> dict[str, Any]:
    """Build all engine components from settings.

    Note: Does NOT connect the database or the oracle -- that happens in
    the lifespan.

    Args:
        settings: Application settings.
        oracle: Price source to use instead of the ccxt exchange oracle
                (a TickerPriceOracle for paper trading, for instance).

    Returns:
        Dict mapping component names to instances.
    """
    database = TradeDatabase(
        settings.database.path, busy_timeout_ms=settings.database.busy_timeout_ms
    )
    store = TradeStore(database)
    if oracle is None:
        oracle = _build_oracle(settings)
    events = EventBus()
    settings_cache = SettingsCache(default_ttl=settings.settlement.settings_cache_ttl_seconds)
    ledger = BalanceLedger(store, currency=settings.settlement.currency)
    policy = OutcomePolicy.from_settings(settings.outcome)

    intake = TradeIntake(
        store=store,
        ledger=ledger,
        oracle=oracle,
        events=events,
        price_timeout=settings.oracle.timeout_seconds,
    )
    processor = SettlementProcessor(
        store=store,
        ledger=ledger,
        oracle=oracle,
        settings_cache=settings_cache,
        events=events,
        policy=policy,
        settings=settings.settlement,
    )
    admin = AdminService(
        store=store,
        ledger=ledger,
        processor=processor,
        settings_cache=settings_cache,
        events=events,
    )

    return {
        "database": database,
        "store": store,
        "oracle": oracle,
        "events": events,
        "settings_cache": settings_cache,
        "ledger": ledger,
        "policy": policy,
        "intake": intake,
        "processor": processor,
        "admin": admin,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database and the price oracle for the lifetime of the server."""
    logger = get_logger("tradebox.main")
    components = app.state.components

    await components["database"].connect()
    await components["oracle"].connect()
    logger.info("lifespan_started", oracle=type(components["oracle"]).__name__)

    try:
        yield
    finally:
        await components["oracle"].close()
        await components["database"].close()
        logger.info("tradebox_stopped")


async def run() -> None:
    """Run the trade engine API server."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("tradebox.main")

    # 3-10. Build all components
    components = build_components(settings)

    from tradebox.api.app import create_app

    app = create_app(components=components, lifespan=lifespan)
    app.state.settings = settings
    app.state.components = components

    logger.info(
        "starting_api",
        host=settings.api.host,
        port=settings.api.port,
        database=settings.database.path,
        exchange=settings.oracle.exchange_id,
    )

    config = uvicorn.Config(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
