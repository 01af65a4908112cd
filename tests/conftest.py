"""Shared test fixtures for the tradebox trade engine."""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from tradebox.config import AppSettings, DatabaseSettings, SettlementSettings
from tradebox.data.database import TradeDatabase
from tradebox.data.store import TradeStore
from tradebox.events import EventBus
from tradebox.ledger.balance_ledger import BalanceLedger
from tradebox.models import AssetConfig, ProfitLevel
from tradebox.oracle.ticker_oracle import TickerPriceOracle
from tradebox.oracle.ticker_service import TickerService
from tradebox.settings_cache import SettingsCache
from tradebox.settlement.processor import SettlementProcessor
from tradebox.settlement.resolver import OutcomePolicy
from tradebox.trading.intake import TradeIntake

ACCOUNT_ID = "acct-1"
START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def mock_settings(tmp_path) -> AppSettings:
    """Return AppSettings with test defaults (temp database, small batches)."""
    return AppSettings(
        log_level="DEBUG",
        database=DatabaseSettings(path=str(tmp_path / "settings.db")),
        settlement=SettlementSettings(batch_size=2, max_concurrent_batches=2),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> OutcomePolicy:
    """Deterministic policy: fixed 2.5% default win movement."""
    return OutcomePolicy(
        default_win_min=Decimal("2.5"),
        default_win_max=Decimal("2.5"),
        default_loss=Decimal("0.002"),
        rng=random.Random(7),
    )


@pytest_asyncio.fixture
async def database(tmp_path) -> TradeDatabase:
    db = TradeDatabase(str(tmp_path / "trades.db"))
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def store(database: TradeDatabase) -> TradeStore:
    return TradeStore(database)


@pytest.fixture
def ledger(store: TradeStore) -> BalanceLedger:
    return BalanceLedger(store, currency="USDT")


@pytest.fixture
def ticker_service() -> TickerService:
    return TickerService()


@pytest.fixture
def oracle(ticker_service: TickerService) -> TickerPriceOracle:
    return TickerPriceOracle(ticker_service, max_price_age_seconds=120.0)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def settings_cache() -> SettingsCache:
    return SettingsCache(default_ttl=30.0)


@pytest.fixture
def intake(
    store: TradeStore,
    ledger: BalanceLedger,
    oracle: TickerPriceOracle,
    events: EventBus,
    clock: FakeClock,
) -> TradeIntake:
    return TradeIntake(
        store=store, ledger=ledger, oracle=oracle, events=events, clock=clock
    )


@pytest.fixture
def processor(
    store: TradeStore,
    ledger: BalanceLedger,
    oracle: TickerPriceOracle,
    settings_cache: SettingsCache,
    events: EventBus,
    policy: OutcomePolicy,
    clock: FakeClock,
) -> SettlementProcessor:
    return SettlementProcessor(
        store=store,
        ledger=ledger,
        oracle=oracle,
        settings_cache=settings_cache,
        events=events,
        policy=policy,
        settings=SettlementSettings(batch_size=2, max_concurrent_batches=2),
        clock=clock,
    )


@pytest_asyncio.fixture
async def funded_account(
    store: TradeStore, ledger: BalanceLedger, ticker_service: TickerService
) -> str:
    """Account with 1000 USDT deposited, 5 trades of quota, and a BTC catalog.

    Catalog: BTC enabled; ETH disabled; "1m" pays 10% (min stake 10) and
    "5m" pays 20% (min stake 50). BTC and ETH are priced in the ticker cache.
    """
    await store.create_account(ACCOUNT_ID, trade_limit=5)
    await ledger.deposit(ACCOUNT_ID, Decimal("1000"))
    await store.upsert_asset(AssetConfig(symbol="BTC", is_enabled=True))
    await store.upsert_asset(AssetConfig(symbol="ETH", is_enabled=False))
    await store.upsert_profit_level(
        ProfitLevel(duration="1m", profit_percentage=Decimal("10"), min_stake=Decimal("10"))
    )
    await store.upsert_profit_level(
        ProfitLevel(duration="5m", profit_percentage=Decimal("20"), min_stake=Decimal("50"))
    )
    await ticker_service.update_price("BTC", Decimal("50000"))
    await ticker_service.update_price("ETH", Decimal("3000"))
    return ACCOUNT_ID
