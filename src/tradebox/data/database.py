"""Async SQLite database manager for trades, balances, and settings.

Uses aiosqlite with WAL mode. Every unit of work opens its own connection
so concurrent coroutines (and processes) never share transaction state;
writers serialize on SQLite's write lock via BEGIN IMMEDIATE and busy_timeout.
"""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Self

import aiosqlite

from tradebox.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS accounts (
    account_id TEXT PRIMARY KEY,
    trade_limit INTEGER NOT NULL DEFAULT 0,
    trade_mode TEXT NOT NULL DEFAULT 'automatic',
    custom_win_percentage TEXT,
    custom_loss_percentage TEXT,
    created_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS balances (
    account_id TEXT NOT NULL,
    currency TEXT NOT NULL,
    total TEXT NOT NULL DEFAULT '0',
    deposited TEXT NOT NULL DEFAULT '0',
    earnings TEXT NOT NULL DEFAULT '0',
    frozen TEXT NOT NULL DEFAULT '0',
    updated_at_ms INTEGER NOT NULL,
    PRIMARY KEY (account_id, currency)
);

CREATE TABLE IF NOT EXISTS trades (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    asset TEXT NOT NULL,
    side TEXT NOT NULL,
    stake TEXT NOT NULL,
    duration TEXT NOT NULL,
    entry_price TEXT NOT NULL,
    profit_percentage TEXT NOT NULL,
    price_source TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'active',
    created_at_ms INTEGER NOT NULL,
    expires_at_ms INTEGER NOT NULL,
    exit_price TEXT,
    result TEXT,
    pnl TEXT,
    settled_at_ms INTEGER,
    manual_preset TEXT,
    manual_preset_by TEXT,
    manual_preset_at_ms INTEGER
);

CREATE TABLE IF NOT EXISTS admin_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS asset_settings (
    symbol TEXT PRIMARY KEY,
    is_enabled INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS profit_levels (
    duration TEXT NOT NULL,
    profit_percentage TEXT NOT NULL,
    min_stake TEXT NOT NULL,
    PRIMARY KEY (duration, profit_percentage)
);

CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    trade_id TEXT,
    created_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id TEXT NOT NULL,
    activity_type TEXT NOT NULL,
    amount TEXT,
    status TEXT NOT NULL,
    reference_id TEXT,
    metadata TEXT,
    created_at_ms INTEGER NOT NULL
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_trades_status_expiry
    ON trades(status, expires_at_ms);

CREATE INDEX IF NOT EXISTS idx_trades_account_created
    ON trades(account_id, created_at_ms);

CREATE INDEX IF NOT EXISTS idx_notifications_account
    ON notifications(account_id, created_at_ms);
"""


class TradeDatabase:
    """Async SQLite connection factory for the trade engine.

    Manages schema creation and hands out short-lived connections.

    Usage:
        async with TradeDatabase("/path/to/db") as database:
            async with database.transaction() as conn:
                await conn.execute("UPDATE ...")

            async with database.connection() as conn:
                cursor = await conn.execute("SELECT ...")
    """

    def __init__(
        self, db_path: str = "data/tradebox.db", busy_timeout_ms: int = 5000
    ) -> None:
        self._db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._initialized = False

    @property
    def path(self) -> str:
        return self._db_path

    async def connect(self) -> None:
        """Create the parent directory, enable WAL, and create the schema."""
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        async with self.connection() as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(_CREATE_TABLES_SQL)
            await conn.executescript(_CREATE_INDEXES_SQL)
            await self._ensure_schema_version(conn)

        self._initialized = True
        logger.info("trade_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Mark the database closed. Connections are per unit of work."""
        if self._initialized:
            self._initialized = False
            logger.info("trade_db_closed", db_path=self._db_path)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open an autocommit connection with pragmas applied."""
        conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        try:
            await conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
            await conn.execute("PRAGMA synchronous=NORMAL")
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a block inside BEGIN IMMEDIATE ... COMMIT.

        Any exception raised inside the block rolls the transaction back
        and propagates.
        """
        async with self.connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    async def _ensure_schema_version(self, conn: aiosqlite.Connection) -> None:
        """Insert schema version if not already set."""
        cursor = await conn.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            await conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Async context manager exit."""
        await self.close()
