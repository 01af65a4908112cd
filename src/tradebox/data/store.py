"""Typed SQLite read/write abstraction for the trade engine.

Provides TradeStore with typed methods for accounts, balances, trades,
catalog configuration, admin settings, notifications, and the activity log.
All SQL is isolated behind this interface.

Methods that take a ``conn`` argument run inside the caller's transaction
(see TradeDatabase.transaction); the others open their own connection.

CRITICAL: All monetary values stored as TEXT in SQLite, restored as Decimal on read.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import aiosqlite

from tradebox.data.database import TradeDatabase
from tradebox.logging import get_logger
from tradebox.models import (
    Account,
    AssetConfig,
    Balance,
    GlobalTradeMode,
    GlobalTradeSetting,
    Outcome,
    ProfitLevel,
    Trade,
    TradeResult,
    TradeSide,
    TradeStatus,
    UserTradeMode,
    UserTradeSetting,
)

logger = get_logger(__name__)

GLOBAL_TRADE_MODE_KEY = "global_trade_mode"
GLOBAL_WIN_PERCENTAGE_KEY = "global_win_percentage"
GLOBAL_LOSS_PERCENTAGE_KEY = "global_loss_percentage"

_TRADE_COLUMNS = (
    "id, account_id, asset, side, stake, duration, entry_price, "
    "profit_percentage, price_source, status, created_at_ms, expires_at_ms, "
    "exit_price, result, pnl, settled_at_ms, manual_preset, manual_preset_by, "
    "manual_preset_at_ms"
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(value.timestamp() * 1000)


def from_ms(value: int | None) -> datetime | None:
    """Convert epoch milliseconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def canonical_decimal(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros (10.50 -> "10.5")."""
    return format(value.normalize(), "f")


def _decimal_or_none(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _str_or_none(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _row_to_trade(row: tuple) -> Trade:
    return Trade(
        id=row[0],
        account_id=row[1],
        asset=row[2],
        side=TradeSide(row[3]),
        stake=Decimal(row[4]),
        duration=row[5],
        entry_price=Decimal(row[6]),
        profit_percentage=Decimal(row[7]),
        price_source=row[8],
        status=TradeStatus(row[9]),
        created_at=from_ms(row[10]),  # type: ignore[arg-type]
        expires_at=from_ms(row[11]),  # type: ignore[arg-type]
        exit_price=_decimal_or_none(row[12]),
        result=TradeResult(row[13]) if row[13] else None,
        pnl=_decimal_or_none(row[14]),
        settled_at=from_ms(row[15]),
        manual_preset=TradeResult(row[16]) if row[16] else None,
        manual_preset_by=row[17],
        manual_preset_at=from_ms(row[18]),
    )


class TradeStore:
    """Async SQLite store for the trade engine.

    Usage:
        async with TradeDatabase("data/tradebox.db") as database:
            store = TradeStore(database)
            trades = await store.list_trades("acct-1")
    """

    def __init__(self, database: TradeDatabase) -> None:
        self._database = database

    @property
    def database(self) -> TradeDatabase:
        return self._database

    # ──────────────────────────────────────────────
    # Accounts
    # ──────────────────────────────────────────────

    async def create_account(
        self,
        account_id: str,
        trade_limit: int,
        trade_setting: UserTradeSetting | None = None,
    ) -> Account:
        """Insert an account row (or replace its quota and setting)."""
        setting = trade_setting or UserTradeSetting()
        now_ms = to_ms(datetime.now(timezone.utc))
        async with self._database.connection() as conn:
            await conn.execute(
                "INSERT INTO accounts (account_id, trade_limit, trade_mode, "
                "custom_win_percentage, custom_loss_percentage, created_at_ms) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(account_id) DO UPDATE SET "
                "trade_limit = excluded.trade_limit, "
                "trade_mode = excluded.trade_mode, "
                "custom_win_percentage = excluded.custom_win_percentage, "
                "custom_loss_percentage = excluded.custom_loss_percentage",
                (
                    account_id,
                    trade_limit,
                    setting.mode.value,
                    _str_or_none(setting.win_percentage),
                    _str_or_none(setting.loss_percentage),
                    now_ms,
                ),
            )
        return Account(account_id=account_id, trade_limit=trade_limit, trade_setting=setting)

    async def get_account(self, account_id: str) -> Account | None:
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                "SELECT account_id, trade_limit, trade_mode, custom_win_percentage, "
                "custom_loss_percentage FROM accounts WHERE account_id = ?",
                (account_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return Account(
            account_id=row[0],
            trade_limit=row[1],
            trade_setting=UserTradeSetting(
                mode=UserTradeMode(row[2]),
                win_percentage=_decimal_or_none(row[3]),
                loss_percentage=_decimal_or_none(row[4]),
            ),
        )

    async def update_account(
        self,
        account_id: str,
        trade_setting: UserTradeSetting | None = None,
        trade_limit: int | None = None,
    ) -> int:
        """Update an account's outcome setting and/or quota.

        Returns the number of rows affected (0 if the account is unknown).
        """
        assignments: list[str] = []
        params: list = []
        if trade_setting is not None:
            assignments += [
                "trade_mode = ?",
                "custom_win_percentage = ?",
                "custom_loss_percentage = ?",
            ]
            params += [
                trade_setting.mode.value,
                _str_or_none(trade_setting.win_percentage),
                _str_or_none(trade_setting.loss_percentage),
            ]
        if trade_limit is not None:
            assignments.append("trade_limit = ?")
            params.append(trade_limit)
        if not assignments:
            return 0

        params.append(account_id)
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                f"UPDATE accounts SET {', '.join(assignments)} WHERE account_id = ?",
                params,
            )
            return cursor.rowcount

    async def decrement_trade_limit(
        self, conn: aiosqlite.Connection, account_id: str
    ) -> int:
        """Consume one trade from the quota if any remain. Returns rows affected."""
        cursor = await conn.execute(
            "UPDATE accounts SET trade_limit = trade_limit - 1 "
            "WHERE account_id = ? AND trade_limit > 0",
            (account_id,),
        )
        return cursor.rowcount

    # ──────────────────────────────────────────────
    # Balances
    # ──────────────────────────────────────────────

    async def fetch_balance(
        self, conn: aiosqlite.Connection, account_id: str, currency: str
    ) -> Balance | None:
        cursor = await conn.execute(
            "SELECT total, deposited, earnings, frozen FROM balances "
            "WHERE account_id = ? AND currency = ?",
            (account_id, currency),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Balance(
            account_id=account_id,
            currency=currency,
            total=Decimal(row[0]),
            deposited=Decimal(row[1]),
            earnings=Decimal(row[2]),
            frozen=Decimal(row[3]),
        )

    async def get_balance(self, account_id: str, currency: str) -> Balance | None:
        async with self._database.connection() as conn:
            return await self.fetch_balance(conn, account_id, currency)

    async def insert_balance(self, conn: aiosqlite.Connection, balance: Balance) -> int:
        """Insert a new balance row. Returns 0 if one already exists."""
        cursor = await conn.execute(
            "INSERT OR IGNORE INTO balances "
            "(account_id, currency, total, deposited, earnings, frozen, updated_at_ms) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                balance.account_id,
                balance.currency,
                str(balance.total),
                str(balance.deposited),
                str(balance.earnings),
                str(balance.frozen),
                to_ms(datetime.now(timezone.utc)),
            ),
        )
        return cursor.rowcount

    async def update_balance_if_unchanged(
        self,
        conn: aiosqlite.Connection,
        balance: Balance,
        expected_total: Decimal,
    ) -> int:
        """Write a balance only if its stored total still equals expected_total.

        Returns rows affected (0 means another writer got there first).
        """
        cursor = await conn.execute(
            "UPDATE balances SET total = ?, deposited = ?, earnings = ?, "
            "updated_at_ms = ? "
            "WHERE account_id = ? AND currency = ? AND total = ?",
            (
                str(balance.total),
                str(balance.deposited),
                str(balance.earnings),
                to_ms(datetime.now(timezone.utc)),
                balance.account_id,
                balance.currency,
                str(expected_total),
            ),
        )
        return cursor.rowcount

    # ──────────────────────────────────────────────
    # Trades
    # ──────────────────────────────────────────────

    async def insert_trade(self, conn: aiosqlite.Connection, trade: Trade) -> None:
        await conn.execute(
            f"INSERT INTO trades ({_TRADE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                trade.id,
                trade.account_id,
                trade.asset,
                trade.side.value,
                str(trade.stake),
                trade.duration,
                str(trade.entry_price),
                str(trade.profit_percentage),
                trade.price_source,
                trade.status.value,
                to_ms(trade.created_at),
                to_ms(trade.expires_at),
                None,
                None,
                None,
                None,
                trade.manual_preset.value if trade.manual_preset else None,
                trade.manual_preset_by,
                to_ms(trade.manual_preset_at) if trade.manual_preset_at else None,
            ),
        )

    async def get_trade(
        self, trade_id: str, account_id: str | None = None
    ) -> Trade | None:
        """Fetch a trade by id, optionally scoped to its owner."""
        query = f"SELECT {_TRADE_COLUMNS} FROM trades WHERE id = ?"
        params: list = [trade_id]
        if account_id is not None:
            query += " AND account_id = ?"
            params.append(account_id)

        async with self._database.connection() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
        return _row_to_trade(row) if row is not None else None

    async def list_trades(
        self,
        account_id: str,
        status: TradeStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Trade]:
        """Query an account's trades, newest first."""
        conditions = ["account_id = ?"]
        params: list = [account_id]
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        params += [limit, offset]

        where = " AND ".join(conditions)
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_TRADE_COLUMNS} FROM trades WHERE {where} "
                f"ORDER BY created_at_ms DESC, id DESC LIMIT ? OFFSET ?",
                params,
            )
            rows = await cursor.fetchall()
        return [_row_to_trade(row) for row in rows]

    async def find_expired_active_trades(self, now: datetime) -> list[Trade]:
        """Return active trades whose expiry is at or before ``now``, oldest first."""
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_TRADE_COLUMNS} FROM trades "
                f"WHERE status = ? AND expires_at_ms <= ? ORDER BY expires_at_ms ASC",
                (TradeStatus.ACTIVE.value, to_ms(now)),
            )
            rows = await cursor.fetchall()
        return [_row_to_trade(row) for row in rows]

    async def finish_trade_if_active(
        self,
        conn: aiosqlite.Connection,
        trade_id: str,
        outcome: Outcome,
        settled_at: datetime,
    ) -> int:
        """Transition a trade to finished only if it is still active.

        Returns rows affected; 0 means another process already settled it.
        """
        cursor = await conn.execute(
            "UPDATE trades SET status = ?, result = ?, exit_price = ?, pnl = ?, "
            "settled_at_ms = ? WHERE id = ? AND status = ?",
            (
                TradeStatus.FINISHED.value,
                outcome.result.value,
                str(outcome.exit_price),
                str(outcome.pnl),
                to_ms(settled_at),
                trade_id,
                TradeStatus.ACTIVE.value,
            ),
        )
        return cursor.rowcount

    async def set_manual_preset(
        self,
        trade_id: str,
        preset: TradeResult,
        set_by: str,
        now: datetime,
    ) -> int:
        """Record an admin outcome preset on an active, unexpired trade.

        Returns rows affected; 0 if the trade is finished or expired.
        """
        now_ms = to_ms(now)
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                "UPDATE trades SET manual_preset = ?, manual_preset_by = ?, "
                "manual_preset_at_ms = ? "
                "WHERE id = ? AND status = ? AND expires_at_ms > ?",
                (
                    preset.value,
                    set_by,
                    now_ms,
                    trade_id,
                    TradeStatus.ACTIVE.value,
                    now_ms,
                ),
            )
            return cursor.rowcount

    # ──────────────────────────────────────────────
    # Catalog: assets and profit levels
    # ──────────────────────────────────────────────

    async def upsert_asset(self, asset: AssetConfig) -> None:
        async with self._database.connection() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO asset_settings (symbol, is_enabled) VALUES (?, ?)",
                (asset.symbol.upper(), 1 if asset.is_enabled else 0),
            )

    async def get_asset(self, symbol: str) -> AssetConfig | None:
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                "SELECT symbol, is_enabled FROM asset_settings WHERE symbol = ?",
                (symbol.upper(),),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return AssetConfig(symbol=row[0], is_enabled=bool(row[1]))

    async def upsert_profit_level(self, level: ProfitLevel) -> None:
        async with self._database.connection() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO profit_levels "
                "(duration, profit_percentage, min_stake) VALUES (?, ?, ?)",
                (
                    level.duration,
                    canonical_decimal(level.profit_percentage),
                    str(level.min_stake),
                ),
            )

    async def get_profit_levels(self, duration: str | None = None) -> list[ProfitLevel]:
        query = "SELECT duration, profit_percentage, min_stake FROM profit_levels"
        params: list = []
        if duration is not None:
            query += " WHERE duration = ?"
            params.append(duration)
        query += " ORDER BY duration, profit_percentage"

        async with self._database.connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return [
            ProfitLevel(
                duration=row[0],
                profit_percentage=Decimal(row[1]),
                min_stake=Decimal(row[2]),
            )
            for row in rows
        ]

    # ──────────────────────────────────────────────
    # Admin settings (key/value)
    # ──────────────────────────────────────────────

    async def get_admin_settings(self, keys: list[str]) -> dict[str, str]:
        placeholders = ", ".join("?" for _ in keys)
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                f"SELECT key, value FROM admin_settings WHERE key IN ({placeholders})",
                keys,
            )
            rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    async def put_admin_settings(self, values: dict[str, str | None]) -> None:
        """Upsert key/value settings; a None value deletes the key."""
        now_ms = to_ms(datetime.now(timezone.utc))
        async with self._database.transaction() as conn:
            for key, value in values.items():
                if value is None:
                    await conn.execute("DELETE FROM admin_settings WHERE key = ?", (key,))
                else:
                    await conn.execute(
                        "INSERT OR REPLACE INTO admin_settings (key, value, updated_at_ms) "
                        "VALUES (?, ?, ?)",
                        (key, value, now_ms),
                    )

    async def load_global_setting(self) -> GlobalTradeSetting:
        """Read the global trade-control setting from its key/value rows."""
        values = await self.get_admin_settings(
            [GLOBAL_TRADE_MODE_KEY, GLOBAL_WIN_PERCENTAGE_KEY, GLOBAL_LOSS_PERCENTAGE_KEY]
        )
        return GlobalTradeSetting(
            mode=GlobalTradeMode(values.get(GLOBAL_TRADE_MODE_KEY, "disabled")),
            win_percentage=_decimal_or_none(values.get(GLOBAL_WIN_PERCENTAGE_KEY)),
            loss_percentage=_decimal_or_none(values.get(GLOBAL_LOSS_PERCENTAGE_KEY)),
        )

    async def save_global_setting(self, setting: GlobalTradeSetting) -> None:
        await self.put_admin_settings({
            GLOBAL_TRADE_MODE_KEY: setting.mode.value,
            GLOBAL_WIN_PERCENTAGE_KEY: _str_or_none(setting.win_percentage),
            GLOBAL_LOSS_PERCENTAGE_KEY: _str_or_none(setting.loss_percentage),
        })

    # ──────────────────────────────────────────────
    # Notifications and activity log
    # ──────────────────────────────────────────────

    async def insert_notification(
        self,
        conn: aiosqlite.Connection,
        account_id: str,
        kind: str,
        title: str,
        message: str,
        trade_id: str | None = None,
    ) -> None:
        await conn.execute(
            "INSERT INTO notifications "
            "(account_id, kind, title, message, trade_id, created_at_ms) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (account_id, kind, title, message, trade_id, to_ms(datetime.now(timezone.utc))),
        )

    async def list_notifications(self, account_id: str, limit: int = 50) -> list[dict]:
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                "SELECT kind, title, message, trade_id, created_at_ms FROM notifications "
                "WHERE account_id = ? ORDER BY id DESC LIMIT ?",
                (account_id, limit),
            )
            rows = await cursor.fetchall()
        return [
            {
                "kind": row[0],
                "title": row[1],
                "message": row[2],
                "trade_id": row[3],
                "created_at_ms": row[4],
            }
            for row in rows
        ]

    async def insert_activity(
        self,
        account_id: str,
        activity_type: str,
        status: str,
        amount: Decimal | None = None,
        reference_id: str | None = None,
        metadata: dict | None = None,
    ) -> None:
        async with self._database.connection() as conn:
            await conn.execute(
                "INSERT INTO activity_log "
                "(account_id, activity_type, amount, status, reference_id, metadata, "
                "created_at_ms) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    account_id,
                    activity_type,
                    _str_or_none(amount),
                    status,
                    reference_id,
                    json.dumps(metadata, default=str) if metadata else None,
                    to_ms(datetime.now(timezone.utc)),
                ),
            )
        logger.debug(
            "activity_logged",
            account_id=account_id,
            activity_type=activity_type,
            reference_id=reference_id,
        )

    async def list_activity(self, account_id: str) -> list[dict]:
        async with self._database.connection() as conn:
            cursor = await conn.execute(
                "SELECT activity_type, amount, status, reference_id, metadata "
                "FROM activity_log WHERE account_id = ? ORDER BY id ASC",
                (account_id,),
            )
            rows = await cursor.fetchall()
        return [
            {
                "activity_type": row[0],
                "amount": _decimal_or_none(row[1]),
                "status": row[2],
                "reference_id": row[3],
                "metadata": json.loads(row[4]) if row[4] else {},
            }
            for row in rows
        ]
