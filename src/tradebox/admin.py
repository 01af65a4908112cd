"""Administrative controls for the trade engine.

Manual outcome presets, global and per-account trade-control settings,
the asset/profit-level catalog, immediate settlement, and deposits used to
fund accounts. Authentication and authorization happen upstream.
"""

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from tradebox.data.store import TradeStore, utc_now
from tradebox.events import BALANCE_UPDATED, EventBus
from tradebox.exceptions import (
    AccountNotFoundError,
    InvalidSettingError,
    TradeNotActiveError,
    TradeNotFoundError,
)
from tradebox.ledger.balance_ledger import BalanceLedger
from tradebox.logging import get_logger
from tradebox.models import (
    AssetConfig,
    Balance,
    GlobalTradeMode,
    GlobalTradeSetting,
    ProfitLevel,
    Trade,
    TradeResult,
    UserTradeMode,
    UserTradeSetting,
)
from tradebox.settings_cache import SettingsCache
from tradebox.settlement.processor import GLOBAL_SETTINGS_CACHE_KEY, SettlementProcessor
from tradebox.trading.duration import compute_expiry

logger = get_logger(__name__)

# Accepted ranges (inclusive) for configured movement percentages
WIN_PERCENTAGE_RANGE = (Decimal("0.01"), Decimal("99.99"))
LOSS_PERCENTAGE_RANGE = (Decimal("0.001"), Decimal("99.99"))


def _check_range(name: str, value: Decimal | None, bounds: tuple[Decimal, Decimal]) -> None:
    low, high = bounds
    if value is None:
        raise InvalidSettingError(f"{name} is required for custom mode")
    if not low <= value <= high:
        raise InvalidSettingError(f"{name} must be between {low} and {high}, got {value}")


def _validated_user_setting(setting: UserTradeSetting) -> UserTradeSetting:
    """Range-check custom percentages; other modes drop any percentages."""
    if setting.mode == UserTradeMode.CUSTOM:
        _check_range("win_percentage", setting.win_percentage, WIN_PERCENTAGE_RANGE)
        _check_range("loss_percentage", setting.loss_percentage, LOSS_PERCENTAGE_RANGE)
        return setting
    return UserTradeSetting(mode=setting.mode)


class AdminService:
    """Operator-facing mutations of engine configuration and trades.

    Args:
        store: Typed SQL store.
        ledger: Balance ledger (deposits).
        processor: Settlement processor (immediate settlement).
        settings_cache: Cache invalidated after global setting writes.
        events: Event bus.
        clock: Returns the current UTC time (injected by tests).
    """

    def __init__(
        self,
        store: TradeStore,
        ledger: BalanceLedger,
        processor: SettlementProcessor,
        settings_cache: SettingsCache,
        events: EventBus,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._processor = processor
        self._settings_cache = settings_cache
        self._events = events
        self._clock = clock

    # ──────────────────────────────────────────────
    # Trades
    # ──────────────────────────────────────────────

    async def set_manual_preset(
        self, trade_id: str, result: TradeResult | str, set_by: str = "admin"
    ) -> Trade:
        """Force the outcome of one active, unexpired trade.

        Raises:
            TradeNotFoundError: If the trade does not exist.
            TradeNotActiveError: If the trade is finished or already expired.
        """
        result = TradeResult(result)
        if await self._store.get_trade(trade_id) is None:
            raise TradeNotFoundError(f"Trade {trade_id} not found")

        affected = await self._store.set_manual_preset(trade_id, result, set_by, self._clock())
        if affected == 0:
            raise TradeNotActiveError(
                f"Trade {trade_id} is no longer active; preset not applied"
            )

        logger.info("manual_preset_set", trade_id=trade_id, result=result.value, set_by=set_by)
        trade = await self._store.get_trade(trade_id)
        assert trade is not None
        return trade

    async def settle_trade_now(self, trade_id: str, result: TradeResult | str) -> Trade:
        return await self._processor.settle_trade_now(trade_id, result)

    # ──────────────────────────────────────────────
    # Trade-control settings
    # ──────────────────────────────────────────────

    async def get_global_setting(self) -> GlobalTradeSetting:
        """Read the global setting straight from storage (bypassing the cache)."""
        return await self._store.load_global_setting()

    async def update_global_setting(self, setting: GlobalTradeSetting) -> GlobalTradeSetting:
        """Validate and persist the global setting, then drop the cached copy.

        Custom mode requires both percentages. Other modes keep whatever
        percentages are supplied (they drive synthesized exit prices) but
        still range-check them.

        Raises:
            InvalidSettingError: If a percentage is missing or out of range.
        """
        if setting.mode == GlobalTradeMode.CUSTOM:
            _check_range("win_percentage", setting.win_percentage, WIN_PERCENTAGE_RANGE)
            _check_range("loss_percentage", setting.loss_percentage, LOSS_PERCENTAGE_RANGE)
        else:
            if setting.win_percentage is not None:
                _check_range("win_percentage", setting.win_percentage, WIN_PERCENTAGE_RANGE)
            if setting.loss_percentage is not None:
                _check_range("loss_percentage", setting.loss_percentage, LOSS_PERCENTAGE_RANGE)

        await self._store.save_global_setting(setting)
        self._settings_cache.invalidate(GLOBAL_SETTINGS_CACHE_KEY)

        logger.info(
            "global_trade_setting_updated",
            mode=setting.mode.value,
            win_percentage=str(setting.win_percentage),
            loss_percentage=str(setting.loss_percentage),
        )
        return setting

    async def update_user_trade_setting(
        self, account_id: str, setting: UserTradeSetting
    ) -> UserTradeSetting:
        """Replace one account's trade-control setting.

        Raises:
            InvalidSettingError: If custom mode percentages are missing or out of range.
            AccountNotFoundError: If the account does not exist.
        """
        applied = await self.update_account_controls(account_id, setting=setting)
        assert applied is not None
        return applied

    async def update_account_controls(
        self,
        account_id: str,
        setting: UserTradeSetting | None = None,
        trade_limit: int | None = None,
    ) -> UserTradeSetting | None:
        """Apply an outcome setting and/or a quota in a single write.

        Both values are validated before anything is stored.

        Raises:
            InvalidSettingError: If nothing is supplied, custom percentages
                are missing or out of range, or trade_limit is negative.
            AccountNotFoundError: If the account does not exist.
        """
        if setting is None and trade_limit is None:
            raise InvalidSettingError("Nothing to update: provide mode and/or trade_limit")
        if setting is not None:
            setting = _validated_user_setting(setting)
        if trade_limit is not None and trade_limit < 0:
            raise InvalidSettingError("trade_limit cannot be negative")

        affected = await self._store.update_account(
            account_id, trade_setting=setting, trade_limit=trade_limit
        )
        if affected == 0:
            raise AccountNotFoundError(f"Account {account_id} not found")

        logger.info(
            "account_controls_updated",
            account_id=account_id,
            mode=setting.mode.value if setting is not None else None,
            trade_limit=trade_limit,
        )
        return setting

    async def register_account(self, account_id: str, trade_limit: int) -> None:
        """Create (or reset) an account mirrored from the upstream user system."""
        if not account_id:
            raise InvalidSettingError("account_id is required")
        if trade_limit < 0:
            raise InvalidSettingError("trade_limit cannot be negative")
        await self._store.create_account(account_id, trade_limit)
        logger.info("account_registered", account_id=account_id, trade_limit=trade_limit)

    async def set_trade_limit(self, account_id: str, trade_limit: int) -> None:
        await self.update_account_controls(account_id, trade_limit=trade_limit)

    # ──────────────────────────────────────────────
    # Catalog
    # ──────────────────────────────────────────────

    async def upsert_asset(self, symbol: str, is_enabled: bool) -> AssetConfig:
        symbol = symbol.strip().upper()
        if not symbol:
            raise InvalidSettingError("Asset symbol is required")
        asset = AssetConfig(symbol=symbol, is_enabled=is_enabled)
        await self._store.upsert_asset(asset)
        logger.info("asset_updated", symbol=symbol, is_enabled=is_enabled)
        return asset

    async def upsert_profit_level(
        self, duration: str, profit_percentage: Decimal, min_stake: Decimal
    ) -> ProfitLevel:
        """Add or replace a (duration, profit percentage) catalog entry.

        The profit percentage is capped at 100 so a losing trade can never
        take more than its stake.
        """
        compute_expiry(self._clock(), duration)
        if not Decimal("0") < profit_percentage <= Decimal("100"):
            raise InvalidSettingError(
                f"profit_percentage must be in (0, 100], got {profit_percentage}"
            )
        if min_stake < 0:
            raise InvalidSettingError("min_stake cannot be negative")

        level = ProfitLevel(
            duration=duration, profit_percentage=profit_percentage, min_stake=min_stake
        )
        await self._store.upsert_profit_level(level)
        logger.info(
            "profit_level_updated",
            duration=duration,
            profit_percentage=str(profit_percentage),
            min_stake=str(min_stake),
        )
        return level

    async def list_profit_levels(self) -> list[ProfitLevel]:
        return await self._store.get_profit_levels()

    # ──────────────────────────────────────────────
    # Funding
    # ──────────────────────────────────────────────

    async def deposit(self, account_id: str, amount: Decimal) -> Balance:
        """Credit funds to an existing account.

        Raises:
            AccountNotFoundError: If the account does not exist.
            InvalidSettingError: If the amount is not positive.
        """
        if amount <= 0:
            raise InvalidSettingError("Deposit amount must be positive")
        if await self._store.get_account(account_id) is None:
            raise AccountNotFoundError(f"Account {account_id} not found")

        balance = await self._ledger.deposit(account_id, amount)
        try:
            await self._store.insert_activity(
                account_id=account_id,
                activity_type="DEPOSIT",
                status="success",
                amount=amount,
            )
        except Exception:
            logger.error("activity_log_failed", account_id=account_id, exc_info=True)

        await self._events.publish(BALANCE_UPDATED, {
            "account_id": account_id,
            "amount": amount,
            "total": balance.total,
            "reason": "DEPOSIT",
        })
        return balance
