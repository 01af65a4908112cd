"""Trade intake: validation and atomic creation of new trades.

Trade flow:
1. Validate stake, account quota, asset switch, duration, and catalog entry
2. Check available balance
3. Fetch a fresh, validated entry price (never a fallback price)
4. In one transaction: insert trade, debit ledger, consume quota
5. Best-effort post-commit side effects: activity log and events

Any failure before or during step 4 leaves no trace in storage.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal, InvalidOperation
from uuid import uuid4

from tradebox.data.store import TradeStore, utc_now
from tradebox.events import BALANCE_UPDATED, TRADE_CREATED, EventBus
from tradebox.exceptions import (
    AccountNotFoundError,
    AssetDisabledError,
    AssetNotConfiguredError,
    InsufficientBalanceError,
    InvalidDurationError,
    InvalidProfitLevelError,
    InvalidStakeError,
    PriceUnavailableError,
    QuotaExhaustedError,
    StakeBelowMinimumError,
    TradeNotFoundError,
    TradeValidationError,
)
from tradebox.ledger.balance_ledger import BalanceLedger
from tradebox.logging import get_logger
from tradebox.models import PriceQuote, ProfitLevel, Trade, TradeSide, TradeStatus
from tradebox.oracle.client import PriceOracle
from tradebox.trading.duration import compute_expiry, parse_duration

logger = get_logger(__name__)


def _parse_profit_percentage(value: Decimal | str) -> Decimal:
    """Accept 10, "10", or "10%". NaN and infinities are rejected."""
    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            parsed = Decimal(str(value).strip().rstrip("%").strip())
        except InvalidOperation:
            raise InvalidProfitLevelError(f"Invalid profit level {value!r}")
    if not parsed.is_finite():
        raise InvalidProfitLevelError(f"Invalid profit level {value!r}")
    return parsed


class TradeIntake:
    """Validates and opens trades.

    Args:
        store: Typed SQL store.
        ledger: Balance ledger (debit and quota).
        oracle: Price source for the entry price.
        events: Event bus for post-commit notifications.
        price_timeout: Upper bound in seconds on the oracle call.
        clock: Returns the current UTC time (injected by tests).
    """

    def __init__(
        self,
        store: TradeStore,
        ledger: BalanceLedger,
        oracle: PriceOracle,
        events: EventBus,
        price_timeout: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._oracle = oracle
        self._events = events
        self._price_timeout = price_timeout
        self._clock = clock

    async def _match_profit_level(
        self, duration: str, claimed_profit: Decimal
    ) -> ProfitLevel:
        parse_duration(duration)

        levels = await self._store.get_profit_levels(duration)
        if not levels:
            raise InvalidDurationError(f"Delivery time {duration} is not offered")

        for level in levels:
            if level.profit_percentage == claimed_profit:
                return level
        raise InvalidProfitLevelError(
            f"Invalid profit level {claimed_profit}% for delivery time {duration}"
        )

    async def _fetch_entry_price(self, asset: str) -> PriceQuote:
        try:
            return await asyncio.wait_for(
                self._oracle.get_validated_price(asset), timeout=self._price_timeout
            )
        except asyncio.TimeoutError:
            raise PriceUnavailableError(
                "Unable to fetch real-time price. Please try again."
            )

    async def create_trade(
        self,
        account_id: str,
        asset: str,
        side: TradeSide | str,
        stake: Decimal,
        duration: str,
        claimed_profit_percentage: Decimal | str,
    ) -> Trade:
        """Validate and open a trade.

        Returns:
            The created, active Trade.

        Raises:
            InvalidStakeError: If stake is not positive.
            AccountNotFoundError: If the account does not exist.
            QuotaExhaustedError: If no trades remain for the account.
            AssetNotConfiguredError / AssetDisabledError: Asset not tradeable.
            InvalidDurationError: Malformed or unoffered duration.
            InvalidProfitLevelError: No catalog entry for the profit level.
            StakeBelowMinimumError: Stake under the catalog minimum.
            InsufficientBalanceError: Available balance below stake.
            PriceUnavailableError: No fresh price could be obtained.
        """
        try:
            side = TradeSide(side)
        except ValueError:
            raise TradeValidationError(f"Invalid side {side!r}; expected long or short")
        asset = asset.upper()
        claimed_profit = _parse_profit_percentage(claimed_profit_percentage)

        if stake <= 0:
            raise InvalidStakeError("Trade amount must be positive")

        account = await self._store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        if account.trade_limit <= 0:
            raise QuotaExhaustedError("Failed to place trade. Please contact support.")

        asset_config = await self._store.get_asset(asset)
        if asset_config is None:
            raise AssetNotConfiguredError(f"Trading not configured for {asset}")
        if not asset_config.is_enabled:
            raise AssetDisabledError(f"Trading is disabled for {asset}")

        level = await self._match_profit_level(duration, claimed_profit)
        if stake < level.min_stake:
            raise StakeBelowMinimumError(
                f"Minimum trade amount is {level.min_stake} {self._ledger.currency} "
                f"for this profit level"
            )

        balance = await self._ledger.get_balance(account_id)
        if balance.available < stake:
            raise InsufficientBalanceError(
                f"Insufficient balance. Required: {stake} {self._ledger.currency}, "
                f"Available: {balance.available} {self._ledger.currency}"
            )

        quote = await self._fetch_entry_price(asset)

        now = self._clock()
        trade = Trade(
            id=uuid4().hex,
            account_id=account_id,
            asset=asset,
            side=side,
            stake=stake,
            duration=duration,
            entry_price=quote.price,
            profit_percentage=level.profit_percentage,
            created_at=now,
            expires_at=compute_expiry(now, duration),
            price_source=quote.source,
        )

        async with self._ledger.database.transaction() as conn:
            await self._store.insert_trade(conn, trade)
            updated_balance = await self._ledger.debit(conn, account_id, stake)
            await self._ledger.consume_trade_quota(conn, account_id)

        logger.info(
            "trade_created",
            trade_id=trade.id,
            account_id=account_id,
            asset=asset,
            side=side.value,
            stake=str(stake),
            entry_price=str(quote.price),
            price_source=quote.source,
            expires_at=trade.expires_at.isoformat(),
        )

        await self._after_create(trade, updated_balance.total)
        return trade

    async def _after_create(self, trade: Trade, balance_total: Decimal) -> None:
        """Activity log and events. Failures are logged, never raised."""
        try:
            await self._store.insert_activity(
                account_id=trade.account_id,
                activity_type="TRADE_CREATED",
                status="success",
                amount=trade.stake,
                reference_id=trade.id,
                metadata={
                    "asset": trade.asset,
                    "side": trade.side.value,
                    "entry_price": str(trade.entry_price),
                    "duration": trade.duration,
                    "profit_percentage": str(trade.profit_percentage),
                    "price_source": trade.price_source,
                    "expires_at": trade.expires_at.isoformat(),
                },
            )
        except Exception:
            logger.error("activity_log_failed", trade_id=trade.id, exc_info=True)

        await self._events.publish(TRADE_CREATED, {
            "trade_id": trade.id,
            "account_id": trade.account_id,
            "asset": trade.asset,
            "side": trade.side.value,
            "stake": trade.stake,
            "entry_price": trade.entry_price,
            "duration": trade.duration,
            "expires_at": trade.expires_at.isoformat(),
            "status": trade.status.value,
        })
        await self._events.publish(BALANCE_UPDATED, {
            "account_id": trade.account_id,
            "trade_id": trade.id,
            "amount": -trade.stake,
            "total": balance_total,
            "reason": "TRADE_CREATED",
        })

    async def list_trades(
        self,
        account_id: str,
        status: TradeStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Trade]:
        """Return an account's trades, newest first."""
        return await self._store.list_trades(account_id, status, limit, offset)

    async def get_trade(self, account_id: str, trade_id: str) -> Trade:
        trade = await self._store.get_trade(trade_id, account_id=account_id)
        if trade is None:
            raise TradeNotFoundError(f"Trade {trade_id} not found")
        return trade
