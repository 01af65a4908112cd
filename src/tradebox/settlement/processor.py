"""Settlement batch processor -- exactly-once finishing of expired trades.

One pass:
  1. Load the global trade-control setting (through the settings cache)
  2. Find active trades whose expiry has passed
  3. Settle them in batches; batches are bounded by a semaphore and the
     trades inside a batch settle concurrently
  4. Per trade: resolve the outcome, then in one transaction flip the trade
     to finished (only if still active), credit the ledger, and write the
     user notification
  5. After commit: events and activity log

Exactly-once: the status transition is ``UPDATE ... WHERE status = 'active'``.
A competing pass (in this process or another) that loses the race sees zero
rows affected, rolls back, and does nothing.

The processor has no timer of its own; an external scheduler (cron, the
``/api/settlement/run`` endpoint) invokes ``run_settlement_pass``.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import structlog

from tradebox.config import SettlementSettings
from tradebox.data.store import TradeStore, utc_now
from tradebox.events import BALANCE_UPDATED, TRADE_SETTLED, TRADES_UPDATED, EventBus
from tradebox.exceptions import (
    PriceUnavailableError,
    TradeNotActiveError,
    TradeNotFoundError,
)
from tradebox.ledger.balance_ledger import BalanceLedger
from tradebox.logging import get_logger
from tradebox.models import (
    Balance,
    GlobalTradeSetting,
    Outcome,
    SettlementReport,
    Trade,
    TradeResult,
    TradeStatus,
    UserTradeSetting,
)
from tradebox.oracle.client import PriceOracle
from tradebox.settings_cache import SettingsCache
from tradebox.settlement.resolver import (
    OutcomePolicy,
    forced_outcome,
    global_percentages,
    resolve_outcome,
)

logger = get_logger(__name__)

GLOBAL_SETTINGS_CACHE_KEY = "global_trade_settings"


class _AlreadySettled(Exception):
    """Another writer finished the trade first; roll back and skip."""


class SettlementProcessor:
    """Finds expired trades and settles each one exactly once.

    Args:
        store: Typed SQL store.
        ledger: Balance ledger used for the credit.
        oracle: Price source for market-data outcomes.
        settings_cache: Cache for the global trade-control setting.
        events: Event bus for post-commit notifications.
        policy: Fallback movement percentages and RNG.
        settings: Batch size and concurrency limits.
        clock: Returns the current UTC time (injected by tests).
    """

    def __init__(
        self,
        store: TradeStore,
        ledger: BalanceLedger,
        oracle: PriceOracle,
        settings_cache: SettingsCache,
        events: EventBus,
        policy: OutcomePolicy,
        settings: SettlementSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._oracle = oracle
        self._settings_cache = settings_cache
        self._events = events
        self._policy = policy
        self._settings = settings or SettlementSettings()
        self._clock = clock

    async def load_global_setting(self) -> GlobalTradeSetting:
        """Global trade-control setting, at most one cache TTL stale."""
        return await self._settings_cache.get(
            GLOBAL_SETTINGS_CACHE_KEY,
            self._store.load_global_setting,
            ttl=self._settings.settings_cache_ttl_seconds,
        )

    async def run_settlement_pass(self) -> SettlementReport:
        """Settle every expired active trade.

        Never raises for per-trade problems: trades whose price is
        unavailable are deferred, unexpected failures are logged and
        reported, and both stay active for the next pass.
        """
        report = SettlementReport()
        pass_id = uuid4().hex[:12]

        with structlog.contextvars.bound_contextvars(settlement_pass=pass_id):
            global_setting = await self.load_global_setting()
            expired = await self._store.find_expired_active_trades(self._clock())
            if not expired:
                logger.debug("settlement_pass_empty")
                return report

            batch_size = max(1, self._settings.batch_size)
            batches = [
                expired[i:i + batch_size] for i in range(0, len(expired), batch_size)
            ]
            logger.info(
                "settlement_pass_started",
                expired=len(expired),
                batches=len(batches),
                global_mode=global_setting.mode.value,
            )

            semaphore = asyncio.Semaphore(max(1, self._settings.max_concurrent_batches))

            async def run_batch(batch: list[Trade]) -> None:
                async with semaphore:
                    await asyncio.gather(
                        *(self._process_trade(trade, global_setting, report) for trade in batch)
                    )

            await asyncio.gather(*(run_batch(batch) for batch in batches))

            logger.info(
                "settlement_pass_completed",
                settled=report.settled_count,
                deferred=len(report.deferred_ids),
                failed=len(report.failed_ids),
            )

        if report.settled_ids:
            await self._events.publish(TRADES_UPDATED, {
                "settled_count": report.settled_count,
                "trade_ids": list(report.settled_ids),
            })
        return report

    async def _process_trade(
        self,
        trade: Trade,
        global_setting: GlobalTradeSetting,
        report: SettlementReport,
    ) -> None:
        try:
            account = await self._store.get_account(trade.account_id)
            user_setting = account.trade_setting if account else UserTradeSetting()
            outcome = await resolve_outcome(
                trade, user_setting, global_setting, self._oracle, self._policy
            )
        except PriceUnavailableError as e:
            logger.warning("settlement_deferred", trade_id=trade.id, reason=str(e))
            report.deferred_ids.append(trade.id)
            return
        except Exception:
            logger.error("settlement_resolve_failed", trade_id=trade.id, exc_info=True)
            report.failed_ids.append(trade.id)
            return

        try:
            settled = await self._settle(trade, outcome)
        except Exception:
            logger.error("settlement_failed", trade_id=trade.id, exc_info=True)
            report.failed_ids.append(trade.id)
            return

        if settled:
            report.settled_ids.append(trade.id)

    async def _settle(self, trade: Trade, outcome: Outcome) -> bool:
        """Finish the trade and credit the ledger atomically.

        Returns False (and changes nothing) if the trade was no longer active.
        """
        settled_at = self._clock()
        try:
            async with self._ledger.database.transaction() as conn:
                affected = await self._store.finish_trade_if_active(
                    conn, trade.id, outcome, settled_at
                )
                if affected == 0:
                    raise _AlreadySettled(trade.id)

                if outcome.result == TradeResult.WIN:
                    balance = await self._ledger.credit_win(
                        conn, trade.account_id, trade.stake, outcome.pnl
                    )
                else:
                    balance = await self._ledger.credit_loss(
                        conn, trade.account_id, trade.stake, outcome.pnl
                    )

                await self._store.insert_notification(
                    conn,
                    trade.account_id,
                    kind="trade",
                    title="Trade Completed",
                    message=_notification_message(trade, outcome, self._ledger.currency),
                    trade_id=trade.id,
                )
        except _AlreadySettled:
            logger.info("settlement_already_finished", trade_id=trade.id)
            return False

        trade.status = TradeStatus.FINISHED
        trade.result = outcome.result
        trade.exit_price = outcome.exit_price
        trade.pnl = outcome.pnl
        trade.settled_at = settled_at

        logger.info(
            "trade_settled",
            trade_id=trade.id,
            account_id=trade.account_id,
            result=outcome.result.value,
            entry_price=str(trade.entry_price),
            exit_price=str(outcome.exit_price),
            pnl=str(outcome.pnl),
            balance_total=str(balance.total),
        )
        await self._after_settle(trade, outcome, balance)
        return True

    async def _after_settle(self, trade: Trade, outcome: Outcome, balance: Balance) -> None:
        """Activity log and events. Failures are logged, never raised."""
        credited = balance_delta(trade, outcome)
        try:
            await self._store.insert_activity(
                account_id=trade.account_id,
                activity_type="TRADE_COMPLETED",
                status="success",
                amount=outcome.pnl,
                reference_id=trade.id,
                metadata={
                    "asset": trade.asset,
                    "side": trade.side.value,
                    "result": outcome.result.value,
                    "entry_price": str(trade.entry_price),
                    "exit_price": str(outcome.exit_price),
                    "stake": str(trade.stake),
                    "credited": str(credited),
                },
            )
        except Exception:
            logger.error("activity_log_failed", trade_id=trade.id, exc_info=True)

        await self._events.publish(TRADE_SETTLED, {
            "trade_id": trade.id,
            "account_id": trade.account_id,
            "asset": trade.asset,
            "result": outcome.result.value,
            "exit_price": outcome.exit_price,
            "pnl": outcome.pnl,
            "status": TradeStatus.FINISHED.value,
        })
        await self._events.publish(BALANCE_UPDATED, {
            "account_id": trade.account_id,
            "trade_id": trade.id,
            "amount": credited,
            "total": balance.total,
            "reason": "TRADE_COMPLETED",
        })

    async def settle_trade_now(
        self, trade_id: str, result: TradeResult | str
    ) -> Trade:
        """Immediately settle one active trade with a forced result.

        The exit price is synthesized from the global movement percentages.

        Raises:
            TradeNotFoundError: If the trade does not exist.
            TradeNotActiveError: If the trade is already finished.
        """
        result = TradeResult(result)
        trade = await self._store.get_trade(trade_id)
        if trade is None:
            raise TradeNotFoundError(f"Trade {trade_id} not found")
        if trade.status != TradeStatus.ACTIVE:
            raise TradeNotActiveError(f"Trade {trade_id} is already {trade.status.value}")

        global_setting = await self.load_global_setting()
        outcome = forced_outcome(
            trade, result, global_percentages(global_setting, self._policy)
        )
        if not await self._settle(trade, outcome):
            raise TradeNotActiveError(f"Trade {trade_id} was settled concurrently")

        logger.info("trade_settled_manually", trade_id=trade_id, result=result.value)
        await self._events.publish(TRADES_UPDATED, {
            "settled_count": 1,
            "trade_ids": [trade_id],
        })
        return trade


def balance_delta(trade: Trade, outcome: Outcome) -> Decimal:
    """Amount credited back to the balance at settlement."""
    if outcome.result == TradeResult.WIN:
        return trade.stake + abs(outcome.pnl)
    return trade.stake - abs(outcome.pnl)


def _notification_message(trade: Trade, outcome: Outcome, currency: str) -> str:
    verb = "won" if outcome.result == TradeResult.WIN else "lost"
    return (
        f"Your {trade.asset} {trade.side.value} trade {verb}: "
        f"{outcome.pnl} {currency} (exit price {outcome.exit_price})"
    )
