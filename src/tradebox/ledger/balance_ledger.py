"""Dual-bucket balance ledger and per-account trade quota.

Every operation is a single-row read-modify-write inside the caller's
transaction. The write is conditional on the previously read ``total``, so
a concurrent writer that slipped in between read and write turns into a
LedgerConflictError (and a rollback) instead of a lost update.

Bucket rules:
  - debit: take from ``deposited`` first, then ``earnings``
  - credit_win: stake back to ``deposited``, profit to ``earnings``
  - credit_loss: the surviving remainder of the stake back to ``deposited``
``total == deposited + earnings`` holds after every operation.
"""

from decimal import Decimal

import aiosqlite

from tradebox.data.database import TradeDatabase
from tradebox.data.store import TradeStore
from tradebox.exceptions import (
    InsufficientBalanceError,
    LedgerConflictError,
    QuotaExhaustedError,
)
from tradebox.logging import get_logger
from tradebox.models import Balance

logger = get_logger(__name__)

_ZERO = Decimal("0")


class BalanceLedger:
    """Atomic balance mutations for one currency.

    Args:
        store: Typed SQL store.
        currency: Ledger currency (all trades settle in it).
    """

    def __init__(self, store: TradeStore, currency: str = "USDT") -> None:
        self._store = store
        self._currency = currency

    @property
    def currency(self) -> str:
        return self._currency

    @property
    def database(self) -> TradeDatabase:
        return self._store.database

    async def get_balance(self, account_id: str) -> Balance:
        """Return the account's balance, or an empty one if none exists yet."""
        balance = await self._store.get_balance(account_id, self._currency)
        return balance or Balance(account_id=account_id, currency=self._currency)

    async def _write(
        self, conn: aiosqlite.Connection, balance: Balance, expected_total: Decimal
    ) -> None:
        affected = await self._store.update_balance_if_unchanged(
            conn, balance, expected_total
        )
        if affected != 1:
            raise LedgerConflictError(
                f"Balance for {balance.account_id} changed during update"
            )

    async def _credit(
        self,
        conn: aiosqlite.Connection,
        account_id: str,
        total_delta: Decimal,
        deposited_delta: Decimal,
        earnings_delta: Decimal,
    ) -> Balance:
        current = await self._store.fetch_balance(conn, account_id, self._currency)
        if current is None:
            created = Balance(
                account_id=account_id,
                currency=self._currency,
                total=total_delta,
                deposited=deposited_delta,
                earnings=earnings_delta,
            )
            if await self._store.insert_balance(conn, created) == 1:
                return created
            # Created concurrently between our read and insert
            current = await self._store.fetch_balance(conn, account_id, self._currency)
            assert current is not None

        updated = Balance(
            account_id=account_id,
            currency=self._currency,
            total=current.total + total_delta,
            deposited=current.deposited + deposited_delta,
            earnings=current.earnings + earnings_delta,
            frozen=current.frozen,
        )
        await self._write(conn, updated, current.total)
        return updated

    async def debit(
        self, conn: aiosqlite.Connection, account_id: str, amount: Decimal
    ) -> Balance:
        """Remove ``amount`` for a trade stake.

        Raises:
            InsufficientBalanceError: If no balance exists or available < amount.
        """
        if amount <= _ZERO:
            raise ValueError(f"Debit amount must be positive, got {amount}")

        current = await self._store.fetch_balance(conn, account_id, self._currency)
        if current is None:
            raise InsufficientBalanceError(
                f"No {self._currency} balance found. Please deposit first."
            )
        if current.available < amount:
            raise InsufficientBalanceError(
                f"Insufficient balance. Required: {amount} {self._currency}, "
                f"Available: {current.available} {self._currency}"
            )

        from_deposited = min(current.deposited, amount)
        from_earnings = amount - from_deposited

        updated = Balance(
            account_id=account_id,
            currency=self._currency,
            total=current.total - amount,
            deposited=current.deposited - from_deposited,
            earnings=current.earnings - from_earnings,
            frozen=current.frozen,
        )
        await self._write(conn, updated, current.total)

        logger.info(
            "balance_debited",
            account_id=account_id,
            amount=str(amount),
            from_deposited=str(from_deposited),
            from_earnings=str(from_earnings),
            total=str(updated.total),
        )
        return updated

    async def credit_win(
        self,
        conn: aiosqlite.Connection,
        account_id: str,
        stake: Decimal,
        pnl: Decimal,
    ) -> Balance:
        """Return stake to ``deposited`` and profit to ``earnings``."""
        profit = abs(pnl)
        updated = await self._credit(conn, account_id, stake + profit, stake, profit)
        logger.info(
            "balance_credited_win",
            account_id=account_id,
            stake=str(stake),
            profit=str(profit),
            total=str(updated.total),
        )
        return updated

    async def credit_loss(
        self,
        conn: aiosqlite.Connection,
        account_id: str,
        stake: Decimal,
        pnl: Decimal,
    ) -> Balance:
        """Return what survives of the stake (stake - |pnl|) to ``deposited``."""
        remainder = stake - abs(pnl)
        if remainder < _ZERO:
            raise ValueError(
                f"Loss {abs(pnl)} exceeds stake {stake} for account {account_id}"
            )
        updated = await self._credit(conn, account_id, remainder, remainder, _ZERO)
        logger.info(
            "balance_credited_loss",
            account_id=account_id,
            stake=str(stake),
            returned=str(remainder),
            total=str(updated.total),
        )
        return updated

    async def deposit(self, account_id: str, amount: Decimal) -> Balance:
        """Credit externally deposited funds to ``deposited`` in its own transaction."""
        if amount <= _ZERO:
            raise ValueError(f"Deposit amount must be positive, got {amount}")
        async with self.database.transaction() as conn:
            updated = await self._credit(conn, account_id, amount, amount, _ZERO)
        logger.info(
            "balance_deposited",
            account_id=account_id,
            amount=str(amount),
            total=str(updated.total),
        )
        return updated

    async def consume_trade_quota(
        self, conn: aiosqlite.Connection, account_id: str
    ) -> None:
        """Decrement the remaining-trades counter.

        Raises:
            QuotaExhaustedError: If the counter is already zero.
        """
        if await self._store.decrement_trade_limit(conn, account_id) != 1:
            raise QuotaExhaustedError(
                "Trade limit reached. Please contact support."
            )
