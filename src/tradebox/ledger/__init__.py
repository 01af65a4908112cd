"""Balance ledger -- atomic debit/credit operations and trade quota."""

from tradebox.ledger.balance_ledger import BalanceLedger

__all__ = ["BalanceLedger"]
