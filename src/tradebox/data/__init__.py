"""Trade engine persistence layer.

Provides SQLite database management and the typed read/write store for
accounts, balances, trades, catalog configuration, and admin settings.
"""

from tradebox.data.database import TradeDatabase
from tradebox.data.store import TradeStore

__all__ = [
    "TradeDatabase",
    "TradeStore",
]
