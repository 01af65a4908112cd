"""Shared data models for the trade settlement engine.

CRITICAL: All monetary values use Decimal. Never use float for prices, stakes, or P&L.
Timestamps are timezone-aware UTC datetimes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class TradeSide(str, Enum):
    """Position direction."""

    LONG = "long"
    SHORT = "short"


class TradeStatus(str, Enum):
    """Trade lifecycle status. ACTIVE -> FINISHED is the only transition."""

    ACTIVE = "active"
    FINISHED = "finished"


class TradeResult(str, Enum):
    """Settled outcome of a trade."""

    WIN = "win"
    LOSS = "loss"


class UserTradeMode(str, Enum):
    """Per-account outcome policy."""

    WIN = "win"
    LOSS = "loss"
    AUTOMATIC = "automatic"
    CUSTOM = "custom"


class GlobalTradeMode(str, Enum):
    """Platform-wide outcome policy."""

    DISABLED = "disabled"
    AUTOMATIC = "automatic"
    WIN = "win"
    LOSS = "loss"
    CUSTOM = "custom"


@dataclass
class Trade:
    """A single time-boxed directional position."""

    id: str
    account_id: str
    asset: str
    side: TradeSide
    stake: Decimal
    duration: str
    entry_price: Decimal
    profit_percentage: Decimal
    created_at: datetime
    expires_at: datetime
    status: TradeStatus = TradeStatus.ACTIVE
    price_source: str = ""
    exit_price: Decimal | None = None
    result: TradeResult | None = None
    pnl: Decimal | None = None
    settled_at: datetime | None = None
    manual_preset: TradeResult | None = None
    manual_preset_by: str | None = None
    manual_preset_at: datetime | None = None


@dataclass
class Balance:
    """Ledger record for one (account, currency) pair.

    total == deposited + earnings is maintained by every ledger operation.
    """

    account_id: str
    currency: str
    total: Decimal = Decimal("0")
    deposited: Decimal = Decimal("0")
    earnings: Decimal = Decimal("0")
    frozen: Decimal = Decimal("0")

    @property
    def available(self) -> Decimal:
        """Portion of the balance usable for new trades or withdrawals."""
        return self.total - self.frozen


@dataclass
class UserTradeSetting:
    """Per-account trade-control configuration."""

    mode: UserTradeMode = UserTradeMode.AUTOMATIC
    win_percentage: Decimal | None = None
    loss_percentage: Decimal | None = None


@dataclass
class GlobalTradeSetting:
    """Process-wide trade-control configuration.

    Percentages are None when not configured; the resolver then falls back
    to the OutcomePolicy defaults.
    """

    mode: GlobalTradeMode = GlobalTradeMode.DISABLED
    win_percentage: Decimal | None = None
    loss_percentage: Decimal | None = None


@dataclass
class Account:
    """Trading account with remaining trade quota and outcome setting."""

    account_id: str
    trade_limit: int
    trade_setting: UserTradeSetting = field(default_factory=UserTradeSetting)


@dataclass
class AssetConfig:
    """Per-asset trading switch."""

    symbol: str
    is_enabled: bool = True


@dataclass
class ProfitLevel:
    """Catalog entry pairing a duration with its payout and minimum stake."""

    duration: str
    profit_percentage: Decimal
    min_stake: Decimal


@dataclass
class PriceQuote:
    """Validated oracle price with provenance."""

    asset: str
    price: Decimal
    source: str
    observed_at: datetime


@dataclass
class Outcome:
    """Resolved settlement outcome for a trade."""

    result: TradeResult
    exit_price: Decimal
    pnl: Decimal


@dataclass
class SettlementReport:
    """Summary of one settlement pass."""

    settled_ids: list[str] = field(default_factory=list)
    deferred_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)

    @property
    def settled_count(self) -> int:
        return len(self.settled_ids)
