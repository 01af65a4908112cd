"""Outcome policy resolution for expiring trades.

Decides {result, exit_price, pnl} for a trade from layered controls, highest
precedence first:

  1. Manual preset on the trade (admin override)
  2. Global mode win / loss / automatic
  3. Global mode custom: global percentages, per-user result
  4. Global mode disabled: per-user setting governs
  5. Market data (oracle price vs. entry price; ties are losses)

``plan_outcome`` is pure: it returns either a final Outcome or a
MarketResolution describing the market-data step still to run.
``resolve_outcome`` performs that step against a PriceOracle.

Three independent percentages are involved:
  - the per-trade profit percentage (how much money changes hands)
  - the outcome-movement percentages (how far a synthesized exit price moves)
  - the mode itself (whether the trade wins)
"""

import random
from dataclasses import dataclass, field
from decimal import Decimal

from tradebox.config import OutcomeSettings
from tradebox.logging import get_logger
from tradebox.models import (
    GlobalTradeMode,
    GlobalTradeSetting,
    Outcome,
    Trade,
    TradeResult,
    TradeSide,
    UserTradeMode,
    UserTradeSetting,
)
from tradebox.oracle.client import PriceOracle

logger = get_logger(__name__)

_HUNDRED = Decimal("100")
_ONE = Decimal("1")
_WIN_PERCENTAGE_QUANTUM = Decimal("0.0001")


@dataclass
class OutcomePolicy:
    """Fallback movement percentages and the RNG used to sample them.

    The default win percentage is drawn uniformly from
    [default_win_min, default_win_max] each time it is needed; inject a
    seeded ``rng`` (or equal bounds) for deterministic results.
    """

    default_win_min: Decimal = Decimal("1")
    default_win_max: Decimal = Decimal("5")
    default_loss: Decimal = Decimal("0.002")
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def from_settings(
        cls, settings: OutcomeSettings, rng: random.Random | None = None
    ) -> "OutcomePolicy":
        return cls(
            default_win_min=settings.default_win_min_percentage,
            default_win_max=settings.default_win_max_percentage,
            default_loss=settings.default_loss_percentage,
            rng=rng or random.Random(),
        )

    def sample_win_percentage(self) -> Decimal:
        if self.default_win_min == self.default_win_max:
            return self.default_win_min
        sampled = self.rng.uniform(float(self.default_win_min), float(self.default_win_max))
        return Decimal(str(sampled)).quantize(_WIN_PERCENTAGE_QUANTUM)


@dataclass
class MovementPercentages:
    """Outcome-movement percentages (in percent, e.g. 2.5 == 2.5%)."""

    win: Decimal
    loss: Decimal


@dataclass
class MarketResolution:
    """Market data is required; ``loss_percentage`` nudges a tied exit price."""

    loss_percentage: Decimal


def compute_pnl(trade: Trade, result: TradeResult) -> Decimal:
    """Signed P&L from the contractual profit percentage fixed at open."""
    magnitude = trade.stake * trade.profit_percentage / _HUNDRED
    return magnitude if result == TradeResult.WIN else -magnitude


def move_price(
    entry_price: Decimal, side: TradeSide, result: TradeResult, percentage: Decimal
) -> Decimal:
    """Move ``entry_price`` by ``percentage`` in the direction that justifies ``result``.

    A long position profits from a rise, a short position from a fall.
    """
    favorable_up = side == TradeSide.LONG
    moves_up = favorable_up if result == TradeResult.WIN else not favorable_up
    factor = percentage / _HUNDRED
    return entry_price * (_ONE + factor if moves_up else _ONE - factor)


def forced_outcome(
    trade: Trade, result: TradeResult, percentages: MovementPercentages
) -> Outcome:
    """Build an outcome whose exit price is synthesized from the movement percentages."""
    percentage = percentages.win if result == TradeResult.WIN else percentages.loss
    return Outcome(
        result=result,
        exit_price=move_price(trade.entry_price, trade.side, result, percentage),
        pnl=compute_pnl(trade, result),
    )


def market_outcome(trade: Trade, market_price: Decimal, loss_percentage: Decimal) -> Outcome:
    """Resolve from a market price. Equality with entry is always a loss."""
    if market_price == trade.entry_price:
        result = TradeResult.LOSS
        exit_price = move_price(trade.entry_price, trade.side, result, loss_percentage)
    else:
        if trade.side == TradeSide.LONG:
            won = market_price > trade.entry_price
        else:
            won = market_price < trade.entry_price
        result = TradeResult.WIN if won else TradeResult.LOSS
        exit_price = market_price
    return Outcome(result=result, exit_price=exit_price, pnl=compute_pnl(trade, result))


def global_percentages(
    global_setting: GlobalTradeSetting, policy: OutcomePolicy
) -> MovementPercentages:
    """Global movement percentages, falling back to the policy defaults."""
    return MovementPercentages(
        win=(
            global_setting.win_percentage
            if global_setting.win_percentage is not None
            else policy.sample_win_percentage()
        ),
        loss=(
            global_setting.loss_percentage
            if global_setting.loss_percentage is not None
            else policy.default_loss
        ),
    )


def _default_percentages(policy: OutcomePolicy) -> MovementPercentages:
    return MovementPercentages(win=policy.sample_win_percentage(), loss=policy.default_loss)


def _by_user_mode(
    trade: Trade, mode: UserTradeMode, percentages: MovementPercentages
) -> Outcome | MarketResolution:
    if mode == UserTradeMode.WIN:
        return forced_outcome(trade, TradeResult.WIN, percentages)
    if mode == UserTradeMode.LOSS:
        return forced_outcome(trade, TradeResult.LOSS, percentages)
    return MarketResolution(loss_percentage=percentages.loss)


def plan_outcome(
    trade: Trade,
    user_setting: UserTradeSetting,
    global_setting: GlobalTradeSetting,
    policy: OutcomePolicy,
) -> Outcome | MarketResolution:
    """Apply the policy layers in precedence order without touching I/O."""
    # 1. Manual preset
    if trade.manual_preset is not None:
        return forced_outcome(
            trade, trade.manual_preset, global_percentages(global_setting, policy)
        )

    mode = global_setting.mode

    # 2. Global overrides
    if mode == GlobalTradeMode.WIN:
        return forced_outcome(
            trade, TradeResult.WIN, global_percentages(global_setting, policy)
        )
    if mode == GlobalTradeMode.LOSS:
        return forced_outcome(
            trade, TradeResult.LOSS, global_percentages(global_setting, policy)
        )
    if mode == GlobalTradeMode.AUTOMATIC:
        # Configured global percentages only apply to forced and custom modes
        return MarketResolution(loss_percentage=policy.default_loss)

    # 3. Global custom: global magnitude, per-user result
    if mode == GlobalTradeMode.CUSTOM:
        return _by_user_mode(
            trade, user_setting.mode, global_percentages(global_setting, policy)
        )

    # 4. Disabled: per-user setting
    if (
        user_setting.mode == UserTradeMode.CUSTOM
        and user_setting.win_percentage is not None
        and user_setting.loss_percentage is not None
    ):
        return MarketResolution(loss_percentage=user_setting.loss_percentage)
    return _by_user_mode(trade, user_setting.mode, _default_percentages(policy))


async def resolve_outcome(
    trade: Trade,
    user_setting: UserTradeSetting,
    global_setting: GlobalTradeSetting,
    oracle: PriceOracle,
    policy: OutcomePolicy,
) -> Outcome:
    """Resolve a trade's outcome, querying the oracle when market data is needed.

    Raises:
        PriceUnavailableError: If market data is required and the oracle fails.
            The trade cannot be settled now and should be retried later.
    """
    planned = plan_outcome(trade, user_setting, global_setting, policy)
    if isinstance(planned, Outcome):
        return planned

    market_price = await oracle.get_current_price(trade.asset)
    outcome = market_outcome(trade, market_price, planned.loss_percentage)
    logger.debug(
        "market_outcome_resolved",
        trade_id=trade.id,
        entry_price=str(trade.entry_price),
        market_price=str(market_price),
        result=outcome.result.value,
    )
    return outcome
