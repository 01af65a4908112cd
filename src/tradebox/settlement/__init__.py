"""Settlement -- outcome resolution and the exactly-once batch processor."""

from tradebox.settlement.processor import SettlementProcessor
from tradebox.settlement.resolver import OutcomePolicy, plan_outcome, resolve_outcome

__all__ = ["OutcomePolicy", "SettlementProcessor", "plan_outcome", "resolve_outcome"]
