"""Trade intake -- duration parsing, validation, and atomic trade creation."""

from tradebox.trading.duration import compute_expiry, parse_duration
from tradebox.trading.intake import TradeIntake

__all__ = ["TradeIntake", "compute_expiry", "parse_duration"]
