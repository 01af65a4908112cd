"""Custom exceptions for the trade settlement engine.

All intake, ledger, and settlement exceptions live here to avoid circular
imports between modules. Each class carries a stable ``code`` that the HTTP
layer returns alongside the message.
"""


class TradeEngineError(Exception):
    """Base exception for all engine errors."""

    code = "engine_error"


class TradeValidationError(TradeEngineError):
    """Raised when a request is malformed or does not match configuration."""

    code = "validation_error"


class InvalidStakeError(TradeValidationError):
    """Raised when the stake is not a positive amount."""

    code = "invalid_stake"


class InvalidDurationError(TradeValidationError):
    """Raised when a duration token is malformed or not offered."""

    code = "invalid_duration"


class InvalidProfitLevelError(TradeValidationError):
    """Raised when no catalog entry matches the duration and profit level."""

    code = "invalid_profit_level"


class StakeBelowMinimumError(TradeValidationError):
    """Raised when the stake is below the catalog minimum."""

    code = "stake_below_minimum"


class AssetNotConfiguredError(TradeValidationError):
    """Raised when an asset has no trading configuration."""

    code = "asset_not_configured"


class AssetDisabledError(TradeValidationError):
    """Raised when trading is disabled for an asset."""

    code = "asset_disabled"


class InvalidSettingError(TradeValidationError):
    """Raised when an administrative setting is out of range."""

    code = "invalid_setting"


class InsufficientBalanceError(TradeEngineError):
    """Raised when available balance does not cover a debit."""

    code = "insufficient_balance"


class QuotaExhaustedError(TradeEngineError):
    """Raised when an account has no remaining trades."""

    code = "quota_exhausted"


class PriceUnavailableError(TradeEngineError):
    """Raised when a fresh, validated price cannot be obtained."""

    code = "price_unavailable"


class AccountNotFoundError(TradeEngineError):
    """Raised when an account does not exist."""

    code = "account_not_found"


class TradeNotFoundError(TradeEngineError):
    """Raised when a trade does not exist (or belongs to another account)."""

    code = "trade_not_found"


class TradeNotActiveError(TradeEngineError):
    """Raised when an operation requires an active, unexpired trade."""

    code = "trade_not_active"


class LedgerConflictError(TradeEngineError):
    """Raised when a balance row changed between read and conditional write."""

    code = "ledger_conflict"
