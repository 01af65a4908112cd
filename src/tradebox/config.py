"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQLite storage settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    path: str = "data/tradebox.db"
    busy_timeout_ms: int = 5000  # wait for the write lock instead of failing


class OracleSettings(BaseSettings):
    """Exchange price oracle connection settings (ccxt)."""

    model_config = SettingsConfigDict(env_prefix="ORACLE_")

    exchange_id: str = "binance"
    quote_currency: str = "USDT"
    timeout_seconds: float = 5.0
    max_price_age_seconds: float = 120.0


class SettlementSettings(BaseSettings):
    """Settlement batch processing parameters."""

    model_config = SettingsConfigDict(env_prefix="SETTLEMENT_")

    batch_size: int = 10
    max_concurrent_batches: int = 2
    settings_cache_ttl_seconds: float = 30.0
    currency: str = "USDT"


class OutcomeSettings(BaseSettings):
    """Default price-movement percentages for synthesized exit prices.

    Used whenever no global or per-user percentages are configured.
    """

    model_config = SettingsConfigDict(env_prefix="OUTCOME_")

    default_win_min_percentage: Decimal = Decimal("1")
    default_win_max_percentage: Decimal = Decimal("5")
    default_loss_percentage: Decimal = Decimal("0.002")


class ApiSettings(BaseSettings):
    """HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    database: DatabaseSettings = DatabaseSettings()
    oracle: OracleSettings = OracleSettings()
    settlement: SettlementSettings = SettlementSettings()
    outcome: OutcomeSettings = OutcomeSettings()
    api: ApiSettings = ApiSettings()
