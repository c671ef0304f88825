"""
Configuration Management for the Recurring Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engine never reads the clock or the environment on its own; callers
pass `today` in and build components from these settings.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CurrencySettings(BaseSettings):
    """Currency formatting and clamping configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CURRENCY_",
        extra="ignore"
    )

    symbol: str = Field(
        default="R$",
        description="Currency symbol placed before the amount"
    )
    thousands_separator: str = Field(
        default=".",
        min_length=1,
        max_length=1,
        description="Digit grouping separator used when formatting"
    )
    decimal_separator: str = Field(
        default=",",
        min_length=1,
        max_length=1,
        description="Decimal separator used when formatting"
    )
    max_abs_amount: Decimal = Field(
        default=Decimal("999999999.99"),
        gt=0,
        decimal_places=2,
        description="Largest representable absolute amount; results are capped here"
    )

    @field_validator('decimal_separator')
    @classmethod
    def validate_separators_differ(cls, v: str, info) -> str:
        """Grouping and decimal separators must be distinguishable."""
        thousands = info.data.get("thousands_separator")
        if thousands is not None and v == thousands:
            raise ValueError("Decimal and thousands separators must differ")
        return v


class StorageSettings(BaseSettings):
    """Persistence backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|sqlite)$",
        description="Storage backend to use"
    )
    sqlite_path: str = Field(
        default="recurring_ledger.db",
        description="Path to the SQLite database file (':memory:' allowed)"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times to retry opening the database"
    )

    @field_validator('sqlite_path')
    @classmethod
    def validate_sqlite_path(cls, v: str) -> str:
        """Warn if the parent directory doesn't exist (but don't fail - might be mounted later)."""
        if v != ":memory:" and not Path(v).resolve().parent.exists():
            import warnings
            warnings.warn(
                f"Directory for SQLite database {v} does not exist. "
                "Make sure it exists before running the engine."
            )
        return v


class LedgerSettings(BaseSettings):
    """Posting engine behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    # Observed behaviour: postings into the current month do not consume
    # a FixedCount / MonthlyDuration unit. Flip to make them count.
    count_current_month_postings: bool = Field(
        default=False,
        description="Whether current-month postings decrement policy counters"
    )
    upcoming_default_count: int = Field(
        default=12,
        ge=1,
        le=120,
        description="Default number of occurrences for 'next N' projections"
    )
    opening_balance: Decimal = Field(
        default=Decimal("0.00"),
        decimal_places=2,
        description="Balance carried into the first day of the ledger"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def currency(self) -> CurrencySettings:
        return CurrencySettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings(settings: Optional[Settings] = None) -> dict[str, Union[bool, str]]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus {setting_name}_error
    entries for the groups that failed. Useful for startup checks.
    """
    results = {}

    settings = settings or get_settings()

    for name in ("currency", "storage", "ledger", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
