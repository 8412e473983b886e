"""Ledger configuration from environment variables and .env file.

Values are read at instantiation time, so get_settings() is lazy: tests and
entry points can set environment variables (or load .env) first.
"""

import logging
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

PERCENT_QUANTUM = Decimal("0.01")


class LedgerSettings(BaseSettings):
    """Settings for the expense ledger and budget engine."""

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./ledger.db", description="SQLAlchemy database URL"
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/server.log", description="Server log file")

    # Budget defaults
    default_general_conditions_percentage: Decimal = Field(
        default=Decimal("18.5"),
        description="General conditions % used when the entry is blank or not numeric",
    )
    default_gross_profit_rate: Decimal = Field(
        default=Decimal("28.5"), description="Company profit % (PM budget gets the rest)"
    )
    full_time_supervision_rate: Decimal = Field(
        default=Decimal("1450"), description="Weekly full-time supervision rate"
    )
    part_time_supervision_rate: Decimal = Field(
        default=Decimal("725"), description="Weekly part-time supervision rate"
    )

    # Persistence retries (stale writes and transient database errors only)
    persistence_max_retries: int = Field(default=3, ge=0)
    persistence_retry_backoff: float = Field(
        default=0.05, ge=0, description="Initial backoff in seconds, doubled per attempt"
    )

    # Document storage
    document_storage_dir: str = Field(default="uploads/expenses")

    # API
    api_title: str = Field(default="Expense Ledger API")
    api_version: str = Field(default="0.1.0")

    def validate(self) -> None:
        """Validate settings that pydantic cannot express as field constraints.

        Percentages are stored on projects with two decimal places, so the
        defaults must fit that scale or every project using them is refused.
        """
        if not self.database_url:
            raise ValueError("DATABASE_URL environment variable is required")
        if not Decimal("0") <= self.default_gross_profit_rate <= Decimal("100"):
            raise ValueError("DEFAULT_GROSS_PROFIT_RATE must be between 0 and 100")
        if self.default_general_conditions_percentage < 0:
            raise ValueError("DEFAULT_GENERAL_CONDITIONS_PERCENTAGE cannot be negative")
        for name in ("default_general_conditions_percentage", "default_gross_profit_rate"):
            value = getattr(self, name)
            if value != value.quantize(PERCENT_QUANTUM):
                raise ValueError(f"{name.upper()} allows at most two decimal places")
        for name in ("full_time_supervision_rate", "part_time_supervision_rate"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name.upper()} cannot be negative")


_settings_instance: Optional[LedgerSettings] = None


def get_settings() -> LedgerSettings:
    """Get or create the settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = LedgerSettings()
        _settings_instance.validate()
        logger.debug("Loaded settings: database_url=%s", _settings_instance.database_url)
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings_instance
    _settings_instance = None


__all__ = ["LedgerSettings", "get_settings", "reset_settings"]
