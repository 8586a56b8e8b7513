"""
Configuration Management for Household Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engines themselves never read settings; flows read them once and
pass explicit values (threshold, timezone) into the pure functions.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Balance netting configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    netting_threshold: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Net amounts at or below this are treated as settled"
    )
    currency_code: str = Field(
        default="VND",
        max_length=3,
        description="Currency shown in audit descriptions"
    )


class SchedulingSettings(BaseSettings):
    """Recurring chore scheduling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULING_",
        extra="ignore"
    )

    default_timezone: str = Field(
        default="Asia/Ho_Chi_Minh",
        description="Timezone used when a household has none configured"
    )

    @field_validator('default_timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA timezone names at startup."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class WebhookSettings(BaseSettings):
    """Shared-secret configuration for the batch webhook."""

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        extra="ignore"
    )

    secret: Optional[str] = Field(
        default=None,
        description="Value expected in the x-webhook-secret header"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Worksheet names within the spreadsheet, one per table
    households_sheet_name: str = Field(default="households")
    members_sheet_name: str = Field(default="profiles")
    expenses_sheet_name: str = Field(default="expenses")
    splits_sheet_name: str = Field(default="expense_splits")
    settlements_sheet_name: str = Field(default="payment_notes")
    templates_sheet_name: str = Field(default="chore_templates")
    cursors_sheet_name: str = Field(default="template_assignment_tracker")
    chores_sheet_name: str = Field(default="chores")
    audit_sheet_name: str = Field(default="audit_log")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


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
        description="Root log level for structured logging"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which storage implementation the app wires up"
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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def scheduling(self) -> SchedulingSettings:
        return SchedulingSettings()

    @property
    def webhook(self) -> WebhookSettings:
        return WebhookSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the ones that failed.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "scheduling", "webhook", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
