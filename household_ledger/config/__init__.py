"""Configuration package."""

from household_ledger.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    SchedulingSettings,
    Settings,
    WebhookSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "SchedulingSettings",
    "Settings",
    "WebhookSettings",
    "get_settings",
    "validate_all_settings",
]
