"""Configuration management module.

This module provides:
- Environment-based configuration with validation
- Component settings (database, events, credentials, AWS defaults)
- Cached settings access via get_settings()
"""

from .settings import (
    AWSDefaults,
    CredentialSettings,
    DatabaseSettings,
    Environment,
    EventBusSettings,
    LogFormat,
    LogLevel,
    Settings,
    get_settings,
)

__all__ = [
    # Main settings
    "Settings",
    "get_settings",
    # Enums
    "Environment",
    "LogLevel",
    "LogFormat",
    # Component settings
    "DatabaseSettings",
    "EventBusSettings",
    "CredentialSettings",
    "AWSDefaults",
]
