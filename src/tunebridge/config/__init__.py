"""Configuration module for tunebridge."""

from .settings import (
    ConversionSettings,
    DatabaseSettings,
    FollowSettings,
    NotifierSettings,
    ObservabilitySettings,
    Settings,
    get_settings,
)

__all__ = [
    "ConversionSettings",
    "DatabaseSettings",
    "FollowSettings",
    "NotifierSettings",
    "ObservabilitySettings",
    "Settings",
    "get_settings",
]
