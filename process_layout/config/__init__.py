"""Configuration: feature flags and layout settings."""

from .settings import (
    FEATURE_FLAGS,
    LayoutSettings,
    get_all_flags,
    is_enabled,
    load_settings,
    set_flag,
)

__all__ = [
    "FEATURE_FLAGS",
    "LayoutSettings",
    "get_all_flags",
    "is_enabled",
    "load_settings",
    "set_flag",
]
