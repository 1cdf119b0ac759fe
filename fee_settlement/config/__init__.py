"""Configuration package for the fee settlement engine."""

from fee_settlement.config.settings import Settings, get_settings, settings

__all__ = ["Settings", "get_settings", "settings"]
