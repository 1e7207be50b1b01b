"""
Feature Flags Configuration

Centralized feature flag management for the engine.
All feature flags are loaded from environment variables.
"""
import os
from typing import Dict


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on junk."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class FeatureFlags:
    """
    Feature flags for the application.

    Read once from the environment; tests and the CLI construct their own
    instance with explicit values instead of touching os.environ.
    """

    def __init__(
        self,
        status_sweep: bool = True,
        notifications: bool = True,
        immediate_delivery: bool = True,
    ):
        # Periodic StatusTransitionEngine sweep in the app lifespan
        self.FEATURE_STATUS_SWEEP = status_sweep
        # Record lifecycle events in the notification ledger
        self.FEATURE_NOTIFICATIONS = notifications
        # Attempt delivery right after publish instead of waiting for the retry loop
        self.FEATURE_IMMEDIATE_DELIVERY = immediate_delivery

    @classmethod
    def from_env(cls) -> "FeatureFlags":
        return cls(
            status_sweep=get_bool_env('FEATURE_STATUS_SWEEP', True),
            notifications=get_bool_env('FEATURE_NOTIFICATIONS', True),
            immediate_delivery=get_bool_env('FEATURE_IMMEDIATE_DELIVERY', True),
        )

    def is_enabled(self, flag_name: str) -> bool:
        """Check if a feature flag is enabled."""
        return bool(getattr(self, flag_name, False))

    def get_all_flags(self) -> Dict[str, bool]:
        return {
            name: value
            for name, value in vars(self).items()
            if name.startswith('FEATURE_')
        }
