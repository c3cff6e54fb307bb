"""Configuration module for the Google account service."""

from google_accounts.config.settings import (
    GoogleAccountsConfig,
    load_config_from_env,
)

__all__ = [
    "GoogleAccountsConfig",
    "load_config_from_env",
]
