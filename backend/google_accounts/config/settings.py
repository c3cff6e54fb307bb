"""
Process configuration for the Google account service.

Values are read from the environment ONCE at startup into an explicit
GoogleAccountsConfig and passed to constructors. Nothing else in the
package reads os.environ.

FAIL-FAST RULES:
- TOKEN_ENCRYPTION_KEY missing or not 64 hex characters -> ConfigurationError
- Google OAuth client settings missing -> warning only; every flow call
  later fails with ConfigurationError instead of silently doing nothing
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from google_accounts.credentials.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_HEX_LENGTH = 64

DEFAULT_STATE_TTL_SECONDS = 300
DEFAULT_REFRESH_THRESHOLD_SECONDS = 300
DEFAULT_REFRESH_MAX_WORKERS = 4
DEFAULT_REFRESH_TIMEOUT_SECONDS = 30.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class GoogleAccountsConfig:
    """Immutable service configuration."""

    encryption_key: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    state_secret: Optional[str] = None
    state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS
    refresh_threshold_seconds: int = DEFAULT_REFRESH_THRESHOLD_SECONDS
    refresh_max_workers: int = DEFAULT_REFRESH_MAX_WORKERS
    refresh_timeout_seconds: float = DEFAULT_REFRESH_TIMEOUT_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    database_url: Optional[str] = None
    success_redirect_url: Optional[str] = None
    log_level: str = "INFO"

    @property
    def oauth_configured(self) -> bool:
        """True when all Google OAuth client settings are present."""
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    @property
    def effective_state_secret(self) -> Optional[str]:
        """Secret used to sign OAuth state tokens."""
        return self.state_secret or self.client_secret

    def validate(self) -> "GoogleAccountsConfig":
        """
        Validate configuration at startup.

        Raises:
            ConfigurationError: If the encryption key is missing or malformed
        """
        if not self.encryption_key:
            raise ConfigurationError(
                "TOKEN_ENCRYPTION_KEY is required for credential storage"
            )
        if len(self.encryption_key) != ENCRYPTION_KEY_HEX_LENGTH:
            raise ConfigurationError(
                f"TOKEN_ENCRYPTION_KEY must be a {ENCRYPTION_KEY_HEX_LENGTH}-character hex string"
            )
        try:
            bytes.fromhex(self.encryption_key)
        except ValueError:
            raise ConfigurationError(
                f"TOKEN_ENCRYPTION_KEY must be a {ENCRYPTION_KEY_HEX_LENGTH}-character hex string"
            ) from None

        if not self.oauth_configured:
            missing = [
                name for name, value in (
                    ("GOOGLE_CLIENT_ID", self.client_id),
                    ("GOOGLE_CLIENT_SECRET", self.client_secret),
                    ("GOOGLE_REDIRECT_URI", self.redirect_uri),
                )
                if not value
            ]
            logger.warning(
                "Google OAuth client not configured; authorization flows will fail",
                extra={"missing": missing},
            )

        if self.state_ttl_seconds <= 0:
            raise ConfigurationError("OAUTH_STATE_TTL_SECONDS must be positive")
        if self.refresh_max_workers < 1:
            raise ConfigurationError("TOKEN_REFRESH_MAX_WORKERS must be at least 1")

        return self


def _normalize_database_url(database_url: Optional[str]) -> Optional[str]:
    if database_url and database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> GoogleAccountsConfig:
    """
    Build and validate configuration from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Validated GoogleAccountsConfig

    Raises:
        ConfigurationError: If required settings are missing or malformed
    """
    env = os.environ if environ is None else environ

    try:
        config = GoogleAccountsConfig(
            encryption_key=env.get("TOKEN_ENCRYPTION_KEY", ""),
            client_id=env.get("GOOGLE_CLIENT_ID") or None,
            client_secret=env.get("GOOGLE_CLIENT_SECRET") or None,
            redirect_uri=env.get("GOOGLE_REDIRECT_URI") or None,
            state_secret=env.get("OAUTH_STATE_SECRET") or None,
            state_ttl_seconds=int(
                env.get("OAUTH_STATE_TTL_SECONDS", DEFAULT_STATE_TTL_SECONDS)
            ),
            refresh_threshold_seconds=int(
                env.get("TOKEN_REFRESH_THRESHOLD_SECONDS", DEFAULT_REFRESH_THRESHOLD_SECONDS)
            ),
            refresh_max_workers=int(
                env.get("TOKEN_REFRESH_MAX_WORKERS", DEFAULT_REFRESH_MAX_WORKERS)
            ),
            refresh_timeout_seconds=float(
                env.get("TOKEN_REFRESH_TIMEOUT_SECONDS", DEFAULT_REFRESH_TIMEOUT_SECONDS)
            ),
            http_timeout_seconds=float(
                env.get("PROVIDER_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS)
            ),
            database_url=_normalize_database_url(env.get("DATABASE_URL")),
            success_redirect_url=env.get("OAUTH_SUCCESS_REDIRECT_URL") or None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric configuration value: {e}") from e

    return config.validate()
