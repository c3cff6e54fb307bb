"""
Error taxonomy for the Google account credential lifecycle.

Every error carries a stable ``code`` for API responses and a coarse
``callback_reason`` that the OAuth callback surfaces to the admin UI.
Provider response bodies are never copied into user-visible messages.

Callback reasons:
- invalid_state: state token malformed, tampered or expired
- no_refresh_token: Google did not return a refresh token
- no_channel: the Google account has no YouTube channel
- config_error: OAuth client or encryption not configured
- oauth_failed: anything else
"""

from typing import Optional

from fastapi import status

from google_accounts.platform.errors import (
    AppError,
    ConflictError,
    NotFoundError,
    ServiceUnavailableError,
)

CALLBACK_INVALID_STATE = "invalid_state"
CALLBACK_NO_REFRESH_TOKEN = "no_refresh_token"
CALLBACK_NO_CHANNEL = "no_channel"
CALLBACK_CONFIG_ERROR = "config_error"
CALLBACK_OAUTH_FAILED = "oauth_failed"


class CredentialError(AppError):
    """Base class for credential lifecycle errors."""

    callback_reason = CALLBACK_OAUTH_FAILED


class ConfigurationError(CredentialError, ServiceUnavailableError):
    """OAuth client settings or encryption key missing or malformed."""

    callback_reason = CALLBACK_CONFIG_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.code = "CONFIGURATION_ERROR"


class InvalidStateError(CredentialError):
    """OAuth state token could not be decoded or verified."""

    callback_reason = CALLBACK_INVALID_STATE

    def __init__(self, message: str = "Invalid OAuth state. Please restart the authorization."):
        super().__init__(
            code="INVALID_STATE",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class ExpiredStateError(InvalidStateError):
    """OAuth state token is older than the allowed TTL."""

    def __init__(self, message: str = "Authorization has expired. Please authorize again."):
        super().__init__(message)
        self.code = "EXPIRED_STATE"


class MissingRefreshTokenError(CredentialError):
    """Google returned a grant without a refresh token."""

    callback_reason = CALLBACK_NO_REFRESH_TOKEN

    def __init__(self, message: str = "Google did not return a refresh token."):
        super().__init__(
            code="MISSING_REFRESH_TOKEN",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class NoChannelFoundError(CredentialError):
    """The authorized Google account has no YouTube channel."""

    callback_reason = CALLBACK_NO_CHANNEL

    def __init__(self, message: str = "No YouTube channel found for this Google account."):
        super().__init__(
            code="NO_CHANNEL_FOUND",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class ProviderError(CredentialError):
    """
    A call to Google failed.

    ``provider_code`` is the OAuth error code (e.g. ``invalid_grant``) or the
    HTTP status as a string. It is kept for diagnosis and retry decisions but
    is not part of the user-facing message.
    """

    # OAuth error codes after which retrying with the same grant is pointless
    TERMINAL_CODES = frozenset({"invalid_grant", "unauthorized_client", "invalid_client"})

    def __init__(
        self,
        message: str,
        provider_code: Optional[str] = None,
        operation: str = "unknown",
    ):
        super().__init__(
            code="PROVIDER_ERROR",
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"operation": operation},
        )
        self.provider_code = provider_code
        self.operation = operation

    @property
    def is_terminal(self) -> bool:
        return self.provider_code in self.TERMINAL_CODES


class AlreadyLinkedError(CredentialError, ConflictError):
    """The store already has a linked Google account."""

    def __init__(self, tenant_id: str):
        super().__init__(
            "A Google account is already linked to this store",
            details={"store_id": tenant_id},
        )
        self.code = "ALREADY_LINKED"
        self.tenant_id = tenant_id


class CryptoError(CredentialError):
    """Token encryption or decryption failed."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(
            code="CRYPTO_ERROR",
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        self.operation = operation


class CredentialNotFoundError(CredentialError, NotFoundError):
    """No credential exists for the store."""

    def __init__(self, tenant_id: str):
        super().__init__("Google account for store", tenant_id)
        self.tenant_id = tenant_id


class TenantNotFoundError(CredentialError, NotFoundError):
    """The store does not exist in the store registry."""

    def __init__(self, tenant_id: str):
        super().__init__("Store", tenant_id)
        self.tenant_id = tenant_id


class InvalidStatusTransitionError(CredentialError, ConflictError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change status from {current} to {requested}",
            details={"current": current, "requested": requested},
        )
        self.code = "INVALID_STATUS_TRANSITION"


class CredentialNotActiveError(CredentialError, ConflictError):
    """Credential exists but cannot be used until it is relinked or refreshed."""

    def __init__(self, tenant_id: str, status_value: str):
        super().__init__(
            f"Google account for store '{tenant_id}' is {status_value}",
            details={"store_id": tenant_id, "status": status_value},
        )
        self.code = "CREDENTIAL_NOT_ACTIVE"
        self.tenant_id = tenant_id


class ConcurrentUpdateError(CredentialError, ConflictError):
    """Credential was modified by another writer since it was read."""

    def __init__(self, tenant_id: str, expected_version: int):
        super().__init__(
            "Credential was updated concurrently. Please retry.",
            details={"store_id": tenant_id},
        )
        self.code = "CONCURRENT_UPDATE"
        self.tenant_id = tenant_id
        self.expected_version = expected_version


def classify_callback_error(error: Exception) -> str:
    """Map any exception raised during callback handling to a UI reason code."""
    if isinstance(error, CredentialError):
        return error.callback_reason
    return CALLBACK_OAUTH_FAILED
