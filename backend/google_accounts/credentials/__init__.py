"""
Credentials module for a store's linked Google account.

This module provides:
- AES-256-GCM token encryption
- Signed, short-lived OAuth state tokens
- The Google authorization-code flow
- Credential storage with optimistic concurrency
- Lifecycle orchestration: link, refresh (scheduled + on-demand), revoke, delete
- Audit logging with automatic redaction

SECURITY:
- Tokens are encrypted at rest using TOKEN_ENCRYPTION_KEY
- No plaintext tokens outside process memory
- Tokens NEVER appear in logs or API responses
- Allowed in logs: tenant_id, provider_email, channel_id, error kind

Usage:
    from google_accounts.credentials import CredentialLifecycleManager

    manager = CredentialLifecycleManager(store, cipher, coordinator, tenants)
    url = manager.initiate_auth(store_id)
    credential = await manager.complete_auth(code, state)
    report = await manager.scan_and_refresh()
"""

from google_accounts.credentials.encryption import TokenCipher
from google_accounts.credentials.state import StateCodec, OAuthState
from google_accounts.credentials.oauth import (
    OAuthFlowCoordinator,
    OAuthTokens,
    GoogleIdentity,
    ChannelInfo,
    OAUTH_SCOPES,
)
from google_accounts.credentials.store import (
    CredentialStore,
    SqlAlchemyCredentialStore,
    CredentialRecord,
    ChannelRecord,
)
from google_accounts.credentials.lifecycle import (
    CredentialLifecycleManager,
    CredentialPage,
    RefreshResult,
    RefreshResultStatus,
    ScanReport,
)
from google_accounts.credentials.redaction import (
    redact_credential_data,
    CredentialAuditLogger,
    CredentialLoggingFilter,
    AuditEventType,
)

__all__ = [
    # Encryption
    "TokenCipher",
    # OAuth
    "StateCodec",
    "OAuthState",
    "OAuthFlowCoordinator",
    "OAuthTokens",
    "GoogleIdentity",
    "ChannelInfo",
    "OAUTH_SCOPES",
    # Store
    "CredentialStore",
    "SqlAlchemyCredentialStore",
    "CredentialRecord",
    "ChannelRecord",
    # Lifecycle
    "CredentialLifecycleManager",
    "CredentialPage",
    "RefreshResult",
    "RefreshResultStatus",
    "ScanReport",
    # Redaction & Audit
    "redact_credential_data",
    "CredentialAuditLogger",
    "CredentialLoggingFilter",
    "AuditEventType",
]
