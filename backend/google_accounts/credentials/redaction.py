"""
Credential redaction and audit logging utilities.

SECURITY REQUIREMENTS:
- Tokens NEVER appear in logs (access_token, refresh_token, code, state)
- ALLOWED in logs: tenant_id, provider_email, channel_id, error kind
- All credential lifecycle operations are audit-logged

Audit Events:
- credential.linked
- credential.refreshed
- credential.status_changed
- credential.deleted
- credential.error

Usage:
    from google_accounts.credentials.redaction import CredentialAuditLogger, AuditEventType

    audit = CredentialAuditLogger()
    audit.log(
        event_type=AuditEventType.CREDENTIAL_LINKED,
        tenant_id=store_id,
        provider_email="owner@example.com",
    )
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Dict

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"


class AuditEventType(str, Enum):
    """Credential audit event types."""
    CREDENTIAL_LINKED = "credential.linked"
    CREDENTIAL_REFRESHED = "credential.refreshed"
    CREDENTIAL_STATUS_CHANGED = "credential.status_changed"
    CREDENTIAL_DELETED = "credential.deleted"
    CREDENTIAL_CHANNEL_SYNCED = "credential.channel_synced"
    CREDENTIAL_ERROR = "credential.error"


# Token shapes that must never reach a log line
CREDENTIAL_SECRET_PATTERNS = [
    re.compile(r"(ya29\.[a-zA-Z0-9_\-\.]+)"),  # Google access tokens
    re.compile(r"(1//[a-zA-Z0-9_\-]+)"),  # Google refresh tokens
    re.compile(r"(4/[a-zA-Z0-9_\-]{10,})"),  # Google authorization codes
    re.compile(r"(Bearer\s+[a-zA-Z0-9_\-\.=]+)", re.IGNORECASE),
    re.compile(r"(v1:[0-9a-f]{24}:[0-9a-f]{32}:[0-9a-f]*)"),  # TokenCipher envelopes
]

SECRET_KEY_PATTERNS = [
    "token", "secret", "credential", "authorization", "bearer",
    "password", "api_key", "apikey", "code", "state", "encrypted",
]

# Keys that look sensitive by name but carry only metadata
SAFE_KEYS = frozenset({
    "tenant_id", "provider_email", "channel_id", "channel_title",
    "status_code", "error_code", "provider_code", "token_expires_at",
    "new_expires_at", "expires_at", "credential_id",
})


def is_credential_secret_key(key: str) -> bool:
    """
    Check if a key name indicates a credential secret.

    Args:
        key: The key name to check

    Returns:
        True if the key likely contains a secret
    """
    if key in SAFE_KEYS:
        return False
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in SECRET_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """
    Redact token patterns from a value.

    Args:
        value: The value to redact

    Returns:
        Redacted value
    """
    if not isinstance(value, str):
        return value

    result = value
    for pattern in CREDENTIAL_SECRET_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact credential secrets from a data structure.

    SECURITY:
    - Always use this before logging credential-related data

    Args:
        data: Dictionary, list, or other data structure

    Returns:
        Copy of data with secrets redacted
    """
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_credential_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_credential_data(value, _depth + 1)
        return result

    if isinstance(data, list):
        return [redact_credential_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_credential_value(data)

    return data


class CredentialAuditLogger:
    """
    Structured audit logger for credential operations.

    SECURITY:
    - Tokens are NEVER logged
    - metadata is redacted before it is emitted
    """

    def __init__(self):
        self.logger = logging.getLogger("google_accounts.credentials.audit")

    def log(
        self,
        event_type: AuditEventType,
        tenant_id: str,
        provider_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of audit event
            tenant_id: Store the credential belongs to
            provider_email: Google account email (allowed in logs)
            metadata: Additional context (will be redacted)
        """
        safe_metadata = redact_credential_data(metadata) if metadata else {}

        audit_record = {
            "event_type": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "tenant_id": tenant_id,
            "provider_email": provider_email,
            **safe_metadata,
        }

        self.logger.info(
            f"Credential audit: {event_type.value}",
            extra=audit_record
        )

    def log_error(
        self,
        tenant_id: str,
        error_kind: str,
        error: str,
        provider_email: Optional[str] = None,
    ) -> None:
        """
        Log a credential error.

        Args:
            tenant_id: Store the credential belongs to
            error_kind: Error class or code
            error: Error message (will be redacted)
            provider_email: Google account email (allowed in logs)
        """
        self.log(
            event_type=AuditEventType.CREDENTIAL_ERROR,
            tenant_id=tenant_id,
            provider_email=provider_email,
            metadata={"error_kind": error_kind, "error": redact_credential_value(error)},
        )


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        handler.addFilter(CredentialLoggingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        # Redact extra fields
        for key in list(record.__dict__.keys()):
            if key in _LOG_RECORD_ATTRIBUTES:
                continue
            if is_credential_secret_key(key):
                setattr(record, key, REDACTED_VALUE)
            elif isinstance(getattr(record, key), str):
                setattr(record, key, redact_credential_value(getattr(record, key)))

        return True


# Built-in LogRecord attributes that must not be rewritten
_LOG_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}
