"""
GoogleAccountCredential model - a store's linked Google account.

SECURITY REQUIREMENTS:
- Tokens are encrypted at rest (TokenCipher envelopes)
- No plaintext tokens outside process memory
- Tokens are NEVER exposed in API responses or logs

One credential per store (unique tenant_id). The linked YouTube channel
lives in LinkedChannel and is deleted together with the credential.
"""

import enum
import uuid

from sqlalchemy import (
    Column, String, DateTime, Text, Integer, Enum, Index, ForeignKey,
)
from sqlalchemy.orm import relationship

from google_accounts.db_base import Base
from google_accounts.models.base import TimestampMixin


class CredentialStatus(str, enum.Enum):
    """Google credential status enumeration."""
    PENDING = "pending"  # Authorization started (never persisted, state lives in the token)
    ACTIVE = "active"
    EXPIRED = "expired"  # Scheduled refresh was missed
    REVOKED = "revoked"  # Terminal, no automatic refresh
    ERROR = "error"  # Last refresh failed, error_message is set


class ChannelSyncStatus(str, enum.Enum):
    """YouTube channel sync status."""
    ACTIVE = "active"
    ERROR = "error"
    INACTIVE = "inactive"


class GoogleAccountCredential(Base, TimestampMixin):
    """
    Encrypted Google OAuth credential for one store.

    access_token_encrypted and refresh_token_encrypted hold TokenCipher
    envelopes. version is incremented on every write and used for
    optimistic concurrency on token updates.
    """

    __tablename__ = "google_account_credentials"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )
    tenant_id = Column(
        String(255),
        ForeignKey("stores.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Owning store - at most one credential per store"
    )

    # Google account identity
    provider_email = Column(String(320), nullable=False, comment="Google account email")
    provider_user_id = Column(String(255), nullable=False, comment="Google user ID")

    # Encrypted tokens - NEVER log these values
    access_token_encrypted = Column(
        Text,
        nullable=False,
        comment="Encrypted access token - NEVER log plaintext"
    )
    refresh_token_encrypted = Column(
        Text,
        nullable=False,
        comment="Encrypted refresh token - NEVER log plaintext"
    )
    token_expires_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the access token expires"
    )
    scope = Column(Text, nullable=False, default="", comment="Space-delimited granted scopes")

    # Lifecycle
    status = Column(
        Enum(CredentialStatus),
        default=CredentialStatus.ACTIVE,
        nullable=False,
        index=True,
        comment="Current credential status"
    )
    error_message = Column(Text, nullable=True, comment="Last error (set when status=error)")
    last_refresh_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When tokens were last refreshed"
    )
    version = Column(Integer, nullable=False, default=1, comment="Optimistic concurrency counter")

    channel = relationship(
        "LinkedChannel",
        back_populates="credential",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_google_account_credentials_status_expires", "status", "token_expires_at"),
    )

    def __repr__(self) -> str:
        """Safe repr - NEVER include token values."""
        return (
            f"<GoogleAccountCredential("
            f"id={self.id}, "
            f"tenant_id={self.tenant_id}, "
            f"provider_email={self.provider_email}, "
            f"status={self.status})>"
        )


class LinkedChannel(Base, TimestampMixin):
    """YouTube channel linked through a store's Google account."""

    __tablename__ = "linked_channels"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )
    credential_id = Column(
        String(36),
        ForeignKey("google_account_credentials.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    channel_id = Column(String(255), nullable=False, comment="YouTube channel ID")
    title = Column(String(255), nullable=False, default="")
    url = Column(String(512), nullable=True)
    thumbnail_url = Column(String(1024), nullable=True)
    subscriber_count = Column(Integer, nullable=True)
    sync_status = Column(
        Enum(ChannelSyncStatus),
        default=ChannelSyncStatus.ACTIVE,
        nullable=False,
    )
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    credential = relationship("GoogleAccountCredential", back_populates="channel")

    def __repr__(self) -> str:
        return f"<LinkedChannel(channel_id={self.channel_id}, title={self.title})>"
