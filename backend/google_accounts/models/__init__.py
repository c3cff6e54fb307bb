"""
Database models for stores and their linked Google accounts.
"""

from google_accounts.models.base import TimestampMixin
from google_accounts.models.store import Store
from google_accounts.models.google_account import (
    GoogleAccountCredential,
    LinkedChannel,
    CredentialStatus,
    ChannelSyncStatus,
)

__all__ = [
    "TimestampMixin",
    "Store",
    "GoogleAccountCredential",
    "LinkedChannel",
    "CredentialStatus",
    "ChannelSyncStatus",
]
