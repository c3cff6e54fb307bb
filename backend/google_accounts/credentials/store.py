"""
Credential storage for linked Google accounts.

CredentialStore is the persistence boundary used by the lifecycle manager.
SqlAlchemyCredentialStore is the production implementation; tests may use
an in-memory implementation of the same interface.

SECURITY REQUIREMENTS:
- Only encrypted token envelopes pass through the store
- Records never include tokens in repr or safe dicts
- All mutation is keyed by tenant_id (the store id)

CONCURRENCY:
- update_tokens accepts expected_version and raises ConcurrentUpdateError
  if another writer updated the credential after it was read
- create relies on the unique tenant_id constraint; a racing second create
  fails with AlreadyLinkedError

Usage:
    store = SqlAlchemyCredentialStore(db_session)

    record = store.get_by_tenant(store_id)
    store.update_tokens(
        store_id,
        access_token_encrypted=envelope,
        refresh_token_encrypted=record.refresh_token_encrypted,
        expires_at=expires_at,
        expected_version=record.version,
    )
"""

import abc
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from google_accounts.credentials.errors import (
    AlreadyLinkedError,
    ConcurrentUpdateError,
    CredentialNotFoundError,
)
from google_accounts.models.google_account import (
    ChannelSyncStatus,
    CredentialStatus,
    GoogleAccountCredential,
    LinkedChannel,
)

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; all stored times are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class ChannelRecord:
    """LinkedChannel values."""
    channel_id: str
    title: str
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    subscriber_count: Optional[int] = None
    sync_status: ChannelSyncStatus = ChannelSyncStatus.ACTIVE
    last_synced_at: Optional[datetime] = None


@dataclass
class CredentialRecord:
    """
    Credential values as persisted.

    SECURITY: token envelopes are excluded from repr.
    """
    tenant_id: str
    provider_email: str
    provider_user_id: str
    access_token_encrypted: str = field(repr=False)
    refresh_token_encrypted: str = field(repr=False)
    token_expires_at: datetime
    scope: str = ""
    status: CredentialStatus = CredentialStatus.ACTIVE
    error_message: Optional[str] = None
    last_refresh_at: Optional[datetime] = None
    version: int = 1
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    channel: Optional[ChannelRecord] = None

    def to_safe_dict(self) -> dict:
        """
        Return dictionary safe for logging/API responses.

        SECURITY: Excludes all token values.
        """
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "provider_email": self.provider_email,
            "provider_user_id": self.provider_user_id,
            "status": self.status.value,
            "error_message": self.error_message,
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "last_refresh_at": self.last_refresh_at.isoformat() if self.last_refresh_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def _check_status_invariant(status: CredentialStatus, error_message: Optional[str]) -> None:
    if status == CredentialStatus.ERROR and not error_message:
        raise ValueError("error_message is required when status is ERROR")


class CredentialStore(abc.ABC):
    """One credential record per store, keyed by tenant_id."""

    @abc.abstractmethod
    def create(
        self,
        credential: CredentialRecord,
        channel: Optional[ChannelRecord] = None,
    ) -> CredentialRecord:
        """
        Persist a new credential and its channel atomically.

        Raises:
            AlreadyLinkedError: If the store already has a credential
        """

    @abc.abstractmethod
    def get_by_tenant(self, tenant_id: str) -> CredentialRecord:
        """
        Raises:
            CredentialNotFoundError: If the store has no credential
        """

    @abc.abstractmethod
    def exists(self, tenant_id: str) -> bool:
        """True if the store has a credential in any status."""

    @abc.abstractmethod
    def list_active_near_expiry(
        self,
        within: timedelta,
        now: Optional[datetime] = None,
    ) -> List[CredentialRecord]:
        """ACTIVE credentials whose token expires at or before now + within."""

    @abc.abstractmethod
    def list_page(self, offset: int, limit: int) -> Tuple[List[CredentialRecord], int]:
        """Newest-first page of credentials and the total count."""

    @abc.abstractmethod
    def update_tokens(
        self,
        tenant_id: str,
        access_token_encrypted: str,
        refresh_token_encrypted: str,
        expires_at: datetime,
        expected_version: Optional[int] = None,
        refreshed_at: Optional[datetime] = None,
        scope: Optional[str] = None,
    ) -> CredentialRecord:
        """
        Replace tokens and expiry in one write, mark ACTIVE, clear error.

        Raises:
            CredentialNotFoundError: If the store has no credential
            ConcurrentUpdateError: If expected_version no longer matches
        """

    @abc.abstractmethod
    def update_status(
        self,
        tenant_id: str,
        status: CredentialStatus,
        error_message: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CredentialRecord:
        """
        Set status and error message, bumping the version.

        Raises:
            CredentialNotFoundError: If the store has no credential
            ValueError: If status is ERROR without an error message
            ConcurrentUpdateError: If expected_version no longer matches
        """

    @abc.abstractmethod
    def update_channel(self, tenant_id: str, channel: ChannelRecord) -> ChannelRecord:
        """Create or replace the linked channel."""

    @abc.abstractmethod
    def delete(self, tenant_id: str) -> None:
        """
        Delete the credential and its linked channel.

        Raises:
            CredentialNotFoundError: If the store has no credential
        """


class SqlAlchemyCredentialStore(CredentialStore):
    """
    SQLAlchemy-backed credential store.

    Every mutating call commits its own transaction so that a credential
    and its channel are written together or not at all.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def create(
        self,
        credential: CredentialRecord,
        channel: Optional[ChannelRecord] = None,
    ) -> CredentialRecord:
        if self.exists(credential.tenant_id):
            raise AlreadyLinkedError(credential.tenant_id)

        _check_status_invariant(credential.status, credential.error_message)

        row = GoogleAccountCredential(
            tenant_id=credential.tenant_id,
            provider_email=credential.provider_email,
            provider_user_id=credential.provider_user_id,
            access_token_encrypted=credential.access_token_encrypted,
            refresh_token_encrypted=credential.refresh_token_encrypted,
            token_expires_at=credential.token_expires_at,
            scope=credential.scope,
            status=credential.status,
            error_message=credential.error_message,
            last_refresh_at=credential.last_refresh_at,
            version=1,
        )
        if channel is not None:
            row.channel = self._channel_row(channel)

        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the check-then-create race to another request
            self.db.rollback()
            logger.warning(
                "Credential create conflicted with existing row",
                extra={"tenant_id": credential.tenant_id},
            )
            raise AlreadyLinkedError(credential.tenant_id) from None

        logger.info(
            "Credential stored",
            extra={"tenant_id": credential.tenant_id, "credential_id": row.id},
        )
        return self._to_record(row)

    def get_by_tenant(self, tenant_id: str) -> CredentialRecord:
        return self._to_record(self._get_row(tenant_id))

    def exists(self, tenant_id: str) -> bool:
        return self._find_row(tenant_id) is not None

    def list_active_near_expiry(
        self,
        within: timedelta,
        now: Optional[datetime] = None,
    ) -> List[CredentialRecord]:
        threshold = (now or datetime.now(timezone.utc)) + within
        rows = self.db.execute(
            select(GoogleAccountCredential)
            .where(GoogleAccountCredential.status == CredentialStatus.ACTIVE)
            .where(GoogleAccountCredential.token_expires_at <= threshold)
            .order_by(GoogleAccountCredential.token_expires_at)
        ).scalars().all()
        return [self._to_record(row) for row in rows]

    def list_page(self, offset: int, limit: int) -> Tuple[List[CredentialRecord], int]:
        total = self.db.execute(
            select(func.count()).select_from(GoogleAccountCredential)
        ).scalar() or 0
        rows = self.db.execute(
            select(GoogleAccountCredential)
            .order_by(GoogleAccountCredential.created_at.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        return [self._to_record(row) for row in rows], total

    def update_tokens(
        self,
        tenant_id: str,
        access_token_encrypted: str,
        refresh_token_encrypted: str,
        expires_at: datetime,
        expected_version: Optional[int] = None,
        refreshed_at: Optional[datetime] = None,
        scope: Optional[str] = None,
    ) -> CredentialRecord:
        values = {
            "access_token_encrypted": access_token_encrypted,
            "refresh_token_encrypted": refresh_token_encrypted,
            "token_expires_at": expires_at,
            "last_refresh_at": refreshed_at or datetime.now(timezone.utc),
            "status": CredentialStatus.ACTIVE,
            "error_message": None,
            "version": GoogleAccountCredential.version + 1,
        }
        if scope:
            values["scope"] = scope

        return self._versioned_update(tenant_id, values, expected_version)

    def update_status(
        self,
        tenant_id: str,
        status: CredentialStatus,
        error_message: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CredentialRecord:
        _check_status_invariant(status, error_message)

        values = {
            "status": status,
            "error_message": error_message,
            "version": GoogleAccountCredential.version + 1,
        }
        return self._versioned_update(tenant_id, values, expected_version)

    def _versioned_update(
        self,
        tenant_id: str,
        values: dict,
        expected_version: Optional[int],
    ) -> CredentialRecord:
        """Single conditional UPDATE; rowcount 0 means missing or stale."""
        stmt = update(GoogleAccountCredential).where(
            GoogleAccountCredential.tenant_id == tenant_id
        )
        if expected_version is not None:
            stmt = stmt.where(GoogleAccountCredential.version == expected_version)

        result = self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            if not self.exists(tenant_id):
                raise CredentialNotFoundError(tenant_id)
            raise ConcurrentUpdateError(tenant_id, expected_version)

        self.db.commit()
        return self.get_by_tenant(tenant_id)

    def update_channel(self, tenant_id: str, channel: ChannelRecord) -> ChannelRecord:
        row = self._get_row(tenant_id)
        if row.channel is None:
            row.channel = self._channel_row(channel)
        else:
            row.channel.channel_id = channel.channel_id
            row.channel.title = channel.title
            row.channel.url = channel.url
            row.channel.thumbnail_url = channel.thumbnail_url
            row.channel.subscriber_count = channel.subscriber_count
            row.channel.sync_status = channel.sync_status
            row.channel.last_synced_at = channel.last_synced_at
        self.db.commit()
        return self._to_channel_record(row.channel)

    def delete(self, tenant_id: str) -> None:
        row = self._get_row(tenant_id)
        self.db.delete(row)
        self.db.commit()
        logger.info("Credential deleted", extra={"tenant_id": tenant_id})

    def _find_row(self, tenant_id: str) -> Optional[GoogleAccountCredential]:
        return self.db.execute(
            select(GoogleAccountCredential).where(
                GoogleAccountCredential.tenant_id == tenant_id
            )
        ).scalar_one_or_none()

    def _get_row(self, tenant_id: str) -> GoogleAccountCredential:
        row = self._find_row(tenant_id)
        if row is None:
            raise CredentialNotFoundError(tenant_id)
        return row

    @staticmethod
    def _channel_row(channel: ChannelRecord) -> LinkedChannel:
        return LinkedChannel(
            channel_id=channel.channel_id,
            title=channel.title,
            url=channel.url,
            thumbnail_url=channel.thumbnail_url,
            subscriber_count=channel.subscriber_count,
            sync_status=channel.sync_status,
            last_synced_at=channel.last_synced_at,
        )

    @staticmethod
    def _to_channel_record(row: LinkedChannel) -> ChannelRecord:
        return ChannelRecord(
            channel_id=row.channel_id,
            title=row.title,
            url=row.url,
            thumbnail_url=row.thumbnail_url,
            subscriber_count=row.subscriber_count,
            sync_status=row.sync_status,
            last_synced_at=_as_utc(row.last_synced_at),
        )

    def _to_record(self, row: GoogleAccountCredential) -> CredentialRecord:
        return CredentialRecord(
            id=row.id,
            tenant_id=row.tenant_id,
            provider_email=row.provider_email,
            provider_user_id=row.provider_user_id,
            access_token_encrypted=row.access_token_encrypted,
            refresh_token_encrypted=row.refresh_token_encrypted,
            token_expires_at=_as_utc(row.token_expires_at),
            scope=row.scope or "",
            status=row.status,
            error_message=row.error_message,
            last_refresh_at=_as_utc(row.last_refresh_at),
            version=row.version,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
            channel=self._to_channel_record(row.channel) if row.channel else None,
        )
