"""
Credential lifecycle for a store's linked Google account.

Orchestrates the authorization flow, token refresh (scheduled and
on-demand), administrative status changes, and deletion.

State machine:
    (no row) --complete_auth--> ACTIVE
    ACTIVE --refresh fails--> ERROR --refresh succeeds--> ACTIVE
    ACTIVE/ERROR/EXPIRED --update_status--> REVOKED (terminal)
    ACTIVE/ERROR --update_status--> EXPIRED | ERROR

SECURITY REQUIREMENTS:
- Tokens are decrypted only in memory, immediately before a provider call
- New tokens are encrypted before storage
- Audit events for link, refresh, status change and delete

Usage:
    manager = CredentialLifecycleManager(store, cipher, coordinator, tenants)

    url = manager.initiate_auth(store_id)
    credential = await manager.complete_auth(code, state)

    # Scheduled refresh (background job)
    report = await manager.scan_and_refresh()
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Union

from google_accounts.credentials.encryption import TokenCipher
from google_accounts.credentials.errors import (
    AlreadyLinkedError,
    ConcurrentUpdateError,
    CredentialNotActiveError,
    CredentialNotFoundError,
    InvalidStatusTransitionError,
    NoChannelFoundError,
    ProviderError,
    TenantNotFoundError,
)
from google_accounts.credentials.oauth import ChannelInfo, OAuthFlowCoordinator
from google_accounts.credentials.redaction import AuditEventType, CredentialAuditLogger
from google_accounts.credentials.store import (
    ChannelRecord,
    CredentialRecord,
    CredentialStore,
)
from google_accounts.models.google_account import ChannelSyncStatus, CredentialStatus
from google_accounts.platform.errors import ValidationError
from google_accounts.tenants import TenantRegistry

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_THRESHOLD = timedelta(minutes=5)
DEFAULT_MAX_WORKERS = 4
DEFAULT_REFRESH_TIMEOUT_SECONDS = 30.0

MAX_PAGE_SIZE = 100

# Statuses an administrator may set directly
ADMIN_SETTABLE_STATUSES = frozenset({
    CredentialStatus.REVOKED,
    CredentialStatus.ERROR,
    CredentialStatus.EXPIRED,
})

TERMINAL_STATUSES = frozenset({CredentialStatus.REVOKED})


class RefreshResultStatus(str, Enum):
    """Result status for refresh operations."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class RefreshResult:
    """
    Result of refreshing one store's credential.

    SECURITY: Does NOT include token values.
    """
    tenant_id: str
    status: RefreshResultStatus
    new_expires_at: Optional[datetime] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "new_expires_at": self.new_expires_at.isoformat() if self.new_expires_at else None,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "retryable": self.retryable,
        }


@dataclass
class ScanReport:
    """Aggregate outcome of one scan."""
    started_at: datetime
    threshold_seconds: float
    results: List[RefreshResult] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def scanned(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> List[RefreshResult]:
        return [r for r in self.results if r.status == RefreshResultStatus.SUCCESS]

    @property
    def failed(self) -> List[RefreshResult]:
        return [r for r in self.results if r.status == RefreshResultStatus.FAILED]

    @property
    def skipped(self) -> List[RefreshResult]:
        return [r for r in self.results if r.status == RefreshResultStatus.SKIPPED]

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "threshold_seconds": self.threshold_seconds,
            "scanned": self.scanned,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class CredentialPage:
    """One page of credentials, newest first."""
    items: List[CredentialRecord]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_kind(error: Exception) -> str:
    if isinstance(error, ProviderError) and error.provider_code:
        return error.provider_code
    return getattr(error, "code", None) or type(error).__name__


def _error_summary(error: Exception) -> str:
    """Short, token-free description stored in error_message."""
    message = getattr(error, "message", None) or str(error) or type(error).__name__
    return f"{_error_kind(error)}: {message}"[:500]


class CredentialLifecycleManager:
    """
    Lifecycle operations for Google credentials, keyed by store id.

    All mutation is scoped by tenant_id, so scans and user requests for
    different stores can run concurrently without a global lock. Token
    updates for the same store are serialized by the store's version check.
    """

    def __init__(
        self,
        store: CredentialStore,
        cipher: TokenCipher,
        coordinator: OAuthFlowCoordinator,
        tenant_registry: TenantRegistry,
        refresh_threshold: timedelta = DEFAULT_REFRESH_THRESHOLD,
        max_workers: int = DEFAULT_MAX_WORKERS,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.store = store
        self.cipher = cipher
        self.coordinator = coordinator
        self.tenants = tenant_registry
        self.refresh_threshold = refresh_threshold
        self.max_workers = max_workers
        self.refresh_timeout = refresh_timeout
        self._clock = clock
        self.audit = CredentialAuditLogger()

    # ------------------------------------------------------------------
    # Authorization flow
    # ------------------------------------------------------------------

    def initiate_auth(self, tenant_id: str) -> str:
        """
        Start linking a Google account to a store.

        No state is persisted; the returned URL carries a signed state token.

        Raises:
            TenantNotFoundError: If the store does not exist
            AlreadyLinkedError: If the store already has a credential
            ConfigurationError: If the OAuth client is not configured
        """
        if not self.tenants.tenant_exists(tenant_id):
            raise TenantNotFoundError(tenant_id)
        if self.store.exists(tenant_id):
            raise AlreadyLinkedError(tenant_id)

        return self.coordinator.build_authorization_url(tenant_id)

    async def complete_auth(self, code: str, state: str) -> CredentialRecord:
        """
        Finish the authorization flow and persist the credential.

        Exchanges the code, reads identity and channel, encrypts tokens and
        writes the credential together with its channel. Any failure leaves
        no credential row for the store.

        Raises:
            InvalidStateError, ExpiredStateError: state rejected
            MissingRefreshTokenError: Google returned no refresh token
            NoChannelFoundError: the account has no YouTube channel
            ProviderError: a Google call failed
            AlreadyLinkedError: the store already has a credential
            TenantNotFoundError: the store was removed during the flow
        """
        tokens, tenant_id = await self.coordinator.exchange_code(code, state)

        try:
            if not self.tenants.tenant_exists(tenant_id):
                raise TenantNotFoundError(tenant_id)
            if self.store.exists(tenant_id):
                raise AlreadyLinkedError(tenant_id)

            identity = await self.coordinator.fetch_identity(tokens.access_token)
            channel = await self.coordinator.fetch_channel(tokens.access_token)

            now = self._clock()
            record = CredentialRecord(
                tenant_id=tenant_id,
                provider_email=identity.email,
                provider_user_id=identity.user_id,
                access_token_encrypted=self.cipher.encrypt(tokens.access_token),
                refresh_token_encrypted=self.cipher.encrypt(tokens.refresh_token),
                token_expires_at=tokens.expires_at,
                scope=tokens.scope,
                status=CredentialStatus.ACTIVE,
            )
            created = self.store.create(record, self._channel_record(channel, now))
        except Exception as e:
            logger.warning(
                "Google account link failed",
                extra={"tenant_id": tenant_id, "error_kind": _error_kind(e)},
            )
            raise

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_LINKED,
            tenant_id=tenant_id,
            provider_email=created.provider_email,
            metadata={
                "channel_id": channel.channel_id,
                "token_expires_at": created.token_expires_at.isoformat(),
            },
        )
        return created

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_one(self, tenant_id: str) -> CredentialRecord:
        """
        Refresh one store's access token.

        On success the credential is ACTIVE with the error cleared. On any
        failure other than a concurrent update the credential is marked
        ERROR with the cause and the error is re-raised.

        Raises:
            CredentialNotFoundError: If the store has no credential
            InvalidStatusTransitionError: If the credential is REVOKED
            ConcurrentUpdateError: If another writer refreshed it first
            ProviderError, CryptoError: If the refresh failed
        """
        record = self.store.get_by_tenant(tenant_id)
        if record.status in TERMINAL_STATUSES:
            raise InvalidStatusTransitionError(record.status.value, CredentialStatus.ACTIVE.value)

        try:
            refresh_token = self.cipher.decrypt(record.refresh_token_encrypted)
            tokens = await self._refresh_with_timeout(refresh_token)

            # Refresh token is re-encrypted only when Google rotated it
            if tokens.refresh_token and tokens.refresh_token != refresh_token:
                refresh_envelope = self.cipher.encrypt(tokens.refresh_token)
            else:
                refresh_envelope = record.refresh_token_encrypted

            updated = self.store.update_tokens(
                tenant_id,
                access_token_encrypted=self.cipher.encrypt(tokens.access_token),
                refresh_token_encrypted=refresh_envelope,
                expires_at=tokens.expires_at,
                expected_version=record.version,
                refreshed_at=self._clock(),
                scope=tokens.scope or None,
            )
        except (ConcurrentUpdateError, CredentialNotFoundError) as e:
            logger.info(
                "Credential changed during refresh",
                extra={"tenant_id": tenant_id, "error_kind": _error_kind(e)},
            )
            raise
        except Exception as e:
            self._mark_error(record, e)
            raise

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_REFRESHED,
            tenant_id=tenant_id,
            provider_email=updated.provider_email,
            metadata={
                "new_expires_at": updated.token_expires_at.isoformat(),
                "previous_status": record.status.value,
            },
        )
        logger.info(
            "Credential refreshed successfully",
            extra={
                "tenant_id": tenant_id,
                "new_expires_at": updated.token_expires_at.isoformat(),
            },
        )
        return updated

    async def scan_and_refresh(self, threshold: Optional[timedelta] = None) -> ScanReport:
        """
        Refresh every ACTIVE credential expiring within the threshold.

        SCHEDULED REFRESH: Call this from a background job to proactively
        refresh tokens before they expire. Stores are refreshed concurrently
        up to max_workers; one store's failure or timeout never stops the
        others.

        Returns:
            ScanReport with one result per selected credential
        """
        within = threshold if threshold is not None else self.refresh_threshold
        now = self._clock()
        report = ScanReport(started_at=now, threshold_seconds=within.total_seconds())

        candidates = self.store.list_active_near_expiry(within, now=now)
        for record in candidates:
            if record.token_expires_at <= now:
                logger.warning(
                    "Access token expired before scheduled refresh",
                    extra={
                        "tenant_id": record.tenant_id,
                        "token_expires_at": record.token_expires_at.isoformat(),
                    },
                )

        semaphore = asyncio.Semaphore(self.max_workers)

        async def _refresh(record: CredentialRecord) -> RefreshResult:
            async with semaphore:
                return await self._scan_refresh_one(record.tenant_id)

        report.results = list(await asyncio.gather(*(_refresh(r) for r in candidates)))
        report.finished_at = self._clock()

        logger.info(
            "Completed scheduled token refresh",
            extra={
                "total": report.scanned,
                "success": len(report.succeeded),
                "failed": len(report.failed),
                "skipped": len(report.skipped),
            },
        )
        return report

    async def _scan_refresh_one(self, tenant_id: str) -> RefreshResult:
        try:
            updated = await self.refresh_one(tenant_id)
        except (ConcurrentUpdateError, CredentialNotFoundError, InvalidStatusTransitionError) as e:
            return RefreshResult(
                tenant_id=tenant_id,
                status=RefreshResultStatus.SKIPPED,
                error_kind=_error_kind(e),
            )
        except Exception as e:
            logger.error(
                "Failed to refresh credential in batch",
                extra={"tenant_id": tenant_id, "error_kind": _error_kind(e)},
            )
            return RefreshResult(
                tenant_id=tenant_id,
                status=RefreshResultStatus.FAILED,
                error_kind=_error_kind(e),
                error_message=_error_summary(e),
                retryable=not (isinstance(e, ProviderError) and e.is_terminal),
            )

        return RefreshResult(
            tenant_id=tenant_id,
            status=RefreshResultStatus.SUCCESS,
            new_expires_at=updated.token_expires_at,
        )

    async def _refresh_with_timeout(self, refresh_token: str):
        try:
            return await asyncio.wait_for(
                self.coordinator.refresh(refresh_token),
                timeout=self.refresh_timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderError(
                "Google token refresh timed out",
                provider_code="timeout",
                operation="refresh",
            ) from None

    def _mark_error(self, record: CredentialRecord, error: Exception) -> None:
        summary = _error_summary(error)
        try:
            # Only the version read before the provider call may be marked
            self.store.update_status(
                record.tenant_id,
                CredentialStatus.ERROR,
                summary,
                expected_version=record.version,
            )
        except CredentialNotFoundError:
            logger.warning(
                "Credential deleted before refresh error could be recorded",
                extra={"tenant_id": record.tenant_id},
            )
            return
        except ConcurrentUpdateError:
            logger.warning(
                "Credential changed during refresh; error not recorded",
                extra={"tenant_id": record.tenant_id, "error_kind": _error_kind(error)},
            )
            return

        self.audit.log_error(
            tenant_id=record.tenant_id,
            error_kind=_error_kind(error),
            error=summary,
            provider_email=record.provider_email,
        )
        logger.error(
            "Token refresh failed",
            extra={
                "tenant_id": record.tenant_id,
                "error_kind": _error_kind(error),
                "refresh_envelope_length": len(record.refresh_token_encrypted),
            },
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def update_status(
        self,
        tenant_id: str,
        status: Union[CredentialStatus, str],
        reason: Optional[str] = None,
    ) -> CredentialRecord:
        """
        Administrative status change.

        Only REVOKED, ERROR and EXPIRED can be set, and only from a
        non-terminal status. ERROR requires a reason.

        Raises:
            ValidationError: Unknown status, or ERROR without a reason
            CredentialNotFoundError: If the store has no credential
            InvalidStatusTransitionError: If the transition is not allowed
            ConcurrentUpdateError: If the credential changed while being checked
        """
        try:
            target = CredentialStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown credential status: {status}") from None

        reason = (reason or "").strip() or None
        if target == CredentialStatus.ERROR and not reason:
            raise ValidationError("A reason is required when setting status to error")

        record = self.store.get_by_tenant(tenant_id)
        if target not in ADMIN_SETTABLE_STATUSES or record.status in TERMINAL_STATUSES:
            raise InvalidStatusTransitionError(record.status.value, target.value)

        updated = self.store.update_status(
            tenant_id, target, reason, expected_version=record.version,
        )

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_STATUS_CHANGED,
            tenant_id=tenant_id,
            provider_email=updated.provider_email,
            metadata={
                "from_status": record.status.value,
                "to_status": target.value,
                "reason": reason,
            },
        )
        return updated

    def delete(self, tenant_id: str) -> None:
        """
        Remove the credential and its channel. Allowed from any status.

        Raises:
            CredentialNotFoundError: If the store has no credential
        """
        record = self.store.get_by_tenant(tenant_id)
        self.store.delete(tenant_id)
        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_DELETED,
            tenant_id=tenant_id,
            provider_email=record.provider_email,
            metadata={"status": record.status.value},
        )

    def get_credential(self, tenant_id: str) -> CredentialRecord:
        return self.store.get_by_tenant(tenant_id)

    def list_credentials(self, page: int = 1, limit: int = 20) -> CredentialPage:
        if page < 1:
            raise ValidationError("page must be at least 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        items, total = self.store.list_page(offset=(page - 1) * limit, limit=limit)
        return CredentialPage(items=items, total=total, page=page, limit=limit)

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    async def get_access_token(self, tenant_id: str) -> str:
        """
        Return a usable access token for the upload pipeline.

        ON-DEMAND REFRESH: refreshes first when the token expires within
        the refresh threshold.

        Raises:
            CredentialNotFoundError: If the store has no credential
            CredentialNotActiveError: If the credential is not ACTIVE
        """
        record = self.store.get_by_tenant(tenant_id)
        if record.status != CredentialStatus.ACTIVE:
            raise CredentialNotActiveError(tenant_id, record.status.value)

        if record.token_expires_at - self._clock() <= self.refresh_threshold:
            try:
                record = await self.refresh_one(tenant_id)
            except ConcurrentUpdateError:
                # Another writer just refreshed; its token is fresh
                record = self.store.get_by_tenant(tenant_id)

        return self.cipher.decrypt(record.access_token_encrypted)

    async def validate_credential(self, tenant_id: str) -> bool:
        """True if Google still accepts the stored access token."""
        record = self.store.get_by_tenant(tenant_id)
        access_token = self.cipher.decrypt(record.access_token_encrypted)
        return await self.coordinator.validate_access_token(access_token)

    async def resync_channel(self, tenant_id: str) -> ChannelRecord:
        """
        Re-read the linked YouTube channel and update the stored copy.

        On failure the existing channel is marked with sync_status ERROR and
        the error is re-raised.
        """
        access_token = await self.get_access_token(tenant_id)
        now = self._clock()

        try:
            info = await self.coordinator.fetch_channel(access_token)
        except (NoChannelFoundError, ProviderError) as e:
            record = self.store.get_by_tenant(tenant_id)
            if record.channel is not None:
                record.channel.sync_status = ChannelSyncStatus.ERROR
                self.store.update_channel(tenant_id, record.channel)
            logger.warning(
                "YouTube channel sync failed",
                extra={"tenant_id": tenant_id, "error_kind": _error_kind(e)},
            )
            raise

        channel = self.store.update_channel(tenant_id, self._channel_record(info, now))
        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_CHANNEL_SYNCED,
            tenant_id=tenant_id,
            metadata={"channel_id": channel.channel_id},
        )
        return channel

    @staticmethod
    def _channel_record(info: ChannelInfo, synced_at: datetime) -> ChannelRecord:
        return ChannelRecord(
            channel_id=info.channel_id,
            title=info.title,
            url=info.url,
            thumbnail_url=info.thumbnail_url,
            subscriber_count=info.subscriber_count,
            sync_status=ChannelSyncStatus.ACTIVE,
            last_synced_at=synced_at,
        )
