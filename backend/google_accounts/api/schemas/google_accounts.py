"""
Pydantic schemas for the Google account admin API.

SECURITY: no schema here carries a token value, plaintext or encrypted.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from google_accounts.credentials.lifecycle import CredentialPage, ScanReport
from google_accounts.credentials.store import ChannelRecord, CredentialRecord
from google_accounts.models.google_account import ChannelSyncStatus, CredentialStatus


class AuthUrlRequest(BaseModel):
    """Request body for POST /admin/google-accounts/auth-url."""
    store_id: str = Field(
        ...,
        description="Store that will own the linked Google account",
        min_length=1,
        max_length=255,
        examples=["store_abc123"],
    )


class AuthUrlResponse(BaseModel):
    auth_url: str


class OAuthCallbackRequest(BaseModel):
    """Request body for POST /admin/google-accounts/oauth-callback."""
    code: str = Field(..., min_length=1, description="Authorization code from Google")
    state: str = Field(..., min_length=1, description="State token issued with the auth URL")


class UpdateStatusRequest(BaseModel):
    """Request body for PUT /admin/google-accounts/store/{store_id}/status."""
    status: CredentialStatus = Field(
        ...,
        description="Target status (revoked, error or expired)",
        examples=["revoked"],
    )
    reason: Optional[str] = Field(
        None,
        description="Why the status is being changed. Required for error.",
        max_length=500,
    )


class ChannelResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    channel_id: str
    title: str
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    subscriber_count: Optional[int] = None
    sync_status: ChannelSyncStatus
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ChannelRecord) -> "ChannelResponse":
        return cls.model_validate(record)


class CredentialResponse(BaseModel):
    """Credential metadata. Tokens are never included."""
    id: Optional[str] = None
    store_id: str
    provider_email: str
    status: CredentialStatus
    error_message: Optional[str] = None
    scope: str = ""
    token_expires_at: datetime
    last_refresh_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    channel: Optional[ChannelResponse] = None

    @classmethod
    def from_record(cls, record: CredentialRecord) -> "CredentialResponse":
        return cls(
            id=record.id,
            store_id=record.tenant_id,
            provider_email=record.provider_email,
            status=record.status,
            error_message=record.error_message,
            scope=record.scope,
            token_expires_at=record.token_expires_at,
            last_refresh_at=record.last_refresh_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
            channel=ChannelResponse.from_record(record.channel) if record.channel else None,
        )


class CredentialListResponse(BaseModel):
    items: List[CredentialResponse]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_page(cls, page: CredentialPage) -> "CredentialListResponse":
        return cls(
            items=[CredentialResponse.from_record(r) for r in page.items],
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )


class TokenValidationResponse(BaseModel):
    store_id: str
    valid: bool


class RefreshResultResponse(BaseModel):
    store_id: str
    status: str
    new_expires_at: Optional[datetime] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False


class ScanReportResponse(BaseModel):
    """Outcome of POST /admin/google-accounts/check-expired-tokens."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    threshold_seconds: float
    scanned: int
    succeeded: int
    failed: int
    skipped: int
    results: List[RefreshResultResponse]

    @classmethod
    def from_report(cls, report: ScanReport) -> "ScanReportResponse":
        return cls(
            started_at=report.started_at,
            finished_at=report.finished_at,
            threshold_seconds=report.threshold_seconds,
            scanned=report.scanned,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped=len(report.skipped),
            results=[
                RefreshResultResponse(
                    store_id=r.tenant_id,
                    status=r.status.value,
                    new_expires_at=r.new_expires_at,
                    error_kind=r.error_kind,
                    error_message=r.error_message,
                    retryable=r.retryable,
                )
                for r in report.results
            ],
        )
