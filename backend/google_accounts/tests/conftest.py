"""
Shared pytest fixtures for Google account tests.

Provides a fixed clock, an in-memory CredentialStore, a fake Google
backend served through httpx.MockTransport, and in-memory SQLite sessions.

NOTE: Token values here are obviously fake and never match real Google
token shapes.
"""

import copy
import urllib.parse
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from google_accounts.credentials.encryption import TokenCipher
from google_accounts.credentials.errors import (
    AlreadyLinkedError,
    ConcurrentUpdateError,
    CredentialNotFoundError,
)
from google_accounts.credentials.lifecycle import CredentialLifecycleManager
from google_accounts.credentials.oauth import OAuthFlowCoordinator
from google_accounts.credentials.state import StateCodec
from google_accounts.credentials.store import (
    ChannelRecord,
    CredentialRecord,
    CredentialStore,
    _check_status_invariant,
)
from google_accounts.database.session import create_tables
from google_accounts.integrations.google.client import GoogleOAuthClient
from google_accounts.models.google_account import CredentialStatus
from google_accounts.tenants import TenantRegistry

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_CLIENT_ID = "test-client-id.apps.example.com"
TEST_CLIENT_SECRET = "test-client-secret-not-real"
TEST_REDIRECT_URI = "https://admin.example.com/admin/google-accounts/oauth-callback"

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# CLOCK
# ============================================================================

class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


# ============================================================================
# IN-MEMORY COLLABORATORS
# ============================================================================

class InMemoryCredentialStore(CredentialStore):
    """CredentialStore keeping records in a dict, with the same version rules."""

    def __init__(self, clock=None):
        self._records: Dict[str, CredentialRecord] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.create_calls = 0

    def create(self, credential, channel=None):
        self.create_calls += 1
        if credential.tenant_id in self._records:
            raise AlreadyLinkedError(credential.tenant_id)
        _check_status_invariant(credential.status, credential.error_message)

        record = copy.deepcopy(credential)
        record.id = f"cred-{credential.tenant_id}"
        record.version = 1
        record.created_at = record.updated_at = self._clock()
        record.channel = copy.deepcopy(channel)
        self._records[credential.tenant_id] = record
        return copy.deepcopy(record)

    def get_by_tenant(self, tenant_id):
        return copy.deepcopy(self._get(tenant_id))

    def exists(self, tenant_id):
        return tenant_id in self._records

    def list_active_near_expiry(self, within, now=None):
        threshold = (now or self._clock()) + within
        selected = [
            r for r in self._records.values()
            if r.status == CredentialStatus.ACTIVE and r.token_expires_at <= threshold
        ]
        return [copy.deepcopy(r) for r in sorted(selected, key=lambda r: r.token_expires_at)]

    def list_page(self, offset, limit):
        ordered = sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in ordered[offset:offset + limit]], len(ordered)

    def update_tokens(
        self,
        tenant_id,
        access_token_encrypted,
        refresh_token_encrypted,
        expires_at,
        expected_version=None,
        refreshed_at=None,
        scope=None,
    ):
        record = self._get(tenant_id)
        if expected_version is not None and record.version != expected_version:
            raise ConcurrentUpdateError(tenant_id, expected_version)

        record.access_token_encrypted = access_token_encrypted
        record.refresh_token_encrypted = refresh_token_encrypted
        record.token_expires_at = expires_at
        record.last_refresh_at = refreshed_at or self._clock()
        record.status = CredentialStatus.ACTIVE
        record.error_message = None
        if scope:
            record.scope = scope
        record.version += 1
        record.updated_at = self._clock()
        return copy.deepcopy(record)

    def update_status(self, tenant_id, status, error_message=None, expected_version=None):
        _check_status_invariant(status, error_message)
        record = self._get(tenant_id)
        if expected_version is not None and record.version != expected_version:
            raise ConcurrentUpdateError(tenant_id, expected_version)
        record.status = status
        record.error_message = error_message
        record.version += 1
        record.updated_at = self._clock()
        return copy.deepcopy(record)

    def update_channel(self, tenant_id, channel):
        record = self._get(tenant_id)
        record.channel = copy.deepcopy(channel)
        return copy.deepcopy(channel)

    def delete(self, tenant_id):
        self._get(tenant_id)
        del self._records[tenant_id]

    def bump_version(self, tenant_id):
        """Simulate another writer touching the record."""
        self._get(tenant_id).version += 1

    def _get(self, tenant_id) -> CredentialRecord:
        if tenant_id not in self._records:
            raise CredentialNotFoundError(tenant_id)
        return self._records[tenant_id]


class InMemoryTenantRegistry(TenantRegistry):

    def __init__(self, tenant_ids=()):
        self.tenant_ids = set(tenant_ids)

    def tenant_exists(self, tenant_id):
        return tenant_id in self.tenant_ids


# ============================================================================
# FAKE GOOGLE
# ============================================================================

def _token_body(access_token: str, refresh_token: Optional[str] = None, expires_in: int = 3600) -> dict:
    body = {
        "access_token": access_token,
        "expires_in": expires_in,
        "scope": "https://www.googleapis.com/auth/youtube.upload",
        "token_type": "Bearer",
    }
    if refresh_token:
        body["refresh_token"] = refresh_token
    return body


class FakeGoogle:
    """
    Google OAuth, userinfo and YouTube endpoints behind httpx.MockTransport.

    Tests adjust the public attributes to script responses.
    """

    def __init__(self):
        self.exchange_response: Tuple[int, dict] = (
            200, _token_body("test-access-initial", "test-refresh-initial"),
        )
        # refresh_token -> (status, body); unknown tokens get a fresh access token
        self.refresh_responses: Dict[str, Tuple[int, dict]] = {}
        self.userinfo_response: Tuple[int, dict] = (
            200, {"id": "google-user-1", "email": "owner@example.com"},
        )
        self.channels_response: Tuple[int, dict] = (
            200,
            {
                "items": [
                    {
                        "id": "UC-test-channel",
                        "snippet": {
                            "title": "Test Channel",
                            "thumbnails": {"default": {"url": "https://img.example.com/t.jpg"}},
                        },
                        "statistics": {"subscriberCount": "1234"},
                    }
                ]
            },
        )
        self.requests: List[httpx.Request] = []
        self.refresh_count = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.host == "oauth2.googleapis.com" and request.url.path == "/token":
            form = dict(urllib.parse.parse_qsl(request.content.decode()))
            if form.get("grant_type") == "authorization_code":
                status_code, body = self.exchange_response
                return httpx.Response(status_code, json=body)

            self.refresh_count += 1
            refresh_token = form.get("refresh_token", "")
            status_code, body = self.refresh_responses.get(
                refresh_token,
                (200, _token_body(f"test-access-refreshed-{self.refresh_count}")),
            )
            return httpx.Response(status_code, json=body)

        if request.url.path == "/oauth2/v2/userinfo":
            status_code, body = self.userinfo_response
            return httpx.Response(status_code, json=body)

        if request.url.path == "/youtube/v3/channels":
            status_code, body = self.channels_response
            return httpx.Response(status_code, json=body)

        return httpx.Response(404, json={"error": "not_found"})

    def form_requests(self, grant_type: str) -> List[dict]:
        forms = []
        for request in self.requests:
            if request.url.path == "/token":
                form = dict(urllib.parse.parse_qsl(request.content.decode()))
                if form.get("grant_type") == grant_type:
                    forms.append(form)
        return forms


@pytest.fixture
def fake_google():
    return FakeGoogle()


@pytest.fixture
def http_client(fake_google):
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler))


@pytest.fixture
def google_client(http_client):
    return GoogleOAuthClient(
        client_id=TEST_CLIENT_ID,
        client_secret=TEST_CLIENT_SECRET,
        redirect_uri=TEST_REDIRECT_URI,
        http_client=http_client,
    )


# ============================================================================
# CREDENTIAL COMPONENTS
# ============================================================================

@pytest.fixture
def cipher():
    return TokenCipher.from_hex_key(TEST_ENCRYPTION_KEY)


@pytest.fixture
def state_codec(clock):
    return StateCodec("test-state-secret-not-real-0123456789", clock=clock)


@pytest.fixture
def coordinator(google_client, state_codec, clock):
    return OAuthFlowCoordinator(google_client, state_codec, clock=clock)


@pytest.fixture
def memory_store(clock):
    return InMemoryCredentialStore(clock=clock)


@pytest.fixture
def tenants():
    return InMemoryTenantRegistry({"t1", "t2", "t3", "store-a", "store-b", "store-c"})


@pytest.fixture
def manager(memory_store, cipher, coordinator, tenants, clock):
    return CredentialLifecycleManager(
        store=memory_store,
        cipher=cipher,
        coordinator=coordinator,
        tenant_registry=tenants,
        refresh_threshold=timedelta(minutes=5),
        max_workers=2,
        refresh_timeout=5.0,
        clock=clock,
    )


def make_record(
    cipher: TokenCipher,
    tenant_id: str,
    expires_at: datetime,
    status: CredentialStatus = CredentialStatus.ACTIVE,
    refresh_token: Optional[str] = None,
    error_message: Optional[str] = None,
) -> CredentialRecord:
    """Build a credential record with encrypted fake tokens."""
    return CredentialRecord(
        tenant_id=tenant_id,
        provider_email=f"{tenant_id}@example.com",
        provider_user_id=f"google-{tenant_id}",
        access_token_encrypted=cipher.encrypt(f"test-access-{tenant_id}"),
        refresh_token_encrypted=cipher.encrypt(refresh_token or f"test-refresh-{tenant_id}"),
        token_expires_at=expires_at,
        scope="https://www.googleapis.com/auth/youtube.upload",
        status=status,
        error_message=error_message,
    )


def make_channel(channel_id: str = "UC-existing") -> ChannelRecord:
    return ChannelRecord(channel_id=channel_id, title="Existing Channel")


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
def session_factory():
    """In-memory SQLite shared across threads (TestClient runs in a worker thread)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()
