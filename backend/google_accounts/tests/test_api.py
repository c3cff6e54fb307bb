"""
Admin API tests for Google account linking.

CRITICAL: These tests verify:
1. The full link flow works over HTTP
2. Responses never contain tokens or envelopes
3. Callback failures surface only a coarse reason code
4. Errors use the standard error shape
"""

import urllib.parse
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from google_accounts.config import GoogleAccountsConfig
from google_accounts.credentials.encryption import TokenCipher
from google_accounts.credentials.store import SqlAlchemyCredentialStore
from google_accounts.main import create_app
from google_accounts.models import Store
from google_accounts.models.google_account import CredentialStatus
from google_accounts.tests.conftest import (
    TEST_CLIENT_ID,
    TEST_CLIENT_SECRET,
    TEST_ENCRYPTION_KEY,
    TEST_REDIRECT_URI,
    make_channel,
    make_record,
)

SUCCESS_REDIRECT_URL = "https://admin.example.com/settings/google"
BASE = "/admin/google-accounts"


def _config(**overrides) -> GoogleAccountsConfig:
    values = dict(
        encryption_key=TEST_ENCRYPTION_KEY,
        client_id=TEST_CLIENT_ID,
        client_secret=TEST_CLIENT_SECRET,
        redirect_uri=TEST_REDIRECT_URI,
        state_secret="test-state-secret-not-real-0123456789",
        success_redirect_url=SUCCESS_REDIRECT_URL,
    )
    values.update(overrides)
    return GoogleAccountsConfig(**values)


@pytest.fixture
def stores(session_factory):
    session = session_factory()
    for store_id in ("t1", "t2"):
        session.add(Store(id=store_id, store_name=f"Store {store_id}"))
    session.commit()
    session.close()


@pytest.fixture
def app(session_factory, fake_google, stores):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler))
    return create_app(_config(), session_factory=session_factory, http_client=http_client)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def seed(session_factory):
    """Insert a credential directly through the store."""
    cipher = TokenCipher.from_hex_key(TEST_ENCRYPTION_KEY)

    def _seed(tenant_id, expires_in=timedelta(hours=1), **kwargs):
        record = make_record(cipher, tenant_id, datetime.now(timezone.utc) + expires_in, **kwargs)
        session = session_factory()
        try:
            return SqlAlchemyCredentialStore(session).create(record, make_channel("UC-seeded"))
        finally:
            session.close()

    return _seed


def _state_from(auth_url: str) -> str:
    return dict(urllib.parse.parse_qsl(urllib.parse.urlparse(auth_url).query))["state"]


def _assert_no_secrets(text: str):
    assert "test-access" not in text
    assert "test-refresh" not in text
    assert "v1:" not in text
    assert "encrypted" not in text


# ============================================================================
# TEST SUITE: LINK FLOW
# ============================================================================

class TestLinkFlow:

    def test_full_flow_over_http(self, client):
        response = client.post(f"{BASE}/auth-url", json={"store_id": "t1"})
        assert response.status_code == 200
        auth_url = response.json()["auth_url"]
        assert "access_type=offline" in auth_url
        assert "prompt=consent" in auth_url

        response = client.post(
            f"{BASE}/oauth-callback",
            json={"code": "auth-code", "state": _state_from(auth_url)},
        )
        assert response.status_code == 204

        response = client.get(f"{BASE}/store/t1")
        assert response.status_code == 200
        body = response.json()
        assert body["store_id"] == "t1"
        assert body["status"] == "active"
        assert body["provider_email"] == "owner@example.com"
        assert body["channel"]["channel_id"] == "UC-test-channel"
        _assert_no_secrets(response.text)

    def test_redirect_callback_success(self, client):
        auth_url = client.post(f"{BASE}/auth-url", json={"store_id": "t1"}).json()["auth_url"]

        response = client.get(
            f"{BASE}/oauth-callback",
            params={"code": "auth-code", "state": _state_from(auth_url)},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"] == f"{SUCCESS_REDIRECT_URL}?status=success"

    def test_auth_url_for_linked_store_is_conflict(self, client, seed):
        seed("t1")

        response = client.post(f"{BASE}/auth-url", json={"store_id": "t1"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ALREADY_LINKED"

    def test_auth_url_for_unknown_store_is_not_found(self, client):
        response = client.post(f"{BASE}/auth-url", json={"store_id": "nope"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
        assert "X-Correlation-ID" in response.headers

    def test_unconfigured_oauth_is_config_error(self, session_factory, stores):
        app = create_app(
            _config(client_id=None, client_secret=None, redirect_uri=None),
            session_factory=session_factory,
        )

        response = TestClient(app).post(f"{BASE}/auth-url", json={"store_id": "t1"})

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"


class TestCallbackErrors:

    def test_bad_state_post(self, client):
        response = client.post(
            f"{BASE}/oauth-callback", json={"code": "auth-code", "state": "forged"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["reason"] == "invalid_state"

    @pytest.mark.parametrize("scenario, reason", [
        ("bad_state", "invalid_state"),
        ("no_refresh_token", "no_refresh_token"),
        ("no_channel", "no_channel"),
        ("provider_failure", "oauth_failed"),
        ("user_denied", "oauth_failed"),
    ])
    def test_redirect_reasons(self, client, fake_google, scenario, reason):
        state = _state_from(client.post(f"{BASE}/auth-url", json={"store_id": "t1"}).json()["auth_url"])
        params = {"code": "auth-code", "state": state}

        if scenario == "bad_state":
            params["state"] = "forged"
        elif scenario == "no_refresh_token":
            fake_google.exchange_response = (200, {"access_token": "test-access-only", "expires_in": 3600})
        elif scenario == "no_channel":
            fake_google.channels_response = (200, {"items": []})
        elif scenario == "provider_failure":
            fake_google.exchange_response = (400, {"error": "invalid_grant", "error_description": "secret detail"})
        elif scenario == "user_denied":
            params = {"error": "access_denied", "state": state}

        response = client.get(f"{BASE}/oauth-callback", params=params, follow_redirects=False)

        assert response.status_code == 303
        location = response.headers["location"]
        assert location.startswith(SUCCESS_REDIRECT_URL)
        query = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(location).query))
        assert query == {"status": "error", "reason": reason}
        assert "secret detail" not in location

        # Nothing was persisted
        assert client.get(f"{BASE}/store/t1").status_code == 404


# ============================================================================
# TEST SUITE: ADMINISTRATION
# ============================================================================

class TestAdministration:

    def test_list_is_paginated_and_token_free(self, client, seed):
        seed("t1")
        seed("t2")

        response = client.get(BASE, params={"page": 1, "limit": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["total_pages"] == 2
        assert len(body["items"]) == 1
        _assert_no_secrets(response.text)

    def test_manual_refresh(self, client, seed):
        seed("t1", expires_in=timedelta(minutes=1))

        response = client.post(f"{BASE}/store/t1/refresh-token")

        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert response.json()["last_refresh_at"] is not None
        _assert_no_secrets(response.text)

    def test_manual_refresh_failure_is_bad_gateway_and_marks_error(self, client, seed, fake_google):
        seed("t1")
        fake_google.refresh_responses["test-refresh-t1"] = (400, {"error": "invalid_grant"})

        response = client.post(f"{BASE}/store/t1/refresh-token")

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "PROVIDER_ERROR"
        assert client.get(f"{BASE}/store/t1").json()["status"] == "error"

    def test_revoke_then_refresh_is_rejected(self, client, seed):
        seed("t1")

        response = client.put(f"{BASE}/store/t1/status", json={"status": "revoked", "reason": "owner left"})
        assert response.status_code == 200
        assert response.json()["status"] == "revoked"

        response = client.post(f"{BASE}/store/t1/refresh-token")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"

    def test_status_error_without_reason_is_400(self, client, seed):
        seed("t1")

        response = client.put(f"{BASE}/store/t1/status", json={"status": "error"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_delete(self, client, seed):
        seed("t1", status=CredentialStatus.REVOKED)

        assert client.delete(f"{BASE}/store/t1").status_code == 204
        assert client.get(f"{BASE}/store/t1").status_code == 404
        assert client.delete(f"{BASE}/store/t1").status_code == 404

    def test_sync_channel(self, client, seed):
        seed("t1")

        response = client.post(f"{BASE}/store/t1/sync-channel")

        assert response.status_code == 200
        assert response.json()["channel_id"] == "UC-test-channel"
        assert response.json()["sync_status"] == "active"

    def test_validate_token(self, client, seed, fake_google):
        seed("t1")
        assert client.get(f"{BASE}/store/t1/validate").json() == {"store_id": "t1", "valid": True}

        fake_google.userinfo_response = (401, {"error": "invalid_token"})
        assert client.get(f"{BASE}/store/t1/validate").json()["valid"] is False

    def test_check_expired_tokens(self, client, seed, fake_google):
        seed("t1", expires_in=timedelta(minutes=1))
        seed("t2", expires_in=timedelta(minutes=2))
        fake_google.refresh_responses["test-refresh-t2"] = (400, {"error": "invalid_grant"})

        response = client.post(f"{BASE}/check-expired-tokens")

        assert response.status_code == 200
        report = response.json()
        assert report["scanned"] == 2
        assert report["succeeded"] == 1
        assert report["failed"] == 1
        failed = [r for r in report["results"] if r["status"] == "failed"][0]
        assert failed["store_id"] == "t2"
        assert failed["error_kind"] == "invalid_grant"


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
