"""
Token refresh job tests.

Runs the job body against in-memory SQLite with Google simulated by
httpx.MockTransport.
"""

from datetime import datetime, timedelta, timezone

import pytest

from google_accounts.config import GoogleAccountsConfig
from google_accounts.credentials.store import SqlAlchemyCredentialStore
from google_accounts.models import Store
from google_accounts.models.google_account import CredentialStatus
from google_accounts.services import CredentialServices
from google_accounts.tests.conftest import (
    TEST_CLIENT_ID,
    TEST_CLIENT_SECRET,
    TEST_ENCRYPTION_KEY,
    TEST_REDIRECT_URI,
    make_record,
)
from google_accounts.workers import token_refresh_job
from google_accounts.workers.token_refresh_job import RefreshJobStats, run_refresh


@pytest.fixture
def services(http_client):
    config = GoogleAccountsConfig(
        encryption_key=TEST_ENCRYPTION_KEY,
        client_id=TEST_CLIENT_ID,
        client_secret=TEST_CLIENT_SECRET,
        redirect_uri=TEST_REDIRECT_URI,
        refresh_max_workers=2,
    )
    return CredentialServices(config, http_client=http_client)


@pytest.fixture
def seeded(db_session, services):
    now = datetime.now(timezone.utc)
    for store_id in ("t1", "t2", "t3"):
        db_session.add(Store(id=store_id, store_name=f"Store {store_id}"))
    db_session.commit()

    store = SqlAlchemyCredentialStore(db_session)
    store.create(make_record(services.cipher, "t1", now + timedelta(minutes=1)))
    store.create(make_record(services.cipher, "t2", now + timedelta(minutes=2)))
    store.create(make_record(services.cipher, "t3", now + timedelta(hours=1)))
    return store


class TestRunRefresh:

    @pytest.mark.asyncio
    async def test_refreshes_near_expiry_and_records_failures(self, services, db_session, seeded, fake_google):
        fake_google.refresh_responses["test-refresh-t2"] = (400, {"error": "invalid_grant"})

        stats = await run_refresh(services, db_session)

        assert stats.credentials_selected == 2
        assert stats.credentials_refreshed == 1
        assert stats.credentials_failed == 1
        assert stats.failed_tenants == ["t2"]

        assert seeded.get_by_tenant("t1").status == CredentialStatus.ACTIVE
        assert seeded.get_by_tenant("t1").last_refresh_at is not None
        failed = seeded.get_by_tenant("t2")
        assert failed.status == CredentialStatus.ERROR
        assert failed.error_message.startswith("invalid_grant")
        # Outside the threshold
        assert seeded.get_by_tenant("t3").last_refresh_at is None

    @pytest.mark.asyncio
    async def test_empty_scan(self, services, db_session):
        stats = await run_refresh(services, db_session)

        assert stats.credentials_selected == 0
        assert stats.to_dict()["failed_tenants"] == []


class TestRefreshJobStats:

    def test_to_dict_includes_duration(self):
        started = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        stats = RefreshJobStats(
            started_at=started,
            credentials_selected=3,
            credentials_refreshed=2,
            credentials_failed=1,
            failed_tenants=["t2"],
            completed_at=started + timedelta(seconds=4),
        )

        data = stats.to_dict()

        assert data["selected_count"] == 3
        assert data["refreshed_count"] == 2
        assert data["failed_count"] == 1
        assert data["duration_seconds"] == 4.0

    def test_to_dict_without_completion(self):
        assert RefreshJobStats().to_dict()["duration_seconds"] is None


class TestMain:

    def test_missing_configuration_exits_non_zero(self, monkeypatch):
        monkeypatch.delenv("TOKEN_ENCRYPTION_KEY", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            token_refresh_job.main()

        assert exc_info.value.code == 1
