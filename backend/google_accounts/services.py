"""
Wiring from configuration to credential lifecycle components.

Process-wide pieces (cipher, Google client, OAuth coordinator) are built
once; the lifecycle manager is built per database session.
"""

import logging
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from google_accounts.config import GoogleAccountsConfig
from google_accounts.credentials.encryption import TokenCipher
from google_accounts.credentials.lifecycle import CredentialLifecycleManager
from google_accounts.credentials.oauth import OAuthFlowCoordinator
from google_accounts.credentials.state import StateCodec
from google_accounts.credentials.store import SqlAlchemyCredentialStore
from google_accounts.integrations.google.client import GoogleOAuthClient
from google_accounts.tenants import SqlAlchemyTenantRegistry

logger = logging.getLogger(__name__)


class CredentialServices:
    """Shared, stateless components for one process."""

    def __init__(
        self,
        config: GoogleAccountsConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        # Fails fast on a missing or malformed key
        self.cipher = TokenCipher.from_hex_key(config.encryption_key)
        self.google_client = GoogleOAuthClient(
            client_id=config.client_id,
            client_secret=config.client_secret,
            redirect_uri=config.redirect_uri,
            timeout=config.http_timeout_seconds,
            http_client=http_client,
        )
        self.state_codec = StateCodec(
            config.effective_state_secret,
            ttl=timedelta(seconds=config.state_ttl_seconds),
        )
        self.coordinator = OAuthFlowCoordinator(self.google_client, self.state_codec)

    def lifecycle_manager(self, db_session: Session) -> CredentialLifecycleManager:
        return CredentialLifecycleManager(
            store=SqlAlchemyCredentialStore(db_session),
            cipher=self.cipher,
            coordinator=self.coordinator,
            tenant_registry=SqlAlchemyTenantRegistry(db_session),
            refresh_threshold=timedelta(seconds=self.config.refresh_threshold_seconds),
            max_workers=self.config.refresh_max_workers,
            refresh_timeout=self.config.refresh_timeout_seconds,
        )

    async def close(self) -> None:
        await self.google_client.close()
