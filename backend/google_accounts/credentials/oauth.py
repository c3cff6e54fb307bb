"""
OAuth authorization-code flow for linking a store's Google account.

Builds the consent URL with a signed state token, exchanges the returned
code for tokens, and reads the account identity and YouTube channel.

Usage:
    coordinator = OAuthFlowCoordinator(google_client, StateCodec(secret))

    url = coordinator.build_authorization_url(store_id)
    tokens, store_id = await coordinator.exchange_code(code, state)
    identity = await coordinator.fetch_identity(tokens.access_token)
    channel = await coordinator.fetch_channel(tokens.access_token)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from google_accounts.credentials.errors import (
    MissingRefreshTokenError,
    NoChannelFoundError,
    ProviderError,
)
from google_accounts.credentials.state import StateCodec
from google_accounts.integrations.google.client import GoogleOAuthClient

logger = logging.getLogger(__name__)

OAUTH_SCOPES = (
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/youtube.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
)

# Used when Google omits expires_in
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

YOUTUBE_CHANNEL_URL = "https://www.youtube.com/channel/{channel_id}"


@dataclass
class OAuthTokens:
    """
    Tokens returned by Google.

    SECURITY: token fields are excluded from repr so they never reach logs.
    """
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(repr=False)
    expires_at: datetime
    scope: str = ""


@dataclass
class GoogleIdentity:
    """Google account identity."""
    email: str
    user_id: str


@dataclass
class ChannelInfo:
    """YouTube channel owned by the authorized account."""
    channel_id: str
    title: str
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    subscriber_count: Optional[int] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthFlowCoordinator:
    """
    Drives the Google authorization-code grant for one store at a time.

    Holds no per-store state: the state token carries the store id across
    the browser redirect, and tokens are passed explicitly to every call.
    """

    def __init__(
        self,
        client: GoogleOAuthClient,
        state_codec: StateCodec,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.state_codec = state_codec
        self._clock = clock

    def build_authorization_url(self, tenant_id: str) -> str:
        """
        Build the consent URL for a store.

        Preconditions (checked by the caller): the store exists and has no
        linked credential.

        access_type=offline and prompt=consent make Google return a refresh
        token even for a user who consented before.

        Raises:
            ConfigurationError: If the OAuth client is not configured
        """
        state = self.state_codec.encode(tenant_id)
        url = self.client.build_authorization_url(
            scopes=OAUTH_SCOPES,
            state=state,
            access_type="offline",
            prompt="consent",
        )
        logger.info("OAuth authorization URL generated", extra={"tenant_id": tenant_id})
        return url

    async def exchange_code(self, code: str, state: str) -> Tuple[OAuthTokens, str]:
        """
        Verify state and exchange the authorization code.

        Returns:
            (tokens, tenant_id)

        Raises:
            InvalidStateError: If state is malformed or tampered
            ExpiredStateError: If state is older than the TTL
            MissingRefreshTokenError: If Google did not return a refresh token
            ProviderError: If the exchange call fails
        """
        # State is verified before any provider call
        oauth_state = self.state_codec.decode(state)
        tenant_id = oauth_state.tenant_id

        data = await self.client.exchange_code(code)
        tokens = self._parse_token_response(data, operation="exchange_code")

        if not tokens.refresh_token:
            logger.warning(
                "Google grant did not include a refresh token",
                extra={"tenant_id": tenant_id},
            )
            raise MissingRefreshTokenError()

        logger.info(
            "Authorization code exchanged",
            extra={"tenant_id": tenant_id, "expires_at": tokens.expires_at.isoformat()},
        )
        return tokens, tenant_id

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        """
        Get a new access token.

        Google normally does not rotate refresh tokens; the original one is
        kept unless the response carries a new one.

        Raises:
            ProviderError: If Google rejects the refresh
        """
        data = await self.client.refresh_access_token(refresh_token)
        tokens = self._parse_token_response(data, operation="refresh")
        if not tokens.refresh_token:
            tokens.refresh_token = refresh_token
        return tokens

    async def fetch_identity(self, access_token: str) -> GoogleIdentity:
        """
        Read the Google account's email and user id.

        Raises:
            ProviderError: If the call fails or the response lacks either field
        """
        data = await self.client.get_userinfo(access_token)
        email = data.get("email")
        user_id = data.get("id")
        if not email or not user_id:
            raise ProviderError(
                "Google account information is incomplete",
                provider_code="incomplete_userinfo",
                operation="userinfo",
            )
        return GoogleIdentity(email=email, user_id=str(user_id))

    async def fetch_channel(self, access_token: str) -> ChannelInfo:
        """
        Read the YouTube channel owned by the account.

        Raises:
            NoChannelFoundError: If the account has no channel
            ProviderError: If the call fails
        """
        items = await self.client.list_my_channels(access_token)
        if not items:
            raise NoChannelFoundError()

        channel = items[0]
        channel_id = channel.get("id")
        if not channel_id:
            raise NoChannelFoundError()

        snippet = channel.get("snippet") or {}
        statistics = channel.get("statistics") or {}
        thumbnails = snippet.get("thumbnails") or {}
        thumbnail = thumbnails.get("default") or thumbnails.get("medium") or {}

        subscriber_count = None
        raw_count = statistics.get("subscriberCount")
        if raw_count is not None:
            try:
                subscriber_count = int(raw_count)
            except (TypeError, ValueError):
                subscriber_count = None

        info = ChannelInfo(
            channel_id=channel_id,
            title=snippet.get("title") or "",
            url=YOUTUBE_CHANNEL_URL.format(channel_id=channel_id),
            thumbnail_url=thumbnail.get("url"),
            subscriber_count=subscriber_count,
        )
        logger.info(
            "YouTube channel info retrieved",
            extra={"channel_id": info.channel_id, "channel_title": info.title},
        )
        return info

    async def validate_access_token(self, access_token: str) -> bool:
        """Return True if Google still accepts the access token."""
        try:
            await self.client.get_userinfo(access_token)
        except ProviderError as e:
            logger.info(
                "Access token validation failed",
                extra={"provider_code": e.provider_code},
            )
            return False
        return True

    def _parse_token_response(self, data: Dict[str, Any], operation: str) -> OAuthTokens:
        access_token = data.get("access_token")
        if not access_token:
            raise ProviderError(
                "Google did not return an access token",
                provider_code="missing_access_token",
                operation=operation,
            )

        expires_in = data.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_LIFETIME_SECONDS

        return OAuthTokens(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expires_at=self._clock() + timedelta(seconds=expires_in),
            scope=data.get("scope") or "",
        )
