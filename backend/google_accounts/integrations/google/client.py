"""
Google OAuth 2.0, userinfo and YouTube Data API client.

The client is stateless with respect to user credentials: every call takes
the access or refresh token it needs as an argument, so one instance can be
shared across concurrent requests for different stores.

Only the fields the credential lifecycle needs are read from responses.
Response bodies are never logged (they may contain tokens).
"""

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import httpx

from google_accounts.credentials.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v2/userinfo"
YOUTUBE_CHANNELS_ENDPOINT = "https://www.googleapis.com/youtube/v3/channels"


class GoogleOAuthClient:
    """
    Thin async wrapper around Google's OAuth and YouTube HTTP endpoints.

    Handles:
    - Authorization URL construction
    - Authorization-code and refresh-token grants
    - Userinfo and "my channels" lookups
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str],
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Google client.

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret
            redirect_uri: Registered redirect URI for the callback
            timeout: Per-request timeout in seconds
            http_client: Optional preconfigured httpx client (tests inject a MockTransport)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise ConfigurationError(
                "Google OAuth client is not configured. Set GOOGLE_CLIENT_ID, "
                "GOOGLE_CLIENT_SECRET and GOOGLE_REDIRECT_URI."
            )

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def build_authorization_url(
        self,
        scopes: Sequence[str],
        state: str,
        access_type: str = "offline",
        prompt: str = "consent",
    ) -> str:
        """Build the Google consent screen URL."""
        self._require_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "access_type": access_type,
            "prompt": prompt,
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Returns:
            Raw token response (access_token, refresh_token, expires_in, scope)

        Raises:
            ProviderError: If Google rejects the code or the call fails
        """
        self._require_configured()
        return await self._post_token(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            operation="exchange_code",
        )

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Obtain a new access token using a refresh token.

        Raises:
            ProviderError: If Google rejects the grant or the call fails
        """
        self._require_configured()
        return await self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            operation="refresh",
        )

    async def get_userinfo(self, access_token: str) -> Dict[str, Any]:
        """Fetch the authorized account's userinfo (id, email)."""
        return await self._get_json(
            USERINFO_ENDPOINT,
            access_token=access_token,
            operation="userinfo",
        )

    async def list_my_channels(self, access_token: str) -> List[Dict[str, Any]]:
        """List YouTube channels owned by the authorized account."""
        data = await self._get_json(
            YOUTUBE_CHANNELS_ENDPOINT,
            access_token=access_token,
            operation="channels",
            params={"part": "snippet,statistics", "mine": "true"},
        )
        items = data.get("items") or []
        if not isinstance(items, list):
            raise self._invalid_response("channels")
        return [item for item in items if isinstance(item, dict)]

    async def _post_token(self, form: Dict[str, Any], operation: str) -> Dict[str, Any]:
        try:
            response = await self._client.post(TOKEN_ENDPOINT, data=form)
        except httpx.RequestError as e:
            logger.error(
                "Google token request failed",
                extra={"operation": operation, "error_type": type(e).__name__},
            )
            raise ProviderError(
                "Could not reach Google token endpoint",
                provider_code="network_error",
                operation=operation,
            ) from e

        if response.status_code != 200:
            raise self._error_from_response(response, operation)

        return self._decode_body(response, operation)

    async def _get_json(
        self,
        url: str,
        access_token: str,
        operation: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.RequestError as e:
            logger.error(
                "Google API request failed",
                extra={"operation": operation, "error_type": type(e).__name__},
            )
            raise ProviderError(
                "Could not reach Google API",
                provider_code="network_error",
                operation=operation,
            ) from e

        if response.status_code != 200:
            raise self._error_from_response(response, operation)

        return self._decode_body(response, operation)

    @classmethod
    def _decode_body(cls, response: httpx.Response, operation: str) -> Dict[str, Any]:
        """Decode a success body, which must be a JSON object."""
        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            raise cls._invalid_response(operation)
        return body

    @staticmethod
    def _invalid_response(operation: str) -> ProviderError:
        logger.error(
            "Google API returned an unreadable response",
            extra={"operation": operation},
        )
        return ProviderError(
            f"Google {operation} returned an invalid response",
            provider_code="invalid_response",
            operation=operation,
        )

    @staticmethod
    def _error_from_response(response: httpx.Response, operation: str) -> ProviderError:
        """Extract Google's error code without copying the body into the message."""
        provider_code = str(response.status_code)
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, str):
                provider_code = error
            elif isinstance(error, dict):
                # Google API errors: {"error": {"code": 403, "status": "PERMISSION_DENIED"}}
                provider_code = str(error.get("status") or error.get("code") or provider_code)

        logger.error(
            "Google API returned an error",
            extra={
                "operation": operation,
                "status_code": response.status_code,
                "provider_code": provider_code,
            },
        )
        return ProviderError(
            f"Google {operation} failed: {provider_code}",
            provider_code=provider_code,
            operation=operation,
        )
