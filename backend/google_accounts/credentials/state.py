"""
OAuth state tokens.

The state parameter correlates Google's redirect with the store that
started the authorization. It is an HS256-signed JWT carrying the store id,
the issue time and a random nonce, so it cannot be forged or guessed.

Nothing is persisted while authorization is in flight: the state token is
the only record of a pending flow, and its TTL bounds how long a flow may
stay outstanding.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from google_accounts.credentials.errors import (
    ConfigurationError,
    ExpiredStateError,
    InvalidStateError,
)

logger = logging.getLogger(__name__)

STATE_ALGORITHM = "HS256"
STATE_ISSUER = "google-accounts-oauth"
DEFAULT_STATE_TTL = timedelta(minutes=5)
# Tolerated clock skew for tokens issued "in the future"
MAX_CLOCK_SKEW = timedelta(seconds=60)


@dataclass(frozen=True)
class OAuthState:
    """Decoded state payload."""
    tenant_id: str
    issued_at: datetime
    nonce: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateCodec:
    """Encodes and verifies OAuth state tokens."""

    def __init__(
        self,
        secret: Optional[str],
        ttl: timedelta = DEFAULT_STATE_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._secret = secret
        self.ttl = ttl
        self._clock = clock

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigurationError("OAuth state secret is not configured")
        return self._secret

    def encode(self, tenant_id: str, issued_at: Optional[datetime] = None) -> str:
        """
        Create a signed state token for a store.

        Args:
            tenant_id: Store starting the authorization
            issued_at: Issue time (defaults to now)

        Returns:
            URL-safe opaque state string
        """
        issued_at = issued_at or self._clock()
        payload = {
            "tid": tenant_id,
            # Millisecond NumericDate keeps the TTL check sub-second accurate
            "iat": round(issued_at.timestamp(), 3),
            "jti": secrets.token_urlsafe(16),
            "iss": STATE_ISSUER,
        }
        return jwt.encode(payload, self._require_secret(), algorithm=STATE_ALGORITHM)

    def decode(self, state: str) -> OAuthState:
        """
        Verify a state token and check its age.

        Raises:
            InvalidStateError: If the token is malformed or the signature is wrong
            ExpiredStateError: If the token is older than the TTL
        """
        if not state:
            raise InvalidStateError()

        try:
            payload = jwt.decode(
                state,
                self._require_secret(),
                algorithms=[STATE_ALGORITHM],
                issuer=STATE_ISSUER,
                # Age is checked against the injected clock below
                options={
                    "require": ["tid", "iat", "iss"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            logger.warning(
                "OAuth state rejected",
                extra={"reason": type(e).__name__},
            )
            raise InvalidStateError() from None

        tenant_id = payload.get("tid")
        issued_ts = payload.get("iat")
        if not isinstance(tenant_id, str) or not tenant_id or not isinstance(issued_ts, (int, float)):
            raise InvalidStateError()

        issued_at = datetime.fromtimestamp(issued_ts, tz=timezone.utc)
        now = self._clock()

        if issued_at - now > MAX_CLOCK_SKEW:
            logger.warning(
                "OAuth state issued in the future",
                extra={"tenant_id": tenant_id},
            )
            raise InvalidStateError()

        if now - issued_at > self.ttl:
            logger.info(
                "OAuth state expired",
                extra={
                    "tenant_id": tenant_id,
                    "age_seconds": int((now - issued_at).total_seconds()),
                },
            )
            raise ExpiredStateError()

        return OAuthState(
            tenant_id=tenant_id,
            issued_at=issued_at,
            nonce=payload.get("jti", ""),
        )
