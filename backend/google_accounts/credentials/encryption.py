"""
Token encryption for Google OAuth credentials.

Implements AES-256-GCM authenticated encryption for access and refresh
tokens stored at rest.

SECURITY:
- Each encryption uses a fresh random 96-bit nonce that is passed to the
  cipher as its IV
- The authentication tag is verified before any plaintext is returned
- Decryption failures raise CryptoError; there is no plaintext fallback
- Plaintext tokens are never logged

Envelope format (all components lowercase hex, ':'-delimited):

    v1:<nonce>:<auth_tag>:<ciphertext>

Usage:
    cipher = TokenCipher.from_hex_key(config.encryption_key)

    envelope = cipher.encrypt(access_token)
    access_token = cipher.decrypt(envelope)
"""

import logging
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from google_accounts.credentials.errors import ConfigurationError, CryptoError

logger = logging.getLogger(__name__)


# AES-GCM constants
NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
TAG_SIZE = 16    # 128 bits, standard for AES-GCM
KEY_SIZE = 32    # 256 bits for AES-256

ENVELOPE_VERSION = "v1"
ENVELOPE_SEPARATOR = ":"
DEFAULT_ASSOCIATED_DATA = b"token-encryption"


class TokenCipher:
    """
    AES-256-GCM cipher for OAuth token envelopes.

    The key is fixed for the lifetime of the instance. Build one at process
    start and share it; the instance holds no other mutable state.
    """

    def __init__(self, key: bytes, associated_data: bytes = DEFAULT_ASSOCIATED_DATA):
        """
        Initialize cipher with a raw key.

        Args:
            key: 32-byte encryption key
            associated_data: Additional authenticated data bound to every envelope

        Raises:
            ConfigurationError: If key is missing or wrong size
        """
        if not key:
            raise ConfigurationError("Encryption key is required")
        if len(key) != KEY_SIZE:
            raise ConfigurationError(
                f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}"
            )

        self._aesgcm = AESGCM(key)
        self._associated_data = associated_data

    @classmethod
    def from_hex_key(cls, hex_key: Optional[str]) -> "TokenCipher":
        """
        Build a cipher from a 64-character hex key.

        Raises:
            ConfigurationError: If the key is absent or malformed
        """
        if not hex_key:
            raise ConfigurationError("TOKEN_ENCRYPTION_KEY is required")
        if len(hex_key) != KEY_SIZE * 2:
            raise ConfigurationError(
                f"TOKEN_ENCRYPTION_KEY must be a {KEY_SIZE * 2}-character hex string"
            )
        try:
            key = bytes.fromhex(hex_key)
        except ValueError:
            raise ConfigurationError(
                f"TOKEN_ENCRYPTION_KEY must be a {KEY_SIZE * 2}-character hex string"
            ) from None
        return cls(key)

    @staticmethod
    def generate_key() -> str:
        """
        Generate a new random 256-bit key as a 64-character hex string.

        Suitable for TOKEN_ENCRYPTION_KEY.
        """
        return secrets.token_bytes(KEY_SIZE).hex()

    @staticmethod
    def generate_nonce() -> bytes:
        """Generate a new random 12-byte nonce."""
        return secrets.token_bytes(NONCE_SIZE)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token into a versioned envelope.

        Args:
            plaintext: Token to encrypt (never logged)

        Returns:
            Envelope string safe for database storage

        Raises:
            CryptoError: If encryption fails
        """
        if plaintext is None:
            raise CryptoError("Cannot encrypt a missing token", operation="encrypt")

        nonce = self.generate_nonce()
        try:
            # AESGCM.encrypt returns ciphertext + tag concatenated
            sealed = self._aesgcm.encrypt(
                nonce,
                plaintext.encode("utf-8"),
                self._associated_data,
            )
        except Exception as e:
            logger.error(
                "Token encryption failed",
                extra={"operation": "encrypt", "error_type": type(e).__name__},
            )
            raise CryptoError("Failed to encrypt token", operation="encrypt") from e

        ciphertext = sealed[:-TAG_SIZE]
        auth_tag = sealed[-TAG_SIZE:]

        return ENVELOPE_SEPARATOR.join((
            ENVELOPE_VERSION,
            nonce.hex(),
            auth_tag.hex(),
            ciphertext.hex(),
        ))

    def decrypt(self, envelope: str) -> str:
        """
        Decrypt an envelope produced by encrypt().

        The authentication tag is verified before plaintext is returned.

        Args:
            envelope: Stored envelope string

        Returns:
            Decrypted token (handle with care, never log)

        Raises:
            CryptoError: If the envelope is malformed or fails authentication
        """
        nonce, auth_tag, ciphertext = self._parse_envelope(envelope)

        try:
            plaintext = self._aesgcm.decrypt(
                nonce,
                ciphertext + auth_tag,
                self._associated_data,
            )
        except InvalidTag:
            logger.error(
                "Token decryption failed: authentication tag mismatch",
                extra={"operation": "decrypt", "envelope_length": len(envelope)},
            )
            raise CryptoError(
                "Failed to decrypt token. Token may be corrupted or encryption key changed.",
                operation="decrypt",
            ) from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CryptoError("Decrypted token is not valid UTF-8", operation="decrypt") from e

    def _parse_envelope(self, envelope: str) -> tuple[bytes, bytes, bytes]:
        """Split and decode an envelope into (nonce, tag, ciphertext)."""
        if not isinstance(envelope, str) or not envelope:
            raise CryptoError("Encrypted token is empty", operation="decrypt")

        parts = envelope.split(ENVELOPE_SEPARATOR)
        if len(parts) != 4:
            raise CryptoError("Invalid encrypted token format", operation="decrypt")

        version, nonce_hex, tag_hex, ciphertext_hex = parts
        if version != ENVELOPE_VERSION:
            raise CryptoError(
                f"Unsupported encrypted token version: {version[:8]}",
                operation="decrypt",
            )

        try:
            nonce = bytes.fromhex(nonce_hex)
            auth_tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError:
            raise CryptoError("Invalid encrypted token encoding", operation="decrypt") from None

        if len(nonce) != NONCE_SIZE or len(auth_tag) != TAG_SIZE:
            raise CryptoError("Invalid encrypted token format", operation="decrypt")

        return nonce, auth_tag, ciphertext
