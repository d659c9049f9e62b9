"""Port for signing, decoding, and hashing bearer tokens."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol


class TokenDecodeError(ValueError):
    """Raised when a token signature, structure, or registered claims are invalid."""


class ExpiredTokenError(TokenDecodeError):
    """Raised when a token carries an `exp` claim in the past."""


class TokenCodecPort(Protocol):
    """Signed token codec contract."""

    def encode_access(self, claims: dict[str, Any], *, expires_at: datetime) -> str:
        """Sign an access token payload with an expiry."""

    def decode_access(self, token: str) -> dict[str, Any]:
        """Verify and decode an access token or raise `TokenDecodeError`."""

    def encode_refresh(self, claims: dict[str, Any]) -> str:
        """Sign a refresh token payload; expiry is tracked by the store."""

    def decode_refresh(self, token: str) -> dict[str, Any]:
        """Verify and decode a refresh token or raise `TokenDecodeError`."""

    def hash_token(self, token: str) -> str:
        """Return the one-way hash persisted instead of the raw token."""
