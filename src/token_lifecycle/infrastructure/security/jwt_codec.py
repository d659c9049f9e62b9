"""PyJWT-backed codec for access and refresh tokens."""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any

import jwt

from token_lifecycle.application.ports.token_codec_port import (
    ExpiredTokenError,
    TokenCodecPort,
    TokenDecodeError,
)

_REQUIRED_CLAIMS = ["iat", "jti", "type"]


class JwtTokenCodec(TokenCodecPort):
    """Sign and verify HMAC JWTs with separate access and refresh secrets."""

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        issuer: str,
        audience: str,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience

    def encode_access(self, claims: dict[str, Any], *, expires_at: datetime) -> str:
        payload = {
            **claims,
            "exp": int(expires_at.timestamp()),
            "iss": self._issuer,
            "aud": self._audience,
        }
        return jwt.encode(payload, self._access_secret, algorithm=self._algorithm)

    def decode_access(self, token: str) -> dict[str, Any]:
        return self._decode(
            token,
            secret=self._access_secret,
            required=[*_REQUIRED_CLAIMS, "exp"],
        )

    def encode_refresh(self, claims: dict[str, Any]) -> str:
        payload = {**claims, "iss": self._issuer, "aud": self._audience}
        return jwt.encode(payload, self._refresh_secret, algorithm=self._algorithm)

    def decode_refresh(self, token: str) -> dict[str, Any]:
        return self._decode(token, secret=self._refresh_secret, required=_REQUIRED_CLAIMS)

    def hash_token(self, token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def _decode(self, token: str, *, secret: str, required: list[str]) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": required},
            )
        except jwt.ExpiredSignatureError as error:
            raise ExpiredTokenError("token expired") from error
        except jwt.InvalidTokenError as error:
            raise TokenDecodeError(f"invalid token: {error}") from error
