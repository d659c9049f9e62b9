"""Application service that mints access tokens and persisted refresh tokens."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from token_lifecycle.application.ports.refresh_token_repository_port import (
    RefreshTokenCreateInput,
    RefreshTokenRepositoryPort,
)
from token_lifecycle.application.ports.token_codec_port import TokenCodecPort
from token_lifecycle.application.ports.user_directory_port import UserRecord
from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.refresh_token import GeoLocation, RefreshTokenRecord, SecurityFlags

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_token_family() -> str:
    """Return a fresh token family identifier for a new login."""

    return str(uuid4())


@dataclass(frozen=True)
class IssuedRefreshToken:
    """Raw refresh token handed to the client plus its persisted record."""

    raw_token: str
    record: RefreshTokenRecord


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh pair returned on login and rotation."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_family: str
    refresh_token_record: RefreshTokenRecord
    token_type: str = "Bearer"


class TokenIssuer:
    """Sign access tokens and persist hashed single-use refresh tokens."""

    def __init__(
        self,
        *,
        codec: TokenCodecPort,
        refresh_tokens: RefreshTokenRepositoryPort,
        access_token_ttl: timedelta = timedelta(minutes=15),
        refresh_token_ttl: timedelta = timedelta(days=7),
        max_usage_count: int = 1,
        now: NowCallable = _utc_now,
    ) -> None:
        self._codec = codec
        self._refresh_tokens = refresh_tokens
        self._access_token_ttl = access_token_ttl
        self._refresh_token_ttl = refresh_token_ttl
        self._max_usage_count = max_usage_count
        self._now = now

    @property
    def access_token_ttl_seconds(self) -> int:
        return int(self._access_token_ttl.total_seconds())

    def issue_access_token(self, claims: Mapping[str, Any]) -> str:
        """Sign caller claims as a short-lived access token with fresh jti and iat."""

        issued_at = self._now()
        payload = {
            **claims,
            "type": ACCESS_TOKEN_TYPE,
            "jti": str(uuid4()),
            "iat": int(issued_at.timestamp()),
        }
        return self._codec.encode_access(payload, expires_at=issued_at + self._access_token_ttl)

    async def issue_refresh_token(
        self,
        *,
        user_id: UUID,
        device_info: DeviceInfo,
        token_family: str | None = None,
        previous_token_id: UUID | None = None,
        security_flags: SecurityFlags | None = None,
        location: GeoLocation | None = None,
    ) -> IssuedRefreshToken:
        """Sign a refresh token, persist its hash, and return the raw value once."""

        issued_at = self._now()
        jti = str(uuid4())
        family = token_family or new_token_family()
        raw_token = self._codec.encode_refresh(
            {
                "userId": str(user_id),
                "jti": jti,
                "tokenFamily": family,
                "type": REFRESH_TOKEN_TYPE,
                "iat": int(issued_at.timestamp()),
            }
        )

        record = await self._refresh_tokens.create_token(
            RefreshTokenCreateInput(
                token_hash=self._codec.hash_token(raw_token),
                jti=jti,
                user_id=user_id,
                token_family=family,
                issued_at=issued_at,
                expires_at=issued_at + self._refresh_token_ttl,
                device_info=device_info,
                previous_token_id=previous_token_id,
                max_usage_count=self._max_usage_count,
                security_flags=security_flags or SecurityFlags(),
                location=location,
            )
        )
        logger.info(
            "refresh_token_issued user_id=%s token_id=%s token_family=%s previous_token_id=%s",
            user_id,
            record.id,
            family,
            previous_token_id,
        )
        return IssuedRefreshToken(raw_token=raw_token, record=record)

    async def issue_token_pair(
        self,
        *,
        user: UserRecord,
        device_info: DeviceInfo,
        token_family: str | None = None,
        previous_token_id: UUID | None = None,
        security_flags: SecurityFlags | None = None,
        location: GeoLocation | None = None,
    ) -> TokenPair:
        """Issue an access token and one new persisted refresh token for a user."""

        access_token = self.issue_access_token(
            {"userId": str(user.user_id), "roles": list(user.roles)}
        )
        issued = await self.issue_refresh_token(
            user_id=user.user_id,
            device_info=device_info,
            token_family=token_family,
            previous_token_id=previous_token_id,
            security_flags=security_flags,
            location=location,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=issued.raw_token,
            expires_in=self.access_token_ttl_seconds,
            token_family=issued.record.token_family,
            refresh_token_record=issued.record,
        )
