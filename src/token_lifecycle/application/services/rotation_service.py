"""Refresh token verification and single-use rotation with reuse detection."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from token_lifecycle.application.ports.refresh_token_repository_port import (
    RefreshTokenRepositoryPort,
)
from token_lifecycle.application.ports.token_codec_port import (
    ExpiredTokenError,
    TokenCodecPort,
    TokenDecodeError,
)
from token_lifecycle.application.ports.user_directory_port import UserDirectoryPort
from token_lifecycle.application.services.revocation_service import RevocationService
from token_lifecycle.application.services.session_registry import SessionRegistry
from token_lifecycle.application.services.token_issuer import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenIssuer,
    TokenPair,
)
from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.refresh_token import (
    RefreshTokenRecord,
    SecurityFlags,
    apply_use,
    is_expired,
    is_usable,
)
from token_lifecycle.domain.revoked_reason import RevokedReason
from token_lifecycle.domain.token_outcome import TokenOutcome

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class AccessTokenClaims:
    """Verified access token claims."""

    user_id: UUID
    roles: tuple[str, ...]
    jti: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AccessTokenVerification:
    """Access token verification result model."""

    outcome: TokenOutcome
    claims: AccessTokenClaims | None = None


@dataclass(frozen=True)
class RefreshTokenVerification:
    """Refresh token verification result model."""

    outcome: TokenOutcome
    record: RefreshTokenRecord | None = None


@dataclass(frozen=True)
class RotationResult:
    """Rotation result model; any non-success outcome means re-authentication."""

    outcome: TokenOutcome
    token_pair: TokenPair | None = None


class RotationService:
    """Verify tokens and exchange a usable refresh token for a new pair exactly once."""

    def __init__(
        self,
        *,
        codec: TokenCodecPort,
        refresh_tokens: RefreshTokenRepositoryPort,
        users: UserDirectoryPort,
        issuer: TokenIssuer,
        revocation: RevocationService,
        sessions: SessionRegistry | None = None,
        now: NowCallable = _utc_now,
    ) -> None:
        self._codec = codec
        self._refresh_tokens = refresh_tokens
        self._users = users
        self._issuer = issuer
        self._revocation = revocation
        self._sessions = sessions
        self._now = now

    def verify_access_token(self, token: str) -> AccessTokenVerification:
        """Check access token signature and claims without touching storage."""

        try:
            payload = self._codec.decode_access(token)
        except ExpiredTokenError:
            return AccessTokenVerification(outcome=TokenOutcome.TOKEN_EXPIRED)
        except TokenDecodeError:
            return AccessTokenVerification(outcome=TokenOutcome.TOKEN_MALFORMED)

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            return AccessTokenVerification(outcome=TokenOutcome.TOKEN_TYPE_MISMATCH)

        claims = _parse_access_claims(payload)
        if claims is None:
            return AccessTokenVerification(outcome=TokenOutcome.TOKEN_MALFORMED)
        return AccessTokenVerification(outcome=TokenOutcome.SUCCESS, claims=claims)

    async def verify_refresh_token(self, token: str) -> RefreshTokenVerification:
        """Resolve a refresh token to its record and report whether it is usable."""

        outcome, record = await self._lookup(token)
        if record is None:
            return RefreshTokenVerification(outcome=outcome)

        now = self._now()
        if is_expired(record, now=now):
            return RefreshTokenVerification(outcome=TokenOutcome.TOKEN_EXPIRED, record=record)
        if record.is_revoked:
            return RefreshTokenVerification(outcome=TokenOutcome.TOKEN_REVOKED, record=record)
        if _is_replay(record) or not is_usable(record, now=now):
            return RefreshTokenVerification(outcome=TokenOutcome.TOKEN_EXHAUSTED, record=record)
        return RefreshTokenVerification(outcome=TokenOutcome.SUCCESS, record=record)

    async def rotate(self, *, refresh_token: str, device_info: DeviceInfo) -> RotationResult:
        """Consume one refresh token and issue the next pair in its family.

        Presenting an already consumed token revokes the whole family before the
        reuse outcome is returned. Losing the consume race returns a conflict and
        issues nothing.
        """

        outcome, record = await self._lookup(refresh_token)
        if record is None:
            return RotationResult(outcome=outcome)

        now = self._now()
        if is_expired(record, now=now):
            return RotationResult(outcome=TokenOutcome.TOKEN_EXPIRED)
        if record.is_revoked:
            return RotationResult(outcome=TokenOutcome.TOKEN_REVOKED)

        if _is_replay(record):
            revoked_count = await self._revocation.revoke_family(
                token_family=record.token_family,
                revoked_by=None,
                reason=RevokedReason.SECURITY_BREACH,
            )
            logger.warning(
                "refresh_token_reuse_detected token_id=%s user_id=%s token_family=%s "
                "token_hash=%s ip_address=%s revoked_count=%s",
                record.id,
                record.user_id,
                record.token_family,
                record.token_hash[:12],
                device_info.ip_address,
                revoked_count,
            )
            return RotationResult(outcome=TokenOutcome.TOKEN_REUSE_DETECTED)

        if not is_usable(record, now=now):
            return RotationResult(outcome=TokenOutcome.TOKEN_EXHAUSTED)

        user = await self._users.get_by_id(user_id=record.user_id)
        if user is None:
            logger.warning(
                "refresh_token_user_missing token_id=%s user_id=%s",
                record.id,
                record.user_id,
            )
            return RotationResult(outcome=TokenOutcome.USER_NOT_FOUND)
        if not user.is_active:
            await self._revocation.revoke_all_for_user(
                user_id=user.user_id,
                revoked_by=None,
                reason=RevokedReason.ACCOUNT_LOCKED,
            )
            return RotationResult(outcome=TokenOutcome.ACCOUNT_INACTIVE)

        consumed = apply_use(record, now=now)
        if not await self._refresh_tokens.apply_transition(current=record, updated=consumed):
            logger.warning(
                "refresh_token_rotation_conflict token_id=%s user_id=%s token_family=%s",
                record.id,
                record.user_id,
                record.token_family,
            )
            return RotationResult(outcome=TokenOutcome.ROTATION_CONFLICT)

        pair = await self._issuer.issue_token_pair(
            user=user,
            device_info=device_info,
            token_family=record.token_family,
            previous_token_id=record.id,
            security_flags=SecurityFlags(
                suspicious_activity=record.security_flags.suspicious_activity,
                multiple_devices=record.security_flags.multiple_devices,
                location_change=device_info.ip_address != record.device_info.ip_address,
            ),
            location=record.location,
        )
        if await self._consumed_token_was_revoked(record=record, device_info=device_info):
            return RotationResult(outcome=TokenOutcome.TOKEN_REUSE_DETECTED)
        await self._touch_session(record=record, now=now)
        logger.info(
            "refresh_token_rotated user_id=%s token_family=%s previous_token_id=%s token_id=%s",
            user.user_id,
            record.token_family,
            record.id,
            pair.refresh_token_record.id,
        )
        return RotationResult(outcome=TokenOutcome.SUCCESS, token_pair=pair)

    async def _lookup(
        self,
        token: str,
    ) -> tuple[TokenOutcome, RefreshTokenRecord | None]:
        """Verify refresh token signature and type, then load its record in any state."""

        try:
            payload = self._codec.decode_refresh(token)
        except ExpiredTokenError:
            return TokenOutcome.TOKEN_EXPIRED, None
        except TokenDecodeError:
            return TokenOutcome.TOKEN_MALFORMED, None

        if payload.get("type") != REFRESH_TOKEN_TYPE:
            return TokenOutcome.TOKEN_MALFORMED, None

        record = await self._refresh_tokens.get_by_hash(token_hash=self._codec.hash_token(token))
        if record is None:
            return TokenOutcome.TOKEN_NOT_FOUND, None
        return TokenOutcome.SUCCESS, record

    async def _consumed_token_was_revoked(
        self,
        *,
        record: RefreshTokenRecord,
        device_info: DeviceInfo,
    ) -> bool:
        """Revoke the family again when a replay landed between consume and successor insert.

        The replay's family revoke only reaches rows that existed when it ran, so a
        successor inserted afterwards would otherwise stay usable.
        """

        current = await self._refresh_tokens.get_by_id(token_id=record.id)
        if current is not None and not current.is_revoked:
            return False

        revoked_count = await self._revocation.revoke_family(
            token_family=record.token_family,
            revoked_by=None,
            reason=RevokedReason.SECURITY_BREACH,
        )
        logger.warning(
            "refresh_token_reuse_during_rotation token_id=%s user_id=%s token_family=%s "
            "ip_address=%s revoked_count=%s",
            record.id,
            record.user_id,
            record.token_family,
            device_info.ip_address,
            revoked_count,
        )
        return True

    async def _touch_session(self, *, record: RefreshTokenRecord, now: datetime) -> None:
        if self._sessions is None:
            return
        session = await self._sessions.get_by_token_family(token_family=record.token_family)
        if session is None:
            return
        await self._sessions.touch(user_id=record.user_id, session_id=session.session_id, now=now)


def _is_replay(record: RefreshTokenRecord) -> bool:
    """Return whether the record was presented for rotation before."""

    return record.usage_count > 0


def _parse_access_claims(payload: dict[str, Any]) -> AccessTokenClaims | None:
    try:
        roles = payload.get("roles") or []
        if not isinstance(roles, list):
            return None
        return AccessTokenClaims(
            user_id=UUID(str(payload["userId"])),
            roles=tuple(str(role) for role in roles),
            jti=str(payload["jti"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=UTC),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
        )
    except (KeyError, TypeError, ValueError):
        return None
