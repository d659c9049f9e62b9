"""Application service for idempotent refresh token revocation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID

from token_lifecycle.application.ports.refresh_token_repository_port import (
    RefreshTokenRepositoryPort,
)
from token_lifecycle.application.ports.session_repository_port import SessionRepositoryPort
from token_lifecycle.application.ports.token_codec_port import TokenCodecPort
from token_lifecycle.domain.refresh_token import RefreshTokenRecord, apply_revoke
from token_lifecycle.domain.revoked_reason import RevokedReason

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class RevocationOutcome(StrEnum):
    """Supported single-token revocation outcomes."""

    REVOKED = "revoked"
    ALREADY_REVOKED = "already_revoked"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RevocationResult:
    """Revocation result model."""

    outcome: RevocationOutcome
    revoked_count: int = 0
    record: RefreshTokenRecord | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is not RevocationOutcome.NOT_FOUND


class RevocationConflictError(RuntimeError):
    """Raised when a token keeps changing underneath repeated revoke attempts."""

    def __init__(self, *, token_id: UUID, attempts: int) -> None:
        super().__init__(f"could not revoke token {token_id} after {attempts} attempts")
        self.token_id = token_id
        self.attempts = attempts


class RevocationService:
    """Revoke one token, one token family, or every token of a user."""

    def __init__(
        self,
        *,
        codec: TokenCodecPort,
        refresh_tokens: RefreshTokenRepositoryPort,
        sessions: SessionRepositoryPort,
        max_attempts: int = 3,
        now: NowCallable = _utc_now,
    ) -> None:
        self._codec = codec
        self._refresh_tokens = refresh_tokens
        self._sessions = sessions
        self._max_attempts = max_attempts
        self._now = now

    async def revoke(
        self,
        *,
        token: str | None = None,
        token_id: UUID | None = None,
        revoked_by: UUID | None,
        reason: RevokedReason = RevokedReason.USER_LOGOUT,
    ) -> RevocationResult:
        """Revoke one token identified by raw value or record id; repeat calls succeed."""

        if (token is None) == (token_id is None):
            raise ValueError("exactly one of token or token_id is required")

        for _ in range(self._max_attempts):
            record = await self._load(token=token, token_id=token_id)
            if record is None:
                return RevocationResult(outcome=RevocationOutcome.NOT_FOUND)
            if record.is_revoked:
                return RevocationResult(outcome=RevocationOutcome.ALREADY_REVOKED, record=record)

            revoked = apply_revoke(
                record,
                now=self._now(),
                reason=reason,
                revoked_by=revoked_by,
            )
            if await self._refresh_tokens.apply_transition(current=record, updated=revoked):
                logger.info(
                    "refresh_token_revoked token_id=%s user_id=%s token_family=%s reason=%s",
                    record.id,
                    record.user_id,
                    record.token_family,
                    reason.value,
                )
                return RevocationResult(
                    outcome=RevocationOutcome.REVOKED,
                    revoked_count=1,
                    record=revoked,
                )

            logger.info("refresh_token_revoke_retry token_id=%s", record.id)

        record = await self._load(token=token, token_id=token_id)
        if record is None:
            return RevocationResult(outcome=RevocationOutcome.NOT_FOUND)
        if record.is_revoked:
            return RevocationResult(outcome=RevocationOutcome.ALREADY_REVOKED, record=record)
        raise RevocationConflictError(token_id=record.id, attempts=self._max_attempts)

    async def revoke_family(
        self,
        *,
        token_family: str,
        revoked_by: UUID | None = None,
        reason: RevokedReason = RevokedReason.SECURITY_BREACH,
    ) -> int:
        """Revoke every not-yet-revoked token descended from the same login."""

        count = await self._refresh_tokens.revoke_family(
            token_family=token_family,
            revoked_at=self._now(),
            revoked_by=revoked_by,
            reason=reason,
        )
        logger.info(
            "token_family_revoked token_family=%s revoked_count=%s reason=%s",
            token_family,
            count,
            reason.value,
        )
        return count

    async def revoke_all_for_user(
        self,
        *,
        user_id: UUID,
        revoked_by: UUID | None,
        reason: RevokedReason = RevokedReason.ADMIN_REVOKE,
    ) -> int:
        """Revoke every token of one user and drop all of their sessions."""

        count = await self._refresh_tokens.revoke_all_for_user(
            user_id=user_id,
            revoked_at=self._now(),
            revoked_by=revoked_by,
            reason=reason,
        )
        removed_sessions = await self._sessions.remove_all_for_user(user_id=user_id)
        logger.info(
            "user_tokens_revoked user_id=%s revoked_count=%s removed_sessions=%s reason=%s",
            user_id,
            count,
            removed_sessions,
            reason.value,
        )
        return count

    async def _load(
        self,
        *,
        token: str | None,
        token_id: UUID | None,
    ) -> RefreshTokenRecord | None:
        if token_id is not None:
            return await self._refresh_tokens.get_by_id(token_id=token_id)
        assert token is not None
        return await self._refresh_tokens.get_by_hash(token_hash=self._codec.hash_token(token))
