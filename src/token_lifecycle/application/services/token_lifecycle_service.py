"""Entry point exposed to the authentication collaborator."""

from __future__ import annotations

import logging
from typing import Literal
from uuid import UUID

from token_lifecycle.application.ports.session_repository_port import SessionRecord
from token_lifecycle.application.ports.user_directory_port import UserRecord
from token_lifecycle.application.services.revocation_service import (
    RevocationOutcome,
    RevocationResult,
    RevocationService,
)
from token_lifecycle.application.services.rotation_service import (
    AccessTokenVerification,
    RefreshTokenVerification,
    RotationResult,
    RotationService,
)
from token_lifecycle.application.services.security_heuristics import SecurityHeuristics
from token_lifecycle.application.services.session_registry import SessionRegistry
from token_lifecycle.application.services.token_issuer import (
    TokenIssuer,
    TokenPair,
    new_token_family,
)
from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.refresh_token import GeoLocation
from token_lifecycle.domain.revoked_reason import RevokedReason

RevocationScope = Literal["token", "family", "all"]
logger = logging.getLogger(__name__)


class InactiveUserError(PermissionError):
    """Raised when issuance is requested for a user that is not active."""

    def __init__(self, *, user_id: UUID) -> None:
        super().__init__(f"user is not active: {user_id}")
        self.user_id = user_id


class TokenLifecycleService:
    """Issue, rotate, and revoke credentials and list the resulting sessions."""

    def __init__(
        self,
        *,
        issuer: TokenIssuer,
        rotation: RotationService,
        revocation: RevocationService,
        sessions: SessionRegistry,
        heuristics: SecurityHeuristics,
    ) -> None:
        self._issuer = issuer
        self._rotation = rotation
        self._revocation = revocation
        self._sessions = sessions
        self._heuristics = heuristics

    async def issue_token_pair(
        self,
        *,
        user: UserRecord,
        device_info: DeviceInfo,
        location: GeoLocation | None = None,
    ) -> TokenPair:
        """Start a new login: score activity, register the session, issue a pair."""

        if not user.is_active:
            raise InactiveUserError(user_id=user.user_id)

        assessment = await self._heuristics.evaluate(user_id=user.user_id, device_info=device_info)
        if assessment.is_suspicious:
            logger.warning(
                "suspicious_token_activity user_id=%s multiple_ips=%s multiple_devices=%s "
                "rapid_token_creation=%s ip_address=%s",
                user.user_id,
                assessment.multiple_ips,
                assessment.multiple_devices,
                assessment.rapid_token_creation,
                device_info.ip_address,
            )

        token_family = new_token_family()
        await self._sessions.create_session(
            user_id=user.user_id,
            device_info=device_info,
            token_family=token_family,
        )
        return await self._issuer.issue_token_pair(
            user=user,
            device_info=device_info,
            token_family=token_family,
            security_flags=assessment.to_security_flags(),
            location=location,
        )

    def verify_access_token(self, token: str) -> AccessTokenVerification:
        return self._rotation.verify_access_token(token)

    async def verify_refresh_token(self, token: str) -> RefreshTokenVerification:
        return await self._rotation.verify_refresh_token(token)

    async def rotate(self, *, refresh_token: str, device_info: DeviceInfo) -> RotationResult:
        return await self._rotation.rotate(refresh_token=refresh_token, device_info=device_info)

    async def revoke(
        self,
        *,
        target: str | UUID,
        scope: RevocationScope = "token",
        revoked_by: UUID | None,
        reason: RevokedReason = RevokedReason.USER_LOGOUT,
    ) -> RevocationResult:
        """Revoke a raw token or record id, a token family, or all tokens of a user.

        Family scope ends the session bound to the family; token scope does so only
        when the revoked token was the unconsumed head of its family.
        """

        if scope == "token":
            if isinstance(target, UUID):
                result = await self._revocation.revoke(
                    token_id=target,
                    revoked_by=revoked_by,
                    reason=reason,
                )
            else:
                result = await self._revocation.revoke(
                    token=target,
                    revoked_by=revoked_by,
                    reason=reason,
                )
            # Consumed ancestors have a successor that still carries the session.
            if (
                result.outcome is RevocationOutcome.REVOKED
                and result.record is not None
                and result.record.usage_count == 0
            ):
                await self._end_session(token_family=result.record.token_family)
            return result

        if scope == "family":
            token_family = str(target)
            count = await self._revocation.revoke_family(
                token_family=token_family,
                revoked_by=revoked_by,
                reason=reason,
            )
            await self._end_session(token_family=token_family)
            return _bulk_result(count)

        if scope == "all":
            if not isinstance(target, UUID):
                raise ValueError("scope 'all' requires a user id target")
            count = await self._revocation.revoke_all_for_user(
                user_id=target,
                revoked_by=revoked_by,
                reason=reason,
            )
            return _bulk_result(count)

        raise ValueError(f"unsupported revocation scope: {scope}")

    async def revoke_session(
        self,
        *,
        user_id: UUID,
        session_id: UUID,
        revoked_by: UUID | None,
        reason: RevokedReason = RevokedReason.USER_LOGOUT,
    ) -> RevocationResult:
        """End one listed session of a user and revoke its token family."""

        session = await self._sessions.get_session(user_id=user_id, session_id=session_id)
        if session is None:
            return RevocationResult(outcome=RevocationOutcome.NOT_FOUND)

        count = await self._revocation.revoke_family(
            token_family=session.token_family,
            revoked_by=revoked_by,
            reason=reason,
        )
        await self._sessions.remove_session(user_id=user_id, session_id=session_id)
        return _bulk_result(count)

    async def list_sessions(self, *, user_id: UUID) -> list[SessionRecord]:
        return await self._sessions.list_sessions(user_id=user_id)

    async def _end_session(self, *, token_family: str) -> None:
        session = await self._sessions.get_by_token_family(token_family=token_family)
        if session is not None:
            await self._sessions.remove_session(
                user_id=session.user_id,
                session_id=session.session_id,
            )


def _bulk_result(count: int) -> RevocationResult:
    outcome = RevocationOutcome.REVOKED if count else RevocationOutcome.ALREADY_REVOKED
    return RevocationResult(outcome=outcome, revoked_count=count)
