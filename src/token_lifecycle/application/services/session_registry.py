"""Per-user bounded registry of device sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID

from token_lifecycle.application.ports.session_repository_port import (
    SessionCreateInput,
    SessionRecord,
    SessionRepositoryPort,
)
from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.revoked_reason import RevokedReason

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SessionRegistry:
    """Track device sessions and keep each user under the concurrent-session cap.

    A session id is stable for the whole life of a login: it is bound to the token
    family, not to the rotating refresh token jti.
    """

    def __init__(
        self,
        *,
        sessions: SessionRepositoryPort,
        max_concurrent_sessions: int = 5,
        now: NowCallable = _utc_now,
    ) -> None:
        if max_concurrent_sessions < 1:
            raise ValueError("max_concurrent_sessions must be at least 1")
        self._sessions = sessions
        self._max_concurrent_sessions = max_concurrent_sessions
        self._now = now

    @property
    def max_concurrent_sessions(self) -> int:
        return self._max_concurrent_sessions

    async def create_session(
        self,
        *,
        user_id: UUID,
        device_info: DeviceInfo,
        token_family: str,
    ) -> SessionRecord:
        """Register a session, evicting least-recently-used ones when over the cap."""

        registration = await self._sessions.create_session_bounded(
            SessionCreateInput(
                user_id=user_id,
                token_family=token_family,
                device_info=device_info,
                created_at=self._now(),
            ),
            max_sessions=self._max_concurrent_sessions,
            eviction_reason=RevokedReason.SESSION_LIMIT_EXCEEDED,
        )
        for evicted in registration.evicted:
            logger.info(
                "session_evicted user_id=%s session_id=%s token_family=%s last_activity=%s",
                user_id,
                evicted.session_id,
                evicted.token_family,
                evicted.last_activity.isoformat(),
            )
        logger.info(
            "session_created user_id=%s session_id=%s token_family=%s evicted=%s "
            "revoked_tokens=%s",
            user_id,
            registration.session.session_id,
            token_family,
            len(registration.evicted),
            registration.revoked_token_count,
        )
        return registration.session

    async def remove_session(self, *, user_id: UUID, session_id: UUID) -> bool:
        removed = await self._sessions.remove(user_id=user_id, session_id=session_id)
        if removed:
            logger.info("session_removed user_id=%s session_id=%s", user_id, session_id)
        return removed

    async def touch(
        self,
        *,
        user_id: UUID,
        session_id: UUID,
        now: datetime | None = None,
    ) -> bool:
        return await self._sessions.touch(
            user_id=user_id,
            session_id=session_id,
            last_activity=now or self._now(),
        )

    async def get_session(self, *, user_id: UUID, session_id: UUID) -> SessionRecord | None:
        return await self._sessions.get_session(user_id=user_id, session_id=session_id)

    async def get_by_token_family(self, *, token_family: str) -> SessionRecord | None:
        return await self._sessions.get_by_token_family(token_family=token_family)

    async def list_sessions(self, *, user_id: UUID) -> list[SessionRecord]:
        """Return device metadata for active sessions, most recent activity first."""

        return await self._sessions.list_for_user(user_id=user_id)

    async def clear(self, *, user_id: UUID) -> int:
        return await self._sessions.remove_all_for_user(user_id=user_id)
