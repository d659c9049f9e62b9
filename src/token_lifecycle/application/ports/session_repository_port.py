"""Port for per-user device session bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.revoked_reason import RevokedReason


@dataclass(frozen=True)
class SessionRecord:
    """Persisted device session bound to one refresh token family."""

    session_id: UUID
    user_id: UUID
    token_family: str
    device_info: DeviceInfo
    created_at: datetime
    last_activity: datetime
    is_active: bool


@dataclass(frozen=True)
class SessionCreateInput:
    """Input payload for registering one new session."""

    user_id: UUID
    token_family: str
    device_info: DeviceInfo
    created_at: datetime


@dataclass(frozen=True)
class SessionRegistration:
    """Result of one bounded session insert."""

    session: SessionRecord
    evicted: list[SessionRecord]
    revoked_token_count: int


class SessionRepositoryPort(Protocol):
    """Session persistence contract."""

    async def create_session_bounded(
        self,
        payload: SessionCreateInput,
        *,
        max_sessions: int,
        eviction_reason: RevokedReason,
    ) -> SessionRegistration:
        """Evict least-recently-used sessions over the cap and insert the new one.

        Eviction revokes the evicted sessions' token families. Eviction and insert
        happen in one transaction, serialized per user.
        """

    async def get_session(self, *, user_id: UUID, session_id: UUID) -> SessionRecord | None:
        """Return one session of one user."""

    async def get_by_token_family(self, *, token_family: str) -> SessionRecord | None:
        """Return the session bound to one token family."""

    async def list_for_user(self, *, user_id: UUID) -> list[SessionRecord]:
        """Return active sessions ordered by most recent activity first."""

    async def touch(self, *, user_id: UUID, session_id: UUID, last_activity: datetime) -> bool:
        """Advance session activity timestamp; never moves it backwards."""

    async def remove(self, *, user_id: UUID, session_id: UUID) -> bool:
        """Remove one session and return whether it existed."""

    async def remove_all_for_user(self, *, user_id: UUID) -> int:
        """Remove every session of one user and return affected count."""

    async def list_stale(self, *, now: datetime, limit: int) -> list[SessionRecord]:
        """Return sessions whose token family has no usable token left."""

    async def remove_if_stale(self, *, session_id: UUID, now: datetime) -> bool:
        """Remove a session only if its token family still has no usable token."""
