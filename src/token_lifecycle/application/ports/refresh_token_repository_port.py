"""Port for refresh token persistence operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from uuid import UUID

from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.refresh_token import GeoLocation, RefreshTokenRecord, SecurityFlags
from token_lifecycle.domain.revoked_reason import RevokedReason


@dataclass(frozen=True)
class RefreshTokenCreateInput:
    """Input payload for inserting a refresh token record."""

    token_hash: str
    jti: str
    user_id: UUID
    token_family: str
    issued_at: datetime
    expires_at: datetime
    device_info: DeviceInfo
    previous_token_id: UUID | None = None
    max_usage_count: int = 1
    security_flags: SecurityFlags = field(default_factory=SecurityFlags)
    location: GeoLocation | None = None


class RefreshTokenRepositoryPort(Protocol):
    """Refresh token persistence contract.

    Every mutating method is conditional: single-record writes are guarded by the
    stored `version`, bulk writes only touch rows that are not yet revoked.
    """

    async def create_token(self, payload: RefreshTokenCreateInput) -> RefreshTokenRecord:
        """Persist a new refresh token record."""

    async def get_by_hash(self, *, token_hash: str) -> RefreshTokenRecord | None:
        """Return token by hash in any lifecycle state."""

    async def get_by_id(self, *, token_id: UUID) -> RefreshTokenRecord | None:
        """Return token by id in any lifecycle state."""

    async def list_by_family(self, *, token_family: str) -> list[RefreshTokenRecord]:
        """Return all tokens of one family ordered by issue time."""

    async def list_by_user(self, *, user_id: UUID) -> list[RefreshTokenRecord]:
        """Return all tokens of one user ordered by issue time."""

    async def list_issued_since(
        self,
        *,
        user_id: UUID,
        since: datetime,
    ) -> list[RefreshTokenRecord]:
        """Return tokens issued to one user at or after `since`."""

    async def apply_transition(
        self,
        *,
        current: RefreshTokenRecord,
        updated: RefreshTokenRecord,
    ) -> bool:
        """Write `updated` only if the stored version still equals `current.version`."""

    async def revoke_family(
        self,
        *,
        token_family: str,
        revoked_at: datetime,
        revoked_by: UUID | None,
        reason: RevokedReason,
    ) -> int:
        """Revoke every non-revoked token of one family and return affected count."""

    async def revoke_all_for_user(
        self,
        *,
        user_id: UUID,
        revoked_at: datetime,
        revoked_by: UUID | None,
        reason: RevokedReason,
    ) -> int:
        """Revoke every non-revoked token of one user and return affected count."""

    async def list_expired_active(
        self,
        *,
        now: datetime,
        limit: int,
    ) -> list[RefreshTokenRecord]:
        """Return active, non-revoked tokens whose expiry already passed."""

    async def list_revoked_before(
        self,
        *,
        cutoff: datetime,
        limit: int,
    ) -> list[RefreshTokenRecord]:
        """Return revoked tokens whose revocation time is older than `cutoff`."""

    async def list_orphaned(self, *, limit: int) -> list[RefreshTokenRecord]:
        """Return tokens whose owning user no longer exists."""

    async def delete_if_unchanged(self, *, current: RefreshTokenRecord) -> bool:
        """Delete a revoked token only if its stored version still matches."""

    async def delete_if_orphaned(self, *, token_id: UUID) -> bool:
        """Delete a token only if its owning user is still absent."""
