"""Refresh token record model and pure lifecycle transitions.

Transitions never persist anything. Callers hand the returned record to the
repository together with the record they started from, and the repository only
applies the write when the stored version still matches.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.revoked_reason import RevokedReason


class InvalidTokenTransitionError(ValueError):
    """Raised when a lifecycle transition is applied to a record that forbids it."""


class TokenStatus(StrEnum):
    """Derived refresh-token status used for reporting and audits."""

    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass(frozen=True)
class SecurityFlags:
    """Advisory security markers stamped on a token at issuance."""

    suspicious_activity: bool = False
    multiple_devices: bool = False
    location_change: bool = False


@dataclass(frozen=True)
class GeoLocation:
    """Optional coarse location resolved by an external collaborator."""

    country: str | None = None
    region: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class RefreshTokenRecord:
    """Persisted refresh token state. The raw token itself is never stored."""

    id: UUID
    token_hash: str
    jti: str
    user_id: UUID
    token_family: str
    previous_token_id: UUID | None
    issued_at: datetime
    expires_at: datetime
    last_used_at: datetime | None
    usage_count: int
    max_usage_count: int
    is_active: bool
    is_revoked: bool
    revoked_at: datetime | None
    revoked_by: UUID | None
    revoked_reason: RevokedReason | None
    device_info: DeviceInfo
    security_flags: SecurityFlags = field(default_factory=SecurityFlags)
    location: GeoLocation | None = None
    version: int = 1


def is_expired(record: RefreshTokenRecord, *, now: datetime) -> bool:
    """Return whether the record expiry is at or before `now`."""

    return record.expires_at <= now


def is_usable(record: RefreshTokenRecord, *, now: datetime) -> bool:
    """Return whether the record can still be exchanged for a new token pair."""

    return (
        record.is_active
        and not record.is_revoked
        and not is_expired(record, now=now)
        and record.usage_count < record.max_usage_count
    )


def token_status(record: RefreshTokenRecord, *, now: datetime) -> TokenStatus:
    """Return derived status with revoked > expired > inactive > exhausted precedence."""

    if record.is_revoked:
        return TokenStatus.REVOKED
    if is_expired(record, now=now):
        return TokenStatus.EXPIRED
    if not record.is_active:
        return TokenStatus.INACTIVE
    if record.usage_count >= record.max_usage_count:
        return TokenStatus.EXHAUSTED
    return TokenStatus.ACTIVE


def apply_use(record: RefreshTokenRecord, *, now: datetime) -> RefreshTokenRecord:
    """Return the record after one consumption; reaching the usage cap deactivates it."""

    if not is_usable(record, now=now):
        raise InvalidTokenTransitionError(
            f"Refresh token is not usable: {record.id} ({token_status(record, now=now).value})"
        )

    usage_count = record.usage_count + 1
    return replace(
        record,
        usage_count=usage_count,
        last_used_at=now,
        is_active=usage_count < record.max_usage_count,
        version=record.version + 1,
    )


def apply_revoke(
    record: RefreshTokenRecord,
    *,
    now: datetime,
    reason: RevokedReason,
    revoked_by: UUID | None,
) -> RefreshTokenRecord:
    """Return the record in its terminal revoked state."""

    if record.is_revoked:
        raise InvalidTokenTransitionError(f"Refresh token already revoked: {record.id}")

    return replace(
        record,
        is_active=False,
        is_revoked=True,
        revoked_at=now,
        revoked_by=revoked_by,
        revoked_reason=reason,
        version=record.version + 1,
    )
