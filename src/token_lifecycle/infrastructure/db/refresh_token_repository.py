"""SQLAlchemy adapter for refresh token persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from token_lifecycle.application.ports.refresh_token_repository_port import (
    RefreshTokenCreateInput,
    RefreshTokenRepositoryPort,
)
from token_lifecycle.domain.refresh_token import RefreshTokenRecord
from token_lifecycle.domain.revoked_reason import RevokedReason
from token_lifecycle.infrastructure.db.column_codecs import (
    device_info_from_json,
    device_info_to_json,
    ensure_utc,
    ensure_utc_or_none,
    location_from_json,
    location_to_json,
    security_flags_from_json,
    security_flags_to_json,
    to_uuid,
    to_uuid_or_none,
)
from token_lifecycle.infrastructure.db.metadata import refresh_tokens, users


class SqlAlchemyRefreshTokenRepository(RefreshTokenRepositoryPort):
    """Refresh token repository backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_token(self, payload: RefreshTokenCreateInput) -> RefreshTokenRecord:
        """Persist a token hash row and return the inserted record."""

        statement = sa.insert(refresh_tokens).values(
            id=uuid4(),
            token_hash=payload.token_hash,
            jti=payload.jti,
            user_id=payload.user_id,
            token_family=payload.token_family,
            previous_token_id=payload.previous_token_id,
            issued_at=payload.issued_at,
            expires_at=payload.expires_at,
            usage_count=0,
            max_usage_count=payload.max_usage_count,
            is_active=True,
            is_revoked=False,
            device_info=device_info_to_json(payload.device_info),
            security_flags=security_flags_to_json(payload.security_flags),
            location=location_to_json(payload.location),
            version=1,
        ).returning(*refresh_tokens.c)

        async with self._session_factory() as session:
            result = await session.execute(statement)
            await session.commit()

        row = result.mappings().one()
        return _to_refresh_token_record(row)

    async def get_by_hash(self, *, token_hash: str) -> RefreshTokenRecord | None:
        """Return token by hash in any lifecycle state."""

        return await self._fetch_one(refresh_tokens.c.token_hash == token_hash)

    async def get_by_id(self, *, token_id: UUID) -> RefreshTokenRecord | None:
        """Return token by id in any lifecycle state."""

        return await self._fetch_one(refresh_tokens.c.id == token_id)

    async def list_by_family(self, *, token_family: str) -> list[RefreshTokenRecord]:
        """Return all tokens of one family ordered by issue time."""

        statement = (
            sa.select(*refresh_tokens.c)
            .where(refresh_tokens.c.token_family == token_family)
            .order_by(refresh_tokens.c.issued_at.asc(), refresh_tokens.c.version.asc())
        )
        return await self._fetch_all(statement)

    async def list_by_user(self, *, user_id: UUID) -> list[RefreshTokenRecord]:
        """Return all tokens of one user ordered by issue time."""

        statement = (
            sa.select(*refresh_tokens.c)
            .where(refresh_tokens.c.user_id == user_id)
            .order_by(refresh_tokens.c.issued_at.asc())
        )
        return await self._fetch_all(statement)

    async def list_issued_since(
        self,
        *,
        user_id: UUID,
        since: datetime,
    ) -> list[RefreshTokenRecord]:
        """Return tokens issued to one user at or after `since`."""

        statement = (
            sa.select(*refresh_tokens.c)
            .where(
                refresh_tokens.c.user_id == user_id,
                refresh_tokens.c.issued_at >= since,
            )
            .order_by(refresh_tokens.c.issued_at.asc())
        )
        return await self._fetch_all(statement)

    async def apply_transition(
        self,
        *,
        current: RefreshTokenRecord,
        updated: RefreshTokenRecord,
    ) -> bool:
        """Write `updated` only if the stored version still equals `current.version`."""

        if updated.id != current.id or updated.version != current.version + 1:
            raise ValueError("updated record must be the next version of current")

        statement = (
            sa.update(refresh_tokens)
            .where(
                refresh_tokens.c.id == current.id,
                refresh_tokens.c.version == current.version,
            )
            .values(
                last_used_at=updated.last_used_at,
                usage_count=updated.usage_count,
                is_active=updated.is_active,
                is_revoked=updated.is_revoked,
                revoked_at=updated.revoked_at,
                revoked_by=updated.revoked_by,
                revoked_reason=(
                    updated.revoked_reason.value if updated.revoked_reason is not None else None
                ),
                security_flags=security_flags_to_json(updated.security_flags),
                version=updated.version,
            )
        )

        async with self._session_factory() as session:
            result = cast(CursorResult[Any], await session.execute(statement))
            await session.commit()

        return int(result.rowcount or 0) == 1

    async def revoke_family(
        self,
        *,
        token_family: str,
        revoked_at: datetime,
        revoked_by: UUID | None,
        reason: RevokedReason,
    ) -> int:
        """Revoke every non-revoked token of one family and return affected count."""

        statement = revoke_tokens_statement(
            refresh_tokens.c.token_family == token_family,
            revoked_at=revoked_at,
            revoked_by=revoked_by,
            reason=reason,
        )
        return await self._execute_count(statement)

    async def revoke_all_for_user(
        self,
        *,
        user_id: UUID,
        revoked_at: datetime,
        revoked_by: UUID | None,
        reason: RevokedReason,
    ) -> int:
        """Revoke every non-revoked token of one user and return affected count."""

        statement = revoke_tokens_statement(
            refresh_tokens.c.user_id == user_id,
            revoked_at=revoked_at,
            revoked_by=revoked_by,
            reason=reason,
        )
        return await self._execute_count(statement)

    async def list_expired_active(
        self,
        *,
        now: datetime,
        limit: int,
    ) -> list[RefreshTokenRecord]:
        """Return active, non-revoked tokens whose expiry already passed."""

        statement = (
            sa.select(*refresh_tokens.c)
            .where(
                refresh_tokens.c.is_active.is_(True),
                refresh_tokens.c.is_revoked.is_(False),
                refresh_tokens.c.expires_at <= now,
            )
            .order_by(refresh_tokens.c.expires_at.asc())
            .limit(limit)
        )
        return await self._fetch_all(statement)

    async def list_revoked_before(
        self,
        *,
        cutoff: datetime,
        limit: int,
    ) -> list[RefreshTokenRecord]:
        """Return revoked tokens whose revocation time is older than `cutoff`."""

        statement = (
            sa.select(*refresh_tokens.c)
            .where(
                refresh_tokens.c.is_revoked.is_(True),
                refresh_tokens.c.revoked_at < cutoff,
            )
            .order_by(refresh_tokens.c.revoked_at.asc())
            .limit(limit)
        )
        return await self._fetch_all(statement)

    async def list_orphaned(self, *, limit: int) -> list[RefreshTokenRecord]:
        """Return tokens whose owning user no longer exists."""

        statement = (
            sa.select(*refresh_tokens.c)
            .where(_owner_missing())
            .order_by(refresh_tokens.c.issued_at.asc())
            .limit(limit)
        )
        return await self._fetch_all(statement)

    async def delete_if_unchanged(self, *, current: RefreshTokenRecord) -> bool:
        """Delete a revoked token only if its stored version still matches."""

        statement = sa.delete(refresh_tokens).where(
            refresh_tokens.c.id == current.id,
            refresh_tokens.c.version == current.version,
            refresh_tokens.c.is_revoked.is_(True),
        )
        return await self._execute_count(statement) == 1

    async def delete_if_orphaned(self, *, token_id: UUID) -> bool:
        """Delete a token only if its owning user is still absent."""

        statement = sa.delete(refresh_tokens).where(
            refresh_tokens.c.id == token_id,
            _owner_missing(),
        )
        return await self._execute_count(statement) == 1

    async def _fetch_one(self, condition: sa.ColumnElement[bool]) -> RefreshTokenRecord | None:
        statement = sa.select(*refresh_tokens.c).where(condition).limit(1)

        async with self._session_factory() as session:
            result = await session.execute(statement)

        row = result.mappings().first()
        if row is None:
            return None
        return _to_refresh_token_record(row)

    async def _fetch_all(self, statement: sa.Select[Any]) -> list[RefreshTokenRecord]:
        async with self._session_factory() as session:
            result = await session.execute(statement)

        return [_to_refresh_token_record(row) for row in result.mappings().all()]

    async def _execute_count(self, statement: sa.Executable) -> int:
        async with self._session_factory() as session:
            result = cast(CursorResult[Any], await session.execute(statement))
            await session.commit()

        return int(result.rowcount or 0)


def revoke_tokens_statement(
    condition: sa.ColumnElement[bool],
    *,
    revoked_at: datetime,
    revoked_by: UUID | None,
    reason: RevokedReason,
) -> sa.Update:
    """Build a bulk revoke that skips already revoked rows and bumps their version."""

    return (
        sa.update(refresh_tokens)
        .where(condition, refresh_tokens.c.is_revoked.is_(False))
        .values(
            is_active=False,
            is_revoked=True,
            revoked_at=revoked_at,
            revoked_by=revoked_by,
            revoked_reason=reason.value,
            version=refresh_tokens.c.version + 1,
        )
    )


def _owner_missing() -> sa.ColumnElement[bool]:
    return ~sa.exists().where(users.c.id == refresh_tokens.c.user_id)


def _to_refresh_token_record(row: sa.RowMapping) -> RefreshTokenRecord:
    raw_reason = cast(str | None, row["revoked_reason"])
    return RefreshTokenRecord(
        id=to_uuid(row["id"]),
        token_hash=cast(str, row["token_hash"]),
        jti=cast(str, row["jti"]),
        user_id=to_uuid(row["user_id"]),
        token_family=cast(str, row["token_family"]),
        previous_token_id=to_uuid_or_none(row["previous_token_id"]),
        issued_at=ensure_utc(cast(datetime, row["issued_at"])),
        expires_at=ensure_utc(cast(datetime, row["expires_at"])),
        last_used_at=ensure_utc_or_none(cast(datetime | None, row["last_used_at"])),
        usage_count=int(row["usage_count"]),
        max_usage_count=int(row["max_usage_count"]),
        is_active=bool(row["is_active"]),
        is_revoked=bool(row["is_revoked"]),
        revoked_at=ensure_utc_or_none(cast(datetime | None, row["revoked_at"])),
        revoked_by=to_uuid_or_none(row["revoked_by"]),
        revoked_reason=RevokedReason(raw_reason) if raw_reason is not None else None,
        device_info=device_info_from_json(row["device_info"]),
        security_flags=security_flags_from_json(row["security_flags"]),
        location=location_from_json(row["location"]),
        version=int(row["version"]),
    )
