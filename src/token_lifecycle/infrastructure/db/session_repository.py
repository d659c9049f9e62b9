"""SQLAlchemy adapter for per-user device sessions."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, cast
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from token_lifecycle.application.ports.session_repository_port import (
    SessionCreateInput,
    SessionRecord,
    SessionRegistration,
    SessionRepositoryPort,
)
from token_lifecycle.domain.revoked_reason import RevokedReason
from token_lifecycle.infrastructure.db.column_codecs import (
    device_info_from_json,
    device_info_to_json,
    ensure_utc,
    to_uuid,
)
from token_lifecycle.infrastructure.db.metadata import refresh_tokens, user_sessions, users
from token_lifecycle.infrastructure.db.refresh_token_repository import revoke_tokens_statement

# A session is registered just before its first token is written.
STALE_SESSION_GRACE = timedelta(minutes=5)


class SqlAlchemySessionRepository(SessionRepositoryPort):
    """Session repository backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_session_bounded(
        self,
        payload: SessionCreateInput,
        *,
        max_sessions: int,
        eviction_reason: RevokedReason,
    ) -> SessionRegistration:
        """Evict least-recently-used sessions over the cap and insert the new one."""

        async with self._session_factory() as session:
            # Row lock serializes logins of one user on Postgres. SQLite has no row
            # locks; its sessions open with BEGIN IMMEDIATE instead.
            await session.execute(
                sa.select(users.c.id).where(users.c.id == payload.user_id).with_for_update()
            )
            existing = await session.execute(
                sa.select(*user_sessions.c)
                .where(user_sessions.c.user_id == payload.user_id)
                .order_by(
                    user_sessions.c.last_activity.asc(),
                    user_sessions.c.created_at.asc(),
                )
            )
            rows = existing.mappings().all()
            overflow = max(len(rows) - max_sessions + 1, 0)
            evicted = [_to_session_record(row) for row in rows[:overflow]]

            revoked_token_count = 0
            if evicted:
                revoke_result = cast(
                    CursorResult[Any],
                    await session.execute(
                        revoke_tokens_statement(
                            refresh_tokens.c.token_family.in_(
                                [record.token_family for record in evicted]
                            ),
                            revoked_at=payload.created_at,
                            revoked_by=None,
                            reason=eviction_reason,
                        )
                    ),
                )
                revoked_token_count = int(revoke_result.rowcount or 0)
                await session.execute(
                    sa.delete(user_sessions).where(
                        user_sessions.c.session_id.in_(
                            [record.session_id for record in evicted]
                        )
                    )
                )

            inserted = await session.execute(
                sa.insert(user_sessions)
                .values(
                    session_id=uuid4(),
                    user_id=payload.user_id,
                    token_family=payload.token_family,
                    device_info=device_info_to_json(payload.device_info),
                    created_at=payload.created_at,
                    last_activity=payload.created_at,
                    is_active=True,
                )
                .returning(*user_sessions.c)
            )
            row = inserted.mappings().one()
            await session.commit()

        return SessionRegistration(
            session=_to_session_record(row),
            evicted=evicted,
            revoked_token_count=revoked_token_count,
        )

    async def get_session(self, *, user_id: UUID, session_id: UUID) -> SessionRecord | None:
        """Return one session of one user."""

        return await self._fetch_one(
            user_sessions.c.user_id == user_id,
            user_sessions.c.session_id == session_id,
        )

    async def get_by_token_family(self, *, token_family: str) -> SessionRecord | None:
        """Return the session bound to one token family."""

        return await self._fetch_one(user_sessions.c.token_family == token_family)

    async def list_for_user(self, *, user_id: UUID) -> list[SessionRecord]:
        """Return active sessions ordered by most recent activity first."""

        statement = (
            sa.select(*user_sessions.c)
            .where(
                user_sessions.c.user_id == user_id,
                user_sessions.c.is_active.is_(True),
            )
            .order_by(user_sessions.c.last_activity.desc())
        )

        async with self._session_factory() as session:
            result = await session.execute(statement)

        return [_to_session_record(row) for row in result.mappings().all()]

    async def touch(self, *, user_id: UUID, session_id: UUID, last_activity: datetime) -> bool:
        """Advance session activity timestamp; never moves it backwards."""

        statement = (
            sa.update(user_sessions)
            .where(
                user_sessions.c.user_id == user_id,
                user_sessions.c.session_id == session_id,
                user_sessions.c.last_activity < last_activity,
            )
            .values(last_activity=last_activity)
        )
        return await self._execute_count(statement) == 1

    async def remove(self, *, user_id: UUID, session_id: UUID) -> bool:
        """Remove one session and return whether it existed."""

        statement = sa.delete(user_sessions).where(
            user_sessions.c.user_id == user_id,
            user_sessions.c.session_id == session_id,
        )
        return await self._execute_count(statement) == 1

    async def remove_all_for_user(self, *, user_id: UUID) -> int:
        """Remove every session of one user and return affected count."""

        statement = sa.delete(user_sessions).where(user_sessions.c.user_id == user_id)
        return await self._execute_count(statement)

    async def list_stale(self, *, now: datetime, limit: int) -> list[SessionRecord]:
        """Return sessions whose token family has no usable token left."""

        statement = (
            sa.select(*user_sessions.c)
            .where(_is_stale(now=now))
            .order_by(user_sessions.c.last_activity.asc())
            .limit(limit)
        )

        async with self._session_factory() as session:
            result = await session.execute(statement)

        return [_to_session_record(row) for row in result.mappings().all()]

    async def remove_if_stale(self, *, session_id: UUID, now: datetime) -> bool:
        """Remove a session only if its token family still has no usable token."""

        statement = sa.delete(user_sessions).where(
            user_sessions.c.session_id == session_id,
            _is_stale(now=now),
        )
        return await self._execute_count(statement) == 1

    async def _fetch_one(self, *conditions: sa.ColumnElement[bool]) -> SessionRecord | None:
        statement = sa.select(*user_sessions.c).where(*conditions).limit(1)

        async with self._session_factory() as session:
            result = await session.execute(statement)

        row = result.mappings().first()
        if row is None:
            return None
        return _to_session_record(row)

    async def _execute_count(self, statement: sa.Executable) -> int:
        async with self._session_factory() as session:
            result = cast(CursorResult[Any], await session.execute(statement))
            await session.commit()

        return int(result.rowcount or 0)


def _is_stale(*, now: datetime) -> sa.ColumnElement[bool]:
    usable_token_exists = sa.exists().where(
        refresh_tokens.c.token_family == user_sessions.c.token_family,
        refresh_tokens.c.is_active.is_(True),
        refresh_tokens.c.is_revoked.is_(False),
        refresh_tokens.c.expires_at > now,
    )
    return sa.and_(
        user_sessions.c.created_at < now - STALE_SESSION_GRACE,
        ~usable_token_exists,
    )


def _to_session_record(row: sa.RowMapping) -> SessionRecord:
    return SessionRecord(
        session_id=to_uuid(row["session_id"]),
        user_id=to_uuid(row["user_id"]),
        token_family=cast(str, row["token_family"]),
        device_info=device_info_from_json(row["device_info"]),
        created_at=ensure_utc(cast(datetime, row["created_at"])),
        last_activity=ensure_utc(cast(datetime, row["last_activity"])),
        is_active=bool(row["is_active"]),
    )
