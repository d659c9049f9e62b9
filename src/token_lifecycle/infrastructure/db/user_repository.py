"""SQLAlchemy adapter for user lookup queries."""

from __future__ import annotations

from typing import Any, cast
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from token_lifecycle.application.ports.user_directory_port import UserDirectoryPort, UserRecord
from token_lifecycle.infrastructure.db.column_codecs import to_uuid
from token_lifecycle.infrastructure.db.metadata import users


class SqlAlchemyUserDirectory(UserDirectoryPort):
    """User directory backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, *, user_id: UUID) -> UserRecord | None:
        """Return user by id, including inactive users."""

        statement = sa.select(
            users.c.id,
            users.c.roles,
            users.c.is_active,
        ).where(users.c.id == user_id).limit(1)

        async with self._session_factory() as session:
            result = await session.execute(statement)

        row = result.mappings().first()
        if row is None:
            return None
        return _to_user_record(row)


def _to_user_record(row: sa.RowMapping) -> UserRecord:
    roles = cast(list[Any], row["roles"] or [])
    return UserRecord(
        user_id=to_uuid(row["id"]),
        roles=tuple(str(role) for role in roles),
        is_active=bool(row["is_active"]),
    )
