"""Port for resolving the users that own refresh tokens."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID


@dataclass(frozen=True)
class UserRecord:
    """Already-authenticated user identity consumed by token issuance."""

    user_id: UUID
    roles: tuple[str, ...]
    is_active: bool


class UserDirectoryPort(Protocol):
    """User lookup contract."""

    async def get_by_id(self, *, user_id: UUID) -> UserRecord | None:
        """Return user by id, including inactive users."""
