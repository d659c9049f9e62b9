from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

import pytest
import sqlalchemy as sa
from alembic.config import Config

from alembic import command
from token_lifecycle.application.ports.refresh_token_repository_port import (
    RefreshTokenCreateInput,
)
from token_lifecycle.application.ports.session_repository_port import SessionCreateInput
from token_lifecycle.domain.device_info import DeviceInfo, derive_device_info
from token_lifecycle.domain.revoked_reason import RevokedReason
from token_lifecycle.infrastructure.db.refresh_token_repository import (
    SqlAlchemyRefreshTokenRepository,
)
from token_lifecycle.infrastructure.db.session import create_session_factory
from token_lifecycle.infrastructure.db.session_repository import (
    STALE_SESSION_GRACE,
    SqlAlchemySessionRepository,
)

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _upgrade_head(tmp_path: Path, filename: str) -> tuple[str, str]:
    db_path = tmp_path / filename
    sync_url = f"sqlite+pysqlite:///{db_path}"
    async_url = f"sqlite+aiosqlite:///{db_path}"

    alembic_config = Config("alembic.ini")
    alembic_config.set_main_option("sqlalchemy.url", sync_url)
    command.upgrade(alembic_config, "head")

    return sync_url, async_url


def _insert_user(sync_url: str, *, user_id: UUID) -> None:
    engine = sa.create_engine(sync_url)
    with engine.begin() as connection:
        connection.execute(
            sa.text("INSERT INTO users (id, is_active) VALUES (:id, 1)"),
            {"id": user_id.hex},
        )


def _device(ip_address: str = "203.0.113.10") -> DeviceInfo:
    return derive_device_info(
        ip_address=ip_address,
        user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile Safari/604.1",
    )


async def _issue(
    repo: SqlAlchemyRefreshTokenRepository,
    *,
    user_id: UUID,
    token_family: str,
    issued_at: datetime = BASE_TIME,
) -> None:
    suffix = uuid4().hex
    await repo.create_token(
        RefreshTokenCreateInput(
            token_hash=f"hash-{suffix}",
            jti=f"jti-{suffix}",
            user_id=user_id,
            token_family=token_family,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(days=7),
            device_info=_device(),
        )
    )


def _session_input(
    *,
    user_id: UUID,
    token_family: str,
    created_at: datetime,
) -> SessionCreateInput:
    return SessionCreateInput(
        user_id=user_id,
        token_family=token_family,
        device_info=_device(),
        created_at=created_at,
    )


@pytest.mark.asyncio
async def test_bounded_insert_evicts_least_recent_and_revokes_its_family(
    tmp_path: Path,
) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "session_bounded.db")
    session_factory = create_session_factory(async_url)
    tokens = SqlAlchemyRefreshTokenRepository(session_factory)
    repo = SqlAlchemySessionRepository(session_factory)
    user_id = uuid4()
    _insert_user(sync_url, user_id=user_id)

    for index in range(3):
        family = f"family-{index}"
        await _issue(tokens, user_id=user_id, token_family=family)
        await repo.create_session_bounded(
            _session_input(
                user_id=user_id,
                token_family=family,
                created_at=BASE_TIME + timedelta(minutes=index),
            ),
            max_sessions=3,
            eviction_reason=RevokedReason.SESSION_LIMIT_EXCEEDED,
        )

    registration = await repo.create_session_bounded(
        _session_input(
            user_id=user_id,
            token_family="family-3",
            created_at=BASE_TIME + timedelta(minutes=10),
        ),
        max_sessions=3,
        eviction_reason=RevokedReason.SESSION_LIMIT_EXCEEDED,
    )

    assert [session.token_family for session in registration.evicted] == ["family-0"]
    assert registration.revoked_token_count == 1
    listed = await repo.list_for_user(user_id=user_id)
    assert [session.token_family for session in listed] == ["family-3", "family-2", "family-1"]
    assert listed[0].device_info.device_type == "mobile"
    evicted_tokens = await tokens.list_by_family(token_family="family-0")
    assert evicted_tokens[0].is_revoked is True
    assert evicted_tokens[0].revoked_reason is RevokedReason.SESSION_LIMIT_EXCEEDED
    assert evicted_tokens[0].revoked_at == BASE_TIME + timedelta(minutes=10)


@pytest.mark.asyncio
async def test_concurrent_bounded_inserts_never_exceed_the_cap(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "session_concurrent.db")
    session_factory = create_session_factory(async_url)
    tokens = SqlAlchemyRefreshTokenRepository(session_factory)
    repo = SqlAlchemySessionRepository(session_factory)
    user_id = uuid4()
    _insert_user(sync_url, user_id=user_id)
    families = [f"family-{index}" for index in range(4)]
    for family in families:
        await _issue(tokens, user_id=user_id, token_family=family)

    registrations = await asyncio.gather(
        *(
            repo.create_session_bounded(
                _session_input(
                    user_id=user_id,
                    token_family=family,
                    created_at=BASE_TIME + timedelta(minutes=index),
                ),
                max_sessions=1,
                eviction_reason=RevokedReason.SESSION_LIMIT_EXCEEDED,
            )
            for index, family in enumerate(families)
        )
    )

    listed = await repo.list_for_user(user_id=user_id)
    assert len(listed) == 1
    assert sum(len(registration.evicted) for registration in registrations) == 3
    survivor = listed[0].token_family
    for family in families:
        family_tokens = await tokens.list_by_family(token_family=family)
        assert family_tokens[0].is_revoked is (family != survivor)


@pytest.mark.asyncio
async def test_touch_never_moves_activity_backwards(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "session_touch.db")
    repo = SqlAlchemySessionRepository(create_session_factory(async_url))
    user_id = uuid4()
    _insert_user(sync_url, user_id=user_id)
    registration = await repo.create_session_bounded(
        _session_input(user_id=user_id, token_family="family-a", created_at=BASE_TIME),
        max_sessions=5,
        eviction_reason=RevokedReason.SESSION_LIMIT_EXCEEDED,
    )
    session_id = registration.session.session_id

    forward = await repo.touch(
        user_id=user_id,
        session_id=session_id,
        last_activity=BASE_TIME + timedelta(hours=1),
    )
    backward = await repo.touch(
        user_id=user_id,
        session_id=session_id,
        last_activity=BASE_TIME + timedelta(minutes=30),
    )
    foreign = await repo.touch(
        user_id=uuid4(),
        session_id=session_id,
        last_activity=BASE_TIME + timedelta(hours=2),
    )

    assert forward is True
    assert backward is False
    assert foreign is False
    stored = await repo.get_session(user_id=user_id, session_id=session_id)
    assert stored is not None
    assert stored.last_activity == BASE_TIME + timedelta(hours=1)


@pytest.mark.asyncio
async def test_remove_is_scoped_to_owner(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "session_remove.db")
    repo = SqlAlchemySessionRepository(create_session_factory(async_url))
    user_id = uuid4()
    _insert_user(sync_url, user_id=user_id)
    registration = await repo.create_session_bounded(
        _session_input(user_id=user_id, token_family="family-a", created_at=BASE_TIME),
        max_sessions=5,
        eviction_reason=RevokedReason.SESSION_LIMIT_EXCEEDED,
    )
    await repo.create_session_bounded(
        _session_input(user_id=user_id, token_family="family-b", created_at=BASE_TIME),
        max_sessions=5,
        eviction_reason=RevokedReason.SESSION_LIMIT_EXCEEDED,
    )
    session_id = registration.session.session_id

    assert await repo.remove(user_id=uuid4(), session_id=session_id) is False
    assert await repo.remove(user_id=user_id, session_id=session_id) is True
    assert await repo.get_by_token_family(token_family="family-a") is None
    assert await repo.remove_all_for_user(user_id=user_id) == 1
    assert await repo.list_for_user(user_id=user_id) == []


@pytest.mark.asyncio
async def test_stale_sessions_respect_usable_tokens_and_grace(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "session_stale.db")
    session_factory = create_session_factory(async_url)
    tokens = SqlAlchemyRefreshTokenRepository(session_factory)
    repo = SqlAlchemySessionRepository(session_factory)
    user_id = uuid4()
    _insert_user(sync_url, user_id=user_id)

    await _issue(tokens, user_id=user_id, token_family="live")
    await _issue(tokens, user_id=user_id, token_family="dead")
    await tokens.revoke_family(
        token_family="dead",
        revoked_at=BASE_TIME,
        revoked_by=None,
        reason=RevokedReason.USER_LOGOUT,
    )
    for family in ("live", "dead", "pending"):
        await repo.create_session_bounded(
            _session_input(user_id=user_id, token_family=family, created_at=BASE_TIME),
            max_sessions=5,
            eviction_reason=RevokedReason.SESSION_LIMIT_EXCEEDED,
        )

    within_grace = BASE_TIME + STALE_SESSION_GRACE - timedelta(seconds=1)
    after_grace = BASE_TIME + STALE_SESSION_GRACE + timedelta(seconds=1)

    assert await repo.list_stale(now=within_grace, limit=10) == []
    stale = await repo.list_stale(now=after_grace, limit=10)
    assert {session.token_family for session in stale} == {"dead", "pending"}

    live = await repo.get_by_token_family(token_family="live")
    dead = await repo.get_by_token_family(token_family="dead")
    assert live is not None
    assert dead is not None
    assert await repo.remove_if_stale(session_id=live.session_id, now=after_grace) is False
    assert await repo.remove_if_stale(session_id=dead.session_id, now=after_grace) is True
