from __future__ import annotations

from pathlib import Path
from uuid import UUID, uuid4

import pytest
import sqlalchemy as sa
from alembic.config import Config

from alembic import command
from token_lifecycle.application.services.cleanup_sweeper import CleanupSweeper
from token_lifecycle.application.services.revocation_service import RevocationOutcome
from token_lifecycle.application.services.token_lifecycle_service import TokenLifecycleService
from token_lifecycle.config.settings import Settings
from token_lifecycle.domain.device_info import derive_device_info
from token_lifecycle.domain.revoked_reason import RevokedReason
from token_lifecycle.domain.token_outcome import TokenOutcome
from token_lifecycle.infrastructure.composition import (
    build_cleanup_sweeper,
    build_token_lifecycle_service,
)
from token_lifecycle.infrastructure.db.session import create_session_factory
from token_lifecycle.infrastructure.db.user_repository import SqlAlchemyUserDirectory

_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0"


def _upgrade_head(tmp_path: Path, filename: str) -> tuple[str, str]:
    db_path = tmp_path / filename
    sync_url = f"sqlite+pysqlite:///{db_path}"
    async_url = f"sqlite+aiosqlite:///{db_path}"

    alembic_config = Config("alembic.ini")
    alembic_config.set_main_option("sqlalchemy.url", sync_url)
    command.upgrade(alembic_config, "head")

    return sync_url, async_url


def _insert_user(sync_url: str, *, user_id: UUID, is_active: bool = True) -> None:
    engine = sa.create_engine(sync_url)
    with engine.begin() as connection:
        connection.execute(
            sa.text("INSERT INTO users (id, roles, is_active) VALUES (:id, :roles, :is_active)"),
            {"id": user_id.hex, "roles": '["user", "admin"]', "is_active": is_active},
        )


def _settings(monkeypatch: pytest.MonkeyPatch, async_url: str) -> Settings:
    monkeypatch.setenv("DATABASE_URL", async_url)
    monkeypatch.setenv("ACCESS_TOKEN_SECRET", "flow-access-secret-0123456789abcdef")
    monkeypatch.setenv("REFRESH_TOKEN_SECRET", "flow-refresh-secret-0123456789abcdef")
    monkeypatch.setenv("MAX_CONCURRENT_SESSIONS", "2")
    return Settings(_env_file=None)  # type: ignore[call-arg]


class _Flow:
    def __init__(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, filename: str) -> None:
        self.sync_url, async_url = _upgrade_head(tmp_path, filename)
        session_factory = create_session_factory(async_url)
        settings = _settings(monkeypatch, async_url)
        self.service: TokenLifecycleService = build_token_lifecycle_service(
            settings=settings,
            session_factory=session_factory,
        )
        self.sweeper: CleanupSweeper = build_cleanup_sweeper(
            settings=settings,
            session_factory=session_factory,
        )
        self.users = SqlAlchemyUserDirectory(session_factory)

    async def new_user(self, *, is_active: bool = True) -> UUID:
        user_id = uuid4()
        _insert_user(self.sync_url, user_id=user_id, is_active=is_active)
        return user_id


@pytest.mark.asyncio
async def test_login_rotate_and_verify_through_the_database(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    flow = _Flow(tmp_path, monkeypatch, "flow_rotate.db")
    user_id = await flow.new_user()
    user = await flow.users.get_by_id(user_id=user_id)
    assert user is not None
    assert user.roles == ("user", "admin")
    device = derive_device_info(ip_address="203.0.113.10", user_agent=_USER_AGENT)

    pair = await flow.service.issue_token_pair(user=user, device_info=device)
    access = flow.service.verify_access_token(pair.access_token)
    rotated = await flow.service.rotate(
        refresh_token=pair.refresh_token,
        device_info=derive_device_info(ip_address="198.51.100.7", user_agent=_USER_AGENT),
    )

    assert access.outcome is TokenOutcome.SUCCESS
    assert access.claims is not None
    assert access.claims.user_id == user_id
    assert rotated.outcome is TokenOutcome.SUCCESS
    assert rotated.token_pair is not None
    next_record = rotated.token_pair.refresh_token_record
    assert next_record.token_family == pair.token_family
    assert next_record.previous_token_id == pair.refresh_token_record.id
    assert next_record.security_flags.location_change is True

    consumed = await flow.service.verify_refresh_token(pair.refresh_token)
    current = await flow.service.verify_refresh_token(rotated.token_pair.refresh_token)
    assert consumed.outcome is TokenOutcome.TOKEN_EXHAUSTED
    assert current.outcome is TokenOutcome.SUCCESS

    sessions = await flow.service.list_sessions(user_id=user_id)
    assert len(sessions) == 1
    assert sessions[0].token_family == pair.token_family
    assert sessions[0].last_activity > sessions[0].created_at


@pytest.mark.asyncio
async def test_replaying_consumed_token_revokes_the_family(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    flow = _Flow(tmp_path, monkeypatch, "flow_reuse.db")
    user = await flow.users.get_by_id(user_id=await flow.new_user())
    assert user is not None
    device = derive_device_info(ip_address="203.0.113.10", user_agent=_USER_AGENT)
    pair = await flow.service.issue_token_pair(user=user, device_info=device)
    rotated = await flow.service.rotate(refresh_token=pair.refresh_token, device_info=device)
    assert rotated.token_pair is not None

    replay = await flow.service.rotate(refresh_token=pair.refresh_token, device_info=device)
    after = await flow.service.rotate(
        refresh_token=rotated.token_pair.refresh_token,
        device_info=device,
    )

    assert replay.outcome is TokenOutcome.TOKEN_REUSE_DETECTED
    assert after.outcome is TokenOutcome.TOKEN_REVOKED
    verification = await flow.service.verify_refresh_token(rotated.token_pair.refresh_token)
    assert verification.record is not None
    assert verification.record.revoked_reason is RevokedReason.SECURITY_BREACH


@pytest.mark.asyncio
async def test_session_cap_and_logout_everywhere(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    flow = _Flow(tmp_path, monkeypatch, "flow_sessions.db")
    user = await flow.users.get_by_id(user_id=await flow.new_user())
    assert user is not None
    pairs = [
        await flow.service.issue_token_pair(
            user=user,
            device_info=derive_device_info(
                ip_address=f"203.0.113.{index + 1}",
                user_agent=_USER_AGENT,
            ),
        )
        for index in range(3)
    ]

    sessions = await flow.service.list_sessions(user_id=user.user_id)
    evicted = await flow.service.rotate(
        refresh_token=pairs[0].refresh_token,
        device_info=pairs[0].refresh_token_record.device_info,
    )

    assert len(sessions) == 2
    assert pairs[0].token_family not in {session.token_family for session in sessions}
    assert evicted.outcome is TokenOutcome.TOKEN_REVOKED

    result = await flow.service.revoke(
        target=user.user_id,
        scope="all",
        revoked_by=user.user_id,
    )

    assert result.outcome is RevocationOutcome.REVOKED
    assert result.revoked_count == 2
    assert await flow.service.list_sessions(user_id=user.user_id) == []


@pytest.mark.asyncio
async def test_inactive_account_is_locked_out_on_rotation(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    flow = _Flow(tmp_path, monkeypatch, "flow_inactive.db")
    user_id = await flow.new_user()
    user = await flow.users.get_by_id(user_id=user_id)
    assert user is not None
    device = derive_device_info(ip_address="203.0.113.10", user_agent=_USER_AGENT)
    pair = await flow.service.issue_token_pair(user=user, device_info=device)

    engine = sa.create_engine(flow.sync_url)
    with engine.begin() as connection:
        connection.execute(
            sa.text("UPDATE users SET is_active = 0 WHERE id = :id"),
            {"id": user_id.hex},
        )

    result = await flow.service.rotate(refresh_token=pair.refresh_token, device_info=device)
    verification = await flow.service.verify_refresh_token(pair.refresh_token)

    assert result.outcome is TokenOutcome.ACCOUNT_INACTIVE
    assert verification.outcome is TokenOutcome.TOKEN_REVOKED


@pytest.mark.asyncio
async def test_sweeper_removes_tokens_of_deleted_users(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    flow = _Flow(tmp_path, monkeypatch, "flow_sweeper.db")
    kept_user = await flow.users.get_by_id(user_id=await flow.new_user())
    doomed_id = await flow.new_user()
    doomed_user = await flow.users.get_by_id(user_id=doomed_id)
    assert kept_user is not None
    assert doomed_user is not None
    device = derive_device_info(ip_address="203.0.113.10", user_agent=_USER_AGENT)
    kept = await flow.service.issue_token_pair(user=kept_user, device_info=device)
    await flow.service.issue_token_pair(user=doomed_user, device_info=device)

    engine = sa.create_engine(flow.sync_url)
    with engine.begin() as connection:
        connection.execute(sa.text("DELETE FROM users WHERE id = :id"), {"id": doomed_id.hex})

    report = await flow.sweeper.run_once()

    assert report is not None
    assert report.orphaned_deleted == 1
    assert report.errors == 0
    verification = await flow.service.verify_refresh_token(kept.refresh_token)
    assert verification.outcome is TokenOutcome.SUCCESS
