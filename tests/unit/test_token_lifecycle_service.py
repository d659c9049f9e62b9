from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from uuid import uuid4

import pytest

from tests.fakes import (
    InMemoryRefreshTokenRepository,
    InMemorySessionRepository,
    InMemoryUserDirectory,
    MutableClock,
    make_codec,
    make_device,
    make_user,
)
from token_lifecycle.application.ports.user_directory_port import UserRecord
from token_lifecycle.application.services.revocation_service import (
    RevocationOutcome,
    RevocationService,
)
from token_lifecycle.application.services.rotation_service import RotationService
from token_lifecycle.application.services.security_heuristics import SecurityHeuristics
from token_lifecycle.application.services.session_registry import SessionRegistry
from token_lifecycle.application.services.token_issuer import TokenIssuer
from token_lifecycle.application.services.token_lifecycle_service import (
    InactiveUserError,
    TokenLifecycleService,
)
from token_lifecycle.domain.refresh_token import GeoLocation
from token_lifecycle.domain.revoked_reason import RevokedReason
from token_lifecycle.domain.token_outcome import TokenOutcome


@dataclass
class _Wiring:
    clock: MutableClock
    refresh_tokens: InMemoryRefreshTokenRepository
    sessions: InMemorySessionRepository
    service: TokenLifecycleService


def _wiring(*users: UserRecord, max_sessions: int = 5) -> _Wiring:
    clock = MutableClock()
    codec = make_codec()
    refresh_tokens = InMemoryRefreshTokenRepository(
        known_user_ids={user.user_id for user in users}
    )
    sessions = InMemorySessionRepository(refresh_tokens=refresh_tokens)
    issuer = TokenIssuer(codec=codec, refresh_tokens=refresh_tokens, now=clock)
    revocation = RevocationService(
        codec=codec,
        refresh_tokens=refresh_tokens,
        sessions=sessions,
        now=clock,
    )
    registry = SessionRegistry(
        sessions=sessions,
        max_concurrent_sessions=max_sessions,
        now=clock,
    )
    rotation = RotationService(
        codec=codec,
        refresh_tokens=refresh_tokens,
        users=InMemoryUserDirectory(*users),
        issuer=issuer,
        revocation=revocation,
        sessions=registry,
        now=clock,
    )
    service = TokenLifecycleService(
        issuer=issuer,
        rotation=rotation,
        revocation=revocation,
        sessions=registry,
        heuristics=SecurityHeuristics(refresh_tokens=refresh_tokens, now=clock),
    )
    return _Wiring(
        clock=clock,
        refresh_tokens=refresh_tokens,
        sessions=sessions,
        service=service,
    )


@pytest.mark.asyncio
async def test_login_registers_one_session_bound_to_the_new_family() -> None:
    user = make_user()
    wiring = _wiring(user)

    pair = await wiring.service.issue_token_pair(
        user=user,
        device_info=make_device(),
        location=GeoLocation(country="BR"),
    )

    sessions = await wiring.service.list_sessions(user_id=user.user_id)
    assert len(sessions) == 1
    assert sessions[0].token_family == pair.token_family
    assert sessions[0].device_info.browser == "chrome"
    assert pair.refresh_token_record.location == GeoLocation(country="BR")


@pytest.mark.asyncio
async def test_inactive_user_cannot_log_in() -> None:
    user = make_user(is_active=False)
    wiring = _wiring(user)

    with pytest.raises(InactiveUserError):
        await wiring.service.issue_token_pair(user=user, device_info=make_device())

    assert wiring.refresh_tokens.records == {}


@pytest.mark.asyncio
async def test_sixth_login_evicts_oldest_session_and_revokes_its_tokens() -> None:
    user = make_user()
    wiring = _wiring(user)
    pairs = []
    for index in range(6):
        pairs.append(
            await wiring.service.issue_token_pair(
                user=user,
                device_info=make_device(ip_address=f"203.0.113.{index + 1}"),
            )
        )
        wiring.clock.advance(timedelta(minutes=1))

    sessions = await wiring.service.list_sessions(user_id=user.user_id)
    assert len(sessions) == 5
    assert pairs[0].token_family not in {session.token_family for session in sessions}
    evicted = wiring.refresh_tokens.records[pairs[0].refresh_token_record.id]
    assert evicted.revoked_reason is RevokedReason.SESSION_LIMIT_EXCEEDED

    result = await wiring.service.rotate(
        refresh_token=pairs[0].refresh_token,
        device_info=make_device(ip_address="203.0.113.1"),
    )
    assert result.outcome is TokenOutcome.TOKEN_REVOKED


@pytest.mark.asyncio
async def test_suspicious_login_is_flagged_but_still_issued(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)
    user = make_user()
    wiring = _wiring(user, max_sessions=20)
    for index in range(4):
        await wiring.service.issue_token_pair(
            user=user,
            device_info=make_device(ip_address=f"203.0.113.{index + 1}"),
        )

    pair = await wiring.service.issue_token_pair(
        user=user,
        device_info=make_device(ip_address="198.51.100.50"),
    )

    flags = pair.refresh_token_record.security_flags
    assert flags.suspicious_activity is True
    assert flags.multiple_devices is True
    assert pair.refresh_token_record.is_active is True
    warnings = [r for r in caplog.records if "suspicious_token_activity" in r.getMessage()]
    assert warnings
    assert "198.51.100.50" in warnings[-1].getMessage()


@pytest.mark.asyncio
async def test_logout_revokes_token_and_ends_its_session() -> None:
    user = make_user()
    wiring = _wiring(user)
    pair = await wiring.service.issue_token_pair(user=user, device_info=make_device())

    result = await wiring.service.revoke(target=pair.refresh_token, revoked_by=user.user_id)
    again = await wiring.service.revoke(target=pair.refresh_token, revoked_by=user.user_id)

    assert result.outcome is RevocationOutcome.REVOKED
    assert again.outcome is RevocationOutcome.ALREADY_REVOKED
    assert await wiring.service.list_sessions(user_id=user.user_id) == []
    rotated = await wiring.service.rotate(
        refresh_token=pair.refresh_token,
        device_info=make_device(),
    )
    assert rotated.outcome is TokenOutcome.TOKEN_REVOKED


@pytest.mark.asyncio
async def test_revoke_by_record_id_and_family_scope() -> None:
    user = make_user()
    wiring = _wiring(user)
    first = await wiring.service.issue_token_pair(user=user, device_info=make_device())
    second = await wiring.service.issue_token_pair(user=user, device_info=make_device())

    by_id = await wiring.service.revoke(
        target=first.refresh_token_record.id,
        revoked_by=None,
        reason=RevokedReason.ADMIN_REVOKE,
    )
    by_family = await wiring.service.revoke(
        target=second.token_family,
        scope="family",
        revoked_by=None,
        reason=RevokedReason.DEVICE_CHANGE,
    )

    assert by_id.outcome is RevocationOutcome.REVOKED
    assert by_family.outcome is RevocationOutcome.REVOKED
    assert by_family.revoked_count == 1
    second_record = wiring.refresh_tokens.records[second.refresh_token_record.id]
    assert second_record.revoked_reason is RevokedReason.DEVICE_CHANGE
    assert await wiring.service.list_sessions(user_id=user.user_id) == []


@pytest.mark.asyncio
async def test_revoking_a_consumed_ancestor_keeps_the_session_of_its_successor() -> None:
    user = make_user()
    wiring = _wiring(user)
    pair = await wiring.service.issue_token_pair(user=user, device_info=make_device())
    rotated = await wiring.service.rotate(
        refresh_token=pair.refresh_token,
        device_info=make_device(),
    )
    assert rotated.token_pair is not None

    ancestor = await wiring.service.revoke(
        target=pair.refresh_token_record.id,
        revoked_by=None,
        reason=RevokedReason.ADMIN_REVOKE,
    )
    repeated = await wiring.service.revoke(target=pair.refresh_token, revoked_by=user.user_id)

    assert ancestor.outcome is RevocationOutcome.REVOKED
    assert repeated.outcome is RevocationOutcome.ALREADY_REVOKED
    sessions = await wiring.service.list_sessions(user_id=user.user_id)
    assert [session.token_family for session in sessions] == [pair.token_family]
    current = await wiring.service.verify_refresh_token(rotated.token_pair.refresh_token)
    assert current.outcome is TokenOutcome.SUCCESS

    head = await wiring.service.revoke(
        target=rotated.token_pair.refresh_token,
        revoked_by=user.user_id,
    )

    assert head.outcome is RevocationOutcome.REVOKED
    assert await wiring.service.list_sessions(user_id=user.user_id) == []


@pytest.mark.asyncio
async def test_revoke_all_scope_requires_user_id_and_logs_out_everywhere() -> None:
    user = make_user()
    wiring = _wiring(user)
    for _ in range(3):
        await wiring.service.issue_token_pair(user=user, device_info=make_device())

    with pytest.raises(ValueError):
        await wiring.service.revoke(target="not-a-user", scope="all", revoked_by=None)

    result = await wiring.service.revoke(
        target=user.user_id,
        scope="all",
        revoked_by=uuid4(),
        reason=RevokedReason.ADMIN_REVOKE,
    )

    assert result.revoked_count == 3
    assert await wiring.service.list_sessions(user_id=user.user_id) == []


@pytest.mark.asyncio
async def test_revoke_session_ends_that_login_only() -> None:
    user = make_user()
    wiring = _wiring(user)
    keep = await wiring.service.issue_token_pair(user=user, device_info=make_device())
    wiring.clock.advance(timedelta(minutes=1))
    drop = await wiring.service.issue_token_pair(user=user, device_info=make_device())
    session = next(
        s
        for s in await wiring.service.list_sessions(user_id=user.user_id)
        if s.token_family == drop.token_family
    )

    result = await wiring.service.revoke_session(
        user_id=user.user_id,
        session_id=session.session_id,
        revoked_by=user.user_id,
    )
    missing = await wiring.service.revoke_session(
        user_id=user.user_id,
        session_id=session.session_id,
        revoked_by=user.user_id,
    )

    assert result.outcome is RevocationOutcome.REVOKED
    assert missing.outcome is RevocationOutcome.NOT_FOUND
    remaining = await wiring.service.list_sessions(user_id=user.user_id)
    assert [s.token_family for s in remaining] == [keep.token_family]
    assert wiring.refresh_tokens.records[keep.refresh_token_record.id].is_revoked is False


@pytest.mark.asyncio
async def test_unknown_scope_is_rejected() -> None:
    wiring = _wiring(make_user())

    with pytest.raises(ValueError):
        await wiring.service.revoke(
            target="x",
            scope="everything",  # type: ignore[arg-type]
            revoked_by=None,
        )
