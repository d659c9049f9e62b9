"""Composition of token lifecycle services over SQLAlchemy adapters."""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from token_lifecycle.application.services.cleanup_sweeper import CleanupSweeper
from token_lifecycle.application.services.revocation_service import RevocationService
from token_lifecycle.application.services.rotation_service import RotationService
from token_lifecycle.application.services.security_heuristics import SecurityHeuristics
from token_lifecycle.application.services.session_registry import SessionRegistry
from token_lifecycle.application.services.token_issuer import TokenIssuer
from token_lifecycle.application.services.token_lifecycle_service import TokenLifecycleService
from token_lifecycle.config.settings import Settings
from token_lifecycle.infrastructure.db.refresh_token_repository import (
    SqlAlchemyRefreshTokenRepository,
)
from token_lifecycle.infrastructure.db.session_repository import SqlAlchemySessionRepository
from token_lifecycle.infrastructure.db.user_repository import SqlAlchemyUserDirectory
from token_lifecycle.infrastructure.security.jwt_codec import JwtTokenCodec


def build_token_codec(settings: Settings) -> JwtTokenCodec:
    """Build the JWT codec from configured secrets and registered claims."""

    return JwtTokenCodec(
        access_secret=settings.access_token_secret,
        refresh_secret=settings.refresh_token_secret,
        algorithm=settings.jwt_algorithm,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
    )


def build_token_lifecycle_service(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> TokenLifecycleService:
    """Compose the token lifecycle facade using SQLAlchemy repositories."""

    codec = build_token_codec(settings)
    refresh_tokens = SqlAlchemyRefreshTokenRepository(session_factory)
    session_repository = SqlAlchemySessionRepository(session_factory)

    issuer = TokenIssuer(
        codec=codec,
        refresh_tokens=refresh_tokens,
        access_token_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh_token_ttl=timedelta(days=settings.refresh_token_ttl_days),
        max_usage_count=settings.refresh_token_max_usage,
    )
    revocation = RevocationService(
        codec=codec,
        refresh_tokens=refresh_tokens,
        sessions=session_repository,
    )
    sessions = SessionRegistry(
        sessions=session_repository,
        max_concurrent_sessions=settings.max_concurrent_sessions,
    )
    rotation = RotationService(
        codec=codec,
        refresh_tokens=refresh_tokens,
        users=SqlAlchemyUserDirectory(session_factory),
        issuer=issuer,
        revocation=revocation,
        sessions=sessions,
    )
    heuristics = SecurityHeuristics(
        refresh_tokens=refresh_tokens,
        window=timedelta(hours=settings.security_window_hours),
    )
    return TokenLifecycleService(
        issuer=issuer,
        rotation=rotation,
        revocation=revocation,
        sessions=sessions,
        heuristics=heuristics,
    )


def build_cleanup_sweeper(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> CleanupSweeper:
    """Compose the cleanup sweeper using SQLAlchemy repositories."""

    return CleanupSweeper(
        refresh_tokens=SqlAlchemyRefreshTokenRepository(session_factory),
        sessions=SqlAlchemySessionRepository(session_factory),
        revoked_retention=timedelta(days=settings.revoked_retention_days),
        batch_size=settings.cleanup_batch_size,
        interval_seconds=settings.cleanup_interval_seconds,
    )
