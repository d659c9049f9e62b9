"""Background reclamation of expired, long-revoked, and orphaned refresh tokens."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from token_lifecycle.application.ports.refresh_token_repository_port import (
    RefreshTokenRepositoryPort,
)
from token_lifecycle.application.ports.session_repository_port import (
    SessionRecord,
    SessionRepositoryPort,
)
from token_lifecycle.domain.refresh_token import RefreshTokenRecord, apply_revoke
from token_lifecycle.domain.revoked_reason import RevokedReason

NowCallable = Callable[[], datetime]
ItemT = TypeVar("ItemT")
logger = logging.getLogger(__name__)

_STATS_LOG_EVERY_RUNS = 24


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class CleanupReport:
    """Counts produced by one sweep."""

    expired_revoked: int
    old_revoked_deleted: int
    orphaned_deleted: int
    stale_sessions_removed: int
    errors: int

    @property
    def tokens_cleaned(self) -> int:
        return self.expired_revoked + self.old_revoked_deleted + self.orphaned_deleted


@dataclass(frozen=True)
class CleanupStats:
    """Cumulative sweeper counters exposed for observability."""

    total_runs: int = 0
    tokens_cleaned_up: int = 0
    last_cleanup_count: int = 0
    errors: int = 0
    last_run: datetime | None = None
    is_running: bool = False


class CleanupSweeper:
    """Prune the token store without ever touching a currently usable token.

    Every write is conditioned on the state that made the record eligible, so a
    sweep can run alongside live rotation and revocation traffic.
    """

    def __init__(
        self,
        *,
        refresh_tokens: RefreshTokenRepositoryPort,
        sessions: SessionRepositoryPort,
        revoked_retention: timedelta = timedelta(days=30),
        batch_size: int = 500,
        interval_seconds: float = 3600.0,
        now: NowCallable = _utc_now,
    ) -> None:
        self._refresh_tokens = refresh_tokens
        self._sessions = sessions
        self._revoked_retention = revoked_retention
        self._batch_size = batch_size
        self._interval_seconds = interval_seconds
        self._now = now
        self._stats = CleanupStats()

    @property
    def stats(self) -> CleanupStats:
        return self._stats

    async def run_once(self) -> CleanupReport | None:
        """Run one sweep; returns None when a previous sweep is still in progress."""

        if self._stats.is_running:
            logger.warning("token_cleanup_skipped reason=already_running")
            return None

        started_at = self._now()
        self._stats = replace(
            self._stats,
            is_running=True,
            last_run=started_at,
            total_runs=self._stats.total_runs + 1,
        )
        logger.info("token_cleanup_started run=%s", self._stats.total_runs)

        errors = 0
        try:
            expired, phase_errors = await self._revoke_expired(now=started_at)
            errors += phase_errors
            old_revoked, phase_errors = await self._delete_old_revoked(
                cutoff=started_at - self._revoked_retention
            )
            errors += phase_errors
            orphaned, phase_errors = await self._delete_orphaned()
            errors += phase_errors
            stale_sessions, phase_errors = await self._remove_stale_sessions(now=started_at)
            errors += phase_errors
        finally:
            self._stats = replace(self._stats, is_running=False)

        report = CleanupReport(
            expired_revoked=expired,
            old_revoked_deleted=old_revoked,
            orphaned_deleted=orphaned,
            stale_sessions_removed=stale_sessions,
            errors=errors,
        )
        self._stats = replace(
            self._stats,
            tokens_cleaned_up=self._stats.tokens_cleaned_up + report.tokens_cleaned,
            last_cleanup_count=report.tokens_cleaned,
            errors=self._stats.errors + errors,
        )
        logger.info(
            "token_cleanup_completed expired_revoked=%s old_revoked_deleted=%s "
            "orphaned_deleted=%s stale_sessions_removed=%s errors=%s",
            report.expired_revoked,
            report.old_revoked_deleted,
            report.orphaned_deleted,
            report.stale_sessions_removed,
            report.errors,
        )
        if self._stats.total_runs % _STATS_LOG_EVERY_RUNS == 0:
            self._log_statistics()
        return report

    async def run_until_stopped(self, stop_event: asyncio.Event) -> None:
        """Sweep on the configured interval until stop_event is set."""

        while not stop_event.is_set():
            await self.run_once()
            await self._wait_for_next_run(stop_event)

    async def _wait_for_next_run(self, stop_event: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self._interval_seconds)
        except TimeoutError:
            return

    async def _revoke_expired(self, *, now: datetime) -> tuple[int, int]:
        async def revoke(record: RefreshTokenRecord) -> bool:
            revoked = apply_revoke(
                record,
                now=now,
                reason=RevokedReason.EXPIRED,
                revoked_by=None,
            )
            return await self._refresh_tokens.apply_transition(current=record, updated=revoked)

        return await self._drain(
            phase="expired",
            load=lambda: self._refresh_tokens.list_expired_active(
                now=now,
                limit=self._batch_size,
            ),
            handle=revoke,
            describe=_describe_token,
        )

    async def _delete_old_revoked(self, *, cutoff: datetime) -> tuple[int, int]:
        async def delete(record: RefreshTokenRecord) -> bool:
            return await self._refresh_tokens.delete_if_unchanged(current=record)

        return await self._drain(
            phase="old_revoked",
            load=lambda: self._refresh_tokens.list_revoked_before(
                cutoff=cutoff,
                limit=self._batch_size,
            ),
            handle=delete,
            describe=_describe_token,
        )

    async def _delete_orphaned(self) -> tuple[int, int]:
        async def delete(record: RefreshTokenRecord) -> bool:
            return await self._refresh_tokens.delete_if_orphaned(token_id=record.id)

        return await self._drain(
            phase="orphaned",
            load=lambda: self._refresh_tokens.list_orphaned(limit=self._batch_size),
            handle=delete,
            describe=_describe_token,
        )

    async def _remove_stale_sessions(self, *, now: datetime) -> tuple[int, int]:
        async def remove(session: SessionRecord) -> bool:
            return await self._sessions.remove_if_stale(session_id=session.session_id, now=now)

        return await self._drain(
            phase="stale_sessions",
            load=lambda: self._sessions.list_stale(now=now, limit=self._batch_size),
            handle=remove,
            describe=_describe_session,
        )

    async def _drain(
        self,
        *,
        phase: str,
        load: Callable[[], Awaitable[Sequence[ItemT]]],
        handle: Callable[[ItemT], Awaitable[bool]],
        describe: Callable[[ItemT], str],
    ) -> tuple[int, int]:
        """Process batches until one comes back short or makes no progress."""

        processed = 0
        errors = 0
        while True:
            try:
                batch = await load()
            except Exception as error:  # noqa: BLE001
                errors += 1
                logger.error("token_cleanup_phase_failed phase=%s error=%s", phase, error)
                return processed, errors

            batch_processed = 0
            for item in batch:
                try:
                    applied = await handle(item)
                except Exception as error:  # noqa: BLE001
                    errors += 1
                    logger.warning(
                        "token_cleanup_item_failed phase=%s %s error=%s",
                        phase,
                        describe(item),
                        error,
                    )
                    continue
                if applied:
                    batch_processed += 1

            processed += batch_processed
            if len(batch) < self._batch_size or batch_processed == 0:
                return processed, errors

    def _log_statistics(self) -> None:
        stats = self._stats
        logger.info(
            "token_cleanup_statistics total_runs=%s tokens_cleaned_up=%s "
            "last_cleanup_count=%s errors=%s last_run=%s",
            stats.total_runs,
            stats.tokens_cleaned_up,
            stats.last_cleanup_count,
            stats.errors,
            stats.last_run.isoformat() if stats.last_run else "never",
        )


def _describe_token(record: RefreshTokenRecord) -> str:
    return f"token_id={record.id} user_id={record.user_id}"


def _describe_session(session: SessionRecord) -> str:
    return f"session_id={session.session_id} user_id={session.user_id}"
