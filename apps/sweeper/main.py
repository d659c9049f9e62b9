"""token-sweeper entrypoint running periodic refresh token cleanup."""

from __future__ import annotations

import asyncio
import logging
import signal

from token_lifecycle.config.settings import load_settings
from token_lifecycle.infrastructure.composition import build_cleanup_sweeper
from token_lifecycle.infrastructure.db.session import create_session_factory
from token_lifecycle.infrastructure.logging import configure_logging

logger = logging.getLogger(__name__)


def install_stop_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set stop_event on SIGINT or SIGTERM so the current sweep can finish."""

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            logger.warning("sweeper_signal_handler_unavailable signal=%s", signum.name)


async def _run_sweeper() -> None:
    settings = load_settings()
    configure_logging(level=settings.log_level)
    logger.info(
        "sweeper_starting interval_seconds=%s revoked_retention_days=%s batch_size=%s",
        settings.cleanup_interval_seconds,
        settings.revoked_retention_days,
        settings.cleanup_batch_size,
    )

    session_factory = create_session_factory(settings.database_url)
    sweeper = build_cleanup_sweeper(settings=settings, session_factory=session_factory)
    stop_event = asyncio.Event()
    install_stop_signal_handlers(stop_event)

    await sweeper.run_until_stopped(stop_event)
    stats = sweeper.stats
    logger.info(
        "sweeper_stopped total_runs=%s tokens_cleaned_up=%s errors=%s",
        stats.total_runs,
        stats.tokens_cleaned_up,
        stats.errors,
    )


def main() -> None:
    """Run the first sweep immediately, then sweep on the configured interval."""

    asyncio.run(_run_sweeper())


if __name__ == "__main__":
    main()
