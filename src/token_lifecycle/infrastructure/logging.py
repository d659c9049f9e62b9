"""Logging setup shared by the sweeper process and embedding services."""

from __future__ import annotations

import logging

_LOG_FORMAT = "%(asctime)s %(levelname)s pid=%(process)d [%(name)s] %(message)s"
_QUIET_LOGGERS = ("aiosqlite", "asyncio", "sqlalchemy.engine")


def configure_logging(*, level: str) -> None:
    """Configure process logging with the shared format and runtime level.

    Driver loggers stay at WARNING so that per-statement debug output does not
    drown token lifecycle events when LOG_LEVEL=DEBUG.
    """

    normalized_level = level.strip().upper() if level.strip() else "INFO"
    resolved_level = getattr(logging, normalized_level, logging.INFO)

    logging.basicConfig(level=resolved_level, format=_LOG_FORMAT)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))
