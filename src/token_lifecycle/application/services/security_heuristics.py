"""Advisory suspicious-activity scoring over recent refresh token issuance."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from token_lifecycle.application.ports.refresh_token_repository_port import (
    RefreshTokenRepositoryPort,
)
from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.refresh_token import SecurityFlags

NowCallable = Callable[[], datetime]

MAX_DISTINCT_IPS = 3
MAX_DISTINCT_FINGERPRINTS = 2
MAX_TOKENS_IN_WINDOW = 10


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class SecurityAssessment:
    """Flags raised for one user over the trailing window."""

    multiple_ips: bool
    multiple_devices: bool
    rapid_token_creation: bool

    @property
    def is_suspicious(self) -> bool:
        return self.multiple_ips or self.multiple_devices or self.rapid_token_creation

    def to_security_flags(self) -> SecurityFlags:
        """Map the assessment onto the flags stored with a refresh token."""

        return SecurityFlags(
            suspicious_activity=self.multiple_ips or self.rapid_token_creation,
            multiple_devices=self.multiple_devices,
        )


class SecurityHeuristics:
    """Count distinct addresses, fingerprints, and issued tokens per user.

    The result is advisory. Nothing here revokes or blocks.
    """

    def __init__(
        self,
        *,
        refresh_tokens: RefreshTokenRepositoryPort,
        window: timedelta = timedelta(hours=24),
        now: NowCallable = _utc_now,
    ) -> None:
        self._refresh_tokens = refresh_tokens
        self._window = window
        self._now = now

    async def evaluate(
        self,
        *,
        user_id: UUID,
        device_info: DeviceInfo | None = None,
        window: timedelta | None = None,
    ) -> SecurityAssessment:
        """Score token issuance in the trailing window, counting the presented device."""

        since = self._now() - (window or self._window)
        recent = await self._refresh_tokens.list_issued_since(user_id=user_id, since=since)

        ip_addresses = {record.device_info.ip_address for record in recent}
        fingerprints = {
            record.device_info.fingerprint
            for record in recent
            if record.device_info.fingerprint
        }
        if device_info is not None:
            ip_addresses.add(device_info.ip_address)
            if device_info.fingerprint:
                fingerprints.add(device_info.fingerprint)

        return SecurityAssessment(
            multiple_ips=len(ip_addresses) > MAX_DISTINCT_IPS,
            multiple_devices=len(fingerprints) > MAX_DISTINCT_FINGERPRINTS,
            rapid_token_creation=len(recent) > MAX_TOKENS_IN_WINDOW,
        )
