"""Immutable device snapshot attached to refresh tokens and sessions."""

from __future__ import annotations

import hashlib
import re
from ipaddress import ip_address as parse_ip_address
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator

DeviceType = Literal["desktop", "mobile", "tablet", "unknown"]

_FINGERPRINT_LENGTH = 16
_DEVICE_TYPE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("mobile", re.compile(r"mobile", re.IGNORECASE)),
    ("tablet", re.compile(r"tablet", re.IGNORECASE)),
    ("desktop", re.compile(r"desktop|windows|mac|linux", re.IGNORECASE)),
)
# Order matters: Chrome user agents also mention Safari, Edge ones mention Chrome.
_BROWSER_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("edge", re.compile(r"edg(e|a|ios)?/", re.IGNORECASE)),
    ("chrome", re.compile(r"chrome|crios", re.IGNORECASE)),
    ("firefox", re.compile(r"firefox|fxios", re.IGNORECASE)),
    ("safari", re.compile(r"safari", re.IGNORECASE)),
)
_OS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("windows", re.compile(r"windows", re.IGNORECASE)),
    ("ios", re.compile(r"iphone|ipad|ios", re.IGNORECASE)),
    ("macos", re.compile(r"mac", re.IGNORECASE)),
    ("android", re.compile(r"android", re.IGNORECASE)),
    ("linux", re.compile(r"linux", re.IGNORECASE)),
)


class DeviceInfo(BaseModel):
    """Validated device metadata captured at the system boundary."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    ip_address: str = Field(min_length=1)
    user_agent: str = ""
    device_type: DeviceType = "unknown"
    browser: str = "unknown"
    os: str = "unknown"
    fingerprint: str | None = None

    @field_validator("ip_address")
    @classmethod
    def _validate_ip_address(cls, value: str) -> str:
        """Reject values that are not IPv4/IPv6 literals and normalize notation."""

        return str(parse_ip_address(value))


def compute_device_fingerprint(*, user_agent: str, ip_address: str) -> str:
    """Return short stable fingerprint for one user-agent and address pair."""

    digest = hashlib.md5(
        f"{user_agent}{ip_address}".encode(),
        usedforsecurity=False,
    ).hexdigest()
    return digest[:_FINGERPRINT_LENGTH]


def derive_device_info(*, ip_address: str, user_agent: str | None) -> DeviceInfo:
    """Build a device snapshot from a client address and raw user-agent string."""

    agent = (user_agent or "").strip()
    device_type = _match_first(_DEVICE_TYPE_PATTERNS, agent, default="unknown")
    return DeviceInfo(
        ip_address=ip_address,
        user_agent=agent,
        device_type=cast(DeviceType, device_type),
        browser=_match_first(_BROWSER_PATTERNS, agent, default="unknown"),
        os=_match_first(_OS_PATTERNS, agent, default="unknown"),
        fingerprint=compute_device_fingerprint(user_agent=agent, ip_address=ip_address),
    )


def _match_first(
    patterns: tuple[tuple[str, re.Pattern[str]], ...],
    value: str,
    *,
    default: str,
) -> str:
    for label, pattern in patterns:
        if pattern.search(value):
            return label
    return default
