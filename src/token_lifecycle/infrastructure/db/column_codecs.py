"""Conversions between domain values and portable column payloads."""

from __future__ import annotations

from dataclasses import asdict
from datetime import UTC, datetime
from typing import Any, cast
from uuid import UUID

from token_lifecycle.domain.device_info import DeviceInfo
from token_lifecycle.domain.refresh_token import GeoLocation, SecurityFlags


def device_info_to_json(device_info: DeviceInfo) -> dict[str, Any]:
    return device_info.model_dump(mode="json")


def device_info_from_json(value: object) -> DeviceInfo:
    return DeviceInfo.model_validate(value)


def security_flags_to_json(flags: SecurityFlags) -> dict[str, bool]:
    return asdict(flags)


def security_flags_from_json(value: object) -> SecurityFlags:
    payload = cast(dict[str, Any], value or {})
    return SecurityFlags(
        suspicious_activity=bool(payload.get("suspicious_activity", False)),
        multiple_devices=bool(payload.get("multiple_devices", False)),
        location_change=bool(payload.get("location_change", False)),
    )


def location_to_json(location: GeoLocation | None) -> dict[str, Any] | None:
    if location is None:
        return None
    return asdict(location)


def location_from_json(value: object) -> GeoLocation | None:
    if not value:
        return None
    payload = cast(dict[str, Any], value)
    return GeoLocation(
        country=payload.get("country"),
        region=payload.get("region"),
        city=payload.get("city"),
        latitude=payload.get("latitude"),
        longitude=payload.get("longitude"),
    )


def to_uuid(value: object) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def to_uuid_or_none(value: object) -> UUID | None:
    if value is None:
        return None
    return to_uuid(value)


def ensure_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on read; stored values are always UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def ensure_utc_or_none(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return ensure_utc(value)
