"""Reasons recorded when a refresh token is revoked."""

from __future__ import annotations

from enum import StrEnum


class RevokedReason(StrEnum):
    """Supported refresh-token revocation reasons."""

    USER_LOGOUT = "user_logout"
    ADMIN_REVOKE = "admin_revoke"
    SECURITY_BREACH = "security_breach"
    TOKEN_ROTATION = "token_rotation"
    ACCOUNT_LOCKED = "account_locked"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    EXPIRED = "expired"
    DEVICE_CHANGE = "device_change"
    SESSION_LIMIT_EXCEEDED = "session_limit_exceeded"
