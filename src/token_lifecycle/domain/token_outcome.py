"""Outcome enum shared by token verification, rotation, and revocation flows."""

from __future__ import annotations

from enum import StrEnum


class TokenOutcome(StrEnum):
    """Structured results returned instead of raising on expected failures."""

    SUCCESS = "success"
    TOKEN_MALFORMED = "token_malformed"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_TYPE_MISMATCH = "token_type_mismatch"
    TOKEN_NOT_FOUND = "token_not_found"
    TOKEN_EXHAUSTED = "token_exhausted"
    TOKEN_REVOKED = "token_revoked"
    TOKEN_REUSE_DETECTED = "token_reuse_detected"
    ROTATION_CONFLICT = "rotation_conflict"
    USER_NOT_FOUND = "user_not_found"
    ACCOUNT_INACTIVE = "account_inactive"
