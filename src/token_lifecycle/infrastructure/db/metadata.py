"""SQLAlchemy metadata definitions for token lifecycle tables."""

from __future__ import annotations

import sqlalchemy as sa

metadata = sa.MetaData()

_REVOKED_REASONS = (
    "'user_logout', 'admin_revoke', 'security_breach', 'token_rotation', "
    "'account_locked', 'suspicious_activity', 'expired', 'device_change', "
    "'session_limit_exceeded'"
)

users = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
    sa.Column("roles", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
    sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    ),
)

# user_id carries no foreign key: users are owned by an external store and may
# disappear, leaving orphaned tokens for the sweeper.
refresh_tokens = sa.Table(
    "refresh_tokens",
    metadata,
    sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
    sa.Column("token_hash", sa.Text(), nullable=False),
    sa.Column("jti", sa.Text(), nullable=False),
    sa.Column("user_id", sa.Uuid(), nullable=False),
    sa.Column("token_family", sa.Text(), nullable=False),
    sa.Column("previous_token_id", sa.Uuid(), nullable=True),
    sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("max_usage_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
    sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("revoked_by", sa.Uuid(), nullable=True),
    sa.Column("revoked_reason", sa.Text(), nullable=True),
    sa.Column("device_info", sa.JSON(), nullable=False),
    sa.Column("security_flags", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
    sa.Column("location", sa.JSON(), nullable=True),
    sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
    sa.UniqueConstraint("token_hash", name="uq_refresh_tokens_token_hash"),
    sa.UniqueConstraint("jti", name="uq_refresh_tokens_jti"),
    sa.CheckConstraint("usage_count >= 0", name="ck_refresh_tokens_usage_count"),
    sa.CheckConstraint("max_usage_count >= 1", name="ck_refresh_tokens_max_usage_count"),
    sa.CheckConstraint(
        f"revoked_reason IS NULL OR revoked_reason IN ({_REVOKED_REASONS})",
        name="ck_refresh_tokens_revoked_reason",
    ),
)

sa.Index(
    "ix_refresh_tokens_user_id_issued_at",
    refresh_tokens.c.user_id,
    refresh_tokens.c.issued_at,
)
sa.Index("ix_refresh_tokens_token_family", refresh_tokens.c.token_family)
sa.Index(
    "ix_refresh_tokens_is_active_expires_at",
    refresh_tokens.c.is_active,
    refresh_tokens.c.expires_at,
)
sa.Index(
    "ix_refresh_tokens_is_revoked_revoked_at",
    refresh_tokens.c.is_revoked,
    refresh_tokens.c.revoked_at,
)

user_sessions = sa.Table(
    "user_sessions",
    metadata,
    sa.Column("session_id", sa.Uuid(), primary_key=True, nullable=False),
    sa.Column("user_id", sa.Uuid(), nullable=False),
    sa.Column("token_family", sa.Text(), nullable=False),
    sa.Column("device_info", sa.JSON(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("last_activity", sa.DateTime(timezone=True), nullable=False),
    sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.UniqueConstraint("token_family", name="uq_user_sessions_token_family"),
)

sa.Index(
    "ix_user_sessions_user_id_last_activity",
    user_sessions.c.user_id,
    user_sessions.c.last_activity,
)
