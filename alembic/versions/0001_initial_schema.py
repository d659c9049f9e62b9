"""Initial schema for users, refresh tokens, and device sessions."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

_REVOKED_REASONS = (
    "'user_logout', 'admin_revoke', 'security_breach', 'token_rotation', "
    "'account_locked', 'suspicious_activity', 'expired', 'device_change', "
    "'session_limit_exceeded'"
)


def upgrade() -> None:
    op.create_table(
        "users",
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

    op.create_table(
        "refresh_tokens",
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
        sa.Column(
            "max_usage_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("1"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.Uuid(), nullable=True),
        sa.Column("revoked_reason", sa.Text(), nullable=True),
        sa.Column("device_info", sa.JSON(), nullable=False),
        sa.Column(
            "security_flags",
            sa.JSON(),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
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
    op.create_index(
        "ix_refresh_tokens_user_id_issued_at",
        "refresh_tokens",
        ["user_id", "issued_at"],
        unique=False,
    )
    op.create_index(
        "ix_refresh_tokens_token_family",
        "refresh_tokens",
        ["token_family"],
        unique=False,
    )
    op.create_index(
        "ix_refresh_tokens_is_active_expires_at",
        "refresh_tokens",
        ["is_active", "expires_at"],
        unique=False,
    )
    op.create_index(
        "ix_refresh_tokens_is_revoked_revoked_at",
        "refresh_tokens",
        ["is_revoked", "revoked_at"],
        unique=False,
    )

    op.create_table(
        "user_sessions",
        sa.Column("session_id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("token_family", sa.Text(), nullable=False),
        sa.Column("device_info", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("token_family", name="uq_user_sessions_token_family"),
    )
    op.create_index(
        "ix_user_sessions_user_id_last_activity",
        "user_sessions",
        ["user_id", "last_activity"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_user_sessions_user_id_last_activity", table_name="user_sessions")
    op.drop_table("user_sessions")
    op.drop_index("ix_refresh_tokens_is_revoked_revoked_at", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_is_active_expires_at", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_token_family", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_user_id_issued_at", table_name="refresh_tokens")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
