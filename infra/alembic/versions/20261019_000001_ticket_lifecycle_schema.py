"""Ticket lifecycle schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tickets",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("guild_id", sa.Text(), nullable=False),
        sa.Column("channel_id", sa.Text(), nullable=False, unique=True),
        sa.Column("creator_user_id", sa.Text(), nullable=False),
        sa.Column("target_user_id", sa.Text(), nullable=False),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("state", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("closed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("closed_by_user_id", sa.Text(), nullable=True),
        sa.Column("archived_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("archived_by_user_id", sa.Text(), nullable=True),
        sa.Column("added_participants", sa.Text(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("header_message_id", sa.Text(), nullable=True),
        sa.Column("audit_message_id", sa.Text(), nullable=True),
        sa.Column("transcript_url", sa.Text(), nullable=True),
    )
    op.create_index("tickets_guild_state_idx", "tickets", ["guild_id", "state"])

    op.create_table(
        "guild_config",
        sa.Column("guild_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("moderator_role_ids", sa.Text(), nullable=True),
        sa.Column("tickets_category_id", sa.Text(), nullable=True),
        sa.Column("tickets_archive_category_id", sa.Text(), nullable=True),
        sa.Column("audit_log_channel_id", sa.Text(), nullable=True),
        sa.Column("log_channel_id", sa.Text(), nullable=True),
        sa.Column("transcript_enabled", sa.Boolean(), nullable=True),
        sa.Column("on_duty_role_id", sa.Text(), nullable=True),
        sa.Column("fallback_ping_mod_if_no_on_duty", sa.Boolean(), nullable=True),
    )

    op.create_table(
        "duty",
        sa.Column("guild_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("is_on_duty", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("duty")
    op.drop_table("guild_config")
    op.drop_index("tickets_guild_state_idx", table_name="tickets")
    op.drop_table("tickets")
