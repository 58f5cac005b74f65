"""001 — Initial channel onboarding schema.

Creates `channels` (local channel cache), `remote_channel_links` (backend
channel id per platform) and `settings_entries` (credential store rows).

Revision ID: 001_initial_channels
Revises:
"""

from alembic import op
import sqlalchemy as sa

revision = "001_initial_channels"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "channels",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("user_id", sa.String(64), nullable=False, server_default=""),
        sa.Column("api_key", sa.Text(), nullable=False, server_default=""),
        sa.Column("channel_secret", sa.Text(), nullable=False, server_default=""),
        sa.Column("webhook_url", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("api_status", sa.String(20), nullable=False, server_default="未連接"),
        sa.Column("total_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("today_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_response_time", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("satisfaction_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_channels_platform_name", "channels", ["platform", "name"])

    op.create_table(
        "remote_channel_links",
        sa.Column("platform", sa.String(20), primary_key=True),
        sa.Column("remote_id", sa.String(64), nullable=False),
        sa.Column("local_channel_id", sa.String(36), nullable=False),
        sa.Column("linked_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "settings_entries",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False, server_default=""),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("settings_entries")
    op.drop_table("remote_channel_links")
    op.drop_index("ix_channels_platform_name", table_name="channels")
    op.drop_table("channels")
