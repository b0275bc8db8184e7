"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import TIMESTAMP

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names: str) -> list[sa.Column]:
    return [
        sa.Column(name, TIMESTAMP(timezone=True), server_default=sa.func.now())
        for name in names
    ]


def upgrade() -> None:
    # Ensure schemas exist
    op.execute("CREATE SCHEMA IF NOT EXISTS common")
    op.execute("CREATE SCHEMA IF NOT EXISTS timerboard")

    # ---------------------------------------------------------------------------
    # common schema
    # ---------------------------------------------------------------------------

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("discord_id", sa.String(20), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("admin", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("last_guild_sync_at", TIMESTAMP(timezone=True)),
        *_timestamps("created_at", "updated_at"),
        schema="common",
    )

    op.create_table(
        "discord_guilds",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("guild_id", sa.String(20), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("icon_hash", sa.String(64)),
        sa.Column("last_sync_at", TIMESTAMP(timezone=True)),
        *_timestamps("created_at"),
        schema="common",
    )

    op.create_table(
        "discord_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.String(20), nullable=False, unique=True),
        sa.Column(
            "guild_id",
            sa.String(20),
            sa.ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("color", sa.String(7), nullable=False, server_default="#99aab5"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        schema="common",
    )

    op.create_table(
        "discord_channels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("channel_id", sa.String(20), nullable=False, unique=True),
        sa.Column(
            "guild_id",
            sa.String(20),
            sa.ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        schema="common",
    )

    op.create_table(
        "discord_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(20), nullable=False),
        sa.Column(
            "guild_id",
            sa.String(20),
            sa.ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("nickname", sa.String(100)),
        sa.UniqueConstraint("user_id", "guild_id"),
        schema="common",
    )

    op.create_table(
        "user_guild_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("common.users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "role_id",
            sa.String(20),
            sa.ForeignKey("common.discord_roles.role_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "role_id"),
        schema="common",
    )

    # ---------------------------------------------------------------------------
    # timerboard schema
    # ---------------------------------------------------------------------------

    op.create_table(
        "ping_formats",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "guild_id",
            sa.String(20),
            sa.ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        *_timestamps("created_at"),
        schema="timerboard",
    )

    op.create_table(
        "ping_format_fields",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "ping_format_id",
            sa.Integer(),
            sa.ForeignKey("timerboard.ping_formats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("field_type", sa.String(10), nullable=False, server_default="text"),
        sa.Column("default_value", sa.Text()),
        sa.CheckConstraint(
            "field_type IN ('text', 'bool')", name="ck_ping_format_field_type"
        ),
        schema="timerboard",
    )

    # Durations are stored as integer seconds
    op.create_table(
        "fleet_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "guild_id",
            sa.String(20),
            sa.ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "ping_format_id",
            sa.Integer(),
            sa.ForeignKey("timerboard.ping_formats.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("ping_lead_time", sa.Integer()),
        sa.Column("ping_reminder", sa.Integer()),
        sa.Column("max_pre_ping", sa.Integer()),
        *_timestamps("created_at", "updated_at"),
        schema="timerboard",
    )

    for table, ref, ref_column in (
        ("fleet_category_ping_roles", "common.discord_roles.role_id", "role_id"),
        ("fleet_category_channels", "common.discord_channels.channel_id", "channel_id"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "category_id",
                sa.Integer(),
                sa.ForeignKey("timerboard.fleet_categories.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                ref_column,
                sa.String(20),
                sa.ForeignKey(ref, ondelete="CASCADE"),
                nullable=False,
            ),
            sa.UniqueConstraint("category_id", ref_column),
            schema="timerboard",
        )

    op.create_table(
        "fleet_category_access_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("timerboard.fleet_categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "role_id",
            sa.String(20),
            sa.ForeignKey("common.discord_roles.role_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("can_view", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("can_create", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("can_manage", sa.Boolean(), nullable=False, server_default="false"),
        sa.UniqueConstraint("category_id", "role_id"),
        schema="timerboard",
    )

    op.create_table(
        "fleets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("timerboard.fleet_categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("commander_id", sa.String(20), nullable=False),
        sa.Column("fleet_time", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("disable_reminder", sa.Boolean(), nullable=False, server_default="false"),
        *_timestamps("created_at", "updated_at"),
        schema="timerboard",
    )
    op.create_index(
        "ix_fleets_category_time", "fleets", ["category_id", "fleet_time"], schema="timerboard"
    )

    op.create_table(
        "fleet_field_values",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "fleet_id",
            sa.Integer(),
            sa.ForeignKey("timerboard.fleets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "field_id",
            sa.Integer(),
            sa.ForeignKey("timerboard.ping_format_fields.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("value", sa.Text(), nullable=False),
        sa.UniqueConstraint("fleet_id", "field_id"),
        schema="timerboard",
    )

    op.create_table(
        "fleet_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "fleet_id",
            sa.Integer(),
            sa.ForeignKey("timerboard.fleets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("channel_id", sa.String(20), nullable=False),
        sa.Column("message_id", sa.String(20), nullable=False),
        sa.Column("message_type", sa.String(10), nullable=False),
        *_timestamps("created_at"),
        sa.UniqueConstraint("fleet_id", "channel_id", "message_type"),
        sa.CheckConstraint(
            "message_type IN ('creation', 'reminder', 'formup')", name="ck_fleet_message_type"
        ),
        schema="timerboard",
    )

    op.create_table(
        "channel_fleet_lists",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("channel_id", sa.String(20), nullable=False, unique=True),
        sa.Column("message_id", sa.String(20), nullable=False),
        *_timestamps("last_message_at", "created_at", "updated_at"),
        schema="timerboard",
    )


def downgrade() -> None:
    for table in (
        "channel_fleet_lists",
        "fleet_messages",
        "fleet_field_values",
        "fleets",
        "fleet_category_access_roles",
        "fleet_category_channels",
        "fleet_category_ping_roles",
        "fleet_categories",
        "ping_format_fields",
        "ping_formats",
    ):
        op.drop_table(table, schema="timerboard")
    for table in (
        "user_guild_roles",
        "discord_members",
        "discord_channels",
        "discord_roles",
        "discord_guilds",
        "users",
    ):
        op.drop_table(table, schema="common")
    op.execute("DROP SCHEMA IF EXISTS timerboard")
