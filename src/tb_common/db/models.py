"""SQLAlchemy ORM models for the Timerboard platform.

common schema: users, discord_guilds, discord_roles, discord_channels,
               discord_members, user_guild_roles
timerboard schema: ping_formats, ping_format_fields, fleet_categories (+ access
               roles, ping roles, channels), fleets, fleet_field_values,
               fleet_messages, channel_fleet_lists

Discord snowflakes are stored as strings; convert with tb_common.errors.parse_snowflake.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import TIMESTAMP


class Base(DeclarativeBase):
    pass


MESSAGE_TYPES = ("creation", "reminder", "formup")


# ---------------------------------------------------------------------------
# common schema
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "users"
    __table_args__ = {"schema": "common"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    discord_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_guild_sync_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    guild_roles: Mapped[list["UserGuildRole"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class DiscordGuild(Base):
    __tablename__ = "discord_guilds"
    __table_args__ = {"schema": "common"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon_hash: Mapped[Optional[str]] = mapped_column(String(64))
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )


class DiscordRole(Base):
    __tablename__ = "discord_roles"
    __table_args__ = {"schema": "common"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    role_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    guild_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#99aab5")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DiscordChannel(Base):
    __tablename__ = "discord_channels"
    __table_args__ = {"schema": "common"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    channel_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    guild_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DiscordMember(Base):
    __tablename__ = "discord_members"
    __table_args__ = (
        UniqueConstraint("user_id", "guild_id"),
        {"schema": "common"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(20), nullable=False)
    guild_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
        nullable=False,
    )
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(100))


class UserGuildRole(Base):
    """Role membership of a logged-in user (non-users are not tracked here)."""

    __tablename__ = "user_guild_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id"),
        {"schema": "common"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("common.users.id", ondelete="CASCADE"), nullable=False
    )
    role_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_roles.role_id", ondelete="CASCADE"),
        nullable=False,
    )

    user: Mapped[User] = relationship(back_populates="guild_roles")


# ---------------------------------------------------------------------------
# timerboard schema
# ---------------------------------------------------------------------------


class PingFormat(Base):
    __tablename__ = "ping_formats"
    __table_args__ = {"schema": "timerboard"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    guild_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )

    fields: Mapped[list["PingFormatField"]] = relationship(
        back_populates="ping_format",
        cascade="all, delete-orphan",
        order_by="PingFormatField.priority",
    )


class PingFormatField(Base):
    __tablename__ = "ping_format_fields"
    __table_args__ = (
        CheckConstraint("field_type IN ('text', 'bool')", name="ck_ping_format_field_type"),
        {"schema": "timerboard"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ping_format_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timerboard.ping_formats.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    field_type: Mapped[str] = mapped_column(String(10), nullable=False, default="text")
    default_value: Mapped[Optional[str]] = mapped_column(Text)

    ping_format: Mapped[PingFormat] = relationship(back_populates="fields")


class FleetCategory(Base):
    __tablename__ = "fleet_categories"
    __table_args__ = {"schema": "timerboard"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    guild_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_guilds.guild_id", ondelete="CASCADE"),
        nullable=False,
    )
    ping_format_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timerboard.ping_formats.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # Durations in seconds
    ping_lead_time: Mapped[Optional[int]] = mapped_column(Integer)
    ping_reminder: Mapped[Optional[int]] = mapped_column(Integer)
    max_pre_ping: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    ping_format: Mapped[PingFormat] = relationship()
    access_roles: Mapped[list["FleetCategoryAccessRole"]] = relationship(
        back_populates="category", cascade="all, delete-orphan"
    )
    ping_roles: Mapped[list["FleetCategoryPingRole"]] = relationship(
        back_populates="category", cascade="all, delete-orphan"
    )
    channels: Mapped[list["FleetCategoryChannel"]] = relationship(
        back_populates="category", cascade="all, delete-orphan"
    )


class FleetCategoryAccessRole(Base):
    __tablename__ = "fleet_category_access_roles"
    __table_args__ = (
        UniqueConstraint("category_id", "role_id"),
        {"schema": "timerboard"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timerboard.fleet_categories.id", ondelete="CASCADE"), nullable=False
    )
    role_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_roles.role_id", ondelete="CASCADE"),
        nullable=False,
    )
    can_view: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_create: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_manage: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped[FleetCategory] = relationship(back_populates="access_roles")


class FleetCategoryPingRole(Base):
    __tablename__ = "fleet_category_ping_roles"
    __table_args__ = (
        UniqueConstraint("category_id", "role_id"),
        {"schema": "timerboard"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timerboard.fleet_categories.id", ondelete="CASCADE"), nullable=False
    )
    role_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_roles.role_id", ondelete="CASCADE"),
        nullable=False,
    )

    category: Mapped[FleetCategory] = relationship(back_populates="ping_roles")


class FleetCategoryChannel(Base):
    __tablename__ = "fleet_category_channels"
    __table_args__ = (
        UniqueConstraint("category_id", "channel_id"),
        {"schema": "timerboard"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timerboard.fleet_categories.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("common.discord_channels.channel_id", ondelete="CASCADE"),
        nullable=False,
    )

    category: Mapped[FleetCategory] = relationship(back_populates="channels")


class Fleet(Base):
    __tablename__ = "fleets"
    __table_args__ = {"schema": "timerboard"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timerboard.fleet_categories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    commander_id: Mapped[str] = mapped_column(String(20), nullable=False)
    fleet_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    disable_reminder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    category: Mapped[FleetCategory] = relationship()
    field_values: Mapped[list["FleetFieldValue"]] = relationship(
        back_populates="fleet", cascade="all, delete-orphan"
    )
    messages: Mapped[list["FleetMessage"]] = relationship(
        back_populates="fleet",
        cascade="all, delete-orphan",
        order_by="FleetMessage.created_at",
    )


class FleetFieldValue(Base):
    __tablename__ = "fleet_field_values"
    __table_args__ = (
        UniqueConstraint("fleet_id", "field_id"),
        {"schema": "timerboard"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fleet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timerboard.fleets.id", ondelete="CASCADE"), nullable=False
    )
    field_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("timerboard.ping_format_fields.id", ondelete="CASCADE"),
        nullable=False,
    )
    value: Mapped[str] = mapped_column(Text, nullable=False)

    fleet: Mapped[Fleet] = relationship(back_populates="field_values")
    field: Mapped[PingFormatField] = relationship()


class FleetMessage(Base):
    """Append-only record of every Discord message posted for a fleet."""

    __tablename__ = "fleet_messages"
    __table_args__ = (
        UniqueConstraint("fleet_id", "channel_id", "message_type"),
        CheckConstraint(
            "message_type IN ('creation', 'reminder', 'formup')",
            name="ck_fleet_message_type",
        ),
        {"schema": "timerboard"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fleet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timerboard.fleets.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[str] = mapped_column(String(20), nullable=False)
    message_id: Mapped[str] = mapped_column(String(20), nullable=False)
    message_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )

    fleet: Mapped[Fleet] = relationship(back_populates="messages")


class ChannelFleetList(Base):
    __tablename__ = "channel_fleet_lists"
    __table_args__ = {"schema": "timerboard"}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    channel_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    message_id: Mapped[str] = mapped_column(String(20), nullable=False)
    # Bumped by any other message in the channel
    last_message_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    # Only changed when the bot edits or reposts the list
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
