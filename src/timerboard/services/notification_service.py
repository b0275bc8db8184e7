"""Discord notifications for fleets.

Every fleet event (creation, reminder, form-up) is posted to each channel
configured on the fleet's category and recorded as a FleetMessage row. Later
updates and the cancellation edit those recorded messages in place.

Delivery is best-effort: a failure in one channel or on one message is logged
and the rest carry on.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import discord
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tb_common.db.models import Fleet, FleetCategory, FleetMessage, PingFormat
from tb_common.errors import parse_snowflake

logger = logging.getLogger(__name__)

COLOR_CREATION = 0x3498DB
COLOR_UPDATE = 0x3498DB
COLOR_REMINDER = 0xF39C12
COLOR_FORMUP = 0xE74C3C
COLOR_CANCELLED = 0x95A5A6
COLOR_LIST = 0x5865F2

# Blank line between the pings and the embed
SEPARATOR = "\n\u200b"


class MessageType(str, Enum):
    CREATION = "creation"
    REMINDER = "reminder"
    FORMUP = "formup"


_COLORS = {
    MessageType.CREATION: COLOR_CREATION,
    MessageType.REMINDER: COLOR_REMINDER,
    MessageType.FORMUP: COLOR_FORMUP,
}


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def format_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M")


def unix_ts(dt: datetime) -> int:
    return int(dt.timestamp())


def message_title(message_type: MessageType, category_name: str) -> str:
    if message_type == MessageType.CREATION:
        return f"**.:New Upcoming {category_name}:.**"
    if message_type == MessageType.REMINDER:
        return f"**.:Reminder - Upcoming {category_name}:.**"
    return f"**.:{category_name} Forming Now:.**"


def build_content(title: str, ping_role_ids: list[int], guild_id: int) -> str:
    """Title line, role pings, then the separator line.

    The guild's @everyone role shares the guild's ID and cannot be mentioned
    as a regular role.
    """
    content = f"{title}\n\n"
    for role_id in ping_role_ids:
        if role_id == guild_id:
            content += "@everyone "
        else:
            content += f"<@&{role_id}> "
    return content + SEPARATOR


def render_field_value(field_type: str, value: str) -> str:
    if field_type == "bool":
        if value == "true":
            return "Yes"
        if value == "false":
            return "No"
    return value


def build_fleet_embed(
    fleet: Fleet,
    color: int,
    commander_name: str,
    app_url: str,
    now: Optional[datetime] = None,
) -> discord.Embed:
    """Embed for a fleet. Needs category.ping_format.fields and field_values loaded."""
    ts = unix_ts(fleet.fleet_time)
    embed = discord.Embed(
        title=fleet.name,
        url=app_url,
        color=color,
        timestamp=now or datetime.now(timezone.utc),
    )
    embed.add_field(name="FC", value=f"<@{fleet.commander_id}>", inline=False)
    embed.add_field(
        name="Start Time (UTC)", value=f"{format_utc(fleet.fleet_time)} EVE Time", inline=False
    )
    embed.add_field(name="Start Time (Local)", value=f"<t:{ts}:F> - <t:{ts}:R>", inline=False)

    values = {fv.field_id: fv.value for fv in fleet.field_values}
    fields = fleet.category.ping_format.fields if fleet.category.ping_format else []
    for field in sorted(fields, key=lambda f: (f.priority, f.id)):
        value = values.get(field.id)
        if not value:
            continue
        embed.add_field(
            name=field.name, value=render_field_value(field.field_type, value), inline=False
        )

    if fleet.description:
        embed.add_field(name="Additional Information", value=fleet.description, inline=False)
    embed.set_footer(text=f"Sent by: {commander_name}")
    return embed


def build_cancel_embed(
    fleet: Fleet, commander_name: str, now: Optional[datetime] = None
) -> discord.Embed:
    category_name = fleet.category.name
    ts = unix_ts(fleet.fleet_time)
    embed = discord.Embed(
        title=f".:{category_name} Cancelled:.",
        color=COLOR_CANCELLED,
        description=(
            f"{category_name} posted by <@{fleet.commander_id}>, **{fleet.name}**, "
            f"scheduled for **{format_utc(fleet.fleet_time)} UTC** (<t:{ts}:F>) was cancelled."
        ),
        timestamp=now or datetime.now(timezone.utc),
    )
    embed.set_footer(text=f"Cancelled by: {commander_name}")
    return embed


# ---------------------------------------------------------------------------
# Discord helpers
# ---------------------------------------------------------------------------


async def get_channel(bot: discord.Client, channel_id: int):
    channel = bot.get_channel(channel_id)
    if channel is None:
        channel = await bot.fetch_channel(channel_id)
    return channel


async def resolve_commander_name(bot: discord.Client, guild_id: int, commander_id: int) -> str:
    """Guild nickname, else username. Lookup failures fall back to a placeholder."""
    try:
        guild = bot.get_guild(guild_id)
        if guild is None:
            guild = await bot.fetch_guild(guild_id)
        member = await guild.fetch_member(commander_id)
        return member.nick or member.name
    except Exception as exc:
        logger.warning(
            "Failed to fetch commander %s in guild %s: %s", commander_id, guild_id, exc
        )
        return f"User {commander_id}"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def load_fleet(db: AsyncSession, fleet_id: int) -> Fleet | None:
    """Fleet with everything the builders touch eagerly loaded."""
    result = await db.execute(
        select(Fleet)
        .options(
            selectinload(Fleet.category)
            .selectinload(FleetCategory.ping_format)
            .selectinload(PingFormat.fields),
            selectinload(Fleet.category).selectinload(FleetCategory.ping_roles),
            selectinload(Fleet.category).selectinload(FleetCategory.channels),
            selectinload(Fleet.field_values),
        )
        .where(Fleet.id == fleet_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_fleet_messages(db: AsyncSession, fleet_id: int) -> list[FleetMessage]:
    result = await db.execute(
        select(FleetMessage)
        .where(FleetMessage.fleet_id == fleet_id)
        .order_by(FleetMessage.created_at, FleetMessage.id)
    )
    return list(result.scalars().all())


def latest_in_channel(messages: list[FleetMessage], channel_id: str) -> FleetMessage | None:
    in_channel = [m for m in messages if m.channel_id == channel_id]
    if not in_channel:
        return None
    return max(in_channel, key=lambda m: (m.created_at, m.id))


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class FleetNotifier:
    """Posts and edits fleet messages through a connected Discord client."""

    def __init__(self, bot: discord.Client, app_url: str):
        self.bot = bot
        self.app_url = app_url

    async def post_fleet_creation(self, db: AsyncSession, fleet: Fleet) -> int:
        if fleet.hidden:
            return 0
        return await self._post(db, fleet, MessageType.CREATION)

    async def post_fleet_reminder(self, db: AsyncSession, fleet: Fleet) -> int:
        if fleet.disable_reminder:
            return 0
        return await self._post(db, fleet, MessageType.REMINDER)

    async def post_fleet_formup(self, db: AsyncSession, fleet: Fleet) -> int:
        return await self._post(db, fleet, MessageType.FORMUP)

    async def _post(self, db: AsyncSession, fleet: Fleet, message_type: MessageType) -> int:
        """Send one message per category channel. Returns how many were stored.

        Each message replies to this fleet's latest earlier message in the same
        channel, if there is one.
        """
        category = fleet.category
        guild_id = parse_snowflake(category.guild_id)
        commander_name = await resolve_commander_name(
            self.bot, guild_id, parse_snowflake(fleet.commander_id)
        )
        embed = build_fleet_embed(fleet, _COLORS[message_type], commander_name, self.app_url)
        previous = await get_fleet_messages(db, fleet.id)
        title_type = message_type
        # A reminder for a fleet that was never announced reads as its announcement
        if message_type == MessageType.REMINDER and not any(
            m.message_type == MessageType.CREATION.value for m in previous
        ):
            title_type = MessageType.CREATION
        content = build_content(
            message_title(title_type, category.name),
            [parse_snowflake(r.role_id) for r in category.ping_roles],
            guild_id,
        )

        posted = 0
        for category_channel in category.channels:
            try:
                channel_id = parse_snowflake(category_channel.channel_id)
                reply_to = latest_in_channel(previous, category_channel.channel_id)
                reference = None
                if reply_to is not None:
                    reference = discord.MessageReference(
                        message_id=parse_snowflake(reply_to.message_id),
                        channel_id=channel_id,
                        fail_if_not_exists=False,
                    )
                channel = await get_channel(self.bot, channel_id)
                msg = await channel.send(content=content, embed=embed, reference=reference)
            except Exception as exc:
                logger.error(
                    "Failed to post fleet %s to channel %s: %s",
                    message_type.value,
                    category_channel.channel_id,
                    exc,
                )
                continue

            # created_at is set here: the column default is the transaction
            # start time, which would tie every message of one transaction.
            try:
                async with db.begin_nested():
                    db.add(
                        FleetMessage(
                            fleet_id=fleet.id,
                            channel_id=str(channel_id),
                            message_id=str(msg.id),
                            message_type=message_type.value,
                            created_at=datetime.now(timezone.utc),
                        )
                    )
            except IntegrityError:
                logger.warning(
                    "Fleet %s already has a %s message in channel %s",
                    fleet.id,
                    message_type.value,
                    channel_id,
                )
                continue
            posted += 1

        logger.info(
            "Posted fleet %s %s to %d/%d channels",
            fleet.id,
            message_type.value,
            posted,
            len(category.channels),
        )
        return posted

    async def update_fleet_messages(self, db: AsyncSession, fleet: Fleet) -> int:
        """Re-render the embed and edit every recorded message. Returns edits made."""
        messages = await get_fleet_messages(db, fleet.id)
        if not messages:
            return 0
        commander_name = await resolve_commander_name(
            self.bot, parse_snowflake(fleet.category.guild_id), parse_snowflake(fleet.commander_id)
        )
        embed = build_fleet_embed(fleet, COLOR_UPDATE, commander_name, self.app_url)
        return await self._edit_all(messages, embed=embed)

    async def cancel_fleet_messages(self, db: AsyncSession, fleet: Fleet) -> int:
        """Replace every recorded message with the cancellation notice."""
        messages = await get_fleet_messages(db, fleet.id)
        if not messages:
            return 0
        commander_name = await resolve_commander_name(
            self.bot, parse_snowflake(fleet.category.guild_id), parse_snowflake(fleet.commander_id)
        )
        embed = build_cancel_embed(fleet, commander_name)
        return await self._edit_all(messages, content=None, embed=embed)

    async def _edit_all(self, messages: list[FleetMessage], **changes) -> int:
        edited = 0
        for message in messages:
            try:
                channel = await get_channel(self.bot, parse_snowflake(message.channel_id))
                await channel.get_partial_message(parse_snowflake(message.message_id)).edit(
                    **changes
                )
                edited += 1
            except Exception as exc:
                logger.error(
                    "Failed to edit fleet message %s in channel %s: %s",
                    message.message_id,
                    message.channel_id,
                    exc,
                )
        return edited
