"""Timerboard Discord client.

Provides the bot instance used throughout the application. The bot is started
as a background task during the FastAPI lifespan. Gateway callbacks are
translated into GatewayEvents and handed to tb_common.discord.events.dispatch.
"""

import logging

import discord
from discord.ext import commands

from tb_common.discord.events import (
    GatewayEvent,
    GatewayEventKind,
    GuildSnapshot,
    MessageData,
    dispatch,
)
from tb_common.discord.mirror import ChannelData, MemberData, RoleData

logger = logging.getLogger(__name__)

MEMBERS_PER_REQUEST = 1000

# Intents: members for the member mirror, messages to track list burial
intents = discord.Intents.default()
intents.members = True
intents.guild_messages = True
intents.message_content = False

bot = commands.Bot(command_prefix="!", intents=intents)

# session factory is set by the FastAPI lifespan after startup
_session_factory = None


def set_session_factory(factory) -> None:
    """Called from FastAPI lifespan to give the bot access to the database."""
    global _session_factory
    _session_factory = factory


# ---------------------------------------------------------------------------
# discord.py object -> mirror data
# ---------------------------------------------------------------------------


def role_data(role: discord.Role) -> RoleData:
    return RoleData(
        role_id=role.id,
        name=role.name,
        color=str(role.colour),
        position=role.position,
    )


def channel_data(channel: discord.abc.GuildChannel) -> ChannelData:
    return ChannelData(
        channel_id=channel.id,
        name=channel.name,
        position=channel.position,
        is_text=channel.type == discord.ChannelType.text,
    )


def member_data(member: discord.Member) -> MemberData:
    return MemberData(
        user_id=member.id,
        username=member.name,
        nickname=member.nick,
        role_ids=[r.id for r in member.roles],
    )


async def fetch_all_members(guild: discord.Guild) -> list[MemberData]:
    """Page through the guild member list, MEMBERS_PER_REQUEST at a time."""
    members: list[MemberData] = []
    after: discord.abc.Snowflake | None = None
    while True:
        page = [
            m
            async for m in guild.fetch_members(limit=MEMBERS_PER_REQUEST, after=after)
        ]
        members.extend(member_data(m) for m in page)
        if len(page) < MEMBERS_PER_REQUEST:
            break
        after = discord.Object(id=max(m.id for m in page))
    logger.debug("Fetched %d members for guild %s", len(members), guild.id)
    return members


async def fetch_member_role_ids(guild_id: int, user_id: int) -> list[int] | None:
    """Current role IDs of a guild member, or None when they are not in the guild.

    Passed to complete_login so a fresh login picks up the user's roles.
    """
    guild = bot.get_guild(guild_id)
    if guild is None:
        guild = await bot.fetch_guild(guild_id)
    try:
        member = await guild.fetch_member(user_id)
    except discord.NotFound:
        return None
    return [r.id for r in member.roles]


def guild_snapshot(guild: discord.Guild) -> GuildSnapshot:
    return GuildSnapshot(
        name=guild.name,
        icon_hash=guild.icon.key if guild.icon else None,
        roles=[role_data(r) for r in guild.roles],
        channels=[channel_data(c) for c in guild.channels],
        load_members=lambda: fetch_all_members(guild),
    )


async def _dispatch(kind: GatewayEventKind, guild_id: int, payload) -> None:
    if _session_factory is None:
        logger.warning("%s: session factory not set, skipping", kind.value)
        return
    await dispatch(GatewayEvent(kind=kind, guild_id=guild_id, payload=payload), _session_factory)


# ---------------------------------------------------------------------------
# Gateway callbacks
# ---------------------------------------------------------------------------


@bot.event
async def on_ready():
    logger.info("Timerboard bot connected as %s (id=%s)", bot.user, bot.user.id)


@bot.event
async def on_guild_available(guild: discord.Guild):
    await _dispatch(GatewayEventKind.GUILD_CREATE, guild.id, guild_snapshot(guild))


@bot.event
async def on_guild_join(guild: discord.Guild):
    logger.info("Joined guild %s (%s)", guild.name, guild.id)
    await _dispatch(GatewayEventKind.GUILD_CREATE, guild.id, guild_snapshot(guild))


@bot.event
async def on_guild_role_create(role: discord.Role):
    await _dispatch(GatewayEventKind.ROLE_CREATE, role.guild.id, role_data(role))


@bot.event
async def on_guild_role_update(before: discord.Role, after: discord.Role):
    await _dispatch(GatewayEventKind.ROLE_UPDATE, after.guild.id, role_data(after))


@bot.event
async def on_guild_role_delete(role: discord.Role):
    await _dispatch(GatewayEventKind.ROLE_DELETE, role.guild.id, role.id)


@bot.event
async def on_guild_channel_create(channel: discord.abc.GuildChannel):
    await _dispatch(GatewayEventKind.CHANNEL_CREATE, channel.guild.id, channel_data(channel))


@bot.event
async def on_guild_channel_update(before: discord.abc.GuildChannel, after: discord.abc.GuildChannel):
    await _dispatch(GatewayEventKind.CHANNEL_UPDATE, after.guild.id, channel_data(after))


@bot.event
async def on_guild_channel_delete(channel: discord.abc.GuildChannel):
    await _dispatch(GatewayEventKind.CHANNEL_DELETE, channel.guild.id, channel.id)


@bot.event
async def on_member_join(member: discord.Member):
    await _dispatch(GatewayEventKind.MEMBER_ADD, member.guild.id, member_data(member))


@bot.event
async def on_member_remove(member: discord.Member):
    await _dispatch(GatewayEventKind.MEMBER_REMOVE, member.guild.id, member.id)


@bot.event
async def on_member_update(before: discord.Member, after: discord.Member):
    await _dispatch(GatewayEventKind.MEMBER_UPDATE, after.guild.id, member_data(after))


@bot.event
async def on_message(message: discord.Message):
    if message.guild is None:
        return
    await _dispatch(
        GatewayEventKind.MESSAGE,
        message.guild.id,
        MessageData(
            channel_id=message.channel.id,
            message_id=message.id,
            created_at=message.created_at,
        ),
    )


async def start_bot(token: str) -> None:
    """Start the bot. Intended to be run as an asyncio background task."""
    await bot.start(token)


async def stop_bot() -> None:
    """Gracefully close the bot connection."""
    if not bot.is_closed():
        await bot.close()


def get_bot() -> commands.Bot:
    """Return the global bot instance."""
    return bot
