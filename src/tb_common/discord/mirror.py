"""Local mirror of Discord guilds, roles, channels and members.

Gateway handlers and periodic full syncs both write here through row-level
upserts (ON CONFLICT DO UPDATE), so concurrent writers resolve as last write
wins. Full syncs of one guild are debounced by a 30 minute backoff on
discord_guilds.last_sync_at.

All functions take plain data (see RoleData, ChannelData, MemberData) so they
can be driven by the bot, by the scheduler, or by tests without a live client.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from tb_common.db.models import (
    ChannelFleetList,
    DiscordChannel,
    DiscordGuild,
    DiscordMember,
    DiscordRole,
    User,
    UserGuildRole,
)

logger = logging.getLogger(__name__)

SYNC_BACKOFF = timedelta(minutes=30)
DEFAULT_ROLE_COLOR = "#99aab5"


@dataclass
class RoleData:
    role_id: int
    name: str
    color: str = DEFAULT_ROLE_COLOR
    position: int = 0


@dataclass
class ChannelData:
    channel_id: int
    name: str
    position: int = 0
    is_text: bool = True


@dataclass
class MemberData:
    user_id: int
    username: str
    nickname: str | None = None
    role_ids: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Guilds
# ---------------------------------------------------------------------------


async def upsert_guild(
    db: AsyncSession, guild_id: int, name: str, icon_hash: str | None = None
) -> None:
    """Insert or refresh guild metadata. Never touches last_sync_at."""
    stmt = insert(DiscordGuild).values(guild_id=str(guild_id), name=name, icon_hash=icon_hash)
    stmt = stmt.on_conflict_do_update(
        index_elements=[DiscordGuild.guild_id],
        set_={"name": stmt.excluded.name, "icon_hash": stmt.excluded.icon_hash},
    )
    await db.execute(stmt)


def sync_due(last_sync_at: datetime | None, now: datetime) -> bool:
    """True when a guild has never been synced or its last sync is older than the backoff."""
    if last_sync_at is None:
        return True
    if last_sync_at.tzinfo is None:
        last_sync_at = last_sync_at.replace(tzinfo=timezone.utc)
    return now - last_sync_at > SYNC_BACKOFF


async def needs_sync(db: AsyncSession, guild_id: int, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(DiscordGuild.last_sync_at).where(DiscordGuild.guild_id == str(guild_id))
    )
    row = result.one_or_none()
    if row is None:
        return True
    return sync_due(row.last_sync_at, now)


async def mark_synced(db: AsyncSession, guild_id: int, now: datetime | None = None) -> None:
    await db.execute(
        update(DiscordGuild)
        .where(DiscordGuild.guild_id == str(guild_id))
        .values(last_sync_at=now or datetime.now(timezone.utc))
    )


async def list_guilds(db: AsyncSession) -> list[DiscordGuild]:
    result = await db.execute(select(DiscordGuild).order_by(DiscordGuild.name))
    return list(result.scalars().all())


async def get_guild(db: AsyncSession, guild_id: int) -> DiscordGuild | None:
    result = await db.execute(
        select(DiscordGuild).where(DiscordGuild.guild_id == str(guild_id))
    )
    return result.scalar_one_or_none()


async def list_guilds_for_user(db: AsyncSession, user: User) -> list[DiscordGuild]:
    """Guilds the user is a mirrored member of (admins see every guild)."""
    stmt = select(DiscordGuild).order_by(DiscordGuild.name)
    if not user.admin:
        stmt = stmt.join(DiscordMember, DiscordMember.guild_id == DiscordGuild.guild_id).where(
            DiscordMember.user_id == user.discord_id
        )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


async def upsert_role(db: AsyncSession, guild_id: int, role: RoleData) -> None:
    stmt = insert(DiscordRole).values(
        role_id=str(role.role_id),
        guild_id=str(guild_id),
        name=role.name,
        color=role.color,
        position=role.position,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[DiscordRole.role_id],
        set_={
            "name": stmt.excluded.name,
            "color": stmt.excluded.color,
            "position": stmt.excluded.position,
        },
    )
    await db.execute(stmt)


async def delete_role(db: AsyncSession, role_id: int) -> None:
    """Delete a role; access/ping role grants and user memberships cascade."""
    await db.execute(delete(DiscordRole).where(DiscordRole.role_id == str(role_id)))


async def replace_roles(db: AsyncSession, guild_id: int, roles: list[RoleData]) -> int:
    """Upsert every role and drop mirrored roles Discord no longer reports.

    Returns the number of roles written. A failing role is logged and skipped.
    """
    written = 0
    for role in roles:
        try:
            async with db.begin_nested():
                await upsert_role(db, guild_id, role)
            written += 1
        except Exception as exc:
            logger.error("Failed to upsert role %s in guild %s: %s", role.role_id, guild_id, exc)

    keep = [str(r.role_id) for r in roles]
    await db.execute(
        delete(DiscordRole).where(
            DiscordRole.guild_id == str(guild_id), DiscordRole.role_id.not_in(keep)
        )
    )
    return written


async def get_roles(db: AsyncSession, guild_id: int) -> list[DiscordRole]:
    result = await db.execute(
        select(DiscordRole)
        .where(DiscordRole.guild_id == str(guild_id))
        .order_by(DiscordRole.position.desc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


async def upsert_channel(db: AsyncSession, guild_id: int, channel: ChannelData) -> bool:
    """Upsert a text channel. Non-text channels are ignored; returns whether a row was written."""
    if not channel.is_text:
        logger.debug("Ignoring non-text channel %s in guild %s", channel.name, guild_id)
        return False
    stmt = insert(DiscordChannel).values(
        channel_id=str(channel.channel_id),
        guild_id=str(guild_id),
        name=channel.name,
        position=channel.position,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[DiscordChannel.channel_id],
        set_={"name": stmt.excluded.name, "position": stmt.excluded.position},
    )
    await db.execute(stmt)
    return True


async def delete_channel(db: AsyncSession, channel_id: int) -> None:
    await db.execute(delete(DiscordChannel).where(DiscordChannel.channel_id == str(channel_id)))


async def replace_channels(db: AsyncSession, guild_id: int, channels: list[ChannelData]) -> int:
    written = 0
    text_channels = [c for c in channels if c.is_text]
    for channel in text_channels:
        try:
            async with db.begin_nested():
                await upsert_channel(db, guild_id, channel)
            written += 1
        except Exception as exc:
            logger.error(
                "Failed to upsert channel %s in guild %s: %s", channel.channel_id, guild_id, exc
            )

    keep = [str(c.channel_id) for c in text_channels]
    await db.execute(
        delete(DiscordChannel).where(
            DiscordChannel.guild_id == str(guild_id), DiscordChannel.channel_id.not_in(keep)
        )
    )
    return written


async def get_channels(db: AsyncSession, guild_id: int) -> list[DiscordChannel]:
    result = await db.execute(
        select(DiscordChannel)
        .where(DiscordChannel.guild_id == str(guild_id))
        .order_by(DiscordChannel.position)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


async def upsert_member(db: AsyncSession, guild_id: int, member: MemberData) -> None:
    stmt = insert(DiscordMember).values(
        user_id=str(member.user_id),
        guild_id=str(guild_id),
        username=member.username,
        nickname=member.nickname,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[DiscordMember.user_id, DiscordMember.guild_id],
        set_={"username": stmt.excluded.username, "nickname": stmt.excluded.nickname},
    )
    await db.execute(stmt)


async def remove_member(db: AsyncSession, guild_id: int, user_id: int) -> None:
    """Drop a member row and any role memberships the matching app user had in the guild."""
    await db.execute(
        delete(DiscordMember).where(
            DiscordMember.guild_id == str(guild_id), DiscordMember.user_id == str(user_id)
        )
    )
    app_user = await db.execute(select(User.id).where(User.discord_id == str(user_id)))
    app_user_id = app_user.scalar_one_or_none()
    if app_user_id is not None:
        guild_role_ids = select(DiscordRole.role_id).where(DiscordRole.guild_id == str(guild_id))
        await db.execute(
            delete(UserGuildRole).where(
                UserGuildRole.user_id == app_user_id,
                UserGuildRole.role_id.in_(guild_role_ids),
            )
        )


async def replace_members(db: AsyncSession, guild_id: int, members: list[MemberData]) -> int:
    written = 0
    for member in members:
        try:
            async with db.begin_nested():
                await upsert_member(db, guild_id, member)
            written += 1
        except Exception as exc:
            logger.error(
                "Failed to upsert member %s in guild %s: %s", member.user_id, guild_id, exc
            )

    keep = [str(m.user_id) for m in members]
    await db.execute(
        delete(DiscordMember).where(
            DiscordMember.guild_id == str(guild_id), DiscordMember.user_id.not_in(keep)
        )
    )
    return written


async def get_members(db: AsyncSession, guild_id: int) -> list[DiscordMember]:
    result = await db.execute(
        select(DiscordMember)
        .where(DiscordMember.guild_id == str(guild_id))
        .order_by(DiscordMember.username)
    )
    return list(result.scalars().all())


async def get_member(db: AsyncSession, guild_id: int, user_id: int | str) -> DiscordMember | None:
    result = await db.execute(
        select(DiscordMember).where(
            DiscordMember.guild_id == str(guild_id), DiscordMember.user_id == str(user_id)
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# App-user role memberships
# ---------------------------------------------------------------------------


async def sync_user_roles(
    db: AsyncSession, user_id: int, guild_id: int, role_ids: list[int]
) -> int:
    """Make the user's memberships in this guild exactly the given roles.

    Roles missing from the mirror are ignored. Idempotent: repeating the call
    with the same roles leaves the same rows. Returns the number of linked roles.
    """
    result = await db.execute(
        select(DiscordRole.role_id).where(
            DiscordRole.guild_id == str(guild_id),
            DiscordRole.role_id.in_([str(r) for r in role_ids]),
        )
    )
    matching = set(result.scalars().all())

    guild_role_ids = select(DiscordRole.role_id).where(DiscordRole.guild_id == str(guild_id))
    stale = delete(UserGuildRole).where(
        UserGuildRole.user_id == user_id, UserGuildRole.role_id.in_(guild_role_ids)
    )
    if matching:
        stale = stale.where(UserGuildRole.role_id.not_in(matching))
    await db.execute(stale)

    if matching:
        stmt = insert(UserGuildRole).values(
            [{"user_id": user_id, "role_id": role_id} for role_id in sorted(matching)]
        )
        await db.execute(
            stmt.on_conflict_do_nothing(index_elements=[UserGuildRole.user_id, UserGuildRole.role_id])
        )
    return len(matching)


async def sync_member_roles(db: AsyncSession, guild_id: int, member: MemberData) -> bool:
    """Sync role memberships if the member has an app account. Returns False otherwise."""
    result = await db.execute(select(User.id).where(User.discord_id == str(member.user_id)))
    app_user_id = result.scalar_one_or_none()
    if app_user_id is None:
        return False
    count = await sync_user_roles(db, app_user_id, guild_id, member.role_ids)
    logger.debug(
        "Synced %d role memberships for user %s in guild %s", count, member.user_id, guild_id
    )
    return True


async def sync_guild_member_roles(
    db: AsyncSession, guild_id: int, members: list[MemberData]
) -> int:
    """Sync role memberships for every member that is also a logged-in app user."""
    by_discord_id = {str(m.user_id): m for m in members}
    if not by_discord_id:
        return 0
    result = await db.execute(
        select(User).where(User.discord_id.in_(list(by_discord_id)))
    )
    synced = 0
    for user in result.scalars().all():
        member = by_discord_id[user.discord_id]
        try:
            async with db.begin_nested():
                await sync_user_roles(db, user.id, guild_id, member.role_ids)
            synced += 1
        except Exception as exc:
            logger.error("Failed to sync roles for user %s in guild %s: %s", user.id, guild_id, exc)
    return synced


async def full_guild_sync(
    db: AsyncSession,
    guild_id: int,
    roles: list[RoleData],
    channels: list[ChannelData],
    members: list[MemberData] | None,
    now: datetime | None = None,
) -> dict:
    """Replace the mirrored roles, channels and members of one guild.

    Assumes the guild row exists (call upsert_guild first) and that the caller
    has already checked needs_sync. members=None means the member list could
    not be loaded: mirrored members and role memberships are left untouched.
    Returns a summary dict.
    """
    stats = {
        "roles": await replace_roles(db, guild_id, roles),
        "channels": await replace_channels(db, guild_id, channels),
        "members": 0,
        "user_roles": 0,
    }
    if members is None:
        logger.warning("No member list for guild %s, keeping mirrored members", guild_id)
    else:
        stats["members"] = await replace_members(db, guild_id, members)
        stats["user_roles"] = await sync_guild_member_roles(db, guild_id, members)
    await mark_synced(db, guild_id, now)
    logger.info(
        "Full sync of guild %s: %d roles, %d channels, %d members, %d app users",
        guild_id,
        stats["roles"],
        stats["channels"],
        stats["members"],
        stats["user_roles"],
    )
    return stats


# ---------------------------------------------------------------------------
# Channel activity (buries the upcoming-fleet list)
# ---------------------------------------------------------------------------


async def record_channel_activity(
    db: AsyncSession, channel_id: int, message_id: int, at: datetime
) -> bool:
    """Bump last_message_at for a channel that carries a fleet list.

    The list message itself does not count. Returns whether a row changed.
    """
    result = await db.execute(
        select(ChannelFleetList)
        .where(ChannelFleetList.channel_id == str(channel_id))
        .execution_options(populate_existing=True)
    )
    record = result.scalar_one_or_none()
    if record is None:
        return False
    if record.message_id == str(message_id):
        return False
    record.last_message_at = at
    await db.flush()
    return True
