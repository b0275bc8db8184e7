"""Fleet category management service functions.

A category owns three child collections (access roles, ping roles and
channels) that are replaced wholesale on update. Reads enrich the stored
role and channel IDs with names, colours and positions from the guild mirror.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tb_common.db.models import (
    DiscordChannel,
    DiscordRole,
    FleetCategory,
    FleetCategoryAccessRole,
    FleetCategoryChannel,
    FleetCategoryPingRole,
)
from tb_common.discord.mirror import DEFAULT_ROLE_COLOR
from tb_common.errors import BadRequest, NotFound, parse_snowflake
from timerboard.services.ping_format_service import ping_format_exists_in_guild

logger = logging.getLogger(__name__)


@dataclass
class AccessRoleSpec:
    role_id: int
    can_view: bool = False
    can_create: bool = False
    can_manage: bool = False


@dataclass
class CategoryData:
    name: str
    ping_format_id: int
    ping_lead_time: timedelta | None = None
    ping_reminder: timedelta | None = None
    max_pre_ping: timedelta | None = None
    access_roles: list[AccessRoleSpec] = field(default_factory=list)
    ping_role_ids: list[int] = field(default_factory=list)
    channel_ids: list[int] = field(default_factory=list)


def to_seconds(value: timedelta | None) -> int | None:
    return None if value is None else int(value.total_seconds())


def to_timedelta(seconds: int | None) -> timedelta | None:
    return None if seconds is None else timedelta(seconds=seconds)


def _with_children():
    return (
        selectinload(FleetCategory.access_roles),
        selectinload(FleetCategory.ping_roles),
        selectinload(FleetCategory.channels),
        selectinload(FleetCategory.ping_format),
    )


async def _validate(db: AsyncSession, guild_id: int, data: CategoryData) -> None:
    if not data.name or not data.name.strip():
        raise BadRequest("Category name cannot be empty")
    for label, value in (
        ("Ping lead time", data.ping_lead_time),
        ("Ping reminder", data.ping_reminder),
        ("Max pre-ping", data.max_pre_ping),
    ):
        if value is not None and value.total_seconds() < 0:
            raise BadRequest(f"{label} cannot be negative")
    if not await ping_format_exists_in_guild(db, guild_id, data.ping_format_id):
        raise BadRequest("Ping format does not belong to this guild")

    role_ids = {str(r.role_id) for r in data.access_roles} | {str(r) for r in data.ping_role_ids}
    if role_ids:
        found = await db.execute(
            select(DiscordRole.role_id).where(
                DiscordRole.guild_id == str(guild_id), DiscordRole.role_id.in_(role_ids)
            )
        )
        missing = role_ids - set(found.scalars().all())
        if missing:
            raise BadRequest(f"Role {sorted(missing)[0]} does not belong to this guild")

    channel_ids = {str(c) for c in data.channel_ids}
    if channel_ids:
        found = await db.execute(
            select(DiscordChannel.channel_id).where(
                DiscordChannel.guild_id == str(guild_id),
                DiscordChannel.channel_id.in_(channel_ids),
            )
        )
        missing = channel_ids - set(found.scalars().all())
        if missing:
            raise BadRequest(f"Channel {sorted(missing)[0]} does not belong to this guild")


def _children(data: CategoryData) -> tuple[list, list, list]:
    access = [
        FleetCategoryAccessRole(
            role_id=str(r.role_id),
            can_view=r.can_view,
            can_create=r.can_create,
            can_manage=r.can_manage,
        )
        # last entry wins for a repeated role
        for r in {r.role_id: r for r in data.access_roles}.values()
    ]
    pings = [FleetCategoryPingRole(role_id=str(r)) for r in dict.fromkeys(data.ping_role_ids)]
    channels = [FleetCategoryChannel(channel_id=str(c)) for c in dict.fromkeys(data.channel_ids)]
    return access, pings, channels


async def get_category(db: AsyncSession, guild_id: int, category_id: int) -> FleetCategory | None:
    result = await db.execute(
        select(FleetCategory)
        .options(*_with_children())
        .where(FleetCategory.id == category_id, FleetCategory.guild_id == str(guild_id))
    )
    return result.scalar_one_or_none()


async def category_exists_in_guild(db: AsyncSession, guild_id: int, category_id: int) -> bool:
    result = await db.execute(
        select(FleetCategory.id).where(
            FleetCategory.id == category_id, FleetCategory.guild_id == str(guild_id)
        )
    )
    return result.scalar_one_or_none() is not None


async def create_category(db: AsyncSession, guild_id: int, data: CategoryData) -> FleetCategory:
    await _validate(db, guild_id, data)
    access, pings, channels = _children(data)
    category = FleetCategory(
        guild_id=str(guild_id),
        ping_format_id=data.ping_format_id,
        name=data.name.strip(),
        ping_lead_time=to_seconds(data.ping_lead_time),
        ping_reminder=to_seconds(data.ping_reminder),
        max_pre_ping=to_seconds(data.max_pre_ping),
        access_roles=access,
        ping_roles=pings,
        channels=channels,
    )
    db.add(category)
    await db.flush()
    logger.info("Created fleet category %s (%s) in guild %s", category.id, category.name, guild_id)
    return await get_category(db, guild_id, category.id)


async def update_category(
    db: AsyncSession, guild_id: int, category_id: int, data: CategoryData
) -> FleetCategory:
    """Update scalar fields and replace every child collection atomically."""
    category = await get_category(db, guild_id, category_id)
    if category is None:
        raise NotFound("Category not found")
    await _validate(db, guild_id, data)

    async with db.begin_nested():
        category.name = data.name.strip()
        category.ping_format_id = data.ping_format_id
        category.ping_lead_time = to_seconds(data.ping_lead_time)
        category.ping_reminder = to_seconds(data.ping_reminder)
        category.max_pre_ping = to_seconds(data.max_pre_ping)

        # Deletes must hit the database before the re-inserts or the unique
        # (category_id, role_id/channel_id) constraints trip.
        category.access_roles.clear()
        category.ping_roles.clear()
        category.channels.clear()
        await db.flush()

        access, pings, channels = _children(data)
        category.access_roles.extend(access)
        category.ping_roles.extend(pings)
        category.channels.extend(channels)
        await db.flush()

    db.expire(category)
    logger.info("Updated fleet category %s in guild %s", category_id, guild_id)
    return await get_category(db, guild_id, category_id)


async def delete_category(db: AsyncSession, guild_id: int, category_id: int) -> bool:
    category = await get_category(db, guild_id, category_id)
    if category is None:
        return False
    await db.delete(category)
    await db.flush()
    logger.info("Deleted fleet category %s in guild %s", category_id, guild_id)
    return True


async def list_categories(
    db: AsyncSession, guild_id: int, page: int = 0, per_page: int = 10
) -> dict:
    """Paginated categories ordered by name, each with child collection counts."""
    total = (
        await db.execute(
            select(func.count(FleetCategory.id)).where(FleetCategory.guild_id == str(guild_id))
        )
    ).scalar_one()
    result = await db.execute(
        select(FleetCategory)
        .options(*_with_children())
        .where(FleetCategory.guild_id == str(guild_id))
        .order_by(FleetCategory.name, FleetCategory.id)
        .offset(page * per_page)
        .limit(per_page)
    )
    return {
        "items": list(result.scalars().all()),
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": math.ceil(total / per_page) if per_page else 0,
    }


async def categories_by_ping_format(
    db: AsyncSession, guild_id: int, ping_format_id: int
) -> list[FleetCategory]:
    result = await db.execute(
        select(FleetCategory)
        .where(
            FleetCategory.guild_id == str(guild_id),
            FleetCategory.ping_format_id == ping_format_id,
        )
        .order_by(FleetCategory.name)
    )
    return list(result.scalars().all())


async def category_ids_by_channel(db: AsyncSession, channel_id: int) -> list[int]:
    result = await db.execute(
        select(FleetCategoryChannel.category_id).where(
            FleetCategoryChannel.channel_id == str(channel_id)
        )
    )
    return sorted(set(result.scalars().all()))


async def get_categories_by_ids(db: AsyncSession, category_ids: list[int]) -> list[FleetCategory]:
    if not category_ids:
        return []
    result = await db.execute(
        select(FleetCategory)
        .options(*_with_children())
        .where(FleetCategory.id.in_(category_ids))
        .order_by(FleetCategory.name)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------


async def category_details(db: AsyncSession, category: FleetCategory) -> dict:
    """Serialise a category with role and channel data pulled from the mirror.

    Roles or channels missing from the mirror fall back to placeholder names.
    Roles are ordered by position (highest first), channels by position.
    """
    role_ids = {r.role_id for r in category.access_roles} | {r.role_id for r in category.ping_roles}
    roles: dict[str, DiscordRole] = {}
    if role_ids:
        result = await db.execute(select(DiscordRole).where(DiscordRole.role_id.in_(role_ids)))
        roles = {r.role_id: r for r in result.scalars().all()}

    channel_ids = {c.channel_id for c in category.channels}
    channels: dict[str, DiscordChannel] = {}
    if channel_ids:
        result = await db.execute(
            select(DiscordChannel).where(DiscordChannel.channel_id.in_(channel_ids))
        )
        channels = {c.channel_id: c for c in result.scalars().all()}

    def role_info(role_id: str) -> dict:
        role = roles.get(role_id)
        return {
            "role_id": str(parse_snowflake(role_id)),
            "role_name": role.name if role else f"Unknown Role ({role_id})",
            "role_color": role.color if role else DEFAULT_ROLE_COLOR,
            "position": role.position if role else 0,
        }

    access_roles = [
        {
            **role_info(r.role_id),
            "can_view": r.can_view,
            "can_create": r.can_create,
            "can_manage": r.can_manage,
        }
        for r in category.access_roles
    ]
    ping_roles = [role_info(r.role_id) for r in category.ping_roles]
    channel_list = []
    for c in category.channels:
        channel = channels.get(c.channel_id)
        channel_list.append(
            {
                "channel_id": str(parse_snowflake(c.channel_id)),
                "channel_name": channel.name if channel else f"Unknown Channel ({c.channel_id})",
                "position": channel.position if channel else 0,
            }
        )

    access_roles.sort(key=lambda r: r["position"], reverse=True)
    ping_roles.sort(key=lambda r: r["position"], reverse=True)
    channel_list.sort(key=lambda c: c["position"])

    return {
        "id": category.id,
        "guild_id": str(parse_snowflake(category.guild_id)),
        "name": category.name,
        "ping_format_id": category.ping_format_id,
        "ping_format_name": category.ping_format.name if category.ping_format else None,
        "ping_lead_time": category.ping_lead_time,
        "ping_reminder": category.ping_reminder,
        "max_pre_ping": category.max_pre_ping,
        "access_roles": access_roles,
        "ping_roles": ping_roles,
        "channels": channel_list,
    }


def category_summary(category: FleetCategory) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "ping_format_id": category.ping_format_id,
        "ping_format_name": category.ping_format.name if category.ping_format else None,
        "ping_lead_time": category.ping_lead_time,
        "ping_reminder": category.ping_reminder,
        "max_pre_ping": category.max_pre_ping,
        "access_roles_count": len(category.access_roles),
        "ping_roles_count": len(category.ping_roles),
        "channels_count": len(category.channels),
    }
