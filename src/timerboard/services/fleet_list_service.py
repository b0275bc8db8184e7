"""Per-channel "Upcoming Events" list message.

Each channel that receives fleet posts carries one list embed linking the
latest reminder (or creation) message of every upcoming public fleet. While
the list is still the newest message in the channel it is edited in place;
once anything else has been posted it is deleted and reposted at the bottom.
"""

import logging
from datetime import datetime, timezone

import discord
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from tb_common.db.models import (
    ChannelFleetList,
    Fleet,
    FleetCategory,
    FleetCategoryChannel,
    FleetMessage,
)
from tb_common.errors import parse_snowflake
from timerboard.services.notification_service import COLOR_LIST, get_channel, unix_ts

logger = logging.getLogger(__name__)

LINKED_TYPES = ("creation", "reminder")


def jump_link(guild_id: str, channel_id: str, message_id: str) -> str:
    return f"https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"


def build_list_embed(lines: list[str], app_url: str, now: datetime) -> discord.Embed:
    return discord.Embed(
        title=".:Upcoming Events:.",
        url=app_url,
        description="".join(lines),
        color=COLOR_LIST,
        timestamp=now,
    )


async def tracked_channel_ids(db: AsyncSession) -> list[str]:
    """Every channel with a list message or a category posting to it."""
    listed = await db.execute(select(ChannelFleetList.channel_id))
    configured = await db.execute(select(FleetCategoryChannel.channel_id).distinct())
    return sorted(set(listed.scalars().all()) | set(configured.scalars().all()))


async def list_lines(db: AsyncSession, channel_id: str, now: datetime) -> list[str]:
    """One bullet per upcoming non-hidden fleet that has a message in the channel."""
    category_rows = await db.execute(
        select(FleetCategory.id, FleetCategory.name, FleetCategory.guild_id)
        .join(FleetCategoryChannel, FleetCategoryChannel.category_id == FleetCategory.id)
        .where(FleetCategoryChannel.channel_id == channel_id)
    )
    categories = {row.id: row for row in category_rows}
    if not categories:
        return []

    fleets = (
        await db.execute(
            select(Fleet)
            .where(
                Fleet.category_id.in_(categories),
                Fleet.fleet_time > now,
                Fleet.hidden.is_(False),
            )
            .order_by(Fleet.fleet_time, Fleet.id)
        )
    ).scalars().all()
    if not fleets:
        return []

    message_rows = await db.execute(
        select(FleetMessage).where(
            FleetMessage.fleet_id.in_([f.id for f in fleets]),
            FleetMessage.channel_id == channel_id,
            FleetMessage.message_type.in_(LINKED_TYPES),
        )
    )
    latest: dict[int, FleetMessage] = {}
    for message in message_rows.scalars().all():
        current = latest.get(message.fleet_id)
        if current is None or (message.created_at, message.id) > (current.created_at, current.id):
            latest[message.fleet_id] = message

    lines = []
    for fleet in fleets:
        message = latest.get(fleet.id)
        if message is None:
            continue
        category = categories[fleet.category_id]
        link = jump_link(category.guild_id, channel_id, message.message_id)
        lines.append(
            f"• {category.name} - [{fleet.name}]({link}) - <t:{unix_ts(fleet.fleet_time)}:R>\n"
        )
    return lines


async def _save_list_message(db: AsyncSession, channel_id: str, message_id: str, now: datetime):
    stmt = insert(ChannelFleetList).values(
        channel_id=channel_id,
        message_id=message_id,
        last_message_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ChannelFleetList.channel_id],
        set_={
            "message_id": stmt.excluded.message_id,
            "last_message_at": stmt.excluded.last_message_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)


async def refresh_channel_list(
    db: AsyncSession,
    bot: discord.Client,
    channel_id: str,
    app_url: str,
    now: datetime | None = None,
) -> bool:
    """Edit or repost the list in one channel. Returns True when Discord accepted it."""
    now = now or datetime.now(timezone.utc)
    embed = build_list_embed(await list_lines(db, channel_id, now), app_url, now)
    # The row is written with a Core upsert, so bypass the identity map
    existing = (
        await db.execute(
            select(ChannelFleetList)
            .where(ChannelFleetList.channel_id == channel_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()

    try:
        channel = await get_channel(bot, parse_snowflake(channel_id))
    except Exception as exc:
        logger.error("Failed to resolve channel %s for fleet list: %s", channel_id, exc)
        return False

    if existing is not None and existing.updated_at >= existing.last_message_at:
        try:
            await channel.get_partial_message(parse_snowflake(existing.message_id)).edit(
                embed=embed
            )
        except Exception as exc:
            logger.error("Failed to edit upcoming fleets list in channel %s: %s", channel_id, exc)
            return False
        await _save_list_message(db, channel_id, existing.message_id, now)
        logger.debug("Edited upcoming fleets list in channel %s", channel_id)
        return True

    if existing is not None:
        try:
            await channel.get_partial_message(parse_snowflake(existing.message_id)).delete()
        except Exception as exc:
            logger.warning(
                "Failed to delete old upcoming fleets list in channel %s: %s", channel_id, exc
            )

    try:
        msg = await channel.send(embed=embed)
    except Exception as exc:
        logger.error("Failed to post upcoming fleets list in channel %s: %s", channel_id, exc)
        return False
    await _save_list_message(db, channel_id, str(msg.id), now)
    logger.info("Posted upcoming fleets list in channel %s", channel_id)
    return True
