"""Inbound gateway events and their single dispatch point.

The bot translates each discord.py callback into a GatewayEvent carrying plain
data, and dispatch() routes it to the matching mirror operation inside its own
session. Handlers log failures and never raise back into the gateway loop.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tb_common.discord import mirror
from tb_common.discord.mirror import ChannelData, MemberData, RoleData

logger = logging.getLogger(__name__)


class GatewayEventKind(str, Enum):
    GUILD_CREATE = "guild_create"
    ROLE_CREATE = "guild_role_create"
    ROLE_UPDATE = "guild_role_update"
    ROLE_DELETE = "guild_role_delete"
    CHANNEL_CREATE = "channel_create"
    CHANNEL_UPDATE = "channel_update"
    CHANNEL_DELETE = "channel_delete"
    MEMBER_ADD = "guild_member_addition"
    MEMBER_REMOVE = "guild_member_removal"
    MEMBER_UPDATE = "guild_member_update"
    MESSAGE = "message"


@dataclass
class GuildSnapshot:
    name: str
    icon_hash: str | None = None
    roles: list[RoleData] = field(default_factory=list)
    channels: list[ChannelData] = field(default_factory=list)
    # Member lists are expensive, so they are only fetched once a sync is known to be due
    load_members: Callable[[], Awaitable[list[MemberData]]] | None = None


@dataclass
class MessageData:
    channel_id: int
    message_id: int
    created_at: datetime


@dataclass
class GatewayEvent:
    kind: GatewayEventKind
    guild_id: int
    payload: Any = None


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _guild_create(db: AsyncSession, guild_id: int, snapshot: GuildSnapshot) -> None:
    await mirror.upsert_guild(db, guild_id, snapshot.name, snapshot.icon_hash)
    if not await mirror.needs_sync(db, guild_id):
        logger.debug(
            "Skipping full sync for guild %s (synced within last %s)",
            guild_id,
            mirror.SYNC_BACKOFF,
        )
        return
    members: list[MemberData] | None = None
    if snapshot.load_members is not None:
        members = await snapshot.load_members()
    await mirror.full_guild_sync(db, guild_id, snapshot.roles, snapshot.channels, members)


async def _member_upsert(db: AsyncSession, guild_id: int, member: MemberData) -> None:
    await mirror.upsert_member(db, guild_id, member)
    if not await mirror.sync_member_roles(db, guild_id, member):
        logger.debug(
            "Did not sync roles for %s in guild %s (not logged into app)",
            member.user_id,
            guild_id,
        )


async def _message(db: AsyncSession, guild_id: int, message: MessageData) -> None:
    await mirror.record_channel_activity(
        db, message.channel_id, message.message_id, message.created_at
    )


async def _apply(db: AsyncSession, event: GatewayEvent) -> None:
    kind = event.kind
    guild_id = event.guild_id
    payload = event.payload

    if kind is GatewayEventKind.GUILD_CREATE:
        await _guild_create(db, guild_id, payload)
    elif kind in (GatewayEventKind.ROLE_CREATE, GatewayEventKind.ROLE_UPDATE):
        await mirror.upsert_role(db, guild_id, payload)
    elif kind is GatewayEventKind.ROLE_DELETE:
        await mirror.delete_role(db, payload)
    elif kind in (GatewayEventKind.CHANNEL_CREATE, GatewayEventKind.CHANNEL_UPDATE):
        await mirror.upsert_channel(db, guild_id, payload)
    elif kind is GatewayEventKind.CHANNEL_DELETE:
        await mirror.delete_channel(db, payload)
    elif kind in (GatewayEventKind.MEMBER_ADD, GatewayEventKind.MEMBER_UPDATE):
        await _member_upsert(db, guild_id, payload)
    elif kind is GatewayEventKind.MEMBER_REMOVE:
        await mirror.remove_member(db, guild_id, payload)
    elif kind is GatewayEventKind.MESSAGE:
        await _message(db, guild_id, payload)
    else:
        raise ValueError(f"Unhandled gateway event kind: {kind}")


async def dispatch(event: GatewayEvent, session_factory: async_sessionmaker) -> bool:
    """Apply one gateway event in its own transaction.

    Returns True on success. Any failure is logged and rolled back.
    """
    async with session_factory() as db:
        try:
            await _apply(db, event)
            await db.commit()
            return True
        except Exception as exc:
            await db.rollback()
            logger.error(
                "Failed to handle %s for guild %s: %s", event.kind.value, event.guild_id, exc
            )
            return False
