"""Admin API routes: users, admins, bot invite and mirrored servers (admin required)."""

import logging

import discord
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timerboard.api.user_routes import guild_to_dict
from timerboard.config import get_settings
from timerboard.deps import get_db, require_admin
from tb_common.db.models import User
from tb_common.discord import mirror
from tb_common.errors import BadRequest, NotFound
from tb_common.identity import users as user_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)

BOT_PERMISSIONS = discord.Permissions(
    view_channel=True, send_messages=True, mention_everyone=True
)


def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "discord_id": user.discord_id,
        "name": user.name,
        "admin": user.admin,
    }


# ---------------------------------------------------------------------------
# Users and admins
# ---------------------------------------------------------------------------


@router.get("/users")
async def list_users(page: int = 0, entries: int = 25, db: AsyncSession = Depends(get_db)):
    users, total = await user_service.list_users(db, page=page, per_page=entries)
    return {
        "ok": True,
        "data": {
            "users": [_user_dict(u) for u in users],
            "total": total,
            "page": page,
            "per_page": entries,
        },
    }


@router.get("/admins")
async def list_admins(db: AsyncSession = Depends(get_db)):
    admins = await user_service.list_admins(db)
    return {"ok": True, "data": [_user_dict(u) for u in admins]}


@router.post("/admins/{discord_id}")
async def add_admin(discord_id: int, db: AsyncSession = Depends(get_db)):
    user = await user_service.set_admin(db, discord_id, True)
    return {"ok": True, "data": _user_dict(user)}


@router.delete("/admins/{discord_id}")
async def remove_admin(
    discord_id: int,
    current: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if current.discord_id == str(discord_id):
        raise BadRequest("You cannot remove your own admin access")
    user = await user_service.set_admin(db, discord_id, False)
    return {"ok": True, "data": _user_dict(user)}


@router.get("/bot")
async def bot_invite_url():
    """URL that adds the bot to a server with the permissions fleet posts need."""
    client_id = get_settings().discord_client_id
    if not client_id:
        raise BadRequest("DISCORD_CLIENT_ID is not configured")
    url = discord.utils.oauth_url(
        client_id,
        permissions=BOT_PERMISSIONS,
        scopes=("bot", "applications.commands"),
    )
    return {"ok": True, "data": {"url": url}}


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------


@router.get("/servers")
async def list_servers(db: AsyncSession = Depends(get_db)):
    guilds = await mirror.list_guilds(db)
    return {"ok": True, "data": [guild_to_dict(g) for g in guilds]}


@router.get("/servers/{guild_id}")
async def get_server(guild_id: int, db: AsyncSession = Depends(get_db)):
    guild = await mirror.get_guild(db, guild_id)
    if guild is None:
        raise NotFound("Guild not found")
    return {
        "ok": True,
        "data": {
            **guild_to_dict(guild),
            "last_sync_at": guild.last_sync_at.isoformat() if guild.last_sync_at else None,
        },
    }


@router.get("/servers/{guild_id}/roles")
async def list_server_roles(guild_id: int, db: AsyncSession = Depends(get_db)):
    roles = await mirror.get_roles(db, guild_id)
    return {
        "ok": True,
        "data": [
            {
                "role_id": r.role_id,
                "name": r.name,
                "color": r.color,
                "position": r.position,
            }
            for r in roles
        ],
    }


@router.get("/servers/{guild_id}/channels")
async def list_server_channels(guild_id: int, db: AsyncSession = Depends(get_db)):
    channels = await mirror.get_channels(db, guild_id)
    return {
        "ok": True,
        "data": [
            {"channel_id": c.channel_id, "name": c.name, "position": c.position}
            for c in channels
        ],
    }
