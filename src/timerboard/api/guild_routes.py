"""Guild-scoped routes for logged-in members: member list and category details."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timerboard.deps import get_current_user, get_db
from timerboard.services import category_service, ping_format_service
from tb_common.auth.permissions import Permission, require
from tb_common.db.models import User
from tb_common.discord.mirror import get_members
from tb_common.errors import NotFound

router = APIRouter(prefix="/api/guilds/{guild_id}", tags=["guilds"])


@router.get("/members")
async def list_members(
    guild_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    members = await get_members(db, guild_id)
    return {
        "ok": True,
        "data": [
            {
                "user_id": m.user_id,
                "username": m.username,
                "display_name": m.nickname or m.username,
            }
            for m in members
        ],
    }


@router.get("/categories/{category_id}/details")
async def category_details(
    guild_id: int,
    category_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Category configuration plus the ping format fields a fleet form needs."""
    await require(db, user, [Permission.category_view(guild_id, category_id)])
    category = await category_service.get_category(db, guild_id, category_id)
    if category is None:
        raise NotFound("Category not found")
    ping_format = await ping_format_service.get_ping_format(db, guild_id, category.ping_format_id)
    details = await category_service.category_details(db, category)
    details["fields"] = [
        {
            "id": f.id,
            "name": f.name,
            "priority": f.priority,
            "field_type": f.field_type,
            "default_value": f.default_value,
        }
        for f in (ping_format.fields if ping_format else [])
    ]
    return {"ok": True, "data": details}
