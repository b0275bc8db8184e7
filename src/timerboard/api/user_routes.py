"""Routes for the logged-in user: their guilds and the categories they can post in."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timerboard.deps import get_current_user, get_db
from timerboard.services import category_service
from tb_common.auth.permissions import creatable_category_ids, manageable_category_ids
from tb_common.db.models import DiscordGuild, User
from tb_common.discord.mirror import list_guilds_for_user

router = APIRouter(prefix="/api/user", tags=["user"])


def guild_to_dict(guild: DiscordGuild) -> dict:
    return {
        "guild_id": guild.guild_id,
        "name": guild.name,
        "icon_hash": guild.icon_hash,
    }


@router.get("/guilds")
async def my_guilds(
    user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)
):
    """Guilds the user is a member of. Admins see every guild."""
    guilds = await list_guilds_for_user(db, user)
    return {"ok": True, "data": [guild_to_dict(g) for g in guilds]}


@router.get("/guilds/{guild_id}/categories/manageable")
async def my_manageable_categories(
    guild_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Categories the user can create fleets in or manage."""
    ids = set(await creatable_category_ids(db, user, guild_id))
    ids |= set(await manageable_category_ids(db, user, guild_id))
    categories = await category_service.get_categories_by_ids(db, sorted(ids))
    return {
        "ok": True,
        "data": [category_service.category_summary(c) for c in categories],
    }
