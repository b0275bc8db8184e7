"""Admin API routes: fleet categories of a mirrored server."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from timerboard.deps import get_db, parse_body_id, require_admin
from timerboard.services import category_service
from timerboard.services.category_service import AccessRoleSpec, CategoryData
from tb_common.errors import NotFound

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/servers/{guild_id}/categories",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class AccessRoleBody(BaseModel):
    role_id: str
    can_view: bool = False
    can_create: bool = False
    can_manage: bool = False


class CategoryBody(BaseModel):
    name: str
    ping_format_id: int
    # Durations in seconds
    ping_lead_time: int | None = None
    ping_reminder: int | None = None
    max_pre_ping: int | None = None
    access_roles: list[AccessRoleBody] = []
    ping_roles: list[str] = []
    channels: list[str] = []

    def to_data(self) -> CategoryData:
        return CategoryData(
            name=self.name,
            ping_format_id=self.ping_format_id,
            ping_lead_time=_seconds(self.ping_lead_time),
            ping_reminder=_seconds(self.ping_reminder),
            max_pre_ping=_seconds(self.max_pre_ping),
            access_roles=[
                AccessRoleSpec(
                    role_id=parse_body_id(r.role_id, "role ID"),
                    can_view=r.can_view,
                    can_create=r.can_create,
                    can_manage=r.can_manage,
                )
                for r in self.access_roles
            ],
            ping_role_ids=[parse_body_id(r, "role ID") for r in self.ping_roles],
            channel_ids=[parse_body_id(c, "channel ID") for c in self.channels],
        )


def _seconds(value: int | None) -> timedelta | None:
    return None if value is None else timedelta(seconds=value)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("")
async def list_categories(
    guild_id: int, page: int = 0, entries: int = 10, db: AsyncSession = Depends(get_db)
):
    result = await category_service.list_categories(db, guild_id, page=page, per_page=entries)
    return {
        "ok": True,
        "data": {
            **result,
            "items": [category_service.category_summary(c) for c in result["items"]],
        },
    }


@router.post("", status_code=201)
async def create_category(guild_id: int, body: CategoryBody, db: AsyncSession = Depends(get_db)):
    category = await category_service.create_category(db, guild_id, body.to_data())
    return {"ok": True, "data": await category_service.category_details(db, category)}


@router.get("/{category_id}")
async def get_category(guild_id: int, category_id: int, db: AsyncSession = Depends(get_db)):
    category = await category_service.get_category(db, guild_id, category_id)
    if category is None:
        raise NotFound("Category not found")
    return {"ok": True, "data": await category_service.category_details(db, category)}


@router.put("/{category_id}")
async def update_category(
    guild_id: int, category_id: int, body: CategoryBody, db: AsyncSession = Depends(get_db)
):
    category = await category_service.update_category(db, guild_id, category_id, body.to_data())
    return {"ok": True, "data": await category_service.category_details(db, category)}


@router.delete("/{category_id}")
async def delete_category(guild_id: int, category_id: int, db: AsyncSession = Depends(get_db)):
    deleted = await category_service.delete_category(db, guild_id, category_id)
    if not deleted:
        raise NotFound("Category not found")
    return {"ok": True, "data": {"deleted": True}}
