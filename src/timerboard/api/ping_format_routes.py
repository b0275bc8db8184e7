"""Admin API routes: ping formats of a mirrored server."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from timerboard.deps import get_db, require_admin
from timerboard.services import ping_format_service
from timerboard.services.category_service import categories_by_ping_format
from timerboard.services.ping_format_service import FieldSpec
from tb_common.db.models import PingFormat
from tb_common.errors import NotFound

router = APIRouter(
    prefix="/api/admin/servers/{guild_id}/ping-formats",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


class FieldBody(BaseModel):
    id: int | None = None
    name: str
    priority: int = 0
    field_type: str = "text"
    default_value: str | None = None


class PingFormatBody(BaseModel):
    name: str
    fields: list[FieldBody] = []

    def field_specs(self) -> list[FieldSpec]:
        return [FieldSpec(**f.model_dump()) for f in self.fields]


def _format_dict(ping_format: PingFormat, category_count: int | None = None) -> dict:
    data = {
        "id": ping_format.id,
        "guild_id": ping_format.guild_id,
        "name": ping_format.name,
        "fields": [
            {
                "id": f.id,
                "name": f.name,
                "priority": f.priority,
                "field_type": f.field_type,
                "default_value": f.default_value,
            }
            for f in ping_format.fields
        ],
    }
    if category_count is not None:
        data["fleet_category_count"] = category_count
    return data


@router.get("")
async def list_ping_formats(
    guild_id: int, page: int = 0, entries: int = 10, db: AsyncSession = Depends(get_db)
):
    result = await ping_format_service.list_ping_formats(db, guild_id, page=page, per_page=entries)
    return {
        "ok": True,
        "data": {
            **result,
            "items": [_format_dict(pf, count) for pf, count in result["items"]],
        },
    }


@router.post("", status_code=201)
async def create_ping_format(
    guild_id: int, body: PingFormatBody, db: AsyncSession = Depends(get_db)
):
    ping_format = await ping_format_service.create_ping_format(
        db, guild_id, body.name, body.field_specs()
    )
    return {"ok": True, "data": _format_dict(ping_format, 0)}


@router.get("/{format_id}")
async def get_ping_format(guild_id: int, format_id: int, db: AsyncSession = Depends(get_db)):
    ping_format = await ping_format_service.get_ping_format(db, guild_id, format_id)
    if ping_format is None:
        raise NotFound("Ping format not found")
    count = await ping_format_service.category_usage_count(db, format_id)
    return {"ok": True, "data": _format_dict(ping_format, count)}


@router.put("/{format_id}")
async def update_ping_format(
    guild_id: int, format_id: int, body: PingFormatBody, db: AsyncSession = Depends(get_db)
):
    ping_format = await ping_format_service.update_ping_format(
        db, guild_id, format_id, body.name, body.field_specs()
    )
    count = await ping_format_service.category_usage_count(db, format_id)
    return {"ok": True, "data": _format_dict(ping_format, count)}


@router.delete("/{format_id}")
async def delete_ping_format(guild_id: int, format_id: int, db: AsyncSession = Depends(get_db)):
    deleted = await ping_format_service.delete_ping_format(db, guild_id, format_id)
    if not deleted:
        raise NotFound("Ping format not found")
    return {"ok": True, "data": {"deleted": True}}


@router.get("/{format_id}/categories")
async def list_ping_format_categories(
    guild_id: int, format_id: int, db: AsyncSession = Depends(get_db)
):
    """Categories still using the format, so admins can see what blocks a delete."""
    categories = await categories_by_ping_format(db, guild_id, format_id)
    return {
        "ok": True,
        "data": [{"id": c.id, "name": c.name} for c in categories],
    }
