"""Fleet API routes: list, create, view, edit and cancel fleets in a guild."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from timerboard.deps import get_current_user, get_db, get_notifier, parse_body_id
from timerboard.services import fleet_service
from timerboard.services.fleet_service import FleetData
from timerboard.services.notification_service import FleetNotifier
from tb_common.auth.permissions import Permission, require
from tb_common.db.models import User
from tb_common.errors import NotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/guilds/{guild_id}/fleets", tags=["fleets"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class FleetBody(BaseModel):
    category_id: int
    name: str
    fleet_time: str  # "YYYY-MM-DD HH:MM" UTC, or "now"
    description: str | None = None
    field_values: dict[int, str] = {}
    hidden: bool = False
    disable_reminder: bool = False
    commander_id: str | None = None

    def to_data(self) -> FleetData:
        commander_id = None
        if self.commander_id:
            commander_id = parse_body_id(self.commander_id, "commander ID")
        return FleetData(
            category_id=self.category_id,
            name=self.name,
            fleet_time=self.fleet_time,
            description=self.description,
            field_values=self.field_values,
            hidden=self.hidden,
            disable_reminder=self.disable_reminder,
            commander_id=commander_id,
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("")
async def list_fleets(
    guild_id: int,
    page: int = 0,
    entries: int = 10,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = await fleet_service.list_fleets(db, guild_id, user, page=page, per_page=entries)
    return {"ok": True, "data": data}


@router.post("", status_code=201)
async def create_fleet(
    guild_id: int,
    body: FleetBody,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: FleetNotifier | None = Depends(get_notifier),
):
    await require(db, user, [Permission.category_create(guild_id, body.category_id)])
    fleet = await fleet_service.create_fleet(db, notifier, guild_id, user, body.to_data())
    return {"ok": True, "data": fleet}


@router.get("/{fleet_id}")
async def get_fleet(
    guild_id: int,
    fleet_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    fleet = await fleet_service.get_fleet(db, guild_id, fleet_id, user)
    return {"ok": True, "data": fleet}


@router.put("/{fleet_id}")
async def update_fleet(
    guild_id: int,
    fleet_id: int,
    body: FleetBody,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: FleetNotifier | None = Depends(get_notifier),
):
    fleet = await fleet_service.update_fleet(
        db, notifier, guild_id, fleet_id, user, body.to_data()
    )
    return {"ok": True, "data": fleet}


@router.delete("/{fleet_id}")
async def delete_fleet(
    guild_id: int,
    fleet_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: FleetNotifier | None = Depends(get_notifier),
):
    deleted = await fleet_service.delete_fleet(db, notifier, guild_id, fleet_id, user)
    if not deleted:
        raise NotFound("Fleet not found")
    return {"ok": True, "data": {"deleted": True}}
