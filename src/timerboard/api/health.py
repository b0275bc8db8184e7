"""Health check endpoint: database, Discord gateway and notification scheduler."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timerboard.deps import get_db, get_discord_bot
from tb_common.db.models import DiscordGuild

logger = logging.getLogger(__name__)

router = APIRouter()


def _bot_status(bot) -> str:
    if bot is None:
        return "disabled"
    return "ready" if bot.is_ready() else "connecting"


def _scheduler_status(request: Request) -> dict:
    fleet_scheduler = getattr(request.app.state, "fleet_scheduler", None)
    if fleet_scheduler is None:
        return {"running": False, "jobs": []}
    scheduler = fleet_scheduler.scheduler
    return {
        "running": scheduler.running,
        "jobs": sorted(job.id for job in scheduler.get_jobs()),
    }


@router.get("/health")
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
    bot=Depends(get_discord_bot),
):
    guilds = None
    try:
        guilds = (await db.execute(select(func.count(DiscordGuild.guild_id)))).scalar_one()
        db_status = "connected"
    except Exception as exc:
        await db.rollback()
        logger.warning("Health check database query failed: %s", exc)
        db_status = f"error: {exc}"

    return {
        "ok": True,
        "data": {
            "db": db_status,
            "guilds": guilds,
            "bot": _bot_status(bot),
            "scheduler": _scheduler_status(request),
            "version": "0.1.0",
        },
    }
