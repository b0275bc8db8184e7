"""
Scheduler for periodic fleet notification work.

Uses APScheduler to run:
- Reminders and form-ups: every minute
- Upcoming fleet list refresh: every fleet_list_interval_seconds
- Discord guild sync: every guild_sync_interval_minutes (each guild still
  honours the 30 minute backoff in tb_common.discord.mirror)

Every fleet and every channel is handled in its own session, so one failure
is logged and does not stop the rest of the run.
"""

import logging
from datetime import datetime, timedelta, timezone

import discord
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tb_common.db.models import Fleet, FleetCategory, FleetMessage
from tb_common.discord.bot import guild_snapshot
from tb_common.discord.events import GatewayEvent, GatewayEventKind, dispatch
from timerboard.services.category_service import to_timedelta
from timerboard.services.fleet_list_service import refresh_channel_list, tracked_channel_ids
from timerboard.services.notification_service import FleetNotifier, load_fleet
from timerboard.services.visibility import reveal_at

logger = logging.getLogger(__name__)

FORMUP_MAX_AGE = timedelta(minutes=5)


def _no_message(message_type: str):
    return ~exists().where(
        FleetMessage.fleet_id == Fleet.id, FleetMessage.message_type == message_type
    )


async def due_reminders(db: AsyncSession, now: datetime) -> list[int]:
    """Fleets whose reminder time has passed but which have not started yet."""
    result = await db.execute(
        select(Fleet.id, Fleet.fleet_time, FleetCategory.ping_reminder)
        .join(FleetCategory, FleetCategory.id == Fleet.category_id)
        .where(
            Fleet.hidden.is_(False),
            Fleet.disable_reminder.is_(False),
            FleetCategory.ping_reminder.is_not(None),
            Fleet.fleet_time > now,
            _no_message("reminder"),
        )
        .order_by(Fleet.fleet_time, Fleet.id)
    )
    return [
        row.id
        for row in result
        if reveal_at(row.fleet_time, to_timedelta(row.ping_reminder)) <= now
    ]


async def due_formups(db: AsyncSession, now: datetime) -> list[int]:
    """Fleets that started within FORMUP_MAX_AGE and have no form-up yet."""
    result = await db.execute(
        select(Fleet.id)
        .where(
            Fleet.fleet_time <= now,
            Fleet.fleet_time >= now - FORMUP_MAX_AGE,
            _no_message("formup"),
        )
        .order_by(Fleet.fleet_time, Fleet.id)
    )
    return list(result.scalars().all())


class FleetNotificationScheduler:
    """Manages all scheduled fleet notification tasks."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        discord_bot: discord.Client,
        app_url: str,
        list_interval_seconds: int = 60,
        guild_sync_interval_minutes: int = 30,
    ):
        self.session_factory = session_factory
        self.discord_bot = discord_bot
        self.app_url = app_url
        self.notifier = FleetNotifier(discord_bot, app_url)
        self.list_interval_seconds = list_interval_seconds
        self.guild_sync_interval_minutes = guild_sync_interval_minutes

        self.scheduler = AsyncIOScheduler()

    async def start(self):
        self.scheduler.add_job(
            self.run_notifications,
            IntervalTrigger(minutes=1),
            id="fleet_notifications",
            name="Fleet Reminders and Form-ups",
            misfire_grace_time=60,
            max_instances=1,
        )

        self.scheduler.add_job(
            self.run_fleet_lists,
            IntervalTrigger(seconds=self.list_interval_seconds),
            id="fleet_lists",
            name="Upcoming Fleet List Refresh",
            misfire_grace_time=60,
            max_instances=1,
        )

        self.scheduler.add_job(
            self.run_guild_sync,
            IntervalTrigger(minutes=self.guild_sync_interval_minutes),
            id="guild_sync",
            name="Discord Guild Sync",
            misfire_grace_time=300,
            max_instances=1,
        )

        self.scheduler.start()
        logger.info("Fleet notification scheduler started")

    async def stop(self):
        self.scheduler.shutdown()

    async def run_notifications(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        reminders = await self.run_reminders(now)
        formups = await self.run_formups(now)
        return {"reminders": reminders, "formups": formups}

    async def run_reminders(self, now: datetime) -> int:
        async with self.session_factory() as db:
            fleet_ids = await due_reminders(db, now)
        sent = 0
        for fleet_id in fleet_ids:
            if await self._notify(fleet_id, "reminder"):
                sent += 1
        return sent

    async def run_formups(self, now: datetime) -> int:
        async with self.session_factory() as db:
            fleet_ids = await due_formups(db, now)
        sent = 0
        for fleet_id in fleet_ids:
            if await self._notify(fleet_id, "formup"):
                sent += 1
        return sent

    async def _notify(self, fleet_id: int, message_type: str) -> bool:
        async with self.session_factory() as db:
            try:
                fleet = await load_fleet(db, fleet_id)
                if fleet is None:
                    return False
                logger.debug(
                    "Sending %s for fleet %s (%s) scheduled for %s",
                    message_type,
                    fleet.id,
                    fleet.name,
                    fleet.fleet_time,
                )
                if message_type == "reminder":
                    await self.notifier.post_fleet_reminder(db, fleet)
                else:
                    await self.notifier.post_fleet_formup(db, fleet)
                await db.commit()
                return True
            except Exception as exc:
                await db.rollback()
                logger.error("Failed to send %s for fleet %s: %s", message_type, fleet_id, exc)
                return False

    async def run_fleet_lists(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self.session_factory() as db:
            channel_ids = await tracked_channel_ids(db)
        logger.debug("Updating upcoming fleet lists for %d channels", len(channel_ids))

        refreshed = 0
        for channel_id in channel_ids:
            async with self.session_factory() as db:
                try:
                    if await refresh_channel_list(
                        db, self.discord_bot, channel_id, self.app_url, now
                    ):
                        refreshed += 1
                    await db.commit()
                except Exception as exc:
                    await db.rollback()
                    logger.error("Failed to refresh fleet list in channel %s: %s", channel_id, exc)
        return refreshed

    async def run_guild_sync(self) -> int:
        """Replay GUILD_CREATE for every connected guild. The backoff skips fresh ones."""
        synced = 0
        for guild in list(self.discord_bot.guilds):
            event = GatewayEvent(
                kind=GatewayEventKind.GUILD_CREATE,
                guild_id=guild.id,
                payload=guild_snapshot(guild),
            )
            if await dispatch(event, self.session_factory):
                synced += 1
        return synced
