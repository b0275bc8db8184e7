"""Fleet lifecycle service functions.

Fleets live under a category. Creation, update and deletion drive the
Discord notifier; reads apply the category permissions and the hidden-fleet
visibility rules from timerboard.services.visibility.

The notifier argument may be None (no bot token configured), in which case
no Discord traffic happens.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tb_common.auth.permissions import capabilities_by_category, evaluate
from tb_common.db.models import (
    Fleet,
    FleetCategory,
    FleetFieldValue,
    PingFormat,
    User,
)
from tb_common.discord.mirror import get_member
from tb_common.errors import AccessDenied, BadRequest, NotFound, parse_snowflake
from tb_common.identity.users import get_user_by_discord_id
from timerboard.services.category_service import to_timedelta
from timerboard.services.notification_service import (
    FleetNotifier,
    get_fleet_messages,
    load_fleet,
)
from timerboard.services.visibility import is_visible, list_cutoff

logger = logging.getLogger(__name__)

FLEET_TIME_FORMAT = "%Y-%m-%d %H:%M"
PAST_GRACE = timedelta(minutes=2)


@dataclass
class FleetData:
    category_id: int
    name: str
    fleet_time: str
    description: str | None = None
    field_values: dict[int, str] = field(default_factory=dict)
    hidden: bool = False
    disable_reminder: bool = False
    # Update only; None keeps the current commander
    commander_id: int | None = None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def parse_fleet_time(
    text: str, now: datetime | None = None, original: datetime | None = None
) -> datetime:
    """Parse "YYYY-MM-DD HH:MM" (UTC) or "now".

    New times may be at most PAST_GRACE in the past. When updating a fleet
    whose original time has already passed, the time may not move earlier
    than the original; the grace check does not apply then.
    """
    now = now or datetime.now(timezone.utc)
    if text.strip().lower() == "now":
        fleet_time = now
    else:
        try:
            fleet_time = datetime.strptime(text.strip(), FLEET_TIME_FORMAT).replace(
                tzinfo=timezone.utc
            )
        except ValueError as exc:
            raise BadRequest(
                "Invalid fleet time format. Expected 'YYYY-MM-DD HH:MM' or 'now', "
                f"got '{text}': {exc}"
            ) from exc

    original_passed = original is not None and original < now
    if original_passed and fleet_time < original:
        raise BadRequest(
            "Fleet time cannot be set earlier than the original time "
            f"({original.astimezone(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')})"
        )
    if not original_passed and fleet_time < now - PAST_GRACE:
        raise BadRequest("Fleet time cannot be more than 2 minutes in the past")
    return fleet_time


def spacing_display(seconds: int) -> str:
    total_minutes = seconds // 60
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours} hour(s) {minutes} minute(s)"
    return f"{minutes} minute(s)"


async def check_spacing(
    db: AsyncSession,
    category: FleetCategory,
    fleet_time: datetime,
    exclude_fleet_id: int | None = None,
) -> None:
    """Reject a time within ping_lead_time of another fleet in the category."""
    if not category.ping_lead_time:
        return
    window = timedelta(seconds=category.ping_lead_time)
    stmt = select(Fleet).where(
        Fleet.category_id == category.id,
        Fleet.fleet_time >= fleet_time - window,
        Fleet.fleet_time <= fleet_time + window,
    )
    if exclude_fleet_id is not None:
        stmt = stmt.where(Fleet.id != exclude_fleet_id)
    conflict = (await db.execute(stmt.order_by(Fleet.fleet_time).limit(1))).scalar_one_or_none()
    if conflict is not None:
        raise BadRequest(
            "Fleet time conflicts with another fleet in this category. "
            f"Category requires a minimum spacing of {spacing_display(category.ping_lead_time)} "
            "between fleets. Conflicting fleet at "
            f"{conflict.fleet_time.astimezone(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
        )


def _check_fields(category: FleetCategory, field_values: dict[int, str]) -> None:
    allowed = {f.id for f in category.ping_format.fields} if category.ping_format else set()
    for field_id in field_values:
        if field_id not in allowed:
            raise BadRequest(f"Field {field_id} does not belong to this category's ping format")


def _field_rows(field_values: dict[int, str]) -> list[FleetFieldValue]:
    return [
        FleetFieldValue(field_id=field_id, value=value)
        for field_id, value in field_values.items()
        if value is not None
    ]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def _get_guild_category(
    db: AsyncSession, guild_id: int, category_id: int
) -> FleetCategory | None:
    result = await db.execute(
        select(FleetCategory)
        .options(selectinload(FleetCategory.ping_format).selectinload(PingFormat.fields))
        .where(FleetCategory.id == category_id, FleetCategory.guild_id == str(guild_id))
    )
    return result.scalar_one_or_none()


async def _get_guild_fleet(db: AsyncSession, guild_id: int, fleet_id: int) -> Fleet | None:
    fleet = await load_fleet(db, fleet_id)
    if fleet is None or fleet.category.guild_id != str(guild_id):
        return None
    return fleet


async def commander_display_name(db: AsyncSession, guild_id: int, commander_id: str) -> str:
    """Guild nickname, then guild username, then the app user name."""
    member = await get_member(db, guild_id, commander_id)
    if member is not None:
        return member.nickname or member.username
    user = await get_user_by_discord_id(db, commander_id)
    if user is not None:
        return user.name
    return f"User {commander_id}"


async def fleet_to_dict(db: AsyncSession, guild_id: int, fleet: Fleet) -> dict:
    ping_format = fleet.category.ping_format
    names = {f.id: f.name for f in ping_format.fields} if ping_format else {}
    return {
        "id": fleet.id,
        "category_id": fleet.category_id,
        "category_name": fleet.category.name,
        "name": fleet.name,
        "commander_id": str(parse_snowflake(fleet.commander_id)),
        "commander_name": await commander_display_name(db, guild_id, fleet.commander_id),
        "fleet_time": fleet.fleet_time.isoformat(),
        "description": fleet.description,
        "field_values": {
            names[fv.field_id]: fv.value for fv in fleet.field_values if fv.field_id in names
        },
        "created_at": fleet.created_at.isoformat() if fleet.created_at else None,
        "hidden": fleet.hidden,
        "disable_reminder": fleet.disable_reminder,
    }


async def _can_modify(db: AsyncSession, user: User, guild_id: int, fleet: Fleet) -> bool:
    if user.admin or fleet.commander_id == user.discord_id:
        return True
    caps = await evaluate(db, user, guild_id, fleet.category_id)
    return caps.can_manage


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def create_fleet(
    db: AsyncSession,
    notifier: FleetNotifier | None,
    guild_id: int,
    user: User,
    data: FleetData,
    now: datetime | None = None,
) -> dict:
    """Create a fleet commanded by the caller and announce it unless hidden.

    Category access (create) is checked by the route.
    """
    category = await _get_guild_category(db, guild_id, data.category_id)
    if category is None:
        raise NotFound("Category not found")
    if not data.name or not data.name.strip():
        raise BadRequest("Fleet name cannot be empty")
    fleet_time = parse_fleet_time(data.fleet_time, now)
    await check_spacing(db, category, fleet_time)
    _check_fields(category, data.field_values)

    fleet = Fleet(
        category_id=category.id,
        name=data.name.strip(),
        commander_id=user.discord_id,
        fleet_time=fleet_time,
        description=data.description,
        hidden=data.hidden,
        disable_reminder=data.disable_reminder,
        field_values=_field_rows(data.field_values),
    )
    db.add(fleet)
    await db.flush()
    logger.info(
        "Fleet %s (%s) created in category %s by %s",
        fleet.id,
        fleet.name,
        category.id,
        user.discord_id,
    )

    fleet = await load_fleet(db, fleet.id)
    if notifier is not None and not fleet.hidden:
        await notifier.post_fleet_creation(db, fleet)
    return await fleet_to_dict(db, guild_id, fleet)


async def get_fleet(
    db: AsyncSession, guild_id: int, fleet_id: int, user: User, now: datetime | None = None
) -> dict:
    """A fleet the caller may see. Invisible and missing fleets are both NotFound."""
    now = now or datetime.now(timezone.utc)
    fleet = await _get_guild_fleet(db, guild_id, fleet_id)
    if fleet is None:
        raise NotFound("Fleet not found")
    caps = await evaluate(db, user, guild_id, fleet.category_id)
    if not is_visible(
        fleet.fleet_time, fleet.hidden, caps, now, to_timedelta(fleet.category.ping_reminder)
    ):
        raise NotFound("Fleet not found")
    return await fleet_to_dict(db, guild_id, fleet)


async def list_fleets(
    db: AsyncSession,
    guild_id: int,
    user: User,
    page: int = 0,
    per_page: int = 10,
    now: datetime | None = None,
) -> dict:
    """Visible fleets from the last hour onward, ordered by fleet time.

    Visibility is applied before pagination so every page is full.
    """
    now = now or datetime.now(timezone.utc)
    caps = await capabilities_by_category(db, user, guild_id)
    visible: list[Fleet] = []
    if caps:
        result = await db.execute(
            select(Fleet)
            .options(selectinload(Fleet.category))
            .where(Fleet.category_id.in_(list(caps)), Fleet.fleet_time >= list_cutoff(now))
            .order_by(Fleet.fleet_time, Fleet.id)
        )
        visible = [
            f
            for f in result.scalars().all()
            if is_visible(
                f.fleet_time,
                f.hidden,
                caps[f.category_id],
                now,
                to_timedelta(f.category.ping_reminder),
            )
        ]

    total = len(visible)
    page_items = visible[page * per_page : (page + 1) * per_page]
    fleets = [
        {
            "id": f.id,
            "category_id": f.category_id,
            "category_name": f.category.name,
            "name": f.name,
            "commander_id": str(parse_snowflake(f.commander_id)),
            "commander_name": await commander_display_name(db, guild_id, f.commander_id),
            "fleet_time": f.fleet_time.isoformat(),
            "hidden": f.hidden,
            "disable_reminder": f.disable_reminder,
        }
        for f in page_items
    ]
    return {
        "fleets": fleets,
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": math.ceil(total / per_page) if per_page else 0,
    }


async def update_fleet(
    db: AsyncSession,
    notifier: FleetNotifier | None,
    guild_id: int,
    fleet_id: int,
    user: User,
    data: FleetData,
    now: datetime | None = None,
) -> dict:
    fleet = await _get_guild_fleet(db, guild_id, fleet_id)
    if fleet is None:
        raise NotFound("Fleet not found")
    if not await _can_modify(db, user, guild_id, fleet):
        raise AccessDenied(user.discord_id, "You don't have permission to edit this fleet")

    category = await _get_guild_category(db, guild_id, data.category_id)
    if category is None:
        raise BadRequest("New category does not belong to this guild")
    if not data.name or not data.name.strip():
        raise BadRequest("Fleet name cannot be empty")
    fleet_time = parse_fleet_time(data.fleet_time, now, original=fleet.fleet_time)
    await check_spacing(db, category, fleet_time, exclude_fleet_id=fleet.id)
    _check_fields(category, data.field_values)

    fleet.category_id = category.id
    fleet.name = data.name.strip()
    fleet.fleet_time = fleet_time
    fleet.description = data.description
    fleet.hidden = data.hidden
    fleet.disable_reminder = data.disable_reminder
    if data.commander_id is not None:
        fleet.commander_id = str(data.commander_id)

    fleet.field_values.clear()
    await db.flush()
    fleet.field_values.extend(_field_rows(data.field_values))
    await db.flush()
    logger.info("Fleet %s updated by %s", fleet.id, user.discord_id)

    fleet = await load_fleet(db, fleet.id)
    if notifier is not None:
        if await get_fleet_messages(db, fleet.id):
            await notifier.update_fleet_messages(db, fleet)
        elif not fleet.hidden:
            # Hidden at creation so never announced
            await notifier.post_fleet_creation(db, fleet)
    return await fleet_to_dict(db, guild_id, fleet)


async def delete_fleet(
    db: AsyncSession,
    notifier: FleetNotifier | None,
    guild_id: int,
    fleet_id: int,
    user: User,
) -> bool:
    """Cancel the fleet's Discord messages, then delete it. False if absent."""
    fleet = await _get_guild_fleet(db, guild_id, fleet_id)
    if fleet is None:
        return False
    if not await _can_modify(db, user, guild_id, fleet):
        raise AccessDenied(user.discord_id, "You don't have permission to delete this fleet")

    if notifier is not None:
        await notifier.cancel_fleet_messages(db, fleet)
    await db.delete(fleet)
    await db.flush()
    logger.info("Fleet %s deleted by %s", fleet_id, user.discord_id)
    return True
