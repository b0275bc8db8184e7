"""Ping format management service functions.

A ping format is a named, guild-scoped template owning an ordered list of
fields that fleets in categories using the format can fill in.
"""

import logging
import math
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tb_common.db.models import FleetCategory, PingFormat, PingFormatField
from tb_common.errors import BadRequest, NotFound

logger = logging.getLogger(__name__)

FIELD_TYPES = ("text", "bool")


@dataclass
class FieldSpec:
    name: str
    priority: int = 0
    field_type: str = "text"
    default_value: str | None = None
    id: int | None = None


def _validate_fields(fields: list[FieldSpec]) -> None:
    for f in fields:
        if not f.name or not f.name.strip():
            raise BadRequest("Ping format field name cannot be empty")
        if f.field_type not in FIELD_TYPES:
            raise BadRequest(f"Unknown field type '{f.field_type}'")


async def get_ping_format(
    db: AsyncSession, guild_id: int, format_id: int
) -> PingFormat | None:
    result = await db.execute(
        select(PingFormat)
        .options(selectinload(PingFormat.fields))
        .where(PingFormat.id == format_id, PingFormat.guild_id == str(guild_id))
    )
    return result.scalar_one_or_none()


async def ping_format_exists_in_guild(db: AsyncSession, guild_id: int, format_id: int) -> bool:
    result = await db.execute(
        select(PingFormat.id).where(
            PingFormat.id == format_id, PingFormat.guild_id == str(guild_id)
        )
    )
    return result.scalar_one_or_none() is not None


async def category_usage_count(db: AsyncSession, format_id: int) -> int:
    result = await db.execute(
        select(func.count(FleetCategory.id)).where(FleetCategory.ping_format_id == format_id)
    )
    return result.scalar_one()


async def create_ping_format(
    db: AsyncSession, guild_id: int, name: str, fields: list[FieldSpec]
) -> PingFormat:
    if not name or not name.strip():
        raise BadRequest("Ping format name cannot be empty")
    _validate_fields(fields)
    ping_format = PingFormat(
        guild_id=str(guild_id),
        name=name.strip(),
        fields=[
            PingFormatField(
                name=f.name.strip(),
                priority=f.priority,
                field_type=f.field_type,
                default_value=f.default_value,
            )
            for f in fields
        ],
    )
    db.add(ping_format)
    await db.flush()
    logger.info("Created ping format %s (%s) in guild %s", ping_format.id, name, guild_id)
    return await get_ping_format(db, guild_id, ping_format.id)


async def list_ping_formats(
    db: AsyncSession, guild_id: int, page: int = 0, per_page: int = 10
) -> dict:
    """Paginated formats with their fields and the number of categories using each."""
    total = (
        await db.execute(
            select(func.count(PingFormat.id)).where(PingFormat.guild_id == str(guild_id))
        )
    ).scalar_one()

    usage = (
        select(FleetCategory.ping_format_id, func.count(FleetCategory.id).label("n"))
        .group_by(FleetCategory.ping_format_id)
        .subquery()
    )
    result = await db.execute(
        select(PingFormat, func.coalesce(usage.c.n, 0))
        .outerjoin(usage, usage.c.ping_format_id == PingFormat.id)
        .options(selectinload(PingFormat.fields))
        .where(PingFormat.guild_id == str(guild_id))
        .order_by(PingFormat.name, PingFormat.id)
        .offset(page * per_page)
        .limit(per_page)
    )
    return {
        "items": [(pf, count) for pf, count in result.all()],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": math.ceil(total / per_page) if per_page else 0,
    }


async def update_ping_format(
    db: AsyncSession,
    guild_id: int,
    format_id: int,
    name: str,
    fields: list[FieldSpec],
) -> PingFormat:
    """Rename the format and reconcile its fields.

    Fields with an id are updated in place, fields without one are created and
    existing fields missing from the payload are deleted (their fleet values
    cascade away).
    """
    ping_format = await get_ping_format(db, guild_id, format_id)
    if ping_format is None:
        raise NotFound("Ping format not found")
    if not name or not name.strip():
        raise BadRequest("Ping format name cannot be empty")
    _validate_fields(fields)

    existing = {f.id: f for f in ping_format.fields}
    for spec in fields:
        if spec.id is not None and spec.id not in existing:
            raise BadRequest(f"Field {spec.id} does not belong to this ping format")

    ping_format.name = name.strip()
    kept_ids = {spec.id for spec in fields if spec.id is not None}
    for field_id, field in existing.items():
        if field_id not in kept_ids:
            ping_format.fields.remove(field)

    for spec in fields:
        if spec.id is not None:
            field = existing[spec.id]
            field.name = spec.name.strip()
            field.priority = spec.priority
            field.field_type = spec.field_type
            field.default_value = spec.default_value
        else:
            ping_format.fields.append(
                PingFormatField(
                    name=spec.name.strip(),
                    priority=spec.priority,
                    field_type=spec.field_type,
                    default_value=spec.default_value,
                )
            )
    await db.flush()
    db.expire(ping_format)
    return await get_ping_format(db, guild_id, format_id)


async def delete_ping_format(db: AsyncSession, guild_id: int, format_id: int) -> bool:
    """Delete a format. Refuses while categories reference it; False if absent."""
    ping_format = await get_ping_format(db, guild_id, format_id)
    if ping_format is None:
        return False
    in_use = await category_usage_count(db, format_id)
    if in_use > 0:
        noun = "category" if in_use == 1 else "categories"
        raise BadRequest(
            f"Cannot delete ping format: it is still used by {in_use} fleet {noun}"
        )
    await db.delete(ping_format)
    await db.flush()
    logger.info("Deleted ping format %s in guild %s", format_id, guild_id)
    return True
