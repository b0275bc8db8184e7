"""User account service functions."""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tb_common.auth.admin_code import AdminCodeService
from tb_common.db.models import User
from tb_common.discord import mirror
from tb_common.errors import AdminCodeValidationFailed, NotFound

logger = logging.getLogger(__name__)

ROLE_SYNC_INTERVAL = timedelta(minutes=30)

# (guild_id, discord_id) -> the member's role IDs, or None when not in the guild
RoleFetcher = Callable[[int, int], Awaitable[list[int] | None]]


async def get_user(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_discord_id(db: AsyncSession, discord_id: int | str) -> User | None:
    result = await db.execute(select(User).where(User.discord_id == str(discord_id)))
    return result.scalar_one_or_none()


async def list_users(db: AsyncSession, page: int = 0, per_page: int = 25) -> tuple[list[User], int]:
    """Return one page of users ordered by name, plus the total count."""
    total = (await db.execute(select(func.count(User.id)))).scalar_one()
    result = await db.execute(
        select(User).order_by(User.name, User.id).offset(page * per_page).limit(per_page)
    )
    return list(result.scalars().all()), total


async def list_admins(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).where(User.admin.is_(True)).order_by(User.name))
    return list(result.scalars().all())


async def admin_exists(db: AsyncSession) -> bool:
    result = await db.execute(select(User.id).where(User.admin.is_(True)).limit(1))
    return result.scalar_one_or_none() is not None


async def set_admin(db: AsyncSession, discord_id: int | str, admin: bool) -> User:
    user = await get_user_by_discord_id(db, discord_id)
    if user is None:
        raise NotFound(f"User {discord_id} not found")
    user.admin = admin
    await db.flush()
    logger.info("Set admin=%s for user %s", admin, discord_id)
    return user


async def complete_login(
    db: AsyncSession,
    discord_id: int | str,
    name: str,
    admin_codes: AdminCodeService | None = None,
    admin_code: str | None = None,
    fetch_role_ids: RoleFetcher | None = None,
) -> User:
    """Create or refresh the user record after Discord has authenticated them.

    When an admin code is presented it must validate, otherwise the login fails
    with AdminCodeValidationFailed and no admin grant is made. With a
    fetch_role_ids callback the user's roles in every mirrored guild are
    refreshed, at most once per ROLE_SYNC_INTERVAL.
    """
    grant_admin = False
    if admin_code is not None:
        if admin_codes is None or not await admin_codes.validate_and_consume(admin_code):
            raise AdminCodeValidationFailed()
        grant_admin = True

    user = await get_user_by_discord_id(db, discord_id)
    if user is None:
        user = User(
            discord_id=str(discord_id), name=name, admin=grant_admin, last_guild_sync_at=None
        )
        db.add(user)
        logger.info("Created user %s (%s)", name, discord_id)
    else:
        user.name = name
        if grant_admin:
            user.admin = True
    await db.flush()
    if grant_admin:
        logger.warning("User %s (%s) granted admin via admin code", name, discord_id)
    if fetch_role_ids is not None:
        await sync_roles_if_needed(db, user, fetch_role_ids)
    return user


def role_sync_due(user: User, now: datetime) -> bool:
    last = user.last_guild_sync_at
    if last is None:
        return True
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    return now - last > ROLE_SYNC_INTERVAL


async def sync_roles_if_needed(
    db: AsyncSession,
    user: User,
    fetch_role_ids: RoleFetcher,
    now: datetime | None = None,
) -> bool:
    """Refresh the user's role memberships in every mirrored guild.

    Skipped when the last refresh is within ROLE_SYNC_INTERVAL. A guild whose
    member lookup fails is logged and left as it was. Returns whether a sync ran.
    """
    now = now or datetime.now(timezone.utc)
    if not role_sync_due(user, now):
        logger.debug(
            "Skipping role sync for user %s (last synced: %s)",
            user.discord_id,
            user.last_guild_sync_at,
        )
        return False

    discord_id = int(user.discord_id)
    for guild in await mirror.list_guilds(db):
        guild_id = int(guild.guild_id)
        try:
            role_ids = await fetch_role_ids(guild_id, discord_id)
        except Exception as exc:
            logger.warning(
                "Failed to fetch member %s in guild %s: %s", user.discord_id, guild_id, exc
            )
            continue
        if role_ids is None:
            continue
        await mirror.sync_user_roles(db, user.id, guild_id, role_ids)

    user.last_guild_sync_at = now
    await db.flush()
    logger.debug("Synced guild roles for user %s", user.discord_id)
    return True
