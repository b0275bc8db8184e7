"""Category permission evaluation.

A user's capabilities on a fleet category are the union of the grants of every
role they hold that appears in the category's access-role list. Global admins
bypass the lookup. Absence of a grant is a denial, never an error.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tb_common.db.models import (
    FleetCategory,
    FleetCategoryAccessRole,
    User,
    UserGuildRole,
)
from tb_common.errors import AccessDenied, UserNotInSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capabilities:
    can_view: bool = False
    can_create: bool = False
    can_manage: bool = False
    is_admin: bool = False

    @classmethod
    def admin(cls) -> "Capabilities":
        return cls(can_view=True, can_create=True, can_manage=True, is_admin=True)

    @property
    def has_any(self) -> bool:
        return self.is_admin or self.can_view or self.can_create or self.can_manage


NO_CAPABILITIES = Capabilities()


def combine_grants(grants: Iterable[tuple[bool, bool, bool]]) -> Capabilities:
    """OR together (can_view, can_create, can_manage) tuples from matching roles."""
    view = create = manage = False
    for can_view, can_create, can_manage in grants:
        view = view or bool(can_view)
        create = create or bool(can_create)
        manage = manage or bool(can_manage)
    return Capabilities(can_view=view, can_create=create, can_manage=manage)


def _grants_query(user: User, guild_id: int):
    return (
        select(
            FleetCategoryAccessRole.category_id,
            FleetCategoryAccessRole.can_view,
            FleetCategoryAccessRole.can_create,
            FleetCategoryAccessRole.can_manage,
        )
        .join(FleetCategory, FleetCategory.id == FleetCategoryAccessRole.category_id)
        .join(UserGuildRole, UserGuildRole.role_id == FleetCategoryAccessRole.role_id)
        .where(
            UserGuildRole.user_id == user.id,
            FleetCategory.guild_id == str(guild_id),
        )
    )


async def evaluate(
    db: AsyncSession, user: User, guild_id: int, category_id: int
) -> Capabilities:
    """Return the user's effective capabilities on one category of a guild."""
    if user.admin:
        return Capabilities.admin()
    stmt = _grants_query(user, guild_id).where(
        FleetCategoryAccessRole.category_id == category_id
    )
    rows = (await db.execute(stmt)).all()
    return combine_grants((r.can_view, r.can_create, r.can_manage) for r in rows)


async def capabilities_by_category(
    db: AsyncSession, user: User, guild_id: int
) -> dict[int, Capabilities]:
    """Capabilities for every category in the guild the user holds at least one grant on.

    Admins get an entry for every category in the guild.
    """
    if user.admin:
        result = await db.execute(
            select(FleetCategory.id).where(FleetCategory.guild_id == str(guild_id))
        )
        return {cid: Capabilities.admin() for cid in result.scalars().all()}

    rows = (await db.execute(_grants_query(user, guild_id))).all()
    grouped: dict[int, list[tuple[bool, bool, bool]]] = {}
    for r in rows:
        grouped.setdefault(r.category_id, []).append((r.can_view, r.can_create, r.can_manage))
    caps = {cid: combine_grants(grants) for cid, grants in grouped.items()}
    return {cid: c for cid, c in caps.items() if c.has_any}


async def viewable_category_ids(db: AsyncSession, user: User, guild_id: int) -> list[int]:
    """Categories where the user has view, create or manage."""
    return sorted(await capabilities_by_category(db, user, guild_id))


async def creatable_category_ids(db: AsyncSession, user: User, guild_id: int) -> list[int]:
    caps = await capabilities_by_category(db, user, guild_id)
    return sorted(cid for cid, c in caps.items() if c.can_create)


async def manageable_category_ids(db: AsyncSession, user: User, guild_id: int) -> list[int]:
    caps = await capabilities_by_category(db, user, guild_id)
    return sorted(cid for cid, c in caps.items() if c.can_manage)


# ---------------------------------------------------------------------------
# Route guards
# ---------------------------------------------------------------------------


class PermissionKind(str, Enum):
    ADMIN = "admin"
    CATEGORY_VIEW = "view"
    CATEGORY_CREATE = "create"
    CATEGORY_MANAGE = "manage"


@dataclass(frozen=True)
class Permission:
    kind: PermissionKind
    guild_id: int | None = None
    category_id: int | None = None

    @classmethod
    def admin(cls) -> "Permission":
        return cls(PermissionKind.ADMIN)

    @classmethod
    def category_view(cls, guild_id: int, category_id: int) -> "Permission":
        return cls(PermissionKind.CATEGORY_VIEW, guild_id, category_id)

    @classmethod
    def category_create(cls, guild_id: int, category_id: int) -> "Permission":
        return cls(PermissionKind.CATEGORY_CREATE, guild_id, category_id)

    @classmethod
    def category_manage(cls, guild_id: int, category_id: int) -> "Permission":
        return cls(PermissionKind.CATEGORY_MANAGE, guild_id, category_id)

    def denial_message(self) -> str:
        if self.kind is PermissionKind.ADMIN:
            return (
                "User attempted to access admin-gated route but did not have "
                "sufficient permissions"
            )
        return (
            f"User does not have {self.kind.value} access to category "
            f"{self.category_id} in guild {self.guild_id}"
        )


def _granted(permission: Permission, caps: Capabilities) -> bool:
    if permission.kind is PermissionKind.CATEGORY_VIEW:
        return caps.can_view
    if permission.kind is PermissionKind.CATEGORY_CREATE:
        return caps.can_create
    return caps.can_manage


async def require(
    db: AsyncSession, user: User | None, permissions: Sequence[Permission]
) -> User:
    """Check every permission left to right; the first failure raises AccessDenied.

    An empty list only asserts that the user is logged in.
    """
    if user is None:
        raise UserNotInSession()

    for permission in permissions:
        if user.admin:
            continue
        if permission.kind is PermissionKind.ADMIN:
            allowed = False
        else:
            caps = await evaluate(db, user, permission.guild_id, permission.category_id)
            allowed = _granted(permission, caps)
        if not allowed:
            message = permission.denial_message()
            logger.info("Access denied for user %s: %s", user.discord_id, message)
            raise AccessDenied(user.discord_id, message)
    return user
