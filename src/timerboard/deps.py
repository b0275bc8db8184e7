"""FastAPI dependencies shared across routes."""

from collections.abc import AsyncGenerator

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from timerboard.config import get_settings
from tb_common.auth.permissions import Permission, require
from tb_common.db.engine import get_session_factory
from tb_common.db.models import User
from tb_common.errors import BadRequest, InvalidSnowflake, UserNotInDatabase, parse_snowflake

_bearer = HTTPBearer(auto_error=False)

COOKIE_NAME = "timerboard_token"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields a database session per request."""
    settings = get_settings()
    factory = get_session_factory(settings.database_url)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_discord_bot():
    """The running discord.py client, or None when the bot is not configured.

    Overridden in tests with a mock client.
    """
    if not get_settings().discord_bot_token:
        return None
    from tb_common.discord.bot import get_bot

    return get_bot()


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract the session JWT from the Authorization header or cookie and load the user.

    Raises HTTP 401 if no valid token is found, UserNotInDatabase if the
    token names a user that no longer exists.
    """
    from tb_common.auth.jwt import decode_access_token
    from tb_common.identity.users import get_user

    token_str: str | None = None
    if credentials is not None:
        token_str = credentials.credentials
    else:
        token_str = request.cookies.get(COOKIE_NAME)

    if not token_str:
        raise HTTPException(status_code=401, detail="Not authenticated.")

    try:
        payload = decode_access_token(token_str)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    user_id = payload.get("user_id")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token payload.")

    user = await get_user(db, user_id)
    if user is None:
        raise UserNotInDatabase(user_id)
    return user


async def require_admin(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency: raises AccessDenied unless the user is a global admin."""
    return await require(db, user, [Permission.admin()])


def get_notifier(bot=Depends(get_discord_bot)):
    """FleetNotifier bound to the running bot, or None when there is no bot."""
    from timerboard.services.notification_service import FleetNotifier

    if bot is None:
        return None
    return FleetNotifier(bot, get_settings().app_url)


def parse_body_id(value: str | int, label: str) -> int:
    """Parse a Discord ID sent by the client. Malformed input is a BadRequest."""
    try:
        return parse_snowflake(value)
    except InvalidSnowflake:
        raise BadRequest(f"Invalid {label}: {value}")
