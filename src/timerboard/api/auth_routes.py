"""Authentication API: login redirect, current user, logout.

The Discord OAuth code exchange is handled outside this service. Its callback
calls tb_common.identity.users.complete_login, passing
tb_common.discord.bot.fetch_member_role_ids so the user's roles are current,
and sets the session cookie.
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Response
from fastapi.responses import RedirectResponse

from timerboard.config import get_settings
from timerboard.deps import COOKIE_NAME, get_current_user
from tb_common.db.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
ADMIN_CODE_COOKIE = "timerboard_admin_code"


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "discord_id": user.discord_id,
        "name": user.name,
        "admin": user.admin,
    }


@router.get("/login")
async def login(admin_code: str | None = None):
    """Redirect to Discord's authorize page.

    An admin_code query parameter is carried to the callback in a short-lived
    cookie.
    """
    settings = get_settings()
    query = urlencode(
        {
            "client_id": settings.discord_client_id,
            "response_type": "code",
            "scope": "identify",
            "redirect_uri": f"{settings.app_url.rstrip('/')}/api/auth/callback",
        }
    )
    response = RedirectResponse(url=f"{DISCORD_AUTHORIZE_URL}?{query}", status_code=307)
    if admin_code:
        response.set_cookie(
            ADMIN_CODE_COOKIE, admin_code, max_age=600, httponly=True, samesite="lax"
        )
    return response


@router.get("/user")
async def get_user(user: User = Depends(get_current_user)):
    return {"ok": True, "data": user_to_dict(user)}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(COOKIE_NAME)
    return {"ok": True, "data": {"logged_out": True}}
