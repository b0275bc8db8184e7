"""Timerboard application factory."""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from timerboard.config import get_settings
from tb_common.auth.admin_code import get_admin_code_service
from tb_common.db.engine import dispose_engine, get_session_factory
from tb_common.errors import AppError, InternalError
from tb_common.identity.users import admin_exists

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
# Surface discord.py logs at WARNING and above
logging.getLogger("discord").setLevel(logging.WARNING)
logging.getLogger("discord.gateway").setLevel(logging.INFO)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault(
            "Permissions-Policy", "camera=(), microphone=(), geolocation=()"
        )
        return response


async def _check_for_admin(factory, app_url: str) -> None:
    """Log a one-shot admin login link when nobody holds admin yet."""
    async with factory() as session:
        if await admin_exists(session):
            return
    code = await get_admin_code_service().generate()
    logger.warning(
        "No admin users found. Log in within 60 seconds to become admin: "
        "%s/api/auth/login?admin_code=%s",
        app_url.rstrip("/"),
        code,
    )


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Timerboard (env=%s)", settings.app_env)
        factory = get_session_factory(settings.database_url)

        try:
            await _check_for_admin(factory, settings.app_url)
        except Exception as exc:
            logger.warning("Admin check skipped (DB may not be available): %s", exc)

        # Start the Discord bot in a background task (skipped if no token)
        bot_task = None
        fleet_scheduler = None
        if settings.discord_bot_token:
            from tb_common.discord.bot import get_bot, set_session_factory, start_bot

            set_session_factory(factory)
            bot_task = asyncio.create_task(start_bot(settings.discord_bot_token))
            logger.info("Discord bot task started")

            if settings.scheduler_enabled:
                from timerboard.services.notification_scheduler import (
                    FleetNotificationScheduler,
                )

                fleet_scheduler = FleetNotificationScheduler(
                    session_factory=factory,
                    discord_bot=get_bot(),
                    app_url=settings.app_url,
                    list_interval_seconds=settings.fleet_list_interval_seconds,
                    guild_sync_interval_minutes=settings.guild_sync_interval_minutes,
                )
                await fleet_scheduler.start()
        else:
            logger.info("No DISCORD_BOT_TOKEN, bot and scheduler not started")
        app.state.fleet_scheduler = fleet_scheduler

        yield

        # Graceful shutdown
        if fleet_scheduler is not None:
            await fleet_scheduler.stop()

        if bot_task is not None:
            from tb_common.discord.bot import stop_bot

            await stop_bot()
            bot_task.cancel()
            try:
                await bot_task
            except asyncio.CancelledError:
                pass

        await dispose_engine()
        logger.info("Timerboard shutdown complete")

    app = FastAPI(
        title="Timerboard",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(SecurityHeadersMiddleware)

    # ---------------------------------------------------------------------------
    # Exception handlers
    # ---------------------------------------------------------------------------

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if isinstance(exc, InternalError):
            logger.error("Internal error on %s: %s", request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": exc.client_message},
        )

    @app.exception_handler(404)
    async def not_found_handler(request: Request, exc):
        return JSONResponse(status_code=404, content={"ok": False, "error": "Not found"})

    @app.exception_handler(500)
    async def server_error_handler(request: Request, exc):
        error_id = str(uuid.uuid4())[:8]
        logger.error("Server error %s on %s: %s", error_id, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "Internal server error", "error_id": error_id},
        )

    # Register API routes
    from timerboard.api.health import router as health_router
    from timerboard.api.auth_routes import router as auth_router
    from timerboard.api.user_routes import router as user_router
    from timerboard.api.admin_routes import router as admin_router
    from timerboard.api.category_routes import router as category_router
    from timerboard.api.ping_format_routes import router as ping_format_router
    from timerboard.api.guild_routes import router as guild_router
    from timerboard.api.fleet_routes import router as fleet_router

    app.include_router(health_router, prefix="/api")
    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(admin_router)
    app.include_router(category_router)
    app.include_router(ping_format_router)
    app.include_router(guild_router)
    app.include_router(fleet_router)

    return app
