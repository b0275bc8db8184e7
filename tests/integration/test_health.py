"""Integration test: health check endpoint."""

from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient, guild):
    response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["data"]["db"] == "connected"
    assert data["data"]["guilds"] == 1
    assert data["data"]["bot"] == "disabled"
    assert data["data"]["scheduler"] == {"running": False, "jobs": []}
    assert data["data"]["version"] == "0.1.0"


@pytest.mark.asyncio
async def test_health_reports_bot_and_scheduler(db_session):
    from timerboard.app import create_app
    from timerboard.deps import get_db, get_discord_bot

    app = create_app()

    async def override_get_db():
        yield db_session

    bot = MagicMock()
    bot.is_ready.return_value = True
    fleet_scheduler = MagicMock()
    fleet_scheduler.scheduler.running = True
    fleet_scheduler.scheduler.get_jobs.return_value = [
        MagicMock(id="guild_sync"),
        MagicMock(id="fleet_notifications"),
    ]
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_discord_bot] = lambda: bot
    app.state.fleet_scheduler = fleet_scheduler

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/health")

    data = response.json()["data"]
    assert data["bot"] == "ready"
    assert data["scheduler"] == {
        "running": True,
        "jobs": ["fleet_notifications", "guild_sync"],
    }


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient):
    response = await client.get("/api/health")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_unknown_route_is_json_404(client: AsyncClient):
    response = await client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"ok": False, "error": "Not found"}
