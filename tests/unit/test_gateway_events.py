"""Unit tests for gateway event dispatch, the guild sync backoff and member lookups.

The mirror functions are patched; no database required.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from tb_common.discord import events
from tb_common.discord.events import (
    GatewayEvent,
    GatewayEventKind,
    GuildSnapshot,
    MessageData,
    dispatch,
)
from tb_common.discord.mirror import ChannelData, MemberData, RoleData, sync_due

GUILD_ID = 100000000000000001


def _session_factory():
    session = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory, session


class TestSyncDue:
    NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_never_synced(self):
        assert sync_due(None, self.NOW) is True

    def test_recent_sync_skipped(self):
        assert sync_due(self.NOW - timedelta(minutes=10), self.NOW) is False

    def test_old_sync_due(self):
        assert sync_due(self.NOW - timedelta(minutes=31), self.NOW) is True

    def test_naive_timestamp_treated_as_utc(self):
        naive = (self.NOW - timedelta(minutes=5)).replace(tzinfo=None)
        assert sync_due(naive, self.NOW) is False


class TestDispatch:
    async def test_role_update_upserts_and_commits(self):
        factory, session = _session_factory()
        role = RoleData(role_id=200000000000000001, name="FC")
        with patch.object(events.mirror, "upsert_role", new=AsyncMock()) as upsert:
            ok = await dispatch(GatewayEvent(GatewayEventKind.ROLE_UPDATE, GUILD_ID, role), factory)
        assert ok is True
        upsert.assert_awaited_once_with(session, GUILD_ID, role)
        session.commit.assert_awaited_once()

    async def test_channel_delete(self):
        factory, session = _session_factory()
        with patch.object(events.mirror, "delete_channel", new=AsyncMock()) as delete:
            await dispatch(
                GatewayEvent(GatewayEventKind.CHANNEL_DELETE, GUILD_ID, 300000000000000001),
                factory,
            )
        delete.assert_awaited_once_with(session, 300000000000000001)

    async def test_member_update_syncs_roles(self):
        factory, session = _session_factory()
        member = MemberData(user_id=1, username="pilot", role_ids=[5])
        with patch.object(events.mirror, "upsert_member", new=AsyncMock()) as upsert, patch.object(
            events.mirror, "sync_member_roles", new=AsyncMock(return_value=False)
        ) as sync_roles:
            ok = await dispatch(
                GatewayEvent(GatewayEventKind.MEMBER_UPDATE, GUILD_ID, member), factory
            )
        assert ok is True
        upsert.assert_awaited_once_with(session, GUILD_ID, member)
        sync_roles.assert_awaited_once_with(session, GUILD_ID, member)

    async def test_message_records_channel_activity(self):
        factory, session = _session_factory()
        at = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
        message = MessageData(channel_id=3, message_id=4, created_at=at)
        with patch.object(
            events.mirror, "record_channel_activity", new=AsyncMock(return_value=True)
        ) as record:
            await dispatch(GatewayEvent(GatewayEventKind.MESSAGE, GUILD_ID, message), factory)
        record.assert_awaited_once_with(session, 3, 4, at)

    async def test_failure_rolls_back_and_returns_false(self):
        factory, session = _session_factory()
        with patch.object(
            events.mirror, "delete_role", new=AsyncMock(side_effect=RuntimeError("boom"))
        ):
            ok = await dispatch(GatewayEvent(GatewayEventKind.ROLE_DELETE, GUILD_ID, 5), factory)
        assert ok is False
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()


class TestGuildCreate:
    def _snapshot(self, load_members):
        return GuildSnapshot(
            name="Test Alliance",
            roles=[RoleData(role_id=1, name="Member")],
            channels=[ChannelData(channel_id=2, name="pings")],
            load_members=load_members,
        )

    async def test_skips_full_sync_within_backoff(self):
        factory, _ = _session_factory()
        load_members = AsyncMock(return_value=[])
        with patch.object(events.mirror, "upsert_guild", new=AsyncMock()) as upsert, patch.object(
            events.mirror, "needs_sync", new=AsyncMock(return_value=False)
        ), patch.object(events.mirror, "full_guild_sync", new=AsyncMock()) as full_sync:
            ok = await dispatch(
                GatewayEvent(GatewayEventKind.GUILD_CREATE, GUILD_ID, self._snapshot(load_members)),
                factory,
            )
        assert ok is True
        upsert.assert_awaited_once()
        full_sync.assert_not_awaited()
        load_members.assert_not_awaited()

    async def test_full_sync_when_due(self):
        factory, session = _session_factory()
        members = [MemberData(user_id=7, username="pilot")]
        snapshot = self._snapshot(AsyncMock(return_value=members))
        with patch.object(events.mirror, "upsert_guild", new=AsyncMock()), patch.object(
            events.mirror, "needs_sync", new=AsyncMock(return_value=True)
        ), patch.object(events.mirror, "full_guild_sync", new=AsyncMock()) as full_sync:
            await dispatch(GatewayEvent(GatewayEventKind.GUILD_CREATE, GUILD_ID, snapshot), factory)
        full_sync.assert_awaited_once_with(
            session, GUILD_ID, snapshot.roles, snapshot.channels, members
        )

    async def test_full_sync_without_member_loader_passes_none(self):
        factory, session = _session_factory()
        snapshot = self._snapshot(None)
        with patch.object(events.mirror, "upsert_guild", new=AsyncMock()), patch.object(
            events.mirror, "needs_sync", new=AsyncMock(return_value=True)
        ), patch.object(events.mirror, "full_guild_sync", new=AsyncMock()) as full_sync:
            await dispatch(GatewayEvent(GatewayEventKind.GUILD_CREATE, GUILD_ID, snapshot), factory)
        full_sync.assert_awaited_once_with(
            session, GUILD_ID, snapshot.roles, snapshot.channels, None
        )


class TestFetchMemberRoleIds:
    async def test_returns_member_role_ids(self):
        from tb_common.discord import bot as bot_module

        guild = MagicMock()
        guild.fetch_member = AsyncMock(
            return_value=MagicMock(
                roles=[MagicMock(id=GUILD_ID), MagicMock(id=200000000000000001)]
            )
        )
        client = MagicMock()
        client.get_guild = MagicMock(return_value=guild)
        with patch.object(bot_module, "bot", client):
            role_ids = await bot_module.fetch_member_role_ids(GUILD_ID, 7)
        assert role_ids == [GUILD_ID, 200000000000000001]
        guild.fetch_member.assert_awaited_once_with(7)

    async def test_not_in_guild_returns_none(self):
        import discord

        from tb_common.discord import bot as bot_module

        response = MagicMock(status=404, reason="Not Found")
        guild = MagicMock()
        guild.fetch_member = AsyncMock(side_effect=discord.NotFound(response, "Unknown Member"))
        client = MagicMock()
        client.get_guild = MagicMock(return_value=guild)
        with patch.object(bot_module, "bot", client):
            assert await bot_module.fetch_member_role_ids(GUILD_ID, 7) is None
