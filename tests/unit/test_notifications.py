"""Unit tests for fleet message rendering and the Discord notifier.

All tests use mocked discord.py clients and sessions; no real database or
gateway connection required.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import discord

from timerboard.services.notification_service import (
    COLOR_CANCELLED,
    COLOR_REMINDER,
    SEPARATOR,
    FleetNotifier,
    MessageType,
    build_cancel_embed,
    build_content,
    build_fleet_embed,
    latest_in_channel,
    message_title,
    render_field_value,
)

GUILD_ID = 100000000000000001
FLEET_TIME = datetime(2026, 5, 1, 19, 30, tzinfo=timezone.utc)


def _fleet(hidden=False, disable_reminder=False, description="Bring cap boosters"):
    fields = [
        SimpleNamespace(id=2, name="SRP", priority=2, field_type="bool"),
        SimpleNamespace(id=1, name="Doctrine", priority=1, field_type="text"),
        SimpleNamespace(id=3, name="Staging", priority=3, field_type="text"),
    ]
    category = SimpleNamespace(
        id=5,
        name="Strategic",
        guild_id=str(GUILD_ID),
        ping_format=SimpleNamespace(fields=fields),
        ping_roles=[SimpleNamespace(role_id="200000000000000001")],
        channels=[
            SimpleNamespace(channel_id="300000000000000001"),
            SimpleNamespace(channel_id="300000000000000002"),
        ],
    )
    return SimpleNamespace(
        id=11,
        name="Defend the keepstar",
        commander_id="400000000000000002",
        fleet_time=FLEET_TIME,
        description=description,
        hidden=hidden,
        disable_reminder=disable_reminder,
        category=category,
        field_values=[
            SimpleNamespace(field_id=1, value="Ferox"),
            SimpleNamespace(field_id=2, value="true"),
            SimpleNamespace(field_id=3, value=""),
        ],
    )


def _db():
    db = MagicMock()
    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    db.begin_nested = MagicMock(return_value=nested)
    return db


def _bot(failing_channel=None):
    bot = MagicMock()
    bot.sent = []
    ids = iter(range(900000000000000001, 900000000000001000))

    def channel_for(channel_id):
        channel = MagicMock()

        async def send(**kwargs):
            if channel_id == failing_channel:
                raise discord.DiscordException("Missing Access")
            bot.sent.append((channel_id, kwargs))
            return SimpleNamespace(id=next(ids))

        channel.send = AsyncMock(side_effect=send)
        channel.get_partial_message = MagicMock(return_value=MagicMock(edit=AsyncMock()))
        return channel

    bot.get_channel = MagicMock(side_effect=channel_for)
    guild = MagicMock()
    guild.fetch_member = AsyncMock(return_value=SimpleNamespace(nick=None, name="fc_user"))
    bot.get_guild = MagicMock(return_value=guild)
    return bot


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class TestContent:
    def test_titles(self):
        assert message_title(MessageType.CREATION, "CTA") == "**.:New Upcoming CTA:.**"
        assert message_title(MessageType.REMINDER, "CTA") == "**.:Reminder - Upcoming CTA:.**"
        assert message_title(MessageType.FORMUP, "CTA") == "**.:CTA Forming Now:.**"

    def test_role_pings(self):
        content = build_content("Title", [200000000000000001, 200000000000000002], GUILD_ID)
        assert content == (
            "Title\n\n<@&200000000000000001> <@&200000000000000002> " + SEPARATOR
        )

    def test_guild_id_role_renders_as_everyone(self):
        content = build_content("Title", [GUILD_ID], GUILD_ID)
        assert "@everyone " in content
        assert f"<@&{GUILD_ID}>" not in content

    def test_no_pings(self):
        assert build_content("Title", [], GUILD_ID) == "Title\n\n" + SEPARATOR


class TestFieldRendering:
    def test_bool_values(self):
        assert render_field_value("bool", "true") == "Yes"
        assert render_field_value("bool", "false") == "No"

    def test_text_values_unchanged(self):
        assert render_field_value("text", "true") == "true"
        assert render_field_value("bool", "maybe") == "maybe"


class TestFleetEmbed:
    def test_fields_in_order(self):
        embed = build_fleet_embed(_fleet(), COLOR_REMINDER, "FC Nick", "https://tb.test")
        names = [f.name for f in embed.fields]
        assert names == [
            "FC",
            "Start Time (UTC)",
            "Start Time (Local)",
            "Doctrine",
            "SRP",
            "Additional Information",
        ]
        assert embed.title == "Defend the keepstar"
        assert embed.url == "https://tb.test"
        assert embed.colour.value == COLOR_REMINDER
        assert embed.footer.text == "Sent by: FC Nick"

    def test_values(self):
        embed = build_fleet_embed(_fleet(), COLOR_REMINDER, "FC Nick", "https://tb.test")
        by_name = {f.name: f.value for f in embed.fields}
        ts = int(FLEET_TIME.timestamp())
        assert by_name["FC"] == "<@400000000000000002>"
        assert by_name["Start Time (UTC)"] == "2026-05-01 19:30 EVE Time"
        assert by_name["Start Time (Local)"] == f"<t:{ts}:F> - <t:{ts}:R>"
        assert by_name["SRP"] == "Yes"

    def test_no_description_field_when_empty(self):
        embed = build_fleet_embed(_fleet(description=None), 0, "FC", "https://tb.test")
        assert "Additional Information" not in [f.name for f in embed.fields]

    def test_cancel_embed(self):
        embed = build_cancel_embed(_fleet(), "FC Nick")
        assert embed.title == ".:Strategic Cancelled:."
        assert embed.colour.value == COLOR_CANCELLED
        assert "**Defend the keepstar**" in embed.description
        assert "2026-05-01 19:30 UTC" in embed.description
        assert embed.footer.text == "Cancelled by: FC Nick"


class TestLatestInChannel:
    def test_picks_newest_in_channel(self):
        older = SimpleNamespace(id=1, channel_id="1", created_at=FLEET_TIME)
        newer = SimpleNamespace(
            id=2, channel_id="1", created_at=FLEET_TIME.replace(minute=45)
        )
        other = SimpleNamespace(id=3, channel_id="2", created_at=FLEET_TIME.replace(hour=23))
        assert latest_in_channel([older, newer, other], "1") is newer
        assert latest_in_channel([older], "9") is None


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class TestFleetNotifier:
    async def test_creation_posts_to_every_channel(self):
        bot = _bot()
        db = _db()
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=[]),
        ):
            posted = await FleetNotifier(bot, "https://tb.test").post_fleet_creation(db, _fleet())

        assert posted == 2
        assert [c for c, _ in bot.sent] == [300000000000000001, 300000000000000002]
        content = bot.sent[0][1]["content"]
        assert content.startswith("**.:New Upcoming Strategic:.**")
        assert "<@&200000000000000001>" in content
        assert bot.sent[0][1]["reference"] is None
        assert bot.sent[0][1]["embed"].footer.text == "Sent by: fc_user"
        assert db.add.call_count == 2
        stored = db.add.call_args_list[0].args[0]
        assert stored.message_type == "creation"
        assert stored.channel_id == "300000000000000001"

    async def test_hidden_fleet_not_announced(self):
        bot = _bot()
        posted = await FleetNotifier(bot, "https://tb.test").post_fleet_creation(
            _db(), _fleet(hidden=True)
        )
        assert posted == 0
        assert bot.sent == []

    async def test_disabled_reminder_not_sent(self):
        bot = _bot()
        posted = await FleetNotifier(bot, "https://tb.test").post_fleet_reminder(
            _db(), _fleet(disable_reminder=True)
        )
        assert posted == 0
        assert bot.sent == []

    async def test_failed_channel_does_not_stop_others(self):
        bot = _bot(failing_channel=300000000000000001)
        db = _db()
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=[]),
        ):
            posted = await FleetNotifier(bot, "https://tb.test").post_fleet_formup(db, _fleet())

        assert posted == 1
        assert [c for c, _ in bot.sent] == [300000000000000002]
        assert db.add.call_count == 1

    async def test_reminder_replies_to_previous_message_in_channel(self):
        bot = _bot()
        previous = [
            SimpleNamespace(
                id=1,
                channel_id="300000000000000001",
                message_id="800000000000000001",
                message_type="creation",
                created_at=FLEET_TIME,
            )
        ]
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=previous),
        ):
            await FleetNotifier(bot, "https://tb.test").post_fleet_reminder(_db(), _fleet())

        first, second = bot.sent
        assert first[1]["reference"].message_id == 800000000000000001
        assert first[1]["content"].startswith("**.:Reminder - Upcoming Strategic:.**")
        assert second[1]["reference"] is None

    async def test_reminder_without_announcement_uses_creation_title(self):
        bot = _bot()
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=[]),
        ):
            posted = await FleetNotifier(bot, "https://tb.test").post_fleet_reminder(
                _db(), _fleet()
            )
        assert posted == 2
        for _, kwargs in bot.sent:
            assert kwargs["content"].startswith("**.:New Upcoming Strategic:.**")
            assert kwargs["embed"].colour.value == COLOR_REMINDER

    async def test_formup_replies_to_latest_reminder_else_creation(self):
        bot = _bot()
        previous = [
            SimpleNamespace(
                id=1,
                channel_id="300000000000000001",
                message_id="800000000000000001",
                message_type="creation",
                created_at=FLEET_TIME.replace(hour=10),
            ),
            SimpleNamespace(
                id=3,
                channel_id="300000000000000001",
                message_id="800000000000000003",
                message_type="reminder",
                created_at=FLEET_TIME.replace(hour=19),
            ),
            SimpleNamespace(
                id=2,
                channel_id="300000000000000002",
                message_id="800000000000000002",
                message_type="creation",
                created_at=FLEET_TIME.replace(hour=10),
            ),
        ]
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=previous),
        ):
            await FleetNotifier(bot, "https://tb.test").post_fleet_formup(_db(), _fleet())

        first, second = bot.sent
        assert first[1]["reference"].message_id == 800000000000000003
        assert second[1]["reference"].message_id == 800000000000000002
        assert first[1]["content"].startswith("**.:Strategic Forming Now:.**")

    async def test_malformed_channel_id_does_not_stop_others(self):
        bot = _bot()
        db = _db()
        fleet = _fleet()
        fleet.category.channels.insert(0, SimpleNamespace(channel_id="not-a-channel"))
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=[]),
        ):
            posted = await FleetNotifier(bot, "https://tb.test").post_fleet_creation(db, fleet)

        assert posted == 2
        assert [c for c, _ in bot.sent] == [300000000000000001, 300000000000000002]

    async def test_commander_lookup_failure_uses_placeholder(self):
        bot = _bot()
        bot.get_guild.return_value.fetch_member = AsyncMock(
            side_effect=discord.DiscordException("Unknown Member")
        )
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=[]),
        ):
            await FleetNotifier(bot, "https://tb.test").post_fleet_creation(_db(), _fleet())
        assert bot.sent[0][1]["embed"].footer.text == "Sent by: User 400000000000000002"

    async def test_cancel_edits_every_message(self):
        bot = _bot()
        messages = [
            SimpleNamespace(channel_id="300000000000000001", message_id="800000000000000001"),
            SimpleNamespace(channel_id="300000000000000002", message_id="800000000000000002"),
        ]
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=messages),
        ):
            edited = await FleetNotifier(bot, "https://tb.test").cancel_fleet_messages(
                _db(), _fleet()
            )
        assert edited == 2

    async def test_failed_edit_does_not_stop_others(self):
        bot = MagicMock()
        failing = MagicMock(
            edit=AsyncMock(side_effect=discord.DiscordException("Unknown Message"))
        )
        working = MagicMock(edit=AsyncMock())
        channels = {
            300000000000000001: MagicMock(get_partial_message=MagicMock(return_value=failing)),
            300000000000000002: MagicMock(get_partial_message=MagicMock(return_value=working)),
        }
        bot.get_channel = MagicMock(side_effect=channels.get)
        guild = MagicMock()
        guild.fetch_member = AsyncMock(return_value=SimpleNamespace(nick="FC Nick", name="fc"))
        bot.get_guild = MagicMock(return_value=guild)
        messages = [
            SimpleNamespace(channel_id="300000000000000001", message_id="800000000000000001"),
            SimpleNamespace(channel_id="300000000000000002", message_id="800000000000000002"),
        ]
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=messages),
        ):
            edited = await FleetNotifier(bot, "https://tb.test").update_fleet_messages(
                _db(), _fleet()
            )

        assert edited == 1
        failing.edit.assert_awaited_once()
        working.edit.assert_awaited_once()
        assert working.edit.await_args.kwargs["embed"].title == "Defend the keepstar"

    async def test_update_without_messages_is_noop(self):
        bot = _bot()
        with patch(
            "timerboard.services.notification_service.get_fleet_messages",
            new=AsyncMock(return_value=[]),
        ):
            edited = await FleetNotifier(bot, "https://tb.test").update_fleet_messages(
                _db(), _fleet()
            )
        assert edited == 0
        bot.get_channel.assert_not_called()
