import dataclasses
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import discord
import pytest

from giveawaybot.discord_announcer import DiscordAnnouncer, build_event_embed
from giveawaybot.errors import RenderFailure
from giveawaybot.models import Event, EventStatus


@pytest.fixture
def event():
    return Event(
        id="abc123",
        guild_id="1",
        channel_id="200",
        prize="Nitro",
        created_by="9",
        created_at=datetime(2026, 1, 1, 10, 0, tzinfo=UTC),
        end_time=datetime(2026, 1, 1, 18, 0, tzinfo=UTC),
    )


def fields(embed):
    return {field.name: field.value for field in embed.fields}


class FakeBot:
    def __init__(self, channel=None):
        self.channel = channel
        self.views = []

    def get_channel(self, channel_id):
        return self.channel

    async def fetch_channel(self, channel_id):
        return self.channel

    def add_view(self, view, *, message_id=None):
        self.views.append((view, message_id))


def test_active_embed_shows_participants_and_local_end(event):
    embed = build_event_embed(event, participants=3, tz=ZoneInfo("Europe/Berlin"))

    shown = fields(embed)
    assert embed.title == "🎉 GIVEAWAY 🎉"
    assert embed.description == "**Prize:** Nitro"
    assert shown["Participants"] == "3"
    assert shown["Ends At"].startswith("2026-01-01 19:00 CET")
    assert shown["Status"] == "Active"
    assert "Winner" not in shown
    assert embed.footer.text == "Giveaway ID: abc123"


def test_finished_embed_names_winner(event):
    embed = build_event_embed(
        event, participants=None, tz=ZoneInfo("UTC"), status="Finished", winner_id="77"
    )

    shown = fields(embed)
    assert "Participants" not in shown
    assert shown["Status"] == "Finished"
    assert shown["Winner"] == "<@77>"


def test_finished_embed_without_winner(event):
    embed = build_event_embed(event, participants=None, tz=ZoneInfo("UTC"), status="Finished")

    assert fields(embed)["Winner"] == "No participants"


async def test_missing_channel_raises_render_failure(event):
    announcer = DiscordAnnouncer(
        FakeBot(), timezone="UTC", view_factory=lambda event_id: None
    )

    with pytest.raises(RenderFailure, match="200"):
        await announcer.on_created(event)


async def test_created_message_is_posted_and_view_registered(event):
    channel = MagicMock(spec=discord.TextChannel)
    channel.send = AsyncMock(return_value=SimpleNamespace(id=555))
    bot = FakeBot(channel)
    view = object()
    announcer = DiscordAnnouncer(bot, timezone="UTC", view_factory=lambda event_id: view)

    message_id = await announcer.on_created(event)

    assert message_id == "555"
    assert bot.views == [(view, 555)]
    kwargs = channel.send.await_args.kwargs
    assert kwargs["view"] is view
    assert fields(kwargs["embed"])["Participants"] == "0"


async def test_conclusion_posts_winner_message(event):
    channel = MagicMock(spec=discord.TextChannel)
    channel.send = AsyncMock()
    announcer = DiscordAnnouncer(
        FakeBot(channel), timezone="UTC", view_factory=lambda event_id: None
    )
    concluded = dataclasses.replace(event, status=EventStatus.CONCLUDED)

    await announcer.on_concluded(concluded, "77")

    text = channel.send.await_args.args[0]
    assert "Congratulations <@77>" in text
