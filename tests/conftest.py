"""Pytest configuration and fixtures."""

import random
import secrets
from datetime import UTC, datetime, timedelta

import pytest

from giveawaybot.config import ConclusionConfig
from giveawaybot.errors import RenderFailure
from giveawaybot.giveaway_manager import GiveawayManager
from giveawaybot.models import Event
from giveawaybot.selection import WinnerSelector
from giveawaybot.storage import EventStorage


class FakeClock:
    """Callable clock whose current time only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingAnnouncer:
    """Announcer double that remembers every notification it receives."""

    def __init__(self) -> None:
        self.created = []
        self.changes = []
        self.concluded = []
        self.rerolled = []
        self.fail_created = False
        self.fail_concluded = False

    async def on_created(self, event):
        if self.fail_created:
            raise RenderFailure("channel gone")
        self.created.append(event.id)
        return f"msg-{event.id}"

    async def on_participants_changed(self, event, count):
        self.changes.append((event.id, count))

    async def on_concluded(self, event, winner_id):
        if self.fail_concluded:
            raise RenderFailure("channel gone")
        self.concluded.append((event.id, winner_id))

    async def on_rerolled(self, event, winner_id):
        self.rerolled.append((event.id, winner_id))


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def announcer():
    return RecordingAnnouncer()


@pytest.fixture
async def storage(tmp_path):
    store = EventStorage(tmp_path / "giveaways.sqlite")
    await store.initialise()
    return store


@pytest.fixture
async def build_manager(announcer, clock):
    managers = []

    def factory(store, **kwargs):
        kwargs.setdefault("selector", WinnerSelector(random.Random(7)))
        kwargs.setdefault(
            "conclusion",
            ConclusionConfig(store_retry_attempts=2, store_retry_delay_seconds=0),
        )
        kwargs.setdefault("clock", clock)
        manager = GiveawayManager(store, kwargs.pop("announcer", announcer), **kwargs)
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        await manager.close()


@pytest.fixture
def manager(build_manager, storage):
    return build_manager(storage)


@pytest.fixture
def make_event(storage, clock):
    async def factory(store=None, **overrides) -> Event:
        values = dict(
            id=secrets.token_hex(4),
            guild_id="g1",
            channel_id="c1",
            prize="Nitro",
            created_by="admin",
            created_at=clock() - timedelta(hours=2),
            end_time=clock() + timedelta(hours=1),
        )
        values.update(overrides)
        event = Event(**values)
        await (store or storage).create_event(event)
        return event

    return factory
