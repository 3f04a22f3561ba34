import asyncio
import random
from datetime import timedelta

import pytest

from giveawaybot.errors import EventNotFound, InvalidState, StoreUnavailable
from giveawaybot.models import ConcludeOutcome, ConcludeReason, EventStatus
from giveawaybot.selection import WinnerSelector
from giveawaybot.storage import EventStorage


class FlakyStorage(EventStorage):
    """Storage whose ``mark_concluded`` fails a configurable number of times."""

    def __init__(self, path, failures=0):
        super().__init__(path)
        self.failures = failures
        self.attempts = 0

    async def mark_concluded(self, event_id, winner_id, concluded_at):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise StoreUnavailable("disk I/O error")
        return await super().mark_concluded(event_id, winner_id, concluded_at)


class CountingSelector(WinnerSelector):
    def __init__(self):
        super().__init__(random.Random(3))
        self.calls = 0

    def select(self, participant_ids):
        self.calls += 1
        return super().select(participant_ids)


@pytest.fixture
async def flaky(tmp_path):
    store = FlakyStorage(tmp_path / "flaky.sqlite")
    await store.initialise()
    return store


async def test_conclude_without_participants(manager, storage, make_event, announcer, clock):
    event = await make_event()

    result = await manager.lifecycle.conclude(event.id)

    assert result.outcome is ConcludeOutcome.NO_PARTICIPANTS
    assert result.winner_id is None
    stored = await storage.get_event(event.id)
    assert stored.status is EventStatus.CONCLUDED
    assert stored.winner_id is None
    assert stored.concluded_at == clock()
    assert announcer.concluded == [(event.id, None)]


async def test_conclude_picks_winner_from_participants(manager, storage, make_event, announcer):
    event = await make_event()
    for user in ("u1", "u2", "u3"):
        await manager.join(event.id, user)

    result = await manager.end(event.id)

    assert result.outcome is ConcludeOutcome.WINNER
    assert result.winner_id in {"u1", "u2", "u3"}
    assert (await storage.get_event(event.id)).winner_id == result.winner_id
    assert announcer.concluded == [(event.id, result.winner_id)]


async def test_racing_triggers_conclude_exactly_once(build_manager, storage, make_event, announcer):
    selector = CountingSelector()
    manager = build_manager(storage, selector=selector)
    event = await make_event()
    await manager.join(event.id, "u1")
    await manager.join(event.id, "u2")

    results = await asyncio.gather(
        manager.lifecycle.conclude(event.id, ConcludeReason.TIMEOUT),
        manager.end(event.id),
        manager.lifecycle.conclude(event.id, ConcludeReason.TIMEOUT),
    )

    winners = [r for r in results if not r.already_concluded]
    assert len(winners) == 1
    assert selector.calls == 1
    assert len(announcer.concluded) == 1
    assert all(r.event.winner_id == winners[0].winner_id for r in results)


async def test_second_conclude_reports_already_concluded(manager, make_event, announcer):
    event = await make_event()
    first = await manager.end(event.id)

    second = await manager.lifecycle.conclude(event.id)

    assert first.outcome is ConcludeOutcome.NO_PARTICIPANTS
    assert second.outcome is ConcludeOutcome.ALREADY_CONCLUDED
    assert len(announcer.concluded) == 1


async def test_forced_end_retires_the_timer(manager, clock):
    event = await manager.create_event(
        guild_id="g1",
        channel_id="c1",
        prize="Nitro",
        end_time=clock() + timedelta(hours=1),
        created_by="admin",
    )
    handle = manager.scheduler.get(event.id)

    await manager.end(event.id)
    await asyncio.sleep(0)

    assert not manager.scheduler.has(event.id)
    assert handle.task.cancelled()


async def test_joining_after_conclusion_is_rejected(manager, storage, make_event):
    event = await make_event()
    await manager.join(event.id, "u1")
    await manager.end(event.id)

    with pytest.raises(InvalidState):
        await manager.join(event.id, "u2")
    with pytest.raises(InvalidState):
        await manager.toggle(event.id, "u1")

    assert await storage.list_participants(event.id) == ["u1"]


async def test_unknown_event_raises_not_found(manager):
    with pytest.raises(EventNotFound):
        await manager.end("missing")


async def test_store_failure_leaves_event_resumable(build_manager, flaky, make_event, announcer):
    manager = build_manager(flaky)
    event = await make_event(flaky)
    await manager.join(event.id, "u1")
    await manager.join(event.id, "u2")
    flaky.failures = 10

    with pytest.raises(StoreUnavailable):
        await manager.end(event.id)

    stranded = await flaky.get_event(event.id)
    assert stranded.status is EventStatus.CONCLUDING
    assert stranded.winner_id in {"u1", "u2"}
    assert flaky.attempts == 2
    assert announcer.concluded == []

    flaky.failures = 0
    report = await manager.recovery.run()

    concluded = await flaky.get_event(event.id)
    assert report.resumed == [event.id]
    assert concluded.status is EventStatus.CONCLUDED
    assert concluded.winner_id == stranded.winner_id
    assert announcer.concluded == [(event.id, stranded.winner_id)]


async def test_transient_store_failure_is_retried(build_manager, flaky, make_event):
    manager = build_manager(flaky)
    event = await make_event(flaky)
    flaky.failures = 1

    result = await manager.end(event.id)

    assert result.outcome is ConcludeOutcome.NO_PARTICIPANTS
    assert flaky.attempts == 2


async def test_announcer_failure_does_not_undo_conclusion(manager, storage, make_event, announcer):
    announcer.fail_concluded = True
    event = await make_event()
    await manager.join(event.id, "u1")

    result = await manager.end(event.id)

    assert result.outcome is ConcludeOutcome.WINNER
    assert (await storage.get_event(event.id)).status is EventStatus.CONCLUDED


async def test_resume_reuses_recorded_winner(build_manager, storage, make_event):
    selector = CountingSelector()
    manager = build_manager(storage, selector=selector)
    event = await make_event()
    for user in ("u1", "u2", "u3"):
        await storage.add_participant(event.id, user)
    await storage.begin_conclusion(event.id)
    await storage.record_winner(event.id, "u2")

    result = await manager.lifecycle.conclude(event.id)

    assert result.outcome is ConcludeOutcome.WINNER
    assert result.winner_id == "u2"
    assert selector.calls == 0


async def test_reroll_requires_concluded_event(manager, make_event):
    event = await make_event()
    await manager.join(event.id, "u1")

    with pytest.raises(InvalidState, match="must be finished"):
        await manager.reroll(event.id)


async def test_reroll_without_participants_is_rejected(manager, make_event):
    event = await make_event()
    await manager.end(event.id)

    with pytest.raises(InvalidState, match="no participants"):
        await manager.reroll(event.id)


async def test_reroll_keeps_previous_winner_eligible(manager, storage, make_event, announcer):
    event = await make_event()
    await manager.join(event.id, "solo")
    await manager.end(event.id)

    rerolled = await manager.reroll(event.id)

    assert rerolled.winner_id == "solo"
    assert (await storage.get_event(event.id)).winner_id == "solo"
    assert announcer.rerolled == [(event.id, "solo")]


async def test_reroll_leaves_status_and_conclusion_time_alone(manager, storage, make_event, clock):
    event = await make_event()
    await manager.join(event.id, "u1")
    await manager.join(event.id, "u2")
    await manager.end(event.id)
    concluded_at = clock()

    clock.advance(hours=1)
    await manager.reroll(event.id)

    stored = await storage.get_event(event.id)
    assert stored.status is EventStatus.CONCLUDED
    assert stored.concluded_at == concluded_at


async def test_lost_final_write_is_not_announced(build_manager, tmp_path, make_event, announcer):
    class StolenConclusion(EventStorage):
        async def mark_concluded(self, event_id, winner_id, concluded_at):
            return False

    store = StolenConclusion(tmp_path / "stolen.sqlite")
    await store.initialise()
    manager = build_manager(store)
    event = await make_event(store)
    await store.add_participant(event.id, "u1")

    result = await manager.end(event.id)

    assert result.outcome is ConcludeOutcome.ALREADY_CONCLUDED
    assert announcer.concluded == []


async def test_finished_giveaways_leave_no_cached_membership(manager, make_event):
    event = await make_event()
    await manager.join(event.id, "u1")
    await manager.end(event.id)

    await manager.reroll(event.id)
    await manager.participants(event.id)

    assert manager.registry._members == {}
