from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime
from typing import Callable, Iterable, List, Optional

from .announcer import Announcer, LoggingAnnouncer
from .config import ConclusionConfig
from .errors import MessageAlreadyTracked
from .lifecycle import LifecycleController
from .locks import EventLocks
from .models import (
    ConcludeReason,
    ConclusionResult,
    Event,
    EventStatus,
    ToggleResult,
    utcnow,
)
from .participants import ParticipantRegistry
from .recovery import RecoveryLoader, RecoveryReport
from .scheduler import Scheduler
from .selection import WinnerSelector
from .storage import EventStorage

log = logging.getLogger(__name__)


class GiveawayManager:
    """Coordinates giveaway lifecycle, persistence, timers and announcements.

    Built once at startup and handed to every command handler and view; it is
    the only place the core components are wired together.
    """

    def __init__(
        self,
        storage: EventStorage,
        announcer: Optional[Announcer] = None,
        *,
        selector: Optional[WinnerSelector] = None,
        conclusion: Optional[ConclusionConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        conclusion = conclusion or ConclusionConfig()
        self.storage = storage
        self.announcer: Announcer = announcer or LoggingAnnouncer()
        self._clock = clock
        self.locks = EventLocks()
        self.registry = ParticipantRegistry(storage, self.locks)
        self.scheduler = Scheduler(self._on_deadline, clock=clock)
        self.lifecycle = LifecycleController(
            storage,
            self.registry,
            self.scheduler,
            self.announcer,
            self.locks,
            selector=selector,
            clock=clock,
            store_retry_attempts=conclusion.store_retry_attempts,
            store_retry_delay=conclusion.store_retry_delay_seconds,
        )
        self.recovery = RecoveryLoader(storage, self.scheduler, self.lifecycle, clock=clock)

    async def start(self) -> RecoveryReport:
        await self.storage.initialise()
        return await self.recovery.run()

    async def close(self) -> None:
        await self.scheduler.shutdown()

    async def create_event(
        self,
        *,
        guild_id: str,
        channel_id: str,
        prize: str,
        end_time: datetime,
        created_by: str,
        initial_participants: Iterable[str] = (),
    ) -> Event:
        prize = prize.strip()
        if not prize:
            raise ValueError("prize must not be empty")
        if end_time.tzinfo is None:
            raise ValueError("end_time must be timezone-aware")
        created_at = self._clock()
        end_time = end_time.astimezone(UTC)
        if end_time <= created_at:
            raise ValueError("end_time must be in the future")

        event = Event(
            id=self._generate_event_id(),
            guild_id=str(guild_id),
            channel_id=str(channel_id),
            prize=prize,
            created_by=str(created_by),
            created_at=created_at,
            end_time=end_time,
        )
        await self.storage.create_event(event)
        for participant_id in dict.fromkeys(str(p) for p in initial_participants):
            await self.storage.add_participant(event.id, participant_id)
        log.info(
            "Giveaway %s created by %s in channel %s, ends %s",
            event.id,
            event.created_by,
            event.channel_id,
            event.end_time.isoformat(),
        )

        try:
            message_id = await self.announcer.on_created(event)
        except Exception:
            log.exception("Announcer on_created failed for giveaway %s", event.id)
            message_id = None
        if message_id is not None:
            event.message_id = str(message_id)
            await self.storage.attach_message(event.id, event.message_id)

        # Armed after the message reference is stored. If anything above
        # failed, the recovery sweep arms it instead.
        self.scheduler.schedule(event.id, event.end_time)
        return event

    async def recover_event(
        self,
        *,
        guild_id: str,
        channel_id: str,
        message_id: str,
        prize: str,
        end_time: datetime,
        created_by: str,
    ) -> Event:
        """Adopt an already posted giveaway message that the store lost track of.

        Participants cannot be recovered from the message; members have to
        enter again. An end time in the past concludes the giveaway right away.
        """
        prize = prize.strip()
        if not prize:
            raise ValueError("prize must not be empty")
        if end_time.tzinfo is None:
            raise ValueError("end_time must be timezone-aware")
        message_id = str(message_id)
        existing = await self.storage.get_event_by_message(message_id)
        if existing is not None:
            raise MessageAlreadyTracked(message_id, existing.id)

        event = Event(
            id=self._generate_event_id(),
            guild_id=str(guild_id),
            channel_id=str(channel_id),
            prize=prize,
            created_by=str(created_by),
            created_at=self._clock(),
            end_time=end_time.astimezone(UTC),
            message_id=message_id,
        )
        await self.storage.create_event(event)
        log.info(
            "Giveaway %s recovered from message %s by %s, ends %s",
            event.id,
            message_id,
            event.created_by,
            event.end_time.isoformat(),
        )

        if event.end_time <= event.created_at:
            result = await self.lifecycle.conclude(event.id, ConcludeReason.TIMEOUT)
            return result.event
        self.scheduler.schedule(event.id, event.end_time)
        return event

    async def join(self, event_id: str, participant_id: str) -> int:
        count = await self.registry.add(event_id, participant_id)
        await self._refresh(event_id, count)
        return count

    async def leave(self, event_id: str, participant_id: str) -> int:
        count = await self.registry.remove(event_id, participant_id)
        await self._refresh(event_id, count)
        return count

    async def toggle(self, event_id: str, participant_id: str) -> ToggleResult:
        result = await self.registry.toggle(event_id, participant_id)
        await self._refresh(event_id, result.count)
        return result

    async def end(self, event_id: str) -> ConclusionResult:
        return await self.lifecycle.conclude(event_id, ConcludeReason.FORCED)

    async def reroll(self, event_id: str) -> Event:
        return await self.lifecycle.reroll(event_id)

    async def get_event(self, event_id: str) -> Event:
        return await self.storage.get_event(event_id)

    async def list_active(self, guild_id: Optional[str] = None) -> List[Event]:
        return await self.storage.get_active_events(guild_id)

    async def participants(self, event_id: str) -> List[str]:
        await self.storage.get_event(event_id)
        return await self.registry.members(event_id)

    async def participant_count(self, event_id: str) -> int:
        return await self.registry.count(event_id)

    async def _on_deadline(self, event_id: str) -> None:
        await self.lifecycle.conclude(event_id, ConcludeReason.TIMEOUT)

    async def _refresh(self, event_id: str, count: int) -> None:
        try:
            event = await self.storage.get_event(event_id)
            if event.status is EventStatus.ACTIVE:
                await self.announcer.on_participants_changed(event, count)
        except Exception:
            log.exception("Announcer refresh failed for giveaway %s", event_id)

    def _generate_event_id(self) -> str:
        return secrets.token_hex(5)
