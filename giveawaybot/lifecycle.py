"""Giveaway state machine and the single conclusion entry point."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from .announcer import Announcer
from .errors import InvalidState, StoreUnavailable
from .locks import EventLocks
from .models import (
    ConcludeOutcome,
    ConcludeReason,
    ConclusionResult,
    Event,
    EventStatus,
    utcnow,
)
from .participants import ParticipantRegistry
from .scheduler import Scheduler
from .selection import WinnerSelector
from .storage import EventStorage

log = logging.getLogger(__name__)

T = TypeVar("T")


class LifecycleController:
    """Owns the ``active -> concluding -> concluded`` transitions.

    Both the deadline timer and the administrative end command go through
    ``conclude``. The per-event lock plus the store's conditional update make
    sure only one caller ever selects and persists a winner; everyone else
    gets ``ConcludeOutcome.ALREADY_CONCLUDED``.
    """

    def __init__(
        self,
        storage: EventStorage,
        registry: ParticipantRegistry,
        scheduler: Scheduler,
        announcer: Announcer,
        locks: EventLocks,
        *,
        selector: Optional[WinnerSelector] = None,
        clock: Callable[[], datetime] = utcnow,
        store_retry_attempts: int = 3,
        store_retry_delay: float = 0.5,
    ) -> None:
        if store_retry_attempts < 1:
            raise ValueError("store_retry_attempts must be at least 1")
        self.storage = storage
        self.registry = registry
        self.scheduler = scheduler
        self.announcer = announcer
        self._locks = locks
        self.selector = selector or WinnerSelector()
        self._clock = clock
        self._retry_attempts = store_retry_attempts
        self._retry_delay = store_retry_delay

    async def conclude(
        self, event_id: str, reason: ConcludeReason = ConcludeReason.TIMEOUT
    ) -> ConclusionResult:
        async with self._locks.hold(event_id):
            event = await self.storage.get_event(event_id)
            if event.status is EventStatus.CONCLUDED:
                log.debug(
                    "Giveaway %s already concluded; ignoring %s trigger",
                    event_id,
                    reason.value,
                )
                return ConclusionResult(
                    event, ConcludeOutcome.ALREADY_CONCLUDED, event.winner_id
                )

            if event.status is EventStatus.ACTIVE:
                if not await self.storage.begin_conclusion(event_id):
                    log.debug("Giveaway %s was concluded by another writer", event_id)
                    latest = await self.storage.get_event(event_id)
                    return ConclusionResult(
                        latest, ConcludeOutcome.ALREADY_CONCLUDED, latest.winner_id
                    )
                event = dataclasses.replace(event, status=EventStatus.CONCLUDING)
                log.info("Giveaway %s concluding (%s)", event_id, reason.value)
            else:
                log.warning(
                    "Resuming interrupted conclusion of giveaway %s (%s)",
                    event_id,
                    reason.value,
                )

            self.scheduler.cancel(event_id)
            result = await self._finish(event)

        self.registry.forget(event_id)
        if not result.already_concluded:
            await self._announce(
                self.announcer.on_concluded, result.event, result.winner_id
            )
        return result

    async def reroll(self, event_id: str) -> Event:
        async with self._locks.hold(event_id):
            event = await self.storage.get_event(event_id)
            if event.status is not EventStatus.CONCLUDED:
                raise InvalidState(
                    event_id,
                    event.status,
                    f"Giveaway {event_id} must be finished before it can be rerolled.",
                )
            participants = await self.registry.members(event_id)
            if not participants:
                raise InvalidState(
                    event_id,
                    event.status,
                    f"Giveaway {event_id} has no participants to reroll from.",
                )
            # The previous winner stays in the pool.
            winner_id = self.selector.select(participants)
            await self._persist(self.storage.set_winner, event_id, winner_id)
            event = dataclasses.replace(event, winner_id=winner_id)

        log.info("Giveaway %s rerolled, new winner %s", event_id, winner_id)
        await self._announce(self.announcer.on_rerolled, event, winner_id)
        return event

    async def _finish(self, event: Event) -> ConclusionResult:
        participants = await self.registry.members(event.id)
        winner_id: Optional[str] = None
        if participants:
            winner_id = event.winner_id
            if winner_id is None:
                winner_id = self.selector.select(participants)
                await self._persist(self.storage.record_winner, event.id, winner_id)
            else:
                log.info(
                    "Giveaway %s reuses previously recorded winner %s",
                    event.id,
                    winner_id,
                )

        concluded_at = self._clock()
        written = await self._persist(
            self.storage.mark_concluded, event.id, winner_id, concluded_at
        )
        if not written:
            log.warning("Giveaway %s left concluding state unexpectedly", event.id)
            latest = await self.storage.get_event(event.id)
            return ConclusionResult(
                latest, ConcludeOutcome.ALREADY_CONCLUDED, latest.winner_id
            )

        concluded = dataclasses.replace(
            event,
            status=EventStatus.CONCLUDED,
            winner_id=winner_id,
            concluded_at=concluded_at,
        )
        if winner_id is None:
            log.info("Giveaway %s concluded without participants", event.id)
            return ConclusionResult(concluded, ConcludeOutcome.NO_PARTICIPANTS)
        log.info(
            "Giveaway %s concluded with winner %s out of %d participant(s)",
            event.id,
            winner_id,
            len(participants),
        )
        return ConclusionResult(concluded, ConcludeOutcome.WINNER, winner_id)

    async def _persist(self, write: Callable[..., Awaitable[T]], *args) -> T:
        attempt = 1
        delay = self._retry_delay
        while True:
            try:
                return await write(*args)
            except StoreUnavailable:
                if attempt >= self._retry_attempts:
                    log.error(
                        "Giving up on %s for giveaway %s after %d attempt(s)",
                        write.__name__,
                        args[0],
                        attempt,
                    )
                    raise
                log.warning(
                    "Store write %s for giveaway %s failed (attempt %d/%d); retrying in %.2fs",
                    write.__name__,
                    args[0],
                    attempt,
                    self._retry_attempts,
                    delay,
                )
            await asyncio.sleep(delay)
            attempt += 1
            delay *= 2

    async def _announce(self, notify: Callable[..., Awaitable[object]], *args) -> None:
        try:
            await notify(*args)
        except Exception:
            log.exception("Announcer %s failed for giveaway %s", notify.__name__, args[0].id)
