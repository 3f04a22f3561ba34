"""Reconciles persisted giveaways with the in-memory scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List

from .errors import GiveawayError, StoreUnavailable
from .lifecycle import LifecycleController
from .models import ConcludeReason, Event, utcnow
from .scheduler import Scheduler
from .storage import EventStorage

log = logging.getLogger(__name__)


@dataclass(slots=True)
class RecoveryReport:
    scheduled: List[str] = field(default_factory=list)
    caught_up: List[str] = field(default_factory=list)
    resumed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def touched(self) -> int:
        return len(self.scheduled) + len(self.caught_up) + len(self.resumed)


class RecoveryLoader:
    """Rebuilds timers from the store and finishes overdue or stranded events.

    ``run`` is safe to call repeatedly: events that already have a matching
    timer are left alone, so the same routine serves as the startup loader and
    as the periodic sweep.
    """

    def __init__(
        self,
        storage: EventStorage,
        scheduler: Scheduler,
        lifecycle: LifecycleController,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.scheduler = scheduler
        self.lifecycle = lifecycle
        self._clock = clock

    async def run(self) -> RecoveryReport:
        report = RecoveryReport()
        try:
            active = await self.storage.get_active_events()
        except StoreUnavailable:
            log.exception("Unable to load active giveaways; recovery aborted")
            raise

        now = self._clock()
        for event in active:
            if event.end_time <= now:
                await self._conclude(event, report.caught_up, report)
            elif self._needs_timer(event):
                self.scheduler.schedule(event.id, event.end_time)
                report.scheduled.append(event.id)

        try:
            stranded = await self.storage.get_concluding_events()
        except StoreUnavailable:
            log.exception("Unable to load concluding giveaways; recovery aborted")
            raise

        for event in stranded:
            await self._conclude(event, report.resumed, report)

        if report.touched or report.failed:
            log.info(
                "Giveaway recovery: %d scheduled, %d overdue concluded, %d resumed, %d failed",
                len(report.scheduled),
                len(report.caught_up),
                len(report.resumed),
                len(report.failed),
            )
        return report

    def _needs_timer(self, event: Event) -> bool:
        handle = self.scheduler.get(event.id)
        if handle is None or handle.done():
            return True
        return handle.fire_at != event.end_time

    async def _conclude(
        self, event: Event, bucket: List[str], report: RecoveryReport
    ) -> None:
        try:
            result = await self.lifecycle.conclude(event.id, ConcludeReason.TIMEOUT)
        except GiveawayError:
            log.exception("Recovery could not conclude giveaway %s", event.id)
            report.failed.append(event.id)
            return
        if not result.already_concluded:
            bucket.append(event.id)
