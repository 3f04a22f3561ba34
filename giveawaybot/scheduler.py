"""One-shot deadline timers for active giveaways."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from .models import utcnow

log = logging.getLogger(__name__)

FireCallback = Callable[[str], Awaitable[object]]


@dataclass(slots=True)
class TimerHandle:
    event_id: str
    fire_at: datetime
    delay: float
    task: asyncio.Task

    def done(self) -> bool:
        return self.task.done()


class Scheduler:
    """Keeps at most one live timer per event id.

    Delays are computed from absolute UTC timestamps each time ``schedule`` is
    called. A handle is removed from the registry right before its callback
    runs, so cancelling an event whose timer is already firing does nothing.
    """

    def __init__(
        self,
        on_fire: FireCallback,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._on_fire = on_fire
        self._clock = clock
        self._handles: Dict[str, TimerHandle] = {}

    def schedule(self, event_id: str, fire_at: datetime) -> TimerHandle:
        self.cancel(event_id)
        delay = max(0.0, (fire_at - self._clock()).total_seconds())
        task = asyncio.create_task(
            self._run(event_id, delay), name=f"giveaway-timer:{event_id}"
        )
        handle = TimerHandle(event_id=event_id, fire_at=fire_at, delay=delay, task=task)
        self._handles[event_id] = handle
        log.debug("Timer for giveaway %s armed, fires in %.3fs", event_id, delay)
        return handle

    def cancel(self, event_id: str) -> bool:
        handle = self._handles.pop(event_id, None)
        if handle is None or handle.done():
            return False
        if handle.task is asyncio.current_task():
            return False
        handle.task.cancel()
        return True

    def has(self, event_id: str) -> bool:
        return event_id in self._handles

    def get(self, event_id: str) -> Optional[TimerHandle]:
        return self._handles.get(event_id)

    def pending(self) -> List[TimerHandle]:
        return list(self._handles.values())

    async def shutdown(self) -> None:
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.task.cancel()
        if handles:
            await asyncio.gather(*(h.task for h in handles), return_exceptions=True)
        log.debug("Scheduler stopped, %d timer(s) cancelled", len(handles))

    async def _run(self, event_id: str, delay: float) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            log.debug("Timer for giveaway %s cancelled", event_id)
            raise

        handle = self._handles.get(event_id)
        if handle is not None and handle.task is asyncio.current_task():
            del self._handles[event_id]

        try:
            await self._on_fire(event_id)
        except Exception:
            log.exception("Deadline callback for giveaway %s failed", event_id)
