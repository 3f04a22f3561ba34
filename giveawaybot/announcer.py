"""Notification interface between the giveaway core and its front end."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .models import Event

log = logging.getLogger(__name__)


class Announcer(Protocol):
    """Receives lifecycle notifications. Every call is best-effort."""

    async def on_created(self, event: Event) -> Optional[str]:
        """Announce a new giveaway, returning a message reference if any."""
        ...

    async def on_participants_changed(self, event: Event, count: int) -> None:
        ...

    async def on_concluded(self, event: Event, winner_id: Optional[str]) -> None:
        """``winner_id`` is None when nobody entered."""
        ...

    async def on_rerolled(self, event: Event, winner_id: str) -> None:
        ...


class LoggingAnnouncer:
    """Announcer that only writes to the log; used when no front end is wired."""

    async def on_created(self, event: Event) -> Optional[str]:
        log.info(
            "Giveaway %s created in channel %s: %s (ends %s)",
            event.id,
            event.channel_id,
            event.prize,
            event.end_time.isoformat(),
        )
        return None

    async def on_participants_changed(self, event: Event, count: int) -> None:
        log.info("Giveaway %s now has %d participant(s)", event.id, count)

    async def on_concluded(self, event: Event, winner_id: Optional[str]) -> None:
        if winner_id is None:
            log.info("Giveaway %s ended without participants", event.id)
        else:
            log.info("Giveaway %s ended, winner %s", event.id, winner_id)

    async def on_rerolled(self, event: Event, winner_id: str) -> None:
        log.info("Giveaway %s rerolled, new winner %s", event.id, winner_id)
