"""Participant membership for active giveaways."""

from __future__ import annotations

import logging
from typing import Dict, List, Set

from .errors import InvalidState
from .locks import EventLocks
from .models import Event, ToggleAction, ToggleResult
from .storage import EventStorage

log = logging.getLogger(__name__)


class ParticipantRegistry:
    """Tracks who has joined which giveaway.

    The store is authoritative; ``_members`` only caches membership sets for
    events this process has touched and can always be rebuilt from it.
    """

    def __init__(self, storage: EventStorage, locks: EventLocks) -> None:
        self.storage = storage
        self._locks = locks
        self._members: Dict[str, Set[str]] = {}

    async def add(self, event_id: str, participant_id: str) -> int:
        async with self._locks.hold(event_id):
            members = await self._active_members(event_id)
            await self._add_locked(event_id, participant_id, members)
            return len(members)

    async def remove(self, event_id: str, participant_id: str) -> int:
        async with self._locks.hold(event_id):
            members = await self._active_members(event_id)
            await self._remove_locked(event_id, participant_id, members)
            return len(members)

    async def toggle(self, event_id: str, participant_id: str) -> ToggleResult:
        async with self._locks.hold(event_id):
            members = await self._active_members(event_id)
            if participant_id in members:
                await self._remove_locked(event_id, participant_id, members)
                action = ToggleAction.LEFT
            else:
                await self._add_locked(event_id, participant_id, members)
                action = ToggleAction.JOINED
            return ToggleResult(action=action, count=len(members))

    async def members(self, event_id: str) -> List[str]:
        """Return the ordered participant list straight from the store.

        Does not take the event lock, so the lifecycle controller can call it
        while holding that lock. It refreshes a membership set that is already
        cached but never adds a new one.
        """
        participants = await self.storage.list_participants(event_id)
        if event_id in self._members:
            self._members[event_id] = set(participants)
        return participants

    async def count(self, event_id: str) -> int:
        cached = self._members.get(event_id)
        if cached is not None:
            return len(cached)
        return await self.storage.count_participants(event_id)

    def forget(self, event_id: str) -> None:
        self._members.pop(event_id, None)

    async def _active_members(self, event_id: str) -> Set[str]:
        event = await self.storage.get_event(event_id)
        self._ensure_active(event)
        cached = self._members.get(event_id)
        if cached is None:
            cached = set(await self.storage.list_participants(event_id))
            self._members[event_id] = cached
        return cached

    @staticmethod
    def _ensure_active(event: Event) -> None:
        if not event.is_active:
            raise InvalidState(
                event.id,
                event.status,
                f"Giveaway {event.id} has already finished.",
            )

    async def _add_locked(
        self, event_id: str, participant_id: str, members: Set[str]
    ) -> None:
        if participant_id in members:
            return
        inserted = await self.storage.add_participant(event_id, participant_id)
        members.add(participant_id)
        if inserted:
            log.debug("Participant %s joined giveaway %s", participant_id, event_id)

    async def _remove_locked(
        self, event_id: str, participant_id: str, members: Set[str]
    ) -> None:
        if participant_id not in members:
            return
        removed = await self.storage.remove_participant(event_id, participant_id)
        members.discard(participant_id)
        if removed:
            log.debug("Participant %s left giveaway %s", participant_id, event_id)
