"""Per-event mutual exclusion for the giveaway core."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict


@dataclass(slots=True)
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class EventLocks:
    """Keyed ``asyncio.Lock`` registry.

    Conclusion, reroll and membership changes for the same event id all go
    through ``hold``. An entry lives only while some caller holds or waits on
    it, so the map stays bounded by the number of in-flight operations.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, event_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(event_id)
        if entry is None:
            entry = _LockEntry()
            self._entries[event_id] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(event_id, None)

    def __len__(self) -> int:
        return len(self._entries)
