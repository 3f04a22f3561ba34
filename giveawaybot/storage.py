"""SQLite persistence helpers for giveaway events and participants."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar

from .errors import EventNotFound, StoreUnavailable
from .models import Event, EventStatus, utcnow

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_EVENT_COLUMNS = (
    "id, guild_id, channel_id, prize, created_by, created_at, end_time, "
    "status, winner_id, concluded_at, message_id"
)


class EventStorage:
    """Async wrapper around a SQLite database holding giveaway state.

    Each call opens its own connection on a worker thread. Status transitions
    are conditional updates, so the affected row count tells the caller whether
    it won a race against another writer.
    """

    def __init__(self, path: Path) -> None:
        """Initialise the storage helper with the database file path."""
        self.path = path

    async def initialise(self) -> None:
        """Create the database file and schema if they do not exist yet."""
        await self._run(self._initialise_sync)

    async def create_event(self, event: Event) -> str:
        await self._run(self._create_event_sync, event)
        LOGGER.debug("Stored giveaway %s", event.id)
        return event.id

    async def get_event(self, event_id: str) -> Event:
        event = await self._run(self._get_event_sync, event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event

    async def get_event_by_message(self, message_id: str) -> Optional[Event]:
        return await self._run(self._get_event_by_message_sync, message_id)

    async def get_active_events(self, guild_id: Optional[str] = None) -> List[Event]:
        return await self._run(self._events_by_status_sync, EventStatus.ACTIVE, guild_id)

    async def get_concluding_events(self) -> List[Event]:
        return await self._run(self._events_by_status_sync, EventStatus.CONCLUDING, None)

    async def add_participant(self, event_id: str, participant_id: str) -> bool:
        """Insert a participant; returns False if they were already present."""
        return await self._run(self._add_participant_sync, event_id, participant_id)

    async def remove_participant(self, event_id: str, participant_id: str) -> bool:
        return await self._run(self._remove_participant_sync, event_id, participant_id)

    async def list_participants(self, event_id: str) -> List[str]:
        return await self._run(self._list_participants_sync, event_id)

    async def count_participants(self, event_id: str) -> int:
        return await self._run(self._count_participants_sync, event_id)

    async def begin_conclusion(self, event_id: str) -> bool:
        """Atomically move an event from active to concluding."""
        return await self._run(
            self._update_guarded_sync,
            "UPDATE events SET status = ? WHERE id = ? AND status = ?",
            (EventStatus.CONCLUDING.value, event_id, EventStatus.ACTIVE.value),
        )

    async def record_winner(self, event_id: str, winner_id: str) -> bool:
        """Persist a pending winner for an event that is still concluding."""
        return await self._run(
            self._update_guarded_sync,
            "UPDATE events SET winner_id = ? WHERE id = ? AND status = ?",
            (winner_id, event_id, EventStatus.CONCLUDING.value),
        )

    async def mark_concluded(
        self, event_id: str, winner_id: Optional[str], concluded_at: datetime
    ) -> bool:
        return await self._run(
            self._update_guarded_sync,
            "UPDATE events SET status = ?, winner_id = ?, concluded_at = ? "
            "WHERE id = ? AND status = ?",
            (
                EventStatus.CONCLUDED.value,
                winner_id,
                concluded_at.isoformat(),
                event_id,
                EventStatus.CONCLUDING.value,
            ),
        )

    async def set_winner(self, event_id: str, winner_id: str) -> bool:
        """Replace the winner of a concluded event (reroll)."""
        return await self._run(
            self._update_guarded_sync,
            "UPDATE events SET winner_id = ? WHERE id = ? AND status = ?",
            (winner_id, event_id, EventStatus.CONCLUDED.value),
        )

    async def attach_message(self, event_id: str, message_id: str) -> None:
        await self._run(
            self._update_guarded_sync,
            "UPDATE events SET message_id = ? WHERE id = ?",
            (message_id, event_id),
        )

    # --- Internal helpers -------------------------------------------------

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            LOGGER.warning("Giveaway store operation %s failed: %s", func.__name__, exc)
            raise StoreUnavailable(str(exc)) from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _initialise_sync(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            self._ensure_schema(conn)
            conn.commit()
        finally:
            conn.close()

    def _create_event_sync(self, event: Event) -> None:
        conn = self._connect()
        try:
            conn.execute(
                f"INSERT INTO events({_EVENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    event.id,
                    event.guild_id,
                    event.channel_id,
                    event.prize,
                    event.created_by,
                    event.created_at.isoformat(),
                    event.end_time.isoformat(),
                    event.status.value,
                    event.winner_id,
                    event.concluded_at.isoformat() if event.concluded_at else None,
                    event.message_id,
                ),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _get_event_sync(self, event_id: str) -> Optional[Event]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE id = ?", (event_id,)
            ).fetchone()
            return self._row_to_event(row) if row else None
        finally:
            conn.close()

    def _get_event_by_message_sync(self, message_id: str) -> Optional[Event]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE message_id = ?", (message_id,)
            ).fetchone()
            return self._row_to_event(row) if row else None
        finally:
            conn.close()

    def _events_by_status_sync(
        self, status: EventStatus, guild_id: Optional[str]
    ) -> List[Event]:
        query = f"SELECT {_EVENT_COLUMNS} FROM events WHERE status = ?"
        params: list[Any] = [status.value]
        if guild_id is not None:
            query += " AND guild_id = ?"
            params.append(guild_id)
        query += " ORDER BY end_time ASC"
        conn = self._connect()
        try:
            return [self._row_to_event(row) for row in conn.execute(query, params)]
        finally:
            conn.close()

    def _add_participant_sync(self, event_id: str, participant_id: str) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO participants(event_id, participant_id, joined_at) "
                "VALUES (?, ?, ?)",
                (event_id, participant_id, utcnow().isoformat()),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def _remove_participant_sync(self, event_id: str, participant_id: str) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM participants WHERE event_id = ? AND participant_id = ?",
                (event_id, participant_id),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def _list_participants_sync(self, event_id: str) -> List[str]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT participant_id FROM participants WHERE event_id = ? "
                "ORDER BY joined_at, rowid",
                (event_id,),
            )
            return [row["participant_id"] for row in rows]
        finally:
            conn.close()

    def _count_participants_sync(self, event_id: str) -> int:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM participants WHERE event_id = ?",
                (event_id,),
            ).fetchone()
            return int(row["total"])
        finally:
            conn.close()

    def _update_guarded_sync(self, query: str, params: tuple) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount == 1
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        concluded_at = row["concluded_at"]
        return Event(
            id=row["id"],
            guild_id=row["guild_id"],
            channel_id=row["channel_id"],
            prize=row["prize"],
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            end_time=datetime.fromisoformat(row["end_time"]),
            status=EventStatus(row["status"]),
            winner_id=row["winner_id"],
            concluded_at=datetime.fromisoformat(concluded_at) if concluded_at else None,
            message_id=row["message_id"],
        )

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                guild_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                prize TEXT NOT NULL,
                created_by TEXT NOT NULL,
                created_at TEXT NOT NULL,
                end_time TEXT NOT NULL,
                status TEXT NOT NULL,
                winner_id TEXT,
                concluded_at TEXT,
                message_id TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS participants (
                event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                participant_id TEXT NOT NULL,
                joined_at TEXT NOT NULL,
                PRIMARY KEY (event_id, participant_id)
            )
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_events_status_end_time
            ON events(status, end_time)
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_events_message_id
            ON events(message_id)
            """
        )
