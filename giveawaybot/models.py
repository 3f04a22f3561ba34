"""Data models used for giveaway persistence and runtime state."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class EventStatus(enum.Enum):
    ACTIVE = "active"
    CONCLUDING = "concluding"
    CONCLUDED = "concluded"


class ConcludeReason(enum.Enum):
    TIMEOUT = "timeout"
    FORCED = "forced"


class ConcludeOutcome(enum.Enum):
    WINNER = "winner"
    NO_PARTICIPANTS = "no_participants"
    ALREADY_CONCLUDED = "already_concluded"


class ToggleAction(enum.Enum):
    JOINED = "joined"
    LEFT = "left"


@dataclass(slots=True)
class Event:
    """Represents a giveaway along with its lifecycle metadata."""
    id: str
    guild_id: str
    channel_id: str
    prize: str
    created_by: str
    created_at: datetime
    end_time: datetime
    status: EventStatus = EventStatus.ACTIVE
    winner_id: Optional[str] = None
    concluded_at: Optional[datetime] = None
    message_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is EventStatus.ACTIVE


@dataclass(slots=True, frozen=True)
class ConclusionResult:
    """Outcome of a single call to ``LifecycleController.conclude``."""
    event: Event
    outcome: ConcludeOutcome
    winner_id: Optional[str] = None

    @property
    def already_concluded(self) -> bool:
        return self.outcome is ConcludeOutcome.ALREADY_CONCLUDED


@dataclass(slots=True, frozen=True)
class ToggleResult:
    action: ToggleAction
    count: int
