"""Exceptions raised by the giveaway core.

Command handlers catch ``GiveawayError`` and render its message back to the
caller. A duplicate conclusion is not an error; it is
reported as ``ConcludeOutcome.ALREADY_CONCLUDED``.
"""

from __future__ import annotations

from typing import Optional

from .models import EventStatus


class GiveawayError(RuntimeError):
    """Base class for all giveaway errors."""


class EventNotFound(GiveawayError):
    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Giveaway {event_id} not found.")


class InvalidState(GiveawayError):
    """Raised when an operation does not fit the event's current status."""

    def __init__(
        self,
        event_id: str,
        status: EventStatus,
        message: Optional[str] = None,
    ) -> None:
        self.event_id = event_id
        self.status = status
        super().__init__(
            message or f"Giveaway {event_id} is {status.value}; operation not allowed."
        )


class StoreUnavailable(GiveawayError):
    """Raised when the persistence layer cannot complete a read or write."""


class RenderFailure(GiveawayError):
    """Raised by announcers when a notification cannot be delivered."""


class MessageAlreadyTracked(GiveawayError):
    def __init__(self, message_id: str, event_id: str) -> None:
        self.message_id = message_id
        self.event_id = event_id
        super().__init__(
            f"Message {message_id} already belongs to giveaway {event_id}."
        )
