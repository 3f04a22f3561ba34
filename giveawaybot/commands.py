"""Transport-neutral administrative commands.

Each command maps onto one ``GiveawayManager`` call and returns a
``CommandResult`` the Discord layer (or any other transport) can render.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .config import Config
from .errors import GiveawayError, StoreUnavailable
from .giveaway_manager import GiveawayManager
from .models import ConcludeOutcome, utcnow

log = logging.getLogger(__name__)

MENTION_RE = re.compile(r"<@!?(\d+)>")
PRIZE_RE = re.compile(r"\*\*Prize:\*\*\s*(.+?)(?:\n|$)")
TIMESTAMP_RE = re.compile(r"<t:(\d+)(?::[a-zA-Z])?>")
LIST_LIMIT = 3900


@dataclass(slots=True, frozen=True)
class CommandResult:
    ok: bool
    message: str
    data: Any = None


def parse_end_time(value: str, tz: ZoneInfo) -> datetime:
    value = value.strip()
    for fmt in ("%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S"):
        try:
            naive = datetime.strptime(value, fmt)
            return naive.replace(tzinfo=tz).astimezone(UTC)
        except ValueError:
            continue
    raise ValueError("End time must be in 'YYYY-MM-DD HH:MM' (24h) format.")


def parse_mentions(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return list(dict.fromkeys(MENTION_RE.findall(value)))


@dataclass(slots=True, frozen=True)
class GiveawayMessage:
    """The parts of a posted Discord message that recovery looks at."""
    title: str
    description: str
    fields: Sequence[Tuple[str, str]] = ()
    from_bot: bool = True


def read_prize(message: GiveawayMessage) -> Optional[str]:
    match = PRIZE_RE.search(message.description or "")
    return match.group(1).strip() if match else None


def read_end_time(message: GiveawayMessage) -> Optional[datetime]:
    for name, value in message.fields:
        if "Ends" not in name:
            continue
        match = TIMESTAMP_RE.search(value)
        if match:
            return datetime.fromtimestamp(int(match.group(1)), tz=UTC)
    return None


class AdminCommands:
    def __init__(
        self,
        manager: GiveawayManager,
        config: Config,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.manager = manager
        self.config = config
        self.timezone = ZoneInfo(config.default_timezone)
        self._clock = clock

    async def create(
        self,
        *,
        guild_id: str,
        channel_id: str,
        created_by: str,
        prize: str,
        end_time: Optional[str] = None,
        manual_users: Optional[str] = None,
    ) -> CommandResult:
        try:
            if end_time:
                end = parse_end_time(end_time, self.timezone)
            else:
                end = self._clock() + timedelta(
                    minutes=self.config.manual_defaults.duration_minutes
                )
            initial = parse_mentions(manual_users)
            event = await self.manager.create_event(
                guild_id=guild_id,
                channel_id=channel_id,
                prize=prize,
                end_time=end,
                created_by=created_by,
                initial_participants=initial,
            )
        except (ValueError, GiveawayError) as exc:
            return self._failure("create", exc)

        return CommandResult(
            True,
            f"Giveaway `{event.id}` created in <#{event.channel_id}> for **{event.prize}**. "
            f"Ends {self._format_time(event.end_time)}. Initial participants: {len(initial)}.",
            event,
        )

    async def end(self, event_id: str) -> CommandResult:
        try:
            result = await self.manager.end(event_id)
        except GiveawayError as exc:
            return self._failure("end", exc)

        if result.outcome is ConcludeOutcome.ALREADY_CONCLUDED:
            return CommandResult(True, f"Giveaway `{event_id}` has already ended.", result)
        if result.outcome is ConcludeOutcome.NO_PARTICIPANTS:
            return CommandResult(
                True, f"Giveaway `{event_id}` ended without participants.", result
            )
        return CommandResult(
            True,
            f"Giveaway `{event_id}` ended. Winner: <@{result.winner_id}>.",
            result,
        )

    async def list(self, guild_id: Optional[str] = None) -> CommandResult:
        try:
            events = await self.manager.list_active(guild_id)
            lines = []
            for event in events:
                count = await self.manager.participant_count(event.id)
                lines.append(
                    f"- `{event.id}` • **{event.prize}** • <#{event.channel_id}> • "
                    f"ends {self._format_time(event.end_time)} • {count} participant(s)"
                )
        except GiveawayError as exc:
            return self._failure("list", exc)

        if not lines:
            return CommandResult(True, "No active giveaways found.", [])
        text = "\n".join(lines)
        if len(text) > LIST_LIMIT:
            text = text[:LIST_LIMIT] + "\n…list truncated."
        return CommandResult(True, text, events)

    async def reroll(self, event_id: str) -> CommandResult:
        try:
            event = await self.manager.reroll(event_id)
        except GiveawayError as exc:
            return self._failure("reroll", exc)
        return CommandResult(
            True,
            f"Giveaway `{event_id}` rerolled. New winner: <@{event.winner_id}>.",
            event,
        )

    async def participants(self, event_id: str) -> CommandResult:
        try:
            event = await self.manager.get_event(event_id)
            members = await self.manager.participants(event_id)
        except GiveawayError as exc:
            return self._failure("participants", exc)

        if not members:
            return CommandResult(True, f"No participants in `{event.id}` yet.", [])
        return CommandResult(
            True,
            f"Participants for **{event.prize}** (`{event.id}`, {len(members)}):\n"
            + self._format_members(members),
            members,
        )

    async def recover(
        self,
        *,
        guild_id: str,
        channel_id: str,
        message_id: str,
        created_by: str,
        message: Optional[GiveawayMessage],
        end_time: Optional[str] = None,
    ) -> CommandResult:
        if message is None:
            return CommandResult(
                False,
                "Could not find the message. Make sure the message ID and channel are correct.",
            )
        if not message.from_bot:
            return CommandResult(
                False, "Recovery only works for giveaway messages posted by this bot."
            )
        if "GIVEAWAY" not in (message.title or ""):
            return CommandResult(False, "This message does not look like a giveaway.")

        try:
            end = read_end_time(message)
            if end is None:
                if not end_time:
                    return CommandResult(
                        False,
                        "Could not read the end time from the message. "
                        "Please pass end_time as 'YYYY-MM-DD HH:MM'.",
                    )
                end = parse_end_time(end_time, self.timezone)
            event = await self.manager.recover_event(
                guild_id=guild_id,
                channel_id=channel_id,
                message_id=message_id,
                prize=read_prize(message) or "Unknown Prize",
                end_time=end,
                created_by=created_by,
            )
        except (ValueError, GiveawayError) as exc:
            return self._failure("recover", exc)

        state = "active" if event.is_active else "already ended"
        return CommandResult(
            True,
            f"Giveaway `{event.id}` recovered from message `{message_id}` for "
            f"**{event.prize}** ({state}, ends {self._format_time(event.end_time)}). "
            "Previous participants need to enter again.",
            event,
        )

    def _format_time(self, value: datetime) -> str:
        return value.astimezone(self.timezone).strftime("%Y-%m-%d %H:%M %Z")

    @staticmethod
    def _format_members(members: Iterable[str]) -> str:
        return "\n".join(f"- <@{member}>" for member in members)

    @staticmethod
    def _failure(command: str, exc: Exception) -> CommandResult:
        if isinstance(exc, StoreUnavailable):
            log.error("Giveaway command %s failed on storage: %s", command, exc)
            return CommandResult(
                False, "Giveaway storage is unavailable right now. Please try again."
            )
        log.info("Giveaway command %s rejected: %s", command, exc)
        return CommandResult(False, str(exc))
