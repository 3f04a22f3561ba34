from __future__ import annotations

import logging
from typing import Callable, Optional
from zoneinfo import ZoneInfo

import discord

from .errors import RenderFailure
from .models import Event

log = logging.getLogger(__name__)

ViewFactory = Callable[[str], discord.ui.View]


def build_event_embed(
    event: Event,
    *,
    participants: Optional[int],
    tz: ZoneInfo,
    status: str = "Active",
    winner_id: Optional[str] = None,
) -> discord.Embed:
    embed = discord.Embed(
        title="🎉 GIVEAWAY 🎉",
        description=f"**Prize:** {event.prize}",
        color=discord.Color.blue() if status == "Active" else discord.Color.dark_gray(),
    )
    if participants is not None:
        embed.add_field(name="Participants", value=str(participants), inline=True)
    ends_at = int(event.end_time.timestamp())
    end_local = event.end_time.astimezone(tz)
    embed.add_field(
        name="Ends At",
        value=f"{end_local:%Y-%m-%d %H:%M %Z} (<t:{ends_at}:R>)",
        inline=False,
    )
    embed.add_field(name="Status", value=status, inline=True)
    if status != "Active":
        embed.add_field(
            name="Winner",
            value=f"<@{winner_id}>" if winner_id else "No participants",
            inline=False,
        )
    embed.set_footer(text=f"Giveaway ID: {event.id}")
    return embed


class DiscordAnnouncer:
    """Renders giveaway notifications as channel messages and embeds."""

    def __init__(
        self,
        bot: discord.Client,
        *,
        timezone: str,
        view_factory: ViewFactory,
        logger_channel_id: Optional[int] = None,
    ) -> None:
        self.bot = bot
        self.tz = ZoneInfo(timezone)
        self._view_factory = view_factory
        self._logger_channel_id = logger_channel_id

    async def on_created(self, event: Event) -> Optional[str]:
        channel = await self._require_channel(event)
        view = self._view_factory(event.id)
        message = await channel.send(
            embed=build_event_embed(event, participants=0, tz=self.tz), view=view
        )
        self.bot.add_view(view, message_id=message.id)
        await self._notify_logger(
            f"Giveaway **{event.prize}** (`{event.id}`) started in <#{event.channel_id}>."
        )
        return str(message.id)

    async def on_participants_changed(self, event: Event, count: int) -> None:
        message = await self._fetch_event_message(event)
        if message:
            await message.edit(embed=build_event_embed(event, participants=count, tz=self.tz))

    async def on_concluded(self, event: Event, winner_id: Optional[str]) -> None:
        channel = await self._require_channel(event)
        message = await self._fetch_event_message(event, channel)
        if message:
            await message.edit(
                embed=build_event_embed(
                    event,
                    participants=None,
                    tz=self.tz,
                    status="Finished",
                    winner_id=winner_id,
                ),
                view=None,
            )
        if winner_id:
            await channel.send(
                f"🎉 Giveaway **{event.prize}** has ended! Congratulations <@{winner_id}>! "
                "Please contact an administrator to claim your prize."
            )
            await self._notify_logger(
                f"Giveaway **{event.prize}** (`{event.id}`) finished, winner <@{winner_id}>."
            )
        else:
            await channel.send(f"Giveaway **{event.prize}** ended without participants.")
            await self._notify_logger(
                f"Giveaway **{event.prize}** (`{event.id}`) finished with no winners."
            )

    async def on_rerolled(self, event: Event, winner_id: str) -> None:
        channel = await self._require_channel(event)
        await channel.send(
            f"🔁 Giveaway **{event.prize}** reroll result: <@{winner_id}>"
        )
        await self._notify_logger(
            f"Giveaway `{event.id}` rerolled. Winner: <@{winner_id}>."
        )

    async def _require_channel(self, event: Event) -> discord.TextChannel:
        channel = await self._fetch_text_channel(int(event.channel_id))
        if channel is None:
            raise RenderFailure(
                f"Channel {event.channel_id} for giveaway {event.id} is unavailable."
            )
        return channel

    async def _fetch_event_message(
        self, event: Event, channel: Optional[discord.TextChannel] = None
    ) -> Optional[discord.Message]:
        if not event.message_id:
            return None
        if channel is None:
            channel = await self._fetch_text_channel(int(event.channel_id))
            if channel is None:
                return None
        try:
            return await channel.fetch_message(int(event.message_id))
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None

    async def _notify_logger(self, message: str) -> None:
        if not self._logger_channel_id:
            return
        channel = await self._fetch_text_channel(self._logger_channel_id)
        if channel:
            try:
                await channel.send(f"[Giveaway] {message}")
            except discord.HTTPException as exc:
                log.warning(
                    "Failed to send log message to %s: %s", self._logger_channel_id, exc
                )

    async def _fetch_text_channel(
        self, channel_id: int
    ) -> Optional[discord.TextChannel]:
        channel = self.bot.get_channel(channel_id)
        if isinstance(channel, discord.TextChannel):
            return channel
        try:
            fetched = await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None
        return fetched if isinstance(fetched, discord.TextChannel) else None
