from __future__ import annotations

import logging

import discord

from .errors import EventNotFound, GiveawayError, InvalidState
from .models import ToggleAction

log = logging.getLogger(__name__)


class GiveawayView(discord.ui.View):
    def __init__(self, manager, event_id: str) -> None:
        super().__init__(timeout=None)
        self.manager = manager
        self.event_id = event_id

        enter_button = discord.ui.Button(
            label="Enter Giveaway",
            emoji="🎁",
            style=discord.ButtonStyle.primary,
            custom_id=f"giveaway:toggle:{event_id}",
        )
        enter_button.callback = self.toggle_callback  # type: ignore[assignment]
        self.add_item(enter_button)

    async def toggle_callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild:
            await interaction.response.send_message(
                "You can only join giveaways from a guild.", ephemeral=True
            )
            return
        try:
            result = await self.manager.toggle(self.event_id, str(interaction.user.id))
        except EventNotFound:
            message = "This giveaway is no longer available."
        except InvalidState:
            message = "This giveaway has already finished."
        except GiveawayError as exc:
            log.warning("Toggle on giveaway %s failed: %s", self.event_id, exc)
            message = "Failed to process your entry. Please try again."
        else:
            if result.action is ToggleAction.JOINED:
                message = "You're in! Good luck!"
            else:
                message = "You've left the giveaway."
        await interaction.response.send_message(message, ephemeral=True)
