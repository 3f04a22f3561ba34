from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from .commands import AdminCommands, CommandResult, GiveawayMessage
from .config import Config, ConfigError, load_config
from .discord_announcer import DiscordAnnouncer
from .errors import StoreUnavailable
from .giveaway_manager import GiveawayManager
from .storage import EventStorage
from .views import GiveawayView

log = logging.getLogger(__name__)

ENV_PATH = Path(".env")


def _load_env_file(path: Path = ENV_PATH) -> None:
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and ((value[0] == value[-1]) and value.startswith(("'", '"'))):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def configure_logging(level: str) -> None:
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_dir = Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / "log.txt", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


class GiveawayBot(commands.Bot):
    def __init__(self, config: Config, storage: EventStorage) -> None:
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            application_id=config.application_id,
        )
        self.config = config
        announcer = DiscordAnnouncer(
            self,
            timezone=config.default_timezone,
            view_factory=self.build_view,
            logger_channel_id=config.logging.logger_channel_id,
        )
        self.manager = GiveawayManager(
            storage, announcer, conclusion=config.conclusion
        )
        self.admin = AdminCommands(self.manager, config)

    async def setup_hook(self) -> None:
        try:
            await self.manager.start()
        except StoreUnavailable:
            log.critical("Giveaway recovery failed; timers were not restored.")
            raise
        for event in await self.manager.list_active():
            if event.message_id:
                self.add_view(self.build_view(event.id), message_id=int(event.message_id))
        self._recovery_sweep.change_interval(
            minutes=self.config.recovery.sweep_interval_minutes
        )
        self._recovery_sweep.start()
        await self.tree.sync()
        dev_guild_id = self.config.permissions.development_guild_id
        if dev_guild_id:
            guild = discord.Object(dev_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)

    @tasks.loop(minutes=1)
    async def _recovery_sweep(self) -> None:
        try:
            await self.manager.recovery.run()
        except StoreUnavailable:
            log.warning("Giveaway recovery sweep skipped; store unavailable.")

    @_recovery_sweep.before_loop
    async def _before_recovery_sweep(self) -> None:
        await self.wait_until_ready()

    async def close(self) -> None:
        self._recovery_sweep.cancel()
        await self.manager.close()
        await super().close()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, self.user.id)  # type: ignore[union-attr]

    def build_view(self, event_id: str) -> GiveawayView:
        return GiveawayView(self.manager, event_id)


def build_bot(config_path: Path) -> GiveawayBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level)
    storage = EventStorage(config.storage.path)
    return GiveawayBot(config, storage)


async def _reply(interaction: discord.Interaction, result: CommandResult) -> None:
    prefix = "" if result.ok else "❌ "
    await interaction.followup.send(f"{prefix}{result.message}", ephemeral=True)


async def _fetch_giveaway_message(
    bot: GiveawayBot, channel: object, message_id: str
) -> Optional[GiveawayMessage]:
    if not isinstance(channel, discord.TextChannel):
        return None
    try:
        message = await channel.fetch_message(int(message_id))
    except ValueError:
        return None
    except (discord.NotFound, discord.Forbidden, discord.HTTPException) as exc:
        log.info("Could not fetch giveaway message %s: %s", message_id, exc)
        return None
    embed = message.embeds[0] if message.embeds else None
    return GiveawayMessage(
        title=(embed.title if embed else None) or "",
        description=(embed.description if embed else None) or "",
        fields=[(f.name or "", f.value or "") for f in embed.fields] if embed else [],
        from_bot=bot.user is not None and message.author.id == bot.user.id,
    )


def register_commands(bot: GiveawayBot) -> None:
    admin = bot.admin

    @bot.tree.command(name="giveaway-create", description="Create a new giveaway.")
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.describe(
        prize="The prize for the giveaway.",
        end_time="End time in 'YYYY-MM-DD HH:MM' (24h). Defaults to the configured duration.",
        channel="Channel to post the giveaway in. Defaults to the current channel.",
        manual_users="Users to enter right away (mentions separated by spaces).",
    )
    async def giveaway_create(
        interaction: discord.Interaction,
        prize: str,
        end_time: Optional[str] = None,
        channel: Optional[discord.TextChannel] = None,
        manual_users: Optional[str] = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        target = channel or interaction.channel
        result = await admin.create(
            guild_id=str(interaction.guild_id),
            channel_id=str(getattr(target, "id", interaction.channel_id)),
            created_by=str(interaction.user.id),
            prize=prize,
            end_time=end_time,
            manual_users=manual_users,
        )
        await _reply(interaction, result)

    @bot.tree.command(name="giveaway-end", description="End a giveaway immediately.")
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.describe(giveaway_id="Identifier of the giveaway to end.")
    async def giveaway_end(interaction: discord.Interaction, giveaway_id: str) -> None:
        await interaction.response.defer(ephemeral=True)
        await _reply(interaction, await admin.end(giveaway_id.strip()))

    @bot.tree.command(name="giveaway-list", description="List all active giveaways.")
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def giveaway_list(interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        await _reply(interaction, await admin.list(str(interaction.guild_id)))

    @bot.tree.command(
        name="giveaway-reroll", description="Reroll the winner of a finished giveaway."
    )
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.describe(giveaway_id="Identifier of the giveaway to reroll.")
    async def giveaway_reroll(interaction: discord.Interaction, giveaway_id: str) -> None:
        await interaction.response.defer(ephemeral=True)
        await _reply(interaction, await admin.reroll(giveaway_id.strip()))

    @bot.tree.command(
        name="giveaway-participants",
        description="Show who has entered a giveaway.",
    )
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.describe(giveaway_id="Identifier of the giveaway to inspect.")
    async def giveaway_participants(
        interaction: discord.Interaction, giveaway_id: str
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        await _reply(interaction, await admin.participants(giveaway_id.strip()))

    @bot.tree.command(
        name="giveaway-recover",
        description="Adopt an existing giveaway message the bot lost track of.",
    )
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.describe(
        message_id="Discord message ID of the giveaway post.",
        channel="Channel the message is in. Defaults to the current channel.",
        end_time="End time in 'YYYY-MM-DD HH:MM' (24h), if the post does not show one.",
    )
    async def giveaway_recover(
        interaction: discord.Interaction,
        message_id: str,
        channel: Optional[discord.TextChannel] = None,
        end_time: Optional[str] = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        target = channel or interaction.channel
        message_id = message_id.strip()
        result = await admin.recover(
            guild_id=str(interaction.guild_id),
            channel_id=str(getattr(target, "id", interaction.channel_id)),
            message_id=message_id,
            created_by=str(interaction.user.id),
            message=await _fetch_giveaway_message(bot, target, message_id),
            end_time=end_time,
        )
        if result.ok and result.data.is_active:
            bot.add_view(bot.build_view(result.data.id), message_id=int(message_id))
        await _reply(interaction, result)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Discord Giveaway Bot")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    register_commands(bot)

    async with bot:
        await bot.start(bot.config.token)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
