"""Discord bot entry point for Discord Join Notify."""
from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Optional

import discord

from .config import ConfigurationError, Settings, get_settings
from .models import GuildVoiceSnapshot, SnapshotUnavailable, VoicePresence, VoiceTransition
from .notifications import LookupFailure, NotificationDispatcher
from .roster import Roster
from .service import PresenceService
from .telegram import TelegramSender

logger = logging.getLogger(__name__)


_BANNER = "Discord Join Notify: voice channel joins delivered as Telegram messages"


def default_intents() -> discord.Intents:
    intents = discord.Intents.none()
    intents.guilds = True
    intents.voice_states = True
    return intents


def transition_from_states(
    member: discord.Member,
    before: Optional[discord.VoiceState],
    after: discord.VoiceState,
) -> VoiceTransition:
    """Translate a discord.py voice update into a ``VoiceTransition``."""

    guild_id = member.guild.id
    previous_channel = before.channel.id if before and before.channel else None
    return VoiceTransition(
        person_account_id=member.id,
        guild_id=guild_id,
        # discord.py reports voice states per guild, so a previous channel
        # always belongs to the same guild.
        previous_guild_id=guild_id if previous_channel is not None else None,
        previous_channel=previous_channel,
        new_channel=after.channel.id if after.channel else None,
        self_deafened=bool(after.self_deaf),
    )


def snapshot_from_guild(guild: Optional[discord.Guild]) -> GuildVoiceSnapshot:
    """Read the cached voice states of a guild."""

    if guild is None or guild.unavailable:
        raise SnapshotUnavailable("guild is not available in the cache")
    # discord.py only exposes cached voice states per channel.
    voice_states = {}
    for channel in [*guild.voice_channels, *guild.stage_channels]:
        for member_id, state in channel.voice_states.items():
            voice_states[member_id] = VoicePresence(
                channel_id=state.channel.id if state.channel else channel.id,
                self_deafened=bool(state.self_deaf),
            )
    return GuildVoiceSnapshot(
        guild_id=guild.id, guild_name=guild.name, voice_states=voice_states
    )


async def resolve_display_name(client: discord.Client, account_id: int) -> str:
    user = client.get_user(account_id)
    if user is None:
        try:
            user = await client.fetch_user(account_id)
        except (discord.HTTPException, OSError, asyncio.TimeoutError) as exc:
            raise LookupFailure(f"Discord user {account_id}: {exc}") from exc
    return user.name


def build_bot(
    roster: Roster,
    dispatcher: NotificationDispatcher,
    intents: Optional[discord.Intents] = None,
) -> discord.Client:
    bot = discord.Client(intents=intents or default_intents())

    async def _resolve_display_name(account_id: int) -> str:
        return await resolve_display_name(bot, account_id)

    service = PresenceService(roster, dispatcher, _resolve_display_name)
    setattr(bot, "presence_service", service)

    @bot.event
    async def on_ready() -> None:
        logger.info("Bot is online as %s", bot.user)

    @bot.event
    async def on_voice_state_update(
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        transition = transition_from_states(member, before, after)
        guild = member.guild
        await service.on_voice_transition(transition, lambda: snapshot_from_guild(guild))

    return bot


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            logger.debug("Signal handler for %s not supported", signum)


async def run(settings: Settings) -> None:
    """Run the Discord gateway until it stops or a stop signal arrives."""

    sender = TelegramSender(settings.telegram_bot_token)
    dispatcher = NotificationDispatcher(sender)
    bot = build_bot(settings.build_roster(), dispatcher)

    stop = asyncio.Event()
    _install_signal_handlers(stop)
    bot_task = asyncio.create_task(bot.start(settings.discord_bot_token))
    stop_task = asyncio.create_task(stop.wait())
    try:
        done, _ = await asyncio.wait(
            {bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if bot_task in done:
            bot_task.result()
            return
        logger.info("Received stop signal, shutting down")
        await bot.close()
        await bot_task
    finally:
        stop_task.cancel()
        if not bot.is_closed():
            await bot.close()
        await dispatcher.drain(settings.shutdown_grace_seconds)
        await sender.aclose()
        logger.info(
            "Delivered %d telegram messages, %d failed",
            dispatcher.stats.sent,
            dispatcher.stats.failed,
        )


def configure_logging() -> None:
    debug = os.environ.get("JOIN_NOTIFY_DEBUG", "").lower() in {"1", "true", "yes", "on"}
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO)
    logging.getLogger("discord").setLevel(logging.WARNING)
    # httpx logs request URLs, and Telegram URLs carry the bot token.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def main() -> None:
    configure_logging()
    logger.info(_BANNER)
    try:
        settings = get_settings()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from None
    try:
        asyncio.run(run(settings))
    except discord.LoginFailure as exc:
        logger.error("Discord rejected the bot token: %s", exc)
        raise SystemExit(1) from None
    except KeyboardInterrupt:  # pragma: no cover - interactive shutdown
        logger.info("Interrupted, shutting down")


__all__ = [
    "build_bot",
    "configure_logging",
    "default_intents",
    "main",
    "resolve_display_name",
    "run",
    "snapshot_from_guild",
    "transition_from_states",
]
