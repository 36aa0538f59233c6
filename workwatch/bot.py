"""Discord bot wiring for workwatch."""

from __future__ import annotations

import logging

import discord
from discord.ext import commands, tasks

from .models.config import BotSettings
from .models.records import MessageEvent
from .services.context import NameDirectory
from .services.pipeline import NotificationRequest, WatchPipeline

logger = logging.getLogger(__name__)

# Discord error code for "Cannot send messages to this user".
DM_DISABLED_CODE = 50007


def _channel_name(message: discord.Message) -> str:
    name = getattr(message.channel, "name", None)
    return name or str(message.channel.id)


def refresh_names(names: NameDirectory, message: discord.Message) -> None:
    names.set_channel_name(message.channel.id, _channel_name(message))
    names.set_user_name(message.author.id, str(message.author))
    for user in message.mentions:
        names.set_user_name(user.id, str(user))


def message_to_event(message: discord.Message) -> MessageEvent:
    reference = message.reference
    return MessageEvent(
        id=message.id,
        guild_id=message.guild.id,
        channel_id=message.channel.id,
        author_id=message.author.id,
        content=message.content,
        timestamp=message.created_at,
        mentioned_user_ids=[user.id for user in message.mentions],
        reply_to_message_id=reference.message_id if reference else None,
    )


async def deliver_notification(
    bot: commands.Bot, pipeline: WatchPipeline, request: NotificationRequest, reason: str
) -> bool:
    """DM the author and record the alert. Returns False when the DM could not be sent."""

    if not request.suggestion:
        logger.info("Concerning message %s has no suggestion to send", request.message_id)
        return False
    try:
        user = bot.get_user(request.author_id) or await bot.fetch_user(request.author_id)
        await user.send(request.suggestion)
    except discord.Forbidden as exc:
        if exc.code == DM_DISABLED_CODE:
            logger.info("User %s has DMs disabled; skipping notification", request.author_id)
            return False
        logger.exception("Not allowed to notify user %s", request.author_id)
        return False
    except discord.HTTPException:
        logger.exception("Failed to notify user %s", request.author_id)
        return False

    await pipeline.record_notification(request, reason)
    logger.info(
        "Notified user %s about message %s in #%s (severity: %s, issue: %s)",
        request.author_id,
        request.message_id,
        request.channel_label,
        request.severity,
        request.issue_type,
    )
    return True


def create_bot(
    settings: BotSettings,
    pipeline: WatchPipeline,
    names: NameDirectory,
) -> commands.Bot:
    intents = discord.Intents.default()
    intents.message_content = True

    bot = commands.Bot(
        command_prefix="!",
        intents=intents,
        help_command=None,
    )

    @tasks.loop(hours=1)
    async def retention_sweep() -> None:
        removed = await pipeline.sweep_expired_messages()
        logger.debug("Retention sweep removed %s messages", removed)

    @retention_sweep.before_loop
    async def before_retention_sweep() -> None:
        await bot.wait_until_ready()

    @bot.event
    async def setup_hook() -> None:  # type: ignore[override]
        logger.info(
            "Starting cleanup job (retention: %s hours)", settings.message_retention_hours
        )
        if not retention_sweep.is_running():
            retention_sweep.start()

    @bot.event
    async def on_ready() -> None:
        logger.info("Logged in as %s", bot.user)
        logger.info("Watching %s guild(s)", len(bot.guilds))

    @bot.event
    async def on_message(message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return

        refresh_names(names, message)
        logger.debug(
            "[%s] #%s | %s: %s",
            message.guild.name,
            _channel_name(message),
            message.author,
            message.content[:100],
        )

        outcome = await pipeline.handle_message(message_to_event(message))
        if outcome.notification is not None:
            reason = outcome.verdict.reason if outcome.verdict else None
            await deliver_notification(bot, pipeline, outcome.notification, reason or "")

    return bot
