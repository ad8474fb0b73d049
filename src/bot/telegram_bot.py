"""
Recurring Reminders - Telegram Bot.

Wires the reminder cycle to a running Telegram application:
the job queue triggers run_cycle every CYCLE_INTERVAL_MINUTES, and
message_reaction updates are captured so the next cycle can see who
acknowledged which reminder.

Reaction updates only reach bots that are administrators of the group,
and only when polling asks for them (allowed_updates=Update.ALL_TYPES).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    ContextTypes,
    MessageReactionHandler,
)

from src.adapters.channel_factory import create_channel
from src.config import settings
from src.core.lifecycle import resolve_destination, run_cycle
from src.core.task_loader import import_tasks
from src.data.db import MessageLogDB, ReminderDB, StoreError
from src.ports.channel_port import MessagingChannel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Handlers and jobs
# ---------------------------------------------------------------------------


async def handle_reaction(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Record the reacting user's current emojis on one of our messages."""
    reaction = update.message_reaction
    if reaction is None:
        return
    channel = context.bot_data["channel"]
    if not channel.record_reactions(reaction):
        logger.debug("Ignoring reaction on unknown message %s", reaction.message_id)


async def reminder_cycle_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Job queue callback: run one reminder cycle.

    Store failures are logged and re-raised so the job shows up as failed.
    """
    try:
        await run_cycle(
            context.bot_data["store"],
            context.bot_data["channel"],
            context.bot_data["destination"],
            mentions=settings.MENTIONS,
            ack_emojis=settings.ACK_EMOJIS,
        )
    except StoreError as exc:
        logger.error("Reminder cycle failed: %s", exc)
        raise


async def _post_init(app: Application) -> None:
    """Resolve the destination chat once, before the first cycle runs."""
    app.bot_data["destination"] = await resolve_destination(
        app.bot_data["store"],
        app.bot_data["channel"],
        settings.DESTINATION_NAME,
        settings.DESTINATION_CHAT_ID or None,
    )
    logger.info("Reminders go to chat %s", app.bot_data["destination"])


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def build_app(
    store: ReminderDB | None = None,
    channel: MessagingChannel | None = None,
) -> Application:
    """Build the Telegram Application with the reaction handler and cycle job.

    Args:
        store: Reminder store. Defaults to ReminderDB on settings.DATABASE_PATH.
        channel: Messaging channel. Defaults to the adapter chosen by
                 CHANNEL_PROVIDER, built around this app's bot.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).post_init(_post_init).build()

    if store is None:
        store = ReminderDB()
    if channel is None:
        channel = create_channel(bot=app.bot, message_log=MessageLogDB())

    app.bot_data["store"] = store
    app.bot_data["channel"] = channel

    app.add_handler(MessageReactionHandler(handle_reaction))
    _setup_reminder_cycle(app)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_reminder_cycle(app: Application) -> None:
    """Register the repeating reminder cycle on the job queue."""
    app.job_queue.run_repeating(
        reminder_cycle_job,
        interval=timedelta(minutes=settings.CYCLE_INTERVAL_MINUTES),
        first=5,
        name="reminder_cycle",
        job_kwargs={"max_instances": 1, "coalesce": True},
    )
    logger.info("Reminder cycle scheduled every %d min", settings.CYCLE_INTERVAL_MINUTES)


async def run_once(store: ReminderDB, channel: MessagingChannel) -> None:
    """Resolve the destination and run a single cycle (dry runs)."""
    destination = await resolve_destination(
        store, channel, settings.DESTINATION_NAME, settings.DESTINATION_CHAT_ID or None,
    )
    await run_cycle(
        store, channel, destination,
        mentions=settings.MENTIONS,
        ack_emojis=settings.ACK_EMOJIS,
    )


def main() -> None:
    """Entry point: import tasks, then poll Telegram (or run one dry cycle)."""
    logger.info("Starting Recurring Reminders (%s channel)...", settings.CHANNEL_PROVIDER)
    store = ReminderDB()
    import_tasks(store)

    if settings.CHANNEL_PROVIDER.lower() == "memory":
        asyncio.run(run_once(store, create_channel()))
        return

    app = build_app(store=store)
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    main()
