"""Messaging channel factory - creates the right adapter based on config."""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.config import settings
from src.ports.channel_port import MessagingChannel

if TYPE_CHECKING:
    from telegram import Bot

    from src.data.db import MessageLogDB


def create_channel(
    bot: Bot | None = None,
    message_log: MessageLogDB | None = None,
) -> MessagingChannel:
    """Return the channel adapter matching the CHANNEL_PROVIDER setting.

    Args:
        bot: Telegram bot instance, required for the telegram provider.
        message_log: Store for sent messages and reactions. Defaults to
                     a MessageLogDB on settings.DATABASE_PATH.
    """
    provider = settings.CHANNEL_PROVIDER.lower()

    if provider == "telegram":
        from src.adapters.telegram_channel import TelegramChannel
        from src.data.db import MessageLogDB

        if bot is None:
            raise ValueError("The telegram channel needs a Bot instance")
        return TelegramChannel(bot, message_log or MessageLogDB())

    if provider == "memory":
        from src.adapters.memory_channel import InMemoryChannel

        return InMemoryChannel()

    raise ValueError(f"Unknown CHANNEL_PROVIDER: {provider!r}")
