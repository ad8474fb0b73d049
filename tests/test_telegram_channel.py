"""Tests for src.adapters.telegram_channel — Telegram adapter.

The telegram.Bot is mocked; sent messages and reactions go to a temp
MessageLogDB.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import Chat, MessageReactionUpdated, ReactionTypeCustomEmoji, ReactionTypeEmoji, User
from telegram.error import NetworkError

from src.adapters.telegram_channel import TelegramChannel, _with_mentions
from src.ports.channel_port import ChannelError, ChannelMessage, DispatchFailure, Reaction

CHAT_ID = -1001234


def _bot(message_id=101):
    bot = AsyncMock()
    bot.send_message.return_value = MagicMock(message_id=message_id, chat_id=CHAT_ID)
    return bot


def _reaction_update(emojis, message_id=101, chat_id=CHAT_ID, user_id=7, extra=()):
    return MessageReactionUpdated(
        chat=Chat(id=chat_id, type=Chat.SUPERGROUP),
        message_id=message_id,
        date=datetime(2026, 10, 19, 7, 0, tzinfo=timezone.utc),
        old_reaction=(),
        new_reaction=tuple(ReactionTypeEmoji(e) for e in emojis) + tuple(extra),
        user=User(id=user_id, first_name="Dana", is_bot=False) if user_id else None,
    )


class TestWithMentions:
    def test_no_mentions_leaves_text(self):
        assert _with_mentions("hi", []) == "hi"

    def test_mentions_appended_as_handles(self):
        assert _with_mentions("hi", ["dana", "@amit"]) == "hi\n\n@dana @amit"


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_send_returns_message_id_and_logs_it(self, message_log):
        bot = _bot()
        channel = TelegramChannel(bot, message_log)

        message_id = await channel.send_message(str(CHAT_ID), "📌 Water plants", ["dana"])

        assert message_id == "101"
        bot.send_message.assert_awaited_once_with(
            chat_id=str(CHAT_ID), text="📌 Water plants\n\n@dana",
        )
        assert message_log.get_message("101")["chat_id"] == str(CHAT_ID)

    @pytest.mark.asyncio
    async def test_telegram_error_becomes_dispatch_failure(self, message_log):
        bot = AsyncMock()
        bot.send_message.side_effect = NetworkError("connection reset")
        channel = TelegramChannel(bot, message_log)

        with pytest.raises(DispatchFailure):
            await channel.send_message(str(CHAT_ID), "hi")
        assert message_log.get_message("101") is None


class TestReadBack:
    @pytest.mark.asyncio
    async def test_get_message_by_id(self, message_log):
        channel = TelegramChannel(_bot(), message_log)
        await channel.send_message(str(CHAT_ID), "hi")

        message = await channel.get_message_by_id("101")
        assert message == ChannelMessage(id="101", chat_id=str(CHAT_ID), text="hi")
        assert await channel.get_message_by_id("999") is None

    @pytest.mark.asyncio
    async def test_recorded_reactions_are_returned(self, message_log):
        channel = TelegramChannel(_bot(), message_log)
        await channel.send_message(str(CHAT_ID), "hi")

        assert channel.record_reactions(_reaction_update(["👍"])) is True
        message = await channel.get_message_by_id("101")
        assert await channel.get_reactions(message) == [Reaction(emoji="👍")]

    @pytest.mark.asyncio
    async def test_custom_emoji_reactions_are_dropped(self, message_log):
        channel = TelegramChannel(_bot(), message_log)
        await channel.send_message(str(CHAT_ID), "hi")

        channel.record_reactions(
            _reaction_update(["👍"], extra=(ReactionTypeCustomEmoji("5368324170671202286"),))
        )
        assert message_log.list_reactions("101") == ["👍"]

    @pytest.mark.asyncio
    async def test_reaction_on_foreign_message_is_ignored(self, message_log):
        channel = TelegramChannel(_bot(), message_log)
        await channel.send_message(str(CHAT_ID), "hi")

        assert channel.record_reactions(_reaction_update(["👍"], chat_id=-42)) is False
        assert message_log.list_reactions("101") == []

    @pytest.mark.asyncio
    async def test_anonymous_reaction_is_recorded(self, message_log):
        channel = TelegramChannel(_bot(), message_log)
        await channel.send_message(str(CHAT_ID), "hi")

        assert channel.record_reactions(_reaction_update(["👍"], user_id=None)) is True
        assert message_log.list_reactions("101") == ["👍"]


class TestResolveDestination:
    @pytest.mark.asyncio
    async def test_username_is_looked_up(self, message_log):
        bot = AsyncMock()
        bot.get_chat.return_value = MagicMock(id=CHAT_ID)
        channel = TelegramChannel(bot, message_log)

        assert await channel.resolve_destination_by_name("@our_reminders") == str(CHAT_ID)
        bot.get_chat.assert_awaited_once_with("@our_reminders")

    @pytest.mark.asyncio
    async def test_numeric_id_is_looked_up(self, message_log):
        bot = AsyncMock()
        bot.get_chat.return_value = MagicMock(id=CHAT_ID)
        channel = TelegramChannel(bot, message_log)

        assert await channel.resolve_destination_by_name(str(CHAT_ID)) == str(CHAT_ID)

    @pytest.mark.asyncio
    async def test_plain_title_is_rejected(self, message_log):
        bot = AsyncMock()
        channel = TelegramChannel(bot, message_log)

        with pytest.raises(ChannelError, match="DESTINATION_CHAT_ID"):
            await channel.resolve_destination_by_name("Our Reminders")
        bot.get_chat.assert_not_called()

    @pytest.mark.asyncio
    async def test_lookup_error_becomes_channel_error(self, message_log):
        bot = AsyncMock()
        bot.get_chat.side_effect = NetworkError("chat not found")
        channel = TelegramChannel(bot, message_log)

        with pytest.raises(ChannelError):
            await channel.resolve_destination_by_name("@missing")
