"""Telegram messaging adapter - implements MessagingChannel.

Wraps a telegram.Bot instance to satisfy the MessagingChannel protocol.
The Bot API can't read messages back, so sent messages and the reactions
they collect are kept in a MessageLogDB.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from telegram import Bot, MessageReactionUpdated, ReactionTypeEmoji
from telegram.error import TelegramError

from src.data.db import MessageLogDB
from src.ports.channel_port import ChannelError, ChannelMessage, DispatchFailure, Reaction

logger = logging.getLogger(__name__)


def _with_mentions(text: str, mentions: Sequence[str]) -> str:
    handles = [m if m.startswith("@") else f"@{m}" for m in mentions if m.strip()]
    if not handles:
        return text
    return f"{text}\n\n{' '.join(handles)}"


class TelegramChannel:
    """Telegram implementation of MessagingChannel."""

    def __init__(self, bot: Bot, message_log: MessageLogDB) -> None:
        self._bot = bot
        self._log = message_log

    async def send_message(
        self, destination: str, text: str, mentions: Sequence[str] = ()
    ) -> str:
        body = _with_mentions(text, mentions)
        try:
            sent = await self._bot.send_message(chat_id=destination, text=body)
        except TelegramError as exc:
            raise DispatchFailure(f"Telegram send to {destination} failed: {exc}") from exc

        message_id = str(sent.message_id)
        self._log.record_message(message_id, str(sent.chat_id), body)
        return message_id

    async def get_message_by_id(self, message_id: str) -> ChannelMessage | None:
        row = self._log.get_message(message_id)
        if row is None:
            return None
        return ChannelMessage(id=row["message_id"], chat_id=row["chat_id"], text=row["text"])

    async def get_reactions(self, message: ChannelMessage) -> list[Reaction]:
        return [Reaction(emoji=e) for e in self._log.list_reactions(message.id)]

    async def resolve_destination_by_name(self, name: str) -> str:
        """Resolve a chat id from an @username or numeric id.

        Bots can't search chats by title, so a plain group name is rejected.
        """
        lookup = name.strip()
        if not (lookup.startswith("@") or lookup.lstrip("-").isdigit()):
            raise ChannelError(
                f"Telegram can't look up chats by title ({name!r}); "
                "set DESTINATION_CHAT_ID or use an @username"
            )
        try:
            chat = await self._bot.get_chat(lookup)
        except TelegramError as exc:
            raise ChannelError(f"Telegram chat lookup for {name!r} failed: {exc}") from exc
        logger.info("Resolved destination %r to chat %s", name, chat.id)
        return str(chat.id)

    def record_reactions(self, reaction: MessageReactionUpdated) -> bool:
        """Store the reacting user's current emoji set for one of our messages."""
        if reaction.user is not None:
            user_key = str(reaction.user.id)
        elif reaction.actor_chat is not None:
            user_key = f"chat:{reaction.actor_chat.id}"
        else:
            user_key = "anonymous"

        emojis = [r.emoji for r in reaction.new_reaction if isinstance(r, ReactionTypeEmoji)]
        stored = self._log.set_reactions(
            str(reaction.chat.id), str(reaction.message_id), user_key, emojis,
        )
        if stored:
            logger.info(
                "Reactions on message %s by %s: %s",
                reaction.message_id, user_key, " ".join(emojis) or "(none)",
            )
        return stored
