"""In-memory messaging adapter - implements MessagingChannel.

Nothing leaves the process: messages are logged and kept in dicts. Used for
dry runs (CHANNEL_PROVIDER=memory) and as the channel double in tests.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Sequence

from src.ports.channel_port import ChannelMessage, MessageNotFound, Reaction

logger = logging.getLogger(__name__)


class InMemoryChannel:
    """In-memory implementation of MessagingChannel."""

    def __init__(self, chats: dict[str, str] | None = None) -> None:
        self.messages: dict[str, ChannelMessage] = {}
        self.mentions: dict[str, tuple[str, ...]] = {}
        self._reactions: dict[str, list[Reaction]] = {}
        self._chats = dict(chats or {})
        self._ids = itertools.count(1)
        logger.warning("Using in-memory channel, no real messages will be sent")

    async def send_message(
        self, destination: str, text: str, mentions: Sequence[str] = ()
    ) -> str:
        message_id = f"mem-{next(self._ids)}"
        self.messages[message_id] = ChannelMessage(id=message_id, chat_id=destination, text=text)
        self.mentions[message_id] = tuple(mentions)
        logger.info("📨 [%s] %s", destination, text.replace("\n", " | "))
        return message_id

    async def get_message_by_id(self, message_id: str) -> ChannelMessage | None:
        return self.messages.get(message_id)

    async def get_reactions(self, message: ChannelMessage) -> list[Reaction]:
        return list(self._reactions.get(message.id, []))

    async def resolve_destination_by_name(self, name: str) -> str:
        return self._chats.get(name, f"memory:{name}")

    def add_reaction(self, message_id: str, emoji: str) -> None:
        if message_id not in self.messages:
            raise MessageNotFound(message_id)
        self._reactions.setdefault(message_id, []).append(Reaction(emoji=emoji))

    def delete_message(self, message_id: str) -> None:
        self.messages.pop(message_id, None)
        self._reactions.pop(message_id, None)

    def sent_to(self, destination: str) -> list[ChannelMessage]:
        return [m for m in self.messages.values() if m.chat_id == destination]
