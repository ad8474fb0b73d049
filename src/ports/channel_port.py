"""Messaging channel port - abstract interface for the chat reminders go to.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


class ChannelError(Exception):
    """Raised when any messaging provider operation fails."""


class DispatchFailure(ChannelError):
    """A message could not be sent."""


class MessageNotFound(ChannelError):
    """A previously dispatched message can no longer be retrieved."""


@dataclass(frozen=True)
class ChannelMessage:
    """A message the bot dispatched."""

    id: str
    chat_id: str
    text: str


@dataclass(frozen=True)
class Reaction:
    emoji: str


class MessagingChannel(Protocol):
    """Abstract messaging interface used by the lifecycle cycle."""

    async def send_message(
        self, destination: str, text: str, mentions: Sequence[str] = ()
    ) -> str: ...

    async def get_message_by_id(self, message_id: str) -> ChannelMessage | None: ...

    async def get_reactions(self, message: ChannelMessage) -> list[Reaction]: ...

    async def resolve_destination_by_name(self, name: str) -> str: ...
