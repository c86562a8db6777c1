"""Twitch chat transport on twitchio's IRC client.

Incoming chat lines are handed to a single ``on_message(channel, sender,
text, is_self)`` coroutine; outgoing lines go through ``send_chat``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import twitchio

from .errors import EmoteTrackerError

MessageCallback = Callable[[str, str, str, bool], Awaitable[None]]


class TwitchChatClient(twitchio.Client):
    """Joins one channel and forwards its chat."""

    def __init__(
        self,
        token: str,
        username: str,
        channel: str,
        on_message: MessageCallback,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(token=token, initial_channels=[channel.lower()])
        self._username = username
        self._channel = channel.lower()
        self._on_message = on_message
        self._logger = logger or logging.getLogger("emotes.chat")
        self.joined = asyncio.Event()

    async def event_ready(self) -> None:
        self._logger.info("Connected to Twitch chat as %s", self._username)

    async def event_join(self, channel: Any, user: Any) -> None:
        if getattr(user, "name", "").lower() == self._username.lower():
            self._logger.info("Monitoring channel: #%s", channel.name)
            self.joined.set()

    async def event_message(self, message: Any) -> None:
        author = message.author
        if author is not None:
            sender = author.display_name or author.name
        else:
            sender = self._username
        channel = message.channel.name if message.channel else self._channel
        try:
            await self._on_message(channel, sender, message.content or "", bool(message.echo))
        except Exception:
            self._logger.exception("Unhandled error while handling message from %s", sender)

    async def event_error(self, error: Exception, data: str | None = None) -> None:
        self._logger.error("Twitch client error: %s", error)

    async def send_chat(self, channel: str, text: str) -> None:
        """Send *text* to a joined channel."""
        target = self.get_channel(channel.lstrip("#").lower())
        if target is None:
            raise EmoteTrackerError(f"Not joined to #{channel}")
        await target.send(text)
