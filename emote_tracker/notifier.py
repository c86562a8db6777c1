"""Milestone notifier — one chat line per crossed threshold."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from .utils import format_count

if TYPE_CHECKING:
    from .models import MilestoneHit


class MilestoneNotifier:
    """Announces milestone hits in the monitored channel."""

    def __init__(
        self,
        send: Callable[[str, str], Awaitable[None]],
        channel: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self._send = send
        self._channel = channel
        self._logger = logger or logging.getLogger("emotes.notifier")

    @staticmethod
    def format_message(username: str, milestone: MilestoneHit) -> str:
        if milestone.message:
            return f"PogChamp @{username} {milestone.message}"
        return f"PogChamp @{username} reached {format_count(milestone.count)} emotes! 🎉"

    async def notify(self, username: str, milestone: MilestoneHit) -> bool:
        """Send the announcement. Failures are logged, never retried."""
        try:
            await self._send(self._channel, self.format_message(username, milestone))
        except Exception:
            self._logger.exception("Error sending milestone notification for %s", username)
            return False
        self._logger.info("🏆 Milestone reached: %s — %d emotes", username, milestone.count)
        return True
