"""Message classifier — finds emote tokens in chat and records them."""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .emote_catalog import EmoteCatalog
    from .notifier import MilestoneNotifier
    from .stats_store import StatsStore


class MessageClassifier:
    """Turns one chat line into counter updates and milestone notices."""

    def __init__(
        self,
        catalog: EmoteCatalog,
        store: StatsStore,
        notifier: MilestoneNotifier,
        logger: logging.Logger | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._notifier = notifier
        self._logger = logger or logging.getLogger("emotes.classifier")

    async def process_message(self, username: str, text: str) -> list[str]:
        """Record every emote in *text* for *username*.

        A message with at least one emote counts once towards ``total``;
        each occurrence (duplicates included) counts towards the per-emote
        and per-platform counters. Returns the detected tokens. Never raises.
        """
        try:
            detected = [t for t in text.split() if self._catalog.is_emote(t)]
            if not detected:
                return []

            result = await self._store.increment_stats(username, total_only=True)
            if result is None:
                return []

            for token in detected:
                record = self._catalog.get_info(token)
                if record is None:
                    # Platform disabled between the two lookups
                    continue
                await self._store.increment_emote_count(username, token, record.platform.value)

            self._log_detections(username, detected, result.stats.emotes, result.stats.total)

            for milestone in result.milestones:
                await self._notifier.notify(username, milestone)
            return detected
        except Exception:
            self._logger.exception("Error processing message from %s", username)
            return []

    def _log_detections(
        self, username: str, detected: list[str], totals: dict[str, int], user_total: int,
    ) -> None:
        in_message = Counter(detected)
        lines = [f"🎯 Emotes detected from {username}:"]
        for token, times in in_message.items():
            record = self._catalog.get_info(token)
            platform = record.platform.value if record else "?"
            suffix = f" [{times}x in message]" if times > 1 else ""
            lines.append(f"   {token} ({platform}): {totals.get(token, 0)} total{suffix}")
        lines.append(f"   Total user score: {user_total}")
        self._logger.info("\n".join(lines))
