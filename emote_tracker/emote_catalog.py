"""Emote catalog — merged code → EmoteRecord lookup over all providers.

Refreshes replace the whole generation at once; nothing from a previous
refresh survives into the next one. Platform enablement is applied at lookup
time, so toggling a platform in config never needs a re-fetch.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING, Any, Callable

from .errors import ChannelResolutionError
from .models import EmoteRecord
from .utils import now_ms, read_json, write_json_atomic

if TYPE_CHECKING:
    from .config import TrackerConfig
    from .emote_providers import EmoteProvider, TwitchEmoteProvider


CACHE_VERSION = "1.0"


class EmoteCatalog:
    """Owns the merged emote map and its on-disk snapshot."""

    def __init__(
        self,
        config: TrackerConfig,
        providers: list[EmoteProvider],
        identity: TwitchEmoteProvider | None,
        logger: logging.Logger | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config
        self._providers = providers
        self._identity = identity
        self._logger = logger or logging.getLogger("emotes.catalog")
        self._clock = clock
        self._cache_file = config.files.emotes_cache
        self._emotes: dict[str, EmoteRecord] = {}
        self._refresh_lock = asyncio.Lock()
        self.last_update: int = 0

    @property
    def refresh_interval_ms(self) -> int:
        return int(self._config.intervals.emote_refresh_seconds * 1000)

    def __len__(self) -> int:
        return len(self._emotes)

    # ══════════════════════════════════════════════════════════
    #  Lookup
    # ══════════════════════════════════════════════════════════

    def is_emote(self, token: str) -> bool:
        return self.get_info(token) is not None

    def get_info(self, token: str) -> EmoteRecord | None:
        """Return the record for *token* if known and its platform is enabled."""
        record = self._emotes.get(token)
        if record and self._config.is_platform_enabled(record.platform.value):
            return record
        return None

    def platform_counts(self) -> dict[str, int]:
        return dict(Counter(r.platform.value for r in self._emotes.values()))

    # ══════════════════════════════════════════════════════════
    #  Snapshot
    # ══════════════════════════════════════════════════════════

    async def load(self) -> None:
        """Load the cached snapshot. Never raises; falls back to an empty catalog."""
        loop = asyncio.get_running_loop()
        try:
            cache = await loop.run_in_executor(None, read_json, self._cache_file)
        except FileNotFoundError:
            self._logger.info("No emote cache at %s, starting empty", self._cache_file)
            return
        except Exception as e:
            self._logger.warning("Unreadable emote cache (%s), starting empty", e)
            self._reset()
            return

        if not self._is_valid_cache(cache):
            self._logger.warning("Invalid emote cache format, starting empty")
            self._reset()
            return

        emotes: dict[str, EmoteRecord] = {}
        for code, raw in cache["emotes"].items():
            record = EmoteRecord.from_dict(raw)
            if record:
                emotes[code] = record
        self._emotes = emotes
        self.last_update = int(cache["lastUpdate"])
        self._logger.info("Emote cache loaded: %d emotes", len(emotes))

    async def save(self) -> None:
        """Persist the current generation. Re-raises write failures."""
        data = {
            "emotes": {code: r.to_dict() for code, r in self._emotes.items()},
            "lastUpdate": self.last_update,
            "version": CACHE_VERSION,
        }
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, write_json_atomic, self._cache_file, data)
        except Exception:
            self._logger.exception("Failed to save emote cache")
            raise
        self._logger.debug("Emote cache saved to %s", self._cache_file)

    @staticmethod
    def _is_valid_cache(cache: Any) -> bool:
        if not isinstance(cache, dict):
            return False
        last_update = cache.get("lastUpdate")
        return (
            isinstance(cache.get("emotes"), dict)
            and isinstance(last_update, (int, float))
            and not isinstance(last_update, bool)
        )

    def _reset(self) -> None:
        self._emotes = {}
        self.last_update = 0

    # ══════════════════════════════════════════════════════════
    #  Refresh
    # ══════════════════════════════════════════════════════════

    def should_refresh(self) -> bool:
        return self._clock() - self.last_update >= self.refresh_interval_ms

    async def refresh(self, channel_id: str | None = None, channel_name: str | None = None) -> bool:
        """Re-fetch every provider and replace the catalog.

        Returns False when skipped because the cache is still fresh.
        Raises ChannelResolutionError if no channel id can be determined.
        """
        async with self._refresh_lock:
            if not self.should_refresh():
                self._logger.debug("Skipping emote refresh — within refresh interval")
                return False

            resolved = await self._resolve_channel_id(channel_id, channel_name)
            if not resolved:
                raise ChannelResolutionError(
                    f"Could not resolve channel id for '{channel_name or self._config.twitch.channel}'"
                )

            emotes = await self._fetch_all(resolved)
            self._emotes = {e.code: e for e in emotes}
            self.last_update = self._clock()
            await self.save()
            self._log_stats(emotes)
            return True

    async def _resolve_channel_id(self, channel_id: str | None, channel_name: str | None) -> str | None:
        if self._config.twitch.channel_id:
            return self._config.twitch.channel_id
        if channel_id:
            return channel_id
        name = channel_name or self._config.twitch.channel
        if self._identity is None or not name:
            return None
        return await self._identity.get_user_id(name)

    async def _fetch_all(self, channel_id: str) -> list[EmoteRecord]:
        calls = []
        for provider in self._providers:
            calls.append(provider.get_channel_emotes(channel_id))
            calls.append(provider.get_global_emotes())
        results = await asyncio.gather(*calls, return_exceptions=True)

        emotes: list[EmoteRecord] = []
        for result in results:
            if isinstance(result, BaseException):
                self._logger.error("Emote provider call failed: %s", result)
                continue
            emotes.extend(e for e in result if e and e.code)
        return emotes

    def _log_stats(self, emotes: list[EmoteRecord]) -> None:
        by_platform = Counter(e.platform.value for e in emotes)
        for platform, count in sorted(by_platform.items()):
            self._logger.info("  %s: %d emotes", platform, count)
        self._logger.info("Emote refresh complete: %d unique emotes", len(self._emotes))
