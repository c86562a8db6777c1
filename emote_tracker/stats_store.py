"""Statistics store — per-user emote counters, metrics and milestone checks.

Snapshots are flat JSON files written with temp-file-then-rename. Every
public method is async and performs disk I/O through
``loop.run_in_executor(None, ...)``. Writes go through a single lock so
concurrent save requests run one after another, in arrival order.

Milestones are derived by crossing detection (``prev < threshold <= new``);
no fired-set is stored, so each threshold fires once per user as long as
``total`` never decreases.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from .errors import EmoteTrackerError
from .models import IncrementResult, Metrics, MilestoneHit, UserStats
from .utils import format_count, now_ms, read_json, write_json_atomic

if TYPE_CHECKING:
    from .ai_helper import MilestoneMessageGenerator
    from .config import TrackerConfig


NO_EMOTE = "none"

_MEDALS = {0: "🥇", 1: "🥈", 2: "🥉"}


class StatsStore:
    """Owns UserStats and Metrics for the lifetime of the process."""

    def __init__(
        self,
        config: TrackerConfig,
        generator: MilestoneMessageGenerator | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config
        self._generator = generator
        self._logger = logger or logging.getLogger("emotes.stats")
        self._clock = clock
        self._db_path = config.files.database

        self._user_stats: dict[str, UserStats] | None = None
        self._loaded = False
        self._metrics_restored = False
        self._dirty = False
        self._leader: str | None = None

        self._load_lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()
        self._saves_in_flight = 0

        self.metrics = Metrics(last_save_attempt=clock())
        # Called with the username whenever a different user takes first place
        self.on_new_leader: Callable[[str], None] | None = None

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def save_in_flight(self) -> bool:
        return self._saves_in_flight > 0

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    @property
    def user_count(self) -> int:
        return len(self._user_stats or {})

    # ══════════════════════════════════════════════════════════
    #  Loading
    # ══════════════════════════════════════════════════════════

    async def ensure_loaded(self) -> None:
        """Load once; concurrent callers share the same load."""
        if self._loaded:
            return
        async with self._load_lock:
            if not self._loaded:
                await self.load()

    async def load(self) -> None:
        """Load the snapshot from disk.

        A missing file starts an empty store. Any other failure is logged
        and leaves the in-memory state exactly as it was.
        A store that is loaded with unsaved changes is never overwritten.
        """
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, read_json, self._db_path)
        except FileNotFoundError:
            if self._loaded and self._dirty:
                return
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._user_stats = {}
            self._loaded = True
            self._metrics_restored = True
            self._logger.info("No statistics file at %s, starting fresh", self._db_path)
            return
        except Exception:
            self._logger.exception("Error loading statistics from %s", self._db_path)
            return

        if not isinstance(data, dict):
            self._logger.error("Statistics file %s is not a JSON object; ignoring it", self._db_path)
            return

        if self._loaded and self._dirty:
            # Never replace newer in-memory counters with the copy on disk
            self._logger.warning("Statistics already loaded with unsaved changes; not reloading")
            return

        # Older snapshots stored the bare user map at the top level
        raw_stats = data.get("stats") if "stats" in data else data
        stats: dict[str, UserStats] = {}
        for username, entry in (raw_stats or {}).items():
            if isinstance(entry, dict):
                stats[username] = UserStats.from_dict(entry)

        self._user_stats = stats
        self._loaded = True
        self._dirty = False

        # Metrics stay resident across free/reload cycles; restore them once
        if not self._metrics_restored and isinstance(data.get("metrics"), dict):
            self.metrics = Metrics.from_dict({**self.metrics.to_dict(), **data["metrics"]})
        self._metrics_restored = True
        self._logger.info("Statistics loaded: %d users", len(stats))

    def _require_stats(self) -> dict[str, UserStats]:
        if self._user_stats is None:
            raise EmoteTrackerError("Statistics are not loaded")
        return self._user_stats

    # ══════════════════════════════════════════════════════════
    #  Mutation
    # ══════════════════════════════════════════════════════════

    def _get_or_create_user(self, username: str) -> UserStats:
        stats = self._require_stats()
        user = stats.get(username)
        if user is None:
            now = self._clock()
            user = UserStats(first_seen=now, last_seen=now)
            stats[username] = user
        return user

    async def increment_stats(
        self,
        username: str,
        emote: str | None = None,
        platform: str | None = None,
        total_only: bool = False,
    ) -> IncrementResult | None:
        """Advance a user's counters and report any milestones crossed."""
        await self.ensure_loaded()
        if not username:
            self._logger.warning("Missing username for stats increment")
            return None

        existing = self._require_stats().get(username)
        prev_total = existing.total if existing else 0
        user = self._get_or_create_user(username)

        if total_only or (emote and platform):
            user.total += 1
        if emote and platform:
            user.emotes[emote] = user.emotes.get(emote, 0) + 1
            user.platforms[platform] = user.platforms.get(platform, 0) + 1
        user.last_seen = self._clock()
        self._dirty = True

        milestones = await self.check_milestone(prev_total, user.total, username)
        self._update_leader(username)
        return IncrementResult(stats=user, milestones=milestones)

    async def increment_emote_count(self, username: str, emote: str, platform: str) -> None:
        """Count one detected emote occurrence; does not touch ``total``."""
        await self.ensure_loaded()
        if not username or not emote or not platform:
            self._logger.warning("Missing required data for emote increment")
            return

        user = self._get_or_create_user(username)
        user.emotes[emote] = user.emotes.get(emote, 0) + 1
        user.platforms[platform] = user.platforms.get(platform, 0) + 1
        user.last_seen = self._clock()
        self.metrics.emotes_detected += 1
        self._dirty = True

    def record_message(self) -> None:
        self.metrics.messages_processed += 1

    def record_command(self) -> None:
        self.metrics.commands_executed += 1

    async def check_milestone(self, prev_total: int, new_total: int, username: str) -> list[MilestoneHit]:
        """Return a hit for every configured threshold in (prev_total, new_total]."""
        hits: list[MilestoneHit] = []
        milestones = self._config.milestones

        for value in milestones.values:
            if not prev_total < value <= new_total:
                continue
            message = milestones.message_for(value)
            if self._config.features.enable_ai_messages and self._generator is not None:
                try:
                    generated = await self._generator.generate(username, value)
                except Exception:
                    self._logger.exception("AI milestone message failed, using template")
                    generated = None
                if generated:
                    message = generated
            hits.append(MilestoneHit(count=value, message=message.replace("{count}", format_count(value))))

        return hits

    def _update_leader(self, username: str) -> None:
        stats = self._require_stats()
        # max() keeps the first maximal entry, so ties go to insertion order
        leader, leader_stats = max(stats.items(), key=lambda kv: kv[1].total)
        if leader != username:
            return
        self._write_top_user_file(leader, leader_stats)
        if self._leader != leader:
            self._leader = leader
            if self.on_new_leader is not None:
                self.on_new_leader(leader)

    # ══════════════════════════════════════════════════════════
    #  Persistence
    # ══════════════════════════════════════════════════════════

    def snapshot(self) -> dict[str, Any]:
        return {
            "stats": {name: s.to_dict() for name, s in self._require_stats().items()},
            "metrics": self.metrics.to_dict(),
            "lastUpdate": self._clock(),
        }

    async def save_stats(self) -> None:
        """Write a snapshot; queued behind any save already running.

        A failure is re-raised to this caller only; queued saves still run.
        """
        self._saves_in_flight += 1
        try:
            async with self._save_lock:
                await self._write_snapshot()
        finally:
            self._saves_in_flight -= 1

    async def _write_snapshot(self) -> None:
        if self._user_stats is None:
            self._logger.debug("Statistics not loaded; nothing to save")
            return

        self.metrics.last_save_attempt = self._clock()
        self._dirty = False
        data = self.snapshot()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, write_json_atomic, self._db_path, data)
        except Exception:
            self._dirty = True
            self.metrics.failed_saves += 1
            self._logger.exception("Error saving statistics to %s", self._db_path)
            raise
        self.metrics.total_saves += 1
        self._logger.info("Statistics saved (%d users)", len(data["stats"]))

    def free_memory(self) -> bool:
        """Drop the in-memory user map; it reloads on next access.

        Refused while a save is running or queued, or while there are
        unsaved changes. Returns True if memory was released.
        """
        if self.save_in_flight or self._save_lock.locked():
            self._logger.debug("Save in flight; keeping statistics in memory")
            return False
        if self._dirty:
            self._logger.debug("Unsaved changes; keeping statistics in memory")
            return False
        if self._user_stats is None:
            return False
        self._user_stats = None
        self._loaded = False
        self._logger.debug("Statistics unloaded from memory")
        return True

    async def reset_stats(self) -> None:
        """Wipe every user and metric and persist immediately. Destructive."""
        self._user_stats = {}
        self._loaded = True
        self._metrics_restored = True
        self._leader = None
        self.metrics = Metrics(last_save_attempt=self._clock())
        self._dirty = True
        await self.save_stats()
        self._logger.warning("All statistics have been reset")

    def _write_top_user_file(self, username: str, stats: UserStats, rank: int = 1) -> None:
        """Rewrite the one-line leader file. Errors are logged, never raised."""
        text = (
            self._config.format.top_user
            .replace("{username}", username)
            .replace("{total}", str(stats.total))
            .replace("{rank}", str(rank))
            .replace("{favorite_emote}", self.get_most_used_emote(stats.emotes))
        )
        path = Path(self._config.files.top_user)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError:
            self._logger.exception("Error writing top user file %s", path)

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    async def get_user_stats(self, username: str) -> UserStats | None:
        """Look up a user; exact match first, then case-insensitive."""
        await self.ensure_loaded()
        stats = self._require_stats()
        if username in stats:
            return stats[username]
        lowered = username.lower()
        for name, user in stats.items():
            if name.lower() == lowered:
                return user
        return None

    async def get_user_rank(self, username: str) -> tuple[int, int] | None:
        """Return ``(position, total)`` with 1-based position, or None."""
        await self.ensure_loaded()
        lowered = username.lower()
        ranked = self._sorted_users()
        for position, (name, user) in enumerate(ranked, start=1):
            if name.lower() == lowered:
                return position, user.total
        return None

    async def get_platform_stats(self) -> dict[str, int]:
        await self.ensure_loaded()
        totals: dict[str, int] = {}
        for user in self._require_stats().values():
            for platform, count in user.platforms.items():
                totals[platform] = totals.get(platform, 0) + count
        return totals

    async def get_emote_usage_count(self, emote: str) -> int:
        await self.ensure_loaded()
        return sum(user.emotes.get(emote, 0) for user in self._require_stats().values())

    async def get_top_users(self, limit: int = 10) -> list[tuple[str, UserStats]]:
        await self.ensure_loaded()
        return self._sorted_users()[:limit]

    def _sorted_users(self) -> list[tuple[str, UserStats]]:
        # sorted() is stable: equal totals keep insertion order
        return sorted(self._require_stats().items(), key=lambda kv: kv[1].total, reverse=True)

    @staticmethod
    def get_most_used_emote(emotes: dict[str, int] | None) -> str:
        """Most-used emote code; the first inserted wins ties. ``"none"`` if empty."""
        if not emotes:
            return NO_EMOTE
        return max(emotes.items(), key=lambda kv: kv[1])[0]

    async def display_top_users(self) -> list[tuple[str, UserStats]]:
        """Log the leaderboard, export it and refresh the leader file."""
        top = await self.get_top_users(self._config.features.max_top_users)
        if top:
            self._write_top_user_file(*top[0])

        self._logger.info("📊 Top %d users:", len(top))
        for index, (username, stats) in enumerate(top):
            self._logger.info(
                "%s %d. %s — Total: %d", _MEDALS.get(index, " "), index + 1, username, stats.total,
            )

        export = [
            {"username": username, "total": stats.total, "emotes": dict(stats.emotes)}
            for username, stats in top
        ]
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, write_json_atomic, self._config.files.export, export)
        self._logger.info("Top users exported to %s", self._config.files.export)
        return top
