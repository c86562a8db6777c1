"""Scheduler module — named periodic tasks and debounced one-shots.

Periodic tasks: auto-save, catalog-refresh, idle-sweep and
rate-limit-sweep. A tick that raises is logged and the loop keeps going.
On stop, tasks that are sleeping are cancelled; a tick already running is
allowed to finish so a snapshot write is never cut in half.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from .command_handler import CommandRateLimiter
    from .config import TrackerConfig
    from .emote_catalog import EmoteCatalog
    from .stats_store import StatsStore


class Scheduler:
    """Central module for all periodic and deferred tasks."""

    def __init__(
        self,
        config: TrackerConfig,
        store: StatsStore,
        catalog: EmoteCatalog,
        rate_limiter: CommandRateLimiter | None = None,
        channel_id: str | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._store = store
        self._catalog = catalog
        self._rate_limiter = rate_limiter
        self.channel_id = channel_id
        self._logger = logger or logging.getLogger("emotes.scheduler")
        self._clock = clock

        self._tasks: dict[str, asyncio.Task] = {}
        self._debounced: dict[str, asyncio.Task] = {}
        self._busy: set[str] = set()
        self._draining: set[asyncio.Task] = set()
        self._stopping = False
        self._last_activity = clock()

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    def mark_activity(self) -> None:
        """Record chat activity; resets the idle timer."""
        self._last_activity = self._clock()

    @property
    def idle_seconds(self) -> float:
        return self._clock() - self._last_activity

    async def start(self) -> None:
        """Start all periodic tasks."""
        self._stopping = False
        intervals = self._config.intervals

        self.every("auto-save", intervals.auto_save_seconds, self._auto_save)
        self.every("catalog-refresh", intervals.emote_refresh_seconds, self._refresh_catalog)
        self.every("idle-sweep", intervals.idle_check_seconds, self.idle_sweep)
        if self._rate_limiter is not None:
            self.every("rate-limit-sweep", intervals.rate_limit_sweep_seconds, self._sweep_rate_limits)

        self._logger.info("Scheduler started: %s", ", ".join(self._tasks))

    async def stop(self, timeout: float | None = None) -> None:
        """Cancel idle tasks, let running ticks finish (up to *timeout*)."""
        self._stopping = True
        named = list(self._tasks.items()) + [(f"debounce:{n}", t) for n, t in self._debounced.items()]
        tasks = [task for _, task in named] + list(self._draining)
        for name, task in named:
            if name not in self._busy:
                task.cancel()

        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                self._logger.warning("Task %s did not finish in time, cancelling", task.get_name())
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        self._tasks.clear()
        self._debounced.clear()
        self._busy.clear()
        self._draining.clear()

    # ══════════════════════════════════════════════════════════
    #  Task Helpers
    # ══════════════════════════════════════════════════════════

    def every(self, name: str, interval: float, tick: Callable[[], Awaitable[object]]) -> asyncio.Task:
        """Run *tick* every *interval* seconds under *name*; replaces a task of the same name."""
        existing = self._tasks.pop(name, None)
        if existing is not None:
            existing.cancel()

        async def _loop() -> None:
            while not self._stopping:
                await asyncio.sleep(interval)
                self._busy.add(name)
                try:
                    await tick()
                except Exception:
                    self._logger.exception("Scheduled task %s failed", name)
                finally:
                    self._busy.discard(name)

        task = asyncio.create_task(_loop(), name=name)
        self._tasks[name] = task
        return task

    def debounce(self, name: str, delay: float, factory: Callable[[], Awaitable[object]]) -> asyncio.Task | None:
        """Run *factory* once after *delay*; a newer call with the same name replaces a pending one."""
        if self._stopping:
            return None
        key = f"debounce:{name}"
        pending = self._debounced.get(name)
        if pending is not None and not pending.done():
            if key in self._busy:
                # Already firing; let it finish but keep waiting on it at stop
                self._draining.add(pending)
                pending.add_done_callback(self._draining.discard)
            else:
                pending.cancel()

        async def _run() -> None:
            await asyncio.sleep(delay)
            self._busy.add(key)
            try:
                await factory()
            except Exception:
                self._logger.exception("Debounced task %s failed", name)
            finally:
                self._busy.discard(key)

        task = asyncio.create_task(_run(), name=key)
        self._debounced[name] = task
        return task

    # ══════════════════════════════════════════════════════════
    #  Ticks
    # ══════════════════════════════════════════════════════════

    async def _auto_save(self) -> None:
        await self._store.save_stats()

    async def _refresh_catalog(self) -> None:
        await self._catalog.refresh(channel_id=self.channel_id)

    async def idle_sweep(self) -> bool:
        """Unload statistics after a quiet period. Returns True if memory was freed."""
        if not self._store.is_loaded:
            return False
        if self.idle_seconds < self._config.intervals.idle_threshold_seconds:
            return False
        if self._store.has_unsaved_changes:
            await self._store.save_stats()
        freed = self._store.free_memory()
        if freed:
            self._logger.info("No chat for %.0fs; statistics unloaded", self.idle_seconds)
        return freed

    async def _sweep_rate_limits(self) -> None:
        removed = self._rate_limiter.cleanup(self._config.commands.sweep_max_age_seconds)
        if removed:
            self._logger.debug("Rate-limit sweep removed %d entries", removed)
