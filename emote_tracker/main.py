"""Service orchestrator — EmoteTrackerApp.

config → load snapshots → build components → connect chat → resolve
channel → refresh catalog → scheduler → metrics → run until stopped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from . import __version__
from .ai_helper import MilestoneMessageGenerator
from .chat_client import TwitchChatClient
from .classifier import MessageClassifier
from .command_handler import CommandHandler
from .config import TrackerConfig, load_config
from .emote_catalog import EmoteCatalog
from .emote_providers import EmoteProvider, TwitchEmoteProvider, build_providers
from .errors import ChannelResolutionError
from .metrics_server import TrackerMetricsServer
from .notifier import MilestoneNotifier
from .scheduler import Scheduler
from .stats_store import StatsStore


class EmoteTrackerApp:
    """Top-level application orchestrator."""

    def __init__(self, config_path: str | None = None, config: TrackerConfig | None = None) -> None:
        self.config_path = Path(config_path) if config_path else None
        self.config = config
        self.logger = logging.getLogger("emotes")

        # Components (built in build_components())
        self.store: StatsStore | None = None
        self.catalog: EmoteCatalog | None = None
        self.identity: TwitchEmoteProvider | None = None
        self.providers: list[EmoteProvider] = []
        self.generator: MilestoneMessageGenerator | None = None
        self.notifier: MilestoneNotifier | None = None
        self.classifier: MessageClassifier | None = None
        self.command_handler: CommandHandler | None = None
        self.scheduler: Scheduler | None = None
        self.client: TwitchChatClient | None = None
        self.metrics_server: TrackerMetricsServer | None = None

        # State
        self.channel_id: str | None = None
        self._running = False
        self._stopping = False
        self._start_time: float | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    def build_components(self) -> None:
        """Construct every component from config. No I/O."""
        if self.config is None:
            if self.config_path is None:
                raise ValueError("Either config_path or config is required")
            self.config = load_config(str(self.config_path))
        config = self.config

        if config.features.enable_ai_messages:
            self.generator = MilestoneMessageGenerator(config.ai, self.logger.getChild("ai"))

        self.store = StatsStore(config, self.generator, self.logger.getChild("stats"))
        self.store.on_new_leader = self._on_new_leader

        self.identity, self.providers = build_providers(config, self.logger)
        self.catalog = EmoteCatalog(config, self.providers, self.identity, self.logger.getChild("catalog"))

        self.notifier = MilestoneNotifier(
            self.send_chat, config.twitch.channel, self.logger.getChild("notifier"),
        )
        self.classifier = MessageClassifier(
            self.catalog, self.store, self.notifier, self.logger.getChild("classifier"),
        )
        self.command_handler = CommandHandler(
            config, self.store, self.catalog, self.send_chat, self.logger.getChild("commands"),
        )
        self.scheduler = Scheduler(
            config,
            self.store,
            self.catalog,
            rate_limiter=self.command_handler.rate_limiter,
            logger=self.logger.getChild("scheduler"),
        )

    async def start(self) -> None:
        """Start the tracker and block until stop() is called."""
        self.logger.info("Starting emote-tracker v%s...", __version__)
        self._start_time = time.time()

        # 1. Config and components
        self.build_components()
        config = self.config
        self.logger.info("Config loaded: channel #%s", config.twitch.channel)

        # 2. Snapshots
        await self.store.load()
        await self.catalog.load()

        # 3. HTTP clients
        for provider in self.providers:
            await provider.start()

        # 4. Chat
        self.client = TwitchChatClient(
            token=config.twitch.token,
            username=config.twitch.username,
            channel=config.twitch.channel,
            on_message=self.handle_message,
            logger=self.logger.getChild("chat"),
        )
        await self.client.connect()

        # 5. Channel id and emotes
        self.channel_id = await self._resolve_channel_id()
        try:
            await self.catalog.refresh(channel_id=self.channel_id, channel_name=config.twitch.channel)
        except ChannelResolutionError:
            raise
        except Exception:
            self.logger.exception("Initial emote refresh failed; continuing with %d cached emotes", len(self.catalog))

        # 6. Scheduler
        self.scheduler.channel_id = self.channel_id
        self.scheduler.mark_activity()
        await self.scheduler.start()

        # 7. Metrics
        if config.metrics.enabled:
            self.metrics_server = TrackerMetricsServer(
                self, config.metrics.host, config.metrics.port, self.logger.getChild("metrics"),
            )
            await self.metrics_server.start()

        self._running = True
        self.logger.info("emote-tracker started — monitoring #%s", config.twitch.channel)

        await self._stop_event.wait()

    async def _resolve_channel_id(self) -> str:
        channel_id = self.config.twitch.channel_id
        if not channel_id and self.identity is not None:
            channel_id = await self.identity.get_user_id(self.config.twitch.channel)
        if not channel_id:
            raise ChannelResolutionError(
                f"Could not get channel id for '{self.config.twitch.channel}'. "
                "Check your Twitch API credentials."
            )
        self.logger.info("Channel #%s has id %s", self.config.twitch.channel, channel_id)
        return channel_id

    # ══════════════════════════════════════════════════════════
    #  Chat
    # ══════════════════════════════════════════════════════════

    async def handle_message(self, channel: str, sender: str, text: str, is_self: bool) -> None:
        """Route one chat line to the command handler or the classifier."""
        if is_self:
            return
        if self.scheduler is not None:
            self.scheduler.mark_activity()
        self.store.record_message()

        if text.startswith("!"):
            await self.command_handler.handle_command(channel, sender, text)
            return
        await self.classifier.process_message(sender, text)

    async def send_chat(self, channel: str, text: str) -> None:
        if self.client is None:
            raise RuntimeError("Chat client is not connected")
        await self.client.send_chat(channel, text)

    def _on_new_leader(self, username: str) -> None:
        self.logger.info("👑 New top user: %s", username)
        if self.scheduler is not None:
            self.scheduler.debounce(
                "save", self.config.intervals.save_debounce_seconds, self.store.save_stats,
            )

    # ══════════════════════════════════════════════════════════
    #  Shutdown
    # ══════════════════════════════════════════════════════════

    async def stop(self) -> None:
        """Gracefully shut down; the whole sequence is bounded by shutdown_timeout_seconds."""
        if self._stopping:
            return
        self._stopping = True
        self._running = False
        self.logger.info("Shutting down emote-tracker...")

        timeout = self.config.intervals.shutdown_timeout_seconds if self.config else 10
        try:
            await asyncio.wait_for(self._shutdown(timeout), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.error("Shutdown did not complete within %gs", timeout)
        finally:
            self._stop_event.set()

        self.logger.info("emote-tracker stopped.")

    async def _shutdown(self, timeout: float) -> None:
        # Reverse order of startup. Running ticks get at most half the budget;
        # the rest is reserved for the final leaderboard and save.
        if self.scheduler:
            budget = timeout / 2
            try:
                await asyncio.wait_for(self.scheduler.stop(timeout=budget * 0.8), timeout=budget)
            except asyncio.TimeoutError:
                self.logger.warning("Scheduler did not stop within %gs; continuing shutdown", budget)
            except Exception:
                self.logger.exception("Error stopping scheduler")
        if self.metrics_server:
            try:
                await self.metrics_server.stop()
            except Exception:
                self.logger.exception("Error stopping metrics server")

        if self.store:
            try:
                await self.store.display_top_users()
            except Exception:
                self.logger.exception("Error writing final leaderboard")
            try:
                await self.store.save_stats()
            except Exception:
                self.logger.exception("Final statistics save failed")

        if self.client:
            try:
                await self.client.close()
            except Exception:
                self.logger.exception("Error closing chat connection")
        for provider in self.providers:
            await provider.stop()
        if self.generator:
            await self.generator.close()


async def reset_statistics(config: TrackerConfig) -> None:
    """Erase every user statistic and metric on disk."""
    store = StatsStore(config, logger=logging.getLogger("emotes.stats"))
    await store.reset_stats()
