"""Prometheus metrics server for emote-tracker.

Serves ``/metrics`` in the Prometheus text format and ``/health`` as JSON
using aiohttp's web server.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiohttp import web

if TYPE_CHECKING:
    from .main import EmoteTrackerApp


class TrackerMetricsServer:
    """Emote-tracker metrics endpoint."""

    def __init__(
        self,
        app: EmoteTrackerApp,
        host: str = "127.0.0.1",
        port: int = 28290,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._logger = logger or logging.getLogger("emotes.metrics")
        self._runner: web.AppRunner | None = None

        self.web_app = web.Application()
        self.web_app.router.add_get("/metrics", self.handle_metrics)
        self.web_app.router.add_get("/health", self.handle_health)

    async def start(self) -> None:
        self._runner = web.AppRunner(self.web_app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        self._logger.info("Metrics server listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    def collect_metrics(self) -> list[str]:
        """Collect Prometheus metric lines."""
        store = self._app.store
        m = store.metrics
        lines = [
            f"emotes_messages_processed_total {m.messages_processed}",
            f"emotes_detected_total {m.emotes_detected}",
            f"emotes_commands_executed_total {m.commands_executed}",
            f"emotes_saves_total {m.total_saves}",
            f"emotes_saves_failed_total {m.failed_saves}",
            f"emotes_last_save_attempt_ms {m.last_save_attempt}",
            f"emotes_tracked_users {store.user_count}",
            f"emotes_stats_loaded {int(store.is_loaded)}",
            f"emotes_uptime_seconds {self._app.uptime_seconds:.0f}",
        ]

        catalog = self._app.catalog
        if catalog is not None:
            lines.append(f"emotes_catalog_size {len(catalog)}")
            lines.append(f"emotes_catalog_last_update_ms {catalog.last_update}")
            for platform, count in sorted(catalog.platform_counts().items()):
                lines.append(f'emotes_catalog_platform_size{{platform="{platform}"}} {count}')
        return lines

    async def handle_metrics(self, request: web.Request) -> web.Response:
        body = "\n".join(self.collect_metrics()) + "\n"
        return web.Response(text=body, content_type="text/plain")

    async def handle_health(self, request: web.Request) -> web.Response:
        catalog = self._app.catalog
        return web.json_response({
            "status": "healthy" if self._app.running else "stopping",
            "channel": self._app.config.twitch.channel,
            "catalog_emotes": len(catalog) if catalog is not None else 0,
            "stats_loaded": self._app.store.is_loaded,
            "uptime_seconds": int(self._app.uptime_seconds),
        })
