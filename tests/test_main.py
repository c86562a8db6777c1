"""Tests for the EmoteTrackerApp orchestrator and the CLI entry point."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from emote_tracker.__main__ import main_async, parse_args
from emote_tracker.config import TrackerConfig
from emote_tracker.errors import ChannelResolutionError
from emote_tracker.main import EmoteTrackerApp, reset_statistics

from conftest import make_config_dict, make_provider, make_record


@pytest_asyncio.fixture
async def app(sample_config: TrackerConfig, mock_client: MagicMock) -> AsyncGenerator[EmoteTrackerApp, None]:
    """Built but not started app, with a fake chat client and a seeded catalog."""
    tracker = EmoteTrackerApp(config=sample_config)
    tracker.build_components()
    await tracker.store.load()
    tracker.catalog._emotes["Kappa"] = make_record("Kappa")
    tracker.client = mock_client
    scheduler = tracker.scheduler
    yield tracker
    # Cancel any debounced save left pending by the test
    await scheduler.stop()


class TestRouting:

    @pytest.mark.asyncio
    async def test_own_messages_discarded(self, app: EmoteTrackerApp, mock_client: MagicMock):
        await app.handle_message("teststreamer", "TestBot", "Kappa !top", True)
        assert app.store.metrics.messages_processed == 0
        assert app.store.user_count == 0
        mock_client.send_chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_command_routed_to_handler(self, app: EmoteTrackerApp, mock_client: MagicMock):
        await app.handle_message("teststreamer", "alice", "!top", False)
        mock_client.send_chat.assert_awaited_once_with("teststreamer", "No statistics recorded yet 📊")
        assert app.store.metrics.messages_processed == 1
        assert app.store.metrics.commands_executed == 1

    @pytest.mark.asyncio
    async def test_commands_are_not_scanned_for_emotes(self, app: EmoteTrackerApp):
        await app.handle_message("teststreamer", "alice", "!emote Kappa", False)
        assert app.store.user_count == 0

    @pytest.mark.asyncio
    async def test_chat_routed_to_classifier(self, app: EmoteTrackerApp):
        await app.handle_message("teststreamer", "alice", "hi Kappa Kappa", False)
        stats = await app.store.get_user_stats("alice")
        assert stats.total == 1
        assert stats.emotes == {"Kappa": 2}

    @pytest.mark.asyncio
    async def test_message_resets_idle_timer(self, app: EmoteTrackerApp):
        app.scheduler = MagicMock()
        await app.handle_message("teststreamer", "alice", "hello", False)
        app.scheduler.mark_activity.assert_called_once()

    @pytest.mark.asyncio
    async def test_send_chat_requires_client(self, sample_config: TrackerConfig):
        tracker = EmoteTrackerApp(config=sample_config)
        with pytest.raises(RuntimeError):
            await tracker.send_chat("teststreamer", "hi")

    @pytest.mark.asyncio
    async def test_new_leader_schedules_save(self, app: EmoteTrackerApp):
        app.scheduler = MagicMock()
        await app.handle_message("teststreamer", "alice", "Kappa", False)
        app.scheduler.debounce.assert_called_once_with("save", 5, app.store.save_stats)


class TestShutdown:

    @pytest.mark.asyncio
    async def test_stop_saves_and_closes(self, app: EmoteTrackerApp, mock_client: MagicMock, sample_config):
        await app.handle_message("teststreamer", "alice", "Kappa", False)
        await app.stop()

        saved = json.loads(Path(sample_config.files.database).read_text(encoding="utf-8"))
        assert saved["stats"]["alice"]["total"] == 1
        exported = json.loads(Path(sample_config.files.export).read_text(encoding="utf-8"))
        assert exported[0]["username"] == "alice"
        mock_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, app: EmoteTrackerApp, mock_client: MagicMock):
        await app.stop()
        await app.stop()
        mock_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_is_bounded(self, tmp_path: Path, mock_client: MagicMock):
        data = make_config_dict(tmp_path)
        data["intervals"] = {"shutdown_timeout_seconds": 0.5}
        tracker = EmoteTrackerApp(config=TrackerConfig(**data))
        tracker.build_components()
        tracker.client = mock_client
        tracker.scheduler = MagicMock()

        async def hang(*args, **kwargs):
            await asyncio.sleep(60)

        tracker.scheduler.stop = AsyncMock(side_effect=hang)
        tracker.store.save_stats = AsyncMock()

        await asyncio.wait_for(tracker.stop(), timeout=2)

        assert tracker._stop_event.is_set()
        tracker.store.save_stats.assert_awaited_once()
        mock_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_timeout_is_logged_precisely(
        self, tmp_path: Path, mock_client: MagicMock, caplog: pytest.LogCaptureFixture,
    ):
        data = make_config_dict(tmp_path)
        data["intervals"] = {"shutdown_timeout_seconds": 0.2}
        tracker = EmoteTrackerApp(config=TrackerConfig(**data))
        tracker.build_components()
        tracker.client = mock_client

        async def hang(*args, **kwargs):
            await asyncio.sleep(60)

        tracker.store.save_stats = AsyncMock(side_effect=hang)

        with caplog.at_level(logging.ERROR, logger="emotes"):
            await asyncio.wait_for(tracker.stop(), timeout=2)

        assert "Shutdown did not complete within 0.2s" in caplog.text
        assert tracker._stop_event.is_set()

    @pytest.mark.asyncio
    async def test_final_save_runs_while_tick_is_stuck(self, tmp_path: Path, mock_client: MagicMock):
        data = make_config_dict(tmp_path)
        data["intervals"] = {"shutdown_timeout_seconds": 0.5}
        tracker = EmoteTrackerApp(config=TrackerConfig(**data))
        tracker.build_components()
        await tracker.store.load()
        tracker.client = mock_client

        started = asyncio.Event()

        async def slow_refresh():
            started.set()
            await asyncio.sleep(5)

        tracker.scheduler.every("catalog-refresh", 0.001, slow_refresh)
        await started.wait()
        await tracker.store.increment_stats("alice", total_only=True)

        await asyncio.wait_for(tracker.stop(), timeout=2)

        saved = json.loads(Path(data["files"]["database"]).read_text(encoding="utf-8"))
        assert saved["stats"]["alice"]["total"] == 1
        assert tracker.scheduler.task_names == []

    @pytest.mark.asyncio
    async def test_save_failure_does_not_abort_shutdown(self, app: EmoteTrackerApp, mock_client: MagicMock):
        app.store.save_stats = AsyncMock(side_effect=OSError("read-only"))
        await app.stop()
        mock_client.close.assert_awaited_once()


class TestStartup:

    @pytest.mark.asyncio
    async def test_start_runs_until_stopped(self, sample_config: TrackerConfig, mock_client: MagicMock):
        provider = make_provider([make_record("subHype")], [make_record("Kappa")])
        tracker = EmoteTrackerApp(config=sample_config)

        with patch("emote_tracker.main.build_providers", return_value=(provider, [provider])), \
                patch("emote_tracker.main.TwitchChatClient", return_value=mock_client):
            runner = asyncio.create_task(tracker.start())
            for _ in range(100):
                if tracker.running:
                    break
                await asyncio.sleep(0.01)

            assert tracker.running
            assert tracker.channel_id == "12345"
            assert tracker.scheduler.channel_id == "12345"
            assert tracker.catalog.is_emote("subHype")
            mock_client.connect.assert_awaited_once()
            provider.start.assert_awaited_once()

            await tracker.stop()
            await asyncio.wait_for(runner, timeout=2)

        provider.stop.assert_awaited_once()
        assert tracker.scheduler.task_names == []

    @pytest.mark.asyncio
    async def test_unresolvable_channel_fails_startup(self, tmp_path: Path, mock_client: MagicMock):
        data = make_config_dict(tmp_path)
        data["twitch"]["channel_id"] = None
        identity = make_provider()
        identity.get_user_id = AsyncMock(return_value=None)
        tracker = EmoteTrackerApp(config=TrackerConfig(**data))

        with patch("emote_tracker.main.build_providers", return_value=(identity, [identity])), \
                patch("emote_tracker.main.TwitchChatClient", return_value=mock_client):
            with pytest.raises(ChannelResolutionError):
                await tracker.start()
            await tracker.stop()

        identity.get_channel_emotes.assert_not_awaited()


@pytest.mark.asyncio
async def test_reset_statistics(sample_config: TrackerConfig):
    path = Path(sample_config.files.database)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"stats": {"alice": {"total": 9}}, "metrics": {}}), encoding="utf-8")

    await reset_statistics(sample_config)

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["stats"] == {}
    assert saved["metrics"]["messagesProcessed"] == 0


class TestCli:

    def test_parse_args_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.reset is False
        assert args.validate_config is False

    def test_parse_args_flags(self):
        args = parse_args(["-r", "--config", "x.yaml", "--log-level", "DEBUG"])
        assert args.reset is True
        assert args.config == "x.yaml"
        assert args.log_level == "DEBUG"

    @pytest.mark.asyncio
    async def test_missing_config_exits(self, tmp_path: Path):
        with pytest.raises(SystemExit) as exc:
            await main_async(["--config", str(tmp_path / "nope.yaml")])
        assert exc.value.code == 1

    @pytest.mark.asyncio
    async def test_validate_config_only(self, tmp_path: Path):
        import yaml

        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump(make_config_dict(tmp_path)), encoding="utf-8")

        with patch("emote_tracker.__main__.EmoteTrackerApp") as app_cls:
            await main_async(["--config", str(config_file), "--validate-config"])
        app_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_reset_cancelled(self, tmp_path: Path):
        import yaml

        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump(make_config_dict(tmp_path)), encoding="utf-8")

        with patch("emote_tracker.__main__.confirm_reset", return_value=False), \
                patch("emote_tracker.__main__.reset_statistics", new_callable=AsyncMock) as reset:
            await main_async(["--config", str(config_file), "--reset"])
        reset.assert_not_awaited()
