"""Tests for the message classifier and the milestone notifier."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from emote_tracker.classifier import MessageClassifier
from emote_tracker.emote_catalog import EmoteCatalog
from emote_tracker.models import MilestoneHit
from emote_tracker.notifier import MilestoneNotifier
from emote_tracker.stats_store import StatsStore


@pytest.fixture
def notifier(mock_send: AsyncMock) -> MilestoneNotifier:
    return MilestoneNotifier(mock_send, "teststreamer", logging.getLogger("test.notifier"))


@pytest.fixture
def classifier(catalog: EmoteCatalog, store: StatsStore, notifier: MilestoneNotifier) -> MessageClassifier:
    return MessageClassifier(catalog, store, notifier, logging.getLogger("test.classifier"))


class TestProcessMessage:

    @pytest.mark.asyncio
    async def test_duplicate_emotes_counted_per_occurrence(self, classifier: MessageClassifier, store: StatsStore):
        detected = await classifier.process_message("alice", "Kappa Kappa PogChamp")

        assert detected == ["Kappa", "Kappa", "PogChamp"]
        stats = await store.get_user_stats("alice")
        assert stats.total == 1
        assert stats.emotes == {"Kappa": 2, "PogChamp": 1}
        assert stats.platforms == {"twitch": 3}
        assert store.metrics.emotes_detected == 3

    @pytest.mark.asyncio
    async def test_mixed_platforms(self, classifier: MessageClassifier, store: StatsStore):
        await classifier.process_message("alice", "hello catJAM  OMEGALUL\tLUL")
        stats = await store.get_user_stats("alice")
        assert stats.platforms == {"7tv-channel": 1, "ffz": 1, "twitch-global": 1}

    @pytest.mark.asyncio
    async def test_plain_text_ignored(self, classifier: MessageClassifier, store: StatsStore):
        assert await classifier.process_message("alice", "hello there kappa") == []
        assert store.user_count == 0
        assert store.metrics.emotes_detected == 0

    @pytest.mark.asyncio
    async def test_disabled_platform_not_counted(
        self, classifier: MessageClassifier, store: StatsStore, catalog: EmoteCatalog,
    ):
        catalog._config.platforms["ffz"] = False
        assert await classifier.process_message("alice", "OMEGALUL") == []
        assert store.user_count == 0

    @pytest.mark.asyncio
    async def test_milestone_announced(self, classifier: MessageClassifier, store: StatsStore, mock_send: AsyncMock):
        for _ in range(99):
            await store.increment_stats("alice", total_only=True)

        await classifier.process_message("alice", "PogChamp")

        mock_send.assert_awaited_once_with(
            "teststreamer", "PogChamp @alice reached 100 emotes! Congratulations! 🎉",
        )

    @pytest.mark.asyncio
    async def test_never_raises(self, catalog: EmoteCatalog, notifier: MilestoneNotifier):
        broken = MagicMock()
        broken.increment_stats = AsyncMock(side_effect=RuntimeError("store down"))
        classifier = MessageClassifier(catalog, broken, notifier, logging.getLogger("test"))
        assert await classifier.process_message("alice", "Kappa") == []


class TestNotifier:

    @pytest.mark.asyncio
    async def test_message_format(self, notifier: MilestoneNotifier, mock_send: AsyncMock):
        assert await notifier.notify("bob", MilestoneHit(500, "reached 500 emotes!")) is True
        mock_send.assert_awaited_once_with("teststreamer", "PogChamp @bob reached 500 emotes!")

    @pytest.mark.asyncio
    async def test_empty_message_uses_default(self, notifier: MilestoneNotifier, mock_send: AsyncMock):
        await notifier.notify("bob", MilestoneHit(10000, ""))
        mock_send.assert_awaited_once_with("teststreamer", "PogChamp @bob reached 10,000 emotes! 🎉")

    @pytest.mark.asyncio
    async def test_send_failure_logged_not_raised(self, mock_send: AsyncMock):
        mock_send.side_effect = ConnectionError("chat down")
        notifier = MilestoneNotifier(mock_send, "teststreamer")
        assert await notifier.notify("bob", MilestoneHit(100, "x")) is False
        assert mock_send.await_count == 1
