"""Shared test fixtures for emote-tracker."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from emote_tracker.config import TrackerConfig
from emote_tracker.emote_catalog import EmoteCatalog
from emote_tracker.models import EmoteRecord, Platform
from emote_tracker.stats_store import StatsStore


# ── Minimal config dict matching TrackerConfig schema ────────

def make_config_dict(tmp_path: Path | None = None, **overrides: Any) -> dict:
    """Build a valid config dict with sensible test defaults."""
    data_dir = tmp_path or Path("data")
    base = {
        "twitch": {
            "username": "TestBot",
            "token": "oauth:chat-token",
            "channel": "teststreamer",
            "channel_id": "12345",
            "client_id": "client-id",
            "access_token": "helix-token",
        },
        "files": {
            "database": str(data_dir / "stats.json"),
            "export": str(data_dir / "top_users.json"),
            "emotes_cache": str(data_dir / "emotes_cache.json"),
            "top_user": str(data_dir / "top_user.txt"),
        },
        "retry": {"attempts": 2, "delay": 0, "max_delay": 0},
        "milestones": {"values": [100, 500]},
    }
    base.update(overrides)
    return base


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def sample_config_dict(tmp_path: Path) -> dict:
    """Return a config dict whose files live under tmp_path."""
    return make_config_dict(tmp_path)


@pytest.fixture
def sample_config(sample_config_dict: dict) -> TrackerConfig:
    """Return a parsed TrackerConfig."""
    return TrackerConfig(**sample_config_dict)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store(sample_config: TrackerConfig, clock: FakeClock) -> AsyncGenerator[StatsStore, None]:
    """A loaded, empty StatsStore backed by a temp file."""
    s = StatsStore(sample_config, logger=logging.getLogger("test.stats"), clock=clock)
    await s.load()
    yield s


def make_record(code: str, platform: Platform = Platform.TWITCH, animated: bool = False) -> EmoteRecord:
    return EmoteRecord(id=f"id-{code}", code=code, platform=platform, animated=animated)


def make_provider(channel: list[EmoteRecord] | None = None, global_: list[EmoteRecord] | None = None) -> MagicMock:
    """Mock emote provider returning fixed lists."""
    provider = MagicMock()
    provider.get_channel_emotes = AsyncMock(return_value=channel or [])
    provider.get_global_emotes = AsyncMock(return_value=global_ or [])
    provider.start = AsyncMock()
    provider.stop = AsyncMock()
    return provider


@pytest.fixture
def catalog(sample_config: TrackerConfig, clock: FakeClock) -> EmoteCatalog:
    """Catalog pre-seeded with a few emotes across platforms."""
    cat = EmoteCatalog(sample_config, [], None, logging.getLogger("test.catalog"), clock=clock)
    for record in (
        make_record("Kappa"),
        make_record("PogChamp"),
        make_record("LUL", Platform.TWITCH_GLOBAL),
        make_record("catJAM", Platform.SEVENTV_CHANNEL, animated=True),
        make_record("monkaS", Platform.BTTV_GLOBAL),
        make_record("OMEGALUL", Platform.FFZ),
    ):
        cat._emotes[record.code] = record
    cat.last_update = clock()
    return cat


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock TwitchChatClient with async methods."""
    client = MagicMock()
    client.send_chat = AsyncMock()
    client.connect = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_send() -> AsyncMock:
    """Stand-in for the outbound ``send_chat(channel, text)`` coroutine."""
    return AsyncMock()
