"""Data types shared by the catalog, the statistics store and the commands.

Snapshot dictionaries use the camelCase keys of the on-disk format
(``firstSeen``, ``messagesProcessed``...), so existing snapshot files keep
loading unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ═══════════════════════════════════════════════════════════════
#  Emotes
# ═══════════════════════════════════════════════════════════════


class Platform(Enum):
    TWITCH = "twitch"
    TWITCH_GLOBAL = "twitch-global"
    SEVENTV_CHANNEL = "7tv-channel"
    SEVENTV_GLOBAL = "7tv-global"
    BTTV = "bttv"
    BTTV_GLOBAL = "bttv-global"
    FFZ = "ffz"
    FFZ_GLOBAL = "ffz-global"


PLATFORM_VALUES: tuple[str, ...] = tuple(p.value for p in Platform)


@dataclass
class EmoteRecord:
    """One emote as known to the catalog."""

    id: str
    code: str
    platform: Platform
    animated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "platform": self.platform.value,
            "animated": self.animated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EmoteRecord | None:
        """Build a record from snapshot data; None if the entry is unusable."""
        if not isinstance(data, dict) or not data.get("code"):
            return None
        try:
            platform = Platform(data.get("platform"))
        except ValueError:
            return None
        return cls(
            id=str(data.get("id", "")),
            code=str(data["code"]),
            platform=platform,
            animated=bool(data.get("animated", False)),
        )


# ═══════════════════════════════════════════════════════════════
#  Statistics
# ═══════════════════════════════════════════════════════════════


@dataclass
class UserStats:
    """Cumulative counters for one chatter."""

    total: int = 0
    emotes: dict[str, int] = field(default_factory=dict)
    platforms: dict[str, int] = field(default_factory=dict)
    first_seen: int = 0
    last_seen: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "emotes": dict(self.emotes),
            "platforms": dict(self.platforms),
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserStats:
        return cls(
            total=int(data.get("total", 0)),
            emotes={k: int(v) for k, v in (data.get("emotes") or {}).items()},
            platforms={k: int(v) for k, v in (data.get("platforms") or {}).items()},
            first_seen=int(data.get("firstSeen", 0)),
            last_seen=int(data.get("lastSeen", 0)),
        )


@dataclass
class Metrics:
    """Process-wide counters, persisted alongside the user statistics."""

    messages_processed: int = 0
    emotes_detected: int = 0
    commands_executed: int = 0
    last_save_attempt: int = 0
    total_saves: int = 0
    failed_saves: int = 0

    _KEYS = (
        ("messages_processed", "messagesProcessed"),
        ("emotes_detected", "emotesDetected"),
        ("commands_executed", "commandsExecuted"),
        ("last_save_attempt", "lastSaveAttempt"),
        ("total_saves", "totalSaves"),
        ("failed_saves", "failedSaves"),
    )

    def to_dict(self) -> dict[str, int]:
        return {key: getattr(self, attr) for attr, key in self._KEYS}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Metrics:
        metrics = cls()
        for attr, key in cls._KEYS:
            if key in data:
                setattr(metrics, attr, int(data[key]))
        return metrics


@dataclass
class MilestoneHit:
    """A threshold crossed by a single increment, with its resolved text."""

    count: int
    message: str


@dataclass
class IncrementResult:
    stats: UserStats
    milestones: list[MilestoneHit] = field(default_factory=list)
