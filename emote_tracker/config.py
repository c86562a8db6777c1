"""Configuration system for emote-tracker.

All sections are Pydantic models with sensible defaults; only the Twitch
identity is required. Secrets are normally injected through ``${VAR}``
references expanded from the environment at load time.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .models import PLATFORM_VALUES


# ═══════════════════════════════════════════════════════════════
#  Identity & Files
# ═══════════════════════════════════════════════════════════════

class TwitchConfig(BaseModel):
    username: str = Field(min_length=1, description="Bot account login")
    token: str = Field(min_length=1, description="Chat OAuth token (with or without 'oauth:')")
    channel: str = Field(min_length=1, description="Channel to monitor")
    channel_id: str | None = Field(default=None, description="Known broadcaster id; skips lookup")
    client_id: str = Field(min_length=1)
    client_secret: str = ""
    access_token: str = Field(min_length=1)
    helix_url: str = "https://api.twitch.tv/helix"

    @field_validator("channel")
    @classmethod
    def _strip_channel(cls, v: str) -> str:
        return v.lstrip("#").strip()

    @field_validator("channel_id")
    @classmethod
    def _blank_channel_id(cls, v: str | None) -> str | None:
        return v or None


class FilesConfig(BaseModel):
    database: str = "data/stats.json"
    export: str = "data/top_users.json"
    emotes_cache: str = "data/emotes_cache.json"
    top_user: str = "data/top_user.txt"


class FormatConfig(BaseModel):
    top_user: str = "👑 {username}: {total} emotes (favorite: {favorite_emote})"

    @field_validator("top_user")
    @classmethod
    def _needs_username(cls, v: str) -> str:
        if "{username}" not in v:
            raise ValueError("format.top_user must include at least {username}")
        return v


# ═══════════════════════════════════════════════════════════════
#  Timing & Features
# ═══════════════════════════════════════════════════════════════

class IntervalsConfig(BaseModel):
    auto_save_seconds: float = Field(default=300, ge=1)
    emote_refresh_seconds: float = Field(default=1800, ge=1)
    idle_check_seconds: float = Field(default=300, ge=1)
    idle_threshold_seconds: float = Field(default=900, ge=1)
    rate_limit_sweep_seconds: float = Field(default=3600, ge=1)
    save_debounce_seconds: float = Field(default=5, ge=0)
    shutdown_timeout_seconds: float = Field(default=10, gt=0)


class FeaturesConfig(BaseModel):
    max_top_users: int = Field(default=10, ge=1)
    enable_ai_messages: bool = False


class ApiEndpointConfig(BaseModel):
    base_url: str


class ApisConfig(BaseModel):
    seventv: ApiEndpointConfig = Field(
        default_factory=lambda: ApiEndpointConfig(base_url="https://7tv.io/v3"),
    )
    bttv: ApiEndpointConfig = Field(
        default_factory=lambda: ApiEndpointConfig(base_url="https://api.betterttv.net/3"),
    )
    ffz: ApiEndpointConfig = Field(
        default_factory=lambda: ApiEndpointConfig(base_url="https://api.frankerfacez.com/v1"),
    )
    request_timeout_seconds: float = Field(default=5.0, gt=0)


class RetryConfig(BaseModel):
    attempts: int = Field(default=3, ge=1)
    delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=8.0, ge=0)

    @model_validator(mode="after")
    def _max_not_below_delay(self) -> RetryConfig:
        if self.max_delay < self.delay:
            raise ValueError("retry.max_delay must be >= retry.delay")
        return self


# ═══════════════════════════════════════════════════════════════
#  Milestones & AI
# ═══════════════════════════════════════════════════════════════

class MilestonesConfig(BaseModel):
    values: list[int] = Field(default_factory=lambda: [100, 500, 1000, 5000, 10000, 50000])
    messages: dict[int, str] = Field(
        default_factory=dict,
        description="Threshold → message template; {count} is replaced",
    )
    default_message: str = "reached {count} emotes! Congratulations! 🎉"

    @field_validator("values")
    @classmethod
    def _positive_values(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("milestones.values must contain at least one threshold")
        if any(m < 1 for m in v):
            raise ValueError("each milestone value must be >= 1")
        return v

    def message_for(self, value: int) -> str:
        return self.messages.get(value, self.default_message)


class AiConfig(BaseModel):
    api_key: str = ""
    endpoint: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    max_tokens: int = Field(default=60, ge=1)
    temperature: float = Field(default=0.7, ge=0, le=2)
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_response_length: int = Field(default=150, ge=1)
    system_prompt: str = (
        "You are a Twitch chat bot that writes short, fun and encouraging milestone "
        "messages. Keep responses under 150 characters."
    )
    user_prompt_template: str = (
        "Write a celebratory message for {username} who just reached {milestone} "
        "emotes used in chat. Include emojis."
    )


# ═══════════════════════════════════════════════════════════════
#  Commands & Metrics
# ═══════════════════════════════════════════════════════════════

class CommandsConfig(BaseModel):
    rate_limit_seconds: float = Field(default=1.0, ge=0)
    cooldown_seconds: float = Field(default=3.0, ge=0)
    sweep_max_age_seconds: float = Field(default=3600, ge=1)


class MetricsConfig(BaseModel):
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 28290


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

def _all_platforms_enabled() -> dict[str, bool]:
    return {p: True for p in PLATFORM_VALUES}


class TrackerConfig(BaseModel):
    """Full emote-tracker config."""

    twitch: TwitchConfig
    files: FilesConfig = Field(default_factory=FilesConfig)
    format: FormatConfig = Field(default_factory=FormatConfig)
    intervals: IntervalsConfig = Field(default_factory=IntervalsConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    platforms: dict[str, bool] = Field(default_factory=_all_platforms_enabled)
    apis: ApisConfig = Field(default_factory=ApisConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    milestones: MilestonesConfig = Field(default_factory=MilestonesConfig)
    ai: AiConfig = Field(default_factory=AiConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @field_validator("platforms")
    @classmethod
    def _known_platforms(cls, v: dict[str, bool]) -> dict[str, bool]:
        unknown = sorted(set(v) - set(PLATFORM_VALUES))
        if unknown:
            raise ValueError(f"Unknown platform(s): {', '.join(unknown)}")
        # Platforms not mentioned stay enabled
        return {p: v.get(p, True) for p in PLATFORM_VALUES}

    @model_validator(mode="after")
    def _ai_needs_key(self) -> TrackerConfig:
        if self.features.enable_ai_messages and not self.ai.api_key:
            raise ValueError("ai.api_key is required when features.enable_ai_messages is true")
        return self

    def is_platform_enabled(self, platform: str) -> bool:
        return bool(self.platforms.get(platform, False))


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> TrackerConfig:
    """Load and validate YAML config file into TrackerConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return TrackerConfig(**raw)
