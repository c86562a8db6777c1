"""Emote provider clients — Twitch, 7TV, BTTV and FFZ over aiohttp.

Every provider exposes the same two calls, ``get_channel_emotes(channel_id)``
and ``get_global_emotes()``, each returning a list of EmoteRecord. A call
that still fails after its retries returns [] and logs; one broken provider
never takes the others down. All tests mock the HTTP layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import aiohttp

from .models import EmoteRecord, Platform
from .utils import with_retry

if TYPE_CHECKING:
    from .config import RetryConfig, TrackerConfig


SEVENTV_GLOBAL_SET_ID = "62cdd34e72a832540de95857"


class EmoteProvider(ABC):
    """Shared HTTP plumbing for the provider clients."""

    name = "provider"

    def __init__(
        self,
        base_url: str,
        retry: RetryConfig,
        logger: logging.Logger | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._retry = retry
        self._timeout = timeout
        self._logger = logger or logging.getLogger(f"emotes.providers.{self.name}")
        self._session: aiohttp.ClientSession | None = None

    def _headers(self) -> dict[str, str]:
        return {}

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        """GET ``base_url + path`` with retry; raises after the last attempt."""
        if not self._session:
            raise RuntimeError(f"{self.name} client not started")
        url = f"{self._base_url}{path}"

        async def _call() -> Any:
            async with self._session.get(url, params=params) as resp:
                resp.raise_for_status()
                return await resp.json()

        return await with_retry(
            _call,
            attempts=self._retry.attempts,
            delay=self._retry.delay,
            max_delay=self._retry.max_delay,
            logger=self._logger,
        )

    async def get_channel_emotes(self, channel_id: str) -> list[EmoteRecord]:
        try:
            return await self._fetch_channel(channel_id)
        except Exception as e:
            self._logger.error("%s channel emotes failed for %s: %s", self.name, channel_id, e)
            return []

    async def get_global_emotes(self) -> list[EmoteRecord]:
        try:
            return await self._fetch_global()
        except Exception as e:
            self._logger.error("%s global emotes failed: %s", self.name, e)
            return []

    @abstractmethod
    async def _fetch_channel(self, channel_id: str) -> list[EmoteRecord]:
        ...

    @abstractmethod
    async def _fetch_global(self) -> list[EmoteRecord]:
        ...


# ══════════════════════════════════════════════════════════
#  Twitch (Helix)
# ══════════════════════════════════════════════════════════

class TwitchEmoteProvider(EmoteProvider):
    """Helix chat emotes plus the login → user id lookup."""

    name = "twitch"

    def __init__(
        self,
        base_url: str,
        client_id: str,
        access_token: str,
        retry: RetryConfig,
        logger: logging.Logger | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._client_id = client_id
        self._access_token = access_token
        super().__init__(base_url, retry, logger, timeout)

    def _headers(self) -> dict[str, str]:
        token = self._access_token
        if token.startswith("oauth:"):
            token = token[len("oauth:"):]
        return {"Client-ID": self._client_id, "Authorization": f"Bearer {token}"}

    async def get_user_id(self, login: str) -> str | None:
        """Resolve a Twitch login to its user id. None if unknown or on error."""
        try:
            data = await self._get_json("/users", params={"login": login.lower()})
        except Exception as e:
            self._logger.error("Twitch user lookup failed for '%s': %s", login, e)
            return None
        users = data.get("data") or []
        return str(users[0]["id"]) if users else None

    async def _fetch_channel(self, channel_id: str) -> list[EmoteRecord]:
        data = await self._get_json("/chat/emotes", params={"broadcaster_id": channel_id})
        return self._parse(data, Platform.TWITCH)

    async def _fetch_global(self) -> list[EmoteRecord]:
        data = await self._get_json("/chat/emotes/global")
        return self._parse(data, Platform.TWITCH_GLOBAL)

    @staticmethod
    def _parse(data: dict, platform: Platform) -> list[EmoteRecord]:
        return [
            EmoteRecord(
                id=str(e.get("id", "")),
                code=e.get("name", ""),
                platform=platform,
                animated="animated" in (e.get("format") or []),
            )
            for e in data.get("data") or []
        ]


# ══════════════════════════════════════════════════════════
#  7TV
# ══════════════════════════════════════════════════════════

class SevenTVProvider(EmoteProvider):
    name = "7tv"

    async def _fetch_channel(self, channel_id: str) -> list[EmoteRecord]:
        data = await self._get_json(f"/users/twitch/{channel_id}")
        emote_set = (data or {}).get("emote_set") or {}
        return self._parse(emote_set.get("emotes") or [], Platform.SEVENTV_CHANNEL)

    async def _fetch_global(self) -> list[EmoteRecord]:
        data = await self._get_json(f"/emote-sets/{SEVENTV_GLOBAL_SET_ID}")
        return self._parse((data or {}).get("emotes") or [], Platform.SEVENTV_GLOBAL)

    @staticmethod
    def _parse(emotes: list[dict], platform: Platform) -> list[EmoteRecord]:
        return [
            EmoteRecord(
                id=str(e.get("id", "")),
                code=e.get("name", ""),
                platform=platform,
                animated=bool((e.get("data") or {}).get("animated", False)),
            )
            for e in emotes
        ]


# ══════════════════════════════════════════════════════════
#  BetterTTV
# ══════════════════════════════════════════════════════════

class BTTVProvider(EmoteProvider):
    name = "bttv"

    async def _fetch_channel(self, channel_id: str) -> list[EmoteRecord]:
        data = await self._get_json(f"/cached/users/twitch/{channel_id}") or {}
        emotes = (data.get("channelEmotes") or []) + (data.get("sharedEmotes") or [])
        return self._parse(emotes, Platform.BTTV)

    async def _fetch_global(self) -> list[EmoteRecord]:
        data = await self._get_json("/cached/emotes/global")
        return self._parse(data if isinstance(data, list) else [], Platform.BTTV_GLOBAL)

    @staticmethod
    def _parse(emotes: list[dict], platform: Platform) -> list[EmoteRecord]:
        return [
            EmoteRecord(
                id=str(e.get("id", "")),
                code=e.get("code", ""),
                platform=platform,
                animated=e.get("imageType") == "gif" or bool(e.get("animated", False)),
            )
            for e in emotes
        ]


# ══════════════════════════════════════════════════════════
#  FrankerFaceZ
# ══════════════════════════════════════════════════════════

class FFZProvider(EmoteProvider):
    name = "ffz"

    async def _fetch_channel(self, channel_id: str) -> list[EmoteRecord]:
        data = await self._get_json(f"/room/id/{channel_id}") or {}
        sets = data.get("sets") or {}
        return self._parse(sets.values(), Platform.FFZ)

    async def _fetch_global(self) -> list[EmoteRecord]:
        data = await self._get_json("/set/global") or {}
        sets = data.get("sets") or {}
        default_ids = {str(i) for i in data.get("default_sets") or []}
        if default_ids:
            chosen = [s for key, s in sets.items() if str(key) in default_ids]
        else:
            chosen = list(sets.values())
        return self._parse(chosen, Platform.FFZ_GLOBAL)

    @staticmethod
    def _parse(sets: Any, platform: Platform) -> list[EmoteRecord]:
        records: list[EmoteRecord] = []
        for emote_set in sets:
            for e in (emote_set or {}).get("emoticons") or []:
                records.append(EmoteRecord(
                    id=str(e.get("id", "")),
                    code=e.get("name", ""),
                    platform=platform,
                    animated=bool(e.get("animated")),
                ))
        return records


def build_providers(
    config: TrackerConfig, logger: logging.Logger | None = None,
) -> tuple[TwitchEmoteProvider, list[EmoteProvider]]:
    """Construct the identity provider and the four emote providers.

    The Twitch client doubles as the identity provider, so it is returned
    both on its own and as the first entry of the provider list.
    """
    base = logger or logging.getLogger("emotes")
    timeout = config.apis.request_timeout_seconds
    twitch = TwitchEmoteProvider(
        config.twitch.helix_url,
        config.twitch.client_id,
        config.twitch.access_token,
        config.retry,
        base.getChild("providers.twitch"),
        timeout,
    )
    providers: list[EmoteProvider] = [
        twitch,
        SevenTVProvider(config.apis.seventv.base_url, config.retry, base.getChild("providers.7tv"), timeout),
        BTTVProvider(config.apis.bttv.base_url, config.retry, base.getChild("providers.bttv"), timeout),
        FFZProvider(config.apis.ffz.base_url, config.retry, base.getChild("providers.ffz"), timeout),
    ]
    return twitch, providers
