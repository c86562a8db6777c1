"""AI-written milestone celebrations via an OpenAI-compatible endpoint.

The generator is strictly optional: any failure, empty answer or missing key
yields None and the caller falls back to the configured template.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from openai import AsyncOpenAI

if TYPE_CHECKING:
    from openai.types.chat import ChatCompletionMessageParam

    from .config import AiConfig


class MilestoneMessageGenerator:
    """Produces a replacement celebration string for (user, milestone)."""

    def __init__(
        self,
        config: AiConfig,
        logger: logging.Logger | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or logging.getLogger("emotes.ai")
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                base_url=self._config.endpoint,
                api_key=self._config.api_key,
                timeout=self._config.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def generate(self, username: str, milestone: int) -> str | None:
        if not self._config.api_key:
            return None

        user_prompt = (
            self._config.user_prompt_template
            .replace("{username}", username)
            .replace("{milestone}", str(milestone))
        )
        messages: list[ChatCompletionMessageParam] = [
            {"role": "system", "content": self._config.system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        try:
            completion = await self._get_client().chat.completions.create(
                model=self._config.model,
                messages=messages,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
            )
        except Exception as e:
            self._logger.warning("AI milestone message failed for %s: %s", username, e)
            return None

        if not completion.choices:
            return None
        raw = completion.choices[0].message.content or ""
        # Reasoning models may leak their scratchpad
        content = re.sub(r"<think>[\s\S]*?</think>", "", raw).strip()
        if not content:
            return None
        return content[: self._config.max_response_length]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
