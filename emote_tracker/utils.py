"""Shared utility helpers for emote-tracker."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


def now_ms() -> int:
    """Return the current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def format_count(value: int) -> str:
    """Format an integer with thousands grouping (``12,345``)."""
    return f"{value:,}"


def days_since(epoch_ms: int, now: int | None = None) -> int:
    """Whole days elapsed since an epoch-ms timestamp."""
    if now is None:
        now = now_ms()
    return max(0, (now - epoch_ms) // 86_400_000)


def write_json_atomic(path: str | Path, data: Any) -> None:
    """Write *data* as pretty JSON to a sibling temp file, then rename over *path*.

    A crash mid-write leaves the previous file intact. On failure the temp
    file is removed (best effort) and the original error is re-raised.
    """
    target = Path(path)
    tmp = target.with_name(target.name + ".tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, target)
    except Exception:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise


def read_json(path: str | Path) -> Any:
    """Read and parse a UTF-8 JSON file. Raises FileNotFoundError if absent."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


async def with_retry(
    call: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay: float = 1.0,
    max_delay: float = 8.0,
    logger: logging.Logger | None = None,
) -> T:
    """Await *call* up to *attempts* times with exponential backoff.

    The last failure is re-raised. Cancellation is never retried.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return await call()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if attempt == attempts - 1:
                raise
            wait = min(delay * (2 ** attempt), max_delay)
            if logger:
                logger.debug(
                    "Attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt + 1, attempts, e, wait,
                )
            await asyncio.sleep(wait)
    raise RuntimeError("unreachable")
