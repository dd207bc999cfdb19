"""Shared helpers: config directory resolution and bounded awaits."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wafilebot_dir() -> Path:
    """Return the config directory ($WAFILEBOT_DIR or ~/.wafilebot)."""
    env_dir = os.environ.get("WAFILEBOT_DIR", "").strip()
    if env_dir:
        return Path(os.path.expanduser(env_dir))
    return Path.home() / ".wafilebot"


async def with_timeout(
    aw: Awaitable[T], timeout: float, fallback: T, *, label: str = "operation"
) -> T:
    """Race ``aw`` against a timer and return ``fallback`` if the timer wins.

    Also returns ``fallback`` when the awaitable raises. Used around transport
    calls that have no cancellation of their own.
    """
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %.1fs", label, timeout)
    except Exception as e:
        logger.warning("%s failed: %s", label, e)
    return fallback
