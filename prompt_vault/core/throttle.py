"""Cooldown throttle for destructive or rapidly repeatable actions."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from functools import lru_cache

import structlog

from prompt_vault.config import get_settings
from prompt_vault.core.errors import ThrottledError

logger = structlog.get_logger()

DEFAULT_WINDOW_SECONDS = 1.5


class Cooldown:
    """Allows one invocation per key per window; the rest are dropped, not queued.

    Time-based and process-local: it guards against double submission, not
    against two devices racing each other.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._last: dict[str, float] = {}
        self._lock = threading.Lock()

    def acquire(self, key: str) -> None:
        """Record an invocation for ``key`` or raise ``ThrottledError``."""
        with self._lock:
            now = self._clock()
            last = self._last.get(key)
            if last is not None and now - last < self.window_seconds:
                retry_after = self.window_seconds - (now - last)
                logger.info("throttle.rejected", key=key, retry_after=round(retry_after, 3))
                raise ThrottledError(key, retry_after)
            self._last[key] = now

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._last.clear()
            else:
                self._last.pop(key, None)


@lru_cache
def get_cooldown() -> Cooldown:
    """Get the process-wide cooldown tracker."""
    return Cooldown(get_settings().action_cooldown)
