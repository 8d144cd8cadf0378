"""Rate-limit guard shared by every outbound SimpliSafe call."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import time

from .const import RATE_LIMIT_INITIAL_INTERVAL, RATE_LIMIT_MAX_INTERVAL

MonotonicCallable = Callable[[], float]

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RateLimitGuard:
    """Track a blocked window whose length doubles on every engagement."""

    monotonic: MonotonicCallable = time.monotonic
    initial_interval: float = RATE_LIMIT_INITIAL_INTERVAL
    max_interval: float = RATE_LIMIT_MAX_INTERVAL
    is_blocked: bool = False
    next_attempt: float = 0.0
    next_block_interval: float = field(default=0.0)

    def __post_init__(self) -> None:
        """Start from the initial interval."""

        self.next_block_interval = self.initial_interval

    def should_block(self, now: float | None = None) -> bool:
        """Return True while calls must fail fast without touching the network."""

        if not self.is_blocked:
            return False
        current = self.monotonic() if now is None else now
        return current < self.next_attempt

    def engage(self, now: float | None = None) -> float:
        """Block until ``now + next_block_interval`` and grow the next interval.

        Returns the number of seconds the guard is now blocking for.
        """

        current = self.monotonic() if now is None else now
        interval = self.next_block_interval
        self.is_blocked = True
        self.next_attempt = current + interval
        if self.next_block_interval < self.max_interval:
            self.next_block_interval = min(
                self.next_block_interval * 2, self.max_interval
            )
        _LOGGER.debug(
            "Rate limit engaged for %.0fs (next interval %.0fs)",
            interval,
            self.next_block_interval,
        )
        return interval

    def mark_blocked(self) -> None:
        """Flag the guard as blocked without moving the retry window."""

        self.is_blocked = True
        _LOGGER.debug("Rate limit flagged; next attempt unchanged")

    def reset(self) -> None:
        """Clear the blocked flag and restore the initial interval."""

        self.is_blocked = False
        self.next_block_interval = self.initial_interval

    def retry_in(self, now: float | None = None) -> float:
        """Return seconds remaining in the blocked window (0 when open)."""

        if not self.is_blocked:
            return 0.0
        current = self.monotonic() if now is None else now
        return max(self.next_attempt - current, 0.0)


__all__ = ["MonotonicCallable", "RateLimitGuard"]
