"""
Backoff and rate limiting for the restock monitor.

This module provides:
- CooldownPolicy: the global detection cooldown, doubling once consecutive
  failures pass a retry threshold and capped at 30 minutes
- AlertThrottle: a per-URL notification rate limit, independent of the
  detection cooldown
- jittered_interval_ms: the randomized pre-fetch delay
"""

import random
import time
from typing import Callable, Optional

from .config import MAX_COOLDOWN_MS, MIN_POLL_INTERVAL_MS
from .models import CooldownState


class CooldownPolicy:
    """
    Owns the process-lifetime CooldownState.

    ``consecutive_failures`` increases on every detection event and resets on
    any clean fetch. ``current_cooldown_ms`` starts at ``base_ms`` and doubles
    on each failure past ``max_retries``, never exceeding ``cap_ms``.
    """

    def __init__(
        self,
        base_ms: int,
        max_retries: int,
        cap_ms: int = MAX_COOLDOWN_MS,
    ) -> None:
        """
        Initialize the cooldown policy.

        Args:
            base_ms: Cooldown after a detection event below the threshold
            max_retries: Failures tolerated before the cooldown starts doubling
            cap_ms: Upper bound for the cooldown
        """
        self._base_ms = base_ms
        self._max_retries = max_retries
        self._cap_ms = min(cap_ms, MAX_COOLDOWN_MS)
        self._state = CooldownState(consecutive_failures=0, current_cooldown_ms=base_ms)

    @property
    def state(self) -> CooldownState:
        return self._state

    @property
    def base_ms(self) -> int:
        return self._base_ms

    @property
    def delay_seconds(self) -> float:
        return self._state.current_cooldown_ms / 1000

    def record_failure(self) -> int:
        """
        Register a detection event.

        Returns:
            The cooldown to apply, in milliseconds
        """
        self._state.consecutive_failures += 1
        if self._state.consecutive_failures > self._max_retries:
            self._state.current_cooldown_ms = min(
                self._state.current_cooldown_ms * 2,
                self._cap_ms,
            )
        return self._state.current_cooldown_ms

    def record_success(self) -> None:
        """Reset failures and cooldown after a clean fetch."""
        self._state.consecutive_failures = 0
        self._state.current_cooldown_ms = self._base_ms


class AlertThrottle:
    """Per-URL minimum spacing between restock notifications."""

    def __init__(
        self,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            window_ms: Minimum time between two alerts for the same URL
            clock: Seconds-based clock, injectable for tests
        """
        self._window_ms = window_ms
        self._clock = clock
        self._last_sent: dict[str, float] = {}

    def allow(self, url: str) -> bool:
        """
        Check whether an alert for ``url`` may be sent now.

        An allowed call records the send time for the URL.
        """
        now = self._clock()
        last = self._last_sent.get(url)
        if last is not None and (now - last) * 1000 <= self._window_ms:
            return False
        self._last_sent[url] = now
        return True

    def last_sent(self, url: str) -> Optional[float]:
        return self._last_sent.get(url)


def jittered_interval_ms(
    base_ms: int,
    jitter_ms: int,
    floor_ms: int = MIN_POLL_INTERVAL_MS,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Delay of ``base ± jitter``, never below ``floor_ms``.

    A ``floor_ms`` under MIN_POLL_INTERVAL_MS is raised to it.
    """
    floor_ms = max(floor_ms, MIN_POLL_INTERVAL_MS)
    uniform = (rng or random).uniform(-1.0, 1.0)
    return max(floor_ms, int(base_ms + uniform * jitter_ms))
