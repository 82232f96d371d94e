"""
Countdown for the player currently on the block.

Each ``start`` begins a new activation; each ``start``/``reset``/``resume``
cancels the pending callback and schedules a fresh one under a new token. The
expiry callback only *reports* a token. The owner decides whether to act on it
by calling ``claim_expiry``, which succeeds once per activation and only for
the latest token, so a reset that races an already-fired timer wins.
"""

import asyncio
import logging
import time
from typing import Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)


class ExpiryToken(NamedTuple):
    activation: int
    generation: int


def _asyncio_timer(delay: float, callback: Callable[[], None]):
    return asyncio.get_running_loop().call_later(delay, callback)


class SessionClock:
    """Single authoritative timer for the active item."""

    def __init__(
        self,
        on_expire: Callable[[ExpiryToken], None],
        time_source: Callable[[], float] = time.monotonic,
        timer_factory: Optional[Callable] = None
    ):
        """
        Initialize a stopped clock.

        Args:
            on_expire: Called with the token of the timer that ran out
            time_source: Monotonic seconds (injectable for tests)
            timer_factory: ``(delay, callback) -> handle with cancel()``;
                defaults to the running asyncio loop's ``call_later``
        """
        self._on_expire = on_expire
        self._now = time_source
        self._timer_factory = timer_factory or _asyncio_timer

        self._activation = 0
        self._generation = 0
        self._claimed = True
        self._handle = None
        self._deadline: Optional[float] = None
        self._paused_remaining: Optional[float] = None

    @property
    def token(self) -> ExpiryToken:
        return ExpiryToken(self._activation, self._generation)

    @property
    def is_running(self) -> bool:
        return self._deadline is not None

    @property
    def is_paused(self) -> bool:
        return self._paused_remaining is not None

    def start(self, duration: float) -> ExpiryToken:
        """Begin a new activation with ``duration`` seconds on the clock."""
        self._activation += 1
        self._generation = 0
        self._claimed = False
        self._paused_remaining = None
        self._schedule(duration)
        logger.debug(f"Clock activation {self._activation} started: {duration}s")
        return self.token

    def reset(self, duration: float) -> ExpiryToken:
        """
        Put the full duration back on the clock.

        Any pending expiry is cancelled. A paused clock stays paused with the
        new duration frozen.
        """
        if self._claimed:
            raise RuntimeError("Cannot reset a clock with no live activation")

        if self.is_paused:
            self._generation += 1
            self._paused_remaining = duration
            return self.token

        self._schedule(duration)
        return self.token

    def pause(self) -> float:
        """Freeze the countdown. Returns the remaining time."""
        if not self.is_running:
            return self.remaining()

        remaining = self.remaining()
        self._cancel()
        self._generation += 1
        self._deadline = None
        self._paused_remaining = remaining
        logger.debug(f"Clock paused with {remaining:.2f}s remaining")
        return remaining

    def resume(self) -> ExpiryToken:
        """Restart a paused countdown from where it froze."""
        if not self.is_paused:
            return self.token

        remaining = self._paused_remaining
        self._paused_remaining = None
        self._schedule(remaining)
        logger.debug(f"Clock resumed with {remaining:.2f}s remaining")
        return self.token

    def stop(self) -> None:
        """Cancel everything. The current activation can no longer expire."""
        self._cancel()
        self._generation += 1
        self._deadline = None
        self._paused_remaining = None
        self._claimed = True

    def remaining(self) -> float:
        if self._deadline is not None:
            return max(0.0, self._deadline - self._now())
        if self._paused_remaining is not None:
            return self._paused_remaining
        return 0.0

    def claim_expiry(self, token: ExpiryToken) -> bool:
        """
        Accept an expiry for action.

        Returns:
            True exactly once per activation, for the current token only
        """
        if self._claimed or token != self.token:
            logger.debug(f"Ignoring stale expiry {token} (current {self.token})")
            return False

        self._claimed = True
        self._cancel()
        self._deadline = None
        return True

    def _schedule(self, duration: float) -> None:
        self._cancel()
        self._generation += 1
        self._deadline = self._now() + duration
        token = self.token
        self._handle = self._timer_factory(duration, lambda: self._fire(token))

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, token: ExpiryToken) -> None:
        if token != self.token or self._claimed:
            return
        self._handle = None
        self._on_expire(token)
