"""Inactivity watchdog for turns in progress.

Fires a callback when no activity signal arrives within a bound. Every
activity signal cancels and rearms the timer; a timer cancelled after it was
scheduled never delivers its callback.

CRITICAL: Uses time.monotonic (not datetime.now) for reliable timing.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class InactivityWatchdog:
    """Re-armable one-shot timer.

    States:
    - idle: not armed (initial state, after cancel() or after firing)
    - armed: a timer is pending
    - suspended: activity tracking paused (e.g. waiting for the user)

    A timeout of 0 disables the watchdog entirely.
    """

    def __init__(
        self,
        timeout_seconds: float,
        on_timeout: Callable[[], None],
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        """Initialize the watchdog.

        Args:
            timeout_seconds: Allowed silence before on_timeout fires; 0 disables.
            on_timeout: Callback invoked from the timer thread.
            timer_factory: Timer constructor, replaceable in tests.
        """
        self.timeout_seconds = timeout_seconds
        self._on_timeout = on_timeout
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._suspended = False
        self._last_activity = time.monotonic()

    @property
    def armed(self) -> bool:
        return self._timer is not None

    @property
    def suspended(self) -> bool:
        return self._suspended

    @property
    def seconds_since_activity(self) -> float:
        return time.monotonic() - self._last_activity

    def arm(self) -> None:
        """Cancel any pending timer and start a fresh one."""
        with self._lock:
            self._last_activity = time.monotonic()
            self._cancel_locked()
            if self.timeout_seconds <= 0 or self._suspended:
                return
            generation = self._generation
            timer = self._timer_factory(self.timeout_seconds, self._fire, args=(generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def touch(self) -> None:
        """Record an activity signal."""
        self.arm()

    def suspend(self) -> None:
        """Stop tracking inactivity until resume()."""
        with self._lock:
            self._suspended = True
            self._cancel_locked()

    def resume(self) -> None:
        with self._lock:
            self._suspended = False
        self.arm()

    def cancel(self) -> None:
        with self._lock:
            self._suspended = False
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        logger.debug(f"Inactivity timeout after {self.timeout_seconds}s")
        self._on_timeout()
