"""
Call throttling on the asyncio event loop.

A Throttle runs its function at most once per interval.  A call made while
the window is still open is deferred to the window boundary; further calls in
the same window fold into that single pending run.
"""

import asyncio
import time
from typing import Callable, Optional

from .logger import get_module_logger

logger = get_module_logger("throttle")


class Throttle:
    """Coalescing throttle for a zero-argument callable."""

    def __init__(
        self,
        func: Callable[[], object],
        interval: float,
        clock: Callable[[], float] = time.monotonic
    ):
        self.func = func
        self.interval = interval
        self.clock = clock
        self._last_run: Optional[float] = None
        self._pending: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def __call__(self) -> None:
        now = self.clock()
        if self._last_run is None or now - self._last_run >= self.interval:
            self._cancel_pending()
            self._run()
            return

        if self._pending is not None:
            return

        # Deferring needs a running loop; called outside one this raises RuntimeError.
        delay = self.interval - (now - self._last_run)
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(delay, self._fire)
        logger.debug(f"Deferred call by {delay:.3f}s")

    def _fire(self) -> None:
        self._pending = None
        self._run()

    def _run(self) -> None:
        self._last_run = self.clock()
        self.func()

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def cancel(self) -> None:
        """Drop any deferred call and forget the last run."""
        self._cancel_pending()
        self._last_run = None
