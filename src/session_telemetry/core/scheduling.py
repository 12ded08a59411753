"""
Periodic timers on the asyncio event loop.

Memory sampling and metrics collection run as fire-and-forget callbacks on
the host's single loop thread. ``Scheduler`` is the capability collectors
depend on; ``AsyncioScheduler`` is the production implementation.
"""

import asyncio
from typing import Callable, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)


class TimerHandle(Protocol):
    """Handle returned by ``Scheduler.call_every``."""

    def cancel(self) -> None:
        ...

    @property
    def cancelled(self) -> bool:
        ...


class Scheduler(Protocol):
    """Capability for repeating timers."""

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class IntervalTimer:
    """Repeating timer built from a ``loop.call_later`` chain."""

    def __init__(self,
                 loop: asyncio.AbstractEventLoop,
                 interval: float,
                 callback: Callable[[], None]):
        self._loop = loop
        self.interval = interval
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        self._schedule()

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return

        try:
            self._callback()
        except Exception as e:
            logger.error("Error in interval timer callback",
                         interval=self.interval,
                         error=str(e))

        if not self._cancelled:
            self._schedule()

    def cancel(self) -> None:
        """Stop the timer; safe to call more than once."""
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    """
    Scheduler bound to an asyncio event loop.

    When no loop is given the running loop is looked up at scheduling time,
    so timers must be started from code running inside the loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_every(self, interval: float, callback: Callable[[], None]) -> IntervalTimer:
        """Invoke ``callback`` every ``interval`` seconds until cancelled."""
        if interval <= 0:
            raise ValueError("interval must be positive")

        loop = self._loop or asyncio.get_running_loop()
        return IntervalTimer(loop, interval, callback)
