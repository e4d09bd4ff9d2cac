"""Cancelable timers shared by the call components.

Every delayed action in a call (silence deadline, capture restart, turn-close
grace, liveness check) is a named task scheduled on one event loop. A task
re-checks its precondition when it fires, so a timer armed under conditions
that no longer hold does nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None:
        """Prevent the callback from running."""


class Scheduler(Protocol):
    """Clock plus delayed-callback primitive of the event loop."""

    def now(self) -> float:
        """Monotonic time in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` on the loop after ``delay`` seconds."""


class AsyncioScheduler:
    """Scheduler backed by the running asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(max(0.0, delay), callback)


class ScheduledTask:
    """One-shot named timer with a fire-time precondition.

    ``schedule`` while already pending keeps the pending timer, so bursts of
    requests collapse into a single deferred run.
    """

    def __init__(
        self,
        name: str,
        scheduler: Scheduler,
        action: Callable[[], None],
        *,
        precondition: Callable[[], bool] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self._scheduler = scheduler
        self._action = action
        self._precondition = precondition
        self._logger = logger or logging.getLogger("voice_call.scheduler")
        self._handle: TimerHandle | None = None
        self._due_at: float | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def due_at(self) -> float | None:
        return self._due_at

    def schedule(self, delay: float) -> bool:
        """Arm the timer; returns ``False`` when coalesced into a pending run."""
        if self._handle is not None:
            self._logger.debug("task_coalesced", extra={"task": self.name, "due_at": self._due_at})
            return False
        self._due_at = self._scheduler.now() + delay
        self._handle = self._scheduler.call_later(delay, self._fire)
        return True

    def reschedule(self, delay: float) -> None:
        """Cancel any pending run and arm again from now."""
        self.cancel()
        self.schedule(delay)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._due_at = None

    def _fire(self) -> None:
        self._handle = None
        self._due_at = None
        if self._precondition is not None and not self._precondition():
            self._logger.debug("task_skipped", extra={"task": self.name})
            return
        self._action()


class RepeatingTask:
    """Fixed-interval timer that keeps re-arming until stopped."""

    def __init__(
        self,
        name: str,
        scheduler: Scheduler,
        interval: float,
        action: Callable[[], None],
    ) -> None:
        self.name = name
        self._interval = interval
        self._action = action
        self._task = ScheduledTask(name, scheduler, self._tick)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task.schedule(self._interval)

    def stop(self) -> None:
        self._running = False
        self._task.cancel()

    def _tick(self) -> None:
        if not self._running:
            return
        self._task.schedule(self._interval)
        self._action()
