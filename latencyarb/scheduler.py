"""
Cancellable delayed actions on the asyncio event loop.

Feeds never touch loop timers directly. They ask a Scheduler for
ScheduledTasks so reconnect/backoff/report timing can be driven by a fake
clock in tests.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from .types import wall_ms

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class ScheduledTask:
    """Handle to a delayed (or repeating) action."""

    def __init__(self, name: str = ""):
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        self._fired = 0

    @property
    def cancelled(self) -> bool:
        """Whether cancel() was called."""
        return self._cancelled

    @property
    def fire_count(self) -> int:
        """Number of times the action has run."""
        return self._fired

    def cancel(self) -> None:
        """Prevent any further firing. No-op if already fired or cancelled."""
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class Scheduler(ABC):
    """Clock plus delayed-action factory."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current time in milliseconds."""
        ...

    @abstractmethod
    def call_later(self, delay_ms: int, fn: Callback, name: str = "") -> ScheduledTask:
        """Run `fn` once after `delay_ms`. Coroutine results run as tasks."""
        ...

    @abstractmethod
    def call_every(self, interval_ms: int, fn: Callback, name: str = "") -> ScheduledTask:
        """Run `fn` every `interval_ms` until cancelled."""
        ...


class AsyncioScheduler(Scheduler):
    """Scheduler backed by loop.call_later. Must be used from inside a running loop."""

    def __init__(self, clock: Callable[[], int] = wall_ms):
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    def now_ms(self) -> int:
        return self._clock()

    def call_later(self, delay_ms: int, fn: Callback, name: str = "") -> ScheduledTask:
        loop = asyncio.get_running_loop()
        task = ScheduledTask(name)

        def fire() -> None:
            task._handle = None
            if task.cancelled:
                return
            task._fired += 1
            self._invoke(fn, task)

        task._handle = loop.call_later(max(delay_ms, 0) / 1000, fire)
        return task

    def call_every(self, interval_ms: int, fn: Callback, name: str = "") -> ScheduledTask:
        loop = asyncio.get_running_loop()
        task = ScheduledTask(name)
        delay = max(interval_ms, 0) / 1000

        def fire() -> None:
            if task.cancelled:
                return
            task._handle = loop.call_later(delay, fire)
            task._fired += 1
            self._invoke(fn, task)

        task._handle = loop.call_later(delay, fire)
        return task

    def _invoke(self, fn: Callback, task: ScheduledTask) -> None:
        try:
            result = fn()
        except Exception as e:
            logger.error(f"Scheduled callback {task.name or fn!r} failed: {e}")
            return

        if asyncio.iscoroutine(result):
            running = asyncio.get_running_loop().create_task(result, name=task.name or None)
            self._tasks.add(running)
            running.add_done_callback(self._on_task_done)

    def _on_task_done(self, running: asyncio.Task) -> None:
        self._tasks.discard(running)
        if running.cancelled():
            return
        exc = running.exception()
        if exc is not None:
            logger.error(f"Scheduled task {running.get_name()} failed: {exc}")
