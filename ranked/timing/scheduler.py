"""
Cancellable one shot timers.

Every phase of a match that waits on a player arms exactly one
`TimerHandle`. A handle moves from pending to either fired or cancelled and
never back, so whichever of {response, timeout} claims it first wins and the
other becomes a no-op.
"""

import asyncio
from enum import Enum, unique
from typing import Any, Callable, Optional

from ..core import Service
from ..decorators import with_logger


@unique
class HandleState(Enum):
    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"


class TimerHandle(object):
    def __init__(
        self,
        scheduler: "Scheduler",
        delay: float,
        callback: Callable[..., Any],
        args: tuple,
        name: Optional[str] = None
    ):
        self.name = name or getattr(callback, "__qualname__", repr(callback))
        self.state = HandleState.PENDING
        self._scheduler = scheduler
        self._callback = callback
        self._args = args
        loop = asyncio.get_running_loop()
        self.when = loop.time() + delay
        self._loop_handle = loop.call_at(self.when, self._fire)

    @property
    def pending(self) -> bool:
        return self.state is HandleState.PENDING

    @property
    def fired(self) -> bool:
        return self.state is HandleState.FIRED

    @property
    def cancelled(self) -> bool:
        return self.state is HandleState.CANCELLED

    def remaining(self) -> float:
        return max(0.0, self.when - asyncio.get_running_loop().time())

    def cancel(self) -> bool:
        """
        Prevent the callback from running.

        Returns `True` if this call cancelled the handle and `False` if the
        timer had already fired or been cancelled.
        """
        if not self.pending:
            return False

        self.state = HandleState.CANCELLED
        self._loop_handle.cancel()
        self._scheduler._discard(self)
        return True

    def _fire(self) -> None:
        if not self.pending:
            return

        self.state = HandleState.FIRED
        self._scheduler._discard(self)
        self._scheduler._run(self, self._callback, self._args)

    def __repr__(self) -> str:
        return f"<TimerHandle {self.name} {self.state.value}>"


@with_logger
class Scheduler(Service):
    """
    Owns every outstanding timer so they can be cleared on shutdown.

    Callbacks may be plain functions or coroutine functions. Coroutines are
    run as tasks and any exception they raise is logged.
    """

    def __init__(self) -> None:
        self._handles: set[TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()

    def call_later(
        self,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
        name: Optional[str] = None
    ) -> TimerHandle:
        handle = TimerHandle(self, max(0.0, delay), callback, args, name)
        self._handles.add(handle)
        self._logger.debug("Armed %s for %0.1f s", handle.name, delay)
        return handle

    @property
    def pending_count(self) -> int:
        return len(self._handles)

    def _discard(self, handle: TimerHandle) -> None:
        self._handles.discard(handle)

    def _run(self, handle: TimerHandle, callback, args) -> None:
        self._logger.debug("Timer %s fired", handle.name)
        try:
            result = callback(*args)
        except Exception:
            self._logger.exception("Error in timer callback %s", handle.name)
            return

        if asyncio.iscoroutine(result):
            task = asyncio.create_task(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._logger.error(
                "Error in timer task", exc_info=task.exception()
            )

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()

    async def shutdown(self) -> None:
        self.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._logger.debug("Scheduler stopped")
