"""
A modified version of Gael Pasgrimaud's library `aiocron` that runs a function
on a fixed interval instead of a crontab.

See the original code here:
https://github.com/gawel/aiocron/blob/e82a53c3f9a7950209cee7b3e493204c1dfc8b12/aiocron/__init__.py
"""

import asyncio
import functools
import logging

logger = logging.getLogger(__name__)


def wrap_func(func):
    """wrap in a coroutine function"""
    if asyncio.iscoroutinefunction(func):
        return func

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


class Timer(object):
    """Schedules a function to be called asynchronously on a fixed interval"""

    def __init__(self, interval, func, args=(), start=False):
        self.interval = interval
        self.func = func if not args else functools.partial(func, *args)
        self.cron = wrap_func(self.func)
        self.handle = None
        self.loop = asyncio.get_running_loop()
        if start:
            self.handle = self.loop.call_soon(self.start)

    def start(self):
        """Start scheduling"""
        self.stop()
        self.handle = self.loop.call_later(self.get_delay(), self.call_next)

    def stop(self):
        """Stop scheduling"""
        if self.handle is not None:
            self.handle.cancel()
        self.handle = None

    def get_delay(self):
        """Return next interval to wait between calls"""
        return self.interval() if callable(self.interval) else self.interval

    def call_next(self):
        """Set next hop in the loop. Call task"""
        if self.handle is not None:
            self.handle.cancel()
        self.handle = self.loop.call_later(self.get_delay(), self.call_next)
        self.call_func()

    def call_func(self):
        asyncio.create_task(self.cron()).add_done_callback(self.log_result)

    def log_result(self, task: asyncio.Task):
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Error in interval function %s",
                self.func,
                exc_info=task.exception()
            )

    def __str__(self):
        return f"{self.interval} {self.func}"

    def __repr__(self):
        return f"<Timer {str(self)}>"


def at_interval(interval, func, args=(), start=True):
    """
    Call `func` every `interval` seconds. `interval` may also be a zero
    argument callable, which is evaluated before every wait so the period can
    follow a configuration value.
    """
    return Timer(interval, func=func, args=args, start=start)
