import asyncio
import logging
from typing import Optional

from ..notifier import TIMEOUT, Answer

logger = logging.getLogger(__name__)


class PendingRequest(object):
    """
    One outstanding question to one player.

    The request resolves exactly once, either with the player's answer or
    with `TIMEOUT`. Whatever arrives second is ignored. Cancelling the request
    also stops the notifier call that is waiting for the answer.
    """

    def __init__(self, user_id: int):
        self.user_id = user_id
        self._future = asyncio.get_running_loop().create_future()
        self._task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self._future.done()

    def attach(self, task: asyncio.Task) -> None:
        self._task = task
        task.add_done_callback(self._on_answer)

    def resolve(self, value: Answer) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def expire(self) -> bool:
        return self.resolve(TIMEOUT)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if not self._future.done():
            self._future.cancel()

    async def wait(self) -> Answer:
        return await self._future

    def _on_answer(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # The phase timer still ends the request
            logger.warning(
                "Notifier failed to ask player %d", self.user_id, exc_info=exc
            )
            return
        self.resolve(task.result())

    def __repr__(self) -> str:
        state = "done" if self.done else "pending"
        return f"<PendingRequest {self.user_id} {state}>"
