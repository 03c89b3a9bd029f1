"""
The boundary between the ranked core and whatever renders prompts to players.

The core never talks to a chat platform directly. It asks a `Notifier` to
present a choice or a free text prompt and awaits the answer, or `TIMEOUT`
if the player did not answer in time.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union
from uuid import uuid4

from .config import TRACE, config
from .core import Service
from .decorators import with_logger
from .message_queue_service import MessageQueueService


class _Timeout(object):
    """Singleton returned in place of an answer when a prompt expires."""
    _instance: Optional["_Timeout"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "TIMEOUT"


TIMEOUT = _Timeout()

Answer = Union[str, _Timeout]
# Raises `ValidationError` for unacceptable input
Validator = Callable[[str], object]


class Notifier(ABC):
    @abstractmethod
    async def present_choice(
        self,
        recipient_id: int,
        prompt: str,
        options: list[str],
        timeout: float
    ) -> Answer:
        """
        Ask a player to pick one of `options`. Returns the selection or
        `TIMEOUT`.
        """

    @abstractmethod
    async def present_freeform(
        self,
        recipient_id: int,
        prompt: str,
        validator: Validator,
        timeout: float
    ) -> Answer:
        """
        Ask a player for free text. `validator` may be used to reject input
        before it is returned, but the caller validates again regardless.
        """

    @abstractmethod
    async def notify(self, recipient_id: int, message: dict) -> None:
        """
        Send an informational message. `message["command"]` names the kind of
        message and `message["text"]` is a human readable version.
        """


@with_logger
class MessageQueueNotifier(Notifier, Service, name="notifier"):
    """
    Publishes prompts to the message queue for the chat layer to render, and
    waits for the chat layer to publish the responses back.

    Prompts are published with routing key `ranked.prompt.<recipient>` and
    carry a `request_id`. Responses are expected on `ranked.response.*` as
    `{"request_id": ..., "value": ...}`.
    """

    def __init__(self, message_queue_service: MessageQueueService):
        self._mq = message_queue_service
        self._pending: dict[str, asyncio.Future] = {}

    async def initialize(self) -> None:
        await self._mq.consume(
            "ranked.responses", "ranked.response.*", self.on_response
        )

    async def shutdown(self) -> None:
        for future in self._pending.values():
            future.cancel()
        self._pending.clear()

    async def present_choice(
        self,
        recipient_id: int,
        prompt: str,
        options: list[str],
        timeout: float
    ) -> Answer:
        return await self._request(recipient_id, timeout, {
            "command": "prompt_choice",
            "text": prompt,
            "options": list(options),
        })

    async def present_freeform(
        self,
        recipient_id: int,
        prompt: str,
        validator: Validator,
        timeout: float
    ) -> Answer:
        return await self._request(recipient_id, timeout, {
            "command": "prompt_freeform",
            "text": prompt,
        })

    async def notify(self, recipient_id: int, message: dict) -> None:
        await self._mq.publish(
            config.MQ_EXCHANGE_NAME,
            f"ranked.notify.{recipient_id}",
            {"recipient_id": recipient_id, **message}
        )

    async def _request(
        self,
        recipient_id: int,
        timeout: float,
        message: dict
    ) -> Answer:
        request_id = uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._mq.publish(
                config.MQ_EXCHANGE_NAME,
                f"ranked.prompt.{recipient_id}",
                {
                    "recipient_id": recipient_id,
                    "request_id": request_id,
                    "timeout": timeout,
                    **message
                }
            )
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            return TIMEOUT
        finally:
            self._pending.pop(request_id, None)

    def deliver(self, request_id: str, value: str) -> bool:
        """
        Complete an outstanding prompt. Returns `False` if the prompt is
        unknown or already answered.
        """
        future = self._pending.get(request_id)
        if future is None or future.done():
            return False

        future.set_result(str(value))
        return True

    async def on_response(self, payload: dict) -> None:
        request_id = payload.get("request_id")
        if not self.deliver(request_id, payload.get("value")):
            self._logger.log(
                TRACE, "Dropping response to unknown request %s", request_id
            )
