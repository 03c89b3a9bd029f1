"""
Interfaces with RabbitMQ
"""

import json
from typing import Any, Callable, Coroutine

import aio_pika
from aio_pika import DeliveryMode, ExchangeType
from aio_pika.exceptions import ProbableAuthenticationError

from .asyncio_extensions import synchronizedmethod
from .config import TRACE, config
from .core import Service
from .decorators import with_logger

MessageHandler = Callable[[dict], Coroutine[Any, Any, Any]]


class ConnectionAttemptFailed(ConnectionError):
    pass


@with_logger
class MessageQueueService(Service):
    """
    Service handling connection to the message queue. Publishes match and
    rating events and lets the notifier consume player responses.

    Does nothing unless `USE_MESSAGE_QUEUE` is set.
    """

    def __init__(self) -> None:
        self._connection = None
        self._channel = None
        self._exchanges = {}
        self._consumers: dict[str, tuple[str, MessageHandler]] = {}
        self._is_ready = False

        for key in ("MQ_USER", "MQ_PASSWORD", "MQ_VHOST", "MQ_SERVER", "MQ_PORT"):
            config.register_callback(key, self.reconnect)

    @property
    def is_ready(self) -> bool:
        return self._is_ready

    @synchronizedmethod("initialization_lock")
    async def initialize(self) -> None:
        if self._is_ready or not config.USE_MESSAGE_QUEUE:
            return

        try:
            await self._connect()
        except ConnectionAttemptFailed:
            return

        await self._declare_exchange(config.MQ_EXCHANGE_NAME)
        for queue_name, (routing, handler) in self._consumers.items():
            await self._bind_consumer(queue_name, routing, handler)
        self._is_ready = True

    async def _connect(self) -> None:
        try:
            self._connection = await aio_pika.connect_robust(
                "amqp://{user}:{password}@{server}:{port}/{vhost}".format(
                    user=config.MQ_USER,
                    password=config.MQ_PASSWORD,
                    vhost=config.MQ_VHOST,
                    server=config.MQ_SERVER,
                    port=config.MQ_PORT,
                ),
            )
        except ConnectionError as e:
            self._logger.warning(
                "Unable to connect to RabbitMQ. Is it running?", exc_info=True
            )
            raise ConnectionAttemptFailed from e
        except ProbableAuthenticationError as e:
            self._logger.warning(
                "Unable to connect to RabbitMQ. Incorrect credentials?",
                exc_info=True
            )
            raise ConnectionAttemptFailed from e
        except Exception as e:
            self._logger.warning(
                "Unable to connect to RabbitMQ due to unhandled exception %s. "
                "Incorrect vhost?",
                e,
                exc_info=True,
            )
            raise ConnectionAttemptFailed from e

        self._channel = await self._connection.channel(publisher_confirms=False)
        self._logger.debug("Connected to RabbitMQ %r", self._connection)

    async def _declare_exchange(self, exchange_name: str) -> None:
        self._exchanges[exchange_name] = await self._channel.declare_exchange(
            exchange_name, ExchangeType.TOPIC, durable=True
        )

    @synchronizedmethod("initialization_lock")
    async def shutdown(self) -> None:
        self._is_ready = False
        await self._shutdown()

    async def _shutdown(self) -> None:
        if self._channel is not None:
            await self._channel.close()
            self._channel = None

        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def publish(
        self,
        exchange_name: str,
        routing: str,
        payload: dict,
        mandatory: bool = False,
        delivery_mode: DeliveryMode = DeliveryMode.PERSISTENT,
    ) -> None:
        if not self._is_ready:
            self._logger.log(
                TRACE, "Not connected to RabbitMQ, dropping %s", routing
            )
            return

        exchange = self._exchanges.get(exchange_name)
        if exchange is None:
            raise KeyError(f"Unknown exchange {exchange_name}.")

        message = aio_pika.Message(
            json.dumps(payload).encode(), delivery_mode=delivery_mode
        )

        async with self._channel.transaction():
            await exchange.publish(
                message,
                routing_key=routing,
                mandatory=mandatory
            )
            self._logger.log(
                TRACE, "Published message %s to %s/%s",
                payload, exchange_name, routing
            )

    @synchronizedmethod("initialization_lock")
    async def consume(
        self,
        queue_name: str,
        routing: str,
        handler: MessageHandler
    ) -> None:
        """
        Call `handler` with the decoded body of every message published to
        the main exchange with a routing key matching `routing`.
        """
        self._consumers[queue_name] = (routing, handler)
        if self._is_ready:
            await self._bind_consumer(queue_name, routing, handler)

    async def _bind_consumer(
        self,
        queue_name: str,
        routing: str,
        handler: MessageHandler
    ) -> None:
        queue = await self._channel.declare_queue(queue_name, durable=True)
        await queue.bind(self._exchanges[config.MQ_EXCHANGE_NAME], routing)

        async def on_message(message: aio_pika.IncomingMessage) -> None:
            async with message.process():
                try:
                    payload = json.loads(message.body)
                except json.JSONDecodeError:
                    self._logger.warning(
                        "Discarding malformed message on %s", queue_name
                    )
                    return
                self._logger.log(TRACE, "Received %s on %s", payload, queue_name)
                await handler(payload)

        await queue.consume(on_message)

    @synchronizedmethod("initialization_lock")
    async def reconnect(self) -> None:
        if not config.USE_MESSAGE_QUEUE:
            return

        self._is_ready = False
        await self._shutdown()

        try:
            await self._connect()
        except ConnectionAttemptFailed:
            return

        for exchange_name in list(self._exchanges.keys()):
            await self._declare_exchange(exchange_name)
        for queue_name, (routing, handler) in self._consumers.items():
            await self._bind_consumer(queue_name, routing, handler)
        self._is_ready = True

