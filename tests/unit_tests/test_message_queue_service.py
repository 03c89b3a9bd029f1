import asyncio
import json
from unittest import mock

import pytest

from ranked.config import config
from ranked.message_queue_service import MessageQueueService


@pytest.fixture
def enabled(mocker):
    mocker.patch.object(config, "USE_MESSAGE_QUEUE", True)


@pytest.fixture
def exchange():
    return mock.Mock(publish=mock.AsyncMock())


@pytest.fixture
def queue():
    return mock.Mock(bind=mock.AsyncMock(), consume=mock.AsyncMock())


@pytest.fixture
def connect(mocker, exchange, queue):
    channel = mock.MagicMock()
    channel.declare_exchange = mock.AsyncMock(return_value=exchange)
    channel.declare_queue = mock.AsyncMock(return_value=queue)
    channel.close = mock.AsyncMock()
    connection = mock.Mock(
        channel=mock.AsyncMock(return_value=channel),
        close=mock.AsyncMock()
    )
    return mocker.patch(
        "ranked.message_queue_service.aio_pika.connect_robust",
        mock.AsyncMock(return_value=connection)
    )


async def test_disabled_service_does_nothing(connect):
    service = MessageQueueService()

    await service.initialize()
    await service.publish("ranked", "ranked.match.created", {"match_id": 1})
    await service.shutdown()

    assert not service.is_ready
    connect.assert_not_called()


async def test_incorrect_port(enabled, mocker, caplog):
    mocker.patch(
        "ranked.message_queue_service.aio_pika.connect_robust",
        mock.AsyncMock(side_effect=ConnectionError("refused"))
    )
    service = MessageQueueService()

    await service.initialize()

    expected_warning = "Unable to connect to RabbitMQ. Is it running?"
    assert expected_warning in [rec.message for rec in caplog.records]
    assert not service.is_ready


async def test_several_initializations_connect_only_once(enabled, connect):
    service = MessageQueueService()

    await asyncio.gather(*(service.initialize() for _ in range(5)))

    connect.assert_awaited_once()
    assert service.is_ready


async def test_publish(enabled, connect, exchange):
    service = MessageQueueService()
    await service.initialize()

    await service.publish(
        config.MQ_EXCHANGE_NAME, "ranked.rating.changed", {"user_id": 1}
    )

    exchange.publish.assert_awaited_once()
    message = exchange.publish.await_args.args[0]
    assert json.loads(message.body) == {"user_id": 1}
    assert exchange.publish.await_args.kwargs["routing_key"] == "ranked.rating.changed"


async def test_publish_to_unknown_exchange(enabled, connect):
    service = MessageQueueService()
    await service.initialize()

    with pytest.raises(KeyError):
        await service.publish("nope", "ranked.test", {})


async def test_consumers_are_bound(enabled, connect, queue):
    handler = mock.AsyncMock()
    service = MessageQueueService()
    await service.consume("ranked.responses", "ranked.response.*", handler)
    queue.bind.assert_not_called()

    await service.initialize()

    queue.bind.assert_awaited_once()
    assert queue.bind.await_args.args[1] == "ranked.response.*"
    on_message = queue.consume.await_args.args[0]

    message = mock.MagicMock(body=b'{"request_id": "abc", "value": "5-3"}')
    await on_message(message)
    handler.assert_awaited_once_with({"request_id": "abc", "value": "5-3"})

    handler.reset_mock()
    await on_message(mock.MagicMock(body=b"not json"))
    handler.assert_not_called()


async def test_reconnect(enabled, connect, queue):
    service = MessageQueueService()
    await service.consume("ranked.responses", "ranked.response.*", mock.AsyncMock())
    await service.initialize()

    await service.reconnect()

    assert connect.await_count == 2
    assert queue.bind.await_count == 2
    assert service.is_ready
