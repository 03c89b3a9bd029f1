import asyncio
from unittest import mock

import pytest

from ranked.notifier import TIMEOUT, MessageQueueNotifier


@pytest.fixture
def mq():
    return mock.Mock(publish=mock.AsyncMock(), consume=mock.AsyncMock())


@pytest.fixture
def notifier(mq):
    return MessageQueueNotifier(mq)


def test_timeout_singleton():
    assert not TIMEOUT
    assert type(TIMEOUT)() is TIMEOUT
    assert repr(TIMEOUT) == "TIMEOUT"


async def test_initialize_consumes_responses(notifier, mq):
    await notifier.initialize()

    mq.consume.assert_awaited_once_with(
        "ranked.responses", "ranked.response.*", notifier.on_response
    )


async def test_notify(notifier, mq):
    await notifier.notify(7, {"command": "match_found", "text": "hi"})

    mq.publish.assert_awaited_once_with(
        "ranked",
        "ranked.notify.7",
        {"recipient_id": 7, "command": "match_found", "text": "hi"}
    )


async def test_present_choice(notifier, mq):
    task = asyncio.create_task(
        notifier.present_choice(3, "Ban a stage", ["A", "B"], 10)
    )
    await asyncio.sleep(0)

    routing, payload = mq.publish.await_args.args[1:]
    assert routing == "ranked.prompt.3"
    assert payload["command"] == "prompt_choice"
    assert payload["options"] == ["A", "B"]
    assert payload["timeout"] == 10

    await notifier.on_response({"request_id": payload["request_id"], "value": "B"})

    assert await task == "B"


async def test_present_freeform(notifier, mq):
    task = asyncio.create_task(
        notifier.present_freeform(3, "Room code?", str, 10)
    )
    await asyncio.sleep(0)
    request_id = mq.publish.await_args.args[2]["request_id"]

    assert notifier.deliver(request_id, "ABCD1")
    assert not notifier.deliver(request_id, "ZZZZ9")

    assert await task == "ABCD1"
    assert not notifier.deliver(request_id, "ZZZZ9")


async def test_prompt_times_out(notifier):
    answer = await notifier.present_choice(3, "Pick", ["A"], 0.01)

    assert answer is TIMEOUT


async def test_unknown_response_is_dropped(notifier):
    await notifier.on_response({"request_id": "nope", "value": "A"})
    await notifier.on_response({})


async def test_shutdown_cancels_prompts(notifier):
    task = asyncio.create_task(notifier.present_choice(3, "Pick", ["A"], 10))
    await asyncio.sleep(0)

    await notifier.shutdown()

    with pytest.raises(asyncio.CancelledError):
        await task
