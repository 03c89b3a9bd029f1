import asyncio
from unittest import mock

import pytest

from ranked import (
    DisputeCoordinator,
    MatchQueue,
    MessageQueueNotifier,
    OutcomeResolver,
    PreGameNegotiator,
    ServerInstance
)
from ranked.matches import MatchStatus
from ranked.store.memory import InMemoryStore


@pytest.fixture
async def instance(notifier):
    instance = ServerInstance("TestRankedServer", InMemoryStore(), notifier)

    yield instance

    await instance.shutdown()


async def test_auto_create_services(instance, notifier):
    assert isinstance(instance.match_queue, MatchQueue)
    assert isinstance(instance.outcome_resolver, OutcomeResolver)
    assert isinstance(instance.dispute_coordinator, DisputeCoordinator)
    assert isinstance(instance.services["pre_game_negotiator"], PreGameNegotiator)
    assert instance.services["notifier"] is notifier


async def test_default_notifier():
    instance = ServerInstance("TestRankedServer", InMemoryStore())

    assert isinstance(instance.services["notifier"], MessageQueueNotifier)


async def test_start_services_once(instance):
    with mock.patch.object(
        instance.match_queue, "initialize", mock.AsyncMock()
    ) as initialize:
        await asyncio.gather(
            instance.start_services(),
            instance.start_services()
        )

    initialize.assert_awaited_once()
    assert instance.started


async def test_shutdown_survives_failing_service(instance, caplog):
    await instance.start_services()
    with mock.patch.object(
        instance.match_queue, "shutdown",
        mock.AsyncMock(side_effect=RuntimeError("boom"))
    ):
        await instance.shutdown()

    assert not instance.started
    assert "when shutting down service" in caplog.text


async def test_full_match(instance, notifier):
    await instance.start_services()
    queue = instance.match_queue
    queue.random.seed(1)
    await queue.join_player(1)
    await queue.join_player(2)

    match, = await queue.run_cycle()
    for _ in range(100):
        if match.status is not MatchStatus.PREGAME:
            break
        await asyncio.sleep(0.01)
    assert match.status is MatchStatus.IN_PROGRESS

    await instance.outcome_resolver.submit_score(match.id, 1, "2-1")
    await instance.outcome_resolver.submit_score(match.id, 2, "1-2")

    assert match.status is MatchStatus.COMPLETED
    assert match.winner_id == 1
    assert match.participant(1).rating_change > 0
    assert "match_completed" in notifier.commands(2)
