"""
This module is the 'top level' configuration for all the unit tests.

'Real world' fixtures are put here.
If a test suite needs specific mocked versions of dependencies,
these should be put in the ``conftest.py'' relative to it.
"""

import logging
from datetime import timedelta

import hypothesis
import pytest

from ranked.config import TRACE, config
from ranked.core import create_services
from ranked.disputes import DisputeCoordinator
from ranked.matches import CancellationService, MatchRegistry, MatchStatus
from ranked.matchmaker import MatchQueue, QueueEntry
from ranked.message_queue_service import MessageQueueService
from ranked.outcome import OutcomeResolver
from ranked.players import PlayerActivity
from ranked.pregame import PreGameNegotiator
from ranked.rating_service import RankTable, RatingService
from ranked.store.memory import InMemoryStore
from ranked.timing import Scheduler, datetime_now
from tests.utils import ScriptedNotifier

logging.getLogger().setLevel(TRACE)
hypothesis.settings.register_profile(
    "nightly",
    max_examples=10_000,
    deadline=None,
    print_blob=True
)


def pytest_configure(config):
    config.addinivalue_line(
        "addopts", "--strict-markers"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def notifier():
    return ScriptedNotifier()


@pytest.fixture
async def scheduler():
    scheduler = Scheduler()

    yield scheduler

    await scheduler.shutdown()


@pytest.fixture
async def message_queue_service():
    service = MessageQueueService()
    await service.initialize()

    yield service

    await service.shutdown()


@pytest.fixture
async def services(store, notifier, scheduler, message_queue_service):
    """
    Every ranked service wired together the same way the server does it, but
    without calling `initialize`.
    """
    services = create_services(
        {
            "store": store,
            "notifier": notifier,
            "scheduler": scheduler,
            "message_queue_service": message_queue_service,
        },
        services={
            "match_registry": MatchRegistry,
            "rating_service": RatingService,
            "cancellation_service": CancellationService,
            "dispute_coordinator": DisputeCoordinator,
            "outcome_resolver": OutcomeResolver,
            "pre_game_negotiator": PreGameNegotiator,
            "match_queue": MatchQueue,
        }
    )

    yield services

    for name in (
        "match_queue",
        "pre_game_negotiator",
        "dispute_coordinator",
    ):
        await services[name].shutdown()


@pytest.fixture
def match_registry(services) -> MatchRegistry:
    return services["match_registry"]


@pytest.fixture
def rating_service(services) -> RatingService:
    return services["rating_service"]


@pytest.fixture
def cancellation_service(services) -> CancellationService:
    return services["cancellation_service"]


@pytest.fixture
def dispute_coordinator(services) -> DisputeCoordinator:
    return services["dispute_coordinator"]


@pytest.fixture
def outcome_resolver(services) -> OutcomeResolver:
    return services["outcome_resolver"]


@pytest.fixture
def negotiator(services) -> PreGameNegotiator:
    return services["pre_game_negotiator"]


@pytest.fixture
def match_queue(services) -> MatchQueue:
    return services["match_queue"]


@pytest.fixture
def rank_table() -> RankTable:
    return RankTable.from_config()


@pytest.fixture
def player_factory(store):
    """
    Save a player profile with the given rating and region.
    """
    async def make(user_id, rating=0, region="US-East", **kwargs):
        profile = store.new_player(user_id)
        rank = RankTable.from_config().rank_for(rating)
        profile.rating = rating
        profile.region = region
        profile.rank, profile.tier = rank.name, rank.tier
        profile.highest_rank, profile.highest_tier = rank.name, rank.tier
        for key, value in kwargs.items():
            setattr(profile, key, value)
        await store.save_player(profile)
        return profile

    return make


@pytest.fixture(scope="session")
def entry_factory():
    """
    Build queue entries without touching the store.
    """
    table = RankTable.from_config()

    def make(
        user_id,
        rating=0,
        region="US-East",
        waited=0,
        now=None,
        **kwargs
    ):
        now = now or datetime_now()
        return QueueEntry(
            user_id=user_id,
            region=region,
            rank=table.rank_for(rating),
            rating=rating,
            joined_at=now - timedelta(seconds=waited),
            **kwargs
        )

    return make


@pytest.fixture
def match_factory(store, match_registry):
    """
    Create a registered match between two players that are marked as
    playing it.
    """
    async def make(
        user_ids=(1, 2),
        status=MatchStatus.PREGAME,
        is_hypercharged=False
    ):
        for user_id in user_ids:
            await store.compare_and_set_activity(
                user_id, PlayerActivity.IDLE, PlayerActivity.IN_MATCH
            )
        match = await match_registry.create(
            tuple(user_ids),
            is_hypercharged=is_hypercharged,
            hypercharge_multiplier=config.HYPERCHARGE_MULTIPLIER
        )
        if status is not MatchStatus.PREGAME:
            match.transition(status)
        return match

    return make


@pytest.fixture
def running_match(match_factory, outcome_resolver):
    """
    Create a match that is waiting for score reports.
    """
    async def make(user_ids=(1, 2), is_hypercharged=False):
        match = await match_factory(
            user_ids, MatchStatus.IN_PROGRESS, is_hypercharged
        )
        async with match.lock:
            await outcome_resolver.request_report(match)
        return match

    return make
