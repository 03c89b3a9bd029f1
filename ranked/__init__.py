"""
Ranked head to head matchmaking server.

# Overview
The ranked server pairs waiting players into one versus one matches, walks
both players through a timed negotiation before the match can start, collects
the scores they report afterwards and turns the outcome into rating changes.
Rendering prompts to players is left to a chat layer that talks to the server
through a `Notifier`, by default over RabbitMQ.

## Queue
Players join a single queue. On a fixed interval the queue is split into
batches and each batch is paired greedily by a weighted pairing cost made up of
region distance, rank and rating difference and time spent waiting. Whether a
player may join at all is decided by an atomic compare and set on their stored
activity, so a player is never queued twice or playing two matches at once.

## Negotiation
Before a match starts the two players ban stages until one is left, pick their
captains, agree on a host, and the host shares a room code that the opponent
confirms. Each step has its own timeout. Most of them resolve automatically,
failing to provide a room code cancels the match, and a host whose codes are
flagged as invalid too often forfeits.

## Outcomes and disputes
Both players report the final score. Matching reports complete the match and
rate it. Different reports, or a player asking for it, send the match to a
priority queue of disputes that human reviewers work through.

## Rating
Ratings change by a base amount plus bounded bonuses for the rating
difference, the score margin and the winner's streak. Hypercharged matches
boost the winner's bonuses and soften the loser's. Ranks are derived from a
threshold table and the best rank a player ever reached is remembered.
"""

import asyncio
import logging
import time
from typing import Optional

from .asyncio_extensions import map_suppress, synchronizedmethod
from .config import config
from .configuration_service import ConfigurationService
from .core import Service, create_services
from .disputes import DisputeCoordinator
from .matches import CancellationService, MatchRegistry
from .matchmaker import MatchQueue
from .message_queue_service import MessageQueueService
from .notifier import MessageQueueNotifier, Notifier
from .outcome import OutcomeResolver
from .pregame import PreGameNegotiator
from .rating_service import RatingService
from .store import Store
from .timing import Scheduler

__all__ = (
    "CancellationService",
    "ConfigurationService",
    "DisputeCoordinator",
    "MatchQueue",
    "MatchRegistry",
    "MessageQueueNotifier",
    "MessageQueueService",
    "OutcomeResolver",
    "PreGameNegotiator",
    "RatingService",
    "Scheduler",
    "ServerInstance",
    "config",
)

logger = logging.getLogger("ranked")


class ServerInstance(object):
    """
    A class representing a shared server state. All services of one instance
    share the same store, queue and active matches.
    """

    def __init__(
        self,
        name: str,
        store: Store,
        notifier: Optional[Notifier] = None,
        # For testing
        _override_services: Optional[dict[str, Service]] = None
    ):
        self.name = name
        self._logger = logging.getLogger(self.name)
        self.store = store

        self.started = False

        injectables = {
            "server": self,
            "store": self.store,
        }
        if notifier is not None:
            injectables["notifier"] = notifier

        self.services = _override_services or create_services(injectables)

    @property
    def match_queue(self) -> MatchQueue:
        return self.services["match_queue"]

    @property
    def outcome_resolver(self) -> OutcomeResolver:
        return self.services["outcome_resolver"]

    @property
    def dispute_coordinator(self) -> DisputeCoordinator:
        return self.services["dispute_coordinator"]

    def _own_services(self) -> list[Service]:
        # Injected collaborators such as a custom notifier manage themselves
        return [s for s in self.services.values() if isinstance(s, Service)]

    @synchronizedmethod
    async def start_services(self) -> None:
        if self.started:
            return

        num_services = len(self.services)
        self._logger.debug("Initializing %s services", num_services)

        async def initialize(service):
            start = time.perf_counter()
            await service.initialize()
            service._logger.debug(
                "%s initialized in %0.2f seconds",
                service.__class__.__name__,
                time.perf_counter() - start
            )

        await asyncio.gather(*[
            initialize(service) for service in self._own_services()
        ])

        self._logger.debug("Initialized %s services", num_services)

        self.started = True

    async def shutdown(self):
        """
        Stop all services. Active matches stay in the store and are picked up
        again by the next start.
        """
        self._logger.info("Initiating full shutdown")

        await map_suppress(
            lambda service: service.shutdown(),
            self._own_services(),
            logger=self._logger,
            msg="when shutting down service "
        )

        self.started = False
        self._logger.info("Shutdown complete")
