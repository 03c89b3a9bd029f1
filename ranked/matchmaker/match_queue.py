import asyncio
import random
from collections import OrderedDict
from typing import TYPE_CHECKING, Iterator, Optional

import ranked.metrics as metrics

from ..asyncio_extensions import synchronizedmethod
from ..config import config
from ..core import Service
from ..decorators import with_logger
from ..exceptions import (
    AlreadyInMatch,
    AlreadyQueued,
    NotQueued,
    PersistenceError,
    QueueFull,
    RankedError
)
from ..matches import Match, MatchRegistry, MatchStatus
from ..notifier import Notifier
from ..players import PlayerActivity
from ..rating_service import RatingService
from ..store import Store
from ..timing import at_interval, datetime_now
from .pairing import PairingAlgorithm
from .queue_entry import QueueEntry

if TYPE_CHECKING:
    from ..pregame import PreGameNegotiator


@with_logger
class MatchQueue(Service):
    """
    The ranked queue.

    All mutations of the queue (join, leave and a pairing cycle) are
    serialized by one lock. A pairing cycle pops both entries of a pair out of
    the queue before it awaits anything, so no entry can ever be offered to a
    second pairing.

    Whether a player may enter the queue at all is decided by an atomic
    compare and set of their activity in the store. A player moves
    IDLE -> QUEUED -> IN_MATCH and is released back to IDLE by the match
    registry when their match ends.
    """

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        match_registry: MatchRegistry,
        rating_service: RatingService,
        pre_game_negotiator: "PreGameNegotiator"
    ):
        self._store = store
        self._notifier = notifier
        self._registry = match_registry
        self._rating_service = rating_service
        self._negotiator = pre_game_negotiator
        self._queue: OrderedDict[int, QueueEntry] = OrderedDict()
        self.algorithm = PairingAlgorithm()
        self.random = random.Random()
        self.timer = None

    async def initialize(self) -> None:
        await self._restore()
        self._registry.add_listener(self.on_match_finished)
        self.timer = at_interval(
            lambda: config.QUEUE_CYCLE_INTERVAL, self.run_cycle
        )

    async def shutdown(self) -> None:
        if self.timer is not None:
            self.timer.stop()
            self.timer = None

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._queue

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(list(self._queue.values()))

    def get(self, user_id: int) -> Optional[QueueEntry]:
        return self._queue.get(user_id)

    async def join_player(self, user_id: int) -> QueueEntry:
        """
        Queue a player using their stored region, rank and rating.
        """
        profile = await self._rating_service.load_profile(user_id)
        rank = self._rating_service.ranks.rank_for(profile.rating)
        return await self.join(QueueEntry.from_profile(profile, rank))

    @synchronizedmethod("_queue_lock")
    async def join(self, entry: QueueEntry) -> QueueEntry:
        """
        Add an entry to the queue.

        # Errors
        - `AlreadyQueued` if the player is queued already.
        - `AlreadyInMatch` if the player is playing a match.
        - `QueueFull` if the queue reached `QUEUE_MAX_SIZE`.
        - `PersistenceError` if the entry could not be saved.

        Nothing is changed when an error is raised.
        """
        user_id = entry.user_id
        if user_id in self._queue:
            raise AlreadyQueued(user_id)
        if len(self._queue) >= config.QUEUE_MAX_SIZE:
            raise QueueFull(len(self._queue))

        claimed = await self._store.compare_and_set_activity(
            user_id, PlayerActivity.IDLE, PlayerActivity.QUEUED
        )
        if not claimed:
            activity = await self._store.get_activity(user_id)
            if activity is PlayerActivity.IN_MATCH:
                raise AlreadyInMatch(user_id)
            raise AlreadyQueued(user_id)

        try:
            await self._store.save_queue_entry(entry)
        except Exception as e:
            await self._store.compare_and_set_activity(
                user_id, PlayerActivity.QUEUED, PlayerActivity.IDLE
            )
            raise PersistenceError(
                f"Could not add {user_id} to the queue"
            ) from e

        self._queue[user_id] = entry
        metrics.queue_players.set(len(self._queue))
        self._logger.info("%s joined the queue", entry)
        return entry

    @synchronizedmethod("_queue_lock")
    async def leave(self, user_id: int) -> QueueEntry:
        """
        # Errors
        Raises `NotQueued` if the player is not in the queue.
        """
        entry = self._queue.pop(user_id, None)
        if entry is None:
            raise NotQueued(user_id)

        await self._release(entry, "left")
        self._logger.info("%s left the queue", entry)
        return entry

    @synchronizedmethod("_queue_lock")
    async def run_cycle(self) -> list[Match]:
        """
        Run one pairing cycle over the whole queue in fixed size batches.
        Returns the matches that were created.
        """
        if not self._queue:
            return []

        now = datetime_now()
        entries = sorted(self._queue.values(), key=lambda e: e.joined_at)
        batch_size = max(2, config.QUEUE_BATCH_SIZE)
        created = []

        for start in range(0, len(entries), batch_size):
            batch = entries[start:start + batch_size]
            pairs, unmatched = self.algorithm.find_pairs(batch, now)

            for a, b, cost in pairs:
                # Both entries leave the queue before anything is awaited
                del self._queue[a.user_id]
                del self._queue[b.user_id]
                metrics.queue_players.set(len(self._queue))

                match = await self._create_match(a, b, cost)
                if match is not None:
                    created.append(match)

            for entry in unmatched:
                await self._record_failed_attempt(entry)

        metrics.queue_players.set(len(self._queue))
        if created:
            self._logger.info(
                "Pairing cycle created %d matches, %d players still queued",
                len(created), len(self._queue)
            )
        return created

    async def _create_match(
        self,
        a: QueueEntry,
        b: QueueEntry,
        cost: float
    ) -> Optional[Match]:
        claimed = []
        for entry in (a, b):
            ok = await self._store.compare_and_set_activity(
                entry.user_id, PlayerActivity.QUEUED, PlayerActivity.IN_MATCH
            )
            if ok:
                claimed.append(entry)
            else:
                self._logger.warning(
                    "%s was no longer queued when it was paired", entry
                )
                await self._store.delete_queue_entry(entry.user_id)

        if len(claimed) != 2:
            for entry in claimed:
                await self._store.compare_and_set_activity(
                    entry.user_id, PlayerActivity.IN_MATCH, PlayerActivity.QUEUED
                )
                self._queue[entry.user_id] = entry
            return None

        is_hypercharged = self.random.random() < config.HYPERCHARGE_CHANCE
        match = await self._persist_match(a, b, is_hypercharged)
        if match is None:
            for entry in (a, b):
                await self._store.compare_and_set_activity(
                    entry.user_id, PlayerActivity.IN_MATCH, PlayerActivity.QUEUED
                )
                self._queue[entry.user_id] = entry
            metrics.queue_players.set(len(self._queue))
            return None

        now = datetime_now()
        metrics.pairing_cost.observe(cost)
        for entry in (a, b):
            await self._store.delete_queue_entry(entry.user_id)
            metrics.queue_wait_duration.labels("matched").observe(
                entry.wait_seconds(now)
            )

        for entry, other in ((a, b), (b, a)):
            await self._notifier.notify(entry.user_id, {
                "command": "match_found",
                "match_id": match.id,
                "opponent_id": other.user_id,
                "hypercharged": match.is_hypercharged,
                "text": (
                    f"Match {match.id} found against {other.user_id}."
                    + (" This match is hypercharged!" if is_hypercharged else "")
                ),
            })

        self._negotiator.start(match)
        return match

    async def _persist_match(
        self,
        a: QueueEntry,
        b: QueueEntry,
        is_hypercharged: bool
    ) -> Optional[Match]:
        attempts = max(1, config.PAIR_PERSIST_ATTEMPTS)
        for attempt in range(attempts):
            try:
                return await self._registry.create(
                    (a.user_id, b.user_id),
                    is_hypercharged=is_hypercharged,
                    hypercharge_multiplier=config.HYPERCHARGE_MULTIPLIER,
                )
            except Exception:
                metrics.pair_persist_failures.inc()
                self._logger.warning(
                    "Failed to create match for %s and %s. Attempts: %d",
                    a, b, attempt + 1, exc_info=True
                )
                if attempt < attempts - 1:
                    # Exponential backoff
                    await asyncio.sleep(config.PAIR_PERSIST_BACKOFF * 2 ** attempt)

        self._logger.error(
            "Giving up on pairing %s and %s, returning them to the queue", a, b
        )
        return None

    async def _record_failed_attempt(self, entry: QueueEntry) -> None:
        entry.pairing_attempts += 1
        if entry.pairing_attempts <= config.QUEUE_MAX_PAIRING_ATTEMPTS:
            try:
                await self._store.save_queue_entry(entry)
            except Exception:
                self._logger.warning(
                    "Could not persist pairing attempts of %s", entry,
                    exc_info=True
                )
            return

        self._queue.pop(entry.user_id, None)
        await self._release(entry, "abandoned")
        metrics.pairings_abandoned.inc()
        self._logger.info(
            "%s removed after %d pairing attempts",
            entry, entry.pairing_attempts - 1
        )
        await self._notifier.notify(entry.user_id, {
            "command": "pairing_abandoned",
            "attempts": entry.pairing_attempts - 1,
            "text": "No suitable opponent was found. You have left the queue.",
        })

    async def _release(self, entry: QueueEntry, status: str) -> None:
        await self._store.delete_queue_entry(entry.user_id)
        await self._store.compare_and_set_activity(
            entry.user_id, PlayerActivity.QUEUED, PlayerActivity.IDLE
        )
        metrics.queue_players.set(len(self._queue))
        metrics.queue_wait_duration.labels(status).observe(
            entry.wait_seconds(datetime_now())
        )

    async def _restore(self) -> None:
        """
        Take back the entries persisted by a previous run.
        """
        for entry in await self._store.load_queue_entries():
            activity = await self._store.get_activity(entry.user_id)
            if activity is not PlayerActivity.QUEUED:
                await self._store.delete_queue_entry(entry.user_id)
                continue
            self._queue[entry.user_id] = entry

        metrics.queue_players.set(len(self._queue))
        if self._queue:
            self._logger.info("Restored %d queue entries", len(self._queue))

    async def on_match_finished(self, match: Match) -> None:
        """
        Put players back in the queue when their match was cancelled during
        negotiation through no fault of their own.
        """
        if not config.REQUEUE_ON_CANCEL:
            return
        if match.status is not MatchStatus.CANCELLED or match.started_at:
            return

        for user_id in match.user_ids:
            if user_id in match.at_fault:
                continue
            try:
                await self.join_player(user_id)
            except RankedError as e:
                self._logger.info(
                    "Could not requeue %d after %s: %s", user_id, match, e
                )
                continue
            await self._notifier.notify(user_id, {
                "command": "requeued",
                "match_id": match.id,
                "text": "You have been put back in the queue.",
            })
