import asyncio
from typing import Any, Callable, Optional

import ranked.metrics as metrics

from ..config import config
from ..core import Service
from ..decorators import with_logger
from ..exceptions import StateError, UnknownMatch
from ..message_queue_service import MessageQueueService
from ..players import PlayerActivity
from ..store.base import Store
from .enums import HistoryAction, MatchStatus
from .match import Match, Participant

MatchListener = Callable[[Match], Any]


@with_logger
class MatchRegistry(Service):
    """
    Owns every match that has not reached a terminal state.

    Components look matches up here instead of keeping their own references,
    and hand them back through `finish` once they are done with them.
    """

    def __init__(
        self,
        store: Store,
        message_queue_service: MessageQueueService
    ):
        self._store = store
        self._mq = message_queue_service
        self._matches: dict[int, Match] = {}
        self._listeners: list[MatchListener] = []

    def __contains__(self, match_id: int) -> bool:
        return match_id in self._matches

    def __len__(self) -> int:
        return len(self._matches)

    def get(self, match_id: int) -> Match:
        match = self._matches.get(match_id)
        if match is None:
            raise UnknownMatch(match_id)
        return match

    def find(self, match_id: int) -> Optional[Match]:
        return self._matches.get(match_id)

    def active(self, status: Optional[MatchStatus] = None) -> list[Match]:
        return [
            match for match in self._matches.values()
            if status is None or match.status is status
        ]

    def add_listener(self, listener: MatchListener) -> None:
        """
        Register a function to be called with every match that reaches a
        terminal state. Coroutine functions are awaited.
        """
        self._listeners.append(listener)

    async def create(
        self,
        user_ids: tuple[int, int],
        is_hypercharged: bool = False,
        hypercharge_multiplier: float = 0.0
    ) -> Match:
        """
        Create and persist a new match. The match is only registered once it
        was saved successfully, so a failure here leaves nothing behind.
        """
        match_id = await self._store.next_match_id()
        match = Match(
            id=match_id,
            participants=[Participant(user_id) for user_id in user_ids],
            is_hypercharged=is_hypercharged,
            hypercharge_multiplier=(
                hypercharge_multiplier if is_hypercharged else 0.0
            ),
        )
        match.record(
            HistoryAction.CREATED,
            players=list(user_ids),
            hypercharged=is_hypercharged
        )
        await self._store.save_match(match)
        self._matches[match.id] = match

        self._logger.info("Created %s", match)
        metrics.matches_created.labels(str(is_hypercharged).lower()).inc()
        await self._mq.publish(
            config.MQ_EXCHANGE_NAME,
            "ranked.match.created",
            {
                "match_id": match.id,
                "players": list(user_ids),
                "hypercharged": is_hypercharged,
            }
        )
        return match

    async def save(self, match: Match) -> None:
        await self._store.save_match(match)

    async def recover(self, status: MatchStatus) -> list[Match]:
        """
        Load matches left in `status` by a previous run and take ownership of
        them again.
        """
        matches = await self._store.load_matches(status)
        for match in matches:
            self._matches.setdefault(match.id, match)
        if matches:
            self._logger.info(
                "Recovered %d matches in status %s", len(matches), status.name
            )
        return [self._matches[match.id] for match in matches]

    async def finish(self, match: Match) -> None:
        """
        Archive a match that reached a terminal state. Releases both players
        so they may queue again and informs listeners.

        # Errors
        Raises `StateError` if the match has not ended.
        """
        if not match.is_terminal:
            raise StateError(f"{match} is not finished")

        match.clear_timer()
        self._matches.pop(match.id, None)
        await self._store.save_match(match)

        for user_id in match.user_ids:
            released = await self._store.compare_and_set_activity(
                user_id, PlayerActivity.IN_MATCH, PlayerActivity.IDLE
            )
            if not released:
                self._logger.warning(
                    "Player %s was not marked as in a match when %s ended",
                    user_id, match
                )

        if match.status is MatchStatus.CANCELLED:
            end = metrics.MatchEnd.CANCELLED
        elif match.started_at is None:
            end = metrics.MatchEnd.FORFEIT
        else:
            end = metrics.MatchEnd.COMPLETED
        metrics.matches_finished.labels(end).inc()

        self._logger.info(
            "%s finished (winner: %s, reason: %s)",
            match, match.winner_id, match.cancel_reason
        )
        await self._mq.publish(
            config.MQ_EXCHANGE_NAME,
            "ranked.match.finished",
            {
                "match_id": match.id,
                "status": match.status.value,
                "winner_id": match.winner_id,
                "rating_changes": {
                    str(p.user_id): p.rating_change for p in match.participants
                },
            }
        )

        for listener in self._listeners:
            try:
                result = listener(match)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                self._logger.exception(
                    "Match listener %s raised an exception", listener
                )
