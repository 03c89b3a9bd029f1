from typing import TYPE_CHECKING, Iterable

from ..config import config
from ..core import Service
from ..decorators import with_logger
from ..notifier import Notifier
from .enums import MatchStatus
from .match import Match
from .registry import MatchRegistry

if TYPE_CHECKING:
    from ..rating_service import RatingService


@with_logger
class CancellationService(Service):
    """
    Applies the single cancellation policy used by every phase of a match.

    Players that caused the cancellation are listed in `at_fault`. If the
    match had not started yet, everyone else receives `CANCEL_COMPENSATION`
    rating. Putting those players back in the queue is handled by the queue
    itself when it sees the finished match, see `REQUEUE_ON_CANCEL`.
    """

    def __init__(
        self,
        match_registry: MatchRegistry,
        rating_service: "RatingService",
        notifier: Notifier
    ):
        self._registry = match_registry
        self._rating_service = rating_service
        self._notifier = notifier

    async def cancel(
        self,
        match: Match,
        reason: str,
        at_fault: Iterable[int] = ()
    ) -> None:
        """
        Cancel a non terminal match. The caller must hold `match.lock`.
        """
        at_fault = [user_id for user_id in at_fault if user_id in match.user_ids]
        was_pregame = match.status is MatchStatus.PREGAME

        match.clear_timer()
        match.transition(
            MatchStatus.CANCELLED, reason=reason, at_fault=at_fault
        )
        match.cancel_reason = reason
        match.at_fault = at_fault
        self._logger.info(
            "Cancelled %s: %s (at fault: %s)", match, reason, at_fault
        )

        compensation = config.CANCEL_COMPENSATION
        if was_pregame and compensation:
            innocent = [u for u in match.user_ids if u not in at_fault]
            applied = await self._rating_service.compensate(
                innocent, compensation
            )
            for user_id, delta in applied.items():
                match.participant(user_id).rating_change = delta

        await self._registry.finish(match)

        for participant in match.participants:
            text = f"Match {match.id} was cancelled: {reason}."
            if participant.rating_change:
                text += f" You received {participant.rating_change} rep."
            await self._notifier.notify(participant.user_id, {
                "command": "match_cancelled",
                "match_id": match.id,
                "reason": reason,
                "rating_change": participant.rating_change,
                "text": text,
            })
