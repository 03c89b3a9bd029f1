from typing import TYPE_CHECKING, Union

import ranked.metrics as metrics

from ..config import config
from ..core import Service
from ..decorators import with_logger
from ..exceptions import AlreadyReported, StateError
from ..matches import (
    CancellationService,
    DisputeOrigin,
    HistoryAction,
    Match,
    MatchRegistry,
    MatchStatus,
    ReportedScore
)
from ..notifier import Notifier
from ..rating_service import RatingService
from ..timing import Scheduler, datetime_now

if TYPE_CHECKING:
    from ..disputes import DisputeCoordinator

ScoreInput = Union[str, ReportedScore, tuple[int, int]]


@with_logger
class OutcomeResolver(Service):
    """
    Collects the self reported scores of running matches.

    Both players share one report timer. Two agreeing reports complete the
    match and rate it, two different reports or an explicit request hand the
    match to the dispute coordinator, and running out of time cancels it
    without any rating change.
    """

    def __init__(
        self,
        match_registry: MatchRegistry,
        scheduler: Scheduler,
        rating_service: RatingService,
        dispute_coordinator: "DisputeCoordinator",
        cancellation_service: CancellationService,
        notifier: Notifier
    ):
        self._registry = match_registry
        self._scheduler = scheduler
        self._rating_service = rating_service
        self._disputes = dispute_coordinator
        self._cancellation = cancellation_service
        self._notifier = notifier

    async def initialize(self) -> None:
        now = datetime_now()
        for match in await self._registry.recover(MatchStatus.IN_PROGRESS):
            started_at = match.started_at or match.created_at
            elapsed = (now - started_at).total_seconds()
            self._arm(match, config.REPORT_TIMEOUT - elapsed)

    async def request_report(self, match: Match) -> None:
        """
        Start waiting for both score reports. The caller must hold
        `match.lock`.
        """
        if match.status is not MatchStatus.IN_PROGRESS:
            raise StateError(f"{match} is not in progress")

        self._arm(match, config.REPORT_TIMEOUT)
        for participant in match.participants:
            await self._notifier.notify(participant.user_id, {
                "command": "report_score",
                "match_id": match.id,
                "room_code": match.room_code,
                "stage": match.stage,
                "timeout": config.REPORT_TIMEOUT,
                "text": (
                    f"Match {match.id} is ready. Room code: {match.room_code}."
                    " Report the final score when you are done."
                ),
            })

    async def submit_score(
        self,
        match_id: int,
        user_id: int,
        score: ScoreInput
    ) -> Match:
        """
        Record one player's score.

        # Errors
        - `UnknownMatch` if the match is not active.
        - `NotParticipant` if the user does not play in the match.
        - `ValidationError` if the score is malformed or out of range.
        - `StateError` if the match is not waiting for reports.
        - `AlreadyReported` if the user reported before.
        """
        match = self._registry.get(match_id)
        participant = match.participant(user_id)
        reported = ReportedScore.parse(score, config.SCORE_MAX)

        async with match.lock:
            self._check_accepting(match)
            if participant.reported_score is not None:
                raise AlreadyReported(match_id, user_id)

            participant.reported_score = reported
            participant.reported_at = datetime_now()
            match.record(
                HistoryAction.SCORE_REPORTED, user_id, score=str(reported)
            )
            self._logger.debug(
                "Player %d reported %s for %s", user_id, reported, match
            )

            opponent = match.opponent_of(user_id)
            if opponent.reported_score is None:
                await self._registry.save(match)
                await self._notifier.notify(opponent.user_id, {
                    "command": "opponent_reported",
                    "match_id": match.id,
                    "text": "Your opponent reported the score. Please report yours.",
                })
                return match

            match.clear_timer()
            if reported.agrees_with(opponent.reported_score):
                winner_id = user_id if reported.is_win else opponent.user_id
                await self._complete(match, winner_id, reported.margin)
            else:
                self._logger.info(
                    "Reports for %s do not match: %s vs %s",
                    match, reported, opponent.reported_score
                )
                await self._disputes.open_dispute(
                    match, DisputeOrigin.SCORE_MISMATCH
                )
        return match

    async def request_dispute(self, match_id: int, user_id: int) -> Match:
        """
        Send a running match to review before both scores are in.

        # Errors
        - `UnknownMatch` if the match is not active.
        - `NotParticipant` if the user does not play in the match.
        - `StateError` if the match is not waiting for reports.
        """
        match = self._registry.get(match_id)
        match.participant(user_id)

        async with match.lock:
            self._check_accepting(match)
            match.clear_timer()
            match.record(HistoryAction.DISPUTE_REQUESTED, user_id)
            await self._disputes.open_dispute(
                match, DisputeOrigin.PLAYER_REQUEST, requested_by=user_id
            )
        return match

    def _check_accepting(self, match: Match) -> None:
        if match.status is not MatchStatus.IN_PROGRESS:
            raise StateError(
                f"Match {match.id} is {match.status.name}, "
                "it is not accepting reports"
            )
        if match.timer is None or not match.timer.pending:
            raise StateError(f"The report window of match {match.id} closed")

    async def _complete(self, match: Match, winner_id: int, margin: int) -> None:
        match.winner_id = winner_id
        match.transition(MatchStatus.COMPLETED, winner_id=winner_id)
        await self._rating_service.rate_finished(match, winner_id, margin)
        await self._registry.finish(match)

        for participant in match.participants:
            won = participant.user_id == winner_id
            await self._notifier.notify(participant.user_id, {
                "command": "match_completed",
                "match_id": match.id,
                "winner_id": winner_id,
                "score": str(participant.reported_score),
                "rating_change": participant.rating_change,
                "text": (
                    f"Match {match.id} {'won' if won else 'lost'} "
                    f"{participant.reported_score}. "
                    f"Rating change: {participant.rating_change:+d}"
                ),
            })

    def _arm(self, match: Match, delay: float) -> None:
        handle = self._scheduler.call_later(
            delay,
            self._on_report_timeout,
            match,
            name=f"match {match.id} report timeout"
        )
        match.arm_timer(handle)

    async def _on_report_timeout(self, match: Match) -> None:
        async with match.lock:
            # Someone else got here first
            if match.status is not MatchStatus.IN_PROGRESS:
                return
            if match.timer is None or not match.timer.fired:
                return

            reports = sum(1 for p in match.participants if p.reported_score)
            metrics.negotiation_timeouts.labels("report").inc()
            match.record(HistoryAction.TIMED_OUT, phase="report", reports=reports)
            await self._cancellation.cancel(match, "score reports timed out")
