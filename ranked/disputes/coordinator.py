import asyncio
import heapq
from datetime import timedelta
from typing import Optional

import aiocron

import ranked.metrics as metrics

from ..asyncio_extensions import synchronizedmethod
from ..config import config
from ..core import Service
from ..decorators import with_logger
from ..exceptions import StateError, UnknownDispute
from ..matches import (
    CancellationService,
    Dispute,
    DisputeOrigin,
    DisputeStatus,
    HistoryAction,
    Match,
    MatchRegistry,
    MatchStatus,
    Resolution
)
from ..notifier import Notifier
from ..rating_service import RatingService
from ..store import Store
from ..timing import Scheduler, datetime_now
from .priority import dispute_priority


@with_logger
class DisputeCoordinator(Service):
    """
    Priority queue of disputed matches waiting for a human reviewer.

    Disputes are handed out strictly by descending priority, ties going to
    the dispute that was opened first. Any reviewer below
    `REVIEWER_MAX_ACTIVE` assigned disputes may receive one. A dispute that
    nobody resolves within `DISPUTE_TIMEOUT` expires and its match is
    cancelled without a rating change.
    """

    def __init__(
        self,
        match_registry: MatchRegistry,
        store: Store,
        scheduler: Scheduler,
        rating_service: RatingService,
        cancellation_service: CancellationService,
        notifier: Notifier
    ):
        self._registry = match_registry
        self._store = store
        self._scheduler = scheduler
        self._rating_service = rating_service
        self._cancellation = cancellation_service
        self._notifier = notifier

        # Every open dispute, assigned or not
        self._disputes: dict[int, Dispute] = {}
        # Unassigned disputes as (-priority, sequence, match_id)
        self._heap: list[tuple[float, int, int]] = []
        self._reviewers: dict[int, set[int]] = {}
        self._sequence = 0
        self._tasks: set[asyncio.Task] = set()
        self._assign_cron = None

    async def initialize(self) -> None:
        now = datetime_now()
        for match in await self._registry.recover(MatchStatus.DISPUTED):
            dispute = match.dispute
            if dispute is None:
                self._logger.warning("%s was disputed without a dispute", match)
                async with match.lock:
                    await self._cancellation.cancel(match, "missing dispute")
                continue

            # Reviewers have to register again after a restart
            dispute.assigned_reviewer = None
            self._sequence = max(self._sequence, dispute.sequence)
            self._disputes[dispute.id] = dispute
            self._push(dispute)
            elapsed = (now - dispute.created_at).total_seconds()
            self._arm(match, config.DISPUTE_TIMEOUT - elapsed)

        self._update_backlog()
        self._assign_cron = aiocron.crontab(
            "* * * * *", func=self.assign_pending
        )

    async def shutdown(self) -> None:
        if self._assign_cron is not None:
            self._assign_cron.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def get(self, dispute_id: int) -> Dispute:
        dispute = self._disputes.get(dispute_id)
        if dispute is None:
            raise UnknownDispute(dispute_id)
        return dispute

    def pending(self) -> list[Dispute]:
        """Unassigned disputes in the order they will be handed out"""
        return sorted(
            (
                dispute for dispute in self._disputes.values()
                if dispute.assigned_reviewer is None
            ),
            key=lambda dispute: dispute.sort_key
        )

    def assigned_to(self, reviewer_id: int) -> list[Dispute]:
        return [
            self._disputes[dispute_id]
            for dispute_id in self._reviewers.get(reviewer_id, ())
            if dispute_id in self._disputes
        ]

    async def open_dispute(
        self,
        match: Match,
        origin: DisputeOrigin,
        requested_by: Optional[int] = None
    ) -> Dispute:
        """
        Move a running match into review. The caller must hold `match.lock`
        and must have cleared the report timer.
        """
        now = datetime_now()
        since = now - timedelta(days=config.DISPUTE_HISTORY_DAYS)
        metadata = {
            user_id: await self._store.count_recent_disputes(user_id, since)
            for user_id in match.user_ids
        }
        priority = dispute_priority(
            origin, max(metadata.values()), match.is_hypercharged
        )

        self._sequence += 1
        dispute = Dispute(
            match_id=match.id,
            priority=priority,
            origin=origin,
            created_at=now,
            sequence=self._sequence,
            metadata=metadata,
            requested_by=requested_by,
        )
        match.transition(
            MatchStatus.DISPUTED,
            requested_by,
            origin=origin.value,
            priority=priority
        )
        match.dispute = dispute
        self._arm(match, config.DISPUTE_TIMEOUT)
        await self._registry.save(match)

        self._disputes[dispute.id] = dispute
        self._push(dispute)
        self._update_backlog()
        metrics.disputes_opened.labels(origin.value).inc()
        self._logger.info(
            "Opened dispute for %s (%s, priority %.2f)",
            match, origin.name, priority
        )

        for user_id in match.user_ids:
            await self._notifier.notify(user_id, {
                "command": "match_disputed",
                "match_id": match.id,
                "origin": origin.value,
                "text": f"Match {match.id} was sent to a reviewer.",
            })

        # Assignment locks matches itself, so it has to wait for our caller
        self._schedule_assignment()
        return dispute

    # Reviewers

    def register_reviewer(self, reviewer_id: int) -> None:
        if reviewer_id in self._reviewers:
            return
        self._reviewers[reviewer_id] = set()
        self._logger.info("Reviewer %d is available", reviewer_id)
        self._schedule_assignment()

    async def unregister_reviewer(self, reviewer_id: int) -> list[Dispute]:
        """
        Remove a reviewer and put their unresolved disputes back in the
        queue. Returns the disputes that were returned.
        """
        returned = []
        for dispute_id in self._reviewers.pop(reviewer_id, set()):
            dispute = self._disputes.get(dispute_id)
            match = self._registry.find(dispute_id)
            if dispute is None or match is None:
                continue

            async with match.lock:
                if dispute.status is not DisputeStatus.PENDING:
                    continue
                dispute.assigned_reviewer = None
                self._push(dispute)
                await self._registry.save(match)
            returned.append(dispute)

        self._update_backlog()
        self._logger.info(
            "Reviewer %d left, returned %d disputes", reviewer_id, len(returned)
        )
        self._schedule_assignment()
        return returned

    def _eligible_reviewer(self) -> Optional[int]:
        eligible = [
            (len(assigned), reviewer_id)
            for reviewer_id, assigned in self._reviewers.items()
            if len(assigned) < config.REVIEWER_MAX_ACTIVE
        ]
        if not eligible:
            return None
        return min(eligible)[1]

    @synchronizedmethod("_assign_lock")
    async def assign_next(
        self,
        reviewer_id: Optional[int] = None
    ) -> Optional[Dispute]:
        """
        Hand the highest priority unassigned dispute to a reviewer. If
        `reviewer_id` is given only that reviewer is considered.

        Returns the assigned dispute, or `None` if there is nothing to assign
        or no reviewer has capacity.
        """
        while self._heap:
            if reviewer_id is None:
                reviewer = self._eligible_reviewer()
            elif (
                reviewer_id in self._reviewers
                and len(self._reviewers[reviewer_id]) < config.REVIEWER_MAX_ACTIVE
            ):
                reviewer = reviewer_id
            else:
                reviewer = None
            if reviewer is None:
                return None

            _, _, dispute_id = heapq.heappop(self._heap)
            dispute = self._disputes.get(dispute_id)
            match = self._registry.find(dispute_id)
            if dispute is None or match is None:
                continue

            async with match.lock:
                if (
                    dispute.status is not DisputeStatus.PENDING
                    or dispute.assigned_reviewer is not None
                ):
                    continue
                dispute.assigned_reviewer = reviewer
                self._reviewers[reviewer].add(dispute.id)
                match.record(
                    HistoryAction.DISPUTE_ASSIGNED, reviewer,
                    priority=dispute.priority
                )
                await self._registry.save(match)

            self._update_backlog()
            self._logger.info(
                "Assigned dispute %d to reviewer %d", dispute.id, reviewer
            )
            await self._notifier.notify(reviewer, {
                "command": "dispute_assigned",
                "dispute_id": dispute.id,
                "match_id": match.id,
                "priority": dispute.priority,
                "reports": {
                    str(p.user_id): (
                        str(p.reported_score) if p.reported_score else None
                    )
                    for p in match.participants
                },
                "text": f"You have been assigned the dispute of match {match.id}.",
            })
            return dispute

        return None

    async def assign_pending(self) -> list[Dispute]:
        """
        Assign disputes until the queue is empty or every reviewer is busy.
        """
        assigned = []
        while True:
            dispute = await self.assign_next()
            if dispute is None:
                return assigned
            assigned.append(dispute)

    # Resolution

    async def resolve(
        self,
        dispute_id: int,
        reviewer_id: int,
        resolution: Resolution
    ) -> Match:
        """
        Apply a reviewer's decision to the disputed match.

        # Errors
        - `UnknownDispute` if there is no such open dispute.
        - `ValidationError` if the resolution is inconsistent.
        - `NotParticipant` if the declared winner does not play in the match.
        - `StateError` if the dispute is assigned to another reviewer or was
          closed already.
        """
        dispute = self.get(dispute_id)
        match = self._registry.find(dispute.match_id)
        if match is None:
            raise UnknownDispute(dispute_id)

        resolution.validate()
        if resolution.winner_id is not None:
            match.participant(resolution.winner_id)

        async with match.lock:
            if (
                dispute.status is not DisputeStatus.PENDING
                or match.status is not MatchStatus.DISPUTED
            ):
                raise StateError(f"Dispute {dispute_id} is already closed")
            if dispute.assigned_reviewer not in (None, reviewer_id):
                raise StateError(
                    f"Dispute {dispute_id} is assigned to another reviewer"
                )

            match.clear_timer()
            assigned = dispute.assigned_reviewer
            dispute.assigned_reviewer = reviewer_id
            dispute.resolution = resolution
            self._close(dispute, DisputeStatus.RESOLVED, assigned)

            if resolution.cancelled:
                await self._cancellation.cancel(
                    match, f"cancelled by reviewer {reviewer_id}"
                )
            else:
                margin = resolution.score.margin if resolution.score else 0
                match.winner_id = resolution.winner_id
                match.transition(
                    MatchStatus.COMPLETED,
                    reviewer_id,
                    winner_id=resolution.winner_id,
                    note=resolution.note
                )
                await self._rating_service.rate_finished(
                    match, resolution.winner_id, margin
                )
                await self._registry.finish(match)

        self._logger.info(
            "Dispute %d resolved by reviewer %d: %s",
            dispute_id, reviewer_id,
            "cancelled" if resolution.cancelled else f"winner {match.winner_id}"
        )
        for participant in match.participants:
            await self._notifier.notify(participant.user_id, {
                "command": "dispute_resolved",
                "match_id": match.id,
                "winner_id": match.winner_id,
                "cancelled": resolution.cancelled,
                "rating_change": participant.rating_change,
                "text": self._resolution_text(match, resolution),
            })
        self._schedule_assignment()
        return match

    @staticmethod
    def _resolution_text(match: Match, resolution: Resolution) -> str:
        if resolution.cancelled:
            text = f"The dispute of match {match.id} was resolved: cancelled."
        else:
            text = (
                f"The dispute of match {match.id} was resolved: "
                f"{resolution.winner_id} won."
            )
        if resolution.note:
            text += f" {resolution.note}"
        return text

    # Timers and bookkeeping

    def _arm(self, match: Match, delay: float) -> None:
        handle = self._scheduler.call_later(
            delay,
            self._on_dispute_timeout,
            match,
            name=f"match {match.id} dispute timeout"
        )
        match.arm_timer(handle)

    async def _on_dispute_timeout(self, match: Match) -> None:
        async with match.lock:
            if match.status is not MatchStatus.DISPUTED:
                return
            if match.timer is None or not match.timer.fired:
                return

            dispute = match.dispute
            self._close(dispute, DisputeStatus.EXPIRED, dispute.assigned_reviewer)
            match.record(HistoryAction.TIMED_OUT, phase="dispute")
            self._logger.info("Dispute of %s expired", match)
            await self._cancellation.cancel(match, "dispute expired")

        self._schedule_assignment()

    def _close(
        self,
        dispute: Dispute,
        status: DisputeStatus,
        reviewer_id: Optional[int]
    ) -> None:
        dispute.status = status
        dispute.closed_at = datetime_now()
        self._disputes.pop(dispute.id, None)
        if any(item[2] == dispute.id for item in self._heap):
            self._heap = [item for item in self._heap if item[2] != dispute.id]
            heapq.heapify(self._heap)
        if reviewer_id is not None and reviewer_id in self._reviewers:
            self._reviewers[reviewer_id].discard(dispute.id)
        metrics.disputes_closed.labels(status.value).inc()
        self._update_backlog()

    def _push(self, dispute: Dispute) -> None:
        heapq.heappush(self._heap, (*dispute.sort_key, dispute.id))

    def _update_backlog(self) -> None:
        metrics.dispute_backlog.set(
            sum(1 for d in self._disputes.values() if d.assigned_reviewer is None)
        )

    def _schedule_assignment(self) -> None:
        if not self._reviewers:
            return
        task = asyncio.create_task(self.assign_pending())
        self._tasks.add(task)
        task.add_done_callback(self._assignment_done)

    def _assignment_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._logger.error(
                "Error while assigning disputes", exc_info=task.exception()
            )
