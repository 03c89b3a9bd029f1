import asyncio
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional

import ranked.metrics as metrics

from ..config import config
from ..core import Service
from ..decorators import with_logger
from ..exceptions import StateError, ValidationError
from ..matches import (
    CancellationService,
    HistoryAction,
    Match,
    MatchRegistry,
    MatchStatus,
    NegotiationPhase
)
from ..notifier import TIMEOUT, Answer, Notifier
from ..rating_service import RatingService
from ..timing import Scheduler, TimerHandle
from .requests import PendingRequest
from .rules import (
    CODE_INVALID,
    CODE_OPTIONS,
    HOST_OPTIONS,
    HostCandidate,
    resolve_host,
    validate_room_code
)

if TYPE_CHECKING:
    from ..outcome import OutcomeResolver


@dataclass(eq=False)
class Negotiation:
    """Runtime state of one match's negotiation"""
    match: Match
    task: Optional[asyncio.Task] = None
    stall_guard: Optional[TimerHandle] = None
    requests: set[PendingRequest] = field(default_factory=set)
    strikes: int = 0

    def halt(self) -> None:
        """Stop everything without touching the match"""
        if self.stall_guard is not None:
            self.stall_guard.cancel()
        for request in list(self.requests):
            request.cancel()
        self.requests.clear()
        if self.task is not None and self.task is not asyncio.current_task():
            self.task.cancel()


@with_logger
class PreGameNegotiator(Service):
    """
    Drives a freshly created match through stage bans, captain picks, host
    selection and the room code exchange.

    Every match runs as its own task. Whenever the task waits for a player it
    arms exactly one phase timer on the match. When the timer fires every
    outstanding request of the match resolves to `TIMEOUT`; when an answer
    arrives first the timer is cancelled. A separate stall guard cancels the
    whole negotiation once no player has answered anything for
    `PREGAME_TIMEOUT`.

    Timeout policy:
    - STAGE_BAN: a random remaining stage is banned for the player.
    - CAPTAIN_SELECT: a random unchosen captain is assigned.
    - HOST_SELECT: missing votes count as no vote.
    - ROOM_CODE: the match is cancelled and the host is at fault. A missing
      confirmation from the guest counts as a confirmation.
    """

    def __init__(
        self,
        match_registry: MatchRegistry,
        notifier: Notifier,
        scheduler: Scheduler,
        rating_service: RatingService,
        cancellation_service: CancellationService,
        outcome_resolver: "OutcomeResolver"
    ):
        self._registry = match_registry
        self._notifier = notifier
        self._scheduler = scheduler
        self._rating_service = rating_service
        self._cancellation = cancellation_service
        self._outcome = outcome_resolver
        self._negotiations: dict[int, Negotiation] = {}
        self.random = random.Random()

    async def initialize(self) -> None:
        # A negotiation can not be resumed after a restart
        for match in await self._registry.recover(MatchStatus.PREGAME):
            async with match.lock:
                if not match.is_terminal:
                    await self._cancellation.cancel(match, "server restart")

    async def shutdown(self) -> None:
        tasks = []
        for negotiation in list(self._negotiations.values()):
            negotiation.halt()
            if negotiation.task is not None:
                tasks.append(negotiation.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def __contains__(self, match_id: int) -> bool:
        return match_id in self._negotiations

    def __len__(self) -> int:
        return len(self._negotiations)

    def start(self, match: Match) -> Negotiation:
        """
        Begin negotiating a match in the background.
        """
        if match.id in self._negotiations:
            raise StateError(f"{match} is already being negotiated")
        if match.status is not MatchStatus.PREGAME:
            raise StateError(f"{match} is not in pre game")

        negotiation = Negotiation(match)
        self._arm_stall_guard(negotiation)
        negotiation.task = asyncio.create_task(self._run(negotiation))
        self._negotiations[match.id] = negotiation
        metrics.active_negotiations.set(len(self._negotiations))
        return negotiation

    async def cancel(
        self,
        match_id: int,
        reason: str,
        at_fault: Iterable[int] = ()
    ) -> None:
        """
        Abort the negotiation of a match and cancel it.

        # Errors
        - `UnknownMatch` if there is no such active match.
        - `StateError` if the match is no longer in pre game.
        """
        match = self._registry.get(match_id)
        async with match.lock:
            if match.status is not MatchStatus.PREGAME:
                raise StateError(f"{match} is not in pre game")

            negotiation = self._negotiations.get(match_id)
            if negotiation is not None:
                negotiation.halt()
            await self._cancellation.cancel(match, reason, at_fault)

    def _arm_stall_guard(self, negotiation: Negotiation) -> None:
        """
        Restart the inactivity countdown. Called whenever a player answers.
        """
        if negotiation.stall_guard is not None:
            negotiation.stall_guard.cancel()
        negotiation.stall_guard = self._scheduler.call_later(
            config.PREGAME_TIMEOUT,
            self._on_stall,
            negotiation,
            name=f"match {negotiation.match.id} pregame stall guard"
        )

    async def _on_stall(self, negotiation: Negotiation) -> None:
        match = negotiation.match
        if match.status is not MatchStatus.PREGAME:
            return
        # Replaced by a newer guard after a player answered
        if negotiation.stall_guard is None or not negotiation.stall_guard.fired:
            return

        metrics.negotiation_timeouts.labels("pregame").inc()
        self._logger.info(
            "%s stalled in %s, cancelling", match, match.phase.name
        )
        try:
            await self.cancel(match.id, "negotiation timed out")
        except StateError:
            pass

    async def _run(self, negotiation: Negotiation) -> None:
        match = negotiation.match
        try:
            await self._negotiate(negotiation)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("Negotiation of %s failed", match)
            async with match.lock:
                if not match.is_terminal:
                    await self._cancellation.cancel(match, "internal error")
        finally:
            self._negotiations.pop(match.id, None)
            negotiation.halt()
            metrics.active_negotiations.set(len(self._negotiations))

    async def _negotiate(self, negotiation: Negotiation) -> None:
        match = negotiation.match
        starter = self.random.choice(match.user_ids)
        other = match.opponent_of(starter).user_id

        await self._stage_ban(negotiation, (starter, other))
        # The player who banned second picks their captain first
        await self._captain_select(negotiation, (other, starter))
        await self._host_select(negotiation)
        await self._room_code(negotiation)

    # Phases

    async def _stage_ban(
        self,
        negotiation: Negotiation,
        order: tuple[int, int]
    ) -> None:
        match = negotiation.match
        remaining = list(config.STAGES)
        if not remaining:
            raise ValueError("No stages configured")

        await self._enter_phase(match, NegotiationPhase.STAGE_BAN, order=order)

        turn = 0
        while len(remaining) > 1:
            user_id = order[turn % 2]
            handle = self._arm(negotiation, config.STAGE_BAN_TIMEOUT)
            answer = await self._choose(
                negotiation, user_id, "Ban a stage", remaining
            )
            handle.cancel()

            async with match.lock:
                auto = answer is TIMEOUT
                if auto:
                    self._record_timeout(match, user_id)
                    stage = self.random.choice(remaining)
                else:
                    stage = answer
                remaining.remove(stage)
                match.record(
                    HistoryAction.STAGE_BANNED, user_id,
                    stage=stage, auto=auto
                )
                await self._registry.save(match)
            await self._broadcast(match, {
                "command": "stage_banned",
                "match_id": match.id,
                "user_id": user_id,
                "stage": stage,
                "auto": auto,
                "remaining": list(remaining),
                "text": f"{stage} was banned" + (" automatically" if auto else ""),
            })
            turn += 1

        async with match.lock:
            match.stage = remaining[0]
            match.record(HistoryAction.STAGE_SELECTED, stage=match.stage)
            await self._registry.save(match)
        self._logger.debug("%s will be played on %s", match, match.stage)

    async def _captain_select(
        self,
        negotiation: Negotiation,
        order: tuple[int, int]
    ) -> None:
        match = negotiation.match
        await self._enter_phase(
            match, NegotiationPhase.CAPTAIN_SELECT, order=order
        )

        for user_id in order:
            chosen = {p.captain for p in match.participants if p.captain}
            available = [c for c in config.CAPTAINS if c not in chosen]
            if not available:
                raise ValueError("Not enough captains configured")

            handle = self._arm(negotiation, config.CAPTAIN_PICK_TIMEOUT)
            answer = await self._choose(
                negotiation, user_id, "Pick your captain", available
            )
            handle.cancel()

            async with match.lock:
                auto = answer is TIMEOUT
                if auto:
                    self._record_timeout(match, user_id)
                    captain = self.random.choice(available)
                else:
                    captain = answer
                match.participant(user_id).captain = captain
                match.record(
                    HistoryAction.CAPTAIN_PICKED, user_id,
                    captain=captain, auto=auto
                )
                await self._registry.save(match)
            await self._broadcast(match, {
                "command": "captain_picked",
                "match_id": match.id,
                "user_id": user_id,
                "captain": captain,
                "auto": auto,
                "text": f"{user_id} plays as {captain}",
            })

    async def _host_select(self, negotiation: Negotiation) -> None:
        match = negotiation.match
        await self._enter_phase(match, NegotiationPhase.HOST_SELECT)

        # One timer covers both votes
        handle = self._arm(negotiation, config.HOST_SELECT_TIMEOUT)
        answers = await asyncio.gather(*(
            self._choose(negotiation, user_id, "Who should host?", HOST_OPTIONS)
            for user_id in match.user_ids
        ))
        handle.cancel()

        candidates = []
        for user_id, answer in zip(match.user_ids, answers):
            profile = await self._rating_service.load_profile(user_id)
            rank = self._rating_service.ranks.rank_for(profile.rating)
            candidates.append(HostCandidate(
                user_id=user_id,
                vote=None if answer is TIMEOUT else answer,
                rank_position=rank.position,
                rating=profile.rating,
            ))

        host_id, rule = resolve_host(*candidates, rng=self.random)

        async with match.lock:
            for candidate in candidates:
                if candidate.vote is None:
                    self._record_timeout(match, candidate.user_id)
                match.record(
                    HistoryAction.HOST_VOTED, candidate.user_id,
                    vote=candidate.vote
                )
            for participant in match.participants:
                participant.is_host = participant.user_id == host_id
            match.record(HistoryAction.HOST_SELECTED, host_id, rule=rule)
            await self._registry.save(match)

        self._logger.debug("%s will be hosted by %d (%s)", match, host_id, rule)
        await self._broadcast(match, {
            "command": "host_selected",
            "match_id": match.id,
            "host_id": host_id,
            "text": f"{host_id} will host the match",
        })

    async def _room_code(self, negotiation: Negotiation) -> None:
        match = negotiation.match
        host_id = match.host.user_id
        guest_id = match.opponent_of(host_id).user_id
        await self._enter_phase(match, NegotiationPhase.ROOM_CODE)

        while True:
            handle = self._arm(negotiation, config.ROOM_CODE_TIMEOUT)
            code = await self._ask_room_code(negotiation, host_id)
            handle.cancel()

            if code is TIMEOUT:
                async with match.lock:
                    self._record_timeout(match, host_id)
                    await self._cancellation.cancel(
                        match,
                        "host did not provide a room code",
                        at_fault=[host_id]
                    )
                return

            async with match.lock:
                match.room_code = code
                match.record(
                    HistoryAction.ROOM_CODE_SUBMITTED, host_id, code=code
                )
                await self._registry.save(match)

            handle = self._arm(negotiation, config.ROOM_CODE_CONFIRM_TIMEOUT)
            answer = await self._choose(
                negotiation,
                guest_id,
                f"The room code is {code}. Does it work?",
                CODE_OPTIONS
            )
            handle.cancel()

            if answer == CODE_INVALID:
                negotiation.strikes += 1
                metrics.room_code_strikes.inc()
                async with match.lock:
                    match.room_code = None
                    match.record(
                        HistoryAction.ROOM_CODE_FLAGGED, guest_id,
                        code=code, strikes=negotiation.strikes
                    )
                    await self._registry.save(match)

                if negotiation.strikes >= config.ROOM_CODE_MAX_STRIKES:
                    await self._forfeit(match, host_id)
                    return

                await self._notifier.notify(host_id, {
                    "command": "room_code_flagged",
                    "match_id": match.id,
                    "strikes": negotiation.strikes,
                    "text": (
                        f"Room code {code} was flagged as invalid "
                        f"({negotiation.strikes}/{config.ROOM_CODE_MAX_STRIKES})."
                        " Please submit a new one."
                    ),
                })
                continue

            async with match.lock:
                match.record(
                    HistoryAction.ROOM_CODE_CONFIRMED, guest_id,
                    code=code, auto=answer is TIMEOUT
                )
                match.phase = NegotiationPhase.DONE
                match.transition(MatchStatus.IN_PROGRESS)
                await self._outcome.request_report(match)
                await self._registry.save(match)
            self._logger.info("%s started with room code %s", match, code)
            return

    async def _forfeit(self, match: Match, host_id: int) -> None:
        """
        The host failed to provide a working room code too many times.
        """
        winner_id = match.opponent_of(host_id).user_id
        async with match.lock:
            match.winner_id = winner_id
            match.transition(
                MatchStatus.COMPLETED, reason="forfeit", forfeited_by=host_id
            )
            await self._rating_service.rate_finished(
                match, winner_id, forfeit=True
            )
            await self._registry.finish(match)

        self._logger.info("%s forfeited by host %d", match, host_id)
        for participant in match.participants:
            await self._notifier.notify(participant.user_id, {
                "command": "match_forfeited",
                "match_id": match.id,
                "winner_id": winner_id,
                "rating_change": participant.rating_change,
                "text": (
                    f"Match {match.id} was forfeited by {host_id} after "
                    f"{config.ROOM_CODE_MAX_STRIKES} invalid room codes."
                ),
            })

    # Prompting

    def _arm(self, negotiation: Negotiation, timeout: float) -> TimerHandle:
        match = negotiation.match
        handle = self._scheduler.call_later(
            timeout,
            self._on_phase_timeout,
            negotiation,
            name=f"match {match.id} {match.phase.name}"
        )
        match.arm_timer(handle)
        return handle

    def _on_phase_timeout(self, negotiation: Negotiation) -> None:
        for request in list(negotiation.requests):
            request.expire()

    async def _prompt(
        self,
        negotiation: Negotiation,
        user_id: int,
        ask: Callable[[float], Awaitable[Answer]]
    ) -> Answer:
        handle = negotiation.match.timer
        if handle is None or not handle.pending:
            return TIMEOUT

        request = PendingRequest(user_id)
        negotiation.requests.add(request)
        request.attach(asyncio.create_task(ask(handle.remaining())))
        try:
            answer = await request.wait()
        finally:
            negotiation.requests.discard(request)
            request.cancel()

        if answer is not TIMEOUT:
            self._arm_stall_guard(negotiation)
        return answer

    async def _choose(
        self,
        negotiation: Negotiation,
        user_id: int,
        prompt: str,
        options: list[str]
    ) -> Answer:
        """
        Ask until the player picks one of `options` or the phase times out.
        """
        options = list(options)
        while True:
            answer = await self._prompt(
                negotiation,
                user_id,
                lambda timeout: self._notifier.present_choice(
                    user_id, prompt, options, timeout
                )
            )
            if answer is TIMEOUT or answer in options:
                return answer

            self._logger.debug(
                "Player %d picked %r which is not an option", user_id, answer
            )
            await self._notifier.notify(user_id, {
                "command": "invalid_selection",
                "match_id": negotiation.match.id,
                "text": f"{answer} is not available. Please pick again.",
            })

    async def _ask_room_code(
        self,
        negotiation: Negotiation,
        host_id: int
    ) -> Any:
        match = negotiation.match
        while True:
            answer = await self._prompt(
                negotiation,
                host_id,
                lambda timeout: self._notifier.present_freeform(
                    host_id,
                    "Create a room and enter its code",
                    validate_room_code,
                    timeout
                )
            )
            if answer is TIMEOUT:
                return TIMEOUT

            try:
                return validate_room_code(answer)
            except ValidationError as e:
                async with match.lock:
                    match.record(
                        HistoryAction.ROOM_CODE_REJECTED, host_id,
                        code=str(answer)
                    )
                await self._notifier.notify(host_id, {
                    "command": "invalid_room_code",
                    "match_id": match.id,
                    "text": e.message,
                })

    # Helpers

    async def _enter_phase(
        self,
        match: Match,
        phase: NegotiationPhase,
        **payload: Any
    ) -> None:
        async with match.lock:
            match.phase = phase
            match.record(HistoryAction.PHASE_STARTED, phase=phase.value, **payload)
            await self._registry.save(match)
        self._logger.debug("%s entered %s", match, phase.name)

    def _record_timeout(self, match: Match, user_id: int) -> None:
        metrics.negotiation_timeouts.labels(match.phase.name.lower()).inc()
        match.record(HistoryAction.TIMED_OUT, user_id, phase=match.phase.value)

    async def _broadcast(self, match: Match, message: dict) -> None:
        for user_id in match.user_ids:
            await self._notifier.notify(user_id, message)
