from typing import Iterable, Optional

import ranked.metrics as metrics

from ..config import config
from ..core import Service
from ..decorators import with_logger
from ..matches.match import Match
from ..message_queue_service import MessageQueueService
from ..players import PlayerProfile
from ..store.base import Store
from .rating_engine import RatingChange, RatingEngine
from .ranks import RankTable


@with_logger
class RatingService(Service):
    """
    Service responsible for applying rating changes to player profiles and
    persisting them.

    The arithmetic lives in `RatingEngine`. This service loads the players,
    updates rating, rank, win streak and stat counters, saves everything and
    announces the change on the message queue.
    """

    def __init__(
        self,
        store: Store,
        message_queue_service: MessageQueueService
    ):
        self._store = store
        self._mq = message_queue_service
        self.ranks = RankTable.from_config()
        self.engine = RatingEngine()

        config.register_callback("RANK_THRESHOLDS", self.reload_ranks)

    def reload_ranks(self) -> None:
        try:
            ranks = RankTable.from_config()
        except (ValueError, TypeError):
            self._logger.exception(
                "Invalid rank thresholds, keeping the previous table"
            )
            return
        self.ranks = ranks
        self._logger.info("Loaded %d rank thresholds", len(self.ranks))

    async def load_profile(self, user_id: int) -> PlayerProfile:
        return await self._store.load_player(user_id)

    async def apply_result(
        self,
        match: Match,
        winner_id: int,
        margin: int = 0
    ) -> RatingChange:
        """
        Rate a decided match. Writes the applied deltas into the match
        participants.
        """
        loser_id = match.opponent_of(winner_id).user_id
        winner = await self._store.load_player(winner_id)
        loser = await self._store.load_player(loser_id)

        change = self.engine.compute(
            winner.rating,
            loser.rating,
            margin=margin,
            win_streak=winner.win_streak,
            hypercharge=(
                match.hypercharge_multiplier if match.is_hypercharged else 0.0
            ),
        )
        self._logger.debug(
            "Rating change for match %d: winner %s %+d, loser %s %+d",
            match.id, winner, change.winner_delta, loser, change.loser_delta
        )
        await self._apply(match, winner, loser, change)
        return change

    async def apply_forfeit(self, match: Match, loser_id: int) -> RatingChange:
        """
        Apply the fixed forfeit change. `loser_id` is the player that
        forfeited.
        """
        winner_id = match.opponent_of(loser_id).user_id
        winner = await self._store.load_player(winner_id)
        loser = await self._store.load_player(loser_id)

        change = self.engine.forfeit()
        self._logger.debug(
            "Forfeit in match %d: %s %+d, %s %+d",
            match.id, winner, change.winner_delta, loser, change.loser_delta
        )
        await self._apply(match, winner, loser, change)
        return change

    async def rate_finished(
        self,
        match: Match,
        winner_id: int,
        margin: int = 0,
        forfeit: bool = False
    ) -> Optional[RatingChange]:
        """
        Rate a match that already reached COMPLETED. The match ends whether
        or not this works, so failures are logged instead of raised and
        `None` is returned.
        """
        try:
            if forfeit:
                loser_id = match.opponent_of(winner_id).user_id
                return await self.apply_forfeit(match, loser_id)
            return await self.apply_result(match, winner_id, margin)
        except Exception:
            self._logger.exception("Failed to rate %s", match)
            return None

    async def compensate(
        self,
        user_ids: Iterable[int],
        amount: int
    ) -> dict[int, int]:
        """
        Give a flat amount of rating to players, for example when their match
        was cancelled through no fault of their own.
        """
        applied = {}
        for user_id in user_ids:
            profile = await self._store.load_player(user_id)
            applied[user_id] = self._change_rating(profile, amount)
            await self._store.save_player(profile)
            await self._publish(profile, applied[user_id], None)
        return applied

    async def _apply(
        self,
        match: Match,
        winner: PlayerProfile,
        loser: PlayerProfile,
        change: RatingChange
    ) -> None:
        winner.win_streak += 1
        winner.longest_win_streak = max(
            winner.longest_win_streak, winner.win_streak
        )
        loser.win_streak = 0

        winner_delta = self._change_rating(winner, change.winner_delta)
        loser_delta = self._change_rating(loser, change.loser_delta)

        await self._store.save_player(winner)
        await self._store.save_player(loser)
        await self._store.increment_stats(
            winner.user_id, matches_played=1, matches_won=1
        )
        await self._store.increment_stats(
            loser.user_id, matches_played=1, matches_lost=1
        )

        match.participant(winner.user_id).rating_change = winner_delta
        match.participant(loser.user_id).rating_change = loser_delta

        metrics.rating_changes.labels("win").observe(abs(winner_delta))
        metrics.rating_changes.labels("loss").observe(abs(loser_delta))

        await self._publish(winner, winner_delta, match.id)
        await self._publish(loser, loser_delta, match.id)

    def _change_rating(self, profile: PlayerProfile, delta: int) -> int:
        """
        Adjust rating and rank. Rating never drops below zero. Returns the
        change that was actually applied.
        """
        old_rating = profile.rating
        profile.rating = max(0, profile.rating + delta)

        rank = self.ranks.rank_for(profile.rating)
        if (rank.name, rank.tier) != (profile.rank, profile.tier):
            self._logger.info(
                "Player %d is now %s (was %s %s)",
                profile.user_id, rank, profile.rank.title(), profile.tier
            )
        profile.rank, profile.tier = rank.name, rank.tier

        highest = self.ranks.find(profile.highest_rank, profile.highest_tier)
        if highest is None:
            # Removed from the table by a config change. It can not be
            # compared any more, so it stays as it is.
            self._logger.warning(
                "Highest rank %s %s of player %d is not in the rank table",
                profile.highest_rank, profile.highest_tier, profile.user_id
            )
        else:
            best = self.engine.watermark(highest, rank)
            profile.highest_rank, profile.highest_tier = best.name, best.tier

        return profile.rating - old_rating

    async def _publish(
        self,
        profile: PlayerProfile,
        delta: int,
        match_id: Optional[int]
    ) -> None:
        await self._mq.publish(
            config.MQ_EXCHANGE_NAME,
            "ranked.rating.changed",
            {
                "user_id": profile.user_id,
                "match_id": match_id,
                "rating": profile.rating,
                "delta": delta,
                "rank": profile.rank,
                "tier": profile.tier,
            }
        )
