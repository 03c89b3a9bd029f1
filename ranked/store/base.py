from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from ..config import config
from ..players import PlayerActivity, PlayerProfile

if TYPE_CHECKING:
    from ..matches import Match, MatchStatus
    from ..matchmaker.queue_entry import QueueEntry


class Store(ABC):
    """
    Persistence for players, matches and queue entries.

    Two operations must be atomic with respect to every other caller:
    `increment_stats` and `compare_and_set_activity`. The latter is what keeps
    a user from being queued twice or playing two matches at once.
    """

    @staticmethod
    def new_player(user_id: int) -> PlayerProfile:
        from ..rating_service.ranks import RankTable

        rank = RankTable.from_config().rank_for(config.START_RATING)
        return PlayerProfile(
            user_id=user_id,
            rating=config.START_RATING,
            rank=rank.name,
            tier=rank.tier,
            highest_rank=rank.name,
            highest_tier=rank.tier,
        )

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    # Players

    @abstractmethod
    async def load_player(self, user_id: int) -> PlayerProfile:
        """
        Return the stored profile, or a fresh one at the start rating if the
        user never played.
        """

    @abstractmethod
    async def save_player(self, profile: PlayerProfile) -> None:
        pass

    @abstractmethod
    async def increment_stats(self, user_id: int, **counters: int) -> None:
        """
        Atomically add to the named stat counters, e.g.
        `increment_stats(1, matches_played=1, matches_won=1)`.
        """

    @abstractmethod
    async def get_activity(self, user_id: int) -> PlayerActivity:
        pass

    @abstractmethod
    async def compare_and_set_activity(
        self,
        user_id: int,
        expected: PlayerActivity,
        new: PlayerActivity
    ) -> bool:
        """
        Set the activity to `new` only if it currently is `expected`. Returns
        whether the update happened.
        """

    # Matches

    @abstractmethod
    async def next_match_id(self) -> int:
        pass

    @abstractmethod
    async def save_match(self, match: "Match") -> None:
        pass

    @abstractmethod
    async def load_match(self, match_id: int) -> Optional["Match"]:
        pass

    @abstractmethod
    async def load_matches(self, status: "MatchStatus") -> list["Match"]:
        pass

    @abstractmethod
    async def count_recent_disputes(self, user_id: int, since: datetime) -> int:
        """
        Number of disputed matches involving `user_id` opened at or after
        `since`.
        """

    # Queue

    @abstractmethod
    async def save_queue_entry(self, entry: "QueueEntry") -> None:
        pass

    @abstractmethod
    async def delete_queue_entry(self, user_id: int) -> None:
        pass

    @abstractmethod
    async def load_queue_entries(self) -> list["QueueEntry"]:
        pass
