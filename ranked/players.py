"""
Player type definitions
"""

from dataclasses import asdict, dataclass
from enum import Enum, unique


@unique
class PlayerActivity(Enum):
    """
    What a user is currently doing. A user can be in at most one queue or
    match at a time, and the store enforces transitions between these with an
    atomic compare and set.
    """
    IDLE = "idle"
    QUEUED = "queued"
    IN_MATCH = "in_match"


@dataclass
class PlayerProfile:
    """
    Persistent ranked information about one user.
    """
    user_id: int
    region: str = "US-East"
    rating: int = 0
    rank: str = "BRONZE"
    tier: str = "I"
    highest_rank: str = "BRONZE"
    highest_tier: str = "I"
    win_streak: int = 0
    longest_win_streak: int = 0
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0

    STAT_COUNTERS = ("matches_played", "matches_won", "matches_lost")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PlayerProfile":
        return cls(**data)

    def __str__(self) -> str:
        return (
            f"Player({self.user_id}, {self.rating}, "
            f"{self.rank.title()} {self.tier})"
        )
