from dataclasses import dataclass, field
from datetime import datetime

from ..players import PlayerProfile
from ..rating_service.ranks import Rank
from ..timing import datetime_now


@dataclass
class QueueEntry:
    """
    A player waiting in the ranked queue. Owned by `MatchQueue` and destroyed
    once the player is paired, leaves, or gives up after too many attempts.
    """
    user_id: int
    region: str
    rank: Rank
    rating: int
    joined_at: datetime = field(default_factory=datetime_now)
    pairing_attempts: int = 0

    @classmethod
    def from_profile(cls, profile: PlayerProfile, rank: Rank) -> "QueueEntry":
        return cls(
            user_id=profile.user_id,
            region=profile.region,
            rank=rank,
            rating=profile.rating,
        )

    def wait_seconds(self, now: datetime) -> float:
        return max(0.0, (now - self.joined_at).total_seconds())

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "region": self.region,
            "rank": list(self.rank),
            "rating": self.rating,
            "joined_at": self.joined_at.isoformat(),
            "pairing_attempts": self.pairing_attempts,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueueEntry":
        return cls(
            user_id=data["user_id"],
            region=data["region"],
            rank=Rank(*data["rank"]),
            rating=data["rating"],
            joined_at=datetime.fromisoformat(data["joined_at"]),
            pairing_attempts=data.get("pairing_attempts", 0),
        )

    def __str__(self) -> str:
        return (
            f"QueueEntry({self.user_id}, {self.region}, {self.rank}, "
            f"{self.rating})"
        )
