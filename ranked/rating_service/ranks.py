"""
Rank and tier thresholds
"""

from typing import Iterable, Iterator, NamedTuple, Optional

from ..config import config


class Rank(NamedTuple):
    name: str
    tier: str
    minimum: int
    # Index in the ascending table, higher is better
    position: int

    def __str__(self) -> str:
        return f"{self.name.title()} {self.tier}"


class RankTable(object):
    """
    Maps a cumulative rating to a rank by scanning the thresholds from the top
    down and picking the first one that the rating reaches.

    # Example
    ```
    table = RankTable([("BRONZE", "I", 0), ("SILVER", "I", 1500)])
    assert table.rank_for(1499).name == "BRONZE"
    assert table.rank_for(1500).name == "SILVER"
    ```
    """

    def __init__(self, thresholds: Iterable[Iterable]):
        rows = sorted(
            ((str(name), str(tier), int(minimum)) for name, tier, minimum in thresholds),
            key=lambda row: row[2]
        )
        if not rows:
            raise ValueError("At least one rank threshold is required")
        minimums = [row[2] for row in rows]
        if len(set(minimums)) != len(minimums):
            raise ValueError("Rank thresholds must be unique")

        self._ascending = [
            Rank(name, tier, minimum, position)
            for position, (name, tier, minimum) in enumerate(rows)
        ]
        self._descending = list(reversed(self._ascending))
        self._by_name = {
            (rank.name, rank.tier): rank for rank in self._ascending
        }

    @classmethod
    def from_config(cls) -> "RankTable":
        return cls(config.RANK_THRESHOLDS)

    def __iter__(self) -> Iterator[Rank]:
        return iter(self._ascending)

    def __len__(self) -> int:
        return len(self._ascending)

    @property
    def lowest(self) -> Rank:
        return self._ascending[0]

    def rank_for(self, rating: float) -> Rank:
        """
        The highest rank whose minimum is at most `rating`. Ratings below the
        lowest threshold map to the lowest rank.
        """
        for rank in self._descending:
            if rank.minimum <= rating:
                return rank
        return self.lowest

    def get(self, name: str, tier: str) -> Rank:
        try:
            return self._by_name[(name, tier)]
        except KeyError:
            raise ValueError(f"Unknown rank {name} {tier}")

    def find(self, name: str, tier: str) -> Optional[Rank]:
        return self._by_name.get((name, tier))

    @staticmethod
    def tier_distance(a: Rank, b: Rank) -> int:
        return abs(a.position - b.position)
