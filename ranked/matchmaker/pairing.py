"""
Pairing cost and the greedy pairing algorithm.

The cost of putting two players together is a weighted sum of how different
they are:

    cost = w_region * (1 - region_score)
         + w_rank   * (1 - rank_score)
         + w_rating * (1 - rating_score)
         + w_wait   * (1 - wait_bonus)

Each score is in [0, 1] where 1 means "identical". Lower cost is better and a
pair is only accepted if its cost is at most the configured threshold.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..config import config
from ..decorators import timed, with_logger
from ..rating_service.ranks import RankTable
from .queue_entry import QueueEntry

Pair = tuple[QueueEntry, QueueEntry, float]


@dataclass(frozen=True)
class PairingParameters:
    weight_region: float = 0.6
    weight_rank: float = 0.3
    weight_rating: float = 0.2
    weight_wait: float = 0.1
    threshold: float = 0.3
    region_distances: dict = field(default_factory=dict)
    unknown_distance: int = 3
    max_distance: int = 2
    distance_decay: float = 0.2
    region_floor: float = 0.2
    tier_decay: float = 0.1
    rank_floor: float = 0.5
    rating_gap_scale: float = 1000
    max_wait: float = 3600

    @classmethod
    def from_config(cls) -> "PairingParameters":
        return cls(
            weight_region=config.PAIRING_WEIGHT_REGION,
            weight_rank=config.PAIRING_WEIGHT_RANK,
            weight_rating=config.PAIRING_WEIGHT_RATING,
            weight_wait=config.PAIRING_WEIGHT_WAIT,
            threshold=config.PAIRING_COST_THRESHOLD,
            region_distances=config.REGION_DISTANCES,
            unknown_distance=config.REGION_UNKNOWN_DISTANCE,
            max_distance=config.REGION_MAX_DISTANCE,
            distance_decay=config.REGION_DISTANCE_DECAY,
            region_floor=config.REGION_SCORE_FLOOR,
            tier_decay=config.RANK_TIER_DECAY,
            rank_floor=config.RANK_SCORE_FLOOR,
            rating_gap_scale=config.RATING_GAP_SCALE,
            max_wait=config.QUEUE_MAX_WAIT,
        )

    def region_distance(self, a: str, b: str) -> int:
        """
        Distance between two regions. The table only needs one direction to
        be listed.
        """
        if a == b:
            return 0
        distance = self.region_distances.get(a, {}).get(b)
        if distance is None:
            distance = self.region_distances.get(b, {}).get(a)
        if distance is None:
            return self.unknown_distance
        return distance

    def region_score(self, distance: int) -> Optional[float]:
        """
        `None` if the regions are too far apart to ever be paired.
        """
        if distance > self.max_distance:
            return None
        return max(self.region_floor, 1.0 - distance * self.distance_decay)

    def rank_score(self, tier_distance: int) -> float:
        return max(self.rank_floor, 1.0 - tier_distance * self.tier_decay)

    def rating_score(self, gap: float) -> float:
        if self.rating_gap_scale <= 0:
            return 1.0 if gap == 0 else 0.0
        return max(0.0, 1.0 - abs(gap) / self.rating_gap_scale)

    def wait_bonus(self, longest_wait: float) -> float:
        if self.max_wait <= 0:
            return 1.0
        return min(max(longest_wait, 0.0) / self.max_wait, 1.0)


@with_logger
class PairingAlgorithm(object):
    """
    Greedy pairing over one batch of queue entries.

    Entries are visited oldest first. Each one is offered its cheapest partner
    in the same region, and only if that does not meet the threshold its
    cheapest partner from a nearby region. An entry that is paired is
    removed from consideration immediately so it can never be part of two
    pairs.
    """

    def __init__(self, params: Optional[PairingParameters] = None):
        self._params = params

    @property
    def params(self) -> PairingParameters:
        return self._params or PairingParameters.from_config()

    def cost(
        self,
        a: QueueEntry,
        b: QueueEntry,
        now: datetime,
        params: Optional[PairingParameters] = None
    ) -> Optional[float]:
        """
        Pairing cost of two entries, or `None` if their regions exclude the
        pair entirely.
        """
        p = params or self.params

        region_score = p.region_score(p.region_distance(a.region, b.region))
        if region_score is None:
            return None

        rank_score = p.rank_score(RankTable.tier_distance(a.rank, b.rank))
        rating_score = p.rating_score(a.rating - b.rating)
        wait_bonus = p.wait_bonus(max(a.wait_seconds(now), b.wait_seconds(now)))

        return (
            p.weight_region * (1 - region_score)
            + p.weight_rank * (1 - rank_score)
            + p.weight_rating * (1 - rating_score)
            + p.weight_wait * (1 - wait_bonus)
        )

    @timed(limit=0.1)
    def find_pairs(
        self,
        batch: Iterable[QueueEntry],
        now: datetime
    ) -> tuple[list[Pair], list[QueueEntry]]:
        """
        Returns the accepted pairs and the entries left unmatched, both in
        queue order.
        """
        p = self.params
        remaining = sorted(batch, key=lambda entry: entry.joined_at)
        pairs: list[Pair] = []
        paired: set[int] = set()

        for entry in remaining:
            if entry.user_id in paired:
                continue

            candidates = [
                other for other in remaining
                if other.user_id != entry.user_id
                and other.user_id not in paired
            ]
            same_region = [c for c in candidates if c.region == entry.region]
            other_region = [c for c in candidates if c.region != entry.region]

            best = self._best(entry, same_region, now, p)
            if best is None:
                best = self._best(entry, other_region, now, p)
            if best is None:
                continue

            partner, cost = best
            self._logger.debug(
                "Pairing %s with %s (cost %.3f)", entry, partner, cost
            )
            pairs.append((entry, partner, cost))
            paired.add(entry.user_id)
            paired.add(partner.user_id)

        unmatched = [e for e in remaining if e.user_id not in paired]
        return pairs, unmatched

    def _best(
        self,
        entry: QueueEntry,
        candidates: list[QueueEntry],
        now: datetime,
        params: PairingParameters
    ) -> Optional[tuple[QueueEntry, float]]:
        """The cheapest candidate that meets the threshold"""
        best = None
        for candidate in candidates:
            cost = self.cost(entry, candidate, now, params)
            if cost is None or cost > params.threshold:
                continue
            # Candidates are in queue order so ties go to the longer wait
            if best is None or cost < best[1]:
                best = (candidate, cost)
        return best
