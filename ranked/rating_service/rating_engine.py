"""
Rating change computation.

Everything in here is a pure function of its inputs and the parameters it was
created with. Nothing touches the store.
"""

import math
from dataclasses import dataclass
from typing import Optional

from ..config import config
from .ranks import Rank, RankTable


@dataclass(frozen=True)
class RatingParameters:
    base_gain: int = 75
    diff_divisor: int = 225
    diff_bonus_cap: int = 20
    margin_multiplier: int = 3
    margin_bonus_cap: int = 30
    streak_multiplier: int = 2
    streak_bonus_cap: int = 20
    win_min: int = 75
    win_max: int = 145
    loss_min: int = 50
    loss_max: int = 125
    forfeit_delta: int = 75

    def __post_init__(self):
        if not 0 <= self.win_min <= self.win_max:
            raise ValueError("Invalid winner gain bounds")
        if not 0 <= self.loss_min <= self.loss_max:
            raise ValueError("Invalid loser loss bounds")
        if self.diff_divisor <= 0:
            raise ValueError("Rating difference divisor must be positive")

    @classmethod
    def from_config(cls) -> "RatingParameters":
        return cls(
            base_gain=config.RATING_BASE_GAIN,
            diff_divisor=config.RATING_DIFF_DIVISOR,
            diff_bonus_cap=config.RATING_DIFF_BONUS_CAP,
            margin_multiplier=config.RATING_MARGIN_MULTIPLIER,
            margin_bonus_cap=config.RATING_MARGIN_BONUS_CAP,
            streak_multiplier=config.RATING_STREAK_MULTIPLIER,
            streak_bonus_cap=config.RATING_STREAK_BONUS_CAP,
            win_min=config.RATING_WIN_MIN,
            win_max=config.RATING_WIN_MAX,
            loss_min=config.RATING_LOSS_MIN,
            loss_max=config.RATING_LOSS_MAX,
            forfeit_delta=config.FORFEIT_DELTA,
        )


@dataclass(frozen=True)
class RatingChange:
    winner_delta: int
    loser_delta: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class RatingEngine(object):
    """
    Computes how much rating the winner and the loser of a match gain or
    lose.

    The winner gets the base gain plus three bounded bonuses: one for the
    rating difference between the players, one for the score margin and one
    for the winner's current win streak. The loser loses the base amount plus
    the first two bonuses. A hypercharged match multiplies the winner's
    bonuses by `1 + m` and the loser's by `1 - m`. Both results are clamped to
    their configured ranges independently and rounded.

    If no parameters are given they are read from the config on every call.
    """

    def __init__(
        self,
        params: Optional[RatingParameters] = None,
        ranks: Optional[RankTable] = None
    ):
        self._params = params
        self._ranks = ranks

    @property
    def params(self) -> RatingParameters:
        return self._params or RatingParameters.from_config()

    @property
    def ranks(self) -> RankTable:
        return self._ranks or RankTable.from_config()

    def compute(
        self,
        winner_rating: float,
        loser_rating: float,
        margin: int = 0,
        win_streak: int = 0,
        hypercharge: float = 0.0
    ) -> RatingChange:
        p = self.params

        diff_bonus = min(
            math.floor(abs(winner_rating - loser_rating) / p.diff_divisor),
            p.diff_bonus_cap
        )
        margin_bonus = min(max(margin, 0) * p.margin_multiplier, p.margin_bonus_cap)
        streak_bonus = min(
            max(win_streak, 0) * p.streak_multiplier, p.streak_bonus_cap
        )

        winner_bonus = (diff_bonus + margin_bonus + streak_bonus) * (1 + hypercharge)
        loser_bonus = (diff_bonus + margin_bonus) * (1 - hypercharge)

        gain = clamp(p.base_gain + winner_bonus, p.win_min, p.win_max)
        loss = clamp(p.base_gain + max(loser_bonus, 0), p.loss_min, p.loss_max)

        return RatingChange(
            winner_delta=round_half_up(gain),
            loser_delta=-round_half_up(loss),
        )

    def forfeit(self) -> RatingChange:
        """
        Fixed change for a forfeited match, independent of the players'
        ratings.
        """
        delta = self.params.forfeit_delta
        return RatingChange(winner_delta=delta, loser_delta=-delta)

    def rank_for(self, rating: float) -> Rank:
        return self.ranks.rank_for(rating)

    @staticmethod
    def watermark(highest: Optional[Rank], current: Rank) -> Rank:
        """
        The better of the previous best rank and the current one.
        """
        if highest is None or current.position > highest.position:
            return current
        return highest
