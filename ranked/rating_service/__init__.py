"""
Rating and rank computation
"""

from .rating_engine import RatingChange, RatingEngine, RatingParameters
from .ranks import Rank, RankTable
from .rating_service import RatingService

__all__ = (
    "Rank",
    "RankTable",
    "RatingChange",
    "RatingEngine",
    "RatingParameters",
    "RatingService",
)
