"""
The ranked queue and its pairing algorithm
"""

from .match_queue import MatchQueue
from .pairing import PairingAlgorithm, PairingParameters
from .queue_entry import QueueEntry

__all__ = (
    "MatchQueue",
    "PairingAlgorithm",
    "PairingParameters",
    "QueueEntry",
)
