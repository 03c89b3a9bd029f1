"""
Match data model and the registry of active matches
"""

from .dispute import Dispute, Resolution
from .enums import (
    DisputeOrigin,
    DisputeStatus,
    HistoryAction,
    MatchStatus,
    NegotiationPhase
)
from .match import HistoryEntry, Match, Participant
from .score import ReportedScore
from .registry import MatchRegistry
from .cancellation import CancellationService

__all__ = (
    "CancellationService",
    "Dispute",
    "DisputeOrigin",
    "DisputeStatus",
    "HistoryAction",
    "HistoryEntry",
    "Match",
    "MatchRegistry",
    "MatchStatus",
    "NegotiationPhase",
    "Participant",
    "ReportedScore",
    "Resolution",
)
