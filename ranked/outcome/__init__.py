"""
Self reported match outcomes
"""

from ..matches.score import ReportedScore
from .resolver import OutcomeResolver

__all__ = ("OutcomeResolver", "ReportedScore")
