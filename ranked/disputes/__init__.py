"""
Human review of disputed matches
"""

from .coordinator import DisputeCoordinator
from .priority import dispute_priority, origin_weight, repeat_multiplier

__all__ = (
    "DisputeCoordinator",
    "dispute_priority",
    "origin_weight",
    "repeat_multiplier",
)
